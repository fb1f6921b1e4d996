"""
Structured Logging for SBExplorer Broker Operations

Provides correlation tracking and context-aware logging for async
relocation, deletion and purge operations.

Author: SBExplorer Contributors
Date: 2026-01-14
"""

import contextvars
import logging
import time
import uuid
from functools import wraps
from typing import Optional


# Context variable for correlation ID (safe across async tasks)
correlation_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    'correlation_id', default=None
)


class CorrelationContext:
    """Manages correlation ID context for operation tracing."""

    @staticmethod
    def get_correlation_id() -> str:
        """Get current correlation ID or generate new one."""
        corr_id = correlation_id_var.get()
        if not corr_id:
            corr_id = str(uuid.uuid4())
            correlation_id_var.set(corr_id)
        return corr_id

    @staticmethod
    def set_correlation_id(corr_id: str) -> None:
        """Set correlation ID for current context."""
        correlation_id_var.set(corr_id)

    @staticmethod
    def clear_correlation_id() -> None:
        """Clear correlation ID from current context."""
        correlation_id_var.set(None)


class StructuredLogger:
    """Structured logger with correlation tracking."""

    def __init__(self, name: str):
        """Initialize structured logger."""
        self.logger = logging.getLogger(name)

    def _log(self, level: int, message: str, **kwargs) -> None:
        """Log with extra context fields."""
        extra = {k: v for k, v in kwargs.items() if v is not None}
        self.logger.log(level, message, extra=extra)

    def debug(self, message: str, **kwargs) -> None:
        """Log debug message."""
        self._log(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs) -> None:
        """Log info message."""
        self._log(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs) -> None:
        """Log warning message."""
        self._log(logging.WARNING, message, **kwargs)

    def error(self, message: str, exc_info: bool = False, **kwargs) -> None:
        """Log error message."""
        if exc_info:
            self.logger.error(message, exc_info=True, extra=kwargs)
        else:
            self._log(logging.ERROR, message, **kwargs)

    def log_operation(self, operation: str, namespace: str, entity_path: str, **kwargs) -> None:
        """Log entity operation."""
        self.info(
            f"{operation}: {namespace}/{entity_path}",
            operation=operation,
            namespace=namespace,
            entity_path=entity_path,
            **kwargs
        )

    def log_message_operation(
        self,
        operation: str,
        entity_path: str,
        sequence_number: Optional[str],
        message_id: Optional[str],
        **kwargs
    ) -> None:
        """Log message operation."""
        self.info(
            f"{operation}: {entity_path} sequence={sequence_number} message={message_id}",
            operation=operation,
            entity_path=entity_path,
            sequence_number=sequence_number,
            message_id=message_id,
            **kwargs
        )

    def log_lock_operation(
        self,
        operation: str,
        entity_path: str,
        sequence_number: Optional[str],
        **kwargs
    ) -> None:
        """Log lock-related operation."""
        self.debug(
            f"{operation}: {entity_path} sequence={sequence_number}",
            operation=operation,
            entity_path=entity_path,
            sequence_number=sequence_number,
            **kwargs
        )

    def log_error(
        self,
        operation: str,
        error_type: str,
        error_message: str,
        **kwargs
    ) -> None:
        """Log error with context."""
        self.error(
            f"Error in {operation}: {error_message}",
            operation=operation,
            error_type=error_type,
            error_message=error_message,
            **kwargs
        )


def track_operation_time(logger: StructuredLogger, operation: str):
    """Decorator to track operation execution time."""
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            start_time = time.time()
            try:
                result = await func(*args, **kwargs)
                duration_ms = (time.time() - start_time) * 1000
                logger.debug(
                    f"Operation completed: {operation}",
                    operation=operation,
                    duration_ms=round(duration_ms, 2)
                )
                return result
            except Exception as e:
                duration_ms = (time.time() - start_time) * 1000
                logger.error(
                    f"Operation failed: {operation}",
                    operation=operation,
                    duration_ms=round(duration_ms, 2),
                    error_type=type(e).__name__,
                    error_message=str(e)
                )
                raise
        return wrapper
    return decorator
