"""
Explorer Exception Hierarchy

Exception types for dead-letter location, relocation, deletion and purge
operations, with machine-readable error codes and diagnostic context.

Author: SBExplorer Contributors
Date: 2026-01-14
"""

from typing import Optional, Dict, Any


class ExplorerError(Exception):
    """
    Base exception for all explorer errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code (e.g., 'MessageNotFound')
        details: Additional context (entity_path, status_code, etc.)
    """

    error_code: str = "ExplorerError"
    is_transient: bool = False

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.error_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary format for API responses."""
        return {
            "error": {
                "code": self.error_code,
                "message": self.message,
                "details": self.details
            }
        }


# ========== Caller Errors ==========

class ConfigurationError(ExplorerError):
    """Raised when a target or identity is missing or contradictory."""
    error_code = "InvalidConfiguration"

    def __init__(self, reason: str, message: Optional[str] = None):
        message = message or f"Invalid configuration: {reason}"
        super().__init__(message, details={"reason": reason})


class InvalidLockHandleError(ExplorerError):
    """Raised when a lock handle is settled twice or after its receiver closed."""
    error_code = "InvalidLockHandle"

    def __init__(
        self,
        sequence_number: Optional[str],
        reason: str,
        message: Optional[str] = None
    ):
        message = message or f"Lock handle for sequence number {sequence_number} is invalid: {reason}"
        details = {"sequence_number": sequence_number, "reason": reason}
        super().__init__(message, details=details)


# ========== Lookup Errors ==========

class NotFoundError(ExplorerError):
    """Base class for lookups that came back empty."""
    error_code = "NotFound"


class MessageNotFoundError(NotFoundError):
    """Raised when the target message is absent from a dead-letter queue."""
    error_code = "MessageNotFound"

    def __init__(
        self,
        identity: str,
        entity_path: str,
        message: Optional[str] = None
    ):
        message = message or f"Message {identity} not found in '{entity_path}'"
        details = {"identity": identity, "entity_path": entity_path}
        super().__init__(message, details=details)


class NamespaceNotFoundError(NotFoundError):
    """Raised when a namespace was never registered."""
    error_code = "NamespaceNotFound"

    def __init__(self, namespace: str, message: Optional[str] = None):
        message = message or f"Namespace '{namespace}' is not registered"
        super().__init__(message, details={"namespace": namespace})


# ========== Broker Errors ==========

class OperationTimeoutError(ExplorerError):
    """Raised when a bounded wait is exceeded."""
    error_code = "OperationTimeout"
    is_transient = True

    def __init__(
        self,
        operation: str,
        timeout_seconds: float,
        message: Optional[str] = None
    ):
        message = message or f"Operation '{operation}' timed out after {timeout_seconds}s"
        details = {"operation": operation, "timeout_seconds": timeout_seconds}
        super().__init__(message, details=details)


class BrokerProtocolError(ExplorerError):
    """Raised on a non-success HTTP status or malformed broker metadata."""
    error_code = "BrokerProtocolError"

    # Keep error payloads readable in logs and API responses
    BODY_EXCERPT_LIMIT = 500

    def __init__(
        self,
        operation: str,
        status_code: Optional[int] = None,
        body: str = "",
        message: Optional[str] = None
    ):
        excerpt = body[:self.BODY_EXCERPT_LIMIT]
        if message is None:
            if status_code is not None:
                message = f"REST {operation} failed: {status_code} - {excerpt}"
            else:
                message = f"REST {operation} failed: {excerpt}"
        details = {"operation": operation, "status_code": status_code, "body": excerpt}
        super().__init__(message, details=details)
        self.status_code = status_code


# ========== Outcome Errors ==========

class PartialSuccessError(ExplorerError):
    """
    Raised when a message was resent but removal of the dead-letter copy
    could not be confirmed.

    Callers should warn that the message may still exist in the dead-letter
    queue rather than report success or failure.
    """
    error_code = "PartialSuccess"

    def __init__(
        self,
        resent_message_id: Optional[str],
        entity_path: str,
        message: Optional[str] = None
    ):
        message = message or (
            f"Message resent as '{resent_message_id}' but it may still exist in '{entity_path}'"
        )
        details = {"resent_message_id": resent_message_id, "entity_path": entity_path}
        super().__init__(message, details=details)
        self.resent_message_id = resent_message_id


class PurgeInterruptedError(ExplorerError):
    """Raised when a purge fails part way through."""
    error_code = "PurgeInterrupted"

    def __init__(
        self,
        entity_path: str,
        completed_count: int,
        reason: str,
        message: Optional[str] = None
    ):
        message = message or (
            f"Purge of '{entity_path}' stopped after {completed_count} messages: {reason}"
        )
        details = {
            "entity_path": entity_path,
            "completed_count": completed_count,
            "reason": reason,
        }
        super().__init__(message, details=details)
        self.completed_count = completed_count


# ========== Utility Functions ==========

def is_transient_error(error: Exception) -> bool:
    """
    Determine if an error is transient and the whole call may be repeated.

    Args:
        error: Exception to check

    Returns:
        True if error is transient
    """
    if isinstance(error, ExplorerError):
        return error.is_transient

    return isinstance(error, (ConnectionError, TimeoutError))
