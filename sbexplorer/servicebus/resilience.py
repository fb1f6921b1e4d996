"""
Resilience Utilities

Bounded waits for broker calls. Every call that can block on the broker
goes through ``bounded`` or ``with_timeout`` so that a stalled link surfaces
as ``OperationTimeoutError`` instead of hanging.

Author: SBExplorer Contributors
Date: 2026-01-16
"""

import asyncio
from functools import wraps
from typing import Any, Awaitable, Callable, TypeVar

from .exceptions import OperationTimeoutError
from .logging_utils import StructuredLogger


logger = StructuredLogger('sbexplorer.servicebus.resilience')

T = TypeVar('T')

# Slack added on top of a receive wait window before the call is abandoned
RECEIVE_GRACE_SECONDS = 20.0


async def bounded(awaitable: Awaitable[T], timeout: float, operation: str) -> T:
    """
    Await with a deadline.

    Args:
        awaitable: Broker call to wait for
        timeout: Deadline in seconds
        operation: Name used in the error and log

    Raises:
        OperationTimeoutError: If the deadline passes
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        logger.error(
            f"Operation timeout: {operation}",
            operation_name=operation,
            timeout_seconds=timeout
        )
        raise OperationTimeoutError(operation=operation, timeout_seconds=timeout) from None


def with_timeout(timeout_seconds: float):
    """
    Decorator to add timeout handling to async functions.

    Usage:
        @with_timeout(30.0)
        async def list_queues(...):
            ...
    """
    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            return await bounded(func(*args, **kwargs), timeout_seconds, func.__name__)
        return wrapper
    return decorator
