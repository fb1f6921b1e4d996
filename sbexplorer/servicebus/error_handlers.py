"""
FastAPI Exception Handlers for the Explorer API

Maps explorer exceptions to standardized HTTP error responses.

Author: SBExplorer Contributors
Date: 2026-01-20
"""

from fastapi import Request, status
from fastapi.responses import JSONResponse

from sbexplorer.auth.exceptions import AuthError, InvalidConnectionStringError

from .exceptions import (
    ExplorerError,
    ConfigurationError,
    InvalidLockHandleError,
    NotFoundError,
    OperationTimeoutError,
    BrokerProtocolError,
    PartialSuccessError,
    PurgeInterruptedError,
)
from .error_models import ErrorResponse
from .logging_utils import CorrelationContext, StructuredLogger


logger = StructuredLogger('sbexplorer.servicebus.api.errors')


# Exception to HTTP status code mapping; subclasses listed before their bases
EXCEPTION_STATUS_CODES = {
    ConfigurationError: status.HTTP_400_BAD_REQUEST,
    InvalidConnectionStringError: status.HTTP_400_BAD_REQUEST,
    AuthError: status.HTTP_401_UNAUTHORIZED,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    InvalidLockHandleError: status.HTTP_409_CONFLICT,
    OperationTimeoutError: status.HTTP_504_GATEWAY_TIMEOUT,
    BrokerProtocolError: status.HTTP_502_BAD_GATEWAY,
    PartialSuccessError: status.HTTP_207_MULTI_STATUS,
    PurgeInterruptedError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def get_status_code_for_exception(exc: Exception) -> int:
    """
    Get HTTP status code for exception type.

    Args:
        exc: Exception instance

    Returns:
        HTTP status code
    """
    exc_type = type(exc)
    if exc_type in EXCEPTION_STATUS_CODES:
        return EXCEPTION_STATUS_CODES[exc_type]

    for exception_type, status_code in EXCEPTION_STATUS_CODES.items():
        if isinstance(exc, exception_type):
            return status_code

    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def explorer_exception_handler(
    request: Request,
    exc: ExplorerError
) -> JSONResponse:
    """
    Handle ExplorerError exceptions.

    Args:
        request: FastAPI request
        exc: ExplorerError instance

    Returns:
        JSONResponse with standardized error format
    """
    correlation_id = CorrelationContext.get_correlation_id()
    status_code = get_status_code_for_exception(exc)

    error_response = ErrorResponse.from_exception(exc, correlation_id)

    logger.log_error(
        operation="api_error",
        error_type=type(exc).__name__,
        error_message=str(exc),
        error_code=exc.error_code,
        status_code=status_code,
        correlation_id=correlation_id,
        path=str(request.url.path)
    )

    return JSONResponse(
        status_code=status_code,
        content=error_response.model_dump(exclude_none=True)
    )


async def generic_exception_handler(
    request: Request,
    exc: Exception
) -> JSONResponse:
    """Handle exceptions outside the explorer hierarchy."""
    correlation_id = CorrelationContext.get_correlation_id()

    error_response = ErrorResponse.from_exception(exc, correlation_id)

    logger.error(
        f"Unexpected error: {exc}",
        exc_info=True,
        operation="unexpected_error",
        error_type=type(exc).__name__,
        path=str(request.url.path)
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_response.model_dump(exclude_none=True)
    )


def register_exception_handlers(app):
    """
    Register exception handlers with a FastAPI app.

    Args:
        app: FastAPI app instance
    """
    app.add_exception_handler(ExplorerError, explorer_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
