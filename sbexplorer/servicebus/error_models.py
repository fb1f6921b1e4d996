"""
Error Response Models for the Explorer API

Standardized error response format for API endpoints.

Author: SBExplorer Contributors
Date: 2026-01-20
"""

from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class ErrorDetails(BaseModel):
    """Additional error context details."""

    entity_path: Optional[str] = Field(None, description="Entity or dead-letter path")
    namespace: Optional[str] = Field(None, description="Namespace the call targeted")
    identity: Optional[str] = Field(None, description="Sequence number and/or message id searched for")
    correlation_id: Optional[str] = Field(None, description="Request correlation identifier")
    operation: Optional[str] = Field(None, description="Operation that failed")
    reason: Optional[str] = Field(None, description="Failure reason")

    # Broker protocol errors
    status_code: Optional[int] = None
    body: Optional[str] = None

    # Timeout errors
    timeout_seconds: Optional[float] = None

    # Outcome errors
    resent_message_id: Optional[str] = None
    completed_count: Optional[int] = None

    model_config = ConfigDict(extra="allow")


class ErrorInfo(BaseModel):
    """Error information in API response."""

    code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    details: ErrorDetails = Field(default_factory=ErrorDetails, description="Additional context")

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "code": "MessageNotFound",
            "message": "Message sequence_number=42 not found in 'orders/$deadletterqueue'",
            "details": {
                "identity": "sequence_number=42",
                "entity_path": "orders/$deadletterqueue",
                "correlation_id": "abc-123"
            }
        }
    })


class ErrorResponse(BaseModel):
    """Standard API error response format."""

    error: ErrorInfo = Field(..., description="Error information")

    @classmethod
    def from_exception(cls, exc: Exception, correlation_id: Optional[str] = None) -> "ErrorResponse":
        """
        Create ErrorResponse from exception.

        Args:
            exc: Exception to convert
            correlation_id: Optional correlation ID to include

        Returns:
            ErrorResponse instance
        """
        from .exceptions import ExplorerError

        if isinstance(exc, ExplorerError):
            error_dict = exc.to_dict()["error"]
            details_dict = dict(error_dict.get("details", {}))
            if correlation_id:
                details_dict["correlation_id"] = correlation_id
            return cls(
                error=ErrorInfo(
                    code=error_dict["code"],
                    message=error_dict["message"],
                    details=ErrorDetails(**details_dict)
                )
            )

        details_dict = {}
        if correlation_id:
            details_dict["correlation_id"] = correlation_id
        return cls(
            error=ErrorInfo(
                code="InternalError",
                message=str(exc) or "An unexpected error occurred",
                details=ErrorDetails(**details_dict)
            )
        )
