"""
Authentication exceptions for SBExplorer.

Author: SBExplorer Contributors
Date: 2026-01-14
"""

from typing import Optional

from sbexplorer.servicebus.exceptions import ExplorerError


class AuthError(ExplorerError):
    """Base exception for credential and token failures."""
    error_code = "AuthenticationFailed"

    def __init__(self, message: str, namespace: Optional[str] = None):
        details = {"namespace": namespace} if namespace else {}
        super().__init__(message, details=details)


class InvalidConnectionStringError(AuthError):
    """Raised when a connection string lacks an endpoint, key name or key."""
    error_code = "InvalidConnectionString"

    def __init__(self, reason: str):
        super().__init__(f"Invalid connection string: {reason}")


class TokenAcquisitionError(AuthError):
    """Raised when the identity provider fails or returns no token."""
    error_code = "TokenAcquisitionFailed"

    def __init__(self, namespace: str, reason: str):
        super().__init__(
            f"Failed to get authentication token for '{namespace}': {reason}",
            namespace=namespace,
        )
