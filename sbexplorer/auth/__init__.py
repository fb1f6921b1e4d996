"""
SBExplorer Authentication Module.

Shared access signatures for connection-string namespaces, federated
tokens for the rest, and encrypted storage of registered namespaces.

Author: SBExplorer Contributors
Date: 2026-01-15
"""

from sbexplorer.auth.exceptions import (
    AuthError,
    InvalidConnectionStringError,
    TokenAcquisitionError,
)
from sbexplorer.auth.shared_access import (
    ConnectionString,
    parse_connection_string,
    generate_sas_token,
)
from sbexplorer.auth.credentials import CredentialResolver
from sbexplorer.auth.secret_store import SecretStore

__all__ = [
    # Exceptions
    "AuthError",
    "InvalidConnectionStringError",
    "TokenAcquisitionError",
    # Shared access
    "ConnectionString",
    "parse_connection_string",
    "generate_sas_token",
    # Credentials
    "CredentialResolver",
    "SecretStore",
]
