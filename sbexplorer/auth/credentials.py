"""
Credential resolution for SBExplorer.

Chooses between a registered shared secret (connection string) and a
federated token source for each namespace, and produces the
``Authorization`` header for REST calls.

Author: SBExplorer Contributors
Date: 2026-01-15
"""

import logging
from typing import Any, Dict, List, Optional, Protocol

from sbexplorer.auth.exceptions import TokenAcquisitionError
from sbexplorer.auth.shared_access import (
    DEFAULT_VALIDITY_SECONDS,
    ConnectionString,
    generate_sas_token,
    parse_connection_string,
)
from sbexplorer.servicebus.addressing import DEFAULT_NAMESPACE_SUFFIX, canonical_namespace

logger = logging.getLogger(__name__)


SERVICE_BUS_SCOPE = "https://servicebus.azure.net/.default"


class TokenSource(Protocol):
    """Anything with an async ``get_token(*scopes)``, such as azure-identity credentials."""

    async def get_token(self, *scopes: str, **kwargs: Any) -> Any:
        ...


def default_token_source() -> TokenSource:
    """Build the federated credential used when no shared secret is registered."""
    from azure.identity.aio import DefaultAzureCredential

    return DefaultAzureCredential()


class CredentialResolver:
    """
    Holds shared secrets per namespace and signs REST calls.

    Tokens and signatures are computed fresh on every call; nothing is
    cached.
    """

    def __init__(
        self,
        token_source: Optional[TokenSource] = None,
        scope: str = SERVICE_BUS_SCOPE,
        sas_validity_seconds: int = DEFAULT_VALIDITY_SECONDS,
        namespace_suffix: str = DEFAULT_NAMESPACE_SUFFIX,
    ):
        self._token_source = token_source
        self._scope = scope
        self._sas_validity_seconds = sas_validity_seconds
        self._suffix = namespace_suffix
        self._secrets: Dict[str, ConnectionString] = {}

    @property
    def token_source(self) -> TokenSource:
        """Federated credential, created on first use."""
        if self._token_source is None:
            self._token_source = default_token_source()
        return self._token_source

    def canonical(self, namespace: str) -> str:
        return canonical_namespace(namespace, self._suffix)

    def register(self, connection_string: str) -> str:
        """
        Register a connection string.

        Returns:
            Canonical namespace the secret belongs to

        Raises:
            InvalidConnectionStringError: If the string is malformed
        """
        parsed = parse_connection_string(connection_string)
        namespace = canonical_namespace(parsed.endpoint, self._suffix)
        self._secrets[namespace] = parsed
        logger.info(f"Registered shared access key '{parsed.key_name}' for {namespace}")
        return namespace

    def unregister(self, namespace: str) -> bool:
        """Forget the secret for a namespace. Returns whether one existed."""
        return self._secrets.pop(self.canonical(namespace), None) is not None

    def has_secret(self, namespace: str) -> bool:
        return self.canonical(namespace) in self._secrets

    def secret_for(self, namespace: str) -> Optional[ConnectionString]:
        return self._secrets.get(self.canonical(namespace))

    def namespaces(self) -> List[str]:
        return sorted(self._secrets)

    async def auth_header_for(self, namespace: str) -> str:
        """
        Build an ``Authorization`` header value for a REST call.

        Args:
            namespace: Namespace the call targets

        Returns:
            ``SharedAccessSignature ...`` or ``Bearer ...``

        Raises:
            TokenAcquisitionError: If the token source fails or returns no token
        """
        namespace = self.canonical(namespace)
        secret = self._secrets.get(namespace)
        if secret is not None:
            return generate_sas_token(
                f"https://{namespace}",
                secret.key_name,
                secret.key,
                validity_seconds=self._sas_validity_seconds,
            )

        try:
            token = await self.token_source.get_token(self._scope)
        except Exception as e:
            logger.error(f"Token request for {namespace} failed: {e}")
            raise TokenAcquisitionError(namespace, str(e)) from e

        access_token = getattr(token, "token", None)
        if not access_token:
            raise TokenAcquisitionError(namespace, "identity provider returned no token")
        return f"Bearer {access_token}"

    async def close(self) -> None:
        """Close the token source if it holds resources."""
        close = getattr(self._token_source, "close", None)
        if close is None:
            return
        try:
            await close()
        except Exception as e:
            logger.warning(f"Failed to close token source: {e}")
