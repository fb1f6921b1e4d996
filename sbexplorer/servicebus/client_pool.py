"""
Broker Client Pool

Caches one messaging client and one administration client per canonical
namespace. Clients live for the whole process and are closed by
``dispose_all``.

Author: SBExplorer Contributors
Date: 2026-01-17
"""

import asyncio
from typing import Any, Callable, Dict, List, Optional

from azure.servicebus.aio import ServiceBusClient
from azure.servicebus.aio.management import ServiceBusAdministrationClient

from sbexplorer.auth.credentials import CredentialResolver
from sbexplorer.auth.shared_access import ConnectionString

from .logging_utils import StructuredLogger


logger = StructuredLogger('sbexplorer.servicebus.client_pool')

ClientFactory = Callable[[str, Optional[ConnectionString], Any], Any]


def default_connection_factory(
    namespace: str,
    secret: Optional[ConnectionString],
    credential: Any,
) -> ServiceBusClient:
    """Messaging client from the registered secret, or the federated credential."""
    if secret is not None:
        return ServiceBusClient.from_connection_string(secret.raw)
    return ServiceBusClient(fully_qualified_namespace=namespace, credential=credential)


def default_admin_factory(
    namespace: str,
    secret: Optional[ConnectionString],
    credential: Any,
) -> ServiceBusAdministrationClient:
    """Administration client from the registered secret, or the federated credential."""
    if secret is not None:
        return ServiceBusAdministrationClient.from_connection_string(secret.raw)
    return ServiceBusAdministrationClient(fully_qualified_namespace=namespace, credential=credential)


class BrokerClientPool:
    """
    Registry of broker clients keyed by canonical namespace.

    Construction happens under one asyncio lock, so concurrent first callers
    for a namespace share a single client.

    Attributes:
        _connections: Namespace to messaging client
        _admin_clients: Namespace to administration client
        _lock: Guards construction and eviction
    """

    def __init__(
        self,
        resolver: CredentialResolver,
        connection_factory: ClientFactory = default_connection_factory,
        admin_factory: ClientFactory = default_admin_factory,
    ):
        self._resolver = resolver
        self._connection_factory = connection_factory
        self._admin_factory = admin_factory
        self._connections: Dict[str, Any] = {}
        self._admin_clients: Dict[str, Any] = {}
        self._lock = asyncio.Lock()

    @property
    def resolver(self) -> CredentialResolver:
        return self._resolver

    async def connection_for(self, namespace: str) -> Any:
        """Messaging client for ``namespace``, created on first use."""
        return await self._get_or_create(namespace, self._connections, self._connection_factory, "connection")

    async def admin_client_for(self, namespace: str) -> Any:
        """Administration client for ``namespace``, created on first use."""
        return await self._get_or_create(namespace, self._admin_clients, self._admin_factory, "admin client")

    async def _get_or_create(
        self,
        namespace: str,
        cache: Dict[str, Any],
        factory: ClientFactory,
        kind: str,
    ) -> Any:
        namespace = self._resolver.canonical(namespace)
        async with self._lock:
            client = cache.get(namespace)
            if client is None:
                secret = self._resolver.secret_for(namespace)
                credential = None if secret is not None else self._resolver.token_source
                client = factory(namespace, secret, credential)
                cache[namespace] = client
                logger.info(
                    f"Created {kind} for {namespace}",
                    namespace=namespace,
                    auth_mode="shared_access" if secret is not None else "federated"
                )
            return client

    async def register_secret(self, connection_string: str) -> str:
        """
        Register a connection string and drop clients built with old credentials.

        Returns:
            Canonical namespace the secret belongs to
        """
        namespace = self._resolver.register(connection_string)
        await self.evict(namespace)
        return namespace

    async def evict(self, namespace: str) -> None:
        """Close and forget the cached clients for ``namespace``."""
        namespace = self._resolver.canonical(namespace)
        async with self._lock:
            stale = [
                client
                for client in (
                    self._connections.pop(namespace, None),
                    self._admin_clients.pop(namespace, None),
                )
                if client is not None
            ]
        for client in stale:
            await self._close_quietly(namespace, client)

    def cached_namespaces(self) -> List[str]:
        return sorted(set(self._connections) | set(self._admin_clients))

    async def dispose_all(self) -> None:
        """Close every cached client. Safe to call repeatedly."""
        async with self._lock:
            stale = list(self._connections.items()) + list(self._admin_clients.items())
            self._connections.clear()
            self._admin_clients.clear()
        for namespace, client in stale:
            await self._close_quietly(namespace, client)
        if stale:
            logger.info(f"Disposed {len(stale)} broker clients", client_count=len(stale))

    async def _close_quietly(self, namespace: str, client: Any) -> None:
        try:
            await client.close()
        except Exception as e:
            logger.warning(
                f"Failed to close client for {namespace}: {e}",
                namespace=namespace,
                error_type=type(e).__name__
            )
