"""
Explorer Service

Top-level service object. Owns the credential resolver, client pool,
secret store, REST client and resubmission engine, and exposes namespace
management, enumeration, peek, resubmit, delete and purge.

Author: SBExplorer Contributors
Date: 2026-01-20
"""

from pathlib import Path
from typing import Dict, List, Optional

import httpx

from sbexplorer.auth.credentials import CredentialResolver, TokenSource
from sbexplorer.auth.exceptions import InvalidConnectionStringError
from sbexplorer.auth.secret_store import SecretStore
from sbexplorer.auth.shared_access import looks_like_connection_string
from sbexplorer.core.config_manager import ExplorerConfig

from .access import open_receiver
from .client_pool import BrokerClientPool, ClientFactory, default_admin_factory, default_connection_factory
from .engine import ResubmissionEngine
from .exceptions import ConfigurationError, NamespaceNotFoundError
from .logging_utils import StructuredLogger
from .metrics import ExplorerMetrics, get_metrics
from .models import (
    EntityTarget,
    MessageIdentity,
    NamespaceInfo,
    NormalizedMessage,
    QueueInfo,
    ResubmitResult,
    SubscriptionInfo,
    TopicInfo,
)
from .resilience import bounded, with_timeout
from .rest_client import RestFallbackClient


logger = StructuredLogger('sbexplorer.servicebus.service')

MAX_PEEK_COUNT = 100

# Deadline for a whole listing, paging and runtime lookups included
ENUMERATION_TIMEOUT_SECONDS = 120.0


class ExplorerService:
    """
    Facade over every dead-letter operation.

    Attributes:
        config: Active configuration
        _namespaces: Registered canonical namespaces, mapped to whether they
            use a shared access key
    """

    def __init__(
        self,
        config: Optional[ExplorerConfig] = None,
        secret_store: Optional[SecretStore] = None,
        token_source: Optional[TokenSource] = None,
        connection_factory: ClientFactory = default_connection_factory,
        admin_factory: ClientFactory = default_admin_factory,
        rest_transport: Optional[httpx.AsyncBaseTransport] = None,
        metrics: Optional[ExplorerMetrics] = None,
    ):
        self.config = config or ExplorerConfig()
        broker = self.config.broker
        self._store = secret_store
        self._metrics = metrics or get_metrics()
        self._resolver = CredentialResolver(
            token_source=token_source,
            scope=broker.aad_scope,
            sas_validity_seconds=broker.sas_validity_seconds,
            namespace_suffix=broker.default_suffix,
        )
        self._pool = BrokerClientPool(self._resolver, connection_factory, admin_factory)
        self._rest = RestFallbackClient(
            self._resolver,
            timeout_seconds=broker.rest_timeout_seconds,
            transport=rest_transport,
        )
        self._engine = ResubmissionEngine(self._pool, broker, rest_client=self._rest, metrics=self._metrics)
        self._namespaces: Dict[str, bool] = {}
        self._disposed = False

    @classmethod
    def from_config(cls, config: ExplorerConfig, **kwargs) -> "ExplorerService":
        """Build a service whose secret store lives at the configured paths."""
        store = SecretStore(
            Path(config.secrets.store_path).expanduser(),
            Path(config.secrets.key_path).expanduser(),
        )
        return cls(config=config, secret_store=store, **kwargs)

    @property
    def pool(self) -> BrokerClientPool:
        return self._pool

    @property
    def engine(self) -> ResubmissionEngine:
        return self._engine

    @property
    def metrics(self) -> ExplorerMetrics:
        return self._metrics

    def canonical(self, namespace: str) -> str:
        return self._resolver.canonical(namespace)

    # ========== Namespace Management ==========

    async def restore(self) -> List[NamespaceInfo]:
        """
        Re-register every namespace saved in the secret store.

        Entries whose connection string no longer parses are skipped with
        an error log.
        """
        if self._store is None:
            return []
        entries = self._store.load()
        for namespace, connection_string in entries.items():
            if connection_string:
                try:
                    namespace = await self._pool.register_secret(connection_string)
                except InvalidConnectionStringError as e:
                    logger.error(
                        f"Skipping stored namespace {namespace}: {e.message}",
                        namespace=namespace
                    )
                    continue
                self._namespaces[namespace] = True
            else:
                self._namespaces[self.canonical(namespace)] = False
        logger.info(f"Restored {len(self._namespaces)} namespaces", namespace_count=len(self._namespaces))
        return self.list_namespaces()

    async def add_namespace(self, namespace_or_connection_string: str) -> NamespaceInfo:
        """
        Register a namespace by name (federated credential) or by
        connection string (shared access key).
        """
        text = (namespace_or_connection_string or "").strip()
        if looks_like_connection_string(text):
            return await self.register_connection_string(text)

        namespace = self.canonical(text)
        await self._pool.evict(namespace)
        self._resolver.unregister(namespace)
        self._namespaces[namespace] = False
        if self._store is not None:
            self._store.set(namespace, None)
        logger.info(f"Added namespace {namespace}", namespace=namespace, auth_mode="federated")
        return NamespaceInfo(namespace=namespace, auth_mode="federated")

    async def register_connection_string(self, connection_string: str) -> NamespaceInfo:
        """
        Register a shared access connection string.

        Raises:
            InvalidConnectionStringError: If the string is malformed
        """
        namespace = await self._pool.register_secret(connection_string)
        self._namespaces[namespace] = True
        if self._store is not None:
            self._store.set(namespace, connection_string.strip())
        logger.info(f"Added namespace {namespace}", namespace=namespace, auth_mode="shared_access")
        return NamespaceInfo(namespace=namespace, auth_mode="shared_access")

    async def remove_namespace(self, namespace: str) -> None:
        """
        Forget a namespace, its secret and its cached clients.

        Raises:
            NamespaceNotFoundError: If the namespace is not registered
        """
        namespace = self.canonical(namespace)
        stored = self._store is not None and self._store.contains(namespace)
        if namespace not in self._namespaces and not stored:
            raise NamespaceNotFoundError(namespace)
        self._namespaces.pop(namespace, None)
        self._resolver.unregister(namespace)
        await self._pool.evict(namespace)
        if self._store is not None:
            self._store.delete(namespace)
        logger.info(f"Removed namespace {namespace}", namespace=namespace)

    def list_namespaces(self) -> List[NamespaceInfo]:
        return [
            NamespaceInfo(namespace=ns, auth_mode="shared_access" if shared else "federated")
            for ns, shared in sorted(self._namespaces.items())
        ]

    # ========== Enumeration ==========

    @with_timeout(ENUMERATION_TIMEOUT_SECONDS)
    async def list_queues(self, namespace: str) -> List[QueueInfo]:
        admin = await self._pool.admin_client_for(namespace)
        timeout = self.config.broker.peek_timeout_seconds
        queues: List[QueueInfo] = []
        async for queue in admin.list_queues():
            runtime = await bounded(
                admin.get_queue_runtime_properties(queue.name), timeout, "get_queue_runtime_properties"
            )
            queues.append(QueueInfo(
                name=queue.name,
                active_message_count=runtime.active_message_count or 0,
                dead_letter_message_count=runtime.dead_letter_message_count or 0,
            ))
        return queues

    @with_timeout(ENUMERATION_TIMEOUT_SECONDS)
    async def list_topics(self, namespace: str) -> List[TopicInfo]:
        """Topics with subscription count and counters summed over subscriptions."""
        admin = await self._pool.admin_client_for(namespace)
        timeout = self.config.broker.peek_timeout_seconds
        topics: List[TopicInfo] = []
        async for topic in admin.list_topics():
            runtime = await bounded(
                admin.get_topic_runtime_properties(topic.name), timeout, "get_topic_runtime_properties"
            )
            subscriptions = await self._subscription_infos(admin, topic.name)
            topics.append(TopicInfo(
                name=topic.name,
                subscription_count=runtime.subscription_count or 0,
                active_message_count=sum(s.active_message_count for s in subscriptions),
                dead_letter_message_count=sum(s.dead_letter_message_count for s in subscriptions),
            ))
        return topics

    @with_timeout(ENUMERATION_TIMEOUT_SECONDS)
    async def list_subscriptions(self, namespace: str, topic_name: str) -> List[SubscriptionInfo]:
        if not topic_name:
            raise ConfigurationError("a topic name is required to list subscriptions")
        admin = await self._pool.admin_client_for(namespace)
        return await self._subscription_infos(admin, topic_name)

    async def _subscription_infos(self, admin, topic_name: str) -> List[SubscriptionInfo]:
        timeout = self.config.broker.peek_timeout_seconds
        subscriptions: List[SubscriptionInfo] = []
        async for subscription in admin.list_subscriptions(topic_name):
            runtime = await bounded(
                admin.get_subscription_runtime_properties(topic_name, subscription.name),
                timeout,
                "get_subscription_runtime_properties",
            )
            subscriptions.append(SubscriptionInfo(
                name=subscription.name,
                topic_name=topic_name,
                active_message_count=runtime.active_message_count or 0,
                dead_letter_message_count=runtime.dead_letter_message_count or 0,
            ))
        return subscriptions

    # ========== Peek ==========

    async def peek_active(
        self,
        namespace: str,
        target: EntityTarget,
        max_count: int = MAX_PEEK_COUNT,
    ) -> List[NormalizedMessage]:
        """Peek messages on the entity itself."""
        return await self._peek(namespace, target, max_count, dead_letter=False)

    async def peek_dead_letter(
        self,
        namespace: str,
        target: EntityTarget,
        max_count: int = MAX_PEEK_COUNT,
    ) -> List[NormalizedMessage]:
        """Peek messages on the entity's dead-letter queue."""
        return await self._peek(namespace, target, max_count, dead_letter=True)

    async def _peek(
        self,
        namespace: str,
        target: EntityTarget,
        max_count: int,
        dead_letter: bool,
    ) -> List[NormalizedMessage]:
        if not 1 <= max_count <= MAX_PEEK_COUNT:
            raise ConfigurationError(f"max_count must be between 1 and {MAX_PEEK_COUNT}, got {max_count}")
        connection = await self._pool.connection_for(namespace)
        async with open_receiver(
            connection,
            target,
            dead_letter=dead_letter,
            call_timeout=self.config.broker.peek_timeout_seconds,
        ) as receiver:
            messages = await receiver.peek(max_count, from_sequence=1)
        logger.debug(
            f"Peeked {len(messages)} messages from {receiver.entity_path}",
            entity_path=receiver.entity_path,
            peeked_count=len(messages)
        )
        return messages

    # ========== Relocation ==========

    async def resubmit(
        self,
        namespace: str,
        target: EntityTarget,
        identity: MessageIdentity,
    ) -> ResubmitResult:
        return await self._engine.resubmit(namespace, target, identity)

    async def delete_dead_letter(
        self,
        namespace: str,
        target: EntityTarget,
        identity: MessageIdentity,
    ) -> None:
        await self._engine.delete_dead_letter(namespace, target, identity)

    async def purge_dead_letter(self, namespace: str, target: EntityTarget) -> int:
        return await self._engine.purge_dead_letter(namespace, target)

    # ========== Lifecycle ==========

    async def dispose(self) -> None:
        """Close every client. Safe to call more than once."""
        if self._disposed:
            return
        self._disposed = True
        await self._pool.dispose_all()
        try:
            await self._rest.close()
        except Exception as e:
            logger.warning(f"Failed to close REST client: {e}", error_type=type(e).__name__)
        await self._resolver.close()
