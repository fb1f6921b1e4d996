"""
Unit Tests for the Explorer Service

Tests for namespace registration and restore, entity enumeration, peek
bounds and disposal.

Author: SBExplorer Contributors
Date: 2026-01-22
"""

import asyncio
from types import SimpleNamespace

import pytest

from sbexplorer.auth.exceptions import InvalidConnectionStringError
from sbexplorer.core.config_manager import ExplorerConfig
from sbexplorer.servicebus.exceptions import ConfigurationError, NamespaceNotFoundError, OperationTimeoutError
from sbexplorer.servicebus.models import NamespaceInfo, QueueTarget, SubscriptionTarget
from sbexplorer.servicebus.resilience import with_timeout
from sbexplorer.servicebus.service import ExplorerService

from fakes import CANONICAL_NAMESPACE, CONNECTION_STRING, FakeAdminClient


QUEUE = QueueTarget(name="orders")


class TestNamespaceManagement:
    """Tests for adding, removing and restoring namespaces."""

    @pytest.mark.asyncio
    async def test_add_federated_namespace(self, make_service, secret_store):
        service = make_service(secret_store=secret_store)

        info = await service.add_namespace("TestNs")

        assert info == NamespaceInfo(namespace=CANONICAL_NAMESPACE, auth_mode="federated")
        assert service.list_namespaces() == [info]
        assert secret_store.load() == {CANONICAL_NAMESPACE: None}
        await service.dispose()

    @pytest.mark.asyncio
    async def test_add_connection_string(self, make_service, secret_store, broker):
        service = make_service(secret_store=secret_store)

        info = await service.add_namespace(CONNECTION_STRING)

        assert info.auth_mode == "shared_access"
        assert info.namespace == CANONICAL_NAMESPACE
        assert secret_store.get(CANONICAL_NAMESPACE) == CONNECTION_STRING
        await service.pool.connection_for(CANONICAL_NAMESPACE)
        assert broker.factory_calls[-1][1].key_name == "RootManageSharedAccessKey"
        await service.dispose()

    @pytest.mark.asyncio
    async def test_invalid_connection_string(self, make_service, secret_store):
        service = make_service(secret_store=secret_store)
        with pytest.raises(InvalidConnectionStringError):
            await service.register_connection_string("Endpoint=sb://testns/;SharedAccessKeyName=x")
        assert secret_store.load() == {}
        await service.dispose()

    @pytest.mark.asyncio
    async def test_switching_to_federated_drops_secret(self, make_service, secret_store):
        service = make_service(secret_store=secret_store)
        await service.add_namespace(CONNECTION_STRING)

        info = await service.add_namespace("testns")

        assert info.auth_mode == "federated"
        assert service.pool.resolver.secret_for("testns") is None
        assert secret_store.get(CANONICAL_NAMESPACE) is None
        await service.dispose()

    @pytest.mark.asyncio
    async def test_remove_namespace(self, make_service, secret_store):
        service = make_service(secret_store=secret_store)
        await service.add_namespace(CONNECTION_STRING)

        await service.remove_namespace("testns")

        assert service.list_namespaces() == []
        assert not service.pool.resolver.has_secret("testns")
        assert secret_store.load() == {}
        await service.dispose()

    @pytest.mark.asyncio
    async def test_remove_unknown_namespace(self, service):
        with pytest.raises(NamespaceNotFoundError):
            await service.remove_namespace("nowhere")

    @pytest.mark.asyncio
    async def test_restore_from_store(self, make_service, secret_store):
        secret_store.set(CANONICAL_NAMESPACE, CONNECTION_STRING)
        secret_store.set("federated.servicebus.windows.net", None)
        secret_store.set("broken.servicebus.windows.net", "Endpoint=;nonsense")
        service = make_service(secret_store=secret_store)

        restored = await service.restore()

        assert restored == [
            NamespaceInfo(namespace="federated.servicebus.windows.net", auth_mode="federated"),
            NamespaceInfo(namespace=CANONICAL_NAMESPACE, auth_mode="shared_access"),
        ]
        assert service.pool.resolver.has_secret(CANONICAL_NAMESPACE)
        await service.dispose()

    @pytest.mark.asyncio
    async def test_restore_without_store(self, service):
        assert await service.restore() == []

    def test_from_config_uses_configured_store(self, tmp_path, metrics):
        config = ExplorerConfig(secrets={
            "store_path": str(tmp_path / "store.enc"),
            "key_path": str(tmp_path / "store.key"),
        })
        service = ExplorerService.from_config(config, metrics=metrics)
        assert service._store is not None


class TestEnumeration:
    """Tests for listing entities."""

    @pytest.fixture(autouse=True)
    def populate(self, broker):
        orders = broker.entities["orders"]
        orders.active_message()
        orders.dead_letter_message()
        orders.dead_letter_message()
        broker.add_queue("invoices")
        audit = broker.entities["events/Subscriptions/audit"]
        audit.dead_letter_message()
        billing = broker.add_subscription("events", "billing")
        billing.active_message()
        billing.active_message()

    @pytest.mark.asyncio
    async def test_list_queues(self, service):
        queues = await service.list_queues("testns")
        assert [(q.name, q.active_message_count, q.dead_letter_message_count) for q in queues] == [
            ("orders", 1, 2),
            ("invoices", 0, 0),
        ]

    @pytest.mark.asyncio
    async def test_list_topics_sums_subscriptions(self, service):
        [topic] = await service.list_topics("testns")
        assert topic.name == "events"
        assert topic.subscription_count == 2
        assert topic.active_message_count == 2
        assert topic.dead_letter_message_count == 1

    @pytest.mark.asyncio
    async def test_list_subscriptions(self, service):
        subscriptions = await service.list_subscriptions("testns", "events")
        assert [(s.name, s.topic_name, s.dead_letter_message_count) for s in subscriptions] == [
            ("audit", "events", 1),
            ("billing", "events", 0),
        ]

    @pytest.mark.asyncio
    async def test_list_subscriptions_requires_topic(self, service):
        with pytest.raises(ConfigurationError):
            await service.list_subscriptions("testns", "")

    @pytest.mark.parametrize("name", ["list_queues", "list_topics", "list_subscriptions"])
    def test_listings_have_a_deadline(self, name):
        assert getattr(ExplorerService, name).__wrapped__ is not None

    @pytest.mark.asyncio
    async def test_stalled_listing_times_out(self, service, monkeypatch):
        async def stalled(self):
            await asyncio.sleep(5)
            yield SimpleNamespace(name="never")

        monkeypatch.setattr(FakeAdminClient, "list_queues", stalled)
        list_queues = with_timeout(0.05)(ExplorerService.list_queues.__wrapped__)

        with pytest.raises(OperationTimeoutError) as exc_info:
            await list_queues(service, "testns")
        assert exc_info.value.details["operation"] == "list_queues"


class TestPeek:
    """Tests for peeking entities and dead-letter queues."""

    @pytest.mark.asyncio
    async def test_peek_dead_letter(self, service, broker):
        entity = broker.entities["orders"]
        entity.active_message(body=b"live")
        for i in range(3):
            entity.dead_letter_message(body=f"dead-{i}".encode())

        messages = await service.peek_dead_letter("testns", QUEUE, max_count=2)
        assert [m.body for m in messages] == [b"dead-0", b"dead-1"]

        active = await service.peek_active("testns", QUEUE)
        assert [m.body for m in active] == [b"live"]

    @pytest.mark.asyncio
    async def test_peek_does_not_remove_or_lock(self, service, broker):
        entity = broker.entities["events/Subscriptions/audit"]
        entity.dead_letter_message(message_id="e1")

        target = SubscriptionTarget(topic="events", subscription="audit")
        await service.peek_dead_letter("testns", target)
        await service.peek_dead_letter("testns", target)

        assert len(entity.dead_letter) == 1
        assert entity.dead_letter[0].locked_by is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("max_count", [0, 101, -5])
    async def test_peek_bounds(self, service, max_count):
        with pytest.raises(ConfigurationError):
            await service.peek_dead_letter("testns", QUEUE, max_count=max_count)


class TestDispose:
    """Tests for shutdown."""

    @pytest.mark.asyncio
    async def test_dispose_closes_clients_once(self, make_service, broker, token_source):
        service = make_service()
        await service.pool.connection_for("testns")

        await service.dispose()
        await service.dispose()

        assert broker.clients[0].closed
        assert token_source.closed
