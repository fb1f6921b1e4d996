"""
Shared fixtures for SBExplorer tests.

Author: SBExplorer Contributors
Date: 2026-01-22
"""

import pytest
from prometheus_client import CollectorRegistry

from sbexplorer.auth.secret_store import SecretStore
from sbexplorer.core.config_manager import ExplorerConfig
from sbexplorer.servicebus.metrics import ExplorerMetrics
from sbexplorer.servicebus.service import ExplorerService

from fakes import FakeBroker, FakeRestSurface, FakeTokenSource


@pytest.fixture
def broker():
    """Broker with one queue and one topic subscription."""
    broker = FakeBroker()
    broker.add_queue("orders")
    broker.add_subscription("events", "audit")
    return broker


@pytest.fixture
def rest_surface(broker):
    return FakeRestSurface(broker)


@pytest.fixture
def token_source():
    return FakeTokenSource()


@pytest.fixture
def metrics():
    """Metrics on a private registry so tests do not collide."""
    return ExplorerMetrics(registry=CollectorRegistry())


@pytest.fixture
def explorer_config():
    """Configuration with short wait windows."""
    return ExplorerConfig(broker={
        "receive_wait_seconds": 1.0,
        "purge_wait_seconds": 1.0,
        "delete_wait_seconds": 1.0,
        "peek_timeout_seconds": 5.0,
        "rest_timeout_seconds": 5.0,
    })


@pytest.fixture
def secret_store(tmp_path):
    return SecretStore(tmp_path / "namespaces.enc", tmp_path / "namespaces.key")


@pytest.fixture
def make_service(broker, rest_surface, token_source, metrics, explorer_config):
    """Factory building services wired to the fake broker."""
    def factory(config=None, secret_store=None):
        return ExplorerService(
            config=config or explorer_config,
            secret_store=secret_store,
            token_source=token_source,
            connection_factory=broker.connection_factory,
            admin_factory=broker.admin_factory,
            rest_transport=rest_surface.transport,
            metrics=metrics,
        )
    return factory


@pytest.fixture
async def service(make_service):
    service = make_service()
    yield service
    await service.dispose()
