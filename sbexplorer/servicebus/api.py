"""
Explorer API Endpoints.

FastAPI endpoints for namespace management, entity listing, peeking and
dead-letter relocation.

Author: SBExplorer Contributors
Date: 2026-01-21
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status
from pydantic import BaseModel

from .addressing import dead_letter_path, resolve_target
from .exceptions import ConfigurationError
from .models import (
    EntityTarget,
    MessageIdentity,
    NamespaceInfo,
    QueueInfo,
    ResubmitResult,
    SubscriptionInfo,
    TopicInfo,
)
from .service import MAX_PEEK_COUNT, ExplorerService


router = APIRouter(prefix="/explorer", tags=["explorer"])

# Note: Exception handlers must be registered at the FastAPI app level.
# Call register_exception_handlers(app) when including this router.


def get_service(request: Request) -> ExplorerService:
    """Service instance attached to the app by ``create_app``."""
    return request.app.state.service


class AddNamespaceRequest(BaseModel):
    """Register a namespace by name or by connection string."""
    namespace: Optional[str] = None
    connection_string: Optional[str] = None


class PurgeResponse(BaseModel):
    entity_path: str
    purged: int


# ========== Namespace Endpoints ==========

@router.get("/namespaces", response_model=List[NamespaceInfo])
async def list_namespaces(service: ExplorerService = Depends(get_service)):
    """List registered namespaces."""
    return service.list_namespaces()


@router.post("/namespaces", response_model=NamespaceInfo, status_code=status.HTTP_201_CREATED)
async def add_namespace(body: AddNamespaceRequest, service: ExplorerService = Depends(get_service)):
    """Register a namespace. Exactly one of ``namespace`` or ``connection_string``."""
    if bool(body.namespace) == bool(body.connection_string):
        raise ConfigurationError("give exactly one of namespace or connection_string")
    if body.connection_string:
        return await service.register_connection_string(body.connection_string)
    return await service.add_namespace(body.namespace)


@router.delete("/namespaces/{namespace}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_namespace(namespace: str, service: ExplorerService = Depends(get_service)):
    """Forget a namespace and its stored secret."""
    await service.remove_namespace(namespace)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ========== Enumeration Endpoints ==========

@router.get("/{namespace}/queues", response_model=List[QueueInfo])
async def list_queues(namespace: str, service: ExplorerService = Depends(get_service)):
    return await service.list_queues(namespace)


@router.get("/{namespace}/topics", response_model=List[TopicInfo])
async def list_topics(namespace: str, service: ExplorerService = Depends(get_service)):
    return await service.list_topics(namespace)


@router.get("/{namespace}/topics/{topic_name}/subscriptions", response_model=List[SubscriptionInfo])
async def list_subscriptions(namespace: str, topic_name: str, service: ExplorerService = Depends(get_service)):
    return await service.list_subscriptions(namespace, topic_name)


# ========== Message Endpoints ==========

async def _peek(
    service: ExplorerService,
    namespace: str,
    target: EntityTarget,
    max_count: int,
    dead_letter: bool,
):
    if dead_letter:
        messages = await service.peek_dead_letter(namespace, target, max_count)
    else:
        messages = await service.peek_active(namespace, target, max_count)
    return [message.to_dict() for message in messages]


async def _resubmit(
    service: ExplorerService,
    namespace: str,
    target: EntityTarget,
    identity: MessageIdentity,
):
    result: ResubmitResult = await service.resubmit(namespace, target, identity)
    return result.model_dump(mode="json")


async def _purge(service: ExplorerService, namespace: str, target: EntityTarget) -> PurgeResponse:
    purged = await service.purge_dead_letter(namespace, target)
    return PurgeResponse(entity_path=dead_letter_path(target), purged=purged)


@router.get("/{namespace}/queues/{queue_name}/messages")
async def peek_queue(
    namespace: str,
    queue_name: str,
    max_count: int = Query(default=MAX_PEEK_COUNT),
    service: ExplorerService = Depends(get_service),
):
    """Peek active messages on a queue."""
    return await _peek(service, namespace, resolve_target(queue_name=queue_name), max_count, dead_letter=False)


@router.get("/{namespace}/queues/{queue_name}/deadletter")
async def peek_queue_dead_letter(
    namespace: str,
    queue_name: str,
    max_count: int = Query(default=MAX_PEEK_COUNT),
    service: ExplorerService = Depends(get_service),
):
    """Peek a queue's dead-letter messages."""
    return await _peek(service, namespace, resolve_target(queue_name=queue_name), max_count, dead_letter=True)


@router.post("/{namespace}/queues/{queue_name}/deadletter/resubmit", response_model=ResubmitResult)
async def resubmit_queue_message(
    namespace: str,
    queue_name: str,
    identity: MessageIdentity,
    service: ExplorerService = Depends(get_service),
):
    """Send a dead-lettered message back to its queue."""
    return await _resubmit(service, namespace, resolve_target(queue_name=queue_name), identity)


@router.post("/{namespace}/queues/{queue_name}/deadletter/delete", status_code=status.HTTP_204_NO_CONTENT)
async def delete_queue_message(
    namespace: str,
    queue_name: str,
    identity: MessageIdentity,
    service: ExplorerService = Depends(get_service),
):
    """Delete one dead-lettered message from a queue."""
    await service.delete_dead_letter(namespace, resolve_target(queue_name=queue_name), identity)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/{namespace}/queues/{queue_name}/deadletter", response_model=PurgeResponse)
async def purge_queue_dead_letter(
    namespace: str,
    queue_name: str,
    service: ExplorerService = Depends(get_service),
):
    """Purge a queue's dead-letter queue."""
    return await _purge(service, namespace, resolve_target(queue_name=queue_name))


@router.get("/{namespace}/topics/{topic_name}/subscriptions/{subscription_name}/messages")
async def peek_subscription(
    namespace: str,
    topic_name: str,
    subscription_name: str,
    max_count: int = Query(default=MAX_PEEK_COUNT),
    service: ExplorerService = Depends(get_service),
):
    """Peek active messages on a subscription."""
    target = resolve_target(topic_name=topic_name, subscription_name=subscription_name)
    return await _peek(service, namespace, target, max_count, dead_letter=False)


@router.get("/{namespace}/topics/{topic_name}/subscriptions/{subscription_name}/deadletter")
async def peek_subscription_dead_letter(
    namespace: str,
    topic_name: str,
    subscription_name: str,
    max_count: int = Query(default=MAX_PEEK_COUNT),
    service: ExplorerService = Depends(get_service),
):
    """Peek a subscription's dead-letter messages."""
    target = resolve_target(topic_name=topic_name, subscription_name=subscription_name)
    return await _peek(service, namespace, target, max_count, dead_letter=True)


@router.post(
    "/{namespace}/topics/{topic_name}/subscriptions/{subscription_name}/deadletter/resubmit",
    response_model=ResubmitResult,
)
async def resubmit_subscription_message(
    namespace: str,
    topic_name: str,
    subscription_name: str,
    identity: MessageIdentity,
    service: ExplorerService = Depends(get_service),
):
    """Send a dead-lettered message back through its topic."""
    target = resolve_target(topic_name=topic_name, subscription_name=subscription_name)
    return await _resubmit(service, namespace, target, identity)


@router.post(
    "/{namespace}/topics/{topic_name}/subscriptions/{subscription_name}/deadletter/delete",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_subscription_message(
    namespace: str,
    topic_name: str,
    subscription_name: str,
    identity: MessageIdentity,
    service: ExplorerService = Depends(get_service),
):
    """Delete one dead-lettered message from a subscription."""
    target = resolve_target(topic_name=topic_name, subscription_name=subscription_name)
    await service.delete_dead_letter(namespace, target, identity)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete(
    "/{namespace}/topics/{topic_name}/subscriptions/{subscription_name}/deadletter",
    response_model=PurgeResponse,
)
async def purge_subscription_dead_letter(
    namespace: str,
    topic_name: str,
    subscription_name: str,
    service: ExplorerService = Depends(get_service),
):
    """Purge a subscription's dead-letter queue."""
    target = resolve_target(topic_name=topic_name, subscription_name=subscription_name)
    return await _purge(service, namespace, target)
