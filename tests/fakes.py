"""
In-memory broker for explorer tests.

Mimics the async Service Bus SDK clients closely enough for the explorer:
peek, peek-lock receive with abandon and complete, receive-and-delete,
senders for queues and topics, the administration client, and the REST
peek-lock surface (served through ``httpx.MockTransport``).

Author: SBExplorer Contributors
Date: 2026-01-22
"""

import itertools
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Any, Dict, List, Optional, Tuple

import httpx
from azure.servicebus import ServiceBusReceiveMode, ServiceBusSubQueue
from azure.servicebus.amqp import AmqpAnnotatedMessage, AmqpMessageBodyType

from sbexplorer.servicebus.access import extract_body
from sbexplorer.servicebus.models import BodyType


ENQUEUED_AT = datetime(2026, 1, 15, 10, 30, 0, 123000, tzinfo=timezone.utc)

CANONICAL_NAMESPACE = "testns.servicebus.windows.net"
CONNECTION_STRING = (
    "Endpoint=sb://testns.servicebus.windows.net/;"
    "SharedAccessKeyName=RootManageSharedAccessKey;"
    "SharedAccessKey=c2VjcmV0LWtleS12YWx1ZQ=="
)


class FakeLockLostError(Exception):
    """Settling a message whose lock the receiver does not hold."""


class FakeReceivedMessage:
    """Shape of ``azure.servicebus.ServiceBusReceivedMessage``."""

    def __init__(
        self,
        sequence_number: int,
        body: Any = b"",
        body_type: AmqpMessageBodyType = AmqpMessageBodyType.DATA,
        message_id: Optional[str] = None,
        application_properties: Optional[Dict[Any, Any]] = None,
        dead_letter_reason: Optional[str] = None,
        dead_letter_error_description: Optional[str] = None,
        content_type: Optional[str] = None,
        correlation_id: Optional[str] = None,
        subject: Optional[str] = None,
        session_id: Optional[str] = None,
        enqueued_time_utc: datetime = ENQUEUED_AT,
        delivery_count: int = 0,
    ):
        self.sequence_number = sequence_number
        self.body_type = body_type
        if body_type == AmqpMessageBodyType.DATA:
            self._sections = [body] if isinstance(body, bytes) else list(body)
        else:
            self._value = body
        self.message_id = message_id
        self.application_properties = application_properties
        self.dead_letter_reason = dead_letter_reason
        self.dead_letter_error_description = dead_letter_error_description
        self.content_type = content_type
        self.correlation_id = correlation_id
        self.subject = subject
        self.session_id = session_id
        self.enqueued_time_utc = enqueued_time_utc
        self.delivery_count = delivery_count
        self.locked_by: Any = None

    @property
    def body(self):
        if self.body_type == AmqpMessageBodyType.DATA:
            return iter(self._sections)
        return self._value

    def data(self) -> bytes:
        return b"".join(self._sections)

    def __repr__(self) -> str:
        return f"FakeReceivedMessage(sequence_number={self.sequence_number}, message_id={self.message_id!r})"


def _text(value: Any) -> Optional[str]:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return value


@dataclass
class SentMessage:
    """What a sender was asked to send, read back from the SDK message."""
    entity_name: str
    body: Any
    body_type: BodyType
    message_id: Optional[str]
    application_properties: Dict[str, Any]
    content_type: Optional[str] = None
    correlation_id: Optional[str] = None
    subject: Optional[str] = None
    session_id: Optional[str] = None

    @classmethod
    def from_outbound(cls, entity_name: str, message: Any) -> "SentMessage":
        body, body_type = extract_body(message)
        if isinstance(message, AmqpAnnotatedMessage):
            props = message.properties
            message_id = _text(props.message_id) if props else None
            content_type = _text(props.content_type) if props else None
            correlation_id = _text(props.correlation_id) if props else None
            subject = _text(props.subject) if props else None
            session_id = _text(props.group_id) if props else None
        else:
            message_id = message.message_id
            content_type = message.content_type
            correlation_id = message.correlation_id
            subject = message.subject
            session_id = message.session_id
        application_properties = {
            _text(key): value for key, value in (message.application_properties or {}).items()
        }
        return cls(
            entity_name=entity_name,
            body=body,
            body_type=body_type,
            message_id=message_id,
            application_properties=application_properties,
            content_type=content_type,
            correlation_id=correlation_id,
            subject=subject,
            session_id=session_id,
        )

    def to_received(self, sequence_number: int) -> FakeReceivedMessage:
        amqp_type = {
            BodyType.DATA: AmqpMessageBodyType.DATA,
            BodyType.VALUE: AmqpMessageBodyType.VALUE,
            BodyType.SEQUENCE: AmqpMessageBodyType.SEQUENCE,
        }[self.body_type]
        return FakeReceivedMessage(
            sequence_number,
            body=self.body if self.body is not None else b"",
            body_type=amqp_type,
            message_id=self.message_id,
            application_properties=dict(self.application_properties),
            content_type=self.content_type,
            correlation_id=self.correlation_id,
            subject=self.subject,
            session_id=self.session_id,
        )


class FakeEntity:
    """A queue or subscription with its active and dead-letter backlogs."""

    def __init__(self, path: str):
        self.path = path
        self.active: List[FakeReceivedMessage] = []
        self.dead_letter: List[FakeReceivedMessage] = []
        self._sequence = itertools.count(1)

    def next_sequence_number(self) -> int:
        return next(self._sequence)

    def dead_letter_message(
        self,
        body: Any = b"{}",
        sequence_number: Optional[int] = None,
        dead_letter_reason: str = "MaxDeliveryCountExceeded",
        **kwargs: Any,
    ) -> FakeReceivedMessage:
        if sequence_number is None:
            sequence_number = self.next_sequence_number()
        message = FakeReceivedMessage(
            sequence_number,
            body=body,
            dead_letter_reason=dead_letter_reason,
            **kwargs,
        )
        self.dead_letter.append(message)
        return message

    def active_message(self, body: Any = b"{}", **kwargs: Any) -> FakeReceivedMessage:
        message = FakeReceivedMessage(self.next_sequence_number(), body=body, **kwargs)
        self.active.append(message)
        return message


class FakeReceiver:
    """Shape of ``azure.servicebus.aio.ServiceBusReceiver``."""

    def __init__(self, broker: "FakeBroker", entity: FakeEntity, dead_letter: bool, receive_mode):
        self.broker = broker
        self.entity = entity
        self.dead_letter = dead_letter
        self.receive_mode = receive_mode
        self.closed = False

    @property
    def backlog(self) -> List[FakeReceivedMessage]:
        return self.entity.dead_letter if self.dead_letter else self.entity.active

    async def peek_messages(self, max_message_count: int = 1, sequence_number: int = 0, **kwargs):
        self.broker.peek_calls += 1
        messages = sorted(
            (m for m in self.backlog if m.sequence_number >= (sequence_number or 0)),
            key=lambda m: m.sequence_number,
        )
        return messages[:max_message_count]

    async def receive_messages(self, max_message_count: int = 1, max_wait_time: Optional[float] = None):
        self.broker.receive_calls.append((self.entity.path, self.receive_mode, max_message_count))
        if self.broker.receive_error is not None:
            raise self.broker.receive_error
        if self.receive_mode == ServiceBusReceiveMode.PEEK_LOCK and self.broker.lock_receive_disabled:
            return []
        available = [m for m in self.backlog if m.locked_by is None][:max_message_count]
        if self.receive_mode == ServiceBusReceiveMode.RECEIVE_AND_DELETE:
            for message in available:
                self.backlog.remove(message)
                self.broker.receive_and_deleted.append(message.sequence_number)
            return available
        for message in available:
            message.locked_by = self
            message.delivery_count += 1
        return available

    def _check_lock(self, message: FakeReceivedMessage) -> None:
        if self.closed or message.locked_by is not self:
            raise FakeLockLostError(f"lock for sequence {message.sequence_number} is not held")

    async def complete_message(self, message: FakeReceivedMessage) -> None:
        self._check_lock(message)
        if self.broker.complete_error is not None and len(self.broker.completed) >= self.broker.complete_error_after:
            raise self.broker.complete_error
        self.backlog.remove(message)
        message.locked_by = None
        self.broker.completed.append(message.sequence_number)

    async def abandon_message(self, message: FakeReceivedMessage) -> None:
        self._check_lock(message)
        message.locked_by = None
        self.broker.abandoned.append(message.sequence_number)

    async def close(self) -> None:
        self.closed = True
        for message in self.backlog:
            if message.locked_by is self:
                message.locked_by = None


class FakeSender:
    """Shape of ``azure.servicebus.aio.ServiceBusSender``."""

    def __init__(self, broker: "FakeBroker", entity_name: str, targets: List[FakeEntity]):
        self.broker = broker
        self.entity_name = entity_name
        self.targets = targets
        self.closed = False

    async def send_messages(self, message: Any) -> None:
        if self.broker.send_error is not None:
            raise self.broker.send_error
        record = SentMessage.from_outbound(self.entity_name, message)
        self.broker.sent.append(record)
        for entity in self.targets:
            entity.active.append(record.to_received(entity.next_sequence_number()))

    async def close(self) -> None:
        self.closed = True


class FakeServiceBusClient:
    """Shape of ``azure.servicebus.aio.ServiceBusClient``."""

    def __init__(self, broker: "FakeBroker", namespace: str):
        self.broker = broker
        self.namespace = namespace
        self.closed = False
        self.receivers: List[FakeReceiver] = []

    def _receiver(self, entity_path: str, sub_queue, receive_mode) -> FakeReceiver:
        receiver = FakeReceiver(
            self.broker,
            self.broker.entities[entity_path],
            dead_letter=sub_queue == ServiceBusSubQueue.DEAD_LETTER,
            receive_mode=receive_mode,
        )
        self.receivers.append(receiver)
        return receiver

    def get_queue_receiver(self, queue_name, sub_queue=None, receive_mode=ServiceBusReceiveMode.PEEK_LOCK, **kwargs):
        return self._receiver(queue_name, sub_queue, receive_mode)

    def get_subscription_receiver(
        self,
        topic_name,
        subscription_name,
        sub_queue=None,
        receive_mode=ServiceBusReceiveMode.PEEK_LOCK,
        **kwargs,
    ):
        return self._receiver(f"{topic_name}/Subscriptions/{subscription_name}", sub_queue, receive_mode)

    def get_queue_sender(self, queue_name, **kwargs):
        return FakeSender(self.broker, queue_name, [self.broker.entities[queue_name]])

    def get_topic_sender(self, topic_name, **kwargs):
        targets = [
            self.broker.entities[f"{topic_name}/Subscriptions/{name}"]
            for name in self.broker.topics[topic_name]
        ]
        return FakeSender(self.broker, topic_name, targets)

    async def close(self) -> None:
        if self.broker.close_error is not None:
            raise self.broker.close_error
        self.closed = True


class FakeAdminClient:
    """Shape of ``azure.servicebus.aio.management.ServiceBusAdministrationClient``."""

    def __init__(self, broker: "FakeBroker", namespace: str):
        self.broker = broker
        self.namespace = namespace
        self.closed = False

    async def list_queues(self):
        for name in self.broker.queues:
            yield SimpleNamespace(name=name)

    async def get_queue_runtime_properties(self, queue_name):
        entity = self.broker.entities[queue_name]
        return SimpleNamespace(
            name=queue_name,
            active_message_count=len(entity.active),
            dead_letter_message_count=len(entity.dead_letter),
        )

    async def list_topics(self):
        for name in self.broker.topics:
            yield SimpleNamespace(name=name)

    async def get_topic_runtime_properties(self, topic_name):
        return SimpleNamespace(name=topic_name, subscription_count=len(self.broker.topics[topic_name]))

    async def list_subscriptions(self, topic_name):
        for name in self.broker.topics[topic_name]:
            yield SimpleNamespace(name=name)

    async def get_subscription_runtime_properties(self, topic_name, subscription_name):
        entity = self.broker.entities[f"{topic_name}/Subscriptions/{subscription_name}"]
        return SimpleNamespace(
            name=subscription_name,
            active_message_count=len(entity.active),
            dead_letter_message_count=len(entity.dead_letter),
        )

    async def close(self) -> None:
        self.closed = True


@dataclass
class FakeBroker:
    """
    Shared state behind every fake client.

    Fault switches:
        lock_receive_disabled: peek-lock receives return nothing
        send_error: raised by every send
        complete_error: raised by complete once ``complete_error_after``
            completions have succeeded
        receive_error: raised by every receive
        close_error: raised by client close
    """
    entities: Dict[str, FakeEntity] = field(default_factory=dict)
    queues: List[str] = field(default_factory=list)
    topics: Dict[str, List[str]] = field(default_factory=dict)

    lock_receive_disabled: bool = False
    send_error: Optional[Exception] = None
    complete_error: Optional[Exception] = None
    complete_error_after: int = 0
    receive_error: Optional[Exception] = None
    close_error: Optional[Exception] = None

    sent: List[SentMessage] = field(default_factory=list)
    completed: List[int] = field(default_factory=list)
    abandoned: List[int] = field(default_factory=list)
    receive_and_deleted: List[int] = field(default_factory=list)
    receive_calls: List[Tuple[str, Any, int]] = field(default_factory=list)
    peek_calls: int = 0
    clients: List[FakeServiceBusClient] = field(default_factory=list)
    admin_clients: List[FakeAdminClient] = field(default_factory=list)
    factory_calls: List[Tuple[str, Any, Any]] = field(default_factory=list)

    def add_queue(self, name: str) -> FakeEntity:
        entity = FakeEntity(name)
        self.entities[name] = entity
        self.queues.append(name)
        return entity

    def add_subscription(self, topic: str, subscription: str) -> FakeEntity:
        entity = FakeEntity(f"{topic}/Subscriptions/{subscription}")
        self.entities[entity.path] = entity
        self.topics.setdefault(topic, []).append(subscription)
        return entity

    def connection_factory(self, namespace: str, secret: Any, credential: Any) -> FakeServiceBusClient:
        self.factory_calls.append((namespace, secret, credential))
        client = FakeServiceBusClient(self, namespace)
        self.clients.append(client)
        return client

    def admin_factory(self, namespace: str, secret: Any, credential: Any) -> FakeAdminClient:
        client = FakeAdminClient(self, namespace)
        self.admin_clients.append(client)
        return client


class FakeRestSurface:
    """
    REST peek-lock, delete and unlock over the fake broker's backlogs.

    Use ``transport`` as the ``httpx`` transport of the REST client.
    """

    def __init__(self, broker: FakeBroker):
        self.broker = broker
        self.requests: List[httpx.Request] = []
        self.deleted: List[int] = []
        self.unlocked: List[int] = []
        self.fail_status: Optional[int] = None
        self.timeout = False
        self._locks: Dict[str, Tuple[FakeReceivedMessage, List[FakeReceivedMessage]]] = {}

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.timeout:
            raise httpx.ReadTimeout("simulated timeout", request=request)
        if self.fail_status is not None:
            return httpx.Response(self.fail_status, text="simulated failure")

        path = request.url.path.lstrip("/")
        if request.method == "POST" and path.endswith("/messages/head"):
            return self._peek_lock(request, path[:-len("/messages/head")])

        token = path.rsplit("/", 1)[-1]
        held = self._locks.pop(token, None)
        if held is None:
            return httpx.Response(404, text=f"No lock for token {token}")
        message, backlog = held
        message.locked_by = None
        if request.method == "DELETE":
            backlog.remove(message)
            self.deleted.append(message.sequence_number)
        else:
            self.unlocked.append(message.sequence_number)
        return httpx.Response(200)

    def _peek_lock(self, request: httpx.Request, entity_path: str) -> httpx.Response:
        base, _, segment = entity_path.rpartition("/")
        if segment == "$deadletterqueue":
            backlog = self.broker.entities[base].dead_letter
        else:
            backlog = self.broker.entities[entity_path].active

        candidates = [m for m in backlog if m.locked_by is None]
        if not candidates:
            return httpx.Response(204)

        message = candidates[0]
        token = str(uuid.uuid4())
        message.locked_by = self
        self._locks[token] = (message, backlog)

        headers = {
            "BrokerProperties": json.dumps({
                "SequenceNumber": message.sequence_number,
                "MessageId": message.message_id,
                "LockToken": token,
                "DeliveryCount": message.delivery_count,
            }),
            "Location": f"https://{request.url.host}/{entity_path}/messages/{message.sequence_number}/{token}",
            "Content-Type": message.content_type or "application/octet-stream",
        }
        for key, value in (message.application_properties or {}).items():
            headers[_text(key)] = json.dumps(value)
        return httpx.Response(201, headers=headers, content=message.data())


class FakeTokenSource:
    """Async credential returning a fixed token, or raising."""

    def __init__(self, token: Optional[str] = "fake-aad-token", error: Optional[Exception] = None):
        self.token = token
        self.error = error
        self.scopes: List[Tuple[str, ...]] = []
        self.closed = False

    async def get_token(self, *scopes: str, **kwargs: Any):
        self.scopes.append(scopes)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(token=self.token, expires_on=0)

    async def close(self) -> None:
        self.closed = True
