"""
Broker Access

Thin wrappers over the async Service Bus SDK receivers and senders, and the
``EntityAccess`` capability used to remove a dead-letter copy when no lock
handle is available.

Receivers hand out ``LockHandle`` objects instead of raw SDK messages so
that settling a message twice, or after its receiver closed, is reported
instead of silently ignored.

Author: SBExplorer Contributors
Date: 2026-01-17
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from azure.servicebus import ServiceBusMessage, ServiceBusReceiveMode, ServiceBusSubQueue
from azure.servicebus.amqp import AmqpAnnotatedMessage, AmqpMessageBodyType, AmqpMessageProperties

from .addressing import dead_letter_path
from .exceptions import InvalidLockHandleError
from .logging_utils import StructuredLogger
from .models import BodyType, EntityTarget, MessageIdentity, NormalizedMessage, QueueTarget
from .normalizer import normalize, normalize_properties
from .resilience import RECEIVE_GRACE_SECONDS, bounded


logger = StructuredLogger('sbexplorer.servicebus.access')

DEFAULT_CALL_TIMEOUT = 30.0


# ========== Message Conversion ==========

def extract_body(message: Any) -> Tuple[Any, BodyType]:
    """Read the body of an SDK message as bytes, a value or a list of sequences."""
    body_type = getattr(message, "body_type", AmqpMessageBodyType.DATA)
    body = message.body
    if body_type == AmqpMessageBodyType.DATA:
        if body is None:
            return None, BodyType.DATA
        if isinstance(body, (bytes, bytearray)):
            return bytes(body), BodyType.DATA
        if isinstance(body, str):
            return body.encode("utf-8"), BodyType.DATA
        return b"".join(bytes(section) for section in body), BodyType.DATA
    if body_type == AmqpMessageBodyType.SEQUENCE:
        return [list(section) for section in body], BodyType.SEQUENCE
    return body, BodyType.VALUE


def _text(value: Any) -> Optional[str]:
    value = normalize(value)
    if value is None:
        return None
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def to_normalized(message: Any) -> NormalizedMessage:
    """Convert an SDK received message into a NormalizedMessage."""
    body, body_type = extract_body(message)
    if body_type != BodyType.DATA:
        body = normalize(body)

    sequence_number = getattr(message, "sequence_number", None)
    delivery_count = getattr(message, "delivery_count", None)

    return NormalizedMessage(
        body=body,
        body_type=body_type,
        content_type=_text(getattr(message, "content_type", None)),
        correlation_id=_text(getattr(message, "correlation_id", None)),
        subject=_text(getattr(message, "subject", None)),
        session_id=_text(getattr(message, "session_id", None)),
        message_id=_text(getattr(message, "message_id", None)),
        enqueued_time=_text(getattr(message, "enqueued_time_utc", None)),
        sequence_number=None if sequence_number is None else str(normalize(sequence_number)),
        delivery_count=None if delivery_count is None else int(delivery_count),
        dead_letter_reason=_text(getattr(message, "dead_letter_reason", None)),
        dead_letter_error_description=_text(getattr(message, "dead_letter_error_description", None)),
        application_properties=normalize_properties(getattr(message, "application_properties", None)),
    )


def build_outbound(
    source: NormalizedMessage,
    message_id: Optional[str],
    application_properties: Dict[str, Any],
) -> Any:
    """
    Build the SDK message that carries ``source`` back to its origin.

    Data bodies are sent byte-for-byte; structured bodies keep their AMQP
    value or sequence section.
    """
    if source.body_type == BodyType.DATA:
        return ServiceBusMessage(
            body=source.body,
            content_type=source.content_type,
            correlation_id=source.correlation_id,
            subject=source.subject,
            session_id=source.session_id,
            message_id=message_id,
            application_properties=application_properties,
        )

    properties = AmqpMessageProperties(
        message_id=message_id,
        content_type=source.content_type,
        correlation_id=source.correlation_id,
        subject=source.subject,
        group_id=source.session_id,
    )
    if source.body_type == BodyType.SEQUENCE:
        return AmqpAnnotatedMessage(
            sequence_body=source.body,
            properties=properties,
            application_properties=application_properties,
        )
    return AmqpAnnotatedMessage(
        value_body=source.body,
        properties=properties,
        application_properties=application_properties,
    )


# ========== Lock Handles ==========

class LockHandle:
    """
    Single-use lock on a received message.

    Settle exactly once, through the receiver that issued it, by completing
    or abandoning.
    """

    def __init__(self, raw: Any, receiver: "ReceiverSession"):
        self._raw = raw
        self._receiver = receiver
        self._settled_as: Optional[str] = None
        self.message = to_normalized(raw)

    @property
    def sequence_number(self) -> Optional[str]:
        return self.message.sequence_number

    @property
    def message_id(self) -> Optional[str]:
        return self.message.message_id

    @property
    def settled(self) -> bool:
        return self._settled_as is not None

    def _claim(self, receiver: "ReceiverSession", operation: str) -> Any:
        if receiver is not self._receiver:
            raise InvalidLockHandleError(self.sequence_number, "handle was issued by a different receiver")
        if self._settled_as is not None:
            raise InvalidLockHandleError(self.sequence_number, f"already settled by {self._settled_as}")
        if receiver.closed:
            raise InvalidLockHandleError(self.sequence_number, "receiver is closed")
        self._settled_as = operation
        return self._raw

    def __repr__(self) -> str:
        return f"LockHandle(sequence_number={self.sequence_number!r}, settled={self.settled})"


# ========== Receivers and Senders ==========

class ReceiverSession:
    """
    One SDK receiver on an entity or its dead-letter sub-queue.

    Use as an async context manager; closing is guaranteed and close
    failures are logged, not raised.
    """

    def __init__(
        self,
        raw: Any,
        entity_path: str,
        receive_mode: ServiceBusReceiveMode = ServiceBusReceiveMode.PEEK_LOCK,
        call_timeout: float = DEFAULT_CALL_TIMEOUT,
    ):
        self._raw = raw
        self.entity_path = entity_path
        self.receive_mode = receive_mode
        self._call_timeout = call_timeout
        self.closed = False

    async def __aenter__(self) -> "ReceiverSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def peek(self, max_count: int, from_sequence: int = 1) -> List[NormalizedMessage]:
        """Non-destructive read from ``from_sequence`` onwards."""
        raw_messages = await bounded(
            self._raw.peek_messages(max_message_count=max_count, sequence_number=from_sequence),
            self._call_timeout,
            "peek_messages",
        )
        return [to_normalized(m) for m in raw_messages]

    async def receive(self, max_count: int, max_wait: float) -> List[LockHandle]:
        """Receive with locks held. Only valid in peek-lock mode."""
        raw_messages = await self._receive_raw(max_count, max_wait)
        return [LockHandle(m, self) for m in raw_messages]

    async def receive_and_delete(self, max_count: int, max_wait: float) -> List[NormalizedMessage]:
        """Receive in receive-and-delete mode; returned messages are already gone."""
        raw_messages = await self._receive_raw(max_count, max_wait)
        return [to_normalized(m) for m in raw_messages]

    async def _receive_raw(self, max_count: int, max_wait: float) -> List[Any]:
        messages = await bounded(
            self._raw.receive_messages(max_message_count=max_count, max_wait_time=max_wait),
            max_wait + RECEIVE_GRACE_SECONDS,
            "receive_messages",
        )
        return list(messages)

    async def complete(self, handle: LockHandle) -> None:
        """Remove a locked message permanently."""
        raw = handle._claim(self, "complete")
        await bounded(self._raw.complete_message(raw), self._call_timeout, "complete_message")
        logger.log_lock_operation("message_completed", self.entity_path, handle.sequence_number)

    async def abandon(self, handle: LockHandle) -> None:
        """Release a lock, returning the message to the backlog."""
        raw = handle._claim(self, "abandon")
        await bounded(self._raw.abandon_message(raw), self._call_timeout, "abandon_message")
        logger.log_lock_operation("message_abandoned", self.entity_path, handle.sequence_number)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            await self._raw.close()
        except Exception as e:
            logger.warning(
                f"Failed to close receiver for {self.entity_path}: {e}",
                entity_path=self.entity_path,
                error_type=type(e).__name__
            )


class SenderSession:
    """One SDK sender on a queue or topic."""

    def __init__(self, raw: Any, entity_name: str, call_timeout: float = DEFAULT_CALL_TIMEOUT):
        self._raw = raw
        self.entity_name = entity_name
        self._call_timeout = call_timeout
        self.closed = False

    async def __aenter__(self) -> "SenderSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def send(self, message: Any) -> None:
        await bounded(self._raw.send_messages(message), self._call_timeout, "send_messages")

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            await self._raw.close()
        except Exception as e:
            logger.warning(
                f"Failed to close sender for {self.entity_name}: {e}",
                entity_name=self.entity_name,
                error_type=type(e).__name__
            )


def open_receiver(
    connection: Any,
    target: EntityTarget,
    dead_letter: bool = True,
    receive_mode: ServiceBusReceiveMode = ServiceBusReceiveMode.PEEK_LOCK,
    call_timeout: float = DEFAULT_CALL_TIMEOUT,
) -> ReceiverSession:
    """Open a receiver on ``target`` or on its dead-letter sub-queue."""
    sub_queue = ServiceBusSubQueue.DEAD_LETTER if dead_letter else None
    if isinstance(target, QueueTarget):
        raw = connection.get_queue_receiver(
            target.name,
            sub_queue=sub_queue,
            receive_mode=receive_mode,
        )
    else:
        raw = connection.get_subscription_receiver(
            target.topic,
            target.subscription,
            sub_queue=sub_queue,
            receive_mode=receive_mode,
        )
    entity_path = dead_letter_path(target) if dead_letter else target.entity_path
    return ReceiverSession(raw, entity_path, receive_mode=receive_mode, call_timeout=call_timeout)


def open_sender(connection: Any, target: EntityTarget, call_timeout: float = DEFAULT_CALL_TIMEOUT) -> SenderSession:
    """Open a sender on the entity that feeds ``target``."""
    if isinstance(target, QueueTarget):
        raw = connection.get_queue_sender(target.name)
    else:
        raw = connection.get_topic_sender(target.topic)
    return SenderSession(raw, target.send_entity, call_timeout=call_timeout)


# ========== Source Removal Paths ==========

class EntityAccess(ABC):
    """
    A way of removing a specific dead-letter message without a lock handle.

    Implementations report whether removal of the target was confirmed.
    """

    name: str = "entity-access"

    @abstractmethod
    async def remove(
        self,
        namespace: str,
        target: EntityTarget,
        identity: MessageIdentity,
    ) -> bool:
        """
        Remove the dead-letter message matching ``identity``.

        Returns:
            True if the removed message was confirmed to match
        """


class ReceiveAndDeleteAccess(EntityAccess):
    """
    Client-protocol path: one receive-and-delete batch on the dead-letter
    queue, matched by message id or sequence number.

    Every message in the batch is removed, matching or not.
    """

    name = "receive_and_delete"

    def __init__(self, connection_for, batch_size: int = 100, max_wait: float = 10.0):
        self._connection_for = connection_for
        self._batch_size = batch_size
        self._max_wait = max_wait

    async def remove(self, namespace: str, target: EntityTarget, identity: MessageIdentity) -> bool:
        connection = await self._connection_for(namespace)
        async with open_receiver(
            connection,
            target,
            receive_mode=ServiceBusReceiveMode.RECEIVE_AND_DELETE,
        ) as receiver:
            removed = await receiver.receive_and_delete(self._batch_size, self._max_wait)

        entity_path = dead_letter_path(target)
        logger.info(
            f"Receive-and-delete removed {len(removed)} messages from {entity_path}",
            entity_path=entity_path,
            removed_count=len(removed)
        )
        matched = False
        discarded = []
        for message in removed:
            if identity.matches_either(message.sequence_number, message.message_id):
                matched = True
            else:
                discarded.append({"message_id": message.message_id, "sequence_number": message.sequence_number})

        if discarded:
            logger.warning(
                f"Receive-and-delete discarded {len(discarded)} non-target messages from {entity_path}",
                entity_path=entity_path,
                discarded_messages=discarded,
                target_message_id=identity.message_id,
                target_sequence_number=identity.sequence_number
            )
        if not matched and removed:
            logger.warning(
                "Receive-and-delete batch did not contain the target",
                entity_path=entity_path,
                target_message_id=identity.message_id,
                target_sequence_number=identity.sequence_number
            )
        return matched


class RestAccess(EntityAccess):
    """
    REST path: peek-lock head messages until the target turns up, delete
    it, then unlock everything else that was locked along the way.
    """

    name = "rest"

    def __init__(self, rest_client, scan_cap: int = 100):
        self._rest = rest_client
        self._scan_cap = scan_cap

    async def remove(self, namespace: str, target: EntityTarget, identity: MessageIdentity) -> bool:
        entity_path = dead_letter_path(target)
        held: List[str] = []
        try:
            for _ in range(self._scan_cap):
                receipt = await self._rest.peek_lock(namespace, entity_path)
                if receipt is None:
                    return False
                if identity.matches_either(receipt.sequence_number, receipt.message_id):
                    await self._rest.delete_message(namespace, receipt.location)
                    logger.log_message_operation(
                        "rest_delete", entity_path, receipt.sequence_number, receipt.message_id
                    )
                    return True
                # Keep the lock so the next head call moves past this message
                held.append(receipt.location)
            return False
        finally:
            for location in held:
                try:
                    await self._rest.unlock_message(namespace, location)
                except Exception as e:
                    logger.warning(
                        f"Failed to unlock {location}: {e}",
                        entity_path=entity_path,
                        error_type=type(e).__name__
                    )
