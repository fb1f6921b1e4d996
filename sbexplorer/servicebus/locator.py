"""
Message Locator

Finds one message in a dead-letter backlog when the broker has no
get-by-id primitive. A non-destructive peek confirms the message exists,
then a locking receive tries to take hold of it.

Author: SBExplorer Contributors
Date: 2026-01-18
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Union

from .access import LockHandle, ReceiverSession
from .exceptions import ConfigurationError
from .logging_utils import StructuredLogger
from .models import MessageIdentity, NormalizedMessage


logger = StructuredLogger('sbexplorer.servicebus.locator')


class LocateState(str, Enum):
    """Terminal outcomes of a locate."""
    FOUND = "found"
    FOUND_VIA_PEEK = "found_via_peek"
    NOT_FOUND = "not_found"


@dataclass
class LocatedMessage:
    """The target is held under a lock. Settle ``handle`` exactly once."""
    handle: LockHandle
    state: LocateState = LocateState.FOUND

    @property
    def message(self) -> NormalizedMessage:
        return self.handle.message


@dataclass
class LockPathUnavailable:
    """The target exists but the locking receive did not return it."""
    snapshot: NormalizedMessage
    state: LocateState = LocateState.FOUND_VIA_PEEK

    @property
    def message(self) -> NormalizedMessage:
        return self.snapshot


@dataclass
class NotFound:
    """The target is not in the first page of the backlog."""
    identity: MessageIdentity
    state: LocateState = LocateState.NOT_FOUND


LocateResult = Union[LocatedMessage, LockPathUnavailable, NotFound]


class MessageLocator:
    """
    Two-phase peek-then-receive search on an open dead-letter receiver.

    Every message locked during the receive phase other than the result is
    abandoned before ``locate`` returns.
    """

    def __init__(
        self,
        peek_batch_size: int = 100,
        receive_batch_size: int = 100,
        receive_wait_seconds: float = 10.0,
    ):
        self.peek_batch_size = peek_batch_size
        self.receive_batch_size = receive_batch_size
        self.receive_wait_seconds = receive_wait_seconds

    async def locate(self, receiver: ReceiverSession, identity: MessageIdentity) -> LocateResult:
        """
        Locate ``identity`` on ``receiver``.

        Args:
            receiver: Peek-lock receiver on a dead-letter queue
            identity: Sequence number and/or message id of the target

        Returns:
            LocatedMessage, LockPathUnavailable or NotFound

        Raises:
            ConfigurationError: If the identity is empty
            OperationTimeoutError: If peek or receive exceeds its bound
        """
        if identity.is_empty:
            raise ConfigurationError("a sequence number or a message id is required")

        peeked = await receiver.peek(self.peek_batch_size, from_sequence=1)
        snapshot = self._first_match(peeked, identity)
        if snapshot is None:
            logger.info(
                f"Message {identity} not in the first {len(peeked)} messages of {receiver.entity_path}",
                entity_path=receiver.entity_path,
                peeked_count=len(peeked)
            )
            return NotFound(identity=identity)

        handles = await receiver.receive(self.receive_batch_size, self.receive_wait_seconds)
        found: Optional[LockHandle] = None
        others: List[LockHandle] = []
        for handle in handles:
            if found is None and identity.matches(handle.sequence_number, handle.message_id):
                found = handle
            else:
                others.append(handle)

        await self._release(receiver, others)

        if found is None:
            logger.warning(
                f"Peek saw {identity} but the locking receive returned "
                f"{len(handles)} messages without it",
                entity_path=receiver.entity_path,
                received_count=len(handles)
            )
            return LockPathUnavailable(snapshot=snapshot)

        logger.log_message_operation(
            "message_located", receiver.entity_path, found.sequence_number, found.message_id,
            abandoned_count=len(others)
        )
        return LocatedMessage(handle=found)

    @staticmethod
    def _first_match(
        messages: List[NormalizedMessage],
        identity: MessageIdentity,
    ) -> Optional[NormalizedMessage]:
        for message in messages:
            if identity.matches(message.sequence_number, message.message_id):
                return message
        return None

    @staticmethod
    async def _release(receiver: ReceiverSession, handles: List[LockHandle]) -> None:
        for handle in handles:
            try:
                await receiver.abandon(handle)
            except Exception as e:
                logger.warning(
                    f"Failed to abandon sequence {handle.sequence_number}: {e}",
                    entity_path=receiver.entity_path,
                    sequence_number=handle.sequence_number,
                    error_type=type(e).__name__
                )
