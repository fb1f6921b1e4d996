"""
Resubmission Engine

Orchestrates resubmit, single-message delete and purge on dead-letter
queues. Owns the order in which the lock path and the fallback removal
paths are tried.

A resubmit always sends before it removes, so a failure between the two
steps leaves a duplicate rather than losing the message.

Author: SBExplorer Contributors
Date: 2026-01-19
"""

from typing import Any, Dict, List, Optional

from sbexplorer.core.config_manager import BrokerConfig, FallbackPath

from .access import (
    EntityAccess,
    LockHandle,
    ReceiveAndDeleteAccess,
    ReceiverSession,
    RestAccess,
    build_outbound,
    open_receiver,
    open_sender,
)
from .addressing import dead_letter_path
from .client_pool import BrokerClientPool
from .exceptions import ConfigurationError, MessageNotFoundError, PartialSuccessError, PurgeInterruptedError
from .locator import LocatedMessage, LockPathUnavailable, MessageLocator, NotFound
from .logging_utils import StructuredLogger, track_operation_time
from .metrics import ExplorerMetrics, get_metrics
from .models import (
    EntityTarget,
    MessageIdentity,
    NormalizedMessage,
    ResubmitPath,
    ResubmitResult,
)
from .rest_client import RestFallbackClient


logger = StructuredLogger('sbexplorer.servicebus.engine')

RESUBMITTED_PROPERTY = "x-resubmitted"
ORIGINAL_REASON_PROPERTY = "x-original-dead-letter-reason"
ORIGINAL_MESSAGE_ID_PROPERTY = "x-original-message-id"
RESUBMIT_ID_PREFIX = "resubmit-"


class ResubmissionEngine:
    """
    Relocates, deletes and purges dead-lettered messages.

    Attributes:
        _pool: Source of per-namespace broker clients
        _locator: Peek-then-receive search
        _access_paths: Removal paths tried in order after a peek-only locate
    """

    def __init__(
        self,
        pool: BrokerClientPool,
        config: Optional[BrokerConfig] = None,
        rest_client: Optional[RestFallbackClient] = None,
        metrics: Optional[ExplorerMetrics] = None,
        access_paths: Optional[List[EntityAccess]] = None,
    ):
        self._pool = pool
        self._config = config or BrokerConfig()
        self._metrics = metrics or get_metrics()
        self._locator = MessageLocator(
            peek_batch_size=self._config.peek_batch_size,
            receive_batch_size=self._config.receive_batch_size,
            receive_wait_seconds=self._config.receive_wait_seconds,
        )
        if access_paths is None:
            access_paths = self._build_access_paths(rest_client)
        self._access_paths = access_paths

    def _build_access_paths(self, rest_client: Optional[RestFallbackClient]) -> List[EntityAccess]:
        paths: List[EntityAccess] = []
        for name in self._config.fallback_paths:
            if name == FallbackPath.REST:
                if rest_client is None:
                    logger.warning("REST fallback configured but no REST client supplied; skipping it")
                    continue
                paths.append(RestAccess(rest_client, scan_cap=self._config.rest_scan_cap))
            elif name == FallbackPath.RECEIVE_AND_DELETE:
                paths.append(ReceiveAndDeleteAccess(
                    self._pool.connection_for,
                    batch_size=self._config.receive_batch_size,
                    max_wait=self._config.receive_wait_seconds,
                ))
        return paths

    @property
    def access_paths(self) -> List[EntityAccess]:
        return list(self._access_paths)

    def _open_dead_letter_receiver(self, connection: Any, target: EntityTarget) -> ReceiverSession:
        return open_receiver(connection, target, call_timeout=self._config.peek_timeout_seconds)

    # ========== Resubmit ==========

    @track_operation_time(logger, "resubmit")
    async def resubmit(
        self,
        namespace: str,
        target: EntityTarget,
        identity: MessageIdentity,
    ) -> ResubmitResult:
        """
        Send a dead-lettered message back to its origin and remove the copy.

        Args:
            namespace: Namespace holding the entity
            target: Queue or subscription whose dead-letter queue holds the message
            identity: Sequence number and/or message id of the message

        Returns:
            ResubmitResult describing which path was taken

        Raises:
            ConfigurationError: If the identity is empty
            MessageNotFoundError: If the message is not in the dead-letter queue
            PartialSuccessError: If the message was resent but removal of the
                dead-letter copy could not be confirmed
        """
        if identity.is_empty:
            raise ConfigurationError("a sequence number or a message id is required")
        namespace = self._pool.resolver.canonical(namespace)
        logger.log_operation("resubmit", namespace, target.entity_path, identity=str(identity))

        with self._metrics.time_operation("resubmit"):
            try:
                connection = await self._pool.connection_for(namespace)
                async with self._open_dead_letter_receiver(connection, target) as receiver:
                    located = await self._locator.locate(receiver, identity)
                    if isinstance(located, NotFound):
                        raise MessageNotFoundError(str(identity), dead_letter_path(target))
                    if isinstance(located, LocatedMessage):
                        return await self._resubmit_locked(connection, receiver, target, located.handle)
                # The peek-lock receiver is closed before any removal path runs
                return await self._resubmit_from_snapshot(namespace, connection, target, located)
            except Exception as e:
                self._metrics.track_error("resubmit", getattr(e, "error_code", type(e).__name__))
                raise

    async def _resubmit_locked(
        self,
        connection: Any,
        receiver: ReceiverSession,
        target: EntityTarget,
        handle: LockHandle,
    ) -> ResubmitResult:
        message = handle.message
        outbound = build_outbound(
            message,
            message.message_id,
            self._resubmit_properties(message),
        )
        try:
            async with open_sender(connection, target) as sender:
                await sender.send(outbound)
        except Exception:
            try:
                await receiver.abandon(handle)
            except Exception as abandon_error:
                logger.warning(
                    f"Failed to abandon sequence {handle.sequence_number} after send failure: {abandon_error}",
                    entity_path=receiver.entity_path,
                    error_type=type(abandon_error).__name__
                )
            raise

        # A failure here leaves the resent message and the dead-letter copy both in place
        await receiver.complete(handle)

        logger.log_message_operation(
            "message_resubmitted", target.send_entity, message.sequence_number, message.message_id,
            path=ResubmitPath.LOCK.value
        )
        self._metrics.track_resubmit(target.kind, ResubmitPath.LOCK.value)
        return ResubmitResult(
            resent_message_id=message.message_id,
            sequence_number=message.sequence_number,
            path=ResubmitPath.LOCK,
            removed_via="complete",
        )

    async def _resubmit_from_snapshot(
        self,
        namespace: str,
        connection: Any,
        target: EntityTarget,
        located: LockPathUnavailable,
    ) -> ResubmitResult:
        snapshot = located.snapshot
        resent_id = f"{RESUBMIT_ID_PREFIX}{snapshot.message_id or snapshot.sequence_number}"
        outbound = build_outbound(snapshot, resent_id, self._resubmit_properties(snapshot))
        async with open_sender(connection, target) as sender:
            await sender.send(outbound)
        logger.log_message_operation(
            "message_resubmitted", target.send_entity, snapshot.sequence_number, resent_id,
            path=ResubmitPath.PEEK.value
        )
        self._metrics.track_resubmit(target.kind, ResubmitPath.PEEK.value)

        removal_identity = MessageIdentity(
            sequence_number=snapshot.sequence_number,
            message_id=snapshot.message_id,
        )
        for access in self._access_paths:
            try:
                removed = await access.remove(namespace, target, removal_identity)
            except Exception as e:
                self._metrics.track_fallback(access.name, "error")
                logger.warning(
                    f"Removal via {access.name} failed: {e}",
                    access_path=access.name,
                    entity_path=dead_letter_path(target),
                    error_type=type(e).__name__
                )
                continue
            if removed:
                self._metrics.track_fallback(access.name, "removed")
                return ResubmitResult(
                    resent_message_id=resent_id,
                    sequence_number=snapshot.sequence_number,
                    path=ResubmitPath.PEEK,
                    removed_via=access.name,
                )
            self._metrics.track_fallback(access.name, "unconfirmed")

        self._metrics.track_partial_success(target.kind)
        logger.warning(
            f"Message resent as {resent_id} but it may still exist in {dead_letter_path(target)}",
            entity_path=dead_letter_path(target),
            resent_message_id=resent_id
        )
        raise PartialSuccessError(resent_id, dead_letter_path(target))

    @staticmethod
    def _resubmit_properties(message: NormalizedMessage) -> Dict[str, Any]:
        properties = dict(message.application_properties)
        properties[RESUBMITTED_PROPERTY] = True
        if message.dead_letter_reason is not None:
            properties[ORIGINAL_REASON_PROPERTY] = message.dead_letter_reason
        if message.message_id is not None:
            properties[ORIGINAL_MESSAGE_ID_PROPERTY] = message.message_id
        return properties

    # ========== Delete ==========

    @track_operation_time(logger, "delete_dead_letter")
    async def delete_dead_letter(
        self,
        namespace: str,
        target: EntityTarget,
        identity: MessageIdentity,
    ) -> None:
        """
        Delete one dead-lettered message.

        Receives one message at a time, holding each non-matching lock until
        the scan ends so the broker cannot redeliver it to this scan.

        Raises:
            ConfigurationError: If the identity is empty
            MessageNotFoundError: If the scan empties or hits its cap first
        """
        if identity.is_empty:
            raise ConfigurationError("a sequence number or a message id is required")
        namespace = self._pool.resolver.canonical(namespace)
        logger.log_operation("delete_dead_letter", namespace, target.entity_path, identity=str(identity))

        with self._metrics.time_operation("delete_dead_letter"):
            try:
                connection = await self._pool.connection_for(namespace)
                async with self._open_dead_letter_receiver(connection, target) as receiver:
                    if await self._scan_and_complete(receiver, identity):
                        self._metrics.track_delete(target.kind)
                        return
                raise MessageNotFoundError(str(identity), dead_letter_path(target))
            except Exception as e:
                self._metrics.track_error("delete_dead_letter", getattr(e, "error_code", type(e).__name__))
                raise

    async def _scan_and_complete(self, receiver: ReceiverSession, identity: MessageIdentity) -> bool:
        skipped: List[LockHandle] = []
        try:
            for _ in range(self._config.delete_scan_cap):
                handles = await receiver.receive(1, self._config.delete_wait_seconds)
                if not handles:
                    return False
                handle = handles[0]
                if identity.matches(handle.sequence_number, handle.message_id):
                    await receiver.complete(handle)
                    logger.log_message_operation(
                        "message_deleted", receiver.entity_path, handle.sequence_number, handle.message_id,
                        scanned_count=len(skipped) + 1
                    )
                    return True
                skipped.append(handle)
            logger.warning(
                f"Delete scan reached its cap of {self._config.delete_scan_cap} messages",
                entity_path=receiver.entity_path
            )
            return False
        finally:
            for handle in skipped:
                try:
                    await receiver.abandon(handle)
                except Exception as e:
                    logger.warning(
                        f"Failed to abandon sequence {handle.sequence_number}: {e}",
                        entity_path=receiver.entity_path,
                        error_type=type(e).__name__
                    )

    # ========== Purge ==========

    @track_operation_time(logger, "purge_dead_letter")
    async def purge_dead_letter(self, namespace: str, target: EntityTarget) -> int:
        """
        Remove every message from a dead-letter queue.

        Returns:
            Number of messages completed

        Raises:
            PurgeInterruptedError: If a receive or complete fails part way,
                carrying the number completed before the failure
        """
        namespace = self._pool.resolver.canonical(namespace)
        entity_path = dead_letter_path(target)
        logger.log_operation("purge_dead_letter", namespace, target.entity_path)

        completed = 0
        with self._metrics.time_operation("purge_dead_letter"):
            try:
                connection = await self._pool.connection_for(namespace)
                async with self._open_dead_letter_receiver(connection, target) as receiver:
                    while True:
                        handles = await receiver.receive(
                            self._config.receive_batch_size,
                            self._config.purge_wait_seconds,
                        )
                        if not handles:
                            break
                        for handle in handles:
                            await receiver.complete(handle)
                            completed += 1
            except Exception as e:
                self._metrics.track_purge(target.kind, completed)
                self._metrics.track_error("purge_dead_letter", type(e).__name__)
                logger.log_error(
                    "purge_dead_letter", type(e).__name__, str(e),
                    entity_path=entity_path,
                    completed_count=completed
                )
                raise PurgeInterruptedError(entity_path, completed, str(e)) from e

        self._metrics.track_purge(target.kind, completed)
        logger.info(
            f"Purged {completed} messages from {entity_path}",
            entity_path=entity_path,
            completed_count=completed
        )
        return completed
