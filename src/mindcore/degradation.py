# src/mindcore/degradation.py
"""
Online/degraded state machine and the offline sync protocol.

:class:`DegradationController` owns the single :class:`ConnectionState`
of an orchestrator instance. The state only changes through
:meth:`~DegradationController.enter_degraded` and
:meth:`~DegradationController.exit_degraded`; each real transition emits
exactly one ``DEGRADED_CHANGE`` event.

Transitions:

    ONLINE   --(UnavailableError on any call, failed startup probe)-->  DEGRADED
    DEGRADED --(attempt_recovery: healthy probe)------------------->  ONLINE

A recovery then ensures the bank exists and drains both offline queues
in insertion order. A drain stops at the first record the backend does
not accept; that record and everything after it stay queued for the next
pass. Records are marked synced as soon as their delivery is confirmed.
An optional ``deadline`` (a ``time.monotonic()`` value) ends a drain
between deliveries, never during one.
"""

import logging
import time
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from .client import BackendClient
from .events import EventDispatcher, EventType
from .exceptions import BackendError, MindCoreError, OfflineStorageError, UnavailableError
from .logging_config import log_display
from .models import SyncReport
from .storage.offline_queue import OfflineFeedbackQueue, OfflineMemoryStore

logger = logging.getLogger(__name__)


def _expired(deadline: Optional[float]) -> bool:
    return deadline is not None and time.monotonic() >= deadline


class ConnectionState(str, Enum):
    """Connectivity to the memory backend."""

    ONLINE = "online"
    DEGRADED = "degraded"


class DegradationController:
    """
    Holds the connection state and runs recovery and offline drains.

    Args:
        events: Dispatcher used for state changes, sync results and errors.
        feedback_batch_size: Signals per backend request during a feedback drain.
        compact_after_sync: Delete synced records after each successful drain.
    """

    def __init__(
        self,
        events: EventDispatcher,
        feedback_batch_size: int = 50,
        compact_after_sync: bool = True,
    ) -> None:
        self._events = events
        self._state = ConnectionState.ONLINE
        self.feedback_batch_size = max(1, feedback_batch_size)
        self.compact_after_sync = compact_after_sync

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_degraded(self) -> bool:
        return self._state is ConnectionState.DEGRADED

    # ------------------------------------------------------------ transitions

    def enter_degraded(self, reason: str) -> bool:
        """Switch to DEGRADED. Returns False (and emits nothing) if already degraded."""
        if self.is_degraded:
            return False
        self._state = ConnectionState.DEGRADED
        log_display(logger, logging.WARNING, f"Memory backend unavailable, working offline: {reason}")
        self._events.emit(EventType.DEGRADED_CHANGE, {"degraded": True, "reason": reason})
        self._events.emit_error(MindCoreError(f"Degraded mode: {reason}"), "degradation")
        return True

    def exit_degraded(self) -> bool:
        """Switch to ONLINE. Returns False (and emits nothing) if already online."""
        if not self.is_degraded:
            return False
        self._state = ConnectionState.ONLINE
        log_display(logger, logging.INFO, "Memory backend reachable again")
        self._events.emit(EventType.DEGRADED_CHANGE, {"degraded": False})
        return True

    def handle_error(self, error: BaseException, operation: str) -> bool:
        """
        Report a failed backend call.

        Unavailable errors switch the state to DEGRADED. Every error is
        emitted as an ``ERROR`` event.

        Returns:
            True if the error was an :class:`UnavailableError`.
        """
        unavailable = isinstance(error, UnavailableError)
        if unavailable:
            self.enter_degraded(f"{operation}: {error}")
        else:
            logger.warning(f"{operation} failed: {error}")
        self._events.emit_error(error, operation)
        return unavailable

    # --------------------------------------------------------------- recovery

    async def attempt_recovery(
        self,
        client: BackendClient,
        ensure_bank: Callable[[], Awaitable[None]],
        bank_id: str,
        memories: Optional[OfflineMemoryStore] = None,
        feedback: Optional[OfflineFeedbackQueue] = None,
        deadline: Optional[float] = None,
    ) -> bool:
        """
        Re-probe the backend and drain both offline queues.

        When already online the probe and bank check are skipped, but the
        queues are still drained. Undelivered records left by a
        ``deadline`` stay queued and do not count as a failure.

        Returns:
            False if the probe or the bank check failed, or if a drain put
            the controller back into DEGRADED; True otherwise.
        """
        if self.is_degraded:
            health = await client.health()
            if not health.healthy:
                logger.info(f"Recovery probe failed: {health.error or 'backend reports unhealthy'}")
                return False
            self.exit_degraded()
            try:
                await ensure_bank()
            except BackendError as e:
                self.handle_error(e, "recovery: ensure bank")
                return False

        await self.sync_offline_memories(client, memories, bank_id, deadline=deadline)
        await self.sync_offline_feedback(client, feedback, bank_id, deadline=deadline)
        return not self.is_degraded

    async def _begin_pass(self, queue) -> Optional[list]:
        try:
            await queue.record_sync_attempt()
            return await queue.get_unsynced()
        except OfflineStorageError as e:
            self._events.emit_error(e, f"sync {queue.queue_name}: read queue")
            return None

    async def _finish_pass(self, queue, delivered: int, attempted: int, error: Optional[str], event: EventType) -> SyncReport:
        cleared = 0
        if delivered:
            self._events.emit(event, {"count": delivered})
            if self.compact_after_sync:
                try:
                    cleared = await queue.clear_synced()
                except OfflineStorageError as e:
                    self._events.emit_error(e, f"sync {queue.queue_name}: compact")
        report = SyncReport(
            attempted=attempted,
            synced=delivered,
            remaining=attempted - delivered,
            cleared=cleared,
            error=error,
        )
        if attempted:
            logger.info(f"Offline {queue.queue_name} sync: {delivered}/{attempted} delivered")
        return report

    async def sync_offline_memories(
        self,
        client: BackendClient,
        store: Optional[OfflineMemoryStore],
        bank_id: str,
        deadline: Optional[float] = None,
    ) -> SyncReport:
        """Deliver queued memory items one at a time, stopping at the first failure."""
        if self.is_degraded or store is None:
            return SyncReport()
        unsynced = await self._begin_pass(store)
        if unsynced is None:
            return SyncReport(error="offline queue unreadable")

        delivered = 0
        error: Optional[str] = None
        for record in unsynced:
            if _expired(deadline):
                logger.info(f"Sync time budget exhausted; {len(unsynced) - delivered} memories stay queued")
                break
            item = record.payload
            try:
                await client.retain(bank_id, item.text, item.context)
            except BackendError as e:
                self.handle_error(e, f"sync offline memory {record.id}")
                error = str(e)
                break
            try:
                await store.mark_synced([record.id])
            except OfflineStorageError as e:
                self._events.emit_error(e, "sync memory: mark synced")
                error = str(e)
                break
            delivered += 1

        return await self._finish_pass(store, delivered, len(unsynced), error, EventType.OFFLINE_SYNCED)

    async def sync_offline_feedback(
        self,
        client: BackendClient,
        queue: Optional[OfflineFeedbackQueue],
        bank_id: str,
        deadline: Optional[float] = None,
    ) -> SyncReport:
        """Deliver queued feedback signals in ordered batches; each batch is all-or-nothing."""
        if self.is_degraded or queue is None:
            return SyncReport()
        unsynced = await self._begin_pass(queue)
        if unsynced is None:
            return SyncReport(error="feedback queue unreadable")

        delivered = 0
        error: Optional[str] = None
        for start in range(0, len(unsynced), self.feedback_batch_size):
            if _expired(deadline):
                logger.info(f"Sync time budget exhausted; {len(unsynced) - delivered} signals stay queued")
                break
            batch = unsynced[start:start + self.feedback_batch_size]
            ids: List[str] = [r.id for r in batch]
            try:
                await client.signal(bank_id, [OfflineFeedbackQueue.to_signal(r) for r in batch])
            except BackendError as e:
                self.handle_error(e, f"sync feedback batch of {len(batch)}")
                error = str(e)
                break
            try:
                await queue.mark_synced(ids)
            except OfflineStorageError as e:
                self._events.emit_error(e, "sync feedback: mark synced")
                error = str(e)
                break
            delivered += len(batch)

        return await self._finish_pass(queue, delivered, len(unsynced), error, EventType.FEEDBACK_SYNCED)
