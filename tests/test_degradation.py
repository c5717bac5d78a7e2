# tests/test_degradation.py
"""
Tests for the online/degraded state machine and the offline sync protocol.

These tests verify:
- Exactly one DEGRADED_CHANGE per transition
- handle_error only degrades on UnavailableError
- Recovery probes, ensures the bank and drains both queues
- Drains stop at the first failure and preserve order
- Feedback is delivered in batches
- A deadline ends a drain between deliveries
"""

import time

import pytest
import pytest_asyncio

from mindcore import degradation
from mindcore.degradation import ConnectionState, DegradationController
from mindcore.events import EventDispatcher, EventType
from mindcore.exceptions import UnavailableError, ValidationError
from mindcore.models import FeedbackSignal, SignalType
from mindcore.storage.offline_queue import OfflineStorage


class Recorder:
    def __init__(self):
        self.events = []

    def on_event(self, event):
        self.events.append(event)

    def of(self, event_type):
        return [e for e in self.events if e.type is event_type]


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def controller(recorder):
    events = EventDispatcher()
    events.subscribe(recorder)
    return DegradationController(events, feedback_batch_size=2)


@pytest_asyncio.fixture
async def storage(tmp_path):
    store = await OfflineStorage.open_for_project(tmp_path)
    yield store
    await store.close()


async def no_bank_check() -> None:
    return None


# =============================================================================
# TRANSITIONS
# =============================================================================


class TestTransitions:
    """State changes and their events."""

    def test_starts_online(self, controller):
        assert controller.state is ConnectionState.ONLINE
        assert not controller.is_degraded

    def test_one_event_per_transition(self, controller, recorder):
        assert controller.enter_degraded("probe failed") is True
        assert controller.enter_degraded("again") is False
        assert controller.enter_degraded("and again") is False

        changes = recorder.of(EventType.DEGRADED_CHANGE)
        assert [e.data["degraded"] for e in changes] == [True]
        assert len(recorder.of(EventType.ERROR)) == 1

    def test_exit_emits_once(self, controller, recorder):
        controller.enter_degraded("x")
        assert controller.exit_degraded() is True
        assert controller.exit_degraded() is False
        assert [e.data["degraded"] for e in recorder.of(EventType.DEGRADED_CHANGE)] == [True, False]

    def test_handle_error_degrades_only_on_unavailable(self, controller, recorder):
        assert controller.handle_error(ValidationError("bad"), "retain") is False
        assert not controller.is_degraded

        assert controller.handle_error(UnavailableError(), "retain") is True
        assert controller.is_degraded

        errors = recorder.of(EventType.ERROR)
        assert [e.data["operation"] for e in errors] == ["retain", "degradation", "retain"]


# =============================================================================
# RECOVERY
# =============================================================================


class TestRecovery:
    """attempt_recovery and the drains."""

    @pytest.mark.asyncio
    async def test_unhealthy_probe_stays_degraded(self, controller, backend, client, storage):
        backend.healthy = False
        controller.enter_degraded("down")
        await storage.memories.retain("queued")

        assert await controller.attempt_recovery(client, no_bank_check, "b", storage.memories) is False
        assert controller.is_degraded
        assert await storage.memories.count() == 1

    @pytest.mark.asyncio
    async def test_recovery_drains_and_compacts(self, controller, backend, client, storage, recorder):
        backend.banks["b"] = {}
        controller.enter_degraded("down")
        await storage.memories.retain("first")
        await storage.memories.retain("second")
        bank_checks = []

        async def ensure_bank():
            bank_checks.append(1)

        online = await controller.attempt_recovery(client, ensure_bank, "b", storage.memories, storage.feedback)

        assert online is True
        assert not controller.is_degraded
        assert bank_checks == [1]
        assert [r["content"] for r in backend.retained] == ["first", "second"]
        assert await storage.memories.get_unsynced() == []
        assert await storage.memories.count() == 0
        assert recorder.of(EventType.OFFLINE_SYNCED)[0].data == {"count": 2}

    @pytest.mark.asyncio
    async def test_recovery_when_online_still_drains(self, controller, backend, client, storage):
        backend.banks["b"] = {}
        await storage.memories.retain("left over")

        assert await controller.attempt_recovery(client, no_bank_check, "b", storage.memories) is True
        assert [r["content"] for r in backend.retained] == ["left over"]
        assert "GET /health" not in backend.requests

    @pytest.mark.asyncio
    async def test_ensure_bank_failure_aborts(self, controller, backend, client, storage):
        controller.enter_degraded("down")
        await storage.memories.retain("queued")

        async def ensure_bank():
            raise ValidationError("forbidden")

        assert await controller.attempt_recovery(client, ensure_bank, "b", storage.memories) is False
        assert backend.retained == []

    @pytest.mark.asyncio
    async def test_past_deadline_leaves_queue_untouched(self, controller, backend, client, storage):
        backend.banks["b"] = {}
        await storage.memories.retain("one")
        await storage.feedback.enqueue(FeedbackSignal(fact_id="f", signal_type=SignalType.USED, session_id="s"))

        online = await controller.attempt_recovery(
            client, no_bank_check, "b", storage.memories, storage.feedback, deadline=time.monotonic() - 1
        )

        assert online is True
        assert backend.retained == []
        assert backend.signal_batches == []
        assert await storage.memories.count() == 1
        assert await storage.feedback.count() == 1

    @pytest.mark.asyncio
    async def test_deadline_stops_between_records(self, controller, backend, client, storage, monkeypatch):
        backend.banks["b"] = {}
        for text in ("one", "two", "three", "four"):
            await storage.memories.retain(text)
        expiry = iter([False, False, True])
        monkeypatch.setattr(degradation, "_expired", lambda deadline: next(expiry))

        report = await controller.sync_offline_memories(client, storage.memories, "b", deadline=5.0)

        assert (report.attempted, report.synced, report.remaining) == (4, 2, 2)
        assert report.error is None
        assert [r["content"] for r in backend.retained] == ["one", "two"]
        assert [r.payload.text for r in await storage.memories.get_unsynced()] == ["three", "four"]


class TestMemoryDrain:
    """sync_offline_memories stop-at-first-failure semantics."""

    @pytest.mark.asyncio
    async def test_stops_at_first_failure_and_keeps_order(self, controller, backend, client, storage):
        backend.banks["b"] = {}
        backend.fail_retain_after = 1
        backend.retain_failure = 500
        ids = [await storage.memories.retain(t) for t in ("one", "two", "three")]

        report = await controller.sync_offline_memories(client, storage.memories, "b")

        assert (report.attempted, report.synced, report.remaining) == (3, 1, 2)
        assert report.error
        assert [r.id for r in await storage.memories.get_unsynced()] == ids[1:]
        assert not controller.is_degraded

    @pytest.mark.asyncio
    async def test_unavailable_during_drain_degrades(self, controller, backend, client, storage, recorder):
        backend.banks["b"] = {}
        backend.fail_retain_after = 1
        await storage.memories.retain("one")
        await storage.memories.retain("two")

        report = await controller.sync_offline_memories(client, storage.memories, "b")

        assert report.synced == 1
        assert controller.is_degraded
        assert len(recorder.of(EventType.DEGRADED_CHANGE)) == 1

    @pytest.mark.asyncio
    async def test_no_compaction_when_disabled(self, recorder, backend, client, storage):
        events = EventDispatcher()
        controller = DegradationController(events, compact_after_sync=False)
        backend.banks["b"] = {}
        await storage.memories.retain("one")

        report = await controller.sync_offline_memories(client, storage.memories, "b")

        assert report.cleared == 0
        stats = await storage.memories.get_stats()
        assert (stats.total, stats.synced) == (1, 1)

    @pytest.mark.asyncio
    async def test_skipped_while_degraded(self, controller, client, storage):
        controller.enter_degraded("down")
        await storage.memories.retain("one")
        report = await controller.sync_offline_memories(client, storage.memories, "b")
        assert report.attempted == 0
        assert await storage.memories.count() == 1


class TestFeedbackDrain:
    """Batch-or-nothing signal delivery."""

    @pytest.mark.asyncio
    async def test_batches_in_order(self, controller, backend, client, storage, recorder):
        backend.banks["b"] = {}
        await storage.feedback.enqueue_batch([
            FeedbackSignal(fact_id=f"f{i}", signal_type=SignalType.USED, session_id="s") for i in range(5)
        ])

        report = await controller.sync_offline_feedback(client, storage.feedback, "b")

        assert report.synced == 5
        assert [[s["fact_id"] for s in batch] for batch in backend.signal_batches] == [
            ["f0", "f1"], ["f2", "f3"], ["f4"],
        ]
        assert recorder.of(EventType.FEEDBACK_SYNCED)[0].data == {"count": 5}
        assert await storage.feedback.count() == 0

    @pytest.mark.asyncio
    async def test_failed_batch_stays_queued(self, controller, backend, client, storage):
        backend.banks["b"] = {}
        backend.fail_signals = True
        await storage.feedback.enqueue_batch([
            FeedbackSignal(fact_id=f"f{i}", signal_type=SignalType.HELPFUL, session_id="s") for i in range(3)
        ])

        report = await controller.sync_offline_feedback(client, storage.feedback, "b")

        assert report.synced == 0
        assert report.remaining == 3
        assert controller.is_degraded
        assert len(await storage.feedback.get_unsynced()) == 3
