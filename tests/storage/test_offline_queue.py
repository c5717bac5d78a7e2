# tests/storage/test_offline_queue.py
"""
Tests for the durable offline queue.

These tests verify:
- Enqueue ordering and atomic batches
- Idempotent mark_synced and the no-double-delivery rule
- Compaction, stats and sync-state bookkeeping
- Offline recall and recent queries
- Path confinement and persistence across reopen
"""

import pytest
import pytest_asyncio

from mindcore.exceptions import OfflineStorageError
from mindcore.models import FactType, FeedbackSignal, MemoryItem, SignalType
from mindcore.storage.offline_queue import (
    OfflineFeedbackQueue,
    OfflineMemoryStore,
    OfflineStorage,
    resolve_queue_path,
)

# =============================================================================
# FIXTURES
# =============================================================================


@pytest_asyncio.fixture
async def storage(tmp_path):
    """Open offline storage in a temporary project directory."""
    store = await OfflineStorage.open_for_project(tmp_path)
    yield store
    await store.close()


def signal(fact_id: str) -> FeedbackSignal:
    return FeedbackSignal(fact_id=fact_id, signal_type=SignalType.HELPFUL, session_id="s1")


# =============================================================================
# MEMORY QUEUE
# =============================================================================


class TestEnqueue:
    """Appending records."""

    @pytest.mark.asyncio
    async def test_unsynced_in_insertion_order(self, storage):
        ids = [await storage.memories.retain(f"memory {i}") for i in range(3)]
        unsynced = await storage.memories.get_unsynced()
        assert [r.id for r in unsynced] == ids
        assert [r.payload.text for r in unsynced] == ["memory 0", "memory 1", "memory 2"]
        assert all(not r.synced for r in unsynced)

    @pytest.mark.asyncio
    async def test_ids_are_unique_and_prefixed(self, storage):
        ids = await storage.memories.enqueue_batch([MemoryItem(text=str(i)) for i in range(20)])
        assert len(set(ids)) == 20
        assert all(i.startswith("offline-") for i in ids)

    @pytest.mark.asyncio
    async def test_payload_round_trip_keeps_fields(self, storage):
        await storage.memories.retain("fact", FactType.WORLD, context="ctx", confidence=0.5)
        record = (await storage.memories.get_all())[0]
        assert record.payload.fact_type is FactType.WORLD
        assert record.payload.context == "ctx"
        assert record.payload.confidence == 0.5
        assert record.queued_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_empty_batch(self, storage):
        assert await storage.memories.enqueue_batch([]) == []


class TestMarkSynced:
    """Delivery bookkeeping."""

    @pytest.mark.asyncio
    async def test_synced_records_never_returned_again(self, storage):
        first = await storage.memories.retain("a")
        second = await storage.memories.retain("b")
        assert await storage.memories.mark_synced([first]) == 1
        assert [r.id for r in await storage.memories.get_unsynced()] == [second]

    @pytest.mark.asyncio
    async def test_idempotent(self, storage):
        record_id = await storage.memories.retain("a")
        await storage.memories.mark_synced([record_id])
        state_once = await storage.memories.get_all()

        assert await storage.memories.mark_synced([record_id]) == 0
        state_twice = await storage.memories.get_all()

        assert state_once == state_twice

    @pytest.mark.asyncio
    async def test_unknown_ids_ignored(self, storage):
        await storage.memories.retain("a")
        assert await storage.memories.mark_synced(["offline-0-deadbeef"]) == 0
        assert await storage.memories.mark_synced([]) == 0

    @pytest.mark.asyncio
    async def test_enqueue_during_pass_not_swept(self, storage):
        await storage.memories.retain("before")
        snapshot = await storage.memories.get_unsynced()
        late = await storage.memories.retain("during")

        await storage.memories.mark_synced([r.id for r in snapshot])

        assert [r.id for r in await storage.memories.get_unsynced()] == [late]


class TestCompactionAndStats:
    """clear_synced, clear and get_stats."""

    @pytest.mark.asyncio
    async def test_clear_synced_only_removes_synced(self, storage):
        a = await storage.memories.retain("a")
        await storage.memories.retain("b")
        await storage.memories.mark_synced([a])

        assert await storage.memories.clear_synced() == 1
        remaining = await storage.memories.get_all()
        assert [r.payload.text for r in remaining] == ["b"]

    @pytest.mark.asyncio
    async def test_stats(self, storage):
        a = await storage.memories.retain("a")
        await storage.memories.retain("b")
        await storage.memories.record_sync_attempt()
        await storage.memories.mark_synced([a])

        stats = await storage.memories.get_stats()

        assert (stats.total, stats.pending, stats.synced) == (2, 1, 1)
        assert stats.last_sync_attempt is not None
        assert stats.last_sync_success is not None

    @pytest.mark.asyncio
    async def test_stats_empty_queue(self, storage):
        stats = await storage.feedback.get_stats()
        assert stats.total == 0
        assert stats.last_sync_attempt is None

    @pytest.mark.asyncio
    async def test_clear(self, storage):
        await storage.memories.retain("a")
        await storage.memories.clear()
        assert await storage.memories.count() == 0


class TestOfflineRecall:
    """Local search while degraded."""

    @pytest.mark.asyncio
    async def test_substring_newest_first(self, storage):
        await storage.memories.retain("Uses Pytest for tests")
        await storage.memories.retain("deploys with docker")
        await storage.memories.retain("pytest fixtures live in conftest", context="testing notes")

        matches = await storage.memories.recall("PYTEST")

        assert [r.payload.text for r in matches] == ["pytest fixtures live in conftest", "Uses Pytest for tests"]

    @pytest.mark.asyncio
    async def test_matches_context_and_filters_fact_type(self, storage):
        await storage.memories.retain("a", FactType.WORLD, context="database")
        await storage.memories.retain("b", FactType.EXPERIENCE, context="database")

        matches = await storage.memories.recall("database", fact_type="world")

        assert [r.payload.text for r in matches] == ["a"]

    @pytest.mark.asyncio
    async def test_limit_and_recent(self, storage):
        for i in range(5):
            await storage.memories.retain(f"note {i}")
        assert len(await storage.memories.recall("note", limit=2)) == 2
        recent = await storage.memories.get_recent(limit=2)
        assert [r.payload.text for r in recent] == ["note 4", "note 3"]

    @pytest.mark.asyncio
    async def test_to_memory(self, storage):
        record_id = await storage.memories.retain("text", context="c")
        memory = OfflineMemoryStore.to_memory((await storage.memories.get_all())[0])
        assert memory.id == record_id
        assert memory.text == "text"
        assert memory.context == "c"


# =============================================================================
# FEEDBACK QUEUE
# =============================================================================


class TestFeedbackQueue:
    """Signals share the same mechanics in their own table."""

    @pytest.mark.asyncio
    async def test_queues_are_independent(self, storage):
        await storage.memories.retain("memory")
        ids = await storage.feedback.enqueue_batch([signal("f1"), signal("f2")])

        assert await storage.memories.count() == 1
        assert all(i.startswith("signal-") for i in ids)
        unsynced = await storage.feedback.get_unsynced()
        assert [OfflineFeedbackQueue.to_signal(r).fact_id for r in unsynced] == ["f1", "f2"]

    @pytest.mark.asyncio
    async def test_sync_state_is_per_queue(self, storage):
        await storage.feedback.enqueue(signal("f1"))
        await storage.feedback.record_sync_attempt()
        assert (await storage.memories.get_stats()).last_sync_attempt is None
        assert (await storage.feedback.get_stats()).last_sync_attempt is not None


# =============================================================================
# LIFECYCLE
# =============================================================================


class TestLifecycle:
    """Opening, closing and locating the database."""

    @pytest.mark.asyncio
    async def test_records_survive_reopen(self, tmp_path):
        async with await OfflineStorage.open_for_project(tmp_path) as first:
            await first.memories.retain("durable")
        async with await OfflineStorage.open_for_project(tmp_path) as second:
            records = await second.memories.get_unsynced()
        assert [r.payload.text for r in records] == ["durable"]

    @pytest.mark.asyncio
    async def test_closed_storage_raises(self, tmp_path):
        store = OfflineStorage(tmp_path / "q.db")
        with pytest.raises(OfflineStorageError):
            await store.memories.retain("x")

    def test_path_must_stay_inside_project(self, tmp_path):
        with pytest.raises(OfflineStorageError):
            resolve_queue_path("../outside.db", tmp_path / "project")

    def test_relative_path_resolves_under_project(self, tmp_path):
        path = resolve_queue_path(".mindcore/offline.db", tmp_path)
        assert path == (tmp_path / ".mindcore" / "offline.db").resolve()
