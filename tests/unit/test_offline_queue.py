"""
Unit tests for the pending-ops journal and the offline queue.
"""

import json

import pytest

from spire_sync.storage.journal import PendingOpsJournal
from spire_sync.sync.queue import OfflineQueue, OperationKind, PendingOperation
from spire_sync.utils.errors import QueueFlushRejected, StorageWriteFailure


USER_ID = "user-1"


class TestPendingOpsJournal:
    """Test the on-disk journal."""

    @pytest.mark.asyncio
    async def test_missing_journal_is_empty(self, journal):
        assert await journal.load(USER_ID) == []

    @pytest.mark.asyncio
    async def test_save_and_load(self, journal):
        entries = [{"id": "op-1"}, {"id": "op-2"}]
        await journal.save(USER_ID, entries)

        assert await journal.load(USER_ID) == entries
        assert not journal.path_for(USER_ID).with_suffix(".tmp").exists()

    def test_paths_are_per_user_and_safe(self, journal):
        a = journal.path_for("alice@example.com")
        b = journal.path_for("alice_example.com")

        assert a != b
        assert a.parent == journal.journal_dir
        assert "@" not in a.name

    @pytest.mark.asyncio
    async def test_corrupt_journal_moved_aside(self, journal):
        path = journal.path_for(USER_ID)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("{not json", encoding="utf-8")

        assert await journal.load(USER_ID) == []
        assert not path.exists()
        assert any(".corrupt-" in p.name for p in journal.journal_dir.iterdir())

    @pytest.mark.asyncio
    async def test_undecodable_journal_moved_aside(self, journal):
        path = journal.path_for(USER_ID)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b'\xff\xfe{"operations": []}')

        assert await journal.load(USER_ID) == []
        assert not path.exists()
        assert any(".corrupt-" in p.name for p in journal.journal_dir.iterdir())


class TestPendingOperation:
    """Test queue entry serialization."""

    def test_dict_round_trip(self):
        op = PendingOperation(
            kind=OperationKind.SAVE_CAMPAIGNS,
            base_revision="r-0",
            payload="{}",
            label="Created PC",
        )

        restored = PendingOperation.from_dict(json.loads(json.dumps(op.to_dict())))

        assert restored == op


class TestOfflineQueue:
    """Test enqueue, eviction and conflict-safe flush."""

    @pytest.mark.asyncio
    async def test_enqueue_persists(self, offline_queue, journal, sample_campaign_set):
        op = offline_queue.make_operation(sample_campaign_set, None, "Created PC")
        await offline_queue.enqueue(op)

        assert len(offline_queue) == 1
        stored = await journal.load(USER_ID)
        assert [entry["id"] for entry in stored] == [op.id]

    @pytest.mark.asyncio
    async def test_queue_is_bounded(self, offline_queue, sample_campaign_set):
        """The oldest entries are evicted once the cap is reached."""
        ops = [offline_queue.make_operation(sample_campaign_set, None, f"edit {i}") for i in range(7)]
        evicted = []
        for op in ops:
            evicted.extend(await offline_queue.enqueue(op))

        assert len(offline_queue) == 5
        assert [op.id for op in evicted] == [ops[0].id, ops[1].id]
        assert offline_queue.pending()[0].id == ops[2].id

    @pytest.mark.asyncio
    async def test_load_restores_and_drops_malformed(self, store, monitor, journal, sample_campaign_set):
        first = OfflineQueue(store, monitor, journal, USER_ID)
        op = first.make_operation(sample_campaign_set, "r-0", "Edited tasks")
        await first.enqueue(op)

        entries = await journal.load(USER_ID)
        entries.append({"id": "op-broken"})
        await journal.save(USER_ID, entries)

        second = OfflineQueue(store, monitor, journal, USER_ID)
        assert await second.load() == 1
        assert second.pending()[0].id == op.id
        assert second.pending()[0].base_revision == "r-0"

    @pytest.mark.asyncio
    async def test_load_drops_unreadable_payload(self, store, monitor, journal, sample_campaign_set):
        first = OfflineQueue(store, monitor, journal, USER_ID)
        good = first.make_operation(sample_campaign_set, "r-0")
        await first.enqueue(good)
        bad = PendingOperation(kind=OperationKind.SAVE_CAMPAIGNS, base_revision="r-0", payload="{not json")
        await first.enqueue(bad)

        second = OfflineQueue(store, monitor, journal, USER_ID)

        assert await second.load() == 1
        assert [op.id for op in second.pending()] == [good.id]

    @pytest.mark.asyncio
    async def test_flush_skips_unreadable_payload(self, store, offline_queue, sample_campaign_set):
        good = offline_queue.make_operation(sample_campaign_set, None, "Created PC")
        await offline_queue.enqueue(good)
        await offline_queue.enqueue(
            PendingOperation(kind=OperationKind.SAVE_CAMPAIGNS, base_revision=None, payload='{"campaigns": 3}')
        )

        assert await offline_queue.flush() == 1
        assert len(offline_queue) == 0
        loaded, _ = await store.get(USER_ID)
        assert loaded == sample_campaign_set

    @pytest.mark.asyncio
    async def test_discard_and_clear(self, offline_queue, sample_campaign_set):
        ops = [offline_queue.make_operation(sample_campaign_set, None) for _ in range(3)]
        for op in ops:
            await offline_queue.enqueue(op)

        assert await offline_queue.discard([ops[1].id, "unknown"]) == 1
        assert [op.id for op in offline_queue.pending()] == [ops[0].id, ops[2].id]
        assert await offline_queue.clear() == 2
        assert len(offline_queue) == 0

    @pytest.mark.asyncio
    async def test_flush_empty(self, offline_queue):
        assert await offline_queue.flush() == 0

    @pytest.mark.asyncio
    async def test_flush_on_matching_base(self, store, monitor, offline_queue, sample_campaign_set):
        """Base revision still current: the latest payload is committed."""
        r0 = await store.put(USER_ID, sample_campaign_set)
        monitor.acknowledge(r0)

        older = sample_campaign_set.model_copy(deep=True)
        older.active.name = "Older edit"
        newer = sample_campaign_set.model_copy(deep=True)
        newer.active.name = "Newer edit"
        await offline_queue.enqueue(offline_queue.make_operation(older, r0))
        await offline_queue.enqueue(offline_queue.make_operation(newer, r0))

        assert await offline_queue.flush() == 2

        loaded, revision = await store.get(USER_ID)
        assert revision != r0
        assert loaded.active.name == "Newer edit"
        assert monitor.known_revision == revision
        assert len(offline_queue) == 0

    @pytest.mark.asyncio
    async def test_flush_on_stale_base(self, store, monitor, offline_queue, sample_campaign_set):
        """Base revision superseded: rejected, durable state untouched, conflict raised."""
        r0 = await store.put(USER_ID, sample_campaign_set)
        monitor.acknowledge(r0)

        local = sample_campaign_set.model_copy(deep=True)
        local.active.name = "Queued offline"
        await offline_queue.enqueue(offline_queue.make_operation(local, r0))

        r1 = await store.put(USER_ID, sample_campaign_set)

        with pytest.raises(QueueFlushRejected) as exc_info:
            await offline_queue.flush()

        assert exc_info.value.base_revision == r0
        assert exc_info.value.current_revision == r1

        loaded, revision = await store.get(USER_ID)
        assert revision == r1
        assert loaded.active.name == "Ashes of Christendom"
        assert len(offline_queue) == 1
        assert monitor.active
        assert monitor.state.since_revision == r0
        assert monitor.state.observed_revision == r1

    @pytest.mark.asyncio
    async def test_flush_without_base_is_first_write(self, store, offline_queue, sample_campaign_set):
        await offline_queue.enqueue(offline_queue.make_operation(sample_campaign_set, None))

        assert await offline_queue.flush() == 1
        assert await store.current_revision(USER_ID) is not None

    @pytest.mark.asyncio
    async def test_flush_without_base_onto_existing_data(self, store, monitor, offline_queue, sample_campaign_set):
        r1 = await store.put(USER_ID, sample_campaign_set)
        local = sample_campaign_set.model_copy(deep=True)
        local.active.name = "Written before anything was stored"
        await offline_queue.enqueue(offline_queue.make_operation(local, None))

        with pytest.raises(QueueFlushRejected):
            await offline_queue.flush()

        loaded, revision = await store.get(USER_ID)
        assert revision == r1
        assert loaded.active.name == "Ashes of Christendom"
        assert monitor.active

    @pytest.mark.asyncio
    async def test_journal_write_failure_surfaces(self, store, monitor, temp_dir, sample_campaign_set):
        """An unwritable journal directory raises StorageWriteFailure."""
        blocker = temp_dir / "blocker"
        blocker.write_text("not a directory", encoding="utf-8")
        queue = OfflineQueue(store, monitor, PendingOpsJournal(blocker / "pending"), USER_ID)

        with pytest.raises(StorageWriteFailure):
            await queue.enqueue(queue.make_operation(sample_campaign_set, None))
