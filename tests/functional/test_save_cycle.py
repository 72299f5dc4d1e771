"""
Functional tests for the save state machine of a single context.
"""

import pytest

from spire_sync.campaign.models import EntityKind
from spire_sync.campaign.operations import CampaignOperations
from spire_sync.runtime import session_scope
from spire_sync.storage.journal import PendingOpsJournal
from spire_sync.sync.connectivity import Connectivity
from spire_sync.sync.controller import SyncState
from spire_sync.utils.errors import StorageWriteFailure, ValidationError


USER_ID = "user-1"


class TestStartup:
    """Test loading a context."""

    @pytest.mark.asyncio
    async def test_new_user_gets_default_campaign(self, context_factory):
        controller = await context_factory()

        campaigns, revision = await controller.store.get(USER_ID)

        assert controller.session.active_campaign is not None
        assert controller.session.active_campaign.name == "New Campaign"
        assert campaigns == controller.session.campaigns
        assert controller.monitor.known_revision == revision
        assert controller.state == SyncState.IDLE

    @pytest.mark.asyncio
    async def test_second_context_loads_same_state(self, context_factory):
        first = await context_factory()
        second = await context_factory()

        assert second.session.campaigns == first.session.campaigns
        assert second.monitor.known_revision == first.monitor.known_revision
        assert second.session.client_id != first.session.client_id


class TestSaveStates:
    """Test Idle -> Saving -> outcome -> Idle."""

    @pytest.mark.asyncio
    async def test_saved(self, context_factory):
        controller = await context_factory()
        ops = CampaignOperations(controller)
        transitions = []
        controller.add_listener(lambda state, indicator: transitions.append(state))
        before = controller.monitor.known_revision

        outcome = await ops.add_entity(EntityKind.NPC, "Marcus")

        assert outcome.saved
        assert outcome.revision != before
        assert outcome.revision == await controller.store.current_revision(USER_ID)
        assert transitions == [SyncState.SAVING, SyncState.SAVED, SyncState.IDLE]
        assert controller.indicator.state == SyncState.SAVED
        assert outcome.result.name == "Marcus"

    @pytest.mark.asyncio
    async def test_write_failure(self, context_factory):
        """Unserializable data fails the save without advancing the revision."""
        controller = await context_factory()
        ops = CampaignOperations(controller)
        before = await controller.store.current_revision(USER_ID)

        failed = await ops.add_entity(EntityKind.PC, "Ysolde", fields={"portrait": object()}, entity_id="pc-1")

        assert failed.state == SyncState.WRITE_FAILED
        assert isinstance(failed.error, StorageWriteFailure)
        assert controller.indicator.retryable
        assert controller.state == SyncState.IDLE
        assert await controller.store.current_revision(USER_ID) == before
        assert len(controller.queue) == 0

        fixed = await ops.update_entity("pc-1", fields={"portrait": "ysolde.png"})

        assert fixed.saved
        campaigns, _ = await controller.store.get(USER_ID)
        assert campaigns.active.entity("pc-1").fields == {"portrait": "ysolde.png"}

    @pytest.mark.asyncio
    async def test_retry_after_failure(self, context_factory):
        controller = await context_factory()
        ops = CampaignOperations(controller)
        await ops.add_entity(EntityKind.PC, "Ysolde", fields={"portrait": object()}, entity_id="pc-1")
        controller.session.active_campaign.entity("pc-1").fields.clear()

        outcome = await controller.retry()

        assert outcome.saved
        campaigns, _ = await controller.store.get(USER_ID)
        assert "pc-1" in campaigns.active.entities

    @pytest.mark.asyncio
    async def test_validation_happens_before_mutation(self, context_factory):
        controller = await context_factory()
        ops = CampaignOperations(controller)
        revision = controller.monitor.known_revision

        with pytest.raises(ValidationError):
            await ops.add_entity(EntityKind.PC, "   ")
        with pytest.raises(ValidationError):
            await ops.edit_section("missing", "tasks", [])

        assert not controller.can_undo()
        assert await controller.store.current_revision(USER_ID) == revision

    @pytest.mark.asyncio
    async def test_failing_mutation_records_nothing(self, context_factory):
        controller = await context_factory()

        def explode(campaign):
            raise RuntimeError("bad edit")

        with pytest.raises(RuntimeError):
            await controller.mutate(controller.campaign_scope(), "Broken", explode)

        assert not controller.can_undo()
        assert controller.state == SyncState.IDLE


class TestOfflineQueue:
    """Test queueing while offline and flushing on reconnect."""

    @pytest.mark.asyncio
    async def test_offline_then_reconnect(self, context_factory):
        connectivity = Connectivity(online=True)
        controller = await context_factory(connectivity=connectivity)
        ops = CampaignOperations(controller)
        r0 = controller.monitor.known_revision

        await connectivity.set_online(False)
        first = await ops.add_entity(EntityKind.PC, "Ysolde", entity_id="pc-1")
        second = await ops.add_entity(EntityKind.NPC, "Marcus", entity_id="npc-1")

        assert first.state == second.state == SyncState.OFFLINE
        assert second.operation_id is not None
        assert len(controller.queue) == 2
        assert await controller.store.current_revision(USER_ID) == r0
        assert all(op.base_revision == r0 for op in controller.queue.pending())

        await connectivity.set_online(True)

        campaigns, revision = await controller.store.get(USER_ID)
        assert revision != r0
        assert set(campaigns.active.entities) == {"pc-1", "npc-1"}
        assert len(controller.queue) == 0
        assert controller.monitor.known_revision == revision
        assert controller.last_outcome.saved

    @pytest.mark.asyncio
    async def test_online_edit_goes_behind_queued_work(self, context_factory):
        connectivity = Connectivity(online=False)
        controller = await context_factory(connectivity=connectivity)
        ops = CampaignOperations(controller)

        await ops.add_entity(EntityKind.PC, "Ysolde", entity_id="pc-1")
        # Flag flipped without notifying listeners
        connectivity._online = True
        outcome = await ops.add_entity(EntityKind.NPC, "Marcus", entity_id="npc-1")

        assert outcome.saved
        assert len(controller.queue) == 0
        campaigns, _ = await controller.store.get(USER_ID)
        assert set(campaigns.active.entities) == {"pc-1", "npc-1"}

    @pytest.mark.asyncio
    async def test_queued_work_survives_restart(self, test_config):
        """Edits queued offline are committed by the next context that starts online."""
        async with session_scope(test_config, USER_ID, connectivity=Connectivity(online=False)) as controller:
            outcome = await CampaignOperations(controller).add_entity(EntityKind.PC, "Ysolde", entity_id="pc-1")
            assert outcome.state == SyncState.OFFLINE

        async with session_scope(test_config, USER_ID) as controller:
            assert len(controller.queue) == 0
            assert "pc-1" in controller.session.active_campaign.entities
            campaigns, revision = await controller.store.get(USER_ID)
            assert "pc-1" in campaigns.active.entities
            assert controller.monitor.known_revision == revision
            assert not controller.monitor.active

    @pytest.mark.asyncio
    async def test_stale_queued_work_raises_conflict_on_restart(self, test_config):
        async with session_scope(test_config, USER_ID, connectivity=Connectivity(online=False)) as offline:
            await CampaignOperations(offline).add_entity(EntityKind.PC, "Ysolde", entity_id="pc-1")

        async with session_scope(test_config, USER_ID, connectivity=Connectivity(online=False)) as other:
            # Another writer commits straight to the durable copy
            campaigns, _ = await other.store.get(USER_ID)
            campaigns.active.name = "Renamed elsewhere"
            await other.store.put(USER_ID, campaigns)

        async with session_scope(test_config, USER_ID) as controller:
            assert controller.monitor.active
            assert len(controller.queue) == 1
            assert controller.last_outcome.state == SyncState.CONFLICT_BLOCKED
            campaigns, _ = await controller.store.get(USER_ID)
            assert "pc-1" not in campaigns.active.entities

    @pytest.mark.asyncio
    async def test_unreadable_queued_work_is_skipped_on_start(self, test_config):
        journal = PendingOpsJournal(test_config.storage.journal_dir)
        await journal.save(USER_ID, [{
            "id": "op-broken",
            "created_at": "2026-01-01T00:00:00",
            "kind": "save_campaigns",
            "base_revision": None,
            "label": "Created PC",
            "payload": "{not json",
        }])

        async with session_scope(test_config, USER_ID) as controller:
            assert len(controller.queue) == 0
            assert controller.session.active_campaign.name == "New Campaign"
            assert not controller.monitor.active

    @pytest.mark.asyncio
    async def test_discard_pending(self, context_factory):
        controller = await context_factory(connectivity=Connectivity(online=False))
        ops = CampaignOperations(controller)
        await ops.add_entity(EntityKind.PC, "Ysolde")
        await ops.add_entity(EntityKind.PC, "Azurite")
        first = controller.queue.pending()[0]

        assert await controller.discard_pending([first.id]) == 1
        assert await controller.discard_pending() == 1
        assert len(controller.queue) == 0
        assert await controller.flush_pending() is None
