"""
Sync controller.

Orchestrates one context's saves. Every mutating action snapshots the
protected state, mutates the live campaign in place, then persists:

    Idle -> Saving -> {Saved | Offline | ConflictBlocked | WriteFailed} -> Idle

While a conflict is active nothing is written directly; edits go to the
offline queue until the user resolves the conflict.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, TypeVar

from ..campaign.models import Campaign, CampaignSet
from ..history.manager import HistoryManager, HistoryScope, ScopeKind, Validator
from ..session import SessionContext
from ..storage.codec import SnapshotCodec
from ..storage.revision import RevisionToken
from ..storage.store import DurableStore
from ..utils.errors import (
    CampaignNotFound,
    HistoryError,
    QueueFlushRejected,
    SpireSyncError,
    StaleRevision,
    StorageUnavailable,
    StorageWriteFailure,
)
from ..utils.logging import get_logger
from .conflict import ConflictMonitor, ResolutionKind
from .connectivity import Connectivity
from .notifier import Notifier, WriteCommitted
from .queue import OfflineQueue, OperationKind


logger = get_logger("spire-sync.sync.controller")

T = TypeVar("T")


class SyncState(Enum):
    """Save state machine."""
    IDLE = "idle"
    SAVING = "saving"
    SAVED = "saved"
    OFFLINE = "offline"
    CONFLICT_BLOCKED = "conflict_blocked"
    WRITE_FAILED = "write_failed"


@dataclass
class SaveIndicator:
    """What the UI shows next to the save button."""
    state: SyncState
    message: str = ""
    sticky: bool = False
    retryable: bool = False


@dataclass
class SaveOutcome:
    """Result of one persist attempt."""
    state: SyncState
    label: str = ""
    revision: Optional[RevisionToken] = None
    operation_id: Optional[str] = None
    error: Optional[SpireSyncError] = None
    result: Any = None

    @property
    def saved(self) -> bool:
        return self.state == SyncState.SAVED


StateListener = Callable[[SyncState, SaveIndicator], None]


def history_validators(codec: SnapshotCodec) -> Dict[ScopeKind, Validator]:
    """Snapshot checks used before a history entry is restored."""
    return {
        ScopeKind.CAMPAIGN: lambda scope, snapshot: codec.restore_campaign(snapshot),
        ScopeKind.RELATIONSHIP: lambda scope, snapshot: codec.restore_relationship(snapshot),
        ScopeKind.SECTION: lambda scope, snapshot: codec.restore_section(scope.key[1], snapshot),
    }


class SyncController:
    """Persists one context's edits and keeps it consistent with others."""

    def __init__(
        self,
        session: SessionContext,
        store: DurableStore,
        monitor: ConflictMonitor,
        queue: OfflineQueue,
        notifier: Notifier,
        history: HistoryManager,
        connectivity: Connectivity,
        codec: Optional[SnapshotCodec] = None,
    ):
        self.session = session
        self.store = store
        self.monitor = monitor
        self.queue = queue
        self.notifier = notifier
        self.history = history
        self.connectivity = connectivity
        self.codec = codec or store.codec

        self.state = SyncState.IDLE
        self.indicator = SaveIndicator(SyncState.IDLE)
        self.last_outcome: Optional[SaveOutcome] = None
        self._listeners: List[StateListener] = []
        self._write_lock = asyncio.Lock()
        self._unsubscribers: List[Callable[[], None]] = []

    # Lifecycle

    async def start(self) -> Optional[RevisionToken]:
        """Load pending work and campaigns, then listen for other writers."""
        await self.queue.load()
        self._unsubscribers.append(self.notifier.subscribe(self._on_remote_write))
        self._unsubscribers.append(self.connectivity.add_listener(self._on_connectivity))

        revision = await self.load()
        if len(self.queue) and self.connectivity.online:
            await self.flush_pending()
        return revision

    async def stop(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

    async def load(self) -> Optional[RevisionToken]:
        """
        Load the user's campaigns into the session.

        A new user gets the default campaign set, committed immediately.
        Queued work from an earlier run takes precedence over the durable
        copy; its base revision becomes the known revision so the next
        flush is checked against it.

        Returns:
            The revision now known
        """
        user_id = self.session.user_id
        try:
            campaigns, revision = await self.store.get(user_id)
        except CampaignNotFound:
            campaigns = CampaignSet.default()
            try:
                revision = await self.store.put(user_id, campaigns, expected_revision=None)
                logger.info("default_campaigns_created", user_id=user_id, revision=revision)
            except StaleRevision:
                campaigns, revision = await self.store.get(user_id)

        latest, queued = await self.queue.latest_snapshot(OperationKind.SAVE_CAMPAIGNS)
        if latest is not None:
            campaigns = queued
            revision = latest.base_revision
            logger.info("pending_work_restored", user_id=user_id, pending=len(self.queue))

        self.session.replace_campaigns(campaigns)
        self.monitor.acknowledge(revision)
        return revision

    # Listeners

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _transition(self, state: SyncState, indicator: Optional[SaveIndicator] = None) -> None:
        self.state = state
        if indicator is not None:
            self.indicator = indicator
        for listener in list(self._listeners):
            try:
                listener(state, self.indicator)
            except Exception as e:
                logger.error("state_listener_failed", error=str(e), exc_info=True)

    def _finish(self, outcome: SaveOutcome, indicator: SaveIndicator) -> SaveOutcome:
        self.last_outcome = outcome
        self._transition(outcome.state, indicator)
        self._transition(SyncState.IDLE)
        return outcome

    # Scopes

    def campaign_scope(self) -> HistoryScope:
        return HistoryScope.campaign(self.session.require_active_campaign().id)

    def can_undo(self, scope: Optional[HistoryScope] = None) -> bool:
        return self.history.can_undo(scope or self.campaign_scope())

    def can_redo(self, scope: Optional[HistoryScope] = None) -> bool:
        return self.history.can_redo(scope or self.campaign_scope())

    def _capture(self, scope: HistoryScope, campaign: Campaign) -> Any:
        if scope.kind == ScopeKind.CAMPAIGN:
            return self.codec.snapshot_campaign(campaign)
        if scope.kind == ScopeKind.RELATIONSHIP:
            return self.codec.snapshot_relationship(campaign.relationships.get(scope.key[0]))

        entity_id, section = scope.key
        entity = campaign.entities.get(entity_id)
        if entity is None:
            raise HistoryError(f"Entity {entity_id} no longer exists")
        return self.codec.snapshot_section(entity, section)

    def _apply(self, scope: HistoryScope, campaign: Campaign, snapshot: Any) -> None:
        """Restore a validated snapshot onto the live campaign, in place."""
        if scope.kind == ScopeKind.CAMPAIGN:
            for name in Campaign.model_fields:
                setattr(campaign, name, getattr(snapshot, name))
        elif scope.kind == ScopeKind.RELATIONSHIP:
            relationship_id = scope.key[0]
            if snapshot is None:
                campaign.relationships.pop(relationship_id, None)
            else:
                campaign.relationships[relationship_id] = snapshot
        else:
            entity_id, section = scope.key
            setattr(campaign.entity(entity_id), section, snapshot)

    def _target_campaign(self, scope: HistoryScope) -> Campaign:
        if scope.kind == ScopeKind.CAMPAIGN:
            campaign = self.session.campaigns.campaigns.get(scope.key[0])
            if campaign is None:
                raise HistoryError(f"Campaign {scope.key[0]} is not loaded")
            return campaign
        return self.session.require_active_campaign()

    # Mutations

    async def mutate(
        self,
        scope: Optional[HistoryScope],
        label: str,
        fn: Callable[[Campaign], T],
    ) -> SaveOutcome:
        """
        Apply ``fn`` to the active campaign and persist the result.

        The snapshot, the mutation and the history push run without
        yielding. If ``fn`` raises, nothing is recorded and the exception
        propagates.

        Args:
            scope: History scope protecting the edit, or None for no history
            label: Shown in undo/redo menus
            fn: Mutates the campaign in place; its return value is carried
                on the outcome

        Returns:
            How the save went
        """
        campaign = (
            self._target_campaign(scope) if scope is not None
            else self.session.require_active_campaign()
        )
        snapshot = self._capture(scope, campaign) if scope is not None else None

        result = fn(campaign)

        if scope is not None:
            self.history.push_undo(scope, label, snapshot)

        outcome = await self._persist(label, local_edit=True)
        outcome.result = result
        return outcome

    async def mutate_campaigns(self, label: str, fn: Callable[[CampaignSet], T]) -> SaveOutcome:
        """Apply ``fn`` to the whole campaign set, without history, and persist."""
        result = fn(self.session.campaigns)
        outcome = await self._persist(label, local_edit=True)
        outcome.result = result
        return outcome

    async def undo(self, scope: Optional[HistoryScope] = None) -> SaveOutcome:
        """Restore the newest undo entry for a scope and persist it.

        Raises:
            EmptyHistory: Nothing usable to undo
        """
        return await self._step(scope or self.campaign_scope(), self.history.undo, "Undo")

    async def redo(self, scope: Optional[HistoryScope] = None) -> SaveOutcome:
        """Symmetric to ``undo``."""
        return await self._step(scope or self.campaign_scope(), self.history.redo, "Redo")

    async def _step(self, scope: HistoryScope, pop: Callable, verb: str) -> SaveOutcome:
        campaign = self._target_campaign(scope)
        current = self._capture(scope, campaign)
        entry = pop(scope, current)

        with self.history.applying():
            self._apply(scope, campaign, entry.snapshot)

        return await self._persist(f"{verb} {entry.label}", local_edit=True)

    # Persistence

    async def _persist(self, label: str, local_edit: bool) -> SaveOutcome:
        async with self._write_lock:
            self._transition(SyncState.SAVING)

            if self.monitor.active:
                if local_edit:
                    self.monitor.note_local_edit()
                return await self._enqueue(label, SyncState.CONFLICT_BLOCKED)

            if not self.connectivity.online:
                return await self._enqueue(label, SyncState.OFFLINE)

            if len(self.queue):
                # Earlier edits are still queued; this one goes behind them
                try:
                    await self._queue_current(label)
                except StorageWriteFailure as e:
                    return self._write_failed(label, e)
                return await self._flush_locked(label)

            return await self._commit(label)

    async def _commit(self, label: str) -> SaveOutcome:
        user_id = self.session.user_id
        known = self.monitor.known_revision
        try:
            revision = await self.store.put(user_id, self.session.campaigns, expected_revision=known)
        except StaleRevision as e:
            self.monitor.observe(e.actual, local_write=True)
            return await self._enqueue(label, SyncState.CONFLICT_BLOCKED)
        except StorageUnavailable as e:
            logger.warning("storage_unavailable_queueing", user_id=user_id, error=str(e))
            return await self._enqueue(label, SyncState.OFFLINE)
        except StorageWriteFailure as e:
            return self._write_failed(label, e)

        return await self._saved(label, revision)

    async def _queue_current(self, label: str):
        operation = self.queue.make_operation(
            self.session.campaigns, self.monitor.known_revision, label
        )
        await self.queue.enqueue(operation)
        return operation

    async def _enqueue(self, label: str, state: SyncState) -> SaveOutcome:
        try:
            operation = await self._queue_current(label)
        except StorageWriteFailure as e:
            return self._write_failed(label, e)

        outcome = SaveOutcome(state=state, label=label, operation_id=operation.id)
        if state == SyncState.CONFLICT_BLOCKED:
            return self._finish(outcome, self._conflict_indicator())

        return self._finish(outcome, SaveIndicator(
            SyncState.OFFLINE,
            f"Offline: {len(self.queue)} change(s) queued",
            retryable=True,
        ))

    async def _flush_locked(self, label: str) -> SaveOutcome:
        try:
            await self.queue.flush(OperationKind.SAVE_CAMPAIGNS)
        except QueueFlushRejected as e:
            return self._finish(
                SaveOutcome(SyncState.CONFLICT_BLOCKED, label=label, error=e),
                self._conflict_indicator(),
            )
        except StorageUnavailable as e:
            return self._finish(
                SaveOutcome(SyncState.OFFLINE, label=label, error=e),
                SaveIndicator(SyncState.OFFLINE, f"Offline: {len(self.queue)} change(s) queued", retryable=True),
            )
        except StorageWriteFailure as e:
            return self._write_failed(label, e)

        return await self._saved(label, self.monitor.known_revision)

    async def _saved(self, label: str, revision: RevisionToken) -> SaveOutcome:
        self.monitor.acknowledge(revision)
        active = self.session.active_campaign
        await self.notifier.announce(WriteCommitted(
            revision=revision,
            campaign_id=active.id if active else None,
            actor_label=self.session.actor_label,
            actor_role=self.session.actor_role,
        ))
        logger.debug("saved", user_id=self.session.user_id, label=label, revision=revision)
        return self._finish(
            SaveOutcome(SyncState.SAVED, label=label, revision=revision),
            SaveIndicator(SyncState.SAVED, "All changes saved"),
        )

    def _write_failed(self, label: str, error: StorageWriteFailure) -> SaveOutcome:
        logger.error("write_failed", user_id=self.session.user_id, label=label, error=str(error))
        return self._finish(
            SaveOutcome(SyncState.WRITE_FAILED, label=label, error=error),
            SaveIndicator(SyncState.WRITE_FAILED, f"Save failed: {error.message}", retryable=True),
        )

    def _conflict_indicator(self) -> SaveIndicator:
        state = self.monitor.state
        message = "Campaign was changed elsewhere"
        if state.local_edit_count:
            message += f"; {state.local_edit_count} local edit(s) held"
        return SaveIndicator(SyncState.CONFLICT_BLOCKED, message, sticky=state.visible)

    # User actions

    async def retry(self) -> SaveOutcome:
        """Retry after a failed write or with queued work."""
        if self.monitor.active:
            return self._finish(
                SaveOutcome(SyncState.CONFLICT_BLOCKED, label="Retry"),
                self._conflict_indicator(),
            )
        return await self._persist("Retry", local_edit=False)

    async def flush_pending(self) -> Optional[SaveOutcome]:
        """Flush queued work if it is safe to try now."""
        if not len(self.queue) or self.monitor.active or not self.connectivity.online:
            return None
        async with self._write_lock:
            self._transition(SyncState.SAVING)
            return await self._flush_locked("Queued changes")

    async def discard_pending(self, ids: Optional[List[str]] = None) -> int:
        """Drop queued operations, all of them when ``ids`` is None."""
        async with self._write_lock:
            if ids is None:
                return await self.queue.clear()
            return await self.queue.discard(ids)

    async def resolve_conflict(self, kind: ResolutionKind) -> SaveOutcome:
        """
        Settle an active conflict.

        Reloading or force-overwriting both drop the queued edits.
        Reloading also forgets all undo/redo history. Dismissing only
        hides the conflict until the next local write.
        """
        label = kind.value
        async with self._write_lock:
            try:
                revision = await self.monitor.resolve(kind)
            except StorageUnavailable as e:
                return self._finish(
                    SaveOutcome(SyncState.OFFLINE, label=label, error=e),
                    SaveIndicator(SyncState.OFFLINE, "Storage unavailable", retryable=True),
                )
            except StorageWriteFailure as e:
                return self._write_failed(label, e)

            if kind == ResolutionKind.DISMISS:
                return self._finish(
                    SaveOutcome(SyncState.CONFLICT_BLOCKED, label=label),
                    self._conflict_indicator(),
                )

            await self.queue.clear(OperationKind.SAVE_CAMPAIGNS)
            if kind == ResolutionKind.FORCE_OVERWRITE:
                return await self._saved(label, revision)

            # History only ever describes the state it was recorded against
            self.history.clear()
            logger.info("history_cleared_on_reload", user_id=self.session.user_id, revision=revision)

            return self._finish(
                SaveOutcome(SyncState.IDLE, label=label, revision=revision),
                SaveIndicator(SyncState.IDLE, "Loaded latest campaigns"),
            )

    async def check_consistency(self) -> bool:
        """Compare against the durable revision; returns whether a conflict is active."""
        try:
            current = await self.store.current_revision(self.session.user_id)
        except StorageUnavailable:
            return self.monitor.active
        return self._observe(current)

    # External events

    async def _on_remote_write(self, event: WriteCommitted) -> None:
        logger.debug(
            "remote_write_observed",
            revision=event.revision,
            actor=event.actor_label,
            actor_role=event.actor_role.value,
        )
        self._observe(event.revision)

    async def _on_connectivity(self, online: bool) -> None:
        if online:
            await self.flush_pending()

    def _observe(self, revision: Optional[RevisionToken]) -> bool:
        was_active = self.monitor.active
        active = self.monitor.observe(revision)
        if active and not was_active:
            self._transition(self.state, self._conflict_indicator())
        return active
