"""
Offline queue of writes that could not be committed.

Each entry carries the revision its author believed was current. An entry
is only ever flushed onto that same revision; anything else becomes a
visible conflict instead of an overwrite.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Tuple

from ..campaign.models import CampaignSet, generate_id
from ..storage.codec import SnapshotCodec
from ..storage.journal import PendingOpsJournal
from ..storage.revision import RevisionToken
from ..utils.errors import ErrorContext, QueueFlushRejected, SnapshotCorrupt, StaleRevision
from ..utils.logging import get_logger

if TYPE_CHECKING:
    from ..storage.store import DurableStore
    from .conflict import ConflictMonitor


logger = get_logger("spire-sync.sync.queue")


class OperationKind(Enum):
    """What a pending operation writes."""
    SAVE_CAMPAIGNS = "save_campaigns"


@dataclass
class PendingOperation:
    """A full-state write waiting to be committed."""
    kind: OperationKind
    base_revision: Optional[RevisionToken]
    payload: str
    label: str = ""
    id: str = field(default_factory=lambda: generate_id("op"))
    created_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "created_at": self.created_at.isoformat(),
            "kind": self.kind.value,
            "base_revision": self.base_revision,
            "label": self.label,
            "payload": self.payload,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PendingOperation":
        return cls(
            id=data["id"],
            created_at=datetime.fromisoformat(data["created_at"]),
            kind=OperationKind(data["kind"]),
            base_revision=data.get("base_revision"),
            label=data.get("label", ""),
            payload=data["payload"],
        )


class OfflineQueue:
    """Bounded, journaled queue of pending operations for one user."""

    def __init__(
        self,
        store: "DurableStore",
        monitor: "ConflictMonitor",
        journal: PendingOpsJournal,
        user_id: str,
        max_entries: int = 50,
        codec: Optional[SnapshotCodec] = None,
    ):
        """
        Initialize the queue.

        Args:
            store: Durable store flushed into
            monitor: Told about stale base revisions
            journal: Where the queue itself is persisted
            user_id: Owner of the queued writes
            max_entries: Cap; the oldest entries are evicted first
            codec: Encodes and decodes payloads
        """
        self.store = store
        self.monitor = monitor
        self.journal = journal
        self.user_id = user_id
        self.max_entries = max_entries
        self.codec = codec or store.codec
        self._ops: List[PendingOperation] = []

    def __len__(self) -> int:
        return len(self._ops)

    def pending(self, kind: Optional[OperationKind] = None) -> List[PendingOperation]:
        """Queued operations, oldest first."""
        if kind is None:
            return list(self._ops)
        return [op for op in self._ops if op.kind == kind]

    async def load(self) -> int:
        """Restore the queue from the journal; malformed entries are dropped."""
        entries = await self.journal.load(self.user_id)
        ops = []
        for entry in entries:
            try:
                operation = PendingOperation.from_dict(entry)
                self.codec.decode(operation.payload)
            except (KeyError, ValueError, TypeError, SnapshotCorrupt) as e:
                logger.warning("pending_entry_dropped", user_id=self.user_id, error=str(e))
                continue
            ops.append(operation)
        self._ops = ops[-self.max_entries:]
        logger.info("queue_loaded", user_id=self.user_id, pending=len(self._ops))
        return len(self._ops)

    def make_operation(
        self,
        campaign_set: CampaignSet,
        base_revision: Optional[RevisionToken],
        label: str = "",
    ) -> PendingOperation:
        """Build a full-state save operation; encoding errors surface here."""
        return PendingOperation(
            kind=OperationKind.SAVE_CAMPAIGNS,
            base_revision=base_revision,
            payload=self.codec.encode(campaign_set),
            label=label,
        )

    async def enqueue(self, operation: PendingOperation) -> List[PendingOperation]:
        """
        Append an operation and persist the queue.

        Returns:
            Operations evicted to stay under the cap
        """
        self._ops.append(operation)
        evicted: List[PendingOperation] = []
        while len(self._ops) > self.max_entries:
            evicted.append(self._ops.pop(0))

        if evicted:
            logger.warning(
                "queue_evicted",
                user_id=self.user_id,
                evicted=[op.id for op in evicted],
            )
        logger.info(
            "operation_queued",
            user_id=self.user_id,
            operation_id=operation.id,
            base_revision=operation.base_revision,
            pending=len(self._ops),
        )

        await self._persist()
        return evicted

    async def discard(self, ids: Iterable[str]) -> int:
        """Drop operations by id. Returns how many were removed."""
        ids = set(ids)
        before = len(self._ops)
        self._ops = [op for op in self._ops if op.id not in ids]
        removed = before - len(self._ops)
        if removed:
            await self._persist()
            logger.info("operations_discarded", user_id=self.user_id, count=removed)
        return removed

    async def clear(self, kind: Optional[OperationKind] = None) -> int:
        removed = [op.id for op in self.pending(kind)]
        return await self.discard(removed)

    async def latest_snapshot(
        self, kind: OperationKind = OperationKind.SAVE_CAMPAIGNS
    ) -> Tuple[Optional[PendingOperation], Optional[CampaignSet]]:
        """
        Newest queued operation of ``kind`` whose payload still decodes.

        Operations with unreadable payloads are dropped with a warning.

        Returns:
            The operation and its campaign set, or ``(None, None)``
        """
        corrupt: List[str] = []
        found: Tuple[Optional[PendingOperation], Optional[CampaignSet]] = (None, None)
        for operation in reversed(self.pending(kind)):
            try:
                found = (operation, self.codec.decode(operation.payload))
                break
            except SnapshotCorrupt as e:
                logger.warning(
                    "pending_payload_corrupt",
                    user_id=self.user_id,
                    operation_id=operation.id,
                    error=str(e),
                )
                corrupt.append(operation.id)

        if corrupt:
            await self.discard(corrupt)
        return found

    async def flush(self, kind: OperationKind = OperationKind.SAVE_CAMPAIGNS) -> int:
        """
        Commit the latest queued operation of ``kind``.

        Later operations supersede earlier ones, so only the newest payload
        is written; on success every queued operation of that kind is
        cleared. An operation with no base revision only lands on a store
        that has never been written.

        Returns:
            Number of operations cleared

        Raises:
            QueueFlushRejected: The operation's base revision is no longer
                the durable one; the conflict monitor has been told
        """
        latest, campaign_set = await self.latest_snapshot(kind)
        if latest is None:
            return 0

        ops = self.pending(kind)
        current = await self.store.current_revision(self.user_id)

        if latest.base_revision != current:
            raise self._rejection(latest, current)

        try:
            revision = await self.store.put(self.user_id, campaign_set, expected_revision=current)
        except StaleRevision as e:
            # Someone committed between the revision read and the write
            raise self._rejection(latest, e.actual) from e

        self._ops = [op for op in self._ops if op.kind != kind]
        await self._persist()
        self.monitor.acknowledge(revision)

        logger.info(
            "queue_flushed",
            user_id=self.user_id,
            flushed=len(ops),
            revision=revision,
        )
        return len(ops)

    def _rejection(
        self, operation: PendingOperation, current: Optional[RevisionToken]
    ) -> QueueFlushRejected:
        if not self.monitor.observe(current):
            self.monitor.raise_conflict(operation.base_revision, current)

        logger.warning(
            "queue_flush_rejected",
            user_id=self.user_id,
            operation_id=operation.id,
            base_revision=operation.base_revision,
            current_revision=current,
        )
        return QueueFlushRejected(
            operation.base_revision,
            current,
            context=ErrorContext(user_id=self.user_id, component="queue", operation="flush"),
        )

    async def _persist(self) -> None:
        await self.journal.save(self.user_id, [op.to_dict() for op in self._ops])
