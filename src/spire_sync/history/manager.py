"""
Undo/redo history.

Every scope (the whole campaign, one relationship, or one section of one
entity) owns an independent pair of bounded undo and redo stacks. The
stacks live in a ``HistoryStore`` keyed by scope rather than on the
entities they protect, so a campaign's serialized form never carries its
own edit history.
"""

from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Deque, Dict, Iterator, List, Optional, Tuple

from ..campaign.models import generate_id
from ..utils.config import HistoryConfig
from ..utils.errors import EmptyHistory, SnapshotCorrupt
from ..utils.logging import get_logger


logger = get_logger("spire-sync.history")


class ScopeKind(Enum):
    """Granularity of a history stack."""
    CAMPAIGN = "campaign"
    RELATIONSHIP = "relationship"
    SECTION = "section"


@dataclass(frozen=True)
class HistoryScope:
    """Identifies one pair of undo/redo stacks."""
    kind: ScopeKind
    key: Tuple[str, ...]

    @classmethod
    def campaign(cls, campaign_id: str) -> "HistoryScope":
        return cls(ScopeKind.CAMPAIGN, (campaign_id,))

    @classmethod
    def relationship(cls, relationship_id: str) -> "HistoryScope":
        return cls(ScopeKind.RELATIONSHIP, (relationship_id,))

    @classmethod
    def section(cls, entity_id: str, section: str) -> "HistoryScope":
        return cls(ScopeKind.SECTION, (entity_id, section))

    def __str__(self) -> str:
        return f"{self.kind.value}:{'/'.join(self.key)}"


@dataclass
class HistoryEntry:
    """A labeled snapshot taken just before a mutation."""
    label: str
    scope: HistoryScope
    snapshot: Any
    id: str = field(default_factory=lambda: generate_id("hist"))
    created_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """Summary without the snapshot itself."""
        return {
            "id": self.id,
            "label": self.label,
            "scope": str(self.scope),
            "created_at": self.created_at.isoformat(),
        }


class HistoryStack:
    """Bounded LIFO stack; the oldest entry is dropped on overflow."""

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._entries: Deque[HistoryEntry] = deque(maxlen=capacity)

    def push(self, entry: HistoryEntry) -> Optional[HistoryEntry]:
        """Push an entry, returning the evicted one if the stack was full."""
        evicted = self._entries[0] if len(self._entries) == self.capacity else None
        self._entries.append(entry)
        return evicted

    def pop(self) -> HistoryEntry:
        if not self._entries:
            raise EmptyHistory()
        return self._entries.pop()

    def clear(self) -> None:
        self._entries.clear()

    def entries(self) -> List[HistoryEntry]:
        """Entries oldest first."""
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)


@dataclass
class ScopeHistory:
    undo: HistoryStack
    redo: HistoryStack


class HistoryStore:
    """All history stacks for one session, keyed by scope."""

    def __init__(self, config: Optional[HistoryConfig] = None):
        self.config = config or HistoryConfig()
        self._scopes: Dict[HistoryScope, ScopeHistory] = {}

    def capacity_for(self, kind: ScopeKind) -> int:
        return {
            ScopeKind.CAMPAIGN: self.config.campaign_limit,
            ScopeKind.RELATIONSHIP: self.config.relationship_limit,
            ScopeKind.SECTION: self.config.section_limit,
        }[kind]

    def get(self, scope: HistoryScope) -> ScopeHistory:
        history = self._scopes.get(scope)
        if history is None:
            capacity = self.capacity_for(scope.kind)
            history = ScopeHistory(HistoryStack(capacity), HistoryStack(capacity))
            self._scopes[scope] = history
        return history

    def find(self, scope: HistoryScope) -> Optional[ScopeHistory]:
        return self._scopes.get(scope)

    def scopes(self) -> List[HistoryScope]:
        return list(self._scopes)

    def drop(self, scope: HistoryScope) -> None:
        self._scopes.pop(scope, None)

    def clear(self) -> None:
        self._scopes.clear()


Validator = Callable[[HistoryScope, Any], Any]


class HistoryManager:
    """Symmetric undo/redo over a HistoryStore.

    While a restore is being applied (inside ``applying()``) ``push_undo``
    is a no-op, so code that snapshots on mutation does not record the
    restore itself.
    """

    def __init__(
        self,
        config: Optional[HistoryConfig] = None,
        validators: Optional[Dict[ScopeKind, Validator]] = None,
    ):
        """
        Initialize the manager.

        Args:
            config: Stack capacities per scope kind
            validators: Per-kind callables that check a snapshot before it
                is handed back, returning the usable snapshot or raising
                SnapshotCorrupt
        """
        self.store = HistoryStore(config)
        self.validators = validators or {}
        self._applying = False

    @property
    def is_applying(self) -> bool:
        return self._applying

    @contextmanager
    def applying(self) -> Iterator[None]:
        """Suppress ``push_undo`` while a snapshot is restored."""
        previous = self._applying
        self._applying = True
        try:
            yield
        finally:
            self._applying = previous

    def push_undo(self, scope: HistoryScope, label: str, snapshot: Any) -> Optional[HistoryEntry]:
        """
        Record the state before a mutation and clear the scope's redo stack.

        Returns:
            The new entry, or None when called during a restore
        """
        if self._applying:
            return None

        history = self.store.get(scope)
        entry = HistoryEntry(label=label, scope=scope, snapshot=snapshot)
        evicted = history.undo.push(entry)
        history.redo.clear()

        if evicted is not None:
            logger.debug("history_evicted", scope=str(scope), label=evicted.label)
        logger.debug("undo_pushed", scope=str(scope), label=label, depth=len(history.undo))
        return entry

    def undo(self, scope: HistoryScope, current: Any) -> HistoryEntry:
        """
        Pop the newest usable undo entry.

        ``current`` (the pre-undo live state) is pushed onto the redo stack
        under the popped entry's label.

        Raises:
            EmptyHistory: No usable entry remains
        """
        history = self.store.get(scope)
        entry = self._pop_valid(scope, history.undo, "undo")
        history.redo.push(HistoryEntry(label=entry.label, scope=scope, snapshot=current))
        logger.info("undo_applied", scope=str(scope), label=entry.label)
        return entry

    def redo(self, scope: HistoryScope, current: Any) -> HistoryEntry:
        """Symmetric to ``undo``: pop redo, push ``current`` onto undo."""
        history = self.store.get(scope)
        entry = self._pop_valid(scope, history.redo, "redo")
        history.undo.push(HistoryEntry(label=entry.label, scope=scope, snapshot=current))
        logger.info("redo_applied", scope=str(scope), label=entry.label)
        return entry

    def _pop_valid(self, scope: HistoryScope, stack: HistoryStack, direction: str) -> HistoryEntry:
        validator = self.validators.get(scope.kind)
        while stack:
            entry = stack.pop()
            if validator is None:
                return entry
            try:
                entry.snapshot = validator(scope, entry.snapshot)
                return entry
            except SnapshotCorrupt as e:
                logger.warning(
                    "history_entry_skipped",
                    scope=str(scope),
                    direction=direction,
                    entry_id=entry.id,
                    label=entry.label,
                    error=str(e),
                )
        raise EmptyHistory(f"Nothing to {direction} for {scope}")

    def can_undo(self, scope: HistoryScope) -> bool:
        history = self.store.find(scope)
        return bool(history and history.undo)

    def can_redo(self, scope: HistoryScope) -> bool:
        history = self.store.find(scope)
        return bool(history and history.redo)

    def undo_entries(self, scope: HistoryScope) -> List[HistoryEntry]:
        history = self.store.find(scope)
        return history.undo.entries() if history else []

    def redo_entries(self, scope: HistoryScope) -> List[HistoryEntry]:
        history = self.store.find(scope)
        return history.redo.entries() if history else []

    def clear(self, scope: Optional[HistoryScope] = None) -> None:
        """Forget one scope's history, or all of it."""
        if scope is None:
            self.store.clear()
        else:
            self.store.drop(scope)
