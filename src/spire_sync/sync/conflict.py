"""
Conflict detection.

A conflict is raised when a revision written by someone else is observed,
and stays raised until the user resolves it by reloading the latest state
or by force-overwriting it. Successful saves never clear it.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Protocol

from ..storage.revision import Comparison, RevisionClock, RevisionToken
from ..utils.logging import get_logger

if TYPE_CHECKING:
    from ..session import SessionContext
    from ..storage.store import DurableStore


logger = get_logger("spire-sync.sync.conflict")


class ResolutionKind(Enum):
    """How the user chose to settle a conflict."""
    RELOAD_LATEST = "reload_latest"
    FORCE_OVERWRITE = "force_overwrite"
    DISMISS = "dismiss"


class ConsistencyOracle(Protocol):
    """Anything that can be told about a revision seen elsewhere."""

    def observe(self, external_revision: Optional[RevisionToken]) -> bool:
        ...


@dataclass
class ConflictState:
    """Sticky conflict flag plus what the UI needs to explain it."""
    active: bool = False
    since_revision: Optional[RevisionToken] = None
    observed_revision: Optional[RevisionToken] = None
    local_edit_count: int = 0
    dismissed: bool = False
    raised_at: Optional[datetime] = None

    @property
    def visible(self) -> bool:
        return self.active and not self.dismissed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "active": self.active,
            "since_revision": self.since_revision,
            "observed_revision": self.observed_revision,
            "local_edit_count": self.local_edit_count,
            "dismissed": self.dismissed,
            "raised_at": self.raised_at.isoformat() if self.raised_at else None,
        }


class ConflictMonitor:
    """Compares observed revisions against the locally known one."""

    def __init__(
        self,
        store: "DurableStore",
        session: "SessionContext",
        known_revision: Optional[RevisionToken] = None,
    ):
        self.store = store
        self.session = session
        self.known_revision = known_revision
        self.state = ConflictState()
        self._listeners: List[Callable[[ConflictState], None]] = []

    @property
    def active(self) -> bool:
        return self.state.active

    def add_listener(self, listener: Callable[[ConflictState], None]) -> None:
        self._listeners.append(listener)

    def observe(self, external_revision: Optional[RevisionToken], local_write: bool = False) -> bool:
        """
        Report a revision seen outside this context.

        Args:
            external_revision: Revision read from storage or a notification
            local_write: The observation came from a local write attempt

        Returns:
            Whether a conflict is active afterwards
        """
        if self.state.active:
            if local_write:
                self.note_local_edit()
            return True

        if RevisionClock.compare(external_revision, self.known_revision) == Comparison.EQUAL:
            return False

        self.raise_conflict(self.known_revision, external_revision)
        return True

    def raise_conflict(
        self,
        since_revision: Optional[RevisionToken],
        observed_revision: Optional[RevisionToken],
    ) -> None:
        """Raise the conflict unconditionally."""
        if self.state.active:
            self.state.observed_revision = observed_revision
            return

        self.state = ConflictState(
            active=True,
            since_revision=since_revision,
            observed_revision=observed_revision,
            raised_at=datetime.utcnow(),
        )
        logger.warning(
            "conflict_raised",
            user_id=self.session.user_id,
            since_revision=since_revision,
            observed_revision=observed_revision,
        )
        self._notify()

    def note_local_edit(self) -> None:
        """Count a local edit attempted while the conflict is active."""
        if not self.state.active:
            return
        self.state.local_edit_count += 1
        # A dismissed conflict reappears on the next write attempt
        self.state.dismissed = False
        self._notify()

    def acknowledge(self, revision: RevisionToken) -> None:
        """Record a revision this context committed or loaded itself."""
        self.known_revision = revision

    async def resolve(self, kind: ResolutionKind) -> Optional[RevisionToken]:
        """
        Settle the conflict.

        ``RELOAD_LATEST`` replaces the session's campaigns with the durable
        state. ``FORCE_OVERWRITE`` writes the session's campaigns without a
        revision check. ``DISMISS`` only hides the signal.

        Returns:
            The revision now known, or None for ``DISMISS``
        """
        if kind == ResolutionKind.DISMISS:
            if self.state.active:
                self.state.dismissed = True
                self._notify()
            return None

        user_id = self.session.user_id
        if kind == ResolutionKind.RELOAD_LATEST:
            campaigns, revision = await self.store.get(user_id)
            self.session.replace_campaigns(campaigns)
        else:
            revision = await self.store.put(user_id, self.session.campaigns)

        logger.info(
            "conflict_resolved",
            user_id=user_id,
            kind=kind.value,
            revision=revision,
            local_edit_count=self.state.local_edit_count,
        )
        self.known_revision = revision
        self.state = ConflictState()
        self._notify()
        return revision

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self.state)
            except Exception as e:
                logger.error("conflict_listener_failed", error=str(e), exc_info=True)
