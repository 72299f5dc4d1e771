"""
Multi-writer synchronization for spire-sync.

This package keeps one context's campaigns consistent with the durable
store and with other contexts:
- Conflict detection by revision comparison
- An offline queue for writes that cannot be committed yet
- Write notifications over pluggable transports
- The save state machine that ties them together
"""

from ..storage.revision import RevisionClock, RevisionToken, Comparison
from .conflict import ConflictMonitor, ConflictState, ConsistencyOracle, ResolutionKind
from .connectivity import Connectivity
from .queue import OfflineQueue, OperationKind, PendingOperation
from .notifier import Notifier, WriteCommitted
from .controller import SyncController, SyncState, SaveIndicator, SaveOutcome, history_validators

__all__ = [
    'RevisionClock',
    'RevisionToken',
    'Comparison',
    'ConflictMonitor',
    'ConflictState',
    'ConsistencyOracle',
    'ResolutionKind',
    'Connectivity',
    'OfflineQueue',
    'OperationKind',
    'PendingOperation',
    'Notifier',
    'WriteCommitted',
    'SyncController',
    'SyncState',
    'SaveIndicator',
    'SaveOutcome',
    'history_validators',
]
