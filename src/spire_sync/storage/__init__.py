"""
Storage components for spire-sync.

This package provides durable persistence with:
- SQLite key/value storage
- Campaign snapshot serialization and cloning
- Revision tokens
- The pending-operations journal
"""

from .database import Database
from .codec import SnapshotCodec
from .revision import RevisionClock, RevisionToken, Comparison
from .store import DurableStore, UNCHECKED
from .journal import PendingOpsJournal

__all__ = [
    'Database',
    'SnapshotCodec',
    'RevisionClock',
    'RevisionToken',
    'Comparison',
    'DurableStore',
    'UNCHECKED',
    'PendingOpsJournal',
]
