"""
Functional tests for spire-sync.

These tests run whole execution contexts (``runtime.session_scope``) over a
real SQLite file and pending-ops journal in a temporary data directory.

Test Categories:
- Save state machine: saved, offline, conflict-blocked and write-failed paths
- Multi-context: write notifications, conflicts and their resolution
- Undo/redo: scoped history driven through campaign operations
- CLI: the ``python -m spire_sync`` maintenance commands

Usage:
    pytest tests/functional/
"""
