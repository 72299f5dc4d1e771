"""
spire-sync - durable, multi-writer campaign state for the Spire RPG.

This package persists campaigns with:
- Revisioned durable storage with a rolling backup
- Conflict detection across windows and devices
- An offline queue replayed on reconnect
- Undo/redo at campaign, relationship and section granularity
"""

__version__ = "0.1.0"

__all__ = [
    '__version__',
]
