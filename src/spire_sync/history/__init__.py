"""Undo/redo history for campaign, relationship and section scopes."""

from .manager import (
    HistoryEntry,
    HistoryManager,
    HistoryScope,
    HistoryStack,
    HistoryStore,
    ScopeHistory,
    ScopeKind,
)

__all__ = [
    "HistoryEntry",
    "HistoryManager",
    "HistoryScope",
    "HistoryStack",
    "HistoryStore",
    "ScopeHistory",
    "ScopeKind",
]
