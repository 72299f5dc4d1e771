"""
Unit tests for the undo/redo history.
"""

import pytest

from spire_sync.campaign.models import Campaign
from spire_sync.history.manager import (
    HistoryEntry,
    HistoryManager,
    HistoryScope,
    HistoryStack,
    ScopeKind,
)
from spire_sync.utils.config import HistoryConfig
from spire_sync.utils.errors import EmptyHistory


CAMPAIGN = HistoryScope.campaign("camp-1")


class TestHistoryStack:
    """Test the bounded stack."""

    def test_capacity_must_be_positive(self):
        with pytest.raises(ValueError):
            HistoryStack(0)

    def test_oldest_evicted(self):
        stack = HistoryStack(2)
        entries = [HistoryEntry(label=str(i), scope=CAMPAIGN, snapshot=i) for i in range(3)]

        assert stack.push(entries[0]) is None
        assert stack.push(entries[1]) is None
        assert stack.push(entries[2]) is entries[0]
        assert [e.label for e in stack.entries()] == ["1", "2"]

    def test_pop_empty(self):
        with pytest.raises(EmptyHistory):
            HistoryStack(1).pop()


class TestHistoryScope:
    """Test scope identity."""

    def test_scopes_are_hashable_keys(self):
        assert HistoryScope.section("pc-1", "tasks") == HistoryScope.section("pc-1", "tasks")
        assert HistoryScope.section("pc-1", "tasks") != HistoryScope.section("pc-1", "bonds")
        assert HistoryScope.relationship("rel-1") != HistoryScope.campaign("rel-1")
        assert str(HistoryScope.section("pc-1", "tasks")) == "section:pc-1/tasks"


class TestHistoryManager:
    """Test undo/redo symmetry and bounds."""

    def test_undo_redo_symmetry(self):
        manager = HistoryManager()
        manager.push_undo(CAMPAIGN, "Renamed", "before")

        undone = manager.undo(CAMPAIGN, "after")
        assert undone.snapshot == "before"
        assert not manager.can_undo(CAMPAIGN)
        assert manager.can_redo(CAMPAIGN)

        redone = manager.redo(CAMPAIGN, "before")
        assert redone.snapshot == "after"
        assert redone.label == "Renamed"
        assert manager.can_undo(CAMPAIGN)
        assert not manager.can_redo(CAMPAIGN)

    def test_new_edit_clears_redo(self):
        manager = HistoryManager()
        manager.push_undo(CAMPAIGN, "First", 1)
        manager.undo(CAMPAIGN, 2)

        manager.push_undo(CAMPAIGN, "Second", 1)

        assert not manager.can_redo(CAMPAIGN)

    def test_bounded_by_scope_kind(self):
        """Pushing cap+5 entries leaves exactly cap undoable."""
        manager = HistoryManager(HistoryConfig(campaign_limit=20))
        for i in range(25):
            manager.push_undo(CAMPAIGN, f"edit {i}", i)

        popped = []
        for _ in range(20):
            popped.append(manager.undo(CAMPAIGN, None).snapshot)

        with pytest.raises(EmptyHistory):
            manager.undo(CAMPAIGN, None)
        assert popped == list(range(24, 4, -1))

    def test_capacities_follow_config(self, history):
        assert history.store.capacity_for(ScopeKind.CAMPAIGN) == 3
        assert HistoryManager().store.capacity_for(ScopeKind.RELATIONSHIP) == 30

    def test_scopes_are_independent(self):
        manager = HistoryManager()
        tasks = HistoryScope.section("pc-1", "tasks")
        manager.push_undo(tasks, "Edited tasks", [])

        assert manager.can_undo(tasks)
        assert not manager.can_undo(HistoryScope.section("pc-1", "bonds"))
        assert not manager.can_undo(CAMPAIGN)

    def test_push_ignored_while_applying(self):
        manager = HistoryManager()
        with manager.applying():
            assert manager.is_applying
            assert manager.push_undo(CAMPAIGN, "Restore", 0) is None

        assert not manager.is_applying
        assert not manager.can_undo(CAMPAIGN)

    def test_corrupt_entries_skipped(self, history):
        """A snapshot failing validation is dropped and the next one used."""
        good = Campaign(id="camp-1", name="Good")
        history.push_undo(CAMPAIGN, "Good edit", good)
        history.push_undo(CAMPAIGN, "Broken edit", {"name": "no id"})

        entry = history.undo(CAMPAIGN, Campaign(id="camp-1", name="Current"))

        assert entry.label == "Good edit"
        assert entry.snapshot == good
        assert entry.snapshot is not good
        assert not history.can_undo(CAMPAIGN)

    def test_only_corrupt_entries(self, history):
        history.push_undo(CAMPAIGN, "Broken edit", "not a campaign")

        with pytest.raises(EmptyHistory):
            history.undo(CAMPAIGN, Campaign(id="camp-1"))

    def test_clear(self):
        manager = HistoryManager()
        other = HistoryScope.relationship("rel-1")
        manager.push_undo(CAMPAIGN, "a", 1)
        manager.push_undo(other, "b", None)

        manager.clear(CAMPAIGN)
        assert not manager.can_undo(CAMPAIGN)
        assert manager.can_undo(other)

        manager.clear()
        assert manager.store.scopes() == []

    def test_entry_summary(self):
        entry = HistoryEntry(label="Edited tasks", scope=HistoryScope.section("pc-1", "tasks"), snapshot=[])

        summary = entry.to_dict()

        assert summary["label"] == "Edited tasks"
        assert summary["scope"] == "section:pc-1/tasks"
        assert "snapshot" not in summary
