"""Tests for the bounded undo/redo history."""

import pytest

from grid_engine.data_structures import DocumentState
from grid_engine.history import HistoryManager, MAX_HISTORY


def state(value):
    return DocumentState(grid=[["H"], [str(value)]], provenance={(1, 0): "user"})


class TestHistoryManager:
    def test_empty_history(self):
        history = HistoryManager()
        assert not history.can_undo
        assert not history.can_redo
        assert history.undo(state(0)) is None
        assert history.redo(state(0)) is None

    def test_undo_then_redo_restores(self):
        history = HistoryManager()
        history.commit(state(0))
        current = state(1)

        previous = history.undo(current)
        assert previous.grid == state(0).grid
        assert history.can_redo

        following = history.redo(previous)
        assert following.grid == current.grid
        assert following.provenance == current.provenance

    def test_commit_clears_redo(self):
        history = HistoryManager()
        history.commit(state(0))
        history.undo(state(1))
        history.commit(state(0))
        assert not history.can_redo

    def test_snapshots_are_independent_copies(self):
        history = HistoryManager()
        current = state(0)
        history.commit(current)
        current.grid[1][0] = "mutated"
        current.provenance[(1, 0)] = "ai"

        restored = history.undo(current)
        assert restored.grid[1][0] == "0"
        assert restored.provenance[(1, 0)] == "user"

    def test_oldest_snapshot_is_evicted(self):
        history = HistoryManager()
        for i in range(MAX_HISTORY + 3):
            history.commit(state(i))
        assert history.undo_depth == MAX_HISTORY

        current = state("latest")
        restored = []
        while history.can_undo:
            current = history.undo(current)
            restored.append(current.grid[1][0])
        assert restored[-1] == "3"

    def test_redo_is_bounded_too(self):
        history = HistoryManager(max_depth=2)
        for i in range(2):
            history.commit(state(i))
        current = state(2)
        while history.can_undo:
            current = history.undo(current)
        assert history.redo_depth == 2

    def test_inverse_law_over_many_steps(self):
        history = HistoryManager()
        states = [state(i) for i in range(6)]
        for s in states[:-1]:
            history.commit(s)
        current = states[-1]

        for _ in range(5):
            current = history.undo(current)
        assert current.grid == states[0].grid
        for _ in range(5):
            current = history.redo(current)
        assert current.grid == states[-1].grid

    def test_depth_must_be_positive(self):
        with pytest.raises(ValueError):
            HistoryManager(max_depth=0)
