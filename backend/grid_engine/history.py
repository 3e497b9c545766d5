"""
History Module

Bounded undo/redo over full DocumentState snapshots. A new commit always
discards the redo branch; undo and redo move the current state onto the
opposite stack before restoring, so the two are exact inverses.
"""

import logging
from typing import List, Optional

from .data_structures import DocumentState

logger = logging.getLogger(__name__)

MAX_HISTORY = 10


class HistoryManager:
    """Undo/redo stacks of DocumentState snapshots"""

    def __init__(self, max_depth: int = MAX_HISTORY):
        if max_depth < 1:
            raise ValueError("History depth must be at least 1")
        self.max_depth = max_depth
        self._undo: List[DocumentState] = []
        self._redo: List[DocumentState] = []

    @property
    def can_undo(self) -> bool:
        return bool(self._undo)

    @property
    def can_redo(self) -> bool:
        return bool(self._redo)

    @property
    def undo_depth(self) -> int:
        return len(self._undo)

    @property
    def redo_depth(self) -> int:
        return len(self._redo)

    def _push(self, stack: List[DocumentState], state: DocumentState):
        stack.append(state.copy())
        if len(stack) > self.max_depth:
            # Oldest snapshot is evicted
            del stack[0]

    def commit(self, current: DocumentState):
        """Snapshot ``current`` before a mutation and invalidate redo"""
        self._push(self._undo, current)
        self._redo.clear()

    def undo(self, current: DocumentState) -> Optional[DocumentState]:
        """Return the previous state, or None when there is nothing to undo"""
        if not self._undo:
            return None
        previous = self._undo.pop()
        self._push(self._redo, current)
        logger.debug(f"↩️ Undo (remaining: {len(self._undo)})")
        return previous

    def redo(self, current: DocumentState) -> Optional[DocumentState]:
        """Return the next state, or None when there is nothing to redo"""
        if not self._redo:
            return None
        following = self._redo.pop()
        self._push(self._undo, current)
        logger.debug(f"↪️ Redo (remaining: {len(self._redo)})")
        return following

    def clear(self):
        self._undo.clear()
        self._redo.clear()
