"""Linear edit history with undo/redo and branch-by-overwrite."""
from typing import List, Optional, Tuple

from .models import ImageState


class EditHistory:
    """Ordered image states for one source image plus a cursor into them.

    ``cursor`` is ``-1`` iff the history is empty, otherwise it always points
    at a valid index. Undo and redo only move the cursor; ``append`` truncates
    everything after the cursor before adding the new state.
    """

    def __init__(self):
        self._states: List[ImageState] = []
        self._cursor: int = -1

    @property
    def states(self) -> Tuple[ImageState, ...]:
        return tuple(self._states)

    @property
    def cursor(self) -> int:
        return self._cursor

    def __len__(self) -> int:
        return len(self._states)

    def reset(self, initial: ImageState):
        """Discard any prior history and start over from ``initial``."""
        self._states = [initial]
        self._cursor = 0

    def clear(self):
        self._states = []
        self._cursor = -1

    def current(self) -> Optional[ImageState]:
        if self._cursor < 0:
            return None
        return self._states[self._cursor]

    def append(self, next_state: ImageState):
        """Add ``next_state`` after the cursor, dropping any redoable states."""
        del self._states[self._cursor + 1:]
        self._states.append(next_state)
        self._cursor = len(self._states) - 1

    def undo(self):
        if self.can_undo():
            self._cursor -= 1

    def redo(self):
        if self.can_redo():
            self._cursor += 1

    def can_undo(self) -> bool:
        return self._cursor > 0

    def can_redo(self) -> bool:
        return self._cursor < len(self._states) - 1
