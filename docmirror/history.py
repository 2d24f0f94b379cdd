"""Bounded undo/redo history for a collection cache."""

import logging
from collections import deque

from .documents import Snapshot

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 20


class History:
    """Linear undo/redo over snapshots of a cache's contents.

    ``past`` and ``future`` are LIFO stacks bounded at ``max_depth``; pushing
    beyond the bound evicts the oldest snapshot. The live cache contents act
    as ``present`` and are passed in by the owning cache on every transition.
    """

    def __init__(self, max_depth: int = DEFAULT_MAX_DEPTH):
        if max_depth < 1:
            raise ValueError("max_depth must be at least 1")
        self.max_depth = max_depth
        self._past: deque[Snapshot] = deque(maxlen=max_depth)
        self._future: deque[Snapshot] = deque(maxlen=max_depth)

    @property
    def can_undo(self) -> bool:
        return bool(self._past)

    @property
    def can_redo(self) -> bool:
        return bool(self._future)

    @property
    def depth(self) -> tuple[int, int]:
        """Sizes of the (past, future) stacks."""
        return len(self._past), len(self._future)

    def record(self, present: Snapshot) -> None:
        """Snapshot ``present`` before a mutation.

        A new mutation abandons any redo timeline.
        """
        self._past.append(present)
        self._future.clear()

    def undo(self, present: Snapshot) -> Snapshot | None:
        """Step back one mutation.

        Returns:
            The snapshot that becomes the new present, or None if there is
            nothing to undo.
        """
        if not self._past:
            return None
        previous = self._past.pop()
        self._future.append(present)
        logger.debug(f"Undo, past={len(self._past)} future={len(self._future)}")
        return previous

    def redo(self, present: Snapshot) -> Snapshot | None:
        """Re-apply the most recently undone mutation.

        Returns:
            The snapshot that becomes the new present, or None if there is
            nothing to redo.
        """
        if not self._future:
            return None
        following = self._future.pop()
        self._past.append(present)
        logger.debug(f"Redo, past={len(self._past)} future={len(self._future)}")
        return following

    def clear(self) -> None:
        self._past.clear()
        self._future.clear()
