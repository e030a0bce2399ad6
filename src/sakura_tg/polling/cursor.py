"""Poll cursor: the next ``getUpdates`` offset."""

from __future__ import annotations

from collections.abc import Iterable

from sakura_tg.types import Update


class PollCursor:
    """Tracks ``next_offset = max(seen update_id) + 1``; never moves backward.

    Only the coordinating loop mutates the cursor, so it carries no lock.
    """

    def __init__(self, offset: int = 0) -> None:
        self._offset = offset

    @property
    def offset(self) -> int:
        return self._offset

    def observe(self, update: Update) -> int:
        """Advance past a single update."""
        self._offset = max(self._offset, update.update_id + 1)
        return self._offset

    def advance(self, batch: Iterable[Update]) -> int:
        """Advance past every update in *batch*; an empty batch is a no-op."""
        ids = [u.update_id for u in batch]
        if ids:
            self._offset = max(self._offset, max(ids) + 1)
        return self._offset

    def __repr__(self) -> str:
        return f"PollCursor(offset={self._offset})"
