"""Two-phase optimistic apply: stage new state, commit, restore on failure."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class OptimisticUpdate(Generic[T]):
    """Snapshot/restore pair around a state holder.

    Usage:
        update = OptimisticUpdate(get_state, set_state)
        ok = await update.apply(new_state, commit)

    ``apply`` publishes ``new_state`` immediately, awaits ``commit`` and, if it
    returns False or raises, puts the snapshot back. Exceptions from ``commit``
    propagate after the restore.
    """

    def __init__(self, read: Callable[[], T], write: Callable[[T], None]) -> None:
        self._read = read
        self._write = write
        self._snapshot: T | None = None
        self._staged = False

    @property
    def snapshot(self) -> T | None:
        return self._snapshot

    def stage(self, new_state: T) -> None:
        self._snapshot = self._read()
        self._staged = True
        self._write(new_state)

    def restore(self) -> None:
        if not self._staged:
            return
        self._write(self._snapshot)  # type: ignore[arg-type]
        self._staged = False

    async def apply(self, new_state: T, commit: Callable[[], Awaitable[bool]]) -> bool:
        self.stage(new_state)
        try:
            committed = await commit()
        except Exception:
            self.restore()
            raise
        if not committed:
            logger.info("optimistic.rolled_back")
            self.restore()
            return False
        self._staged = False
        return True
