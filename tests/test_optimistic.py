"""Tests for the two-phase optimistic update helper."""

import pytest

from feedcore.utils.optimistic import OptimisticUpdate


class Holder:
    def __init__(self, value: str) -> None:
        self.value = value
        self.seen_during_commit: str | None = None

    def read(self) -> str:
        return self.value

    def write(self, value: str) -> None:
        self.value = value


@pytest.mark.asyncio
async def test_new_state_is_visible_before_commit_completes() -> None:
    holder = Holder("old")
    update = OptimisticUpdate(holder.read, holder.write)

    async def commit() -> bool:
        holder.seen_during_commit = holder.value
        return True

    assert await update.apply("new", commit) is True
    assert holder.seen_during_commit == "new"
    assert holder.value == "new"
    assert update.snapshot == "old"


@pytest.mark.asyncio
async def test_failed_commit_restores_snapshot() -> None:
    holder = Holder("old")
    update = OptimisticUpdate(holder.read, holder.write)

    async def commit() -> bool:
        return False

    assert await update.apply("new", commit) is False
    assert holder.value == "old"


@pytest.mark.asyncio
async def test_raising_commit_restores_and_propagates() -> None:
    holder = Holder("old")
    update = OptimisticUpdate(holder.read, holder.write)

    async def commit() -> bool:
        raise RuntimeError("disk full")

    with pytest.raises(RuntimeError):
        await update.apply("new", commit)

    assert holder.value == "old"


def test_restore_without_stage_is_a_no_op() -> None:
    holder = Holder("old")
    update = OptimisticUpdate(holder.read, holder.write)

    update.restore()

    assert holder.value == "old"
