"""Per-schedule locks shared by the runner, the materializer and user edits."""

import asyncio
from uuid import UUID


class ScheduleLocks:
    """One ``asyncio.Lock`` per schedule id, created on first use.

    No lock ever spans two schedules, so a slow schedule only delays work on
    itself.
    """

    def __init__(self) -> None:
        self._locks: dict[UUID, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def for_schedule(self, schedule_id: UUID) -> asyncio.Lock:
        lock = self._locks.get(schedule_id)
        if lock is None:
            lock = self._locks[schedule_id] = asyncio.Lock()
        return lock

    def is_locked(self, schedule_id: UUID) -> bool:
        lock = self._locks.get(schedule_id)
        return lock is not None and lock.locked()

    def discard(self, schedule_id: UUID) -> None:
        """Forget the lock of a deleted schedule unless someone holds it."""
        lock = self._locks.get(schedule_id)
        if lock is not None and not lock.locked():
            del self._locks[schedule_id]
