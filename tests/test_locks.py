"""Tests for per-schedule locks."""

import asyncio
from datetime import date
from uuid import uuid4

import pytest

from ledger_scheduler.locks import ScheduleLocks
from ledger_scheduler.materializer import MaterializationOutcome, Materializer


class TestScheduleLocks:
    def test_same_schedule_same_lock(self):
        locks = ScheduleLocks()
        schedule_id = uuid4()

        assert locks.for_schedule(schedule_id) is locks.for_schedule(schedule_id)
        assert locks.for_schedule(uuid4()) is not locks.for_schedule(schedule_id)
        assert len(locks) == 2

    @pytest.mark.asyncio
    async def test_discard_keeps_held_lock(self):
        locks = ScheduleLocks()
        schedule_id = uuid4()

        async with locks.for_schedule(schedule_id):
            assert locks.is_locked(schedule_id)
            locks.discard(schedule_id)
            assert len(locks) == 1

        assert not locks.is_locked(schedule_id)
        locks.discard(schedule_id)
        assert len(locks) == 0
        assert not locks.is_locked(schedule_id)

    @pytest.mark.asyncio
    async def test_materializer_waits_for_shared_lock(
        self, store, ledger, directory, make_schedule
    ):
        locks = ScheduleLocks()
        materializer = Materializer(store, ledger, directory, locks=locks)
        assert materializer.locks is locks
        s = make_schedule(day_of_month=31)

        async with locks.for_schedule(s.id):
            task = asyncio.create_task(materializer.materialize(s.id, date(2024, 1, 31)))
            await asyncio.sleep(0)
            assert not task.done()
            assert ledger.calls == []

        result = await task
        assert result.outcome is MaterializationOutcome.MATERIALIZED
