"""
Filing lock state machine tests
"""
import asyncio
from datetime import date, datetime

import pytest
from pymongo.errors import DuplicateKeyError

from gst_core.errors import FilingLockedError, InvalidInputError
from gst_core.filing_lock_engine import FilingLockEngine, Locked, Unlocked


class TestLockTransitions:
    """Unlocked -> Locked -> Unlocked"""

    def test_default_state_is_unlocked(self, db):
        state = asyncio.run(FilingLockEngine(db).get_lock_state(1, 2024))
        assert isinstance(state, Unlocked)
        assert state.record is None
        assert state.financial_year == "FY23"
        assert state.filing_period == "FY23-01"
        assert state.is_locked is False

    def test_lock_month(self, db):
        engine = FilingLockEngine(db)
        state = asyncio.run(engine.lock_month(
            1, 2024, "admin-1",
            gstr1_filing_date=datetime(2024, 2, 11),
            remarks="GSTR-1 filed"
        ))
        assert isinstance(state, Locked)
        assert state.is_locked is True
        assert state.financial_year == "FY23"
        assert state.filing_period == "FY23-01"
        assert state.locked_by == "admin-1"
        assert state.gstr1_filing_date == datetime(2024, 2, 11)
        assert state.remarks == "GSTR-1 filed"

    def test_relock_is_idempotent_and_keeps_history(self, db):
        engine = FilingLockEngine(db)

        async def run():
            await engine.lock_month(1, 2024, "admin-1")
            second = await engine.lock_month(1, 2024, "admin-2", remarks="GSTR-3B filed")
            count = await db.gst_filing_locks.count_documents({})
            return second, count

        state, count = asyncio.run(run())
        assert count == 1
        assert state.locked_by == "admin-2"
        history = state.record["lock_history"]
        assert [h["performed_by"] for h in history] == ["admin-1", "admin-2"]

    def test_unlock_month(self, db):
        engine = FilingLockEngine(db)

        async def run():
            await engine.lock_month(1, 2024, "admin-1")
            unlocked = await engine.unlock_month(1, 2024, unlocked_by="admin-1")
            still_locked = await engine.is_period_locked(1, 2024)
            return unlocked, still_locked

        unlocked, still_locked = asyncio.run(run())
        assert isinstance(unlocked, Unlocked)
        assert unlocked.record is not None
        assert unlocked.record["lock_history"][-1]["action"] == "UNLOCKED"
        assert still_locked is False

    def test_unlock_without_lock_returns_none(self, db):
        assert asyncio.run(FilingLockEngine(db).unlock_month(5, 2024)) is None

    def test_lock_after_unlock(self, db):
        engine = FilingLockEngine(db)

        async def run():
            await engine.lock_month(1, 2024, "admin-1")
            await engine.unlock_month(1, 2024, "admin-1")
            return await engine.lock_month(1, 2024, "admin-1")

        state = asyncio.run(run())
        assert state.is_locked
        assert len(state.record["lock_history"]) == 3


class TestLockValidation:

    @pytest.mark.parametrize("month,year", [(0, 2024), (13, 2024), (1, 1999), (1, 2101)])
    def test_invalid_period(self, db, month, year):
        with pytest.raises(InvalidInputError):
            asyncio.run(FilingLockEngine(db).lock_month(month, year, "admin-1"))

    def test_remarks_too_long(self, db):
        with pytest.raises(InvalidInputError) as exc:
            asyncio.run(FilingLockEngine(db).lock_month(1, 2024, "admin-1", remarks="x" * 501))
        assert exc.value.field == "remarks"


class TestWriteGuard:
    """is_date_locked / ensure_date_unlocked"""

    def test_only_locked_month_is_blocked(self, db):
        engine = FilingLockEngine(db)

        async def run():
            await engine.lock_month(1, 2024, "admin-1")
            return (
                await engine.is_date_locked(date(2024, 1, 15)),
                await engine.is_date_locked(date(2024, 1, 31)),
                await engine.is_date_locked(date(2024, 2, 1)),
                await engine.is_date_locked(date(2023, 1, 15)),
            )

        assert asyncio.run(run()) == (True, True, False, False)

    def test_ensure_date_unlocked_raises(self, db):
        engine = FilingLockEngine(db)

        async def run():
            await engine.lock_month(3, 2024, "admin-1")
            await engine.ensure_date_unlocked(date(2024, 3, 31), "Transaction update")

        with pytest.raises(FilingLockedError) as exc:
            asyncio.run(run())
        assert exc.value.filing_period == "FY23-03"
        assert exc.value.operation == "Transaction update"
        assert exc.value.details["month"] == 3

    def test_unlocked_record_does_not_block(self, db):
        engine = FilingLockEngine(db)

        async def run():
            await engine.lock_month(4, 2024, "admin-1")
            await engine.unlock_month(4, 2024, "admin-1")
            await engine.ensure_date_unlocked(date(2024, 4, 10), "Transaction creation")
            return True

        assert asyncio.run(run())


class TestLockQueries:

    def test_list_locks_newest_first(self, db):
        engine = FilingLockEngine(db)

        async def run():
            await engine.lock_month(2, 2024, "admin-1")
            await engine.lock_month(11, 2023, "admin-1")
            await engine.lock_month(5, 2024, "admin-1")
            return await engine.list_locks(), await engine.list_locks(2023)

        all_locks, locks_2023 = asyncio.run(run())
        assert [(l["month"], l["year"]) for l in all_locks] == [(5, 2024), (2, 2024), (11, 2023)]
        assert [l["filing_period"] for l in locks_2023] == ["FY23-11"]


class CollidingCollection:
    """Raises DuplicateKeyError on the first upserts, then delegates"""

    def __init__(self, collection, collisions):
        self.collection = collection
        self.collisions = collisions
        self.calls = 0

    async def find_one_and_update(self, *args, **kwargs):
        self.calls += 1
        if self.calls <= self.collisions:
            raise DuplicateKeyError("E11000 duplicate key error")
        return await self.collection.find_one_and_update(*args, **kwargs)


class TestConcurrentFirstLock:

    def test_lock_retries_after_upsert_collision(self, db):
        engine = FilingLockEngine(db)
        engine.collection = CollidingCollection(db.gst_filing_locks, collisions=1)

        state = asyncio.run(engine.lock_month(1, 2024, "admin-1"))

        assert isinstance(state, Locked)
        assert engine.collection.calls == 2
        assert asyncio.run(db.gst_filing_locks.count_documents({})) == 1

    def test_persistent_collision_propagates(self, db):
        engine = FilingLockEngine(db)
        engine.collection = CollidingCollection(db.gst_filing_locks, collisions=FilingLockEngine.MAX_RETRIES)

        with pytest.raises(DuplicateKeyError):
            asyncio.run(engine.lock_month(1, 2024, "admin-1"))
        assert engine.collection.calls == FilingLockEngine.MAX_RETRIES
