"""
GST COMPLIANCE CORE - FILING LOCK STATE MACHINE

Freezes every transaction dated inside a (month, year) once its GST returns are filed.

States:
    Unlocked (no record)  --lock-->   Locked
    Locked                --unlock--> Unlocked (record kept, is_locked = False)
    Unlocked (record)     --lock-->   Locked

Provides:
1. Explicit state variants (Unlocked | Locked) instead of null-means-unlocked
2. Atomic upsert per (financial_year, month, year)
3. Write guard for transaction create/update/delete
4. Lock history: every lock/unlock is appended to the record, re-locking never erases the past
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union
import logging

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from gst_core.errors import FilingLockedError, InvalidInputError
from gst_core.fiscal_year import financial_year, financial_year_for_period, filing_period

logger = logging.getLogger(__name__)

MIN_YEAR = 2000
MAX_YEAR = 2100
MAX_REMARKS_LENGTH = 500


@dataclass(frozen=True)
class Unlocked:
    financial_year: str
    month: int
    year: int
    filing_period: str
    # Present when a lock existed and was lifted
    record: Optional[Dict[str, Any]] = None

    @property
    def is_locked(self) -> bool:
        return False


@dataclass(frozen=True)
class Locked:
    financial_year: str
    month: int
    year: int
    filing_period: str
    locked_at: datetime
    locked_by: str
    record: Dict[str, Any]
    gstr1_filing_date: Optional[datetime] = None
    gstr3b_filing_date: Optional[datetime] = None
    remarks: str = ""

    @property
    def is_locked(self) -> bool:
        return True


LockState = Union[Unlocked, Locked]


def validate_period(month: int, year: int) -> None:
    if not isinstance(month, int) or not 1 <= month <= 12:
        raise InvalidInputError("month", month, "Month must be between 1 and 12")
    if not isinstance(year, int) or not MIN_YEAR <= year <= MAX_YEAR:
        raise InvalidInputError("year", year, f"Year must be between {MIN_YEAR} and {MAX_YEAR}")


def state_from_record(record: Dict[str, Any]) -> LockState:
    if record.get("is_locked", False):
        return Locked(
            financial_year=record["financial_year"],
            month=record["month"],
            year=record["year"],
            filing_period=record["filing_period"],
            locked_at=record["locked_at"],
            locked_by=record["locked_by"],
            gstr1_filing_date=record.get("gstr1_filing_date"),
            gstr3b_filing_date=record.get("gstr3b_filing_date"),
            remarks=record.get("remarks", ""),
            record=record
        )
    return Unlocked(
        financial_year=record["financial_year"],
        month=record["month"],
        year=record["year"],
        filing_period=record["filing_period"],
        record=record
    )


class FilingLockEngine:
    """
    Filing lock transitions and the lock write guard.

    The financial year is always re-derived from (month, year); it is never
    taken from caller input.
    """

    MAX_RETRIES = 3

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db.gst_filing_locks

    def _key(self, month: int, year: int) -> Dict[str, Any]:
        validate_period(month, year)
        return {
            "financial_year": financial_year_for_period(month, year),
            "month": month,
            "year": year
        }

    async def lock_month(
        self,
        month: int,
        year: int,
        locked_by: str,
        gstr1_filing_date: Optional[datetime] = None,
        gstr3b_filing_date: Optional[datetime] = None,
        remarks: str = ""
    ) -> Locked:
        """
        Lock a month for GST filing.

        Idempotent: locking an already locked period refreshes lock metadata
        and appends to lock_history.
        """
        remarks = (remarks or "").strip()
        if len(remarks) > MAX_REMARKS_LENGTH:
            raise InvalidInputError(
                "remarks", remarks, f"Remarks cannot exceed {MAX_REMARKS_LENGTH} characters"
            )

        key = self._key(month, year)
        period = filing_period(key["financial_year"], month)
        now = datetime.utcnow()

        update = {
            "$set": {
                "filing_period": period,
                "is_locked": True,
                "locked_at": now,
                "locked_by": locked_by,
                "gstr1_filing_date": gstr1_filing_date,
                "gstr3b_filing_date": gstr3b_filing_date,
                "remarks": remarks,
                "updated_at": now
            },
            "$setOnInsert": {"created_at": now},
            "$push": {
                "lock_history": {
                    "action": "LOCKED",
                    "performed_by": locked_by,
                    "performed_at": now,
                    "gstr1_filing_date": gstr1_filing_date,
                    "gstr3b_filing_date": gstr3b_filing_date,
                    "remarks": remarks
                }
            }
        }

        for attempt in range(self.MAX_RETRIES):
            try:
                record = await self.collection.find_one_and_update(
                    key,
                    update,
                    upsert=True,
                    return_document=ReturnDocument.AFTER
                )
                break
            except DuplicateKeyError:
                # Two first-time locks raced on the unique period key; the loser retries as an update
                logger.warning(f"[FILING_LOCK] Lock upsert collision for {period}, retry {attempt + 1}")
                if attempt == self.MAX_RETRIES - 1:
                    raise

        logger.info(f"[FILING_LOCK] Locked {period} ({month:02d}/{year}) by user {locked_by}")
        return state_from_record(record)

    async def unlock_month(
        self,
        month: int,
        year: int,
        unlocked_by: Optional[str] = None
    ) -> Optional[Unlocked]:
        """
        Unlock a month (corrections/adjustments).

        Returns None when the period was never locked, so callers can tell
        "not found" apart from "now unlocked".
        """
        key = self._key(month, year)
        now = datetime.utcnow()

        record = await self.collection.find_one_and_update(
            key,
            {
                "$set": {
                    "is_locked": False,
                    "unlocked_at": now,
                    "unlocked_by": unlocked_by,
                    "updated_at": now
                },
                "$push": {
                    "lock_history": {
                        "action": "UNLOCKED",
                        "performed_by": unlocked_by,
                        "performed_at": now
                    }
                }
            },
            return_document=ReturnDocument.AFTER
        )

        if record is None:
            logger.info(f"[FILING_LOCK] Unlock requested for {month:02d}/{year} but no lock exists")
            return None

        logger.info(f"[FILING_LOCK] Unlocked {record['filing_period']} by user {unlocked_by}")
        return state_from_record(record)

    async def get_lock_state(self, month: int, year: int) -> LockState:
        key = self._key(month, year)
        record = await self.collection.find_one(key)
        if record is None:
            return Unlocked(
                financial_year=key["financial_year"],
                month=month,
                year=year,
                filing_period=filing_period(key["financial_year"], month)
            )
        return state_from_record(record)

    async def is_period_locked(self, month: int, year: int) -> bool:
        state = await self.get_lock_state(month, year)
        return state.is_locked

    async def is_date_locked(self, value: date) -> bool:
        """Lock flag for the (financial_year, month, year) containing value"""
        record = await self.collection.find_one(
            {
                "financial_year": financial_year(value),
                "month": value.month,
                "year": value.year
            }
        )
        return bool(record and record.get("is_locked", False))

    async def ensure_date_unlocked(self, value: date, operation: str) -> None:
        """
        Write guard consulted before every transaction create/update/delete.

        Raises:
            FilingLockedError if the period containing value is locked
        """
        if await self.is_date_locked(value):
            fy = financial_year(value)
            logger.warning(
                f"[FILING_LOCK] {operation} refused for {value.month:02d}/{value.year} ({fy}): period locked"
            )
            raise FilingLockedError(
                financial_year=fy,
                month=value.month,
                year=value.year,
                filing_period=filing_period(fy, value.month),
                operation=operation
            )

    async def list_locks(self, year: Optional[int] = None) -> List[Dict[str, Any]]:
        query = {}
        if year is not None:
            query["year"] = year
        cursor = self.collection.find(query).sort([("year", -1), ("month", -1)])
        return await cursor.to_list(length=None)

    async def create_unique_constraints(self):
        """One lock per (financial_year, month, year) and per filing period"""
        try:
            await self.collection.create_index(
                [("financial_year", 1), ("month", 1), ("year", 1)],
                unique=True,
                name="unique_filing_lock_period"
            )
            await self.collection.create_index(
                [("filing_period", 1)],
                unique=True,
                name="unique_filing_lock_filing_period"
            )
            await self.collection.create_index(
                [("year", 1), ("month", 1)],
                name="idx_filing_lock_year_month"
            )
            logger.info("Created filing lock constraints")
        except Exception as e:
            logger.warning(f"Index creation result: {str(e)}")
