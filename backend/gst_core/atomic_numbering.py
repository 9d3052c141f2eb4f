"""
GST COMPLIANCE CORE - ATOMIC INVOICE NUMBERING

Provides:
1. Per financial-year monotonic counter (allocate(key) -> int)
2. Single atomic upsert-and-increment against MongoDB ($inc + findOneAndUpdate)
3. In-process counter guarded by an asyncio lock for single-process deployments
4. Invoice number formatting and format validation

Format: {PREFIX}-{FY}-{5 digit sequence}, e.g. INV-FY24-00001.
Gaps are tolerated, duplicates are not.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Dict
import asyncio
import logging
import re

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from gst_core.fiscal_year import financial_year

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "INV"
SEQUENCE_WIDTH = 5


class SequenceCounter(ABC):
    """Per-key monotonic counter. allocate() must never return the same value twice for a key."""

    @abstractmethod
    async def allocate(self, key: str) -> int:
        """Increment the counter for key and return the NEW value"""


class MongoSequenceCounter(SequenceCounter):
    """
    Counter backed by the invoice_sequences collection.

    Uses findOneAndUpdate with $inc for thread-safe increment; the record is
    created lazily with last_sequence_number 0 -> 1 on first use.
    """

    MAX_RETRIES = 3

    def __init__(self, db: AsyncIOMotorDatabase, prefix: str = DEFAULT_PREFIX):
        self.db = db
        self.prefix = prefix
        self.collection = db.invoice_sequences

    async def allocate(self, key: str) -> int:
        for attempt in range(self.MAX_RETRIES):
            try:
                result = await self.collection.find_one_and_update(
                    {"financial_year": key},
                    {
                        "$inc": {"last_sequence_number": 1},
                        "$set": {"updated_at": datetime.utcnow()},
                        "$setOnInsert": {
                            "prefix": self.prefix,
                            "created_at": datetime.utcnow()
                        }
                    },
                    upsert=True,
                    return_document=ReturnDocument.AFTER
                )
                return result["last_sequence_number"]
            except DuplicateKeyError:
                # Two first-time upserts raced on the unique key; the loser retries as an update
                logger.warning(f"[INVOICE] Sequence upsert collision for {key}, retry {attempt + 1}")
                if attempt == self.MAX_RETRIES - 1:
                    raise

    async def create_unique_constraints(self):
        """One sequence record per financial year"""
        try:
            await self.collection.create_index(
                [("financial_year", 1)],
                unique=True,
                name="unique_invoice_sequence_fy"
            )
            logger.info("Created unique invoice sequence constraint")
        except Exception as e:
            logger.warning(f"Index creation result: {str(e)}")


class InMemorySequenceCounter(SequenceCounter):
    """Mutex-guarded map, for single-process deployments and tests"""

    def __init__(self):
        self._values: Dict[str, int] = {}
        self._lock = asyncio.Lock()

    async def allocate(self, key: str) -> int:
        async with self._lock:
            value = self._values.get(key, 0) + 1
            self._values[key] = value
            return value


class InvoiceNumberAllocator:
    """Issues human readable invoice numbers from a SequenceCounter"""

    def __init__(self, counter: SequenceCounter, prefix: str = DEFAULT_PREFIX):
        self.counter = counter
        self.prefix = prefix
        self._pattern = re.compile(rf"^{re.escape(prefix)}-FY\d{{2}}-\d{{{SEQUENCE_WIDTH}}}$")

    def format_invoice_number(self, fy: str, sequence: int) -> str:
        return f"{self.prefix}-{fy}-{sequence:0{SEQUENCE_WIDTH}d}"

    async def next_invoice_number(self, transaction_date: date) -> str:
        """
        Allocate the next invoice number for the financial year of transaction_date.

        The number is consumed even if the caller later fails to persist.
        """
        fy = financial_year(transaction_date)
        sequence = await self.counter.allocate(fy)
        invoice_number = self.format_invoice_number(fy, sequence)
        logger.info(f"[INVOICE] Generated invoice number: {invoice_number}")
        return invoice_number

    def validate_invoice_number(self, invoice_number: str) -> bool:
        return bool(invoice_number) and bool(self._pattern.match(invoice_number))
