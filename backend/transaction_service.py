from motor.motor_asyncio import AsyncIOMotorDatabase
from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError
from datetime import datetime, date
from decimal import Decimal
from typing import Optional, Dict, Any, List
import logging

from config import Config, config
from audit_service import (
    GSTAuditService,
    AuditAction,
    AuditEntityType,
    AuditPeriod,
    AuditStatus,
    AmountSnapshot,
    TransactionCreatedDetails,
    TransactionUpdatedDetails,
    TransactionDeletedDetails,
    ValidationFailedDetails,
)
from models import PaymentMode
from gst_core.atomic_numbering import InvoiceNumberAllocator, MongoSequenceCounter, SequenceCounter
from gst_core.commission_engine import compute_derived
from gst_core.excel_service import parse_import_workbook
from gst_core.errors import (
    ComplianceError,
    DuplicateInvoiceNumberError,
    FilingLockedError,
    InvalidInputError,
    NotFoundError,
)
from gst_core.filing_lock_engine import FilingLockEngine, MAX_REMARKS_LENGTH, validate_period
from gst_core.financial_precision import to_decimal, to_float
from gst_core.fiscal_year import (
    financial_year,
    filing_period,
    month_bounds,
    year_bounds,
    to_storage_datetime,
)
from gst_core.invariant_validator import GSTInvariantValidator

logger = logging.getLogger(__name__)

AMOUNT_FIELDS = (
    "total_received",
    "commission_percent",
    "commission_amount",
    "tax_amount",
    "net_income",
    "return_amount",
)

UPDATABLE_FIELDS = {"date", "total_received", "commission_percent", "payment_mode", "remarks"}

SUMMARY_FIELDS = {
    "total_received": "total_received",
    "total_commission": "commission_amount",
    "total_tax": "tax_amount",
    "total_net_income": "net_income",
    "total_return": "return_amount",
}


def amount_snapshot(doc: Dict[str, Any]) -> AmountSnapshot:
    return AmountSnapshot(**{field: float(doc.get(field) or 0) for field in AMOUNT_FIELDS})


def audit_period_for(value: date) -> AuditPeriod:
    fy = financial_year(value)
    return AuditPeriod(
        financial_year=fy,
        month=value.month,
        year=value.year,
        filing_period=filing_period(fy, value.month)
    )


def build_period_query(month: Optional[int] = None, year: Optional[int] = None) -> Dict[str, Any]:
    """
    Date filter for a calendar month or year.

    month without year is rejected; neither means all transactions.
    """
    if month is not None and year is None:
        raise InvalidInputError("year", None, "Year is required when month is given")
    if month is not None:
        validate_period(month, year)
        start, end = month_bounds(month, year)
    elif year is not None:
        validate_period(1, year)
        start, end = year_bounds(year)
    else:
        return {}
    return {"date": {"$gte": start, "$lt": end}}


def summary_pipeline(query: Dict[str, Any]) -> List[Dict[str, Any]]:
    """$group totals over the filtered set, computed by the store"""
    group = {"_id": None, "count": {"$sum": 1}}
    for key, field in SUMMARY_FIELDS.items():
        group[key] = {"$sum": f"${field}"}
    return [{"$match": query}, {"$group": group}]


def summary_from_group(group: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Round each aggregated total to paise; an empty period sums to zero"""
    group = group or {}
    summary = {key: to_float(group.get(key) or 0) for key in SUMMARY_FIELDS}
    summary["count"] = group.get("count", 0)
    return summary


class TransactionService:
    """
    Transaction create/update/delete orchestration.

    Every mutation runs the same pipeline:
    calculate -> validate -> filing lock guard -> (invoice number) -> persist -> audit
    Nothing is written when any step before persistence fails.
    """

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        audit_service: Optional[GSTAuditService] = None,
        cfg: Config = config,
        counter: Optional[SequenceCounter] = None
    ):
        self.db = db
        self.config = cfg
        self.collection = db.transactions
        self.audit_service = audit_service or GSTAuditService(db)
        self.lock_engine = FilingLockEngine(db)
        self.allocator = InvoiceNumberAllocator(
            counter or MongoSequenceCounter(db, prefix=cfg.INVOICE_PREFIX),
            prefix=cfg.INVOICE_PREFIX
        )
        self.validator = GSTInvariantValidator(cfg.GST_RATE)

    # ============================================
    # HELPERS
    # ============================================

    def _validate_fields(self, payment_mode: Any, remarks: Optional[str]) -> PaymentMode:
        if remarks is not None and not isinstance(remarks, str):
            raise InvalidInputError("remarks", remarks, "Remarks must be text")
        if remarks is not None and len(remarks) > MAX_REMARKS_LENGTH:
            raise InvalidInputError(
                "remarks", remarks, f"Remarks cannot exceed {MAX_REMARKS_LENGTH} characters"
            )
        try:
            return PaymentMode(payment_mode)
        except ValueError:
            raise InvalidInputError(
                "payment_mode", payment_mode,
                f"Payment mode must be one of: {', '.join(m.value for m in PaymentMode)}"
            )

    def _calculate(self, total_received: Any, commission_percent: Any):
        derived = compute_derived(total_received, commission_percent, self.config.GST_RATE)
        self.validator.ensure_valid_calculation(total_received, derived)
        self.validator.ensure_reportable_commission(derived)
        return derived

    async def _guard_period(self, value: date, operation: str, actor: str, entity_id: Optional[str] = None):
        """Filing lock guard; a refusal is recorded in the audit trail before it propagates"""
        try:
            await self.lock_engine.ensure_date_unlocked(value, operation)
        except FilingLockedError as e:
            await self.audit_service.log_action(
                action=AuditAction.VALIDATION_FAILED,
                performed_by=actor,
                details=ValidationFailedDetails(
                    reason="Filing period locked",
                    operation=operation,
                    errors=[e.details]
                ),
                entity_type=AuditEntityType.TRANSACTION,
                entity_id=entity_id,
                period=audit_period_for(value),
                status=AuditStatus.FAILED,
                error_message=e.message
            )
            raise

    @staticmethod
    def _object_id(transaction_id: str) -> ObjectId:
        try:
            return ObjectId(transaction_id)
        except (InvalidId, TypeError):
            raise NotFoundError("Transaction", transaction_id)

    # ============================================
    # COMMANDS
    # ============================================

    async def create_transaction(
        self,
        actor: str,
        total_received: Any,
        commission_percent: Any = None,
        transaction_date: Optional[date] = None,
        payment_mode: Any = PaymentMode.QR,
        remarks: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Record a QR payment event.

        Raises:
            InvalidInputError, CalculationMismatchError, FilingLockedError,
            DuplicateInvoiceNumberError
        """
        if commission_percent is None:
            commission_percent = self.config.DEFAULT_COMMISSION_PERCENT
        transaction_date = transaction_date or date.today()
        if isinstance(transaction_date, datetime):
            transaction_date = transaction_date.date()

        derived = self._calculate(total_received, commission_percent)
        mode = self._validate_fields(payment_mode, remarks)

        await self._guard_period(transaction_date, "Transaction creation", actor)

        # Consumed even if the insert below fails; numbering gaps are acceptable
        invoice_number = await self.allocator.next_invoice_number(transaction_date)
        if not self.allocator.validate_invoice_number(invoice_number):
            logger.error(f"[TRANSACTION] Allocated invoice number {invoice_number} does not match the invoice format")
            raise InvalidInputError(
                "invoice_number", invoice_number,
                f"Invoice sequence for {financial_year(transaction_date)} is exhausted"
            )
        now = datetime.utcnow()

        doc = {
            "date": to_storage_datetime(transaction_date),
            "total_received": to_float(total_received),
            "commission_percent": float(commission_percent),
            "tax_rate_percent": float(self.config.GST_RATE),
            **derived.as_floats(),
            "payment_mode": mode.value,
            "invoice_number": invoice_number,
            "financial_year": financial_year(transaction_date),
            "created_by": actor,
            "remarks": (remarks or "").strip(),
            "created_at": now,
            "updated_at": now
        }

        try:
            result = await self.collection.insert_one(doc)
        except DuplicateKeyError:
            logger.error(f"[TRANSACTION] Duplicate invoice number on insert: {invoice_number}")
            raise DuplicateInvoiceNumberError(invoice_number)
        except Exception as e:
            logger.error(
                f"[TRANSACTION] Insert failed, invoice number {invoice_number} consumed without a record: {str(e)}"
            )
            raise

        doc["_id"] = result.inserted_id
        transaction_id = str(result.inserted_id)
        logger.info(
            f"[TRANSACTION] Created {invoice_number} ({transaction_id}): "
            f"received={doc['total_received']} commission={doc['commission_amount']} tax={doc['tax_amount']}"
        )

        await self.audit_service.log_action(
            action=AuditAction.TRANSACTION_CREATED,
            performed_by=actor,
            details=TransactionCreatedDetails(invoice_number=invoice_number, amounts=amount_snapshot(doc)),
            entity_type=AuditEntityType.TRANSACTION,
            entity_id=transaction_id,
            period=audit_period_for(transaction_date)
        )

        return doc

    async def update_transaction(
        self,
        transaction_id: str,
        changes: Dict[str, Any],
        actor: str
    ) -> Dict[str, Any]:
        """
        Apply changes and recompute every derived amount.

        The lock guard covers the stored date and, when the date moves, the new
        date too. Invoice number and financial year are never reassigned.
        """
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            field = sorted(unknown)[0]
            raise InvalidInputError(field, changes[field], f"Field '{field}' cannot be updated")

        oid = self._object_id(transaction_id)
        existing = await self.collection.find_one({"_id": oid})
        if not existing:
            raise NotFoundError("Transaction", transaction_id)

        old_date = existing["date"].date()
        new_date = changes.get("date") or old_date
        if isinstance(new_date, datetime):
            new_date = new_date.date()

        total_received = changes.get("total_received", existing["total_received"])
        commission_percent = changes.get("commission_percent")
        if commission_percent is None:
            commission_percent = existing.get("commission_percent", self.config.DEFAULT_COMMISSION_PERCENT)

        derived = self._calculate(total_received, commission_percent)
        remarks = changes.get("remarks")
        mode = self._validate_fields(changes.get("payment_mode") or existing.get("payment_mode"), remarks)

        await self._guard_period(old_date, "Transaction update", actor, transaction_id)
        if new_date != old_date:
            await self._guard_period(new_date, "Transaction update", actor, transaction_id)

        update_fields = {
            "date": to_storage_datetime(new_date),
            "total_received": to_float(total_received),
            "commission_percent": float(commission_percent),
            "tax_rate_percent": float(self.config.GST_RATE),
            **derived.as_floats(),
            "payment_mode": mode.value,
            "updated_at": datetime.utcnow()
        }
        if remarks is not None:
            update_fields["remarks"] = remarks.strip()

        updated = await self.collection.find_one_and_update(
            {"_id": oid},
            {"$set": update_fields},
            return_document=ReturnDocument.AFTER
        )
        if updated is None:
            raise NotFoundError("Transaction", transaction_id)

        logger.info(f"[TRANSACTION] Updated {existing.get('invoice_number')} ({transaction_id})")

        await self.audit_service.log_action(
            action=AuditAction.TRANSACTION_UPDATED,
            performed_by=actor,
            details=TransactionUpdatedDetails(
                invoice_number=existing.get("invoice_number"),
                old_values=amount_snapshot(existing),
                new_values=amount_snapshot(updated),
                old_date=old_date,
                new_date=new_date
            ),
            entity_type=AuditEntityType.TRANSACTION,
            entity_id=transaction_id,
            period=audit_period_for(new_date)
        )

        return updated

    async def delete_transaction(self, transaction_id: str, actor: str) -> Dict[str, Any]:
        """Delete a transaction in an unlocked period; returns the removed record"""
        oid = self._object_id(transaction_id)
        existing = await self.collection.find_one({"_id": oid})
        if not existing:
            raise NotFoundError("Transaction", transaction_id)

        tx_date = existing["date"].date()
        await self._guard_period(tx_date, "Transaction deletion", actor, transaction_id)

        result = await self.collection.delete_one({"_id": oid})
        if result.deleted_count == 0:
            raise NotFoundError("Transaction", transaction_id)

        logger.info(f"[TRANSACTION] Deleted {existing.get('invoice_number')} ({transaction_id})")

        await self.audit_service.log_action(
            action=AuditAction.TRANSACTION_DELETED,
            performed_by=actor,
            details=TransactionDeletedDetails(
                invoice_number=existing.get("invoice_number"),
                transaction_date=tx_date,
                amounts=amount_snapshot(existing)
            ),
            entity_type=AuditEntityType.TRANSACTION,
            entity_id=transaction_id,
            period=audit_period_for(tx_date)
        )

        return existing

    # ============================================
    # QUERIES
    # ============================================

    async def get_transaction(self, transaction_id: str) -> Dict[str, Any]:
        doc = await self.collection.find_one({"_id": self._object_id(transaction_id)})
        if not doc:
            raise NotFoundError("Transaction", transaction_id)
        return doc

    async def fetch_for_period(self, month: Optional[int] = None, year: Optional[int] = None) -> List[Dict[str, Any]]:
        """All transactions in the period, oldest first"""
        query = build_period_query(month, year)
        cursor = self.collection.find(query).sort([("date", 1), ("invoice_number", 1)])
        return await cursor.to_list(length=None)

    async def list_transactions(
        self,
        month: Optional[int] = None,
        year: Optional[int] = None,
        page: int = 1,
        limit: int = 50
    ) -> Dict[str, Any]:
        """Paginated listing, newest first, with period totals"""
        if page < 1:
            raise InvalidInputError("page", page, "Page must be at least 1")
        if not 1 <= limit <= 500:
            raise InvalidInputError("limit", limit, "Limit must be between 1 and 500")

        query = build_period_query(month, year)
        total = await self.collection.count_documents(query)
        cursor = (
            self.collection.find(query)
            .sort([("date", -1), ("created_at", -1)])
            .skip((page - 1) * limit)
            .limit(limit)
        )
        transactions = await cursor.to_list(length=limit)

        groups = await self.collection.aggregate(summary_pipeline(query)).to_list(length=1)

        return {
            "transactions": transactions,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit
            },
            "summary": summary_from_group(groups[0] if groups else None)
        }

    async def create_indexes(self):
        try:
            await self.collection.create_index([("invoice_number", 1)], unique=True, sparse=True, name="unique_invoice_number")
            await self.collection.create_index([("date", -1)], name="idx_transaction_date")
            await self.collection.create_index([("financial_year", 1), ("date", 1)], name="idx_transaction_fy_date")
            logger.info("Created transaction indexes")
        except Exception as e:
            logger.warning(f"Index creation result: {str(e)}")

    # ============================================
    # EXCEL IMPORT
    # ============================================

    def preview_import(self, content: bytes) -> Dict[str, Any]:
        """Parse an uploaded workbook; nothing is written"""
        rows = parse_import_workbook(
            content,
            default_commission_percent=self.config.DEFAULT_COMMISSION_PERCENT,
            tax_rate_percent=self.config.GST_RATE
        )
        valid = [row for row in rows if row["is_valid"]]
        return {
            "preview": rows,
            "summary": {
                "total_rows": len(rows),
                "valid_rows": len(valid),
                "invalid_rows": len(rows) - len(valid),
                "total_received": to_float(sum((to_decimal(r["total_received"]) for r in valid), Decimal('0'))),
                "total_commission": to_float(sum((to_decimal(r["commission_amount"]) for r in valid), Decimal('0'))),
                "total_tax": to_float(sum((to_decimal(r["tax_amount"]) for r in valid), Decimal('0')))
            }
        }

    async def confirm_import(self, rows: List[Dict[str, Any]], actor: str) -> Dict[str, Any]:
        """
        Create each row through create_transaction.

        Rows are independent: a locked or invalid row is reported and the rest proceed.
        """
        created = []
        failed = []
        for index, row in enumerate(rows):
            row_number = row.get("row", index + 1)
            raw_date = row.get("date")
            if not raw_date:
                failed.append({"row": row_number, "code": InvalidInputError.code, "message": "Date is required"})
                continue
            try:
                tx_date = date.fromisoformat(str(raw_date)[:10])
            except ValueError:
                failed.append({"row": row_number, "code": InvalidInputError.code, "message": f"Invalid date '{raw_date}'"})
                continue

            try:
                doc = await self.create_transaction(
                    actor=actor,
                    total_received=row.get("total_received"),
                    commission_percent=row.get("commission_percent"),
                    transaction_date=tx_date,
                    remarks=row.get("remarks") or None
                )
            except DuplicateInvoiceNumberError:
                raise
            except ComplianceError as e:
                failed.append({"row": row_number, "code": e.code, "message": e.message})
                continue

            created.append(doc)

        logger.info(f"[IMPORT] Imported {len(created)} transaction(s), {len(failed)} failed")
        return {"created": created, "failed": failed}
