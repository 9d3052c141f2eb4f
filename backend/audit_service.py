from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel, Field
from datetime import datetime, date
from enum import Enum
from typing import Optional, Dict, Any, List, Type
import logging

logger = logging.getLogger(__name__)


class AuditAction(str, Enum):
    TRANSACTION_CREATED = "TRANSACTION_CREATED"
    TRANSACTION_UPDATED = "TRANSACTION_UPDATED"
    TRANSACTION_DELETED = "TRANSACTION_DELETED"
    FILING_LOCKED = "FILING_LOCKED"
    FILING_UNLOCKED = "FILING_UNLOCKED"
    REPORT_GENERATED = "REPORT_GENERATED"
    EXPORT_GENERATED = "EXPORT_GENERATED"
    VALIDATION_FAILED = "VALIDATION_FAILED"


class AuditEntityType(str, Enum):
    TRANSACTION = "TRANSACTION"
    FILING_LOCK = "FILING_LOCK"
    REPORT = "REPORT"
    EXPORT = "EXPORT"


class AuditStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    WARNING = "WARNING"


class AuditPeriod(BaseModel):
    financial_year: Optional[str] = None
    month: Optional[int] = None
    year: Optional[int] = None
    filing_period: Optional[str] = None


# ============================================
# DETAILS PAYLOADS (one per action)
# ============================================
class AmountSnapshot(BaseModel):
    total_received: float
    commission_percent: float
    commission_amount: float
    tax_amount: float
    net_income: float
    return_amount: float


class TransactionCreatedDetails(BaseModel):
    invoice_number: str
    amounts: AmountSnapshot


class TransactionUpdatedDetails(BaseModel):
    invoice_number: Optional[str] = None
    old_values: AmountSnapshot
    new_values: AmountSnapshot
    old_date: Optional[date] = None
    new_date: Optional[date] = None


class TransactionDeletedDetails(BaseModel):
    invoice_number: Optional[str] = None
    transaction_date: date
    amounts: AmountSnapshot


class FilingLockedDetails(BaseModel):
    month: int
    year: int
    gstr1_filing_date: Optional[datetime] = None
    gstr3b_filing_date: Optional[datetime] = None
    remarks: str = ""
    relocked: bool = False


class FilingUnlockedDetails(BaseModel):
    month: int
    year: int
    reason: str = "Manual unlock"
    unlocked_by_email: Optional[str] = None


class ReportGeneratedDetails(BaseModel):
    report_type: str
    transaction_count: int
    total_taxable_value: float = 0.0
    total_tax: float = 0.0
    warning_count: int = 0


class ExportGeneratedDetails(BaseModel):
    export_type: str
    transaction_count: int
    total_taxable_value: float = 0.0
    total_tax: float = 0.0
    invoice_number: Optional[str] = None


class ValidationFailedDetails(BaseModel):
    reason: str
    operation: Optional[str] = None
    errors: List[Dict[str, Any]] = Field(default_factory=list)


DETAILS_TYPES: Dict[AuditAction, Type[BaseModel]] = {
    AuditAction.TRANSACTION_CREATED: TransactionCreatedDetails,
    AuditAction.TRANSACTION_UPDATED: TransactionUpdatedDetails,
    AuditAction.TRANSACTION_DELETED: TransactionDeletedDetails,
    AuditAction.FILING_LOCKED: FilingLockedDetails,
    AuditAction.FILING_UNLOCKED: FilingUnlockedDetails,
    AuditAction.REPORT_GENERATED: ReportGeneratedDetails,
    AuditAction.EXPORT_GENERATED: ExportGeneratedDetails,
    AuditAction.VALIDATION_FAILED: ValidationFailedDetails,
}


class GSTAuditService:
    """Service for immutable GST audit logging (write-only from the core's side)"""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db.gst_audit_logs

    async def log_action(
        self,
        action: AuditAction,
        performed_by: str,
        details: BaseModel,
        entity_type: Optional[AuditEntityType] = None,
        entity_id: Optional[str] = None,
        period: Optional[AuditPeriod] = None,
        status: AuditStatus = AuditStatus.SUCCESS,
        error_message: Optional[str] = None
    ):
        """
        Log an action to the GST audit trail (INSERT ONLY).

        A failed write is reported to the operational log and never fails the
        primary operation. Passing a details model that does not belong to the
        action is a programming error and raises TypeError.
        """
        expected = DETAILS_TYPES[action]
        if not isinstance(details, expected):
            raise TypeError(
                f"{action.value} requires {expected.__name__} details, got {type(details).__name__}"
            )

        try:
            audit_entry = {
                "action": action.value,
                "performed_by": performed_by,
                "entity_type": entity_type.value if entity_type else None,
                "entity_id": entity_id,
                "period": period.model_dump() if period else None,
                "details": details.model_dump(mode="json"),
                "status": status.value,
                "error_message": error_message,
                "timestamp": datetime.utcnow()
            }

            await self.collection.insert_one(audit_entry)
            logger.info(f"[AUDIT] {action.value} on {audit_entry['entity_type']}:{entity_id} by user:{performed_by}")
        except Exception as e:
            # Don't fail the main operation if audit logging fails
            logger.error(f"[AUDIT] Failed to create audit log for {action.value}: {str(e)}")

    async def get_audit_logs(
        self,
        action: Optional[AuditAction] = None,
        entity_type: Optional[AuditEntityType] = None,
        entity_id: Optional[str] = None,
        filing_period: Optional[str] = None,
        limit: int = 100
    ):
        """Retrieve audit logs (READ ONLY)"""
        query = {}

        if action:
            query["action"] = action.value
        if entity_type:
            query["entity_type"] = entity_type.value
        if entity_id:
            query["entity_id"] = entity_id
        if filing_period:
            query["period.filing_period"] = filing_period

        cursor = self.collection.find(query).sort("timestamp", -1).limit(limit)
        logs = await cursor.to_list(length=limit)

        # Convert ObjectId to string
        for log in logs:
            log["audit_id"] = str(log.pop("_id"))

        return logs

    async def create_indexes(self):
        try:
            await self.collection.create_index([("action", 1), ("timestamp", -1)], name="idx_audit_action")
            await self.collection.create_index([("performed_by", 1), ("timestamp", -1)], name="idx_audit_user")
            await self.collection.create_index([("period.filing_period", 1), ("timestamp", -1)], name="idx_audit_period")
            await self.collection.create_index([("entity_type", 1), ("entity_id", 1)], name="idx_audit_entity")
            logger.info("Created audit log indexes")
        except Exception as e:
            logger.warning(f"Index creation result: {str(e)}")
