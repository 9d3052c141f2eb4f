from motor.motor_asyncio import AsyncIOMotorDatabase
from datetime import date
from typing import Optional, Dict, Any, List, Tuple
import logging

from config import Config, config
from audit_service import (
    GSTAuditService,
    AuditAction,
    AuditEntityType,
    AuditPeriod,
    AuditStatus,
    ReportGeneratedDetails,
    ExportGeneratedDetails,
    ValidationFailedDetails,
)
from transaction_service import TransactionService
from gst_core.errors import ComplianceValidationError, InvalidInputError, NotFoundError
from gst_core.excel_service import build_transactions_workbook
from gst_core.fiscal_year import financial_year, financial_year_for_period, filing_period
from gst_core.gst_reporting import build_gst_summary, build_monthly_summary, build_gstr1
from gst_core.pdf_service import pdf_generator

logger = logging.getLogger(__name__)


def report_period(month: Optional[int], year: Optional[int]) -> AuditPeriod:
    if month is not None and year is not None:
        fy = financial_year_for_period(month, year)
        return AuditPeriod(financial_year=fy, month=month, year=year, filing_period=filing_period(fy, month))
    return AuditPeriod(month=month, year=year)


def period_label(month: Optional[int], year: Optional[int]) -> str:
    if month is not None and year is not None:
        return f"{year}-{month:02d}"
    if year is not None:
        return str(year)
    return "All"


class ReportService:
    """
    GST reports and exports.

    Every path re-validates the batch before any tax figure leaves the system;
    a failed batch is audited and no partial output is produced.
    """

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        audit_service: Optional[GSTAuditService] = None,
        cfg: Config = config,
        transaction_service: Optional[TransactionService] = None
    ):
        self.db = db
        self.config = cfg
        self.audit_service = audit_service or GSTAuditService(db)
        self.transactions = transaction_service or TransactionService(db, self.audit_service, cfg)
        self.validator = self.transactions.validator

    async def _validated(
        self,
        transactions: List[Dict[str, Any]],
        actor: str,
        operation: str,
        entity_type: AuditEntityType,
        period: AuditPeriod
    ) -> Dict[str, Any]:
        try:
            return self.validator.ensure_batch_compliant(transactions)
        except ComplianceValidationError as e:
            await self.audit_service.log_action(
                action=AuditAction.VALIDATION_FAILED,
                performed_by=actor,
                details=ValidationFailedDetails(
                    reason="GST compliance validation failed",
                    operation=operation,
                    errors=e.errors
                ),
                entity_type=entity_type,
                period=period,
                status=AuditStatus.FAILED,
                error_message="Transactions failed GST compliance validation"
            )
            raise

    # ============================================
    # REPORTS
    # ============================================

    async def gst_summary(self, actor: str, month: Optional[int] = None, year: Optional[int] = None) -> Dict[str, Any]:
        transactions = await self.transactions.fetch_for_period(month, year)
        period = report_period(month, year)
        validation = await self._validated(transactions, actor, "GST_SUMMARY", AuditEntityType.REPORT, period)

        report = build_gst_summary(
            transactions,
            tax_rate_percent=self.config.GST_RATE,
            warnings=validation["warnings"],
            period_label=period_label(month, year)
        )

        await self.audit_service.log_action(
            action=AuditAction.REPORT_GENERATED,
            performed_by=actor,
            details=ReportGeneratedDetails(
                report_type="GST_SUMMARY",
                transaction_count=len(transactions),
                total_taxable_value=report["totals"]["taxable_value"],
                total_tax=report["totals"]["total_tax"],
                warning_count=len(validation["warnings"])
            ),
            entity_type=AuditEntityType.REPORT,
            period=period
        )
        logger.info(f"[REPORT] GST summary for {period_label(month, year)}: {len(transactions)} transaction(s)")
        return report

    async def monthly_summary(self, actor: str, year: Optional[int] = None) -> Dict[str, Any]:
        year = year or date.today().year
        transactions = await self.transactions.fetch_for_period(None, year)
        period = report_period(None, year)
        validation = await self._validated(transactions, actor, "MONTHLY_SUMMARY", AuditEntityType.REPORT, period)

        report = build_monthly_summary(transactions, year)
        report["validation"] = {"is_valid": True, "warnings": validation["warnings"]}

        await self.audit_service.log_action(
            action=AuditAction.REPORT_GENERATED,
            performed_by=actor,
            details=ReportGeneratedDetails(
                report_type="MONTHLY_SUMMARY",
                transaction_count=len(transactions),
                total_taxable_value=round(sum(m["total_commission"] for m in report["monthly_summary"]), 2),
                total_tax=round(sum(m["total_tax"] for m in report["monthly_summary"]), 2),
                warning_count=len(validation["warnings"])
            ),
            entity_type=AuditEntityType.REPORT,
            period=period
        )
        logger.info(f"[REPORT] Monthly summary for {year}: {len(transactions)} transaction(s)")
        return report

    # ============================================
    # EXPORTS
    # ============================================

    async def gstr1(self, actor: str, month: Optional[int], year: Optional[int]) -> Dict[str, Any]:
        if month is None or year is None:
            raise InvalidInputError("period", {"month": month, "year": year}, "Month and year are required")

        transactions = await self.transactions.fetch_for_period(month, year)
        if not transactions:
            raise NotFoundError("Transactions for period", f"{year}-{month:02d}")

        period = report_period(month, year)
        validation = await self._validated(transactions, actor, "GSTR1_EXPORT", AuditEntityType.EXPORT, period)

        data = build_gstr1(
            transactions,
            month=month,
            year=year,
            gstin=self.config.COMPANY_GSTIN,
            state_code=self.config.COMPANY_STATE_CODE,
            hsn_code=self.config.HSN_CODE,
            tax_rate_percent=self.config.GST_RATE,
            warnings=validation["warnings"]
        )

        await self.audit_service.log_action(
            action=AuditAction.EXPORT_GENERATED,
            performed_by=actor,
            details=ExportGeneratedDetails(
                export_type="GSTR1",
                transaction_count=len(transactions),
                total_taxable_value=data["summary"]["total_taxable_value"],
                total_tax=data["summary"]["total_tax"]
            ),
            entity_type=AuditEntityType.EXPORT,
            period=period
        )
        logger.info(f"[REPORT] GSTR-1 exported for {period.filing_period}: {len(transactions)} invoice(s)")
        return data

    async def excel_export(
        self,
        actor: str,
        month: Optional[int] = None,
        year: Optional[int] = None
    ) -> Tuple[bytes, str]:
        transactions = await self.transactions.fetch_for_period(month, year)
        if not transactions:
            raise NotFoundError("Transactions for period", period_label(month, year))

        period = report_period(month, year)
        await self._validated(transactions, actor, "EXCEL_EXPORT", AuditEntityType.EXPORT, period)

        content = build_transactions_workbook(transactions)
        filename = f"transactions-{year or 'all'}-{f'{month:02d}' if month else 'all'}.xlsx"

        await self.audit_service.log_action(
            action=AuditAction.EXPORT_GENERATED,
            performed_by=actor,
            details=ExportGeneratedDetails(
                export_type="EXCEL",
                transaction_count=len(transactions),
                total_taxable_value=round(sum(float(tx.get("commission_amount") or 0) for tx in transactions), 2),
                total_tax=round(sum(float(tx.get("tax_amount") or 0) for tx in transactions), 2)
            ),
            entity_type=AuditEntityType.EXPORT,
            period=period
        )
        return content, filename

    async def invoice_pdf(self, actor: str, transaction_id: str) -> Tuple[bytes, str]:
        transaction = await self.transactions.get_transaction(transaction_id)
        tx_date = transaction["date"].date()
        fy = financial_year(tx_date)
        period = AuditPeriod(
            financial_year=fy,
            month=tx_date.month,
            year=tx_date.year,
            filing_period=filing_period(fy, tx_date.month)
        )
        await self._validated([transaction], actor, "INVOICE_PDF", AuditEntityType.EXPORT, period)

        content = pdf_generator.generate_pdf(
            transaction,
            company={
                "name": self.config.COMPANY_NAME,
                "address": self.config.COMPANY_ADDRESS,
                "gstin": self.config.COMPANY_GSTIN,
                "pan": self.config.COMPANY_PAN,
            },
            tax_rate_percent=self.config.GST_RATE
        )

        await self.audit_service.log_action(
            action=AuditAction.EXPORT_GENERATED,
            performed_by=actor,
            details=ExportGeneratedDetails(
                export_type="INVOICE_PDF",
                transaction_count=1,
                total_taxable_value=float(transaction.get("commission_amount") or 0),
                total_tax=float(transaction.get("tax_amount") or 0),
                invoice_number=transaction.get("invoice_number")
            ),
            entity_type=AuditEntityType.EXPORT,
            entity_id=transaction_id,
            period=period
        )
        return content, pdf_generator.get_filename(transaction)
