"""
GST REPORT & EXPORT API ROUTES

Every endpoint re-validates the selected transactions first. A failing batch
returns the field-level errors and no figures.
"""

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from motor.motor_asyncio import AsyncIOMotorDatabase
from typing import Optional
import logging

from auth import get_current_user
from audit_service import GSTAuditService, AuditAction, AuditEntityType
from database import get_db
from models import serialize_doc
from permissions import PermissionChecker
from report_service import ReportService

logger = logging.getLogger(__name__)

report_router = APIRouter(prefix="/api/v1", tags=["GST Reports & Exports"])

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@report_router.get("/reports/gst")
async def gst_summary(
    month: Optional[int] = Query(default=None),
    year: Optional[int] = Query(default=None),
    current_user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """GST summary ready for GSTR-1 and GSTR-3B"""
    user = await PermissionChecker(db).get_authenticated_user(current_user)

    report = await ReportService(db).gst_summary(user["user_id"], month=month, year=year)
    return {"success": True, "data": report}


@report_router.get("/reports/monthly")
async def monthly_summary(
    year: Optional[int] = Query(default=None),
    current_user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    user = await PermissionChecker(db).get_authenticated_user(current_user)

    report = await ReportService(db).monthly_summary(user["user_id"], year=year)
    return {"success": True, "data": report}


@report_router.get("/export/gstr1")
async def export_gstr1(
    month: Optional[int] = Query(default=None),
    year: Optional[int] = Query(default=None),
    current_user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """GSTR-1 JSON; taxable value is commission only"""
    user = await PermissionChecker(db).get_authenticated_user(current_user)

    data = await ReportService(db).gstr1(user["user_id"], month=month, year=year)
    return {"success": True, "message": "GSTR-1 data exported successfully", "data": data}


@report_router.get("/export/excel")
async def export_excel(
    month: Optional[int] = Query(default=None),
    year: Optional[int] = Query(default=None),
    current_user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    user = await PermissionChecker(db).get_authenticated_user(current_user)

    content, filename = await ReportService(db).excel_export(user["user_id"], month=month, year=year)
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )


@report_router.get("/export/invoice/{transaction_id}")
async def export_invoice(
    transaction_id: str,
    current_user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """GST tax invoice PDF for one transaction"""
    user = await PermissionChecker(db).get_authenticated_user(current_user)

    content, filename = await ReportService(db).invoice_pdf(user["user_id"], transaction_id)
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )


@report_router.get("/audit-logs")
async def audit_logs(
    action: Optional[AuditAction] = Query(default=None),
    entity_type: Optional[AuditEntityType] = Query(default=None),
    filing_period: Optional[str] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=1000),
    current_user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """GST audit trail (admin only, read only)"""
    checker = PermissionChecker(db)
    user = await checker.get_authenticated_user(current_user)
    await checker.check_admin_role(user)

    logs = await GSTAuditService(db).get_audit_logs(
        action=action,
        entity_type=entity_type,
        filing_period=filing_period,
        limit=limit
    )
    return {"success": True, "data": [serialize_doc(log) for log in logs]}
