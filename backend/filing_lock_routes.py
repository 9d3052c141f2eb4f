"""
GST FILING LOCK API ROUTES

Lock a (month, year) once GSTR-1 / GSTR-3B are filed; unlock (admin only)
for corrections. While locked, no transaction dated in that month can be
created, updated or deleted.
"""

from fastapi import APIRouter, Depends, Query
from motor.motor_asyncio import AsyncIOMotorDatabase
from typing import Optional
import logging

from auth import get_current_user
from audit_service import (
    GSTAuditService,
    AuditAction,
    AuditEntityType,
    AuditPeriod,
    FilingLockedDetails,
    FilingUnlockedDetails,
)
from database import get_db
from models import FilingLockCreate, serialize_doc
from permissions import PermissionChecker
from gst_core.errors import NotFoundError
from gst_core.filing_lock_engine import FilingLockEngine, Locked

logger = logging.getLogger(__name__)

filing_lock_router = APIRouter(prefix="/api/v1/filing-locks", tags=["GST Filing Locks"])


def _period(state) -> AuditPeriod:
    return AuditPeriod(
        financial_year=state.financial_year,
        month=state.month,
        year=state.year,
        filing_period=state.filing_period
    )


def _state_response(state) -> dict:
    data = {
        "financial_year": state.financial_year,
        "month": state.month,
        "year": state.year,
        "filing_period": state.filing_period,
        "is_locked": state.is_locked
    }
    if state.record is not None:
        data["lock"] = serialize_doc(state.record)
    return data


@filing_lock_router.post("/lock")
async def lock_month(
    payload: FilingLockCreate,
    current_user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """Lock a month after GST filing"""
    user = await PermissionChecker(db).get_authenticated_user(current_user)
    engine = FilingLockEngine(db)

    was_locked = await engine.is_period_locked(payload.month, payload.year)
    state = await engine.lock_month(
        month=payload.month,
        year=payload.year,
        locked_by=user["user_id"],
        gstr1_filing_date=payload.gstr1_filing_date,
        gstr3b_filing_date=payload.gstr3b_filing_date,
        remarks=payload.remarks or ""
    )

    await GSTAuditService(db).log_action(
        action=AuditAction.FILING_LOCKED,
        performed_by=user["user_id"],
        details=FilingLockedDetails(
            month=state.month,
            year=state.year,
            gstr1_filing_date=state.gstr1_filing_date,
            gstr3b_filing_date=state.gstr3b_filing_date,
            remarks=state.remarks,
            relocked=was_locked
        ),
        entity_type=AuditEntityType.FILING_LOCK,
        entity_id=str(state.record["_id"]),
        period=_period(state)
    )

    return {
        "success": True,
        "message": f"Month {state.month:02d}/{state.year} locked for GST filing",
        "data": _state_response(state)
    }


@filing_lock_router.post("/unlock")
async def unlock_month(
    month: int = Query(...),
    year: int = Query(...),
    reason: Optional[str] = Query(default=None, max_length=500),
    current_user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """Unlock a month (admin only)"""
    checker = PermissionChecker(db)
    user = await checker.get_authenticated_user(current_user)
    await checker.check_admin_role(user)

    state = await FilingLockEngine(db).unlock_month(month, year, unlocked_by=user["user_id"])
    if state is None:
        raise NotFoundError("Filing lock", f"{month:02d}/{year}")

    await GSTAuditService(db).log_action(
        action=AuditAction.FILING_UNLOCKED,
        performed_by=user["user_id"],
        details=FilingUnlockedDetails(
            month=state.month,
            year=state.year,
            reason=reason or "Manual unlock",
            unlocked_by_email=user.get("email")
        ),
        entity_type=AuditEntityType.FILING_LOCK,
        entity_id=str(state.record["_id"]),
        period=_period(state)
    )

    return {
        "success": True,
        "message": f"Month {state.month:02d}/{state.year} unlocked",
        "data": _state_response(state)
    }


@filing_lock_router.get("")
async def list_locks(
    year: Optional[int] = Query(default=None),
    current_user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    await PermissionChecker(db).get_authenticated_user(current_user)

    locks = await FilingLockEngine(db).list_locks(year)
    return {"success": True, "data": [serialize_doc(lock) for lock in locks]}


@filing_lock_router.get("/status")
async def lock_status(
    month: int = Query(...),
    year: int = Query(...),
    current_user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    await PermissionChecker(db).get_authenticated_user(current_user)

    state = await FilingLockEngine(db).get_lock_state(month, year)
    data = _state_response(state)
    if isinstance(state, Locked):
        data["locked_at"] = state.locked_at.isoformat()
        data["locked_by"] = state.locked_by
    return {"success": True, "data": data}
