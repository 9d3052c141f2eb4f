"""
TRANSACTION API ROUTES

Create / list / read / update / delete QR payment transactions, plus the
two-step Excel import (preview, then confirm).

Every mutation goes through TransactionService so the commission rule, the
invariant check, the filing lock guard and the audit trail always apply.
"""

from fastapi import APIRouter, Depends, File, UploadFile, Query, status
from motor.motor_asyncio import AsyncIOMotorDatabase
from typing import Optional
import logging

from auth import get_current_user
from database import get_db
from models import TransactionCreate, TransactionUpdate, ExcelImportConfirm, serialize_transaction
from permissions import PermissionChecker
from transaction_service import TransactionService
from gst_core.errors import InvalidInputError

logger = logging.getLogger(__name__)

transaction_router = APIRouter(prefix="/api/v1/transactions", tags=["Transactions"])

MAX_UPLOAD_BYTES = 5 * 1024 * 1024


@transaction_router.post("", status_code=status.HTTP_201_CREATED)
async def create_transaction(
    payload: TransactionCreate,
    current_user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """Record a QR payment; commission, GST and invoice number are assigned server-side"""
    user = await PermissionChecker(db).get_authenticated_user(current_user)

    doc = await TransactionService(db).create_transaction(
        actor=user["user_id"],
        total_received=payload.total_received,
        commission_percent=payload.commission_percent,
        transaction_date=payload.transaction_date,
        payment_mode=payload.payment_mode,
        remarks=payload.remarks
    )

    return {
        "success": True,
        "message": "Transaction created successfully",
        "data": serialize_transaction(doc)
    }


@transaction_router.get("")
async def list_transactions(
    month: Optional[int] = Query(default=None),
    year: Optional[int] = Query(default=None),
    page: int = Query(default=1),
    limit: int = Query(default=50),
    current_user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    await PermissionChecker(db).get_authenticated_user(current_user)

    result = await TransactionService(db).list_transactions(month=month, year=year, page=page, limit=limit)
    result["transactions"] = [serialize_transaction(tx) for tx in result["transactions"]]

    return {"success": True, "data": result}


@transaction_router.post("/preview-excel")
async def preview_excel(
    file: UploadFile = File(...),
    current_user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """Parse an uploaded workbook and return recomputed rows; nothing is saved"""
    await PermissionChecker(db).get_authenticated_user(current_user)

    filename = (file.filename or "").lower()
    if not filename.endswith((".xlsx", ".xlsm")):
        raise InvalidInputError("file", file.filename, "Only .xlsx files are supported")

    content = await file.read()
    if len(content) > MAX_UPLOAD_BYTES:
        raise InvalidInputError("file", file.filename, "File exceeds the 5 MB upload limit")

    result = TransactionService(db).preview_import(content)
    return {"success": True, "data": result}


@transaction_router.post("/confirm-excel")
async def confirm_excel(
    payload: ExcelImportConfirm,
    current_user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """Create the previewed rows; each row is subject to every create rule"""
    user = await PermissionChecker(db).get_authenticated_user(current_user)

    result = await TransactionService(db).confirm_import(payload.rows, actor=user["user_id"])

    return {
        "success": True,
        "message": f"Imported {len(result['created'])} transaction(s)",
        "data": {
            "created": [serialize_transaction(tx) for tx in result["created"]],
            "failed": result["failed"]
        }
    }


@transaction_router.get("/{transaction_id}")
async def get_transaction(
    transaction_id: str,
    current_user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    await PermissionChecker(db).get_authenticated_user(current_user)

    doc = await TransactionService(db).get_transaction(transaction_id)
    return {"success": True, "data": serialize_transaction(doc)}


@transaction_router.put("/{transaction_id}")
async def update_transaction(
    transaction_id: str,
    payload: TransactionUpdate,
    current_user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """Update raw fields; all derived amounts are recomputed"""
    user = await PermissionChecker(db).get_authenticated_user(current_user)

    changes = payload.model_dump(exclude_unset=True)
    if "transaction_date" in changes:
        changes["date"] = changes.pop("transaction_date")

    doc = await TransactionService(db).update_transaction(transaction_id, changes, actor=user["user_id"])

    return {
        "success": True,
        "message": "Transaction updated successfully",
        "data": serialize_transaction(doc)
    }


@transaction_router.delete("/{transaction_id}")
async def delete_transaction(
    transaction_id: str,
    current_user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    user = await PermissionChecker(db).get_authenticated_user(current_user)

    deleted = await TransactionService(db).delete_transaction(transaction_id, actor=user["user_id"])

    return {
        "success": True,
        "message": f"Transaction {deleted.get('invoice_number')} deleted successfully"
    }
