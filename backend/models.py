from pydantic import BaseModel, Field, EmailStr, field_validator
from typing import Optional, List, Dict, Any
from datetime import datetime, date
from enum import Enum
from bson import ObjectId, Decimal128


class UserRole(str, Enum):
    ADMIN = "admin"
    USER = "user"


class PaymentMode(str, Enum):
    # Closed set; new channels are added here
    QR = "QR"


def serialize_doc(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Serialize MongoDB document for JSON response (handles Decimal128, ObjectId, datetime)"""
    if doc is None:
        return None
    result = {}
    for key, value in doc.items():
        if isinstance(value, ObjectId):
            result[key] = str(value)
        elif isinstance(value, Decimal128):
            result[key] = float(value.to_decimal())
        elif isinstance(value, (datetime, date)):
            result[key] = value.isoformat()
        elif isinstance(value, dict):
            result[key] = serialize_doc(value)
        elif isinstance(value, list):
            result[key] = [
                serialize_doc(item) if isinstance(item, dict)
                else float(item.to_decimal()) if isinstance(item, Decimal128)
                else str(item) if isinstance(item, ObjectId)
                else item.isoformat() if isinstance(item, (datetime, date))
                else item
                for item in value
            ]
        else:
            result[key] = value
    return result


def serialize_transaction(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Transaction response shape: transaction_id instead of _id, plus a formatted date"""
    result = serialize_doc(doc)
    result["transaction_id"] = result.pop("_id", None)
    if isinstance(doc.get("date"), datetime):
        result["formatted_date"] = doc["date"].strftime("%Y-%m-%d")
    return result


# ============================================
# USER MODELS
# ============================================
class UserCreate(BaseModel):
    name: str = Field(min_length=2)
    email: EmailStr
    password: str = Field(min_length=6)

class UserResponse(BaseModel):
    user_id: str
    name: str
    email: str
    role: UserRole
    active_status: bool
    created_at: datetime
    updated_at: datetime

# ============================================
# TRANSACTION REQUEST MODELS
# ============================================
def _date_only(value):
    """Accept ISO dates and datetimes; only the calendar date is meaningful"""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str) and len(value) > 10 and value[10] in "T ":
        return value[:10]
    return value

class TransactionCreate(BaseModel):
    # Amount bounds are enforced by the calculation rule, not here
    transaction_date: Optional[date] = Field(default=None, alias="date")
    total_received: float
    commission_percent: Optional[float] = None
    payment_mode: PaymentMode = PaymentMode.QR
    remarks: Optional[str] = Field(default=None, max_length=500)

    @field_validator("transaction_date", mode="before")
    @classmethod
    def normalize_date(cls, value):
        return _date_only(value)

    class Config:
        populate_by_name = True

class TransactionUpdate(BaseModel):
    transaction_date: Optional[date] = Field(default=None, alias="date")
    total_received: Optional[float] = None
    commission_percent: Optional[float] = None
    payment_mode: Optional[PaymentMode] = None
    remarks: Optional[str] = Field(default=None, max_length=500)

    @field_validator("transaction_date", mode="before")
    @classmethod
    def normalize_date(cls, value):
        return _date_only(value)

    class Config:
        populate_by_name = True

class ExcelImportConfirm(BaseModel):
    rows: List[Dict[str, Any]]

# ============================================
# GST FILING LOCK MODEL
# ============================================
class FilingLockCreate(BaseModel):
    month: int = Field(ge=1, le=12)
    year: int = Field(ge=2000, le=2100)
    gstr1_filing_date: Optional[datetime] = None
    gstr3b_filing_date: Optional[datetime] = None
    remarks: Optional[str] = Field(default=None, max_length=500)

# ============================================
# AUTH MODELS
# ============================================
class Token(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int = 1800  # 30 minutes in seconds
    user: UserResponse

class RefreshTokenRequest(BaseModel):
    refresh_token: str

class LoginRequest(BaseModel):
    email: EmailStr
    password: str
