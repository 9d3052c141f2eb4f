from fastapi import FastAPI, APIRouter, HTTPException, Request, status, Depends
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware
from motor.motor_asyncio import AsyncIOMotorDatabase
from bson import ObjectId
from bson.errors import InvalidId
import logging
from datetime import datetime

# Import custom modules
from config import config
from database import client, db, get_db
from models import (
    UserCreate, UserResponse, UserRole,
    Token, LoginRequest, RefreshTokenRequest
)
from auth import (
    hash_password, verify_password, create_access_token, create_refresh_token,
    decode_refresh_token, get_current_user, ACCESS_TOKEN_EXPIRE_MINUTES
)
from audit_service import GSTAuditService
from permissions import PermissionChecker
from transaction_service import TransactionService
from gst_core.atomic_numbering import MongoSequenceCounter
from gst_core.errors import ComplianceError, ComplianceValidationError
from gst_core.filing_lock_engine import FilingLockEngine

from transaction_routes import transaction_router
from filing_lock_routes import filing_lock_router
from report_routes import report_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Create the main app
app = FastAPI(
    title="Commission & GST Compliance System",
    version="1.0.0",
    description="QR payment commission tracking with GST-compliant invoicing, filing locks and reports"
)

# Create router with /api/v1 prefix
api_router = APIRouter(prefix="/api/v1")

ERROR_STATUS = {
    "INVALID_INPUT": status.HTTP_400_BAD_REQUEST,
    "CALCULATION_MISMATCH": status.HTTP_400_BAD_REQUEST,
    "FILING_LOCKED": status.HTTP_403_FORBIDDEN,
    "NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "DUPLICATE_INVOICE_NUMBER": status.HTTP_500_INTERNAL_SERVER_ERROR,
    "COMPLIANCE_VALIDATION_FAILED": status.HTTP_400_BAD_REQUEST,
}


def jsonable(value):
    """details may carry dates / ObjectIds from the store"""
    if isinstance(value, dict):
        return {key: jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [jsonable(item) for item in value]
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, ObjectId):
        return str(value)
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value


@app.exception_handler(ComplianceError)
async def compliance_error_handler(request: Request, exc: ComplianceError):
    """Translate core rejections into a stable JSON error body"""
    status_code = ERROR_STATUS.get(exc.code, status.HTTP_400_BAD_REQUEST)
    if status_code >= 500:
        logger.error(f"[{exc.code}] {request.method} {request.url.path}: {exc.message}")

    body = {
        "success": False,
        "code": exc.code,
        "message": exc.message,
        "details": exc.details
    }
    if isinstance(exc, ComplianceValidationError):
        body["errors"] = exc.errors
        body["warnings"] = exc.warnings

    return JSONResponse(status_code=status_code, content=jsonable(body))


def _user_response(user: dict) -> UserResponse:
    return UserResponse(
        user_id=str(user["_id"]),
        name=user["name"],
        email=user["email"],
        role=user["role"],
        active_status=user["active_status"],
        created_at=user["created_at"],
        updated_at=user["updated_at"]
    )


async def _issue_tokens(db: AsyncIOMotorDatabase, user: dict) -> Token:
    user_id = str(user["_id"])
    token_data = {
        "user_id": user_id,
        "email": user["email"],
        "role": user["role"]
    }

    access_token = create_access_token(data=token_data)
    refresh_token = create_refresh_token(user_id=user_id)

    # Store refresh token id (for token rotation)
    refresh_payload = decode_refresh_token(refresh_token)
    await db.refresh_tokens.insert_one({
        "jti": refresh_payload["jti"],
        "user_id": user_id,
        "expires_at": datetime.utcfromtimestamp(refresh_payload["exp"]),
        "is_revoked": False,
        "created_at": datetime.utcnow()
    })

    return Token(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_in=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=_user_response(user)
    )


# ============================================
# AUTHENTICATION ENDPOINTS
# ============================================

@api_router.post("/auth/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register_user(user_data: UserCreate, db: AsyncIOMotorDatabase = Depends(get_db)):
    """
    Register a new user.
    First user becomes admin, subsequent users are regular users.
    """
    existing_user = await db.users.find_one({"email": user_data.email})
    if existing_user:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already registered"
        )

    user_count = await db.users.count_documents({})
    role = UserRole.ADMIN if user_count == 0 else UserRole.USER

    now = datetime.utcnow()
    user_dict = {
        "name": user_data.name,
        "email": user_data.email,
        "hashed_password": hash_password(user_data.password),
        "role": role.value,
        "active_status": True,
        "created_at": now,
        "updated_at": now
    }

    result = await db.users.insert_one(user_dict)
    user_dict["_id"] = result.inserted_id
    logger.info(f"[AUTH] Registered user {user_data.email} as {role.value}")

    return _user_response(user_dict)


@api_router.post("/auth/login", response_model=Token)
async def login(login_data: LoginRequest, db: AsyncIOMotorDatabase = Depends(get_db)):
    """
    Authenticate user and return JWT tokens.
    Access token expires in 30 minutes, refresh token in 7 days.
    """
    user = await db.users.find_one({"email": login_data.email})

    if not user or not verify_password(login_data.password, user["hashed_password"]):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password"
        )

    if not user.get("active_status", False):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive"
        )

    return await _issue_tokens(db, user)


@api_router.post("/auth/refresh", response_model=Token)
async def refresh_access_token(request: RefreshTokenRequest, db: AsyncIOMotorDatabase = Depends(get_db)):
    """
    Refresh access token using refresh token.

    Token Rotation: Old refresh token is revoked, new one is issued.
    """
    payload = decode_refresh_token(request.refresh_token)
    jti = payload.get("jti")
    user_id = payload.get("user_id")

    token_doc = await db.refresh_tokens.find_one({
        "jti": jti,
        "user_id": user_id,
        "is_revoked": False
    })

    if not token_doc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Refresh token is invalid or has been revoked"
        )

    try:
        user = await db.users.find_one({"_id": ObjectId(user_id)})
    except (InvalidId, TypeError):
        user = None

    if not user or not user.get("active_status", False):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive"
        )

    # Revoke old refresh token
    await db.refresh_tokens.update_one(
        {"jti": jti},
        {"$set": {"is_revoked": True}}
    )

    return await _issue_tokens(db, user)


@api_router.get("/auth/me")
async def get_me(
    current_user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """Current user profile"""
    user = await PermissionChecker(db).get_authenticated_user(current_user)
    return {"success": True, "data": jsonable(user)}


@api_router.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow(),
        "version": "1.0.0",
        "gst_rate": config.GST_RATE
    }


# Include router in main app
app.include_router(api_router)
app.include_router(transaction_router)
app.include_router(filing_lock_router)
app.include_router(report_router)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=config.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def create_indexes():
    """Unique constraints backing invoice numbering and filing locks"""
    await MongoSequenceCounter(db, prefix=config.INVOICE_PREFIX).create_unique_constraints()
    await FilingLockEngine(db).create_unique_constraints()
    await TransactionService(db).create_indexes()
    await GSTAuditService(db).create_indexes()
    try:
        await db.users.create_index([("email", 1)], unique=True, name="unique_user_email")
        await db.refresh_tokens.create_index([("jti", 1)], unique=True, name="unique_refresh_jti")
    except Exception as e:
        logger.warning(f"Index creation result: {str(e)}")


@app.on_event("shutdown")
async def shutdown_db_client():
    client.close()
