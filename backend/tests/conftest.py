import asyncio
from datetime import datetime

import pytest
from mongomock_motor import AsyncMongoMockClient

from config import Config


class GSTTestConfig(Config):
    """Fixed rates so local .env values never leak into assertions"""
    GST_RATE = 18.0
    DEFAULT_COMMISSION_PERCENT = 1.0
    INVOICE_PREFIX = "INV"
    COMPANY_NAME = "Test Traders"
    COMPANY_ADDRESS = "1 Test Street, Bengaluru"
    COMPANY_GSTIN = "29ABCDE1234F1Z5"
    COMPANY_PAN = "ABCDE1234F"
    COMPANY_STATE_CODE = "29"
    HSN_CODE = "998314"


@pytest.fixture
def db():
    return AsyncMongoMockClient()["gst_compliance_test"]


@pytest.fixture
def test_config():
    return GSTTestConfig()


async def insert_user(db, email: str, role: str) -> str:
    result = await db.users.insert_one({
        "name": email.split("@")[0],
        "email": email,
        "hashed_password": "not-used",
        "role": role,
        "active_status": True,
        "created_at": datetime.utcnow(),
        "updated_at": datetime.utcnow()
    })
    return str(result.inserted_id)


@pytest.fixture
def admin_id(db):
    return asyncio.run(insert_user(db, "admin@example.com", "admin"))


@pytest.fixture
def user_id(db):
    return asyncio.run(insert_user(db, "operator@example.com", "user"))
