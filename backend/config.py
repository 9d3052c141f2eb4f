"""
Application configuration.

Values come from environment variables (a .env file next to this module is
loaded first). Defaults are suitable for local development only; set the JWT
secrets and company details in production.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    return float(raw) if raw not in (None, "") else default


class Config:
    """Settings shared by the server, services and exports."""

    MONGO_URL = os.environ.get("MONGO_URL", "mongodb://localhost:27017")
    DB_NAME = os.environ.get("DB_NAME", "commission_db")

    # GST applies on commission only
    GST_RATE = _float_env("GST_RATE", 18.0)
    DEFAULT_COMMISSION_PERCENT = _float_env("DEFAULT_COMMISSION_PERCENT", 1.0)
    INVOICE_PREFIX = os.environ.get("INVOICE_PREFIX", "INV")

    # Invoice / GSTR-1 header
    COMPANY_NAME = os.environ.get("COMPANY_NAME", "Your Company Name")
    COMPANY_ADDRESS = os.environ.get("COMPANY_ADDRESS", "Your Company Address")
    COMPANY_GSTIN = os.environ.get("COMPANY_GSTIN", "")
    COMPANY_PAN = os.environ.get("COMPANY_PAN", "")
    COMPANY_STATE_CODE = os.environ.get("COMPANY_STATE_CODE", "29")
    HSN_CODE = os.environ.get("HSN_CODE", "998314")

    # Token signing keys; override both in production
    JWT_SECRET_KEY = os.environ.get("JWT_SECRET_KEY", "dev-access-secret-change-in-production")
    JWT_REFRESH_SECRET_KEY = os.environ.get("JWT_REFRESH_SECRET_KEY", "dev-refresh-secret-change-in-production")

    CORS_ORIGINS = [o.strip() for o in os.environ.get("CORS_ORIGINS", "*").split(",") if o.strip()]


config = Config()
