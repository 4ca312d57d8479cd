"""
Application configuration.

All configuration is loaded from environment variables.
Never hardcode secrets or connection strings in code.
"""

import os
from functools import lru_cache

from dotenv import load_dotenv

# Load .env file into environment variables
load_dotenv()

# Driver spelled out; psycopg2-binary is the one installed
DEFAULT_DATABASE_URL = "postgresql+psycopg2://localhost:5432/payment_reconciliation"


class Settings:
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "Payment Reconciliation Service"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Server
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8000"))

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)

    # Environment
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")

    # Identity
    JWT_SECRET: str = os.getenv("JWT_SECRET", "change-me")
    JWT_ALGORITHM: str = os.getenv("JWT_ALGORITHM", "HS256")

    # Provider webhook. Empty secret disables verification.
    CASSO_WEBHOOK_SECRET: str = os.getenv("CASSO_WEBHOOK_SECRET", "")

    # Top-up rules
    TRANSFER_CODE_PREFIX: str = os.getenv("TRANSFER_CODE_PREFIX", "ALPHA")
    TOPUP_EXPIRY_MINUTES: int = int(os.getenv("TOPUP_EXPIRY_MINUTES", "30"))
    MAX_PENDING_TOPUPS: int = int(os.getenv("MAX_PENDING_TOPUPS", "3"))
    TIMEOUT_GRACE_MINUTES: int = int(os.getenv("TIMEOUT_GRACE_MINUTES", "5"))
    CREDIT_UNIT_PRICE: int = int(os.getenv("CREDIT_UNIT_PRICE", "1000"))

    # Receiving bank account shown to users
    BANK_ID: str = os.getenv("BANK_ID", "OCB")
    BANK_NAME: str = os.getenv("BANK_NAME", "OCB (Phuong Dong)")
    BANK_ACCOUNT_NUMBER: str = os.getenv("BANK_ACCOUNT_NUMBER", "CASS55252503")
    BANK_ACCOUNT_HOLDER: str = os.getenv("BANK_ACCOUNT_HOLDER", "NGUYEN ANH DUC")


@lru_cache()
def get_settings() -> Settings:
    """
    Return cached settings instance.

    Using lru_cache means the Settings object is created once
    and reused for all subsequent calls. This avoids reading
    environment variables repeatedly.
    """
    return Settings()
