"""
Ledger configuration using Pydantic Settings.
"""

from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Ledger settings loaded from environment variables."""

    # Database; the in-memory store is used when no URI is configured
    MONGO_URI: Optional[str] = None
    MONGO_DB: str = "spark_ledger"

    # Audit log mirror and uploaded file storage
    LEDGER_LOG_PATH: str = "logs/spark_ledger.log"
    STORAGE_DIR: Optional[str] = None

    # Pricing
    UPLOAD_COST: int = 5
    EXPEDITE_COST_PER_DAY: int = 2
    MAX_UPLOAD_BYTES: int = 100 * 1024 * 1024

    # Account grants
    SIGNUP_POINTS: int = 10
    ADMIN_SIGNUP_POINTS: int = 1000
    ADMIN_EMAILS: List[str] = []
    REFERRAL_BONUS: int = 10

    # Admin overrides above this magnitude are refused
    ADMIN_ADJUST_LIMIT: int = 10000

    LOW_BALANCE_THRESHOLD: int = 5
    DEFAULT_CURRENCY: str = "INR"

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)


settings = Settings()
