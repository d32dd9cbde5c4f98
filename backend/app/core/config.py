# ============================================================
# app/core/config.py
#
# All configuration comes from environment variables (or a .env
# file locally). Only the service boundary reads `settings`:
# app startup, API dependencies and the generation job entry point.
# The fee engine itself receives every knob as a parameter.
#
# Usage at the boundary:
#   from app.core.config import settings
#   print(settings.SUPABASE_URL)
# ============================================================

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.schemas.fees import CalculationStrategy


class Settings(BaseSettings):
    """
    Missing required values (SUPABASE_URL, keys, the calculation
    strategy) fail at startup, never from inside a fee calculation.
    """

    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parents[3] / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ── App Identity ─────────────────────────────────────────
    APP_NAME: str = "FeeLedger"
    APP_VERSION: str = "1.0.0"

    DB_SCHEMA: str = "public"
    ENVIRONMENT: str = "development"        # development | production
    DEBUG: bool = False
    HTTP_CLIENT_DEBUG_LOGS: bool = False

    # ── API Settings ─────────────────────────────────────────
    API_PREFIX: str = "/api/v1"
    ALLOWED_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # ── Supabase ─────────────────────────────────────────────
    SUPABASE_URL: str
    SUPABASE_SERVICE_KEY: str               # Service key, backend only

    # ── Auth ─────────────────────────────────────────────────
    # Tokens are issued by the surrounding auth service; we only verify them.
    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 8

    # Shared secret for scheduler → /internal/* calls
    INTERNAL_SECRET_KEY: str

    # ── Fee engine ───────────────────────────────────────────
    FEE_DUE_DAY: int = 15
    # comprehensive: custom override amounts are still discounted by scholarships
    # simplified:    custom override amounts are final
    # No default: the deployment has to choose.
    FEE_CALCULATION_STRATEGY: CalculationStrategy
    FEE_GENERATION_BATCH_SIZE: int = 100
    FEE_GENERATION_CONCURRENCY: int = 10
    FEE_GENERATION_BATCH_PAUSE_SECONDS: float = 0.1
    # Must not exceed PostgREST max-rows (1000 on Supabase)
    FEE_GENERATION_STUDENT_PAGE_SIZE: int = 1000
    FEE_UPSERT_MAX_RETRIES: int = 3

    LEDGER_DEFAULT_YEARS_BACK: int = 1
    LEDGER_DEFAULT_YEARS_AHEAD: int = 1

    # ── Timezone ─────────────────────────────────────────────
    # "Today" for overdue cut-offs and the current billing month
    TIMEZONE: str = "Asia/Kolkata"

    @field_validator("TIMEZONE")
    @classmethod
    def known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"unknown timezone {value!r}")
        return value

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"


# Single instance, import this at the boundary only
settings = Settings()
