# app/core/config.py
from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Centralized application settings loaded from environment.

    Required env vars (.env):
      - SUPABASE_URL
      - SUPABASE_KEY (anon key)
      - DATABASE_URL (Supabase Postgres connection string)
      - SUPABASE_JWT_SECRET (JWT signing secret from Supabase project settings)

    Optional:
      - SUPABASE_SERVICE_ROLE_KEY (only used for admin Supabase client)

    Business parameters (fees, OTP policy, realtime backoff) live here too so
    they can be tuned per environment without code changes.
    """

    PROJECT_NAME: str = "Cash Runner API"
    API_V1_STR: str = "/api/v1"

    # Supabase / DB config
    SUPABASE_URL: str
    SUPABASE_KEY: str
    DATABASE_URL: str

    # JWT verification (backend-side)
    SUPABASE_JWT_SECRET: str
    SUPABASE_JWT_ALG: str = "HS256"

    # Service role key bypasses RLS (backend only)
    SUPABASE_SERVICE_ROLE_KEY: str | None = None

    # Pricing
    DELIVERY_FEE: float = 8.16
    MIN_REQUEST_AMOUNT: int = 100
    MAX_REQUEST_AMOUNT: int = 1000
    REQUEST_AMOUNT_STEP: int = 20

    # Handoff OTP
    OTP_TTL_MINUTES: int = 10
    OTP_MAX_ATTEMPTS: int = 3

    # Realtime
    REALTIME_RECONNECT_DELAY_SECONDS: float = 2.0
    REALTIME_MAX_RECONNECT_ATTEMPTS: int = 5

    # Notifications: edge = Supabase Edge Function, email = SMTP, log = no-op
    NOTIFICATION_CHANNEL: Literal["edge", "email", "log"] = "edge"
    NOTIFY_FUNCTION_NAME: str = "notify-order-event"

    # Attempts for create/transition writes on transient DB errors
    WRITE_RETRY_ATTEMPTS: int = 2

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    """
    Cached settings loader.
    Ensures we don't re-parse .env on every import / request.
    """
    return Settings()
