"""
config/settings.py
Application settings loaded from environment variables.
Uses Pydantic BaseSettings for validation and type safety.
"""

from functools import lru_cache
from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────
    APP_NAME: str = "Trokazz API"
    APP_ENV: str = "development"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    SECRET_KEY: str

    # ── Server ───────────────────────────────────────────────
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    WORKERS: int = 4

    # ── Database ─────────────────────────────────────────────
    DATABASE_URL: str
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 40
    DATABASE_POOL_TIMEOUT: int = 30

    # ── Redis ────────────────────────────────────────────────
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_CACHE_TTL: int = 300          # 5 minutes

    # ── JWT ──────────────────────────────────────────────────
    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    JWT_REFRESH_TOKEN_EXPIRE_DAYS: int = 30

    # ── Razorpay ─────────────────────────────────────────────
    RAZORPAY_KEY_ID: str = ""
    RAZORPAY_KEY_SECRET: str = ""
    RAZORPAY_WEBHOOK_SECRET: str = ""
    PAYMENT_CURRENCY: str = "INR"
    GATEWAY_TIMEOUT_SECONDS: float = 10.0

    # ── Email ────────────────────────────────────────────────
    RESEND_API_KEY: str = ""
    EMAIL_FROM: str = "noreply@trokazz.com"
    EMAIL_FROM_NAME: str = "Trokazz"
    EMAIL_NOTIFICATIONS_ENABLED: bool = False

    # ── Frontend ─────────────────────────────────────────────
    FRONTEND_URL: str = "http://localhost:3000"
    ALLOWED_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    # ── Object Storage ───────────────────────────────────────
    STORAGE_ROOT: str = "./storage"
    STORAGE_PUBLIC_BASE_URL: str = "http://localhost:8000/media"
    MAX_UPLOAD_BYTES: int = 5 * 1024 * 1024
    STAGED_UPLOAD_TTL_HOURS: int = 24

    # ── Celery ───────────────────────────────────────────────
    CELERY_BROKER_URL: str = "redis://localhost:6379/1"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/2"

    # ── Rate Limiting ────────────────────────────────────────
    RATE_LIMIT_PER_MINUTE: int = 100
    RATE_LIMIT_UNAUTH_PER_MINUTE: int = 20

    # ── Realtime ─────────────────────────────────────────────
    REALTIME_MAX_CONNECTIONS: int = 10000
    REALTIME_MAX_RECONNECT_ATTEMPTS: int = 8
    REALTIME_RECONNECT_MAX_WAIT_SECONDS: int = 30

    # ── Business Config ──────────────────────────────────────
    ADMIN_EMAILS: str = ""
    SIGNUP_BONUS_CREDITS: int = 10
    BOOST_BASE_COST: int = 25
    BOOST_DURATION_DAYS: int = 7
    AD_LIFETIME_DAYS: int = 30
    RENEWAL_WINDOW_DAYS: int = 7
    MAX_AD_IMAGES: int = 5
    NEARBY_ADS_DEFAULT_RADIUS_KM: float = 20.0
    NEARBY_ADS_MAX_RADIUS_KM: float = 100.0
    NEARBY_ADS_SCAN_LIMIT: int = 500   # GEO hits re-checked against the ads table per search
    MODERATION_AD_BATCH: int = 3
    MODERATION_REPORT_BATCH: int = 3
    MODERATION_POLL_INTERVAL_SECONDS: int = 10
    VIOLATION_SUSPEND_THRESHOLD: int = 3

    @property
    def allowed_origins_list(self) -> List[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",")]

    @property
    def admin_emails_list(self) -> List[str]:
        return [e.strip().lower() for e in self.ADMIN_EMAILS.split(",") if e.strip()]

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "production"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()


settings = get_settings()
