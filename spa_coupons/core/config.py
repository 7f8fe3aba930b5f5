from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent.parent.parent  # project root
ENV_PATH = BASE_DIR / ".env"

# real environment variables win over .env
load_dotenv(dotenv_path=ENV_PATH)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        extra="ignore",
        case_sensitive=False,
    )

    # async driver URL: postgresql+asyncpg://... or sqlite+aiosqlite:///...
    DATABASE_URL: str
    DB_ECHO: bool = False
    AUTO_CREATE_TABLES: bool = False

    JWT_SECRET: str
    JWT_ALG: str = "HS256"
    JWT_ACCESS_MINUTES: int = 720

    ADMIN_USERNAME: str = "admin"
    ADMIN_PASSWORD_HASH: str = ""

    INTEGRATION_API_KEY: str = "change-me"

    WHATSAPP_NUMBER: str = ""
    N8N_WEBHOOK_URL: str | None = None

    # Coupon policy
    COUPON_BUNDLE_SIZE: int = 4
    COUPON_CREDIT_AMOUNT: int = 1
    TOKEN_TTL_MINUTES: int = 30

    CONSUME_RATE_LIMIT: int = 10
    CLAIM_RATE_LIMIT: int = 5
    RATE_LIMIT_WINDOW_SECONDS: int = 86400
    # e.g. "Europe/Istanbul": windows end at the next local midnight instead
    RATE_LIMIT_RESET_TIMEZONE: str | None = None
    RATE_LIMIT_ABUSE_THRESHOLD: int = 50

    TOKEN_EXPIRED_RETENTION_DAYS: int = 7
    TOKEN_USED_RETENTION_DAYS: int = 90
    REDEMPTION_PENDING_MAX_DAYS: int = 30

    DEFAULT_COUNTRY_CODE: str = "90"

    DEBUG: bool = False
    ALLOWED_ORIGINS: str = "http://localhost:3000,http://127.0.0.1:3000"

    @property
    def allowed_origins_list(self) -> list[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]


settings = Settings()
