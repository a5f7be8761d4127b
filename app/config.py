"""Application Configuration"""

from decimal import Decimal
from typing import List
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application
    APP_NAME: str = "PropertyHub Billing"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    API_V1_PREFIX: str = "/api/v1"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Database
    DATABASE_URL: str
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 3600

    # Security & Authentication (tokens are issued by the identity service)
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15

    # Shared secret for the external scheduler (cron) endpoints
    CRON_SECRET: str = ""

    # CORS (5173 = Vite default dev server)
    ALLOWED_ORIGINS: str = "http://localhost:3000,http://localhost:3001,http://localhost:5173"
    ALLOWED_METHODS: str = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
    ALLOWED_HEADERS: str = "*"

    # Email (Resend)
    RESEND_API_KEY: str = ""
    EMAIL_FROM: str = "PropertyHub <onboarding@resend.dev>"
    PORTAL_URL: str = "https://propertyhub.mn"

    # SMS gateway
    SMS_API_URL: str = ""
    SMS_API_KEY: str = ""
    SMS_SENDER_ID: str = "PropertyHub"
    SMS_DEFAULT_COUNTRY_CODE: str = "976"
    SMS_TIMEOUT_SECONDS: float = 10.0

    # Notification queue
    NOTIFICATION_MAX_ATTEMPTS: int = 3
    NOTIFICATION_RETRY_DELAY_MINUTES: int = 15
    NOTIFICATION_CLAIM_TIMEOUT_SECONDS: int = 600
    NOTIFICATION_DRAIN_BATCH_SIZE: int = 50
    NOTIFICATION_DUPLICATE_WINDOW_HOURS: int = 24
    OVERDUE_NOTICE_DUPLICATE_WINDOW_HOURS: int = 168

    # Billing
    BILLING_TAX_RATE: Decimal = Decimal("0")
    CURRENCY_SYMBOL: str = "₮"

    # Rate Limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_PER_MINUTE: int = 60

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True
    )

    @field_validator("ALLOWED_ORIGINS")
    @classmethod
    def parse_origins(cls, v: str) -> List[str]:
        """Parse comma-separated origins into a list"""
        return [origin.strip() for origin in v.split(",")]

    @field_validator("ALLOWED_METHODS")
    @classmethod
    def parse_methods(cls, v: str) -> List[str]:
        """Parse comma-separated methods into a list"""
        return [method.strip() for method in v.split(",")]

    @field_validator("NOTIFICATION_MAX_ATTEMPTS", "NOTIFICATION_DRAIN_BATCH_SIZE")
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development environment"""
        return self.ENVIRONMENT.lower() == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment"""
        return self.ENVIRONMENT.lower() == "production"


# Global settings instance
settings = Settings()
