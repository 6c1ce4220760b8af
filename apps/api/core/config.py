"""
Centralized configuration management with validation.

All environment variables are loaded and validated here.
This ensures consistent configuration across the API, the worker and the beat scheduler.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    """Application settings with validation."""

    # Pydantic v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

    # Database Configuration
    # DATABASE_URL wins when set (e.g. sqlite for local runs); otherwise built from POSTGRES_*.
    DATABASE_URL: Optional[str] = Field(default=None)
    POSTGRES_USER: str = Field(default="postgres")
    POSTGRES_PASSWORD: str = Field(default="postgres")
    POSTGRES_DB: str = Field(default="coaching_app")
    POSTGRES_HOST: str = Field(default="postgres")
    POSTGRES_PORT: int = Field(default=5432)

    # Database Pool Configuration
    DB_POOL_SIZE: int = Field(default=10)
    DB_MAX_OVERFLOW: int = Field(default=10)
    DB_POOL_TIMEOUT: int = Field(default=30)
    DB_POOL_RECYCLE: int = Field(default=3600)  # 1 hour

    # JWT Authentication - tokens are issued elsewhere, this service only validates them.
    SECRET_KEY: str = Field(
        default=...,  # Required - no default
        description="JWT signing key shared with the auth service (32+ chars)."
    )

    # Shared secret for the external cron caller (Authorization: Bearer <CRON_SECRET>).
    # When unset the cron endpoint rejects every request.
    CRON_SECRET: Optional[str] = Field(default=None)

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="json")  # json or text

    # Celery Configuration
    CELERY_BROKER_URL: str = Field(default="redis://redis:6379/0")
    CELERY_RESULT_BACKEND: str = Field(default="redis://redis:6379/0")

    # Job dispatch
    JOB_SWEEP_INTERVAL_MINUTES: int = Field(default=2, ge=1, le=60)
    # Max pending jobs handled by one sweep (None = all). Keeps one tick inside the task time limit.
    JOB_SWEEP_BATCH_LIMIT: Optional[int] = Field(default=None, ge=1)

    # Training plans
    MAX_PLAN_WEEKS: int = Field(default=6, ge=1, le=12)
    # Recommendation generation requires the client to have at least one InBody scan.
    REQUIRE_INBODY_SCAN: bool = Field(default=True)

    # OpenAI (plan generation + scan extraction)
    OPENAI_API_KEY: Optional[str] = Field(default=None)
    OPENAI_MODEL: str = Field(default="gpt-4o-mini")
    OPENAI_VISION_MODEL: str = Field(default="gpt-4o-mini")
    OPENAI_TIMEOUT_S: int = Field(default=120)

    # Uploads
    UPLOADS_DIR: str = Field(default="/uploads")
    SCAN_MAX_FILE_BYTES: int = Field(default=10 * 1024 * 1024)  # 10MB

    # Environment
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=False)

    # CORS - comma-separated list of allowed origins for production
    CORS_ORIGINS: Optional[str] = Field(default=None)

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql://{self.POSTGRES_USER}:"
            f"{self.POSTGRES_PASSWORD}@"
            f"{self.POSTGRES_HOST}:"
            f"{self.POSTGRES_PORT}/"
            f"{self.POSTGRES_DB}"
        )


# Global settings instance
settings = Settings()
