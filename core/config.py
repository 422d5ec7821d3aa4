"""
Centralized configuration management with validation.

All environment variables are loaded and validated here.
This ensures consistent configuration across the engine and its storage adapter.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    """Engine settings with validation."""

    # Pydantic v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

    # Database Configuration
    # Any SQLAlchemy URL; production points at Postgres, tests use in-memory SQLite.
    DATABASE_URL: str = Field(default="sqlite:///./engagement.db")
    DB_ECHO: bool = Field(default=False)

    # Database Pool Configuration (ignored for SQLite)
    DB_POOL_SIZE: int = Field(default=10)
    DB_MAX_OVERFLOW: int = Field(default=5)
    DB_POOL_RECYCLE: int = Field(default=3600)  # 1 hour

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="text")  # json or text

    # Streak writes are optimistic: re-read and retry when another writer
    # moved last_interaction_date underneath us.
    STREAK_UPDATE_MAX_RETRIES: int = Field(default=3, ge=1, le=10)

    # Failed achievement writes are queued; this caps out-of-band retries per write.
    ACHIEVEMENT_WRITE_RETRY_ATTEMPTS: int = Field(default=3, ge=1, le=10)

    # Environment
    ENVIRONMENT: str = Field(default="development")


# Global settings instance
settings = Settings()
