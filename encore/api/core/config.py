"""Application configuration using Pydantic Settings"""

import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: str = Field(default="development", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")

    # Server Configuration
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")
    frontend_url: str = Field(default="http://localhost:3000", description="Guest app URL for CORS")
    operator_url: str = Field(
        default="http://localhost:3001", description="Operator console URL for CORS"
    )

    # Storage
    store_backend: Literal["postgres", "memory"] = Field(
        default="postgres", description="Request store backend"
    )
    database_url: str = Field(default="", description="PostgreSQL database URL")
    database_ssl: bool = Field(default=False, description="Require SSL for database connections")
    db_pool_min_size: int = Field(default=1, ge=0)
    db_pool_max_size: int = Field(default=10, ge=1)
    run_migrations: bool = Field(default=True, description="Apply pending migrations on startup")

    # Module defaults, used when an event's module config is first created
    default_cooldown_seconds: int = Field(default=60, ge=0, le=3600)
    default_max_per_guest: int = Field(default=0, ge=0, le=20, description="0 = unlimited")
    config_cache_ttl: float = Field(default=300, gt=0, description="Module config cache TTL")

    # Realtime
    subscriber_queue_size: int = Field(
        default=256, ge=1, description="Buffered changes per subscriber before disconnect"
    )

    # Track lookup
    youtube_api_key: str = Field(default="", description="YouTube Data API key (empty = disabled)")
    track_lookup_timeout: float = Field(default=5.0, gt=0)

    # Lifecycle overrides: {"STATUS": ["TARGET", ...]}, replaces the default table
    song_transitions: dict[str, list[str]] = Field(default_factory=dict)
    karaoke_transitions: dict[str, list[str]] = Field(default_factory=dict)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a valid logging level"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            logger.warning(f"Invalid log level '{v}', defaulting to INFO")
            return "INFO"
        return v_upper

    @model_validator(mode="after")
    def validate_store(self) -> "Settings":
        if self.store_backend == "postgres" and not self.database_url:
            raise ValueError("database_url is required when store_backend is 'postgres'")
        return self

    @property
    def cors_origins(self) -> list[str]:
        """Get CORS allowed origins"""
        return [self.frontend_url, self.operator_url]

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
