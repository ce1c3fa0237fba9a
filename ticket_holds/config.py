"""
Application configuration management
"""

from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "Ticket Holds"
    APP_VERSION: str = "1.0.0"
    APP_ENV: str = "development"
    DEBUG: bool = False  # Default to production-safe
    API_PREFIX: str = "/api/v1"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Database
    DATABASE_URL: str  # Must be provided via environment

    @field_validator('DATABASE_URL')
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        if v.startswith('postgresql://'):
            v = v.replace('postgresql://', 'postgresql+asyncpg://', 1)
        return v
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 40
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 3600
    DB_ECHO: bool = False
    DB_LOCK_TIMEOUT_MS: int = 5000

    # Redis (optional, only used to elect a single sweeper instance)
    REDIS_URL: Optional[str] = None
    REDIS_MAX_CONNECTIONS: int = 10

    # JWT
    JWT_SECRET_KEY: str  # Must be provided via environment
    JWT_ALGORITHM: str = "HS256"
    OPERATOR_ROLES: List[str] = ["admin", "organizer"]

    @field_validator('JWT_SECRET_KEY')
    @classmethod
    def validate_secret_key(cls, v: str) -> str:
        if len(v) < 32:
            raise ValueError("JWT_SECRET_KEY must be at least 32 characters long")
        return v

    # Purchase links
    LINK_CODE_LENGTH: int = 16
    LINK_CODE_MAX_ATTEMPTS: int = 10
    USER_AGENT_MAX_LENGTH: int = 500
    CURRENCY: str = "hkd"

    # Expiry sweeper
    SWEEPER_ENABLED: bool = True
    SWEEPER_INTERVAL_SECONDS: int = 3600
    SWEEPER_LOCK_TTL_SECONDS: int = 300

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Monitoring
    PROMETHEUS_ENABLED: bool = True
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"

    @field_validator("CORS_ORIGINS", "OPERATOR_ROLES", mode="before")
    @classmethod
    def parse_comma_separated(cls, v):
        if isinstance(v, str) and not v.startswith("["):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    @property
    def is_testing(self) -> bool:
        return self.APP_ENV == "testing"


# Create global settings instance
settings = Settings()
