"""Application settings using Pydantic for environment-based configuration."""
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration
    database_url: str = Field(..., description="SQLAlchemy async connection URL")
    database_pool_size: int = Field(default=20, description="Database connection pool size")
    database_max_overflow: int = Field(default=50, description="Max database connection overflow")
    database_echo: bool = Field(default=False, description="Echo SQL queries (debug)")

    # Application Configuration
    app_name: str = Field(default="counsel-payments", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    debug: bool = Field(default=False, description="Debug mode")

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")
    api_workers: int = Field(default=4, description="Number of API workers")
    allowed_origins: str = Field(
        default="http://localhost:3000,http://localhost:8000",
        description="CORS allowed origins (comma-separated)"
    )
    public_base_url: str = Field(
        default="http://localhost:8000",
        description="Externally reachable base URL of this service (used in provider callbacks)",
    )
    frontend_base_url: str = Field(
        default="",
        description="Base URL of the dashboard; empty keeps landing redirects relative",
    )

    # Authentication (tokens are issued by the external auth service)
    auth_jwt_secret: str = Field(..., description="Shared HS256 secret for session tokens")
    auth_jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    auth_cookie_name: str = Field(
        default="session_token", description="Cookie carrying the session token for browser calls"
    )

    # PayChangu Configuration
    paychangu_public_key: str = Field(..., description="PayChangu public checkout key")
    paychangu_webhook_secret: Optional[str] = Field(
        default=None, description="Secret for callback signature verification (disabled if unset)"
    )
    payment_currency: str = Field(default="MWK", description="Settlement currency")
    payment_method_label: str = Field(
        default="Paychangu", description="Payment method label stored on payments"
    )

    # Reconciliation
    reconciliation_max_attempts: int = Field(
        default=5, description="Max optimistic upsert attempts before giving up"
    )

    # Landing page polling
    landing_poll_interval_seconds: float = Field(
        default=3.0, description="Delay between payment status polls on the landing page"
    )
    landing_poll_max_attempts: int = Field(
        default=10, description="Polls before the landing page asks for a manual refresh"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @field_validator("payment_currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        """Validate currency format."""
        if len(v) != 3:
            raise ValueError("Currency must be 3-letter code")
        return v.upper()

    @field_validator("public_base_url", "frontend_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    def get_allowed_origins_list(self) -> List[str]:
        """Parse allowed origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",")]

    @property
    def verifies_callback_signatures(self) -> bool:
        return bool(self.paychangu_webhook_secret)


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
