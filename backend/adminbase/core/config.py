"""
Application Configuration
"""
from functools import lru_cache
from typing import List, Literal

from pydantic_settings import BaseSettings
from pydantic import model_validator


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "AdminBase"
    APP_ENV: Literal["development", "staging", "production"] = "development"
    DEBUG: bool = False  # Secure default
    SECRET_KEY: str = "change-me-in-production"
    CORS_ORIGINS: List[str] = ["http://localhost:5173", "http://localhost:3000"]

    # Database
    DATABASE_URL: str = "sqlite:///./adminbase.db"
    DATABASE_ECHO: bool = False

    # Token lifetimes
    ACCESS_TOKEN_TTL_HOURS: int = 1
    REFRESH_TOKEN_TTL_DAYS: int = 7
    REMEMBER_ACCESS_TOKEN_TTL_DAYS: int = 7
    REMEMBER_REFRESH_TOKEN_TTL_DAYS: int = 30

    # Account policy
    REQUIRE_EMAIL_VERIFICATION: bool = False
    LOGIN_IP_CHECK_ENABLED: bool = True
    FAILED_LOGIN_THRESHOLD: int = 5
    FAILED_LOGIN_WINDOW_MINUTES: int = 15

    # Audit trail
    AUDIT_ENABLED: bool = True
    AUDIT_IGNORED_TABLES: List[str] = ["audit_logs", "auth_logs"]
    AUDIT_RETENTION_DAYS: int = 365

    @model_validator(mode="after")
    def validate_production_settings(self) -> "Settings":
        """Validate critical settings for non-development environments."""
        if self.APP_ENV != "development":
            # Reject default SECRET_KEY in production/staging
            if self.SECRET_KEY == "change-me-in-production":
                raise ValueError(
                    "SECRET_KEY must be changed from default value in production/staging environments. "
                    "Set a secure, random SECRET_KEY in your .env file or environment variables."
                )

            if self.DEBUG:
                import warnings
                warnings.warn(
                    "DEBUG mode is enabled in a non-development environment. "
                    "This is not recommended for production.",
                    UserWarning,
                )

        # An access token must never outlive the refresh token issued with it
        if self.ACCESS_TOKEN_TTL_HOURS >= self.REFRESH_TOKEN_TTL_DAYS * 24:
            raise ValueError(
                "ACCESS_TOKEN_TTL_HOURS must be shorter than REFRESH_TOKEN_TTL_DAYS."
            )
        if self.REMEMBER_ACCESS_TOKEN_TTL_DAYS >= self.REMEMBER_REFRESH_TOKEN_TTL_DAYS:
            raise ValueError(
                "REMEMBER_ACCESS_TOKEN_TTL_DAYS must be shorter than REMEMBER_REFRESH_TOKEN_TTL_DAYS."
            )

        # The audit table can never audit itself
        if "audit_logs" not in self.AUDIT_IGNORED_TABLES:
            self.AUDIT_IGNORED_TABLES = ["audit_logs", *self.AUDIT_IGNORED_TABLES]

        return self

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()


settings = get_settings()
