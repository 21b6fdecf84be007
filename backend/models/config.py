import os
import sys
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _should_load_env_file() -> str | None:
    """Determine if .env should be loaded.

    Local development picks up `backend/.env` automatically. Under pytest or
    in CI the file is ignored so tests control the environment completely.
    """
    if any("pytest" in str(x) for x in sys.argv if x):
        return None
    if os.environ.get("CI") in ("1", "true", "True"):
        return None
    return ".env"


class Settings(BaseSettings):
    ENVIRONMENT: str = Field(
        default="development",
        description="Environment: 'development', 'test', 'staging' or 'production'",
    )

    DATABASE_URL: str = "sqlite:///./data/mindwell.db"
    SECRET_KEY: str = Field(
        ...,  # Required, no default
        description="JWT secret key - must be set via SECRET_KEY environment variable",
    )
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30
    CORS_ORIGINS: List[str] = Field(
        default=["http://localhost:5173"],
        description="Allowed CORS origins (comma-separated in env var)",
    )

    # Database connection pool settings
    DB_POOL_SIZE: int = Field(
        default=5,
        description="Number of persistent connections in pool",
    )
    DB_MAX_OVERFLOW: int = Field(
        default=10,
        description="Extra connections when pool exhausted",
    )
    DB_POOL_TIMEOUT: int = Field(
        default=30,
        description="Seconds to wait for connection from pool",
    )
    DB_POOL_RECYCLE: int = Field(
        default=1800,
        description="Recycle connections after N seconds",
    )

    AUTO_CREATE_DB: bool = Field(
        default=False,
        description="When true (development only), call Base.metadata.create_all on startup",
    )

    SLOW_REQUEST_THRESHOLD: float = Field(
        default=1.0,
        description="Log warning for requests slower than this (seconds)",
    )

    # 2FA (TOTP) Settings
    TOTP_ENCRYPTION_KEY: str = Field(
        default="",
        description="Fernet key for encrypting TOTP secrets at rest. Generate with: "
        'python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"',
    )
    TOTP_ISSUER_NAME: str = Field(
        default="MentalHealthApp",
        description="Issuer name shown in authenticator apps",
    )
    TOTP_VALID_WINDOW: int = Field(
        default=1,
        description="Adjacent 30-second steps accepted on each side of the current one",
    )
    TOTP_TEMP_TOKEN_EXPIRE_MINUTES: int = Field(
        default=5,
        description="Minutes until the post-password 2FA temp token expires",
    )
    TOTP_REJECT_REPLAYED_CODES: bool = Field(
        default=False,
        description="Reject TOTP codes whose time step was already accepted for the account",
    )
    RECOVERY_CODE_BCRYPT_ROUNDS: int = Field(
        default=10,
        description="bcrypt cost factor for recovery code hashes",
    )

    # Code-guessing protection
    TOTP_MAX_FAILED_ATTEMPTS: int = Field(
        default=5,
        description="Failed 2FA attempts per account before further attempts are refused",
    )
    TOTP_FAILED_ATTEMPT_WINDOW_SECONDS: int = Field(
        default=900,
        description="Sliding window for counting failed 2FA attempts",
    )
    TWO_FACTOR_RATE_LIMIT: str = Field(
        default="10/minute",
        description="Per-IP limit applied to every 2FA endpoint",
    )

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: str | List[str]) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",")]
        return v

    @field_validator("TOTP_VALID_WINDOW")
    @classmethod
    def validate_valid_window(cls, v: int) -> int:
        """Keep the tolerance window small enough to be meaningful."""
        if v < 0 or v > 2:
            raise ValueError("TOTP_VALID_WINDOW must be between 0 and 2")
        return v

    model_config = SettingsConfigDict(
        env_file=_should_load_env_file(),
        env_file_encoding="utf-8",
        extra="ignore",  # Allow extra env vars (e.g., SENTRY_DSN) without validation errors
    )


# Instantiating Settings() raises pydantic.ValidationError if SECRET_KEY isn't set.
settings = Settings()  # type: ignore[call-arg]


def get_settings() -> Settings:
    """Get the settings instance (for dependency injection)."""
    return settings
