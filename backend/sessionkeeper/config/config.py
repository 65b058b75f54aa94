"""Application settings loaded from environment for the sessionkeeper backend.

This module defines the :class:`Settings` model (based on Pydantic's
``BaseSettings``) and instantiates ``settings`` which is imported by the
application entrypoint to build the service container.

Notable fields include the database/cache connection URLs, the two JWT
signing secrets, the password hashing cost factor and the circuit breaker
and rate limit tuning knobs.
"""

from pathlib import Path
from typing import Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings

BACKEND_DIR = Path(__file__).resolve().parent.parent.parent
ENV_FILE = BACKEND_DIR / ".env"


class Settings(BaseSettings):
    """Environment-backed application settings.

    Attributes:
        DATABASE_URL_ASYNC: Async database URL for SQLAlchemy.
        USE_MEMORY_STORE: Keep users and refresh records in process memory.
        REDIS_URL: Redis connection URL; unset selects the in-process cache.

        JWT_ACCESS_SECRET: Signing secret for access tokens.
        JWT_REFRESH_SECRET: Signing secret for refresh tokens.
        JWT_ALGORITHM: JWT signing algorithm.
        ACCESS_TOKEN_EXPIRE_MINUTES: Access token lifetime in minutes.
        REFRESH_TOKEN_EXPIRE_DAYS: Refresh token lifetime in days.
        BCRYPT_ROUNDS: bcrypt cost factor for password hashes.

        BREAKER_*: Guarded store call policy (timeout, error threshold,
            cool-down and rolling window).
        PROFILE_CACHE_TTL_SECONDS: Lifetime of cached profile projections.
        LOGIN_RATE_LIMIT_*: Failed login budget per identifier.
        REGISTER_RATE_LIMIT_*: Registration budget per client IP.
        GLOBAL_RATE_LIMIT_*: Request budget per client IP across all routes.
        REQUEST_TIMEOUT_SECONDS: Time budget of a single request.
        TOKEN_CLEANUP_INTERVAL_SECONDS: Period of the expired token purge.
        COOKIE_SECURE: Whether the refresh cookie is marked ``secure``.
        CORS_ORIGINS: Browser origins allowed to call the API.
        LOG_LEVEL: Minimum log level.
    """

    DATABASE_URL_ASYNC: str = "sqlite+aiosqlite:///./sessionkeeper.db"
    USE_MEMORY_STORE: bool = False
    REDIS_URL: Optional[str] = None

    JWT_ACCESS_SECRET: str
    JWT_REFRESH_SECRET: str
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 24 * 60
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7

    BCRYPT_ROUNDS: int = 12

    BREAKER_TIMEOUT_SECONDS: float = 5.0
    BREAKER_ERROR_THRESHOLD_PERCENT: int = 50
    BREAKER_RESET_TIMEOUT_SECONDS: float = 30.0
    BREAKER_ROLLING_WINDOW_SECONDS: float = 10.0
    BREAKER_ROLLING_BUCKETS: int = 10
    BREAKER_VOLUME_THRESHOLD: int = 5

    PROFILE_CACHE_TTL_SECONDS: int = 300

    LOGIN_RATE_LIMIT_ATTEMPTS: int = 5
    LOGIN_RATE_LIMIT_WINDOW_SECONDS: int = 15 * 60
    REGISTER_RATE_LIMIT_ATTEMPTS: int = 3
    REGISTER_RATE_LIMIT_WINDOW_SECONDS: int = 60 * 60
    GLOBAL_RATE_LIMIT_ATTEMPTS: int = 100
    GLOBAL_RATE_LIMIT_WINDOW_SECONDS: int = 60

    REQUEST_TIMEOUT_SECONDS: float = 30.0

    TOKEN_CLEANUP_INTERVAL_SECONDS: int = 60 * 60

    COOKIE_SECURE: bool = True
    CORS_ORIGINS: list[str] = ["http://localhost:5173", "http://localhost:3000"]

    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = str(ENV_FILE)
        env_file_encoding = "utf-8"

    @field_validator("JWT_ACCESS_SECRET", "JWT_REFRESH_SECRET")
    @classmethod
    def _secret_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("JWT secrets must not be empty")
        return value

    @field_validator("BCRYPT_ROUNDS")
    @classmethod
    def _rounds_in_range(cls, value: int) -> int:
        # bcrypt only accepts log2 cost factors in this range
        if not 4 <= value <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31")
        return value

    @model_validator(mode="after")
    def _distinct_secrets(self) -> "Settings":
        if self.JWT_ACCESS_SECRET == self.JWT_REFRESH_SECRET:
            raise ValueError("JWT_ACCESS_SECRET and JWT_REFRESH_SECRET must differ")
        return self

    @property
    def access_token_expire_seconds(self) -> int:
        return self.ACCESS_TOKEN_EXPIRE_MINUTES * 60

    @property
    def refresh_token_expire_seconds(self) -> int:
        return self.REFRESH_TOKEN_EXPIRE_DAYS * 24 * 60 * 60


settings = Settings()
