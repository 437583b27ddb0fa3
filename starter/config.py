from __future__ import annotations

import sys
from functools import lru_cache
from typing import List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


_DEFAULT_JWT_SECRET = "change-me-in-production-use-long-random-string"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="STARTER_", env_file=".env", extra="ignore")

    # Database
    database_url: str = "sqlite:///./starter.db"
    log_sql: bool = False

    # Server
    environment: str = "development"
    log_level: str = "info"
    log_format: str = "json"  # json | text
    allow_cors_origins: List[str] = ["*"]

    # Audit sink (in addition to stdout)
    audit_log_path: Optional[str] = None

    # Auth
    jwt_secret: str = _DEFAULT_JWT_SECRET
    jwt_expire_minutes: int = 480  # 8 hours
    registration_enabled: bool = False

    # Login rate limiting (token bucket per client IP)
    login_max_attempts: int = 5
    login_window_seconds: int = 60
    login_cache_max_size: int = 10_000

    # Generic endpoint throttling (slowapi)
    signup_rate_limit: str = "3/minute"

    # Requests slower than this are logged on starter.performance
    slow_request_ms: int = 500

    # Seeded admin account
    admin_username: str = "admin"
    admin_password: str = "changeme"
    admin_name: str = "Starter Admin"

    @field_validator("jwt_secret")
    @classmethod
    def validate_jwt_secret(cls, v: str, info) -> str:
        """Refuse to start in production with the default JWT secret."""
        env = info.data.get("environment", "development")
        if env != "development" and v == _DEFAULT_JWT_SECRET:
            print(
                "\nFATAL: STARTER_JWT_SECRET is set to the default value.\n"
                "   Set STARTER_JWT_SECRET to a strong random string before "
                "running in production.\n",
                file=sys.stderr,
            )
            raise ValueError(
                "JWT secret must be changed from default in non-development environments. "
                "Set STARTER_JWT_SECRET env var."
            )
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in ("json", "text"):
            raise ValueError("log_format must be 'json' or 'text'")
        return v

    @field_validator("login_max_attempts", "login_window_seconds", "login_cache_max_size")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be a positive integer")
        return v

    @field_validator("slow_request_ms")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("must not be negative")
        return v


@lru_cache
def get_settings() -> Settings:
    return Settings()


# Module-level singleton for convenience
settings = get_settings()
