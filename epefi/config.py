from __future__ import annotations

import sys
from functools import lru_cache
from typing import List

from pydantic import field_validator
from pydantic_settings import BaseSettings


_DEFAULT_JWT_SECRET = "change-me-in-production-use-long-random-string"


class Settings(BaseSettings):
    # Database
    database_url: str = "sqlite:///./epefi.db"
    log_sql: bool = False

    # Server
    environment: str = "development"
    log_level: str = "info"
    log_format: str = "json"
    allow_cors_origins: List[str] = ["*"]

    # Auth
    jwt_secret: str = _DEFAULT_JWT_SECRET
    jwt_expire_minutes: int = 60

    # Credential verification: "local" (users table) or "identity_toolkit"
    verifier_backend: str = "local"
    identity_api_key: str = ""
    identity_base_url: str = "https://identitytoolkit.googleapis.com"
    identity_timeout_seconds: float = 10.0

    # Login defense
    trust_forwarded_for: bool = False
    login_sweep_interval_minutes: int = 60

    # Coarse per-IP ceiling in front of the login guard
    rate_limit_enabled: bool = True
    login_rate_limit: str = "30/minute"

    @field_validator("jwt_secret")
    @classmethod
    def validate_jwt_secret(cls, v: str, info) -> str:
        """Refuse to start in production with the default JWT secret."""
        env = info.data.get("environment", "development")
        if env != "development" and v == _DEFAULT_JWT_SECRET:
            print(
                "\nFATAL: EPEFI_JWT_SECRET is set to the default value.\n"
                "   Set EPEFI_JWT_SECRET to a strong random string before "
                "running in production.\n",
                file=sys.stderr,
            )
            raise ValueError(
                "JWT secret must be changed from default in non-development environments. "
                "Set EPEFI_JWT_SECRET env var."
            )
        return v

    @field_validator("verifier_backend")
    @classmethod
    def validate_verifier_backend(cls, v: str) -> str:
        if v not in ("local", "identity_toolkit"):
            raise ValueError("verifier_backend must be 'local' or 'identity_toolkit'.")
        return v

    class Config:
        env_prefix = "EPEFI_"


@lru_cache
def get_settings() -> Settings:
    return Settings()


# Module-level singleton for convenience
settings = get_settings()
