from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------

class LoginRequest(BaseModel):
    """Raw login payload. Field shape is checked by the login guard, not here."""

    email: Optional[Any] = Field(default=None, description="Account email address.")
    password: Optional[Any] = Field(default=None, description="Account password.")


class RoleFlags(BaseModel):
    admin: bool = False
    student: bool = False


class UserProfile(BaseModel):
    uid: str
    email: str
    nombre: str
    apellido: str
    dni: Optional[str] = None
    role: RoleFlags


class LoginResponse(BaseModel):
    message: str = "Login successful"
    access_token: str
    token_type: str = "bearer"
    user: UserProfile
    last_login: datetime


class ErrorResponse(BaseModel):
    error: str
    details: Optional[List[str]] = None


class LockoutResponse(BaseModel):
    error: str
    retry_after: int = Field(..., serialization_alias="retryAfter")


# ---------------------------------------------------------------------------
# Token verification
# ---------------------------------------------------------------------------

class VerifyTokenRequest(BaseModel):
    token: str = ""


class VerifyTokenResponse(BaseModel):
    valid: bool
    user: Optional[UserProfile] = None
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Admin / observability
# ---------------------------------------------------------------------------

class LoginStatsRead(BaseModel):
    """Snapshot of the login guard's attempt map."""

    model_config = ConfigDict(populate_by_name=True)

    total_tracked: int = Field(..., serialization_alias="totalTracked")
    blocked_count: int = Field(..., serialization_alias="blockedCount")
    recent_count: int = Field(..., serialization_alias="recentCount")
