from __future__ import annotations

from fastapi import Depends, HTTPException, Request, Security, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError

from ..config import settings
from ..guard.engine import LoginGuard
from .core import decode_token
from .directory import UserDirectory, UserStatus
from .verifier import CredentialVerifier, IdentityToolkitVerifier, LocalCredentialVerifier

bearer_scheme = HTTPBearer(auto_error=False)


# ---------------------------------------------------------------------------
# Collaborators, overridable via app.dependency_overrides
# ---------------------------------------------------------------------------

def get_login_guard(request: Request) -> LoginGuard:
    """The guard instance created at startup and stored on app.state."""
    return request.app.state.login_guard


def get_credential_verifier() -> CredentialVerifier:
    if settings.verifier_backend == "identity_toolkit":
        return IdentityToolkitVerifier(
            api_key=settings.identity_api_key,
            base_url=settings.identity_base_url,
            timeout=settings.identity_timeout_seconds,
        )
    return LocalCredentialVerifier()


def get_user_directory() -> UserDirectory:
    return UserDirectory()


# ---------------------------------------------------------------------------
# Resolve current user from JWT
# ---------------------------------------------------------------------------

def get_current_user(
    bearer: HTTPAuthorizationCredentials | None = Security(bearer_scheme),
    directory: UserDirectory = Depends(get_user_directory),
) -> UserStatus:
    """Accepts Authorization: Bearer <jwt>. Returns the active user or raises 401."""
    if not bearer or not bearer.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No credentials provided.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        payload = decode_token(bearer.credentials)
        uid: str = payload.get("sub", "")
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                            detail="Invalid or expired token.")
    user = directory.get_status(uid)
    if not user or not user.active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                            detail="User not found or inactive.")
    return user


# ---------------------------------------------------------------------------
# Role guards
# ---------------------------------------------------------------------------

def require_admin(current_user: UserStatus = Depends(get_current_user)) -> UserStatus:
    if not current_user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                            detail="Admin access required.")
    return current_user
