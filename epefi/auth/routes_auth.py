from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from jose import JWTError

from .core import create_access_token, decode_token
from .dependencies import get_credential_verifier, get_current_user, get_login_guard, get_user_directory
from .directory import UserDirectory, UserStatus
from .verifier import CredentialRejected, CredentialVerifier, VerifierUnavailable
from ..config import settings
from ..guard.engine import Invalid, LoginGuard, Outcome, Reject
from ..guard.validation import normalize_email, sanitize_value
from ..rate_limit import client_identity, limiter
from ..schemas import (
    ErrorResponse,
    LockoutResponse,
    LoginRequest,
    LoginResponse,
    RoleFlags,
    UserProfile,
    VerifyTokenRequest,
    VerifyTokenResponse,
)

logger = logging.getLogger("epefi.auth")

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _profile(user: UserStatus) -> UserProfile:
    return UserProfile(
        uid=user.uid,
        email=user.email,
        nombre=user.nombre,
        apellido=user.apellido,
        dni=user.dni,
        role=RoleFlags(**user.role),
    )


async def login_payload(request: Request) -> LoginRequest:
    """
    Read the login body leniently. Missing, non-JSON and non-object bodies
    become an empty payload so the guard still sees (and counts) the attempt.
    """
    try:
        data = json.loads(await request.body() or b"null")
    except ValueError:
        data = None
    if not isinstance(data, dict):
        data = {}
    return LoginRequest.model_validate(sanitize_value(data))


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------

@router.post(
    "/login",
    response_model=LoginResponse,
    openapi_extra={
        "requestBody": {"content": {"application/json": {"schema": LoginRequest.model_json_schema()}}},
    },
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        429: {"model": LockoutResponse},
        503: {"model": ErrorResponse},
    },
)
@limiter.limit(settings.login_rate_limit)
def login(
    request: Request,
    body: LoginRequest = Depends(login_payload),
    guard: LoginGuard = Depends(get_login_guard),
    verifier: CredentialVerifier = Depends(get_credential_verifier),
    directory: UserDirectory = Depends(get_user_directory),
):
    client_id = client_identity(request)
    email = body.email
    password = body.password

    decision = guard.check_and_admit(client_id, email, password)
    if isinstance(decision, Reject):
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={"error": decision.message, "retryAfter": decision.retry_after_seconds},
            headers={"Retry-After": str(decision.retry_after_seconds)},
        )
    if isinstance(decision, Invalid):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Invalid login data", "details": decision.errors},
        )

    email = normalize_email(email)
    logger.info("Login attempt for %s from %s", email, client_id)

    try:
        identity = verifier.verify(email, password)
    except VerifierUnavailable as exc:
        logger.error("Credential verifier unavailable: %s", exc)
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "Authentication service unavailable")
    except CredentialRejected as exc:
        if exc.status_code in (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN):
            guard.record_outcome(client_id, Outcome.FAILURE)
        return _error(exc.status_code, exc.message)

    user = directory.get_status(identity.uid)
    if user is None:
        logger.error("Verified uid %s has no profile in the user directory", identity.uid)
        return _error(status.HTTP_404_NOT_FOUND, "User not found in the system")
    if not user.active:
        logger.info("Login refused for deactivated user %s", user.uid)
        guard.record_outcome(client_id, Outcome.FAILURE)
        return _error(status.HTTP_403_FORBIDDEN, "User is deactivated. Contact the administrator")

    guard.record_outcome(client_id, Outcome.SUCCESS)

    now = datetime.now(timezone.utc)
    directory.touch_last_access(user.uid, now)
    directory.record_login(
        uid=user.uid,
        email=user.email,
        ip_address=client_id,
        user_agent=request.headers.get("user-agent", ""),
    )
    logger.info("Login successful for uid %s", user.uid)

    token = create_access_token(subject=user.uid, email=user.email, admin=user.is_admin)
    return LoginResponse(access_token=token, user=_profile(user), last_login=now)


# ---------------------------------------------------------------------------
# Token introspection
# ---------------------------------------------------------------------------

@router.post("/verify-token", response_model=VerifyTokenResponse)
def verify_token(
    body: VerifyTokenRequest,
    directory: UserDirectory = Depends(get_user_directory),
) -> VerifyTokenResponse:
    if not body.token:
        return VerifyTokenResponse(valid=False, error="Token is required")
    try:
        payload = decode_token(body.token)
    except JWTError:
        return VerifyTokenResponse(valid=False, error="Invalid or expired token")

    user = directory.get_status(payload.get("sub", ""))
    if user is None or not user.active:
        return VerifyTokenResponse(valid=False, error="User not found or inactive")
    return VerifyTokenResponse(valid=True, user=_profile(user))


# ---------------------------------------------------------------------------
# Current user
# ---------------------------------------------------------------------------

@router.get("/me", response_model=UserProfile)
def me(current_user: UserStatus = Depends(get_current_user)) -> UserProfile:
    return _profile(current_user)
