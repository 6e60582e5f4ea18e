"""
auth/verifier.py: Credential verification backends
=====================================================
A verifier turns (email, password) into a VerifiedIdentity or raises:

  CredentialRejected   the provider answered and said no (401/403/429)
  VerifierUnavailable  the provider could not be reached; the attempt
                       is not held against the client

Two backends:
  LocalCredentialVerifier    bcrypt hashes in the local users table
  IdentityToolkitVerifier    hosted identity provider REST API
                             (accounts:signInWithPassword)
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx
from sqlalchemy import select

from ..database import db_session
from ..models import User
from .core import verify_password

logger = logging.getLogger("epefi.verifier")


@dataclass(frozen=True)
class VerifiedIdentity:
    uid: str
    email: str


class CredentialRejected(Exception):
    """The identity provider refused the credentials."""

    def __init__(self, kind: str, status_code: int, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code
        self.message = message


class VerifierUnavailable(Exception):
    """The identity provider could not be reached."""


def invalid_credentials() -> CredentialRejected:
    return CredentialRejected("invalid_credentials", 401, "Invalid credentials")


class CredentialVerifier(Protocol):
    def verify(self, email: str, password: str) -> VerifiedIdentity: ...


# ---------------------------------------------------------------------------
# Local users table
# ---------------------------------------------------------------------------

class LocalCredentialVerifier:
    """Checks bcrypt hashes stored alongside the user profile."""

    def verify(self, email: str, password: str) -> VerifiedIdentity:
        with db_session() as session:
            user = session.execute(
                select(User).where(User.email == email)
            ).scalar_one_or_none()
        if user is None or not verify_password(password, user.password_hash):
            raise invalid_credentials()
        return VerifiedIdentity(uid=user.uid, email=user.email)


# ---------------------------------------------------------------------------
# Hosted identity provider
# ---------------------------------------------------------------------------

# Provider error message -> (kind, HTTP status, client-facing message)
_PROVIDER_ERRORS = {
    "EMAIL_NOT_FOUND": ("invalid_credentials", 401, "Invalid credentials"),
    "INVALID_PASSWORD": ("invalid_credentials", 401, "Invalid credentials"),
    "INVALID_LOGIN_CREDENTIALS": ("invalid_credentials", 401, "Invalid credentials"),
    "USER_DISABLED": ("user_disabled", 403, "User disabled"),
    "TOO_MANY_ATTEMPTS_TRY_LATER": ("too_many_attempts", 429, "Too many failed attempts. Try again later"),
}


class IdentityToolkitVerifier:
    """Password sign-in against the identity provider's REST endpoint."""

    def __init__(
        self,
        api_key: str,
        base_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def verify(self, email: str, password: str) -> VerifiedIdentity:
        url = f"{self._base_url}/v1/accounts:signInWithPassword"
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                resp = client.post(
                    url,
                    params={"key": self._api_key},
                    json={"email": email, "password": password, "returnSecureToken": True},
                )
        except httpx.HTTPError as exc:
            logger.error("Identity provider request failed: %s", exc)
            raise VerifierUnavailable("Could not reach the authentication service") from exc

        if resp.status_code >= 500:
            logger.error("Identity provider returned HTTP %d", resp.status_code)
            raise VerifierUnavailable("Authentication service unavailable")

        try:
            body = resp.json()
        except ValueError:
            body = {}

        if not resp.is_success:
            message = (body.get("error") or {}).get("message", "")
            # Messages may carry a suffix, e.g. "TOO_MANY_ATTEMPTS_TRY_LATER : ..."
            code = message.split(" ")[0] if message else ""
            if code in _PROVIDER_ERRORS:
                kind, status_code, text = _PROVIDER_ERRORS[code]
            elif resp.status_code == 429:
                kind, status_code, text = _PROVIDER_ERRORS["TOO_MANY_ATTEMPTS_TRY_LATER"]
            else:
                kind, status_code, text = "invalid_credentials", 401, "Invalid credentials"
            logger.info("Identity provider rejected sign-in: %s", code or resp.status_code)
            raise CredentialRejected(kind, status_code, text)

        uid = body.get("localId")
        if not uid:
            raise RuntimeError("Identity provider response did not include localId")
        return VerifiedIdentity(uid=uid, email=body.get("email", email))
