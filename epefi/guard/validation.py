"""
guard/validation.py: Login input shape checks and request sanitising
======================================================================
"""
from __future__ import annotations

import re
from typing import Any, List

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MAX_EMAIL_LENGTH = 254
MAX_PASSWORD_LENGTH = 128

MAX_STRING_LENGTH = 1000
MAX_KEY_LENGTH = 100

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f-\x9f]")
_SCRIPT_BLOCK = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)


def validate_login_fields(email: Any, password: Any) -> List[str]:
    """Return a list of problems with the submitted credentials; empty when well-formed."""
    errors: List[str] = []
    email = email if isinstance(email, str) else ""
    password = password if isinstance(password, str) else ""

    if not email:
        errors.append("Email is required")
    if not password:
        errors.append("Password is required")
    if email and not EMAIL_PATTERN.match(email):
        errors.append("Invalid email format")
    if len(email) > MAX_EMAIL_LENGTH:
        errors.append("Email is too long")
    if len(password) > MAX_PASSWORD_LENGTH:
        errors.append("Password is too long")
    return errors


def sanitize_value(value: Any) -> Any:
    """
    Strip control characters and inline <script> blocks from strings,
    trim them and cap their length. Dicts are cleaned recursively and
    overlong keys dropped. Anything else is returned unchanged.
    """
    if isinstance(value, str):
        cleaned = _CONTROL_CHARS.sub("", value.strip())
        cleaned = _SCRIPT_BLOCK.sub("", cleaned)
        return cleaned[:MAX_STRING_LENGTH]
    if isinstance(value, dict):
        return {
            key: sanitize_value(item)
            for key, item in value.items()
            if isinstance(key, str) and len(key) < MAX_KEY_LENGTH
        }
    return value


def normalize_email(email: str) -> str:
    return email.strip().lower()
