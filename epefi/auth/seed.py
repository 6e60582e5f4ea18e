from __future__ import annotations

import logging
import os

from sqlalchemy import select

from .core import hash_password
from ..config import settings
from ..database import db_session
from ..models import User

logger = logging.getLogger("epefi.seed")

_DEFAULT_PASSWORD = "changeme"


def seed_admin() -> None:
    """
    Create a default admin account on first startup if no users exist.
    Credentials are read from environment variables so they can be
    overridden before deployment.

    Defaults (for local dev only, change before production):
      EPEFI_ADMIN_EMAIL    = admin@epefi.edu.ar
      EPEFI_ADMIN_PASSWORD = changeme
    """
    email    = os.getenv("EPEFI_ADMIN_EMAIL",    "admin@epefi.edu.ar").strip().lower()
    password = os.getenv("EPEFI_ADMIN_PASSWORD", _DEFAULT_PASSWORD)

    with db_session() as session:
        existing = session.execute(select(User).limit(1)).scalar_one_or_none()
        if existing:
            return  # Users already seeded, don't overwrite

        if password == _DEFAULT_PASSWORD:
            logger.warning(
                "Seeding admin with the default password. "
                "Set EPEFI_ADMIN_PASSWORD before deploying to production."
            )
            if settings.environment != "development":
                logger.error(
                    "Refusing to seed default password in non-development environment (%s).",
                    settings.environment,
                )
                return

        session.add(
            User(
                email=email,
                password_hash=hash_password(password),
                nombre="Admin",
                apellido="EPEFI",
                is_admin=True,
                is_student=False,
                activo=True,
                email_verified=True,
            )
        )
        logger.info("Default admin created: %s", email)
