from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional

from ..database import db_session
from ..models import LoginHistory, User


@dataclass(frozen=True)
class UserStatus:
    """Account state and profile the login flow needs after verification."""
    uid: str
    email: str
    nombre: str
    apellido: str
    dni: Optional[str]
    active: bool
    role: Dict[str, bool]

    @property
    def is_admin(self) -> bool:
        return bool(self.role.get("admin"))


def _to_status(user: User) -> UserStatus:
    return UserStatus(
        uid=user.uid,
        email=user.email,
        nombre=user.nombre,
        apellido=user.apellido,
        dni=user.dni,
        active=bool(user.activo),
        role={"admin": bool(user.is_admin), "student": bool(user.is_student)},
    )


class UserDirectory:
    """Reads account status and writes access bookkeeping in the users store."""

    def get_status(self, uid: str) -> Optional[UserStatus]:
        with db_session() as session:
            user = session.get(User, uid)
            return _to_status(user) if user is not None else None

    def touch_last_access(self, uid: str, now: Optional[datetime] = None) -> None:
        with db_session() as session:
            user = session.get(User, uid)
            if user is not None:
                user.last_access_at = now or datetime.now(timezone.utc)

    def record_login(
        self,
        uid: str,
        email: str,
        ip_address: Optional[str],
        user_agent: Optional[str],
    ) -> None:
        with db_session() as session:
            session.add(
                LoginHistory(
                    uid=uid,
                    email=email,
                    ip_address=ip_address,
                    user_agent=(user_agent or "")[:512],
                )
            )
