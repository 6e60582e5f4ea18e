"""
pytest configuration – point the service at a throwaway database, seed
test accounts, and give every test a fresh login guard so attempt
history never leaks between tests.
"""
import os

os.environ.setdefault("EPEFI_DATABASE_URL", "sqlite:///./epefi_test.db")
os.environ["EPEFI_ENVIRONMENT"] = "development"
os.environ["EPEFI_RATE_LIMIT_ENABLED"] = "false"
os.environ["EPEFI_LOG_FORMAT"] = "text"
os.environ["EPEFI_VERIFIER_BACKEND"] = "local"
os.environ["EPEFI_ADMIN_EMAIL"] = "admin@epefi.edu.ar"
os.environ["EPEFI_ADMIN_PASSWORD"] = "Admin#Pass2024"

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select

from epefi.auth.core import hash_password
from epefi.database import Base, db_session, engine
from epefi.guard.engine import LoginGuard
from epefi.main import app
from epefi.models import User

ADMIN_EMAIL = "admin@epefi.edu.ar"
ADMIN_PASSWORD = "Admin#Pass2024"
STUDENT_EMAIL = "alumno@epefi.edu.ar"
STUDENT_PASSWORD = "Secreta#2024"
INACTIVE_EMAIL = "inactivo@epefi.edu.ar"
INACTIVE_PASSWORD = "Secreta#2024"


class FakeClock:
    """Manually advanced clock for driving the guard through time."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


def _ensure_user(email: str, password: str, nombre: str, apellido: str, activo: bool) -> None:
    with db_session() as session:
        existing = session.execute(select(User).where(User.email == email)).scalar_one_or_none()
        if existing:
            return
        session.add(
            User(
                email=email,
                password_hash=hash_password(password),
                nombre=nombre,
                apellido=apellido,
                dni="30123456",
                is_admin=False,
                is_student=True,
                activo=activo,
            )
        )


@pytest.fixture(autouse=True, scope="session")
def create_tables():
    Base.metadata.create_all(bind=engine)
    _ensure_user(STUDENT_EMAIL, STUDENT_PASSWORD, "Lucía", "Fernández", activo=True)
    _ensure_user(INACTIVE_EMAIL, INACTIVE_PASSWORD, "Tomás", "Gómez", activo=False)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def login_guard() -> LoginGuard:
    """Install a fresh guard on the app for each test."""
    guard = LoginGuard()
    app.state.login_guard = guard
    yield guard
    app.dependency_overrides.clear()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def _login_token(email: str, password: str) -> str:
    client = TestClient(app)
    resp = client.post("/api/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, f"Login failed: {resp.text}"
    return resp.json()["access_token"]


@pytest.fixture
def admin_token() -> str:
    return _login_token(ADMIN_EMAIL, ADMIN_PASSWORD)


@pytest.fixture
def student_token() -> str:
    return _login_token(STUDENT_EMAIL, STUDENT_PASSWORD)
