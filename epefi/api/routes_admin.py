from __future__ import annotations

from fastapi import APIRouter, Depends

from ..auth.dependencies import get_login_guard, require_admin
from ..auth.directory import UserStatus
from ..guard.engine import LoginGuard
from ..schemas import LoginStatsRead

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.get("/login-stats", response_model=LoginStatsRead)
def login_stats(
    guard: LoginGuard = Depends(get_login_guard),
    _user: UserStatus = Depends(require_admin),
) -> LoginStatsRead:
    """Return counts of tracked, locked-out and recently active login clients."""
    stats = guard.get_stats()
    return LoginStatsRead(
        total_tracked=stats.total_tracked,
        blocked_count=stats.blocked_count,
        recent_count=stats.recent_count,
    )
