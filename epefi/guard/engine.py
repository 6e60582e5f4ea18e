"""
guard/engine.py: Login brute-force defense
============================================
Tracks failed login attempts per client identity (normally the remote
address) and decides, before credentials are checked, whether a login
attempt may proceed.

Policy:
  - Failure history is forgotten after 15 minutes without attempts.
  - Once 5 or more failures are on record, the next attempt locks the
    client out for min(15 * ceil(failures / 5), 60) minutes.
  - While locked, attempts are rejected without being counted.
  - A successful login clears the history.
  - Records untouched for 24 hours are swept.

Lockout computation is lazy: record_outcome() only counts, and the
lock is applied by the next check_and_admit() call that finds the
threshold crossed.

All state lives in memory and is lost on restart. A single lock guards
the map; critical sections are pure arithmetic with no I/O.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from threading import Lock
from typing import Dict, List, Optional, Protocol, Union

from .validation import validate_login_fields

logger = logging.getLogger("epefi.guard")

ATTEMPT_WINDOW = timedelta(minutes=15)
FAILURE_THRESHOLD = 5
BLOCK_STEP_MINUTES = 15
MAX_BLOCK_MINUTES = 60
RECORD_RETENTION = timedelta(hours=24)
RECENT_HORIZON = timedelta(hours=1)
SWEEP_INTERVAL = timedelta(minutes=60)

# Failure count at which each recorded failure is logged as a security alert
ALERT_THRESHOLD = 3


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------

class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Records, decisions, outcomes
# ---------------------------------------------------------------------------

@dataclass
class AttemptRecord:
    """Failure history for one client identity."""
    failure_count: int
    last_attempt_at: datetime
    blocked_until: Optional[datetime] = None

    def is_locked(self, now: datetime) -> bool:
        return self.blocked_until is not None and now < self.blocked_until


@dataclass(frozen=True)
class Admit:
    """The attempt may proceed to credential verification."""


@dataclass(frozen=True)
class Reject:
    """The client is locked out."""
    retry_after_seconds: int
    message: str


@dataclass(frozen=True)
class Invalid:
    """The attempt is malformed; it was counted as a failure."""
    errors: List[str]


Decision = Union[Admit, Reject, Invalid]


class Outcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class LoginStats:
    total_tracked: int
    blocked_count: int
    recent_count: int


def block_minutes_for(failure_count: int) -> int:
    """Lockout length for a given failure count: 15, 30, 45, then 60."""
    return min(BLOCK_STEP_MINUTES * math.ceil(failure_count / FAILURE_THRESHOLD), MAX_BLOCK_MINUTES)


# ---------------------------------------------------------------------------
# Guard
# ---------------------------------------------------------------------------

class LoginGuard:
    """
    Owns the attempt map. Instantiate once per application and hand it
    to request handlers; tests build their own with a fake clock.
    """

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self._clock: Clock = clock or SystemClock()
        self._records: Dict[str, AttemptRecord] = {}
        self._lock = Lock()

    def _now(self, now: Optional[datetime]) -> datetime:
        return now if now is not None else self._clock.now()

    def check_and_admit(
        self,
        client_id: str,
        email: object,
        password: object,
        now: Optional[datetime] = None,
    ) -> Decision:
        """
        Gate a login attempt before credential verification.

        Lockout state is evaluated first, then the shape of the submitted
        email and password. A malformed attempt counts as a failure.
        """
        now = self._now(now)
        with self._lock:
            record = self._records.get(client_id)
            if record is not None:
                if record.failure_count < 0:
                    logger.critical(
                        "Inconsistent attempt record for %s (failure_count=%d); resetting",
                        client_id, record.failure_count,
                    )
                    del self._records[client_id]
                elif record.is_locked(now):
                    remaining = math.ceil((record.blocked_until - now).total_seconds())
                    minutes_left = math.ceil(remaining / 60)
                    return Reject(
                        retry_after_seconds=remaining,
                        message=f"Too many failed attempts. Try again in {minutes_left} minutes.",
                    )
                elif now - record.last_attempt_at > ATTEMPT_WINDOW:
                    del self._records[client_id]
                elif record.failure_count >= FAILURE_THRESHOLD:
                    # Also reached the instant a lock expires: the count is kept, so
                    # the client is locked again for the same or a longer period.
                    minutes = block_minutes_for(record.failure_count)
                    blocked_until = now + timedelta(minutes=minutes)
                    if record.blocked_until is not None:
                        blocked_until = max(blocked_until, record.blocked_until)
                    record.blocked_until = blocked_until
                    record.last_attempt_at = now
                    logger.warning(
                        "Client %s locked out for %d minutes after %d failed logins",
                        client_id, minutes, record.failure_count,
                    )
                    return Reject(
                        retry_after_seconds=minutes * 60,
                        message=(
                            f"Too many failed attempts ({record.failure_count}). "
                            f"Locked for {minutes} minutes."
                        ),
                    )

            errors = validate_login_fields(email, password)
            if errors:
                self._count_failure(client_id, now)
                return Invalid(errors=errors)

        return Admit()

    def record_outcome(self, client_id: str, outcome: Outcome, now: Optional[datetime] = None) -> None:
        """Record the verifier's verdict for an admitted attempt."""
        if not isinstance(client_id, str) or not client_id:
            raise ValueError("client_id must be a non-empty string")
        now = self._now(now)
        with self._lock:
            if outcome is Outcome.SUCCESS:
                if self._records.pop(client_id, None) is not None:
                    logger.info("Successful login from %s; attempt history cleared", client_id)
                return
            count = self._count_failure(client_id, now)
        logger.info("Failed login from %s, attempts: %d", client_id, count)
        if count >= ALERT_THRESHOLD:
            logger.warning("Security alert: %d failed logins from %s", count, client_id)

    def _count_failure(self, client_id: str, now: datetime) -> int:
        # Caller holds self._lock
        record = self._records.get(client_id)
        if record is None:
            record = AttemptRecord(failure_count=0, last_attempt_at=now)
            self._records[client_id] = record
        record.failure_count += 1
        record.last_attempt_at = now
        return record.failure_count

    def sweep_expired(self, now: Optional[datetime] = None) -> int:
        """Drop every record idle for more than 24 hours. Returns how many were removed."""
        now = self._now(now)
        with self._lock:
            stale = [
                client_id
                for client_id, record in self._records.items()
                if now - record.last_attempt_at > RECORD_RETENTION
            ]
            for client_id in stale:
                del self._records[client_id]
        return len(stale)

    def get_stats(self, now: Optional[datetime] = None) -> LoginStats:
        now = self._now(now)
        with self._lock:
            records = self._records.values()
            return LoginStats(
                total_tracked=len(records),
                blocked_count=sum(1 for r in records if r.is_locked(now)),
                recent_count=sum(1 for r in records if now - r.last_attempt_at < RECENT_HORIZON),
            )

    def get_record(self, client_id: str) -> Optional[AttemptRecord]:
        """Return a copy of the record for client_id, if any."""
        with self._lock:
            record = self._records.get(client_id)
            return replace(record) if record is not None else None
