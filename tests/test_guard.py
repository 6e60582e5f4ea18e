"""
Tests for the login brute-force guard: admission decisions, escalating
lockouts, idle reset, success clearing, sweeping and statistics.

Run with: pytest tests/test_guard.py -v
"""
from __future__ import annotations

import logging
import threading
from datetime import timedelta

import pytest

from epefi.guard.engine import (
    Admit,
    AttemptRecord,
    Invalid,
    LoginGuard,
    Outcome,
    Reject,
    block_minutes_for,
)

CLIENT = "1.2.3.4"
EMAIL = "alumno@epefi.edu.ar"
PASSWORD = "Secreta#2024"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _check(guard: LoginGuard, client: str = CLIENT, email=EMAIL, password=PASSWORD):
    return guard.check_and_admit(client, email, password)


def _fail(guard: LoginGuard, times: int, client: str = CLIENT, clock=None, spacing=timedelta(seconds=20)):
    for _ in range(times):
        guard.record_outcome(client, Outcome.FAILURE)
        if clock is not None:
            clock.advance(seconds=spacing.total_seconds())


@pytest.fixture
def guard(clock) -> LoginGuard:
    return LoginGuard(clock=clock)


# ---------------------------------------------------------------------------
# Admission
# ---------------------------------------------------------------------------

def test_unknown_client_is_admitted(guard):
    assert _check(guard) == Admit()
    assert guard.get_record(CLIENT) is None


def test_below_threshold_is_admitted(guard, clock):
    _fail(guard, 4, clock=clock)
    assert isinstance(_check(guard), Admit)
    assert guard.get_record(CLIENT).failure_count == 4


def test_five_failures_lock_for_fifteen_minutes(guard, clock):
    _fail(guard, 5, clock=clock)  # 5 failures over 100 seconds
    decision = _check(guard)
    assert isinstance(decision, Reject)
    assert decision.retry_after_seconds == 900

    record = guard.get_record(CLIENT)
    assert record.blocked_until == clock.now() + timedelta(minutes=15)
    assert record.last_attempt_at == clock.now()
    assert record.blocked_until > clock.now()


def test_ten_failures_lock_for_thirty_minutes(guard, clock):
    _fail(guard, 10, clock=clock, spacing=timedelta(seconds=5))
    decision = _check(guard)
    assert isinstance(decision, Reject)
    assert decision.retry_after_seconds == 1800


def test_twenty_failures_lock_is_capped_at_one_hour(guard, clock):
    _fail(guard, 20, clock=clock, spacing=timedelta(seconds=2))
    decision = _check(guard)
    assert isinstance(decision, Reject)
    assert decision.retry_after_seconds == 3600


@pytest.mark.parametrize(
    "failures,minutes",
    [(5, 15), (6, 30), (10, 30), (11, 45), (15, 45), (16, 60), (40, 60)],
)
def test_block_minutes_escalation(failures, minutes):
    assert block_minutes_for(failures) == minutes


def test_locked_client_gets_remaining_time(guard, clock):
    _fail(guard, 5)
    assert isinstance(_check(guard), Reject)

    clock.advance(seconds=100, milliseconds=500)
    decision = _check(guard)
    assert isinstance(decision, Reject)
    # 799.5 seconds left, rounded up
    assert decision.retry_after_seconds == 800


def test_rejected_attempts_are_not_counted(guard, clock):
    _fail(guard, 5)
    _check(guard)
    clock.advance(minutes=1)
    _check(guard)
    _check(guard, email="", password="")
    assert guard.get_record(CLIENT).failure_count == 5


def test_expired_lockout_admits_again(guard, clock):
    _fail(guard, 5)
    assert isinstance(_check(guard), Reject)

    clock.advance(minutes=15, seconds=1)
    assert isinstance(_check(guard), Admit)
    # Idle window also elapsed, so the history is gone
    assert guard.get_record(CLIENT) is None


def test_lockout_checked_at_exact_expiry_relocks_with_retained_count(guard, clock):
    _fail(guard, 5)
    _check(guard)
    clock.advance(minutes=15)
    decision = _check(guard)
    assert isinstance(decision, Reject)
    assert decision.retry_after_seconds == 900
    assert "(5)" in decision.message


def test_relock_after_expiry_when_failures_continue(guard, clock):
    _fail(guard, 10)
    assert _check(guard).retry_after_seconds == 1800

    clock.advance(minutes=31)
    assert isinstance(_check(guard), Admit)
    _fail(guard, 5)
    assert _check(guard).retry_after_seconds == 900


# ---------------------------------------------------------------------------
# Success and idle reset
# ---------------------------------------------------------------------------

def test_success_clears_history(guard, clock):
    _fail(guard, 3, clock=clock)
    guard.record_outcome(CLIENT, Outcome.SUCCESS)
    assert guard.get_record(CLIENT) is None
    assert isinstance(_check(guard), Admit)


def test_success_clears_history_above_threshold(guard):
    _fail(guard, 7)
    guard.record_outcome(CLIENT, Outcome.SUCCESS)
    assert isinstance(_check(guard), Admit)


def test_success_without_history_is_noop(guard):
    guard.record_outcome(CLIENT, Outcome.SUCCESS)
    assert guard.get_record(CLIENT) is None


def test_idle_history_is_reset(guard, clock):
    _fail(guard, 1)
    clock.advance(minutes=16)
    assert isinstance(_check(guard), Admit)
    assert guard.get_record(CLIENT) is None


def test_idle_reset_precedes_escalation(guard, clock):
    _fail(guard, 6)
    clock.advance(minutes=15, seconds=1)
    assert isinstance(_check(guard), Admit)
    assert guard.get_record(CLIENT) is None


def test_history_kept_at_exactly_fifteen_minutes(guard, clock):
    _fail(guard, 2)
    clock.advance(minutes=15)
    assert isinstance(_check(guard), Admit)
    assert guard.get_record(CLIENT).failure_count == 2


def test_failure_updates_last_attempt(guard, clock):
    _fail(guard, 1)
    clock.advance(minutes=10)
    _fail(guard, 1)
    record = guard.get_record(CLIENT)
    assert record.failure_count == 2
    assert record.last_attempt_at == clock.now()


# ---------------------------------------------------------------------------
# Malformed attempts
# ---------------------------------------------------------------------------

def test_malformed_attempt_is_invalid_and_counted(guard, clock):
    decision = _check(guard, email="not-an-email", password="")
    assert isinstance(decision, Invalid)
    assert "Invalid email format" in decision.errors
    assert "Password is required" in decision.errors

    record = guard.get_record(CLIENT)
    assert record.failure_count == 1
    assert record.last_attempt_at == clock.now()


def test_malformed_attempts_lead_to_lockout(guard, clock):
    for _ in range(5):
        assert isinstance(_check(guard, email=None, password=None), Invalid)
        clock.advance(seconds=10)
    decision = _check(guard)
    assert isinstance(decision, Reject)
    assert decision.retry_after_seconds == 900


def test_lockout_takes_priority_over_validation(guard):
    _fail(guard, 5)
    _check(guard)
    assert isinstance(_check(guard, email="", password=""), Reject)


# ---------------------------------------------------------------------------
# Independence and robustness
# ---------------------------------------------------------------------------

def test_clients_are_independent(guard):
    _fail(guard, 5, client="10.0.0.1")
    assert isinstance(_check(guard, client="10.0.0.1"), Reject)
    assert isinstance(_check(guard, client="10.0.0.2"), Admit)
    assert guard.get_record("10.0.0.2") is None

    guard.record_outcome("10.0.0.2", Outcome.SUCCESS)
    assert guard.get_record("10.0.0.1").failure_count == 5


@pytest.mark.parametrize("client_id", ["", None, 42])
def test_record_outcome_rejects_bad_client_id(guard, client_id):
    with pytest.raises(ValueError):
        guard.record_outcome(client_id, Outcome.FAILURE)


def test_negative_count_is_reset(guard, clock, caplog):
    guard._records[CLIENT] = AttemptRecord(failure_count=-3, last_attempt_at=clock.now())
    with caplog.at_level(logging.CRITICAL, logger="epefi.guard"):
        assert isinstance(_check(guard), Admit)
    assert guard.get_record(CLIENT) is None
    assert any(r.levelno == logging.CRITICAL for r in caplog.records)


def test_get_record_returns_copy(guard):
    _fail(guard, 2)
    copy = guard.get_record(CLIENT)
    copy.failure_count = 99
    assert guard.get_record(CLIENT).failure_count == 2


def test_security_alert_logged_from_third_failure(guard, caplog):
    with caplog.at_level(logging.INFO, logger="epefi.guard"):
        _fail(guard, 3)
    alerts = [r for r in caplog.records if r.levelno == logging.WARNING]
    assert len(alerts) == 1
    assert "3 failed logins" in alerts[0].getMessage()


def test_concurrent_failures_are_all_counted(guard):
    def worker():
        for _ in range(50):
            guard.record_outcome(CLIENT, Outcome.FAILURE)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert guard.get_record(CLIENT).failure_count == 400


# ---------------------------------------------------------------------------
# Sweep and stats
# ---------------------------------------------------------------------------

def test_sweep_removes_only_stale_records(guard, clock):
    _fail(guard, 5, client="old")
    guard.check_and_admit("old", EMAIL, PASSWORD)  # locked, now long expired
    clock.advance(hours=23)
    _fail(guard, 1, client="fresh")
    fresh_before = guard.get_record("fresh")
    clock.advance(hours=2)

    assert guard.sweep_expired() == 1
    assert guard.get_record("old") is None
    assert guard.get_record("fresh") == fresh_before


def test_sweep_keeps_record_at_exactly_24_hours(guard, clock):
    _fail(guard, 1)
    clock.advance(hours=24)
    assert guard.sweep_expired() == 0
    assert guard.get_record(CLIENT) is not None


def test_sweep_is_idempotent(guard, clock):
    _fail(guard, 1)
    clock.advance(hours=25)
    assert guard.sweep_expired() == 1
    assert guard.sweep_expired() == 0


def test_stats_snapshot(guard, clock):
    _fail(guard, 1, client="stale")
    clock.advance(hours=2)
    _fail(guard, 5, client="locked")
    guard.check_and_admit("locked", EMAIL, PASSWORD)
    _fail(guard, 2, client="recent")

    stats = guard.get_stats()
    assert stats.total_tracked == 3
    assert stats.blocked_count == 1
    assert stats.recent_count == 2


def test_stats_do_not_mutate(guard, clock):
    _fail(guard, 1)
    clock.advance(hours=30)
    guard.get_stats()
    assert guard.get_record(CLIENT) is not None
