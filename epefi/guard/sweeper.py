"""
guard/sweeper.py: Periodic cleanup of stale attempt records
=============================================================
Runs as an asyncio task for the lifetime of the application and is
cancelled from the FastAPI lifespan on shutdown.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging

from .engine import SWEEP_INTERVAL, LoginGuard

logger = logging.getLogger("epefi.sweeper")


async def run_periodic_sweep(guard: LoginGuard, interval_seconds: float) -> None:
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            removed = guard.sweep_expired()
        except Exception:
            logger.exception("Login attempt sweep failed")
            continue
        if removed:
            logger.info("Swept %d stale login attempt records", removed)


def start_sweeper(guard: LoginGuard, interval_seconds: float = SWEEP_INTERVAL.total_seconds()) -> asyncio.Task:
    """Schedule the sweep loop on the running event loop."""
    return asyncio.create_task(run_periodic_sweep(guard, interval_seconds), name="login-attempt-sweeper")


async def stop_sweeper(task: asyncio.Task) -> None:
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task
