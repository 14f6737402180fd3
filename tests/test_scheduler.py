"""Unit tests for the PeriodicScheduler and its calendar helpers."""

import asyncio
from datetime import datetime

import pytest

from paygate.scheduling.scheduler import (
    PeriodicScheduler,
    seconds_until_daily,
    seconds_until_monthly,
)


# ---------------------------------------------------------------------------
# Calendar helpers
# ---------------------------------------------------------------------------

def test_daily_later_today():
    now = datetime(2026, 7, 1, 1, 30)
    assert seconds_until_daily(now, 2) == 30 * 60


def test_daily_rolls_to_tomorrow_when_passed():
    now = datetime(2026, 7, 1, 2, 0)
    assert seconds_until_daily(now, 2) == 24 * 3600


def test_daily_midnight():
    now = datetime(2026, 7, 1, 23, 59, 30)
    assert seconds_until_daily(now, 0) == 30


def test_monthly_rolls_over_year_end():
    now = datetime(2026, 12, 15, 10, 0)
    expected = (datetime(2027, 1, 1, 0, 0) - now).total_seconds()
    assert seconds_until_monthly(now, 1) == expected


def test_monthly_same_month_when_ahead():
    now = datetime(2026, 2, 10, 0, 0)
    assert seconds_until_monthly(now, 20) == 10 * 24 * 3600


def test_monthly_rejects_days_missing_from_short_months():
    with pytest.raises(ValueError):
        PeriodicScheduler().monthly("reset", 31, lambda: None)


# ---------------------------------------------------------------------------
# Registration and execution
# ---------------------------------------------------------------------------

def test_duplicate_job_name_rejected():
    scheduler = PeriodicScheduler()
    scheduler.every("sweep", 30, lambda: None)
    with pytest.raises(ValueError):
        scheduler.every("sweep", 60, lambda: None)


def test_non_positive_interval_rejected():
    with pytest.raises(ValueError):
        PeriodicScheduler().every("sweep", 0, lambda: None)


async def test_run_now_handles_sync_and_async_jobs():
    scheduler = PeriodicScheduler()

    async def async_job():
        return "async"

    scheduler.every("sync", 60, lambda: "sync")
    scheduler.every("async", 60, async_job)

    assert await scheduler.run_now("sync") == "sync"
    assert await scheduler.run_now("async") == "async"
    assert scheduler.jobs["sync"].runs == 1
    assert scheduler.jobs["async"].last_run_at is not None


async def test_run_now_propagates_and_counts_failure():
    scheduler = PeriodicScheduler()

    def boom():
        raise RuntimeError("disk full")

    scheduler.every("boom", 60, boom)

    with pytest.raises(RuntimeError):
        await scheduler.run_now("boom")

    job = scheduler.jobs["boom"]
    assert job.failures == 1
    assert job.last_error == "RuntimeError: disk full"


async def test_loop_survives_a_failing_job():
    scheduler = PeriodicScheduler()
    calls = {"boom": 0, "ok": 0}

    def boom():
        calls["boom"] += 1
        raise RuntimeError("always fails")

    def ok():
        calls["ok"] += 1

    scheduler.every("boom", 0.01, boom)
    scheduler.every("ok", 0.01, ok)

    scheduler.start()
    assert scheduler.running
    await asyncio.sleep(0.1)
    await scheduler.stop()

    assert not scheduler.running
    assert calls["boom"] >= 2
    assert calls["ok"] >= 2
    assert scheduler.jobs["boom"].failures == calls["boom"]


async def test_start_twice_does_not_duplicate_tasks():
    scheduler = PeriodicScheduler()
    calls = []
    scheduler.every("tick", 0.01, lambda: calls.append(1))

    scheduler.start()
    scheduler.start()
    await asyncio.sleep(0.055)
    await scheduler.stop()

    # one loop ticking every 10 ms gives at most ~5 runs
    assert 1 <= len(calls) <= 6
