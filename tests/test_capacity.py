"""Unit tests for the CapacityLedger: rolling stats, daily and monthly volume."""

import threading

import pytest

from paygate.engine.router import RoutingEngine
from paygate.config import Settings
from paygate.models.merchant import Merchant
from paygate.models.processor import HealthState, Processor
from paygate.processors.mock_adapter import MockAdapter
from paygate.processors.registry import ProcessorRegistry
from paygate.services.capacity import CapacityLedger
from paygate.services.stats_service import StatsService
from paygate.store.memory import MerchantStore


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _ledger(*processors: Processor, merchants: list[Merchant] | None = None):
    registry = ProcessorRegistry(list(processors), [MockAdapter(p.code) for p in processors])
    merchant_store = MerchantStore(merchants or [])
    return CapacityLedger(registry, merchant_store), registry, merchant_store


def _processor(code: str = "CIELO", **overrides) -> Processor:
    return Processor(code=code, name=code.title(), health_state=HealthState.UP, **overrides)


# ---------------------------------------------------------------------------
# Rolling stats
# ---------------------------------------------------------------------------

def test_success_rate_is_exact_ratio():
    p = _processor()
    ledger, _, _ = _ledger(p)

    outcomes = [True, True, False, True, False, True, True]
    for ok in outcomes:
        ledger.record_outcome(p, ok, 100, 50.0)

    assert p.transaction_count == 7
    assert p.success_count == 5
    assert p.failure_count == 2
    assert p.success_rate == pytest.approx(5 / 7 * 100)


def test_first_latency_sample_replaces_seed():
    p = _processor()
    ledger, _, _ = _ledger(p)

    ledger.record_outcome(p, True, 100, 400.0)
    assert p.avg_latency_ms == 400.0

    ledger.record_outcome(p, True, 100, 200.0)
    assert p.avg_latency_ms == 300.0

    ledger.record_outcome(p, True, 100, 100.0)
    assert p.avg_latency_ms == 200.0


def test_volume_counts_every_outcome():
    p = _processor()
    ledger, _, _ = _ledger(p)

    ledger.record_outcome(p, True, 1_000, 10.0)
    ledger.record_outcome(p, False, 2_500, 10.0)

    assert p.volume_today == 3_500


def test_reserve_checks_ceiling_without_incrementing():
    p = _processor(daily_ceiling=10_000, volume_today=9_000)
    ledger, _, _ = _ledger(p)

    assert ledger.reserve(p, 1_000) is True
    assert ledger.reserve(p, 1_001) is False
    assert p.volume_today == 9_000


def test_concurrent_record_outcome_loses_no_update():
    """200 threads each record 10 outcomes; every count must land."""
    p = _processor()
    ledger, _, _ = _ledger(p)

    def worker(index: int) -> None:
        for i in range(10):
            ledger.record_outcome(p, (index + i) % 4 != 0, 1, 25.0)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(200)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert p.transaction_count == 2_000
    assert p.success_count + p.failure_count == 2_000
    assert p.failure_count == 500
    assert p.volume_today == 2_000
    assert p.success_rate == pytest.approx(75.0)


# ---------------------------------------------------------------------------
# Resets
# ---------------------------------------------------------------------------

def test_daily_reset_makes_full_processor_eligible_again():
    p = _processor(daily_ceiling=50_000, volume_today=50_000)
    ledger, registry, _ = _ledger(p)
    router = RoutingEngine(registry, ledger, StatsService(), Settings())
    merchant = Merchant(id="m-1", name="M")

    assert router.candidates(50_000) == []

    assert ledger.reset_daily() == 1

    assert p.volume_today == 0
    assert router.select_processor(merchant, 50_000).code == p.code


def test_daily_reset_keeps_rolling_stats():
    p = _processor()
    ledger, _, _ = _ledger(p)
    ledger.record_outcome(p, False, 100, 10.0)

    ledger.reset_daily()

    assert p.transaction_count == 1
    assert p.success_rate == 0.0


def test_merchant_monthly_ceiling_and_reset():
    merchant = Merchant(id="m-1", name="M", monthly_ceiling=10_000)
    ledger, _, _ = _ledger(_processor(), merchants=[merchant])

    assert CapacityLedger.reserve_merchant(merchant, 10_000) is True
    ledger.record_merchant_volume(merchant, 7_000)
    assert CapacityLedger.reserve_merchant(merchant, 3_000) is True
    assert CapacityLedger.reserve_merchant(merchant, 3_001) is False

    assert ledger.reset_monthly() == 1
    assert merchant.volume_this_month == 0
    assert CapacityLedger.reserve_merchant(merchant, 10_000) is True
