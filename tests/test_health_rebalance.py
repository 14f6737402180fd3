"""Unit tests for the HealthMonitor and the priority Rebalancer."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from paygate.config import Settings
from paygate.engine.router import RoutingEngine
from paygate.models.merchant import Merchant
from paygate.models.processor import HealthState, Processor
from paygate.processors.mock_adapter import MockAdapter
from paygate.processors.registry import ProcessorRegistry
from paygate.services.capacity import CapacityLedger
from paygate.services.health_monitor import HealthMonitor, is_routable
from paygate.services.rebalancer import Rebalancer, priority_adjustment
from paygate.services.stats_service import StatsService
from paygate.store.memory import MerchantStore

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _processor(code: str, **overrides) -> Processor:
    fields = {"code": code, "name": code.title(), "success_rate": 99.0, "avg_latency_ms": 200.0}
    fields.update(overrides)
    return Processor(**fields)


def _registry(*processors: Processor, adapters: list[MockAdapter] | None = None) -> ProcessorRegistry:
    return ProcessorRegistry(list(processors), adapters or [MockAdapter(p.code) for p in processors])


# ---------------------------------------------------------------------------
# Health monitor
# ---------------------------------------------------------------------------

async def test_low_success_rate_goes_down_and_is_excluded():
    """C at 85% turns DOWN and the next selection skips it."""
    c = _processor("C", priority=1, success_rate=85.0)
    d = _processor("D", priority=90)
    registry = _registry(c, d)
    monitor = HealthMonitor(registry, Settings())
    router = RoutingEngine(registry, CapacityLedger(registry, MerchantStore()), StatsService(), Settings())
    merchant = Merchant(id="m-1", name="M")

    assert router.select_processor(merchant, 100).code == "C"

    results = await monitor.check_all(NOW)

    assert results == {"C": HealthState.DOWN, "D": HealthState.UP}
    assert c.last_health_check == NOW
    assert router.select_processor(merchant, 100).code == "D"


async def test_high_latency_goes_down():
    p = _processor("SLOW", avg_latency_ms=5_001.0)
    monitor = HealthMonitor(_registry(p), Settings())

    await monitor.check_all(NOW)

    assert p.health_state == HealthState.DOWN


async def test_thresholds_are_inclusive():
    p = _processor("EDGE", success_rate=90.0, avg_latency_ms=5_000.0)
    monitor = HealthMonitor(_registry(p), Settings())

    await monitor.check_all(NOW)

    assert p.health_state == HealthState.UP


async def test_recovery_flips_back_to_up():
    p = _processor("R", success_rate=50.0)
    monitor = HealthMonitor(_registry(p), Settings())

    await monitor.check_all(NOW)
    assert p.health_state == HealthState.DOWN

    p.success_rate = 97.0
    await monitor.check_all(NOW + timedelta(seconds=60))
    assert p.health_state == HealthState.UP


async def test_stale_last_check_is_unhealthy():
    p = _processor("STALE", last_health_check=NOW - timedelta(seconds=301))
    monitor = HealthMonitor(_registry(p), Settings())

    await monitor.check_all(NOW)

    assert p.health_state == HealthState.DOWN


async def test_unreadable_stats_set_unknown_and_continue():
    broken = _processor("BROKEN", priority=1)
    healthy = _processor("OK")
    monitor = HealthMonitor(_registry(broken, healthy), Settings())
    broken.success_rate = float("nan")

    results = await monitor.check_all(NOW)

    assert results["BROKEN"] == HealthState.UNKNOWN
    assert "unreadable stats" in broken.last_health_error
    assert results["OK"] == HealthState.UP
    # an UNKNOWN left by a failed check does not route
    assert is_routable(broken) is False


async def test_live_probe_can_veto_healthy_stats():
    p = _processor("PROBE")
    registry = _registry(p, adapters=[MockAdapter("PROBE", healthy=False)])
    monitor = HealthMonitor(registry, Settings(HEALTH_LIVE_PROBE=True))

    await monitor.check_all(NOW)

    assert p.health_state == HealthState.DOWN


async def test_live_probe_disabled_by_default():
    p = _processor("PROBE")
    registry = _registry(p, adapters=[MockAdapter("PROBE", healthy=False)])
    monitor = HealthMonitor(registry, Settings())

    await monitor.check_all(NOW)

    assert p.health_state == HealthState.UP


async def test_live_probe_is_bounded_by_connect_timeout():
    class SlowProbeAdapter(MockAdapter):
        async def health_check(self, processor):
            await asyncio.sleep(5)
            return True

    p = _processor("SLOW", connect_timeout_ms=20)
    registry = _registry(p, adapters=[SlowProbeAdapter("SLOW")])
    monitor = HealthMonitor(registry, Settings(HEALTH_LIVE_PROBE=True))

    results = await monitor.check_all(NOW)

    assert results["SLOW"] == HealthState.DOWN
    assert p.last_health_error is None


# ---------------------------------------------------------------------------
# Rebalancer
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "success_rate, latency, expected",
    [
        (99.0, 500.0, -5),
        (98.5, 1_500.0, -1),   # fails the latency bar of the strongest band
        (96.0, 1_999.0, -1),
        (95.0, 500.0, 0),      # 95 is not above 95
        (92.0, 2_500.0, 0),
        (89.9, 100.0, 5),
        (99.0, 3_001.0, 5),
    ],
)
def test_priority_adjustment_bands(success_rate, latency, expected):
    p = _processor("X", success_rate=success_rate, avg_latency_ms=latency)
    assert priority_adjustment(p) == expected


def test_rebalance_applies_and_clamps():
    star = _processor("STAR", priority=3, success_rate=99.5, avg_latency_ms=100.0)
    weak = _processor("WEAK", priority=98, success_rate=70.0)
    steady = _processor("STEADY", priority=40, success_rate=93.0, avg_latency_ms=2_500.0)
    rebalancer = Rebalancer(_registry(star, weak, steady))

    changes = rebalancer.rebalance()

    assert changes == {"STAR": 1, "WEAK": 100}
    assert star.priority == 1
    assert weak.priority == 100
    assert steady.priority == 40


def test_rebalance_at_bounds_reports_no_change():
    star = _processor("STAR", priority=1, success_rate=99.5, avg_latency_ms=100.0)
    rebalancer = Rebalancer(_registry(star))

    assert rebalancer.rebalance() == {}
    assert star.priority == 1
