import asyncio
import logging
import math
from datetime import datetime, timedelta, timezone

from paygate.config import Settings
from paygate.models.processor import HealthState, Processor
from paygate.processors.registry import ProcessorRegistry

logger = logging.getLogger(__name__)


def is_routable(processor: Processor) -> bool:
    """
    Health half of routing eligibility.

    UP and DEGRADED route. DOWN never does. UNKNOWN routes only while the
    processor has never been checked; an UNKNOWN left by a failed check is
    treated like DOWN.
    """
    if processor.health_state in (HealthState.UP, HealthState.DEGRADED):
        return True
    if processor.health_state == HealthState.UNKNOWN:
        return processor.last_health_check is None
    return False


class HealthMonitor:
    """
    Periodic stats-based health evaluation.

    healthy <=> success_rate >= HEALTH_MIN_SUCCESS_RATE
                and avg_latency_ms <= HEALTH_MAX_LATENCY_MS
                and (never checked or last check within HEALTH_STALE_AFTER_SECONDS)

    The verdict is applied immediately on every run; there is no dampening,
    so a processor oscillating around a threshold flips state each cycle.
    """

    def __init__(self, registry: ProcessorRegistry, settings: Settings):
        self._registry = registry
        self._settings = settings

    @staticmethod
    def _read_stats(processor: Processor) -> tuple[float, float]:
        rate = processor.success_rate
        latency = processor.avg_latency_ms
        if rate is None or latency is None or math.isnan(rate) or math.isnan(latency):
            raise ValueError(f"unreadable stats (success_rate={rate}, latency={latency})")
        return rate, latency

    def evaluate(self, processor: Processor, now: datetime) -> bool:
        rate, latency = self._read_stats(processor)
        stale_after = timedelta(seconds=self._settings.HEALTH_STALE_AFTER_SECONDS)
        fresh = processor.last_health_check is None or now - processor.last_health_check <= stale_after
        return (
            rate >= self._settings.HEALTH_MIN_SUCCESS_RATE
            and latency <= self._settings.HEALTH_MAX_LATENCY_MS
            and fresh
        )

    async def _probe(self, processor: Processor) -> bool:
        adapter = self._registry.adapter(processor.code)
        try:
            return await asyncio.wait_for(
                adapter.health_check(processor), timeout=processor.connect_timeout_seconds
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"[{processor.code}] Live probe got no answer within {processor.connect_timeout_seconds}s"
            )
            return False

    async def check_all(self, now: datetime | None = None) -> dict[str, HealthState]:
        now = now or datetime.now(timezone.utc)
        results: dict[str, HealthState] = {}

        for processor in self._registry.all():
            try:
                healthy = self.evaluate(processor, now)
                if healthy and self._settings.HEALTH_LIVE_PROBE:
                    healthy = await self._probe(processor)
                state = HealthState.UP if healthy else HealthState.DOWN
                error = None
            except Exception as exc:
                logger.error(
                    f"[{processor.code}] Health evaluation failed: {exc}",
                    exc_info=True,
                )
                state = HealthState.UNKNOWN
                error = str(exc)

            previous = processor.health_state
            processor.health_state = state
            processor.last_health_error = error
            processor.last_health_check = now
            processor.updated_at = now
            results[processor.code] = state

            if previous != state:
                logger.warning(
                    f"[{processor.code}] health {previous.value} -> {state.value} "
                    f"(success_rate={processor.success_rate:.1f}% "
                    f"latency={processor.avg_latency_ms:.0f}ms)"
                )

        logger.debug(f"Health check complete: {{{', '.join(f'{k}={v.value}' for k, v in results.items())}}}")
        return results
