import logging
from datetime import datetime, timezone

from paygate.models.processor import Processor
from paygate.processors.registry import ProcessorRegistry

logger = logging.getLogger(__name__)

MIN_PRIORITY = 1
MAX_PRIORITY = 100


def priority_adjustment(processor: Processor) -> int:
    """Signed step applied to the static priority (negative = more preferred)."""
    rate = processor.success_rate
    latency = processor.avg_latency_ms
    if rate > 98.0 and latency < 1000:
        return -5
    if rate > 95.0 and latency < 2000:
        return -1
    if rate < 90.0 or latency > 3000:
        return 5
    return 0


class Rebalancer:
    """
    Slow trend adjustment of static priority, run hourly.

    Layered under the per-request scorer: priority is only one of its four
    terms, so a rebalance nudges selection rather than dictating it.
    """

    def __init__(self, registry: ProcessorRegistry):
        self._registry = registry

    def rebalance(self) -> dict[str, int]:
        changes: dict[str, int] = {}
        for processor in self._registry.all():
            try:
                step = priority_adjustment(processor)
                if step == 0:
                    continue
                old = processor.priority
                new = min(MAX_PRIORITY, max(MIN_PRIORITY, old + step))
                if new == old:
                    continue
                processor.priority = new
                processor.updated_at = datetime.now(timezone.utc)
                changes[processor.code] = new
                logger.info(
                    f"[{processor.code}] priority {old} -> {new} "
                    f"(success_rate={processor.success_rate:.1f}% latency={processor.avg_latency_ms:.0f}ms)"
                )
            except Exception:
                logger.error(f"[{processor.code}] Rebalance failed", exc_info=True)
        return changes
