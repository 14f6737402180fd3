"""
Composite processor score, 0–100.

    success rate  40   (success_rate / 100) * 40
    latency       30   linear penalty, 0 at 5000 ms
    priority      20   priority 1 scores highest
    headroom      10   share of the daily ceiling still unused
"""

from paygate.models.processor import Processor

SUCCESS_WEIGHT = 40.0
LATENCY_WEIGHT = 30.0
PRIORITY_WEIGHT = 20.0
HEADROOM_WEIGHT = 10.0

# points lost per second of average latency
LATENCY_PENALTY_PER_SECOND = 6.0


def success_term(processor: Processor) -> float:
    return (processor.success_rate / 100.0) * SUCCESS_WEIGHT


def latency_term(processor: Processor) -> float:
    return max(0.0, LATENCY_WEIGHT - (processor.avg_latency_ms / 1000.0) * LATENCY_PENALTY_PER_SECOND)


def priority_term(processor: Processor) -> float:
    return ((100 - processor.priority) / 100.0) * PRIORITY_WEIGHT


def headroom_term(processor: Processor) -> float:
    used = min(100.0, max(0.0, processor.percent_of_ceiling_used))
    return ((100.0 - used) / 100.0) * HEADROOM_WEIGHT


def score(processor: Processor) -> float:
    return (
        success_term(processor)
        + latency_term(processor)
        + priority_term(processor)
        + headroom_term(processor)
    )


def ranking_key(processor: Processor) -> tuple[float, int, str]:
    """Sort key: highest score first, then lowest priority value, then code."""
    return (-score(processor), processor.priority, processor.code)
