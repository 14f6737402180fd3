import time
import threading
from collections import defaultdict, deque

from paygate.models.processor import PaymentResult, PaymentResultStatus, RoutingDecision
from paygate.models.stats import ProcessorStats, StatsResponse, WebhookStats
from paygate.models.transaction import TransactionStatus

_RECENT_DECISIONS = 50


class StatsService:
    """
    In-memory accumulator for routing and delivery statistics.
    All mutations are protected by a Lock for thread-safety.

    These counters are observability only; routing reads the Processor
    records kept by the registry, never this service.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._started_at = time.monotonic()

        self._total_transactions = 0
        self._total_authorized = 0
        self._total_denied = 0
        self._total_failed = 0
        self._fallbacks_used = 0
        self._no_processor = 0

        self._decisions: deque[RoutingDecision] = deque(maxlen=_RECENT_DECISIONS)

        self._per_processor: dict[str, dict] = defaultdict(lambda: {
            "count": 0,
            "approved": 0,
            "denied": 0,
            "failed": 0,
            "timeout": 0,
            "volume": 0,
            "selected": 0,
            "latency_sum": 0.0,
        })

        self._webhooks = {
            "composed": 0,
            "delivered": 0,
            "failed_attempts": 0,
            "terminal_failures": 0,
            "skipped_no_callback": 0,
        }

    def record_decision(self, decision: RoutingDecision) -> None:
        with self._lock:
            self._decisions.append(decision)
            self._per_processor[decision.processor_code]["selected"] += 1
            if decision.fallback:
                self._fallbacks_used += 1

    def record_no_processor(self) -> None:
        with self._lock:
            self._no_processor += 1

    def record_attempt(self, result: PaymentResult, amount: int) -> None:
        """Called by PaymentEngine after each individual processor call."""
        with self._lock:
            p = self._per_processor[result.processor_code]
            p["count"] += 1
            p["latency_sum"] += result.latency_ms

            if result.status == PaymentResultStatus.APPROVED:
                p["approved"] += 1
                p["volume"] += amount
            elif result.status == PaymentResultStatus.DENIED:
                p["denied"] += 1
            elif result.status == PaymentResultStatus.TIMEOUT:
                p["timeout"] += 1
            else:
                p["failed"] += 1

    def record_final(self, status: TransactionStatus) -> None:
        """Called once per authorization with the resulting transaction status."""
        with self._lock:
            self._total_transactions += 1
            if status == TransactionStatus.AUTHORIZED:
                self._total_authorized += 1
            elif status == TransactionStatus.DENIED:
                self._total_denied += 1
            else:
                self._total_failed += 1

    def record_webhook(self, outcome: str) -> None:
        """outcome is one of the WebhookStats field names."""
        with self._lock:
            self._webhooks[outcome] += 1

    def snapshot(self) -> StatsResponse:
        with self._lock:
            uptime = time.monotonic() - self._started_at
            rate = (
                self._total_authorized / self._total_transactions
                if self._total_transactions > 0
                else 0.0
            )

            per_processor = {}
            for code, p in self._per_processor.items():
                avg_latency = p["latency_sum"] / p["count"] if p["count"] > 0 else 0.0
                per_processor[code] = ProcessorStats(
                    processor_code=code,
                    attempt_count=p["count"],
                    approved_count=p["approved"],
                    denied_count=p["denied"],
                    failed_count=p["failed"],
                    timeout_count=p["timeout"],
                    approved_volume=p["volume"],
                    times_selected=p["selected"],
                    avg_latency_ms=round(avg_latency, 2),
                )

            return StatsResponse(
                total_transactions=self._total_transactions,
                total_authorized=self._total_authorized,
                total_denied=self._total_denied,
                total_failed=self._total_failed,
                authorization_rate=round(rate, 4),
                fallbacks_used=self._fallbacks_used,
                no_processor_available=self._no_processor,
                per_processor=per_processor,
                webhooks=WebhookStats(**self._webhooks),
                recent_decisions=list(self._decisions),
                uptime_seconds=round(uptime, 2),
            )
