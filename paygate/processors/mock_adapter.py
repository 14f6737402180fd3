"""
MockAdapter: in-process stand-in for a real processor integration.

Each configured processor in a non-production deployment is backed by one
MockAdapter carrying its own outcome table, latency envelope, decline codes
and optional deterministic card overrides. Real adapters implement the same
AbstractAdapter contract and are registered in its place.
"""

import asyncio
import random
import string
import time
import uuid

from paygate.processors.base import AbstractAdapter
from paygate.models.processor import PaymentResult, PaymentResultStatus, Processor
from paygate.models.transaction import CaptureRequest, Transaction, TransactionRequest, VoidRequest

# (probability, outcome_status)
OutcomeTable = list[tuple[float, PaymentResultStatus]]

# card_last_four -> (forced_status, forced_error_code | None)
CardOverrides = dict[str, tuple[PaymentResultStatus, str | None]]

DEFAULT_OUTCOMES: OutcomeTable = [
    (0.90, PaymentResultStatus.APPROVED),
    (0.06, PaymentResultStatus.DENIED),
    (0.03, PaymentResultStatus.FAILED),
    (0.01, PaymentResultStatus.TIMEOUT),
]

# Shared test cards: deterministic regardless of the outcome table
DEFAULT_CARD_OVERRIDES: CardOverrides = {
    "0000": (PaymentResultStatus.DENIED, "fraud_suspected"),
    "1111": (PaymentResultStatus.DENIED, "insufficient_funds"),
    "2222": (PaymentResultStatus.FAILED, "processor_unavailable"),
}


class MockAdapter(AbstractAdapter):
    """
    Parameterised mock adapter.

    Args:
        code:           Processor code this adapter serves.
        latency_range:  (min_seconds, max_seconds) for simulated network delay.
        outcome_table:  Probability-weighted list of (prob, status) for
                        authorize. Any remainder maps to APPROVED.
        deny_codes:     Codes sampled when the outcome is DENIED.
        error_codes:    Codes sampled when the outcome is FAILED.
        card_overrides: card_last_four -> (forced_status, forced_code),
                        matched before random selection.
        healthy:        Value returned by health_check().
    """

    def __init__(
        self,
        code: str,
        latency_range: tuple[float, float] = (0.01, 0.05),
        outcome_table: OutcomeTable | None = None,
        deny_codes: list[str] | None = None,
        error_codes: list[str] | None = None,
        card_overrides: CardOverrides | None = None,
        healthy: bool = True,
    ) -> None:
        self.code = code
        self._latency_range = latency_range
        self._outcome_table = outcome_table if outcome_table is not None else DEFAULT_OUTCOMES
        self._deny_codes = deny_codes or ["do_not_honor", "insufficient_funds"]
        self._error_codes = error_codes or ["processor_unavailable", "internal_error"]
        self._card_overrides: CardOverrides = (
            card_overrides if card_overrides is not None else DEFAULT_CARD_OVERRIDES
        )
        self.healthy = healthy

    def _pick_outcome(self) -> PaymentResultStatus:
        r = random.random()
        cumulative = 0.0
        for prob, outcome in self._outcome_table:
            cumulative += prob
            if r < cumulative:
                return outcome
        return PaymentResultStatus.APPROVED

    async def _simulate_latency(self) -> float:
        start = time.monotonic()
        await asyncio.sleep(random.uniform(*self._latency_range))
        return (time.monotonic() - start) * 1000

    def _approved(self, latency_ms: float, reference: str | None = None) -> PaymentResult:
        return PaymentResult(
            processor_code=self.code,
            success=True,
            status=PaymentResultStatus.APPROVED,
            processor_reference=reference or f"{self.code.lower()}-{uuid.uuid4().hex[:16]}",
            authorization_code="".join(random.choices(string.digits, k=6)),
            latency_ms=latency_ms,
        )

    async def authorize(
        self, processor: Processor, request: TransactionRequest, transaction: Transaction
    ) -> PaymentResult:
        elapsed_ms = await self._simulate_latency()

        forced = self._card_overrides.get(request.card_last_four)
        outcome = forced[0] if forced else self._pick_outcome()

        if outcome == PaymentResultStatus.APPROVED:
            return self._approved(elapsed_ms)

        if outcome == PaymentResultStatus.DENIED:
            code = forced[1] if forced and forced[1] else random.choice(self._deny_codes)
            return PaymentResult(
                processor_code=self.code,
                success=False,
                status=PaymentResultStatus.DENIED,
                error_code=code,
                error_message=code.replace("_", " ").capitalize(),
                latency_ms=elapsed_ms,
            )

        if outcome == PaymentResultStatus.FAILED:
            code = forced[1] if forced and forced[1] else random.choice(self._error_codes)
            return PaymentResult(
                processor_code=self.code,
                success=False,
                status=PaymentResultStatus.FAILED,
                error_code=code,
                error_message=code.replace("_", " ").capitalize(),
                latency_ms=elapsed_ms,
            )

        # TIMEOUT: the engine's wait_for fires before this resolves
        await asyncio.sleep(processor.read_timeout_seconds + 60)
        return PaymentResult(
            processor_code=self.code,
            success=False,
            status=PaymentResultStatus.TIMEOUT,
            error_code="timeout",
            latency_ms=elapsed_ms,
        )

    async def capture(
        self, processor: Processor, request: CaptureRequest, transaction: Transaction
    ) -> PaymentResult:
        elapsed_ms = await self._simulate_latency()
        return self._approved(elapsed_ms, reference=transaction.processor_reference)

    async def void(
        self, processor: Processor, request: VoidRequest, transaction: Transaction
    ) -> PaymentResult:
        elapsed_ms = await self._simulate_latency()
        return self._approved(elapsed_ms, reference=transaction.processor_reference)

    async def health_check(self, processor: Processor) -> bool:
        return self.healthy
