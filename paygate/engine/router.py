import logging
from datetime import datetime, timezone
from typing import Optional

from paygate.config import Settings
from paygate.engine.scoring import ranking_key, score
from paygate.models.exceptions import NoProcessorAvailableError
from paygate.models.merchant import Merchant
from paygate.models.processor import OperatingState, PaymentMethod, Processor, RoutingDecision
from paygate.processors.registry import ProcessorRegistry
from paygate.services.capacity import CapacityLedger
from paygate.services.health_monitor import is_routable
from paygate.services.stats_service import StatsService

logger = logging.getLogger(__name__)


class RoutingEngine:
    """
    Picks the processor for a request.

    Eligibility: operating state ENABLED, routable health (not DOWN, not a
    failed-check UNKNOWN), the request inside the processor's amount range,
    installment limit and payment methods, and daily headroom for the amount.
    Eligible processors are ranked by composite score; ties go to the lower
    priority value, then the code, so the result is deterministic.

    Reads are lock-free: a selection may see stats or priorities one
    monitor cycle old.
    """

    def __init__(
        self,
        registry: ProcessorRegistry,
        ledger: CapacityLedger,
        stats_service: StatsService,
        settings: Settings,
    ):
        self._registry = registry
        self._ledger = ledger
        self._stats = stats_service
        self._settings = settings

    def candidates(
        self,
        amount: int,
        installments: int = 1,
        payment_method: PaymentMethod | None = None,
        exclude: str | None = None,
    ) -> list[Processor]:
        return [
            p for p in self._registry.all()
            if p.code != exclude
            and p.operating_state == OperatingState.ENABLED
            and is_routable(p)
            and p.accepts(amount, installments, payment_method)
            and self._ledger.reserve(p, amount)
        ]

    def select_processor(
        self,
        merchant: Merchant,
        amount: int,
        installments: int = 1,
        payment_method: PaymentMethod | None = None,
    ) -> Processor:
        eligible = self.candidates(amount, installments, payment_method)
        if not eligible:
            logger.warning(
                f"[ROUTING] merchant={merchant.id} amount={amount} installments={installments} "
                f"method={payment_method.value if payment_method else 'any'}: no eligible processor"
            )
            self._stats.record_no_processor()
            raise NoProcessorAvailableError(amount)

        chosen = min(eligible, key=ranking_key)
        self._record(merchant, chosen, len(eligible), fallback=False, excluded=None)
        return chosen

    def select_fallback(
        self,
        merchant: Merchant,
        failed_processor: Processor,
        amount: int,
        installments: int = 1,
        payment_method: PaymentMethod | None = None,
    ) -> Optional[Processor]:
        eligible = self.candidates(amount, installments, payment_method, exclude=failed_processor.code)
        if not eligible:
            logger.warning(
                f"[ROUTING] merchant={merchant.id} amount={amount}: "
                f"no fallback after {failed_processor.code}"
            )
            return None

        # Fallback favours stability: restrict to highly reliable processors when any exist
        stable = [p for p in eligible if p.success_rate > self._settings.FALLBACK_MIN_SUCCESS_RATE]
        pool = stable or eligible

        chosen = min(pool, key=ranking_key)
        self._record(merchant, chosen, len(eligible), fallback=True, excluded=failed_processor.code)
        return chosen

    def _record(
        self,
        merchant: Merchant,
        chosen: Processor,
        candidate_count: int,
        fallback: bool,
        excluded: str | None,
    ) -> None:
        decision = RoutingDecision(
            processor_code=chosen.code,
            candidate_count=candidate_count,
            score=round(score(chosen), 4),
            fallback=fallback,
            excluded=excluded,
            decided_at=datetime.now(timezone.utc),
        )
        self._stats.record_decision(decision)
        logger.info(
            f"[ROUTING] merchant={merchant.id} selected={decision.processor_code} "
            f"score={decision.score:.2f} candidates={candidate_count}"
            + (f" fallback_after={excluded}" if fallback else "")
        )
