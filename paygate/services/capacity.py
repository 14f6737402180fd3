import logging
from datetime import datetime, timezone

from paygate.models.merchant import Merchant
from paygate.models.processor import Processor
from paygate.processors.registry import ProcessorRegistry
from paygate.store.memory import MerchantStore

logger = logging.getLogger(__name__)


class CapacityLedger:
    """
    Per-processor daily volume and rolling stats, per-merchant monthly volume.

    reserve() is a best-effort admission check: it does not increment, so two
    concurrent requests may both pass and overshoot the ceiling by at most
    one transaction. record_outcome() is the single synchronized write path
    for a processor's counters.
    """

    def __init__(self, registry: ProcessorRegistry, merchants: MerchantStore):
        self._registry = registry
        self._merchants = merchants

    @staticmethod
    def has_headroom(processor: Processor, amount: int) -> bool:
        return processor.volume_today + amount <= processor.daily_ceiling

    def reserve(self, processor: Processor, amount: int) -> bool:
        return self.has_headroom(processor, amount)

    def record_outcome(
        self,
        processor: Processor,
        success: bool,
        amount: int,
        observed_latency_ms: float,
    ) -> None:
        with self._registry.lock(processor.code):
            first_sample = processor.transaction_count == 0

            processor.transaction_count += 1
            if success:
                processor.success_count += 1
            else:
                processor.failure_count += 1
            processor.success_rate = processor.success_count / processor.transaction_count * 100.0

            # Two-point moving average; the first sample replaces the seed value.
            if first_sample:
                processor.avg_latency_ms = observed_latency_ms
            else:
                processor.avg_latency_ms = (processor.avg_latency_ms + observed_latency_ms) / 2

            processor.volume_today += amount
            processor.updated_at = datetime.now(timezone.utc)

    def reset_daily(self) -> int:
        """Zero every processor's daily volume. Success/failure counters are kept."""
        processors = self._registry.all()
        for processor in processors:
            with self._registry.lock(processor.code):
                processor.volume_today = 0
                processor.updated_at = datetime.now(timezone.utc)
        logger.info(f"Daily capacity reset for {len(processors)} processors")
        return len(processors)

    # --- merchant monthly ceiling ---

    @staticmethod
    def reserve_merchant(merchant: Merchant, amount: int) -> bool:
        return merchant.volume_this_month + amount <= merchant.monthly_ceiling

    def record_merchant_volume(self, merchant: Merchant, amount: int) -> None:
        with self._merchants.lock:
            merchant.volume_this_month += amount
            merchant.updated_at = datetime.now(timezone.utc)

    def reset_monthly(self) -> int:
        merchants = self._merchants.all()
        with self._merchants.lock:
            for merchant in merchants:
                merchant.volume_this_month = 0
                merchant.updated_at = datetime.now(timezone.utc)
        logger.info(f"Monthly merchant volume reset for {len(merchants)} merchants")
        return len(merchants)
