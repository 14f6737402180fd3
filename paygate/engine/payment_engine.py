import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable

from paygate.config import Settings
from paygate.engine.router import RoutingEngine
from paygate.models.exceptions import (
    InvalidTransitionError,
    NoProcessorAvailableError,
    OperationInProgressError,
    ProcessorOperationError,
    UnsupportedOperationError,
)
from paygate.models.merchant import Merchant
from paygate.models.processor import PaymentResult, PaymentResultStatus, Processor
from paygate.models.transaction import (
    CaptureRequest,
    Transaction,
    TransactionRequest,
    TransactionStatus,
    VoidRequest,
    can_capture,
    can_void,
)
from paygate.processors.registry import ProcessorRegistry
from paygate.services.capacity import CapacityLedger
from paygate.services.stats_service import StatsService
from paygate.store.memory import MerchantStore, TransactionStore
from paygate.webhooks.composer import WebhookComposer

logger = logging.getLogger(__name__)


class PaymentEngine:
    """
    Runs authorize / capture / void against the routed processor.

    Authorization outcome routing:
      APPROVED        -> AUTHORIZED, stop
      DENIED          -> DENIED, stop (business decline, no fallback)
      FAILED/TIMEOUT  -> select a fallback processor, up to ROUTING_MAX_FALLBACKS
      no processor    -> FAILED (no_processor_available)
      fallbacks spent -> FAILED (gateway_error)

    Every status reached produces a webhook notification for the merchant.

    Idempotency:
      A transaction_id seen before returns the stored transaction without
      touching any processor.

    A void arriving while the transaction is still being authorized is
    refused, so the processor never holds an authorization the gateway
    recorded as voided.
    """

    def __init__(
        self,
        registry: ProcessorRegistry,
        router: RoutingEngine,
        ledger: CapacityLedger,
        transactions: TransactionStore,
        merchants: MerchantStore,
        composer: WebhookComposer,
        stats_service: StatsService,
        settings: Settings,
    ):
        self._registry = registry
        self._router = router
        self._ledger = ledger
        self._transactions = transactions
        self._merchants = merchants
        self._composer = composer
        self._stats = stats_service
        self._settings = settings
        # ids whose authorization is waiting on a processor
        self._authorizing: set[str] = set()

    async def authorize(self, request: TransactionRequest) -> Transaction:
        merchant = self._merchants.get(request.merchant_id)
        now = datetime.now(timezone.utc)

        txn, created = self._transactions.add_if_absent(
            Transaction(
                id=request.transaction_id,
                merchant_id=merchant.id,
                amount=request.amount,
                currency=request.currency,
                installments=request.installments,
                payment_method=request.payment_method,
                card_brand=request.card_brand,
                card_last_four=request.card_last_four,
                customer=request.customer,
                created_at=now,
                updated_at=now,
            )
        )
        if not created:
            logger.info(f"[TXN {txn.id}] Idempotent replay: returning stored transaction")
            return txn

        self._authorizing.add(txn.id)
        try:
            return await self._authorize_new(request, merchant, txn)
        finally:
            self._authorizing.discard(txn.id)

    async def _authorize_new(
        self, request: TransactionRequest, merchant: Merchant, txn: Transaction
    ) -> Transaction:
        logger.info(
            f"[TXN {txn.id}] Authorizing {request.amount} {request.currency.value} "
            f"for merchant {merchant.id}"
        )

        if not self._ledger.reserve_merchant(merchant, request.amount):
            logger.warning(
                f"[TXN {txn.id}] Merchant {merchant.id} monthly ceiling reached "
                f"({merchant.volume_this_month}/{merchant.monthly_ceiling})"
            )
            return self._finish_authorization(
                txn, TransactionStatus.DENIED, decline_reason="merchant_limit_exceeded"
            )

        try:
            processor = self._router.select_processor(
                merchant, request.amount, request.installments, request.payment_method
            )
        except NoProcessorAvailableError:
            return self._finish_authorization(
                txn, TransactionStatus.FAILED, decline_reason="no_processor_available"
            )

        fallbacks_left = self._settings.ROUTING_MAX_FALLBACKS
        last_code = processor.code

        while processor is not None:
            last_code = processor.code
            adapter = self._registry.adapter(processor.code)
            result = await self._call(
                processor, "authorize", adapter.authorize(processor, request, txn), txn.id
            )

            self._ledger.record_outcome(processor, result.success, request.amount, result.latency_ms)
            self._stats.record_attempt(result, request.amount)
            txn.processors_tried.append(f"{processor.code}({result.status.value})")

            logger.info(
                f"[TXN {txn.id}] [{processor.code}] status={result.status.value} "
                f"error_code={result.error_code} latency={result.latency_ms:.1f}ms"
            )

            if result.success:
                self._ledger.record_merchant_volume(merchant, request.amount)
                return self._finish_authorization(
                    txn,
                    TransactionStatus.AUTHORIZED,
                    processor_code=processor.code,
                    processor_reference=result.processor_reference,
                    authorization_code=result.authorization_code,
                )

            if not result.allows_fallback:
                logger.warning(
                    f"[TXN {txn.id}] DENIED by {processor.code} code={result.error_code}: NOT rerouting"
                )
                return self._finish_authorization(
                    txn,
                    TransactionStatus.DENIED,
                    processor_code=processor.code,
                    decline_reason=result.error_code or "denied",
                )

            if fallbacks_left <= 0:
                break
            fallbacks_left -= 1
            processor = self._router.select_fallback(
                merchant, processor, request.amount, request.installments, request.payment_method
            )

        logger.error(f"[TXN {txn.id}] Gateway error after trying {txn.processors_tried}")
        return self._finish_authorization(
            txn,
            TransactionStatus.FAILED,
            processor_code=last_code,
            decline_reason="gateway_error",
        )

    async def capture(self, transaction_id: str, request: CaptureRequest) -> Transaction:
        txn = self._transactions.get(transaction_id)
        if not can_capture(txn.status):
            raise InvalidTransitionError(txn.id, txn.status.value, TransactionStatus.CAPTURED.value)
        if request.amount is not None and request.amount > txn.amount:
            raise ValueError(f"capture amount {request.amount} exceeds authorized {txn.amount}")

        processor = self._registry.get(txn.processor_code)
        if not processor.capabilities.supports_capture:
            raise UnsupportedOperationError(processor.code, "capture")

        adapter = self._registry.adapter(processor.code)
        result = await self._call(processor, "capture", adapter.capture(processor, request, txn), txn.id)
        if not result.success:
            raise ProcessorOperationError(processor.code, "capture", result.error_code)

        return self._finish(txn, TransactionStatus.CAPTURED)

    async def void(self, transaction_id: str, request: VoidRequest) -> Transaction:
        txn = self._transactions.get(transaction_id)
        if txn.id in self._authorizing:
            raise OperationInProgressError(txn.id, "void")
        if not can_void(txn.status):
            raise InvalidTransitionError(txn.id, txn.status.value, TransactionStatus.VOIDED.value)

        if txn.processor_code is not None and txn.status == TransactionStatus.AUTHORIZED:
            processor = self._registry.get(txn.processor_code)
            if not processor.capabilities.supports_void:
                raise UnsupportedOperationError(processor.code, "void")
            adapter = self._registry.adapter(processor.code)
            result = await self._call(processor, "void", adapter.void(processor, request, txn), txn.id)
            if not result.success:
                raise ProcessorOperationError(processor.code, "void", result.error_code)

        return self._finish(txn, TransactionStatus.VOIDED)

    async def _call(
        self,
        processor: Processor,
        operation: str,
        call: Awaitable[PaymentResult],
        transaction_id: str,
    ) -> PaymentResult:
        timeout = processor.read_timeout_seconds
        try:
            return await asyncio.wait_for(call, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"[TXN {transaction_id}] [{processor.code}] {operation} timed out after {timeout}s"
            )
            return PaymentResult(
                processor_code=processor.code,
                success=False,
                status=PaymentResultStatus.TIMEOUT,
                error_code="timeout",
                latency_ms=timeout * 1000,
            )
        except Exception as exc:
            logger.error(
                f"[TXN {transaction_id}] [{processor.code}] {operation} raised {type(exc).__name__}",
                exc_info=True,
            )
            return PaymentResult(
                processor_code=processor.code,
                success=False,
                status=PaymentResultStatus.FAILED,
                error_code="adapter_error",
                error_message=str(exc),
            )

    def _finish_authorization(self, txn: Transaction, status: TransactionStatus, **fields) -> Transaction:
        txn = self._finish(txn, status, **fields)
        self._stats.record_final(status)
        return txn

    def _finish(self, txn: Transaction, status: TransactionStatus, **fields) -> Transaction:
        txn = self._transactions.transition(txn.id, status, datetime.now(timezone.utc), **fields)
        logger.info(f"[TXN {txn.id}] -> {status.value}")
        try:
            self._composer.notify_status_change(txn)
        except Exception:
            # The payment outcome stands even if the notification cannot be built
            logger.error(f"[TXN {txn.id}] Webhook composition failed", exc_info=True)
        return txn
