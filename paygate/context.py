"""
GatewayContext: every long-lived component, built once in the FastAPI lifespan.

Routers reach components through `request.app.state.ctx`; tests build a
context directly with their own processors, adapters, merchants and an
httpx MockTransport.
"""

import logging
from dataclasses import dataclass

import httpx

from paygate.config import Settings
from paygate.engine.payment_engine import PaymentEngine
from paygate.engine.router import RoutingEngine
from paygate.models.merchant import Merchant
from paygate.models.processor import (
    IntegrationKind,
    PaymentMethod,
    PaymentResultStatus,
    Processor,
    ProcessorCapabilities,
)
from paygate.processors.base import AbstractAdapter
from paygate.processors.mock_adapter import MockAdapter
from paygate.processors.registry import ProcessorRegistry
from paygate.scheduling.scheduler import PeriodicScheduler
from paygate.services.capacity import CapacityLedger
from paygate.services.health_monitor import HealthMonitor
from paygate.services.rebalancer import Rebalancer
from paygate.services.stats_service import StatsService
from paygate.store.memory import MerchantStore, NotificationStore, TransactionStore
from paygate.webhooks.composer import WebhookComposer
from paygate.webhooks.dispatcher import WebhookDispatcher
from paygate.webhooks.retry_scheduler import RetryScheduler

logger = logging.getLogger(__name__)


def default_processors() -> list[Processor]:
    return [
        Processor(
            code="CIELO",
            name="Cielo",
            kind=IntegrationKind.ACQUIRER,
            priority=10,
            daily_ceiling=500_000_000,
            capabilities=ProcessorCapabilities(
                max_installments=12,
                payment_methods=[PaymentMethod.CREDIT_CARD, PaymentMethod.DEBIT_CARD],
            ),
        ),
        Processor(
            code="STONE",
            name="Stone",
            kind=IntegrationKind.ACQUIRER,
            priority=20,
            daily_ceiling=300_000_000,
            capabilities=ProcessorCapabilities(
                max_installments=12,
                payment_methods=[PaymentMethod.CREDIT_CARD, PaymentMethod.DEBIT_CARD],
            ),
        ),
        Processor(
            code="PAGSEGURO",
            name="PagSeguro",
            kind=IntegrationKind.SUBACQUIRER,
            priority=30,
            daily_ceiling=100_000_000,
            min_amount=100,
            capabilities=ProcessorCapabilities(max_installments=6),
        ),
        Processor(
            code="MERCADOPAGO",
            name="Mercado Pago",
            kind=IntegrationKind.WALLET,
            priority=40,
            daily_ceiling=50_000_000,
            max_amount=5_000_000,
            capabilities=ProcessorCapabilities(
                supports_void=False,
                payment_methods=[PaymentMethod.CREDIT_CARD, PaymentMethod.PIX],
            ),
        ),
    ]


def default_adapters() -> list[AbstractAdapter]:
    return [
        MockAdapter("CIELO", latency_range=(0.02, 0.08)),
        MockAdapter("STONE", latency_range=(0.01, 0.05)),
        MockAdapter(
            "PAGSEGURO",
            latency_range=(0.05, 0.15),
            outcome_table=[
                (0.85, PaymentResultStatus.APPROVED),
                (0.08, PaymentResultStatus.DENIED),
                (0.06, PaymentResultStatus.FAILED),
                (0.01, PaymentResultStatus.TIMEOUT),
            ],
        ),
        MockAdapter("MERCADOPAGO", latency_range=(0.03, 0.10), deny_codes=["wallet_blocked"]),
    ]


def default_merchants() -> list[Merchant]:
    return [
        Merchant(id="merchant-001", name="Loja Exemplo"),
        Merchant(id="merchant-002", name="Mercado Central", monthly_ceiling=50_000_000),
    ]


@dataclass
class GatewayContext:
    settings: Settings
    registry: ProcessorRegistry
    stats_service: StatsService
    transactions: TransactionStore
    merchants: MerchantStore
    notifications: NotificationStore
    ledger: CapacityLedger
    router: RoutingEngine
    health_monitor: HealthMonitor
    rebalancer: Rebalancer
    composer: WebhookComposer
    dispatcher: WebhookDispatcher
    retry_scheduler: RetryScheduler
    payment_engine: PaymentEngine
    scheduler: PeriodicScheduler

    async def close(self) -> None:
        if self.scheduler.running:
            await self.scheduler.stop()
        await self.dispatcher.close()


def build_context(
    settings: Settings,
    processors: list[Processor] | None = None,
    adapters: list[AbstractAdapter] | None = None,
    merchants: list[Merchant] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> GatewayContext:
    registry = ProcessorRegistry(
        processors if processors is not None else default_processors(),
        adapters if adapters is not None else default_adapters(),
    )
    stats_service = StatsService()
    transactions = TransactionStore()
    merchant_store = MerchantStore(merchants if merchants is not None else default_merchants())
    notifications = NotificationStore()

    ledger = CapacityLedger(registry, merchant_store)
    router = RoutingEngine(registry, ledger, stats_service, settings)
    health_monitor = HealthMonitor(registry, settings)
    rebalancer = Rebalancer(registry)

    composer = WebhookComposer(merchant_store, notifications, stats_service, settings)
    dispatcher = WebhookDispatcher(notifications, stats_service, settings, transport=transport)
    retry_scheduler = RetryScheduler(notifications, dispatcher, settings)

    payment_engine = PaymentEngine(
        registry=registry,
        router=router,
        ledger=ledger,
        transactions=transactions,
        merchants=merchant_store,
        composer=composer,
        stats_service=stats_service,
        settings=settings,
    )

    scheduler = PeriodicScheduler()
    scheduler.every("health_check", settings.HEALTH_CHECK_INTERVAL_SECONDS, health_monitor.check_all)
    scheduler.every("webhook_pending_sweep", settings.WEBHOOK_PENDING_SWEEP_SECONDS, retry_scheduler.pending_sweep)
    scheduler.every("webhook_failed_sweep", settings.WEBHOOK_FAILED_SWEEP_SECONDS, retry_scheduler.failed_sweep)
    scheduler.every("rebalance", settings.REBALANCE_INTERVAL_SECONDS, rebalancer.rebalance)
    scheduler.every("webhook_failure_report", settings.WEBHOOK_REPORT_INTERVAL_SECONDS, retry_scheduler.failure_report)
    scheduler.daily("capacity_reset", settings.CAPACITY_RESET_HOUR, ledger.reset_daily)
    scheduler.daily("webhook_purge", settings.WEBHOOK_PURGE_HOUR, retry_scheduler.purge)
    scheduler.monthly("merchant_volume_reset", settings.MERCHANT_RESET_DAY, ledger.reset_monthly)

    logger.info(
        f"Gateway context ready: processors={registry.codes()} "
        f"merchants={[m.id for m in merchant_store.all()]} jobs={list(scheduler.jobs)}"
    )

    return GatewayContext(
        settings=settings,
        registry=registry,
        stats_service=stats_service,
        transactions=transactions,
        merchants=merchant_store,
        notifications=notifications,
        ledger=ledger,
        router=router,
        health_monitor=health_monitor,
        rebalancer=rebalancer,
        composer=composer,
        dispatcher=dispatcher,
        retry_scheduler=retry_scheduler,
        payment_engine=payment_engine,
        scheduler=scheduler,
    )
