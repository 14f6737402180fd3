from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class IntegrationKind(str, Enum):
    ACQUIRER = "acquirer"
    SUBACQUIRER = "subacquirer"
    FACILITATOR = "facilitator"
    WALLET = "wallet"


class OperatingState(str, Enum):
    ENABLED = "enabled"
    DISABLED = "disabled"
    MAINTENANCE = "maintenance"


class HealthState(str, Enum):
    UP = "up"
    DOWN = "down"
    DEGRADED = "degraded"
    UNKNOWN = "unknown"  # never checked, or the monitor could not read stats


class PaymentMethod(str, Enum):
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    PIX = "pix"
    BOLETO = "boleto"


class ProcessorCapabilities(BaseModel):
    supports_capture: bool = True
    supports_void: bool = True
    supports_refund: bool = True
    max_installments: int = Field(default=1, ge=1)
    # None accepts every method
    payment_methods: Optional[list[PaymentMethod]] = None


class Processor(BaseModel):
    """
    A configured payment processor.

    Owned by the ProcessorRegistry. Stats and capacity fields are only
    mutated through the registry's per-processor lock (CapacityLedger);
    health and priority are last-writer-wins.
    """

    code: str
    name: str
    kind: IntegrationKind = IntegrationKind.ACQUIRER

    operating_state: OperatingState = OperatingState.ENABLED
    health_state: HealthState = HealthState.UNKNOWN
    last_health_check: Optional[datetime] = None
    last_health_error: Optional[str] = None

    priority: int = Field(default=50, ge=1, le=100)
    capabilities: ProcessorCapabilities = Field(default_factory=ProcessorCapabilities)

    # Rolling stats. A fresh processor starts optimistic so it can earn traffic.
    success_rate: float = Field(default=100.0, ge=0.0, le=100.0)
    avg_latency_ms: float = Field(default=0.0, ge=0.0)
    transaction_count: int = 0
    success_count: int = 0
    failure_count: int = 0

    # Capacity, in currency minor units
    daily_ceiling: int = Field(default=100_000_000, ge=0)
    volume_today: int = 0

    # Per-transaction amount limits, in minor units; max_amount None is unbounded
    min_amount: int = Field(default=0, ge=0)
    max_amount: Optional[int] = Field(default=None, ge=0)

    # connect timeout bounds the live health probe; read timeout bounds each
    # authorize / capture / void call
    connect_timeout_ms: int = 30_000
    read_timeout_ms: int = 60_000

    # Integration settings handed to real adapters as configured. The gateway
    # itself never reads them: routing uses the score, and retries happen
    # through fallback to another processor.
    routing_weight: int = Field(default=50, ge=0, le=100)
    max_attempts: int = 3
    retry_interval_ms: int = 1_000

    updated_at: Optional[datetime] = None

    @property
    def percent_of_ceiling_used(self) -> float:
        if self.daily_ceiling == 0:
            return 100.0
        return self.volume_today / self.daily_ceiling * 100.0

    def accepts(self, amount: int, installments: int = 1, payment_method: PaymentMethod | None = None) -> bool:
        """Whether a request fits this processor's static limits."""
        if amount < self.min_amount:
            return False
        if self.max_amount is not None and amount > self.max_amount:
            return False
        if installments > self.capabilities.max_installments:
            return False
        methods = self.capabilities.payment_methods
        return payment_method is None or methods is None or payment_method in methods

    @property
    def connect_timeout_seconds(self) -> float:
        return self.connect_timeout_ms / 1000

    @property
    def read_timeout_seconds(self) -> float:
        return self.read_timeout_ms / 1000


class PaymentResultStatus(str, Enum):
    APPROVED = "approved"
    DENIED = "denied"      # business decline, never retried on another processor
    FAILED = "failed"      # technical failure, eligible for fallback
    TIMEOUT = "timeout"    # adapter did not answer within the read timeout


class PaymentResult(BaseModel):
    processor_code: str
    success: bool
    status: PaymentResultStatus
    processor_reference: Optional[str] = None
    authorization_code: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    latency_ms: float = 0.0

    @property
    def allows_fallback(self) -> bool:
        return self.status in (PaymentResultStatus.FAILED, PaymentResultStatus.TIMEOUT)


class RoutingDecision(BaseModel):
    processor_code: str
    candidate_count: int
    score: float
    fallback: bool = False
    excluded: Optional[str] = None
    decided_at: datetime


class ProcessorStatusResponse(BaseModel):
    code: str
    name: str
    kind: IntegrationKind
    operating_state: OperatingState
    health_state: HealthState
    priority: int
    success_rate: float
    avg_latency_ms: float
    transaction_count: int
    volume_today: int
    daily_ceiling: int
    percent_of_ceiling_used: float
    last_health_check: Optional[datetime] = None
    last_health_error: Optional[str] = None


class OperatingStateUpdate(BaseModel):
    state: OperatingState
