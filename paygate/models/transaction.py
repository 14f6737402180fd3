import json

from pydantic import BaseModel, Field, field_validator
from datetime import datetime
from enum import Enum
from typing import Optional

from paygate.models.processor import PaymentMethod


class Currency(str, Enum):
    BRL = "BRL"
    USD = "USD"
    MXN = "MXN"


class TransactionStatus(str, Enum):
    PENDING = "PENDING"
    AUTHORIZED = "AUTHORIZED"
    CAPTURED = "CAPTURED"
    VOIDED = "VOIDED"
    DENIED = "DENIED"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"


# Transition policy lives here, not on the enum.
ALLOWED_TRANSITIONS: dict[TransactionStatus, frozenset[TransactionStatus]] = {
    TransactionStatus.PENDING: frozenset({
        TransactionStatus.AUTHORIZED,
        TransactionStatus.DENIED,
        TransactionStatus.FAILED,
        TransactionStatus.VOIDED,
        TransactionStatus.EXPIRED,
    }),
    TransactionStatus.AUTHORIZED: frozenset({
        TransactionStatus.CAPTURED,
        TransactionStatus.VOIDED,
        TransactionStatus.EXPIRED,
    }),
    TransactionStatus.CAPTURED: frozenset(),
    TransactionStatus.VOIDED: frozenset(),
    TransactionStatus.DENIED: frozenset(),
    TransactionStatus.FAILED: frozenset(),
    TransactionStatus.EXPIRED: frozenset(),
}

# Outbound webhook event emitted when a transaction reaches each status
STATUS_EVENTS: dict[TransactionStatus, str] = {
    TransactionStatus.AUTHORIZED: "payment.authorized",
    TransactionStatus.CAPTURED: "payment.captured",
    TransactionStatus.VOIDED: "payment.voided",
    TransactionStatus.DENIED: "payment.denied",
    TransactionStatus.FAILED: "payment.failed",
    TransactionStatus.EXPIRED: "payment.expired",
}


def can_transition(current: TransactionStatus, target: TransactionStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def is_final(status: TransactionStatus) -> bool:
    return not ALLOWED_TRANSITIONS[status]


def can_capture(status: TransactionStatus) -> bool:
    return status == TransactionStatus.AUTHORIZED


def can_void(status: TransactionStatus) -> bool:
    return can_transition(status, TransactionStatus.VOIDED)


class Customer(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    email: Optional[str] = Field(default=None, max_length=254)
    document: Optional[str] = Field(default=None, max_length=32)


class TransactionRequest(BaseModel):
    transaction_id: str = Field(
        ...,
        min_length=1,
        max_length=64,
        pattern=r"^[\w\-]+$",
        description="Client-supplied idempotency key (alphanumeric, hyphens, underscores)",
    )
    amount: int = Field(..., gt=0, le=10_000_000_000, description="Amount in minor units")
    currency: Currency = Currency.BRL
    merchant_id: str = Field(
        ...,
        min_length=1,
        max_length=64,
        pattern=r"^[\w\-]+$",
        description="Merchant identifier (alphanumeric, hyphens, underscores)",
    )
    installments: int = Field(default=1, ge=1, le=24)
    payment_method: PaymentMethod = PaymentMethod.CREDIT_CARD
    card_brand: Optional[str] = Field(default=None, max_length=20)
    card_last_four: str = Field(..., pattern=r"^\d{4}$")
    customer: Optional[Customer] = None
    metadata: dict = Field(default_factory=dict)

    @field_validator("metadata")
    @classmethod
    def limit_metadata_size(cls, v: dict) -> dict:
        if len(json.dumps(v)) > 1024:
            raise ValueError("metadata must not exceed 1 KB")
        return v


class Transaction(BaseModel):
    """
    Payment transaction as seen by routing and webhook logic.

    Mutated only through TransactionStore.transition(); status_history keeps
    one timestamp per status reached.
    """

    id: str
    merchant_id: str
    amount: int
    currency: Currency
    installments: int = 1
    payment_method: PaymentMethod = PaymentMethod.CREDIT_CARD
    status: TransactionStatus = TransactionStatus.PENDING
    processor_code: Optional[str] = None
    processor_reference: Optional[str] = None
    authorization_code: Optional[str] = None
    decline_reason: Optional[str] = None
    card_brand: Optional[str] = None
    card_last_four: Optional[str] = None
    customer: Optional[Customer] = None
    processors_tried: list[str] = Field(default_factory=list)
    status_history: dict[TransactionStatus, datetime] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime


class TransactionResponse(BaseModel):
    transaction_id: str
    status: TransactionStatus
    processor_used: Optional[str] = None
    processor_reference: Optional[str] = None
    authorization_code: Optional[str] = None
    amount: int
    currency: str
    installments: int = 1
    payment_method: PaymentMethod = PaymentMethod.CREDIT_CARD
    decline_reason: Optional[str] = None
    processors_tried: list[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_transaction(cls, txn: Transaction) -> "TransactionResponse":
        return cls(
            transaction_id=txn.id,
            status=txn.status,
            processor_used=txn.processor_code,
            processor_reference=txn.processor_reference,
            authorization_code=txn.authorization_code,
            amount=txn.amount,
            currency=txn.currency.value,
            installments=txn.installments,
            payment_method=txn.payment_method,
            decline_reason=txn.decline_reason,
            processors_tried=list(txn.processors_tried),
            created_at=txn.created_at,
            updated_at=txn.updated_at,
        )


class CaptureRequest(BaseModel):
    amount: Optional[int] = Field(
        default=None,
        gt=0,
        description="Amount to capture in minor units; defaults to the authorized amount",
    )


class VoidRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=200)
