from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from paygate.models.merchant import SignatureEncoding


class NotificationState(str, Enum):
    PENDING = "pending"
    SENDING = "sending"
    SUCCESS = "success"
    FAILED = "failed"        # retryable unless `terminal` is set
    CANCELLED = "cancelled"  # operator cancelled, never delivered again


class WebhookNotification(BaseModel):
    """
    One outbound callback for one transaction status event.

    State machine:
      PENDING -> SENDING -> SUCCESS
                         -> PENDING (next_attempt_at set) ... -> FAILED (terminal)
    SUCCESS, terminal FAILED and CANCELLED are immutable.
    """

    id: str
    merchant_id: str
    transaction_id: str
    event: str
    url: str
    payload: str
    signature: Optional[str] = None
    timeout_seconds: float = 30.0

    state: NotificationState = NotificationState.PENDING
    terminal: bool = False
    attempts: int = 0
    max_attempts: int = 5
    next_attempt_at: Optional[datetime] = None

    last_http_status: Optional[int] = None
    last_response_body: Optional[str] = None
    last_error: Optional[str] = None

    created_at: datetime
    last_attempt_at: Optional[datetime] = None
    succeeded_at: Optional[datetime] = None
    updated_at: datetime

    @property
    def is_immutable(self) -> bool:
        return (
            self.state in (NotificationState.SUCCESS, NotificationState.CANCELLED)
            or (self.state == NotificationState.FAILED and self.terminal)
        )

    @property
    def attempts_exhausted(self) -> bool:
        return self.attempts >= self.max_attempts


class NotificationResponse(BaseModel):
    id: str
    merchant_id: str
    transaction_id: str
    event: str
    url: str
    state: NotificationState
    terminal: bool
    attempts: int
    max_attempts: int
    next_attempt_at: Optional[datetime] = None
    last_http_status: Optional[int] = None
    last_error: Optional[str] = None
    signed: bool
    created_at: datetime
    succeeded_at: Optional[datetime] = None

    @classmethod
    def from_notification(cls, n: WebhookNotification) -> "NotificationResponse":
        return cls(
            id=n.id,
            merchant_id=n.merchant_id,
            transaction_id=n.transaction_id,
            event=n.event,
            url=n.url,
            state=n.state,
            terminal=n.terminal,
            attempts=n.attempts,
            max_attempts=n.max_attempts,
            next_attempt_at=n.next_attempt_at,
            last_http_status=n.last_http_status,
            last_error=n.last_error,
            signed=n.signature is not None,
            created_at=n.created_at,
            succeeded_at=n.succeeded_at,
        )


class SignatureVerifyRequest(BaseModel):
    payload: str = Field(..., min_length=1)
    signature: str = Field(..., min_length=1)
    secret: str = Field(..., min_length=1)
    encoding: SignatureEncoding = SignatureEncoding.HEX
