"""
In-memory repositories for transactions, merchants and webhook notifications.

Every mutating function stamps `updated_at` explicitly. Each store guards its
rows with a single Lock; notification state changes are compare-and-set
operations so two dispatchers can never both own one delivery.

Trade-off: data is lost on restart. A durable deployment swaps these for
database-backed repositories exposing the same methods.
"""

import logging
import threading
from datetime import datetime, timedelta
from typing import Optional

from paygate.models.exceptions import (
    InvalidTransitionError,
    MerchantNotFoundError,
    NotificationNotFoundError,
    TransactionNotFoundError,
)
from paygate.models.merchant import Merchant
from paygate.models.transaction import Transaction, TransactionStatus, can_transition
from paygate.models.webhook import NotificationState, WebhookNotification

logger = logging.getLogger(__name__)


class TransactionStore:
    def __init__(self):
        self._rows: dict[str, Transaction] = {}
        self._lock = threading.Lock()

    def add(self, txn: Transaction) -> Transaction:
        with self._lock:
            self._rows[txn.id] = txn
            txn.status_history.setdefault(txn.status, txn.created_at)
        return txn

    def add_if_absent(self, txn: Transaction) -> tuple[Transaction, bool]:
        """Single-lock check-and-insert; returns (stored row, created)."""
        with self._lock:
            existing = self._rows.get(txn.id)
            if existing is not None:
                return existing, False
            self._rows[txn.id] = txn
            txn.status_history.setdefault(txn.status, txn.created_at)
            return txn, True

    def find(self, transaction_id: str) -> Optional[Transaction]:
        with self._lock:
            return self._rows.get(transaction_id)

    def get(self, transaction_id: str) -> Transaction:
        txn = self.find(transaction_id)
        if txn is None:
            raise TransactionNotFoundError(transaction_id)
        return txn

    def transition(
        self,
        transaction_id: str,
        target: TransactionStatus,
        now: datetime,
        **fields,
    ) -> Transaction:
        """Move a transaction to `target`, applying `fields` in the same step."""
        with self._lock:
            txn = self._rows.get(transaction_id)
            if txn is None:
                raise TransactionNotFoundError(transaction_id)
            if not can_transition(txn.status, target):
                raise InvalidTransitionError(transaction_id, txn.status.value, target.value)
            for name, value in fields.items():
                setattr(txn, name, value)
            txn.status = target
            txn.status_history[target] = now
            txn.updated_at = now
            return txn


class MerchantStore:
    def __init__(self, merchants: list[Merchant] | None = None):
        self._rows: dict[str, Merchant] = {m.id: m for m in merchants or []}
        self.lock = threading.Lock()

    def add(self, merchant: Merchant) -> Merchant:
        with self.lock:
            self._rows[merchant.id] = merchant
        return merchant

    def get(self, merchant_id: str) -> Merchant:
        merchant = self._rows.get(merchant_id)
        if merchant is None:
            raise MerchantNotFoundError(merchant_id)
        return merchant

    def all(self) -> list[Merchant]:
        return list(self._rows.values())

    def configure_webhook(
        self,
        merchant_id: str,
        now: datetime,
        **fields,
    ) -> Merchant:
        with self.lock:
            merchant = self.get(merchant_id)
            for name, value in fields.items():
                setattr(merchant, name, value)
            merchant.updated_at = now
            return merchant


class NotificationStore:
    def __init__(self):
        self._rows: dict[str, WebhookNotification] = {}
        self._lock = threading.Lock()

    def add(self, notification: WebhookNotification) -> WebhookNotification:
        with self._lock:
            self._rows[notification.id] = notification
        return notification

    def get(self, notification_id: str) -> WebhookNotification:
        with self._lock:
            notification = self._rows.get(notification_id)
        if notification is None:
            raise NotificationNotFoundError(notification_id)
        return notification

    def search(
        self,
        state: NotificationState | None = None,
        transaction_id: str | None = None,
    ) -> list[WebhookNotification]:
        with self._lock:
            rows = list(self._rows.values())
        if state is not None:
            rows = [n for n in rows if n.state == state]
        if transaction_id is not None:
            rows = [n for n in rows if n.transaction_id == transaction_id]
        return sorted(rows, key=lambda n: n.created_at)

    # --- sweep queries ---

    def due_pending(self, now: datetime) -> list[WebhookNotification]:
        with self._lock:
            return [
                n for n in self._rows.values()
                if n.state == NotificationState.PENDING
                and (n.next_attempt_at is None or n.next_attempt_at <= now)
            ]

    def retryable_failed(self, now: datetime, window: timedelta) -> list[WebhookNotification]:
        with self._lock:
            return [
                n for n in self._rows.values()
                if n.state == NotificationState.FAILED
                and not n.terminal
                and (n.last_attempt_at is None or n.last_attempt_at + window <= now)
            ]

    def stale_sending(self, now: datetime, threshold: timedelta) -> list[WebhookNotification]:
        with self._lock:
            return [
                n for n in self._rows.values()
                if n.state == NotificationState.SENDING
                and n.last_attempt_at is not None
                and n.last_attempt_at + threshold <= now
            ]

    def terminal_failures_since(self, since: datetime) -> list[WebhookNotification]:
        with self._lock:
            return [
                n for n in self._rows.values()
                if n.state == NotificationState.FAILED
                and n.terminal
                and n.updated_at >= since
            ]

    # --- state transitions ---

    def claim(self, notification_id: str, now: datetime) -> Optional[WebhookNotification]:
        """
        Compare-and-set PENDING / retryable FAILED -> SENDING.

        Returns a snapshot of the claimed notification, or None when another
        caller owns it or it is no longer deliverable. The snapshot keeps the
        claim's attempt number and timestamp even if the row is later
        reclaimed.
        """
        with self._lock:
            n = self._rows.get(notification_id)
            if n is None or n.is_immutable or n.attempts_exhausted:
                return None
            if n.state not in (NotificationState.PENDING, NotificationState.FAILED):
                return None
            n.state = NotificationState.SENDING
            n.attempts += 1
            n.last_attempt_at = now
            n.next_attempt_at = None
            n.updated_at = now
            return n.model_copy()

    def _owned(self, notification_id: str, claimed_at: datetime) -> Optional[WebhookNotification]:
        # Caller must hold the lock. The attempt that claimed at `claimed_at`
        # still owns the row only while it is SENDING under that same claim.
        n = self._rows.get(notification_id)
        if n is None or n.state != NotificationState.SENDING or n.last_attempt_at != claimed_at:
            return None
        return n

    def mark_success(
        self,
        notification_id: str,
        claimed_at: datetime,
        http_status: int,
        body: str | None,
        now: datetime,
    ) -> Optional[WebhookNotification]:
        """SENDING -> SUCCESS. None when the claim was reclaimed or superseded."""
        with self._lock:
            n = self._owned(notification_id, claimed_at)
            if n is None:
                return None
            n.state = NotificationState.SUCCESS
            n.terminal = True
            n.last_http_status = http_status
            n.last_response_body = body
            n.last_error = None
            n.succeeded_at = now
            n.updated_at = now
            return n

    def mark_failure(
        self,
        notification_id: str,
        claimed_at: datetime,
        now: datetime,
        error: str,
        next_attempt_at: datetime | None,
        http_status: int | None = None,
        body: str | None = None,
    ) -> Optional[WebhookNotification]:
        """
        Record a failed attempt; next_attempt_at=None makes the failure terminal.

        Returns None without writing when the attempt no longer owns the row.
        """
        with self._lock:
            n = self._owned(notification_id, claimed_at)
            if n is None:
                return None
            n.last_http_status = http_status
            n.last_response_body = body
            n.last_error = error
            if next_attempt_at is not None:
                n.state = NotificationState.PENDING
                n.terminal = False
                n.next_attempt_at = next_attempt_at
            else:
                n.state = NotificationState.FAILED
                n.terminal = True
                n.next_attempt_at = None
            n.updated_at = now
            return n

    def mark_exhausted(self, notification_id: str, now: datetime) -> Optional[WebhookNotification]:
        """Terminal FAILED without a delivery attempt. None if already immutable or in flight."""
        with self._lock:
            n = self._rows.get(notification_id)
            if n is None or n.is_immutable or n.state == NotificationState.SENDING:
                return None
            n.state = NotificationState.FAILED
            n.terminal = True
            n.next_attempt_at = None
            n.last_error = n.last_error or "max attempts exceeded"
            n.updated_at = now
            return n

    def mark_interrupted(self, notification_id: str, seen_attempt_at: datetime, now: datetime) -> bool:
        """SENDING -> retryable FAILED, only if no newer attempt started meanwhile."""
        with self._lock:
            n = self._rows.get(notification_id)
            if (
                n is None
                or n.state != NotificationState.SENDING
                or n.last_attempt_at != seen_attempt_at
            ):
                return False
            n.state = NotificationState.FAILED
            n.terminal = False
            n.last_error = "delivery interrupted before completion"
            n.updated_at = now
            return True

    def cancel(self, notification_id: str, now: datetime) -> bool:
        with self._lock:
            n = self._rows.get(notification_id)
            if n is None:
                raise NotificationNotFoundError(notification_id)
            if n.is_immutable or n.state == NotificationState.SENDING:
                return False
            n.state = NotificationState.CANCELLED
            n.terminal = True
            n.next_attempt_at = None
            n.updated_at = now
            return True

    def purge_succeeded_before(self, cutoff: datetime) -> int:
        with self._lock:
            stale = [
                k for k, n in self._rows.items()
                if n.state == NotificationState.SUCCESS and n.created_at < cutoff
            ]
            for k in stale:
                del self._rows[k]
            return len(stale)
