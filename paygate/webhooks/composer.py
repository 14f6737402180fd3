import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from paygate.config import Settings
from paygate.models.transaction import STATUS_EVENTS, Transaction
from paygate.models.webhook import WebhookNotification
from paygate.services.stats_service import StatsService
from paygate.store.memory import MerchantStore, NotificationStore
from paygate.webhooks.signing import sign

logger = logging.getLogger(__name__)


def build_payload(transaction: Transaction, event: str, now: datetime) -> dict:
    """
    Transaction snapshot sent to the merchant.

    Card data is limited to brand and last four digits; the service never
    holds a PAN or CVV.
    """
    data: dict = {
        "transaction_id": transaction.id,
        "processor_reference": transaction.processor_reference,
        "status": transaction.status.value,
        "amount": transaction.amount,
        "currency": transaction.currency.value,
        "installments": transaction.installments,
        "authorization_code": transaction.authorization_code,
        "created_at": transaction.created_at.isoformat(),
    }
    for status, reached_at in transaction.status_history.items():
        data[f"{status.value.lower()}_at"] = reached_at.isoformat()

    if transaction.decline_reason:
        data["decline_reason"] = transaction.decline_reason

    if transaction.card_last_four:
        data["card"] = {
            "brand": transaction.card_brand,
            "last_four": transaction.card_last_four,
        }

    if transaction.customer is not None:
        data["customer"] = {
            "name": transaction.customer.name,
            "email": transaction.customer.email,
            "document": transaction.customer.document,
        }

    return {
        "event": event,
        "timestamp": now.isoformat(),
        "transaction": data,
    }


class WebhookComposer:
    """Turns a transaction status change into a stored, signed notification."""

    def __init__(
        self,
        merchants: MerchantStore,
        notifications: NotificationStore,
        stats_service: StatsService,
        settings: Settings,
    ):
        self._merchants = merchants
        self._notifications = notifications
        self._stats = stats_service
        self._settings = settings

    def compose(
        self, transaction: Transaction, event: str, now: datetime | None = None
    ) -> Optional[WebhookNotification]:
        now = now or datetime.now(timezone.utc)
        merchant = self._merchants.get(transaction.merchant_id)

        if not merchant.has_callback:
            logger.info(
                f"[TXN {transaction.id}] Merchant {merchant.id} has no callback URL: "
                f"skipping {event}"
            )
            self._stats.record_webhook("skipped_no_callback")
            return None

        payload = json.dumps(
            build_payload(transaction, event, now),
            separators=(",", ":"),
            ensure_ascii=False,
        )

        signature = None
        if merchant.webhook_secret:
            signature = sign(payload, merchant.webhook_secret, merchant.signature_encoding)

        notification = WebhookNotification(
            id=str(uuid.uuid4()),
            merchant_id=merchant.id,
            transaction_id=transaction.id,
            event=event,
            url=merchant.callback_url,
            payload=payload,
            signature=signature,
            timeout_seconds=merchant.webhook_timeout_seconds,
            max_attempts=self._settings.WEBHOOK_MAX_ATTEMPTS,
            created_at=now,
            updated_at=now,
        )
        self._notifications.add(notification)
        self._stats.record_webhook("composed")

        logger.info(
            f"[WEBHOOK {notification.id}] {event} queued for merchant {merchant.id} "
            f"(txn={transaction.id}, signed={signature is not None})"
        )
        return notification

    def notify_status_change(self, transaction: Transaction) -> Optional[WebhookNotification]:
        event = STATUS_EVENTS.get(transaction.status)
        if event is None:
            return None
        return self.compose(transaction, event)
