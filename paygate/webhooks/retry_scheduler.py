import logging
from collections import Counter
from datetime import datetime, timedelta, timezone

from paygate.config import Settings
from paygate.store.memory import NotificationStore
from paygate.webhooks.dispatcher import WebhookDispatcher

logger = logging.getLogger(__name__)


class RetryScheduler:
    """
    Sweeps the notification store and hands due work to the dispatcher.

    Every sweep processes items independently: one notification raising
    does not stop the rest of the sweep.
    """

    def __init__(
        self,
        notifications: NotificationStore,
        dispatcher: WebhookDispatcher,
        settings: Settings,
    ):
        self._notifications = notifications
        self._dispatcher = dispatcher
        self._settings = settings

    async def pending_sweep(self, now: datetime | None = None) -> dict[str, int]:
        now = now or datetime.now(timezone.utc)
        due = self._notifications.due_pending(now)
        if not due:
            logger.debug("No pending webhooks due")
            return {"delivered": 0, "failed": 0}

        logger.info(f"Pending sweep: {len(due)} webhook(s) due")
        delivered = failed = 0
        for notification in due:
            try:
                if await self._dispatcher.attempt(notification, now):
                    delivered += 1
                else:
                    failed += 1
            except Exception:
                logger.error(f"[WEBHOOK {notification.id}] pending sweep error", exc_info=True)
                failed += 1

        logger.info(f"Pending sweep done. Delivered: {delivered}, not delivered: {failed}")
        return {"delivered": delivered, "failed": failed}

    async def failed_sweep(self, now: datetime | None = None) -> dict[str, int]:
        now = now or datetime.now(timezone.utc)

        # Deliveries interrupted mid-flight are handed back as retryable failures
        stale_after = timedelta(seconds=self._settings.WEBHOOK_STALE_SENDING_SECONDS)
        reclaimed = 0
        for notification in self._notifications.stale_sending(now, stale_after):
            if self._notifications.mark_interrupted(notification.id, notification.last_attempt_at, now):
                reclaimed += 1
                logger.warning(f"[WEBHOOK {notification.id}] stuck in SENDING: reclaimed for retry")

        window = timedelta(seconds=self._settings.WEBHOOK_FAILED_RETRY_WINDOW_SECONDS)
        candidates = self._notifications.retryable_failed(now, window)
        retried = exhausted = 0
        for notification in candidates:
            try:
                if notification.attempts_exhausted:
                    stored = self._notifications.mark_exhausted(notification.id, now)
                    if stored is not None:
                        exhausted += 1
                        logger.error(
                            f"[WEBHOOK {stored.id}] permanently FAILED after "
                            f"{stored.attempts} attempts: merchant={stored.merchant_id}"
                        )
                    continue
                await self._dispatcher.attempt(notification, now)
                retried += 1
            except Exception:
                logger.error(f"[WEBHOOK {notification.id}] failed-retry sweep error", exc_info=True)

        if candidates or reclaimed:
            logger.info(
                f"Failed-retry sweep done. Reclaimed: {reclaimed}, retried: {retried}, "
                f"exhausted: {exhausted}"
            )
        return {"reclaimed": reclaimed, "retried": retried, "exhausted": exhausted}

    def purge(self, now: datetime | None = None) -> int:
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(days=self._settings.WEBHOOK_RETENTION_DAYS)
        removed = self._notifications.purge_succeeded_before(cutoff)
        logger.info(f"Purge done. {removed} delivered webhook(s) older than {cutoff.date()} removed")
        return removed

    def failure_report(self, now: datetime | None = None) -> dict[str, int]:
        """Log terminal failures of the last 24 hours, grouped by merchant."""
        now = now or datetime.now(timezone.utc)
        failures = self._notifications.terminal_failures_since(now - timedelta(hours=24))
        if not failures:
            logger.info("No permanently failed webhooks in the last 24 hours")
            return {}

        per_merchant = Counter(n.merchant_id for n in failures)
        logger.warning(f"REPORT: {len(failures)} permanently failed webhook(s) in the last 24 hours")
        for merchant_id, count in per_merchant.most_common():
            logger.warning(f"  - merchant {merchant_id}: {count}")
        return dict(per_merchant)
