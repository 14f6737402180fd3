import asyncio
import logging
from datetime import datetime, timezone

import httpx

from paygate.config import Settings
from paygate.engine.backoff import next_attempt_at
from paygate.models.webhook import WebhookNotification
from paygate.services.stats_service import StatsService
from paygate.store.memory import NotificationStore

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Webhook-Signature"
EVENT_HEADER = "X-Webhook-Event"
ID_HEADER = "X-Webhook-Id"
ATTEMPT_HEADER = "X-Webhook-Attempt"


class WebhookDispatcher:
    """
    Performs one delivery attempt per call.

    Delivery rules:
      already SUCCESS / terminal FAILED / CANCELLED -> no-op, False
      attempts exhausted                           -> terminal FAILED, False, no call
      claim lost to a concurrent dispatcher        -> no-op, False
      2xx                                          -> SUCCESS, True
      non-2xx, transport error or timeout          -> PENDING with backoff, or
                                                      terminal FAILED on the last attempt

    The claim is taken under the store lock; the HTTP call itself runs
    without any lock held.

    An attempt whose claim was reclaimed as stale while the call was in
    flight writes nothing: the store only accepts a result from the claim
    that currently owns the row.
    """

    def __init__(
        self,
        notifications: NotificationStore,
        stats_service: StatsService,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._notifications = notifications
        self._stats = stats_service
        self._settings = settings
        self._client = httpx.AsyncClient(
            transport=transport,
            timeout=settings.WEBHOOK_DEFAULT_TIMEOUT_SECONDS,
            follow_redirects=False,
        )

    async def close(self) -> None:
        """Close the HTTP client connection pool."""
        await self._client.aclose()

    async def attempt(self, notification: WebhookNotification, now: datetime | None = None) -> bool:
        now = now or datetime.now(timezone.utc)
        current = self._notifications.get(notification.id)

        if current.is_immutable:
            logger.debug(f"[WEBHOOK {current.id}] already {current.state.value}: skipping")
            return False

        if current.attempts_exhausted:
            exhausted = self._notifications.mark_exhausted(current.id, now)
            if exhausted is not None:
                self._report_terminal(exhausted)
            return False

        claimed = self._notifications.claim(current.id, now)
        if claimed is None:
            logger.debug(f"[WEBHOOK {current.id}] claim lost: another dispatcher owns it")
            return False

        attempt_no = claimed.attempts
        headers = {
            "Content-Type": "application/json",
            EVENT_HEADER: claimed.event,
            ID_HEADER: claimed.id,
            ATTEMPT_HEADER: str(attempt_no),
        }
        if claimed.signature is not None:
            headers[SIGNATURE_HEADER] = claimed.signature

        # Whole-request deadline, kept well inside the stale-SENDING threshold
        deadline = min(claimed.timeout_seconds, self._settings.WEBHOOK_STALE_SENDING_SECONDS / 2)

        logger.info(
            f"[WEBHOOK {claimed.id}] POST {claimed.url} event={claimed.event} "
            f"attempt={attempt_no}/{claimed.max_attempts}"
        )

        try:
            response = await asyncio.wait_for(
                self._client.post(
                    claimed.url,
                    content=claimed.payload.encode("utf-8"),
                    headers=headers,
                    timeout=httpx.Timeout(deadline),
                ),
                timeout=deadline,
            )
        except (httpx.TimeoutException, asyncio.TimeoutError):
            self._record_failure(claimed, now, f"timed out after {deadline}s")
            return False
        except httpx.HTTPError as exc:
            self._record_failure(claimed, now, f"{type(exc).__name__}: {exc}")
            return False
        except Exception as exc:
            logger.error(f"[WEBHOOK {claimed.id}] Unexpected delivery error", exc_info=True)
            self._record_failure(claimed, now, f"{type(exc).__name__}: {exc}")
            return False

        body = response.text[: self._settings.WEBHOOK_RESPONSE_BODY_LIMIT]

        if response.is_success:
            stored = self._notifications.mark_success(
                claimed.id, claimed.last_attempt_at, response.status_code, body, now
            )
            if stored is None:
                self._discard(claimed, f"HTTP {response.status_code}")
                return False
            self._stats.record_webhook("delivered")
            logger.info(
                f"[WEBHOOK {claimed.id}] delivered (HTTP {response.status_code}) "
                f"on attempt {attempt_no}"
            )
            return True

        self._record_failure(
            claimed, now, f"HTTP {response.status_code}", http_status=response.status_code, body=body
        )
        return False

    def _record_failure(
        self,
        claimed: WebhookNotification,
        now: datetime,
        error: str,
        http_status: int | None = None,
        body: str | None = None,
    ) -> None:
        self._stats.record_webhook("failed_attempts")

        retry_at = None
        if claimed.attempts < claimed.max_attempts:
            retry_at = next_attempt_at(now, claimed.attempts, self._settings.WEBHOOK_BACKOFF_BASE_MINUTES)

        stored = self._notifications.mark_failure(
            claimed.id, claimed.last_attempt_at, now, error, retry_at, http_status=http_status, body=body
        )
        if stored is None:
            self._discard(claimed, error)
            return

        if retry_at is not None:
            logger.warning(
                f"[WEBHOOK {claimed.id}] attempt {claimed.attempts}/"
                f"{claimed.max_attempts} failed ({error}): retry at {retry_at.isoformat()}"
            )
            return

        self._report_terminal(stored)

    def _discard(self, claimed: WebhookNotification, outcome: str) -> None:
        logger.warning(
            f"[WEBHOOK {claimed.id}] attempt {claimed.attempts} finished ({outcome}) after its "
            f"claim was reclaimed: result discarded"
        )

    def _report_terminal(self, notification: WebhookNotification) -> None:
        self._stats.record_webhook("terminal_failures")
        logger.error(
            f"[WEBHOOK {notification.id}] permanently FAILED after {notification.attempts} "
            f"attempts: merchant={notification.merchant_id} txn={notification.transaction_id} "
            f"event={notification.event} last_error={notification.last_error}"
        )
