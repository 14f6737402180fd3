"""Unit tests for the webhook sweeps: pending, failed-retry, purge and report."""

import asyncio
from datetime import datetime, timedelta, timezone

import httpx

from paygate.config import Settings
from paygate.models.merchant import Merchant
from paygate.models.transaction import Currency, Transaction, TransactionStatus
from paygate.models.webhook import NotificationState, WebhookNotification
from paygate.services.stats_service import StatsService
from paygate.store.memory import MerchantStore, NotificationStore
from paygate.webhooks.composer import WebhookComposer
from paygate.webhooks.dispatcher import WebhookDispatcher
from paygate.webhooks.retry_scheduler import RetryScheduler

NOW = datetime(2026, 5, 4, 9, 30, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _transaction(txn_id: str, merchant_id: str = "m-1") -> Transaction:
    return Transaction(
        id=txn_id,
        merchant_id=merchant_id,
        amount=1_000,
        currency=Currency.BRL,
        status=TransactionStatus.AUTHORIZED,
        status_history={TransactionStatus.AUTHORIZED: NOW},
        created_at=NOW,
        updated_at=NOW,
    )


class Harness:
    def __init__(self, handler=None, settings: Settings | None = None):
        self.settings = settings or Settings()
        self.requests: list[httpx.Request] = []
        self.notifications = NotificationStore()
        self.stats = StatsService()
        merchants = MerchantStore([
            Merchant(id="m-1", name="One", callback_url="https://one.example/hook", webhook_secret="s3cret-one"),
            Merchant(id="m-2", name="Two", callback_url="https://two.example/hook"),
        ])
        self.composer = WebhookComposer(merchants, self.notifications, self.stats, self.settings)

        def record(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return (handler or (lambda r: httpx.Response(200)))(request)

        self.dispatcher = WebhookDispatcher(
            self.notifications, self.stats, self.settings, transport=httpx.MockTransport(record)
        )
        self.scheduler = RetryScheduler(self.notifications, self.dispatcher, self.settings)

    def compose(self, txn_id: str, merchant_id: str = "m-1", when: datetime = NOW) -> WebhookNotification:
        return self.composer.compose(_transaction(txn_id, merchant_id), "payment.authorized", when)


# ---------------------------------------------------------------------------
# Pending sweep
# ---------------------------------------------------------------------------

async def test_pending_sweep_delivers_new_notifications():
    h = Harness()
    first = h.compose("txn-1")
    second = h.compose("txn-2", merchant_id="m-2")

    result = await h.scheduler.pending_sweep(NOW)

    assert result == {"delivered": 2, "failed": 0}
    assert h.notifications.get(first.id).state == NotificationState.SUCCESS
    assert h.notifications.get(second.id).state == NotificationState.SUCCESS
    assert len(h.requests) == 2
    await h.dispatcher.close()


async def test_pending_sweep_waits_for_next_attempt_at():
    h = Harness(handler=lambda r: httpx.Response(500))
    n = h.compose("txn-1")

    assert await h.scheduler.pending_sweep(NOW) == {"delivered": 0, "failed": 1}
    retry_at = h.notifications.get(n.id).next_attempt_at
    assert retry_at == NOW + timedelta(minutes=1)

    # not yet due
    assert await h.scheduler.pending_sweep(NOW + timedelta(seconds=30)) == {"delivered": 0, "failed": 0}
    assert len(h.requests) == 1

    await h.scheduler.pending_sweep(retry_at)
    assert len(h.requests) == 2
    assert h.notifications.get(n.id).attempts == 2
    await h.dispatcher.close()


async def test_pending_sweep_continues_after_an_item_raises():
    h = Harness()
    bad = h.compose("txn-bad")
    good = h.compose("txn-good")

    original = h.dispatcher.attempt

    async def flaky_attempt(notification, now=None):
        if notification.id == bad.id:
            raise RuntimeError("store unavailable")
        return await original(notification, now)

    h.dispatcher.attempt = flaky_attempt

    result = await h.scheduler.pending_sweep(NOW)

    assert result == {"delivered": 1, "failed": 1}
    assert h.notifications.get(good.id).state == NotificationState.SUCCESS
    assert h.notifications.get(bad.id).state == NotificationState.PENDING
    await h.dispatcher.close()


async def test_pending_sweep_ignores_cancelled():
    h = Harness()
    n = h.compose("txn-1")
    h.notifications.cancel(n.id, NOW)

    assert await h.scheduler.pending_sweep(NOW) == {"delivered": 0, "failed": 0}
    assert h.requests == []
    await h.dispatcher.close()


# ---------------------------------------------------------------------------
# Failed-retry sweep
# ---------------------------------------------------------------------------

async def test_stale_sending_is_reclaimed_then_retried():
    h = Harness()
    n = h.compose("txn-1")
    # a dispatcher claimed it and never came back
    h.notifications.claim(n.id, NOW)

    too_early = await h.scheduler.failed_sweep(NOW + timedelta(seconds=120))
    assert too_early == {"reclaimed": 0, "retried": 0, "exhausted": 0}

    later = NOW + timedelta(seconds=301)
    result = await h.scheduler.failed_sweep(later)

    assert result["reclaimed"] == 1
    assert result["retried"] == 1
    stored = h.notifications.get(n.id)
    assert stored.state == NotificationState.SUCCESS
    assert stored.attempts == 2
    await h.dispatcher.close()


async def test_failed_sweep_respects_retry_window():
    h = Harness()
    n = h.compose("txn-1")
    h.notifications.claim(n.id, NOW)
    h.notifications.mark_interrupted(n.id, NOW, NOW)

    # last attempt less than the window ago
    assert (await h.scheduler.failed_sweep(NOW + timedelta(seconds=30)))["retried"] == 0
    assert h.requests == []

    assert (await h.scheduler.failed_sweep(NOW + timedelta(seconds=60)))["retried"] == 1
    assert len(h.requests) == 1
    await h.dispatcher.close()


async def test_failed_sweep_exhausts_without_calling():
    h = Harness()
    n = h.compose("txn-1")
    for _ in range(n.max_attempts):
        h.notifications.claim(n.id, NOW)
        h.notifications.mark_interrupted(n.id, NOW, NOW)

    result = await h.scheduler.failed_sweep(NOW + timedelta(minutes=5))

    assert result == {"reclaimed": 0, "retried": 0, "exhausted": 1}
    stored = h.notifications.get(n.id)
    assert stored.state == NotificationState.FAILED
    assert stored.terminal is True
    assert h.requests == []
    await h.dispatcher.close()


def test_mark_interrupted_ignores_newer_attempt():
    h = Harness()
    n = h.compose("txn-1")
    h.notifications.claim(n.id, NOW)

    assert h.notifications.mark_interrupted(n.id, NOW - timedelta(seconds=1), NOW) is False
    assert h.notifications.get(n.id).state == NotificationState.SENDING


async def test_late_result_after_reclaim_does_not_overwrite_delivery():
    started = asyncio.Event()
    release = asyncio.Event()
    calls: list[httpx.Request] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) == 1:
            started.set()
            await release.wait()
            return httpx.Response(500)
        return httpx.Response(200)

    h = Harness(handler=handler)
    n = h.compose("txn-1")

    # first attempt hangs on the wire long enough to be considered stale
    first = asyncio.create_task(h.dispatcher.attempt(n, NOW))
    await started.wait()

    result = await h.scheduler.failed_sweep(NOW + timedelta(seconds=301))
    assert result["reclaimed"] == 1
    assert h.notifications.get(n.id).state == NotificationState.SUCCESS

    release.set()
    assert await first is False

    stored = h.notifications.get(n.id)
    assert stored.state == NotificationState.SUCCESS
    assert stored.attempts == 2
    assert stored.last_http_status == 200
    assert stored.next_attempt_at is None

    # nothing left to send
    assert await h.scheduler.pending_sweep(NOW + timedelta(hours=1)) == {"delivered": 0, "failed": 0}
    assert len(calls) == 2
    await h.dispatcher.close()


def test_store_ignores_results_from_a_superseded_claim():
    h = Harness()
    n = h.compose("txn-1")
    h.notifications.claim(n.id, NOW)
    h.notifications.mark_interrupted(n.id, NOW, NOW)
    later = NOW + timedelta(minutes=5)
    h.notifications.claim(n.id, later)

    assert h.notifications.mark_success(n.id, NOW, 200, "", later) is None
    assert h.notifications.mark_failure(n.id, NOW, later, "HTTP 500", later + timedelta(minutes=1)) is None
    assert h.notifications.get(n.id).state == NotificationState.SENDING

    assert h.notifications.mark_success(n.id, later, 200, "", later) is not None
    assert h.notifications.get(n.id).state == NotificationState.SUCCESS


async def test_hung_endpoint_is_cut_off_before_it_can_go_stale():
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(5)
        return httpx.Response(200)

    h = Harness(handler=handler, settings=Settings(WEBHOOK_STALE_SENDING_SECONDS=0.1))
    n = h.compose("txn-1")

    assert await h.dispatcher.attempt(n, NOW) is False

    stored = h.notifications.get(n.id)
    assert stored.state == NotificationState.PENDING
    assert "timed out" in stored.last_error
    assert stored.next_attempt_at == NOW + timedelta(minutes=1)
    await h.dispatcher.close()


# ---------------------------------------------------------------------------
# Purge and report
# ---------------------------------------------------------------------------

async def test_purge_removes_only_old_successes():
    h = Harness(handler=lambda r: httpx.Response(200))
    old = h.compose("txn-old", when=NOW - timedelta(days=31))
    recent = h.compose("txn-recent", when=NOW - timedelta(days=2))
    await h.scheduler.pending_sweep(NOW)

    old_pending = h.compose("txn-old-pending", when=NOW - timedelta(days=40))

    removed = h.scheduler.purge(NOW)

    assert removed == 1
    ids = {n.id for n in h.notifications.search()}
    assert old.id not in ids
    assert recent.id in ids
    assert old_pending.id in ids
    await h.dispatcher.close()


async def test_failure_report_groups_terminal_failures_by_merchant():
    h = Harness(handler=lambda r: httpx.Response(500))
    a1 = h.compose("txn-a1")
    a2 = h.compose("txn-a2")
    b1 = h.compose("txn-b1", merchant_id="m-2")
    h.compose("txn-ok")

    for n in (a1, a2, b1):
        n.attempts = n.max_attempts - 1
        await h.dispatcher.attempt(n, NOW)

    report = h.scheduler.failure_report(NOW + timedelta(hours=1))

    assert report == {"m-1": 2, "m-2": 1}
    # outside the 24 hour window
    assert h.scheduler.failure_report(NOW + timedelta(hours=25)) == {}
    await h.dispatcher.close()
