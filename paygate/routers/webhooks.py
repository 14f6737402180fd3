from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, HTTPException, Request

from paygate.models.exceptions import NotificationNotFoundError
from paygate.models.webhook import NotificationResponse, NotificationState, SignatureVerifyRequest
from paygate.webhooks.signing import verify_signature

router = APIRouter()


@router.get("/webhooks", response_model=list[NotificationResponse])
async def list_webhooks(
    request: Request,
    state: Optional[NotificationState] = None,
    transaction_id: Optional[str] = None,
) -> list[NotificationResponse]:
    rows = request.app.state.ctx.notifications.search(state=state, transaction_id=transaction_id)
    return [NotificationResponse.from_notification(n) for n in rows]


@router.post("/webhooks/{notification_id}/cancel", response_model=NotificationResponse)
async def cancel_webhook(notification_id: str, request: Request) -> NotificationResponse:
    """
    Stop any further delivery of a notification.

    Delivered, permanently failed and already cancelled notifications cannot
    be cancelled, nor can one whose delivery is in flight.
    """
    store = request.app.state.ctx.notifications
    try:
        cancelled = store.cancel(notification_id, datetime.now(timezone.utc))
    except NotificationNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))

    notification = store.get(notification_id)
    if not cancelled:
        raise HTTPException(
            status_code=409,
            detail=f"Webhook notification '{notification_id}' is {notification.state.value} and cannot be cancelled",
        )
    return NotificationResponse.from_notification(notification)


@router.post(
    "/webhooks/verify",
    tags=["Testing"],
    summary="Check a webhook signature the way a merchant would",
)
async def verify_webhook_signature(body: SignatureVerifyRequest) -> dict:
    return {"valid": verify_signature(body.payload, body.signature, body.secret, body.encoding)}
