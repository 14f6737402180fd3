from datetime import datetime, timezone

from fastapi import APIRouter, HTTPException, Request

from paygate.models.exceptions import MerchantNotFoundError
from paygate.models.merchant import WebhookConfigRequest, WebhookConfigResponse

router = APIRouter()


@router.put("/merchants/{merchant_id}/webhook", response_model=WebhookConfigResponse)
async def configure_webhook(
    merchant_id: str,
    body: WebhookConfigRequest,
    request: Request,
) -> WebhookConfigResponse:
    """
    Set the merchant's callback URL and signing secret.

    Notifications already queued keep the URL and signature they were
    composed with; the new settings apply to later status changes.
    """
    try:
        merchant = request.app.state.ctx.merchants.configure_webhook(
            merchant_id,
            datetime.now(timezone.utc),
            callback_url=body.callback_url,
            webhook_secret=body.webhook_secret,
            signature_encoding=body.signature_encoding,
            webhook_timeout_seconds=body.webhook_timeout_seconds,
        )
    except MerchantNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))

    return WebhookConfigResponse(
        merchant_id=merchant.id,
        callback_url=merchant.callback_url,
        signing_enabled=merchant.webhook_secret is not None,
        signature_encoding=merchant.signature_encoding,
        webhook_timeout_seconds=merchant.webhook_timeout_seconds,
    )
