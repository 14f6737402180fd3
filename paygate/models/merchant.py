from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class SignatureEncoding(str, Enum):
    HEX = "hex"
    BASE64 = "base64"


class Merchant(BaseModel):
    id: str
    name: str
    callback_url: Optional[str] = None
    webhook_secret: Optional[str] = None
    signature_encoding: SignatureEncoding = SignatureEncoding.HEX
    webhook_timeout_seconds: float = 30.0

    # Monthly capacity, in currency minor units
    monthly_ceiling: int = 1_000_000_000
    volume_this_month: int = 0

    updated_at: Optional[datetime] = None

    @property
    def has_callback(self) -> bool:
        return bool(self.callback_url and self.callback_url.strip())


class WebhookConfigRequest(BaseModel):
    callback_url: Optional[str] = Field(
        default=None,
        max_length=500,
        pattern=r"^https?://\S+$",
        description="Set to null to stop notifications for this merchant",
    )
    webhook_secret: Optional[str] = Field(default=None, min_length=8, max_length=100)
    signature_encoding: SignatureEncoding = SignatureEncoding.HEX
    webhook_timeout_seconds: float = Field(default=30.0, ge=1, le=120)


class WebhookConfigResponse(BaseModel):
    merchant_id: str
    callback_url: Optional[str] = None
    signing_enabled: bool
    signature_encoding: SignatureEncoding
    webhook_timeout_seconds: float
