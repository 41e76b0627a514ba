"""
Request / response codecs.

Requests decode into domain commands with `to_domain()`; responses are
built from domain values with `from_domain()`. Client-sent prices are not
part of any request model and are dropped on decode.
"""

from datetime import datetime
from typing import Annotated, Literal

from pydantic import BaseModel, Field

from tracklease.domain import (
    BeatLicense,
    CaptureOutcome,
    CheckoutRequest,
    CreatedOrder,
    DiscountCode,
    ItemRef,
    Service,
    SoundKit,
)
from tracklease.downloads import DownloadBundle, DownloadFile, DownloadItem
from tracklease.errors import LeaseError
from tracklease.webhooks import WebhookAck


# ═══════════════════════════════════════════════════════════════════════════════
# Cart lines
# ═══════════════════════════════════════════════════════════════════════════════

class BeatLineIn(BaseModel):
    item_type: Literal["beat"]
    beat_id: str = Field(min_length=1)
    license_tier_id: str = Field(min_length=1)

    def to_domain(self) -> ItemRef:
        return BeatLicense(self.beat_id, self.license_tier_id)


class SoundKitLineIn(BaseModel):
    item_type: Literal["sound_kit"]
    sound_kit_id: str = Field(min_length=1)

    def to_domain(self) -> ItemRef:
        return SoundKit(self.sound_kit_id)


class ServiceLineIn(BaseModel):
    item_type: Literal["service"]
    service_id: str = Field(min_length=1)

    def to_domain(self) -> ItemRef:
        return Service(self.service_id)


CartLineIn = Annotated[
    BeatLineIn | SoundKitLineIn | ServiceLineIn,
    Field(discriminator="item_type"),
]


# ═══════════════════════════════════════════════════════════════════════════════
# Orders
# ═══════════════════════════════════════════════════════════════════════════════

class CreateOrderIn(BaseModel):
    items: list[CartLineIn]
    customer_email: str
    customer_name: str | None = None
    discount_code: str | None = None

    def to_domain(self) -> CheckoutRequest:
        return CheckoutRequest(
            items=tuple(line.to_domain() for line in self.items),
            customer_email=self.customer_email,
            customer_name=self.customer_name,
            discount_code=self.discount_code,
        )


class CreateOrderOut(BaseModel):
    order_id: str
    approval_url: str
    gateway_order_id: str

    @classmethod
    def from_domain(cls, created: CreatedOrder) -> "CreateOrderOut":
        return cls(
            order_id=created.order_id,
            approval_url=created.approval_url,
            gateway_order_id=created.gateway_order_id,
        )


class CaptureOut(BaseModel):
    order_id: str
    capture_id: str
    already_completed: bool

    @classmethod
    def from_domain(cls, outcome: CaptureOutcome) -> "CaptureOut":
        return cls(
            order_id=outcome.order_id,
            capture_id=outcome.capture_id,
            already_completed=outcome.already_completed,
        )


# ═══════════════════════════════════════════════════════════════════════════════
# Discounts
# ═══════════════════════════════════════════════════════════════════════════════

class DiscountValidateIn(BaseModel):
    code: str = Field(min_length=1)
    subtotal_cents: int = Field(ge=0)


class DiscountValidateOut(BaseModel):
    code: str
    discount_type: str
    discount_value: str
    discount_cents: int
    total_cents: int

    @classmethod
    def from_domain(cls, code: DiscountCode, subtotal_cents: int) -> "DiscountValidateOut":
        discount = code.discount_for(subtotal_cents)
        return cls(
            code=code.code,
            discount_type=code.kind.value,
            discount_value=str(code.value),
            discount_cents=discount,
            total_cents=subtotal_cents - discount,
        )


# ═══════════════════════════════════════════════════════════════════════════════
# Downloads
# ═══════════════════════════════════════════════════════════════════════════════

class DownloadIn(BaseModel):
    order_id: str
    customer_email: str


class DownloadFileOut(BaseModel):
    name: str
    url: str
    type: str
    expires_at: datetime

    @classmethod
    def from_domain(cls, file: DownloadFile) -> "DownloadFileOut":
        return cls(name=file.name, url=file.url, type=file.file_type, expires_at=file.expires_at)


class DownloadItemOut(BaseModel):
    order_item_id: str
    item_type: str
    title: str
    license_name: str
    files: list[DownloadFileOut]

    @classmethod
    def from_domain(cls, item: DownloadItem) -> "DownloadItemOut":
        return cls(
            order_item_id=item.order_item_id,
            item_type=item.item_type.value,
            title=item.title,
            license_name=item.license_name,
            files=[DownloadFileOut.from_domain(f) for f in item.files],
        )


class OrderSummaryOut(BaseModel):
    id: str
    customer_email: str
    total_cents: int
    currency: str
    created_at: datetime
    expires_at: datetime


class DownloadOut(BaseModel):
    order: OrderSummaryOut
    downloads: list[DownloadItemOut]

    @classmethod
    def from_domain(cls, bundle: DownloadBundle) -> "DownloadOut":
        return cls(
            order=OrderSummaryOut(
                id=bundle.order_id,
                customer_email=bundle.customer_email,
                total_cents=bundle.total_cents,
                currency=bundle.currency,
                created_at=bundle.created_at,
                expires_at=bundle.download_expires_at,
            ),
            downloads=[DownloadItemOut.from_domain(item) for item in bundle.items],
        )


# ═══════════════════════════════════════════════════════════════════════════════
# Webhooks / errors
# ═══════════════════════════════════════════════════════════════════════════════

class WebhookAckOut(BaseModel):
    event_id: str
    event_type: str
    status: str
    duplicate: bool

    @classmethod
    def from_domain(cls, ack: WebhookAck) -> "WebhookAckOut":
        return cls(
            event_id=ack.event_id,
            event_type=ack.event_type,
            status=ack.status.value,
            duplicate=ack.duplicate,
        )


class ErrorOut(BaseModel):
    error: str
    message: str

    @classmethod
    def from_domain(cls, error: LeaseError) -> "ErrorOut":
        return cls(error=error.kind.value, message=error.message)


__all__ = (
    "BeatLineIn",
    "SoundKitLineIn",
    "ServiceLineIn",
    "CartLineIn",
    "CreateOrderIn",
    "CreateOrderOut",
    "CaptureOut",
    "DiscountValidateIn",
    "DiscountValidateOut",
    "DownloadIn",
    "DownloadFileOut",
    "DownloadItemOut",
    "OrderSummaryOut",
    "DownloadOut",
    "WebhookAckOut",
    "ErrorOut",
)
