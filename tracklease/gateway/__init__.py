"""
Gateway — payment gateway adapters.

    from tracklease.gateway import PayPalGateway

    gateway = PayPalGateway(settings.gateway)
    remote = await gateway.create_remote_order(
        amount_cents=4499, currency="USD", line_items=items, discount_cents=500,
    )
"""

from tracklease.gateway._memory import MemoryGateway, RecordedOrder
from tracklease.gateway._paypal import PayPalGateway, order_payload
from tracklease.gateway._types import (
    AccessToken,
    GatewayLineItem,
    PaymentGatewayAdapter,
    RemoteCapture,
    RemoteOrder,
    WebhookHeaders,
)

__all__ = (
    "AccessToken",
    "GatewayLineItem",
    "RemoteOrder",
    "RemoteCapture",
    "WebhookHeaders",
    "PaymentGatewayAdapter",
    "PayPalGateway",
    "order_payload",
    "MemoryGateway",
    "RecordedOrder",
)
