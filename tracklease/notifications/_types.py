"""
Notification values and the notifier protocol.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol
from urllib.parse import urlencode

from kungfu import Result

from tracklease.domain import Order
from tracklease.errors import LeaseError


@dataclass(frozen=True, slots=True)
class ConfirmationLine:
    title: str
    license_name: str
    license_type: str | None
    price_cents: int


@dataclass(frozen=True, slots=True)
class OrderConfirmation:
    """What the customer is told once an order's licenses exist."""

    order_id: str
    customer_email: str
    customer_name: str | None
    lines: tuple[ConfirmationLine, ...]
    total_cents: int
    currency: str
    download_url: str
    expires_at: datetime
    license_paths: tuple[str, ...]

    @classmethod
    def for_order(cls, order: Order, license_paths: tuple[str, ...], site_url: str) -> "OrderConfirmation":
        query = urlencode({"orderId": order.id, "email": order.customer_email})
        return cls(
            order_id=order.id,
            customer_email=order.customer_email,
            customer_name=order.customer_name,
            lines=tuple(
                ConfirmationLine(i.title, i.license_name, i.license_type, i.unit_price_cents)
                for i in order.items
            ),
            total_cents=order.total_cents,
            currency=order.currency,
            download_url=f"{site_url.rstrip('/')}/download?{query}",
            expires_at=order.download_expires_at,
            license_paths=license_paths,
        )

    def as_payload(self) -> dict[str, Any]:
        return {
            "customer_email": self.customer_email,
            "customer_name": self.customer_name,
            "order_id": self.order_id,
            "items": [
                {
                    "title": line.title,
                    "license_name": line.license_name,
                    "license_type": line.license_type,
                    "price_cents": line.price_cents,
                }
                for line in self.lines
            ],
            "total_cents": self.total_cents,
            "currency": self.currency,
            "download_url": self.download_url,
            "expires_at": self.expires_at.isoformat(),
            "license_paths": list(self.license_paths),
        }


class OrderNotifier(Protocol):
    """Delivers order confirmations. Failures are reported, never raised."""

    async def order_completed(self, confirmation: OrderConfirmation) -> Result[None, LeaseError]: ...


__all__ = ("ConfirmationLine", "OrderConfirmation", "OrderNotifier")
