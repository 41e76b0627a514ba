"""
Payment gateway types and the adapter protocol.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from kungfu import Result

from tracklease.errors import LeaseError


@dataclass(frozen=True, slots=True)
class GatewayLineItem:
    title: str
    license_name: str
    unit_amount_cents: int


@dataclass(frozen=True, slots=True)
class RemoteOrder:
    remote_order_id: str
    approval_url: str


DECLINED_STATUSES = frozenset({"DECLINED", "FAILED"})


@dataclass(frozen=True, slots=True)
class RemoteCapture:
    capture_id: str
    status: str

    @property
    def completed(self) -> bool:
        return self.status == "COMPLETED"

    @property
    def declined(self) -> bool:
        """The payer's funding was refused; anything else may still settle."""
        return self.status in DECLINED_STATUSES


@dataclass(frozen=True, slots=True)
class AccessToken:
    value: str
    expires_at: datetime


@dataclass(frozen=True, slots=True)
class WebhookHeaders:
    """Transmission headers the gateway signs every delivery with."""

    transmission_id: str
    transmission_time: str
    transmission_sig: str
    cert_url: str
    auth_algo: str

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> "WebhookHeaders | None":
        lowered = {k.lower(): v for k, v in headers.items()}
        values = [
            lowered.get("paypal-transmission-id"),
            lowered.get("paypal-transmission-time"),
            lowered.get("paypal-transmission-sig"),
            lowered.get("paypal-cert-url"),
            lowered.get("paypal-auth-algo"),
        ]
        if not all(values):
            return None
        transmission_id, transmission_time, sig, cert_url, algo = values
        return cls(
            transmission_id=str(transmission_id),
            transmission_time=str(transmission_time),
            transmission_sig=str(sig),
            cert_url=str(cert_url),
            auth_algo=str(algo),
        )


class PaymentGatewayAdapter(Protocol):
    """
    Thin client to the payment gateway.

    Implementations:
    - PayPalGateway: PayPal REST API over httpx
    - MemoryGateway: in-process, for tests and local runs
    """

    async def fetch_access_token(self) -> Result[str, LeaseError]: ...

    async def create_remote_order(
        self,
        *,
        amount_cents: int,
        currency: str,
        line_items: Sequence[GatewayLineItem],
        discount_cents: int = 0,
        request_id: str | None = None,
    ) -> Result[RemoteOrder, LeaseError]: ...

    async def capture_remote_order(self, remote_order_id: str) -> Result[RemoteCapture, LeaseError]: ...

    async def verify_webhook_signature(
        self, headers: WebhookHeaders, event: Mapping[str, Any],
    ) -> Result[bool, LeaseError]: ...


__all__ = (
    "GatewayLineItem",
    "RemoteOrder",
    "RemoteCapture",
    "AccessToken",
    "WebhookHeaders",
    "PaymentGatewayAdapter",
)
