"""
In-process gateway for tests and local runs.

Webhook signatures are HMAC-SHA256 over "transmission_id|transmission_time|
webhook_id|canonical event JSON", which mirrors the shape of the real
verification protocol without network calls.
"""

import hashlib
import hmac
import json
import secrets
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from kungfu import Error, Ok, Result

from tracklease.domain import utcnow
from tracklease.errors import ErrorKind, LeaseError
from tracklease.gateway._types import GatewayLineItem, RemoteCapture, RemoteOrder, WebhookHeaders


@dataclass(slots=True)
class RecordedOrder:
    remote_order_id: str
    amount_cents: int
    discount_cents: int
    currency: str
    line_items: tuple[GatewayLineItem, ...]
    request_id: str | None
    capture_id: str | None = None


@dataclass(slots=True)
class MemoryGateway:
    """
    Fake gateway.

    Set `create_error` / `capture_error` to make the next calls fail, or
    `capture_status` to simulate a declined or unfinished payment. The
    webhook secret is random unless given, so signatures only come from
    `sign()` on this instance.
    """

    webhook_id: str = "WH-LOCAL"
    webhook_secret: str = field(default_factory=lambda: secrets.token_hex(16))
    capture_status: str = "COMPLETED"
    create_error: LeaseError | None = None
    capture_error: LeaseError | None = None
    orders: dict[str, RecordedOrder] = field(default_factory=dict)
    token_requests: int = 0

    async def fetch_access_token(self) -> Result[str, LeaseError]:
        self.token_requests += 1
        return Ok("memory-token")

    async def create_remote_order(
        self,
        *,
        amount_cents: int,
        currency: str,
        line_items: Sequence[GatewayLineItem],
        discount_cents: int = 0,
        request_id: str | None = None,
    ) -> Result[RemoteOrder, LeaseError]:
        if self.create_error is not None:
            return Error(self.create_error)

        for existing in self.orders.values():
            if request_id is not None and existing.request_id == request_id:
                return Ok(self._remote(existing.remote_order_id))

        remote_id = f"PAY-{uuid.uuid4().hex[:12].upper()}"
        self.orders[remote_id] = RecordedOrder(
            remote_order_id=remote_id,
            amount_cents=amount_cents,
            discount_cents=discount_cents,
            currency=currency,
            line_items=tuple(line_items),
            request_id=request_id,
        )
        return Ok(self._remote(remote_id))

    async def capture_remote_order(self, remote_order_id: str) -> Result[RemoteCapture, LeaseError]:
        if self.capture_error is not None:
            return Error(self.capture_error)

        order = self.orders.get(remote_order_id)
        if order is None:
            return Error(LeaseError(ErrorKind.GATEWAY_ORDER, f"Unknown remote order {remote_order_id}"))
        if order.capture_id is None:
            order.capture_id = f"CAP-{uuid.uuid4().hex[:10].upper()}"
        return Ok(RemoteCapture(capture_id=order.capture_id, status=self.capture_status))

    async def verify_webhook_signature(
        self, headers: WebhookHeaders, event: Mapping[str, Any],
    ) -> Result[bool, LeaseError]:
        expected = self._signature(headers.transmission_id, headers.transmission_time, event)
        return Ok(hmac.compare_digest(expected, headers.transmission_sig))

    def sign(self, event: Mapping[str, Any], transmission_id: str | None = None) -> dict[str, str]:
        """Headers a genuine delivery of `event` would carry."""
        tid = transmission_id or uuid.uuid4().hex
        when = utcnow().isoformat() + "Z"
        return {
            "paypal-transmission-id": tid,
            "paypal-transmission-time": when,
            "paypal-transmission-sig": self._signature(tid, when, event),
            "paypal-cert-url": "https://api.sandbox.paypal.com/v1/notifications/certs/CERT-LOCAL",
            "paypal-auth-algo": "SHA256withRSA",
        }

    def _signature(self, transmission_id: str, transmission_time: str, event: Mapping[str, Any]) -> str:
        canonical = json.dumps(event, sort_keys=True, separators=(",", ":"))
        message = f"{transmission_id}|{transmission_time}|{self.webhook_id}|{canonical}"
        return hmac.new(self.webhook_secret.encode(), message.encode(), hashlib.sha256).hexdigest()

    @staticmethod
    def _remote(remote_id: str) -> RemoteOrder:
        return RemoteOrder(
            remote_order_id=remote_id,
            approval_url=f"https://www.sandbox.paypal.com/checkoutnow?token={remote_id}",
        )


__all__ = ("MemoryGateway", "RecordedOrder")
