"""
PayPal adapter — OAuth2 client credentials, Orders v2, webhook verification.

Transient failures (transport errors, 429, 5xx) are retried with backoff at
this boundary. Everything else surfaces as GATEWAY_AUTH or GATEWAY_ORDER.
"""

import asyncio
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime, timedelta
from typing import Any

import httpx
from combinators import RetryPolicy, retry
from kungfu import Error, LazyCoroResult, Ok, Result

from tracklease._retry import backoff, transient_status
from tracklease.config import GatewaySettings
from tracklease.domain import format_cents, utcnow
from tracklease.errors import ErrorKind, LeaseError
from tracklease.gateway._types import (
    AccessToken,
    GatewayLineItem,
    RemoteCapture,
    RemoteOrder,
    WebhookHeaders,
)
from tracklease.log import get_logger

log = get_logger("paypal_gateway")

TOKEN_EXPIRY_SKEW = timedelta(seconds=60)


def _order_error(message: str, *, transient: bool = False) -> LeaseError:
    return LeaseError(ErrorKind.GATEWAY_ORDER, message, transient=transient)


def _auth_error(message: str, *, transient: bool = False) -> LeaseError:
    return LeaseError(ErrorKind.GATEWAY_AUTH, message, transient=transient)


def order_payload(
    *,
    amount_cents: int,
    currency: str,
    line_items: Sequence[GatewayLineItem],
    discount_cents: int,
    brand_name: str,
) -> dict[str, Any]:
    """Orders v2 body for a digital-goods checkout."""
    item_total = sum(item.unit_amount_cents for item in line_items)
    breakdown: dict[str, Any] = {
        "item_total": {"currency_code": currency, "value": format_cents(item_total)},
    }
    if discount_cents:
        breakdown["discount"] = {"currency_code": currency, "value": format_cents(discount_cents)}

    return {
        "intent": "CAPTURE",
        "purchase_units": [{
            "amount": {
                "currency_code": currency,
                "value": format_cents(amount_cents),
                "breakdown": breakdown,
            },
            "items": [
                {
                    "name": f"{item.title} - {item.license_name}"[:127],
                    "unit_amount": {
                        "currency_code": currency,
                        "value": format_cents(item.unit_amount_cents),
                    },
                    "quantity": "1",
                    "category": "DIGITAL_GOODS",
                }
                for item in line_items
            ],
        }],
        "application_context": {
            "brand_name": brand_name,
            "shipping_preference": "NO_SHIPPING",
            "user_action": "PAY_NOW",
        },
    }


def _capture_from_order(body: Mapping[str, Any]) -> RemoteCapture:
    try:
        capture = body["purchase_units"][0]["payments"]["captures"][0]
    except (KeyError, IndexError, TypeError):
        return RemoteCapture(capture_id="", status=str(body.get("status", "UNKNOWN")))
    return RemoteCapture(capture_id=str(capture["id"]), status=str(body.get("status", "UNKNOWN")))


def _already_captured(response: httpx.Response) -> bool:
    if response.status_code != 422:
        return False
    try:
        details = response.json().get("details", [])
    except ValueError:
        return False
    return any(d.get("issue") == "ORDER_ALREADY_CAPTURED" for d in details)


class PayPalGateway:
    """
    PayPal REST client.

    Example:
        gateway = PayPalGateway(settings.gateway)
        match await gateway.create_remote_order(
            amount_cents=4499, currency="USD", line_items=items, discount_cents=500,
        ):
            case Ok(remote):
                redirect(remote.approval_url)
            case Error(e):
                ...
    """

    def __init__(
        self,
        settings: GatewaySettings,
        client: httpx.AsyncClient | None = None,
        policy: RetryPolicy[LeaseError] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._settings = settings
        self._client = client or httpx.AsyncClient(timeout=settings.timeout_seconds)
        self._policy = policy or backoff()
        self._clock = clock
        self._token: AccessToken | None = None
        self._token_lock = asyncio.Lock()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ───────────────────────────────────────────────────────────────────────
    # OAuth2
    # ───────────────────────────────────────────────────────────────────────

    async def fetch_access_token(self) -> Result[str, LeaseError]:
        async with self._token_lock:
            if self._token is not None and self._clock() < self._token.expires_at:
                return Ok(self._token.value)

            if not self._settings.configured:
                return Error(_auth_error("PayPal credentials are not configured"))

            fetched = await retry(LazyCoroResult(self._request_token), policy=self._policy)
            match fetched:
                case Ok(token):
                    self._token = token
                    return Ok(token.value)
                case Error(e):
                    log.error("paypal.token_failed", error=str(e))
                    return Error(e)

    async def _request_token(self) -> Result[AccessToken, LeaseError]:
        try:
            response = await self._client.post(
                f"{self._settings.base_url}/v1/oauth2/token",
                auth=(self._settings.client_id, self._settings.client_secret.get_secret_value()),
                data={"grant_type": "client_credentials"},
            )
        except httpx.HTTPError as exc:
            return Error(_auth_error(f"token request failed: {exc}", transient=True))

        if not response.is_success:
            return Error(_auth_error(
                f"token request -> {response.status_code}",
                transient=transient_status(response.status_code),
            ))

        body = response.json()
        lifetime = timedelta(seconds=int(body.get("expires_in", 0)))
        return Ok(AccessToken(
            value=str(body["access_token"]),
            expires_at=self._clock() + max(lifetime - TOKEN_EXPIRY_SKEW, timedelta(0)),
        ))

    # ───────────────────────────────────────────────────────────────────────
    # Orders v2
    # ───────────────────────────────────────────────────────────────────────

    async def create_remote_order(
        self,
        *,
        amount_cents: int,
        currency: str,
        line_items: Sequence[GatewayLineItem],
        discount_cents: int = 0,
        request_id: str | None = None,
    ) -> Result[RemoteOrder, LeaseError]:
        payload = order_payload(
            amount_cents=amount_cents,
            currency=currency,
            line_items=line_items,
            discount_cents=discount_cents,
            brand_name=self._settings.brand_name,
        )
        headers = {"PayPal-Request-Id": request_id} if request_id else {}
        response = await self._call("POST", "/v2/checkout/orders", json=payload, headers=headers)

        match response:
            case Error(e):
                return Error(e)
            case Ok(r):
                body = r.json()
                approval = next(
                    (link["href"] for link in body.get("links", []) if link.get("rel") == "approve"),
                    None,
                )
                if not body.get("id") or approval is None:
                    return Error(_order_error("PayPal order response has no approval link"))
                log.info("paypal.order_created", remote_order_id=body["id"])
                return Ok(RemoteOrder(remote_order_id=str(body["id"]), approval_url=str(approval)))

    async def capture_remote_order(self, remote_order_id: str) -> Result[RemoteCapture, LeaseError]:
        response = await self._call(
            "POST",
            f"/v2/checkout/orders/{remote_order_id}/capture",
            json={},
            headers={"PayPal-Request-Id": f"capture-{remote_order_id}"},
            accept=_already_captured,
        )

        match response:
            case Error(e):
                return Error(e)
            case Ok(r) if _already_captured(r):
                log.info("paypal.order_already_captured", remote_order_id=remote_order_id)
                existing = await self._call("GET", f"/v2/checkout/orders/{remote_order_id}")
                return existing.map(lambda got: _capture_from_order(got.json()))
            case Ok(r):
                capture = _capture_from_order(r.json())
                log.info(
                    "paypal.order_captured",
                    remote_order_id=remote_order_id,
                    capture_id=capture.capture_id,
                    status=capture.status,
                )
                return Ok(capture)

    # ───────────────────────────────────────────────────────────────────────
    # Webhooks
    # ───────────────────────────────────────────────────────────────────────

    async def verify_webhook_signature(
        self, headers: WebhookHeaders, event: Mapping[str, Any],
    ) -> Result[bool, LeaseError]:
        if not self._settings.webhook_id:
            log.warning("paypal.webhook_id_missing")
            return Ok(False)

        response = await self._call(
            "POST",
            "/v1/notifications/verify-webhook-signature",
            json={
                "auth_algo": headers.auth_algo,
                "cert_url": headers.cert_url,
                "transmission_id": headers.transmission_id,
                "transmission_sig": headers.transmission_sig,
                "transmission_time": headers.transmission_time,
                "webhook_id": self._settings.webhook_id,
                "webhook_event": dict(event),
            },
        )
        return response.map(lambda r: r.json().get("verification_status") == "SUCCESS")

    # ───────────────────────────────────────────────────────────────────────
    # Transport
    # ───────────────────────────────────────────────────────────────────────

    async def _call(
        self,
        method: str,
        path: str,
        *,
        json: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        accept: Callable[[httpx.Response], bool] | None = None,
    ) -> Result[httpx.Response, LeaseError]:
        token = await self.fetch_access_token()
        if isinstance(token, Error):
            return Error(token.error)
        access_token = token.value

        request_headers = {
            "authorization": f"Bearer {access_token}",
            "content-type": "application/json",
            **(headers or {}),
        }

        async def attempt() -> Result[httpx.Response, LeaseError]:
            try:
                response = await self._client.request(
                    method,
                    f"{self._settings.base_url}{path}",
                    json=json,
                    headers=request_headers,
                )
            except httpx.HTTPError as exc:
                return Error(_order_error(f"{method} {path}: {exc}", transient=True))

            if response.is_success or (accept is not None and accept(response)):
                return Ok(response)
            if response.status_code == 401:
                self._token = None
                return Error(_auth_error(f"{method} {path} rejected the access token"))
            return Error(_order_error(
                f"{method} {path} -> {response.status_code}: {response.text[:300]}",
                transient=transient_status(response.status_code),
            ))

        return await retry(LazyCoroResult(attempt), policy=self._policy)


__all__ = ("PayPalGateway", "order_payload")
