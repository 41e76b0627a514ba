import json
from typing import Any

import httpx
import pytest
from kungfu import Error, Ok
from pydantic import SecretStr

from tracklease._retry import backoff
from tracklease.config import GatewaySettings
from tracklease.errors import ErrorKind
from tracklease.gateway import GatewayLineItem, MemoryGateway, PayPalGateway, WebhookHeaders, order_payload
from tests.fixtures import Clock

BASE = "https://api-m.sandbox.paypal.com"

LINES = [GatewayLineItem("Midnight Drive", "WAV Lease", 4999)]

HEADERS = WebhookHeaders(
    transmission_id="t-1",
    transmission_time="2026-01-15T12:00:00Z",
    transmission_sig="sig",
    cert_url="https://api.sandbox.paypal.com/cert",
    auth_algo="SHA256withRSA",
)


class FakePayPal:
    """Scripted PayPal API; records every request."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.routes: dict[tuple[str, str], list[httpx.Response]] = {}

    def on(self, method: str, path: str, *responses: httpx.Response) -> None:
        self.routes[(method, path)] = list(responses)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if (request.method, request.url.path) == ("POST", "/v1/oauth2/token"):
            scripted = self.routes.get(("POST", "/v1/oauth2/token"))
            if not scripted:
                return httpx.Response(200, json={"access_token": "A21-token", "expires_in": 32400})
        queue = self.routes[(request.method, request.url.path)]
        return queue.pop(0) if len(queue) > 1 else queue[0]

    def calls(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]


def created_order(order_id: str = "5O190127TN364715T") -> httpx.Response:
    return httpx.Response(201, json={
        "id": order_id,
        "status": "CREATED",
        "links": [
            {"rel": "self", "href": f"{BASE}/v2/checkout/orders/{order_id}"},
            {"rel": "approve", "href": f"https://www.sandbox.paypal.com/checkoutnow?token={order_id}"},
        ],
    })


def captured_order(capture_id: str = "3C679366HH908993F", status: str = "COMPLETED") -> dict[str, Any]:
    return {
        "id": "5O190127TN364715T",
        "status": status,
        "purchase_units": [{"payments": {"captures": [{"id": capture_id, "status": status}]}}],
    }


@pytest.fixture
def paypal() -> FakePayPal:
    return FakePayPal()


@pytest.fixture
def make_gateway(paypal: FakePayPal, clock: Clock):
    def make(**overrides: Any) -> PayPalGateway:
        settings = GatewaySettings(
            client_id="client-id",
            client_secret=SecretStr("client-secret"),
            webhook_id="WH-123",
            brand_name="Night Owl Beats",
        ).model_copy(update=overrides)
        client = httpx.AsyncClient(transport=httpx.MockTransport(paypal))
        return PayPalGateway(settings, client=client, policy=backoff(initial=0.0, max_delay=0.0), clock=clock)

    return make


class TestOrderPayload:
    def test_amounts_are_decimal_strings(self):
        payload = order_payload(
            amount_cents=4499, currency="USD", line_items=LINES, discount_cents=500, brand_name="Beats",
        )

        [unit] = payload["purchase_units"]
        assert payload["intent"] == "CAPTURE"
        assert unit["amount"]["value"] == "44.99"
        assert unit["amount"]["breakdown"]["item_total"]["value"] == "49.99"
        assert unit["amount"]["breakdown"]["discount"]["value"] == "5.00"
        assert unit["items"][0]["name"] == "Midnight Drive - WAV Lease"
        assert unit["items"][0]["category"] == "DIGITAL_GOODS"
        assert payload["application_context"]["shipping_preference"] == "NO_SHIPPING"

    def test_no_discount_breakdown_without_discount(self):
        payload = order_payload(
            amount_cents=4999, currency="USD", line_items=LINES, discount_cents=0, brand_name="Beats",
        )

        assert "discount" not in payload["purchase_units"][0]["amount"]["breakdown"]


class TestAccessToken:
    async def test_token_is_cached_until_expiry(self, make_gateway, paypal: FakePayPal, clock: Clock):
        gateway = make_gateway()

        assert await gateway.fetch_access_token() == Ok("A21-token")
        assert await gateway.fetch_access_token() == Ok("A21-token")
        assert len(paypal.calls("/v1/oauth2/token")) == 1

        clock.advance(hours=9)
        await gateway.fetch_access_token()
        assert len(paypal.calls("/v1/oauth2/token")) == 2

    async def test_client_credentials_grant(self, make_gateway, paypal: FakePayPal):
        await make_gateway().fetch_access_token()

        [request] = paypal.calls("/v1/oauth2/token")
        assert request.headers["authorization"].startswith("Basic ")
        assert request.content == b"grant_type=client_credentials"

    async def test_rejected_credentials(self, make_gateway, paypal: FakePayPal):
        paypal.on("POST", "/v1/oauth2/token", httpx.Response(401, json={"error": "invalid_client"}))

        result = await make_gateway().fetch_access_token()

        assert isinstance(result, Error)
        assert result.error.kind is ErrorKind.GATEWAY_AUTH
        assert len(paypal.calls("/v1/oauth2/token")) == 1

    async def test_missing_credentials(self, make_gateway, paypal: FakePayPal):
        result = await make_gateway(client_id="").fetch_access_token()

        assert isinstance(result, Error)
        assert result.error.kind is ErrorKind.GATEWAY_AUTH
        assert paypal.requests == []


class TestCreateOrder:
    async def test_create(self, make_gateway, paypal: FakePayPal):
        paypal.on("POST", "/v2/checkout/orders", created_order())

        result = await make_gateway().create_remote_order(
            amount_cents=4499, currency="USD", line_items=LINES, discount_cents=500, request_id="order-1",
        )

        assert isinstance(result, Ok)
        assert result.value.remote_order_id == "5O190127TN364715T"
        assert result.value.approval_url.endswith("token=5O190127TN364715T")
        [request] = paypal.calls("/v2/checkout/orders")
        assert request.headers["authorization"] == "Bearer A21-token"
        assert request.headers["paypal-request-id"] == "order-1"
        body = json.loads(request.content)
        assert body["purchase_units"][0]["amount"]["value"] == "44.99"
        assert body["application_context"]["brand_name"] == "Night Owl Beats"

    async def test_missing_approval_link(self, make_gateway, paypal: FakePayPal):
        paypal.on("POST", "/v2/checkout/orders", httpx.Response(201, json={"id": "X", "links": []}))

        result = await make_gateway().create_remote_order(amount_cents=100, currency="USD", line_items=LINES)

        assert isinstance(result, Error)
        assert result.error.kind is ErrorKind.GATEWAY_ORDER

    async def test_server_errors_are_retried(self, make_gateway, paypal: FakePayPal):
        paypal.on(
            "POST",
            "/v2/checkout/orders",
            httpx.Response(503, text="unavailable"),
            created_order(),
        )

        result = await make_gateway().create_remote_order(amount_cents=4999, currency="USD", line_items=LINES)

        assert isinstance(result, Ok)
        assert len(paypal.calls("/v2/checkout/orders")) == 2

    async def test_client_errors_are_not_retried(self, make_gateway, paypal: FakePayPal):
        paypal.on("POST", "/v2/checkout/orders", httpx.Response(400, json={"name": "INVALID_REQUEST"}))

        result = await make_gateway().create_remote_order(amount_cents=4999, currency="USD", line_items=LINES)

        assert isinstance(result, Error)
        assert result.error.kind is ErrorKind.GATEWAY_ORDER
        assert not result.error.transient
        assert len(paypal.calls("/v2/checkout/orders")) == 1

    async def test_expired_token_is_dropped(self, make_gateway, paypal: FakePayPal):
        paypal.on("POST", "/v2/checkout/orders", httpx.Response(401), created_order())
        gateway = make_gateway()

        first = await gateway.create_remote_order(amount_cents=4999, currency="USD", line_items=LINES)
        second = await gateway.create_remote_order(amount_cents=4999, currency="USD", line_items=LINES)

        assert isinstance(first, Error)
        assert first.error.kind is ErrorKind.GATEWAY_AUTH
        assert isinstance(second, Ok)
        assert len(paypal.calls("/v1/oauth2/token")) == 2


class TestCapture:
    async def test_capture(self, make_gateway, paypal: FakePayPal):
        path = "/v2/checkout/orders/5O190127TN364715T/capture"
        paypal.on("POST", path, httpx.Response(201, json=captured_order()))

        result = await make_gateway().capture_remote_order("5O190127TN364715T")

        assert isinstance(result, Ok)
        assert result.value.capture_id == "3C679366HH908993F"
        assert result.value.completed
        [request] = paypal.calls(path)
        assert request.headers["paypal-request-id"] == "capture-5O190127TN364715T"

    async def test_already_captured_reads_the_order(self, make_gateway, paypal: FakePayPal):
        paypal.on(
            "POST",
            "/v2/checkout/orders/5O190127TN364715T/capture",
            httpx.Response(422, json={
                "name": "UNPROCESSABLE_ENTITY",
                "details": [{"issue": "ORDER_ALREADY_CAPTURED"}],
            }),
        )
        paypal.on("GET", "/v2/checkout/orders/5O190127TN364715T", httpx.Response(200, json=captured_order()))

        result = await make_gateway().capture_remote_order("5O190127TN364715T")

        assert isinstance(result, Ok)
        assert result.value.capture_id == "3C679366HH908993F"

    async def test_declined(self, make_gateway, paypal: FakePayPal):
        paypal.on(
            "POST",
            "/v2/checkout/orders/5O190127TN364715T/capture",
            httpx.Response(201, json=captured_order(status="DECLINED")),
        )

        result = await make_gateway().capture_remote_order("5O190127TN364715T")

        assert isinstance(result, Ok)
        assert not result.value.completed


class TestVerifyWebhook:
    @pytest.mark.parametrize(("status", "expected"), [("SUCCESS", True), ("FAILURE", False)])
    async def test_verification_status(self, make_gateway, paypal: FakePayPal, status, expected):
        paypal.on(
            "POST",
            "/v1/notifications/verify-webhook-signature",
            httpx.Response(200, json={"verification_status": status}),
        )

        result = await make_gateway().verify_webhook_signature(HEADERS, {"id": "WH-1"})

        assert result == Ok(expected)
        [request] = paypal.calls("/v1/notifications/verify-webhook-signature")
        body = json.loads(request.content)
        assert body["webhook_id"] == "WH-123"
        assert body["transmission_id"] == "t-1"
        assert body["webhook_event"] == {"id": "WH-1"}

    async def test_unconfigured_webhook_id(self, make_gateway, paypal: FakePayPal):
        result = await make_gateway(webhook_id="").verify_webhook_signature(HEADERS, {"id": "WH-1"})

        assert result == Ok(False)
        assert paypal.requests == []


class TestMemoryGateway:
    async def test_same_request_id_reuses_the_remote_order(self):
        gateway = MemoryGateway()

        first = (await gateway.create_remote_order(
            amount_cents=100, currency="USD", line_items=LINES, request_id="order-1",
        )).unwrap()
        second = (await gateway.create_remote_order(
            amount_cents=100, currency="USD", line_items=LINES, request_id="order-1",
        )).unwrap()

        assert first == second
        assert len(gateway.orders) == 1

    async def test_signatures_round_trip(self):
        gateway = MemoryGateway()
        event = {"id": "WH-1", "event_type": "PAYMENT.CAPTURE.COMPLETED"}
        headers = WebhookHeaders.from_headers(gateway.sign(event))

        assert headers is not None
        assert await gateway.verify_webhook_signature(headers, event) == Ok(True)
        assert await gateway.verify_webhook_signature(headers, {**event, "id": "WH-2"}) == Ok(False)

    def test_headers_need_every_field(self):
        headers = MemoryGateway().sign({"id": "WH-1"})
        del headers["paypal-cert-url"]

        assert WebhookHeaders.from_headers(headers) is None
