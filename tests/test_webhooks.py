import asyncio
import json
from typing import Any

from kungfu import Error, Ok
from sqlalchemy import func, select

from tracklease.db import WebhookEventTable
from tracklease.domain import OrderStatus
from tracklease.errors import ErrorKind, LeaseError
from tracklease.gateway import MemoryGateway
from tracklease.orders import OrderLedger
from tracklease.webhooks import EventCategory, WebhookReconciler, WebhookReplayer, WebhookStatus, parse_event
from tests.fixtures import Checkout, capture_event, refund_event


def deliver(gateway: MemoryGateway, event: dict[str, Any]) -> tuple[dict[str, str], bytes]:
    return gateway.sign(event), json.dumps(event).encode()


async def stored_events(sessions) -> list[WebhookEventTable]:
    async with sessions() as session:
        return list((await session.execute(select(WebhookEventTable))).scalars().all())


class FlakyLedger(OrderLedger):
    """Fails the first capture with a database error."""

    failures = 1

    async def capture(self, order_id: str, gateway_capture_id: str):
        if self.failures:
            self.failures -= 1
            return Error(LeaseError(ErrorKind.DATABASE, "connection reset", transient=True))
        return await super().capture(order_id, gateway_capture_id)


class UnreachableGateway(MemoryGateway):
    async def verify_webhook_signature(self, headers, event):
        return Error(LeaseError(ErrorKind.GATEWAY_AUTH, "token endpoint down", transient=True))


class TestParseEvent:
    def test_capture_event(self):
        result = parse_event(capture_event("WH-1", "PAY-1", "CAP-1"))

        assert isinstance(result, Ok)
        event = result.value
        assert event.category is EventCategory.CAPTURE_COMPLETED
        assert (event.gateway_order_id, event.capture_id) == ("PAY-1", "CAP-1")

    def test_refund_event_links_to_capture(self):
        result = parse_event(refund_event("WH-2", "CAP-9"))

        assert isinstance(result, Ok)
        assert result.value.category is EventCategory.CAPTURE_REFUNDED
        assert result.value.capture_id == "CAP-9"
        assert result.value.resource_id == "REF-CAP-9"

    def test_unknown_type_is_ignored(self):
        result = parse_event({"id": "WH-3", "event_type": "CHECKOUT.ORDER.APPROVED", "resource": {}})

        assert isinstance(result, Ok)
        assert result.value.category is EventCategory.IGNORED

    def test_missing_id(self):
        assert isinstance(parse_event({"event_type": "PAYMENT.CAPTURE.COMPLETED"}), Error)


class TestHandle:
    async def test_capture_completes_order(
        self,
        reconciler: WebhookReconciler,
        ledger: OrderLedger,
        gateway: MemoryGateway,
        checkout: Checkout,
        sessions,
    ):
        created = await checkout()
        headers, body = deliver(gateway, capture_event("WH-1", created.gateway_order_id, "CAP-1"))

        result = await reconciler.handle(headers, body)

        assert isinstance(result, Ok)
        assert result.value.status is WebhookStatus.PROCESSED
        assert result.value.duplicate is False
        order = await ledger.get(created.order_id)
        assert order is not None
        assert order.status is OrderStatus.COMPLETED
        assert order.gateway_capture_id == "CAP-1"

        [row] = await stored_events(sessions)
        assert row.status == "processed"
        assert row.attempts == 1
        assert row.processed_at is not None

    async def test_redelivery_is_acknowledged_once(
        self,
        reconciler: WebhookReconciler,
        gateway: MemoryGateway,
        checkout: Checkout,
        storage,
        ledger: OrderLedger,
        sessions,
    ):
        created = await checkout()
        event = capture_event("WH-1", created.gateway_order_id, "CAP-1")

        first = await reconciler.handle(*deliver(gateway, event))
        await ledger.join()
        uploads = storage.uploads
        second = await reconciler.handle(*deliver(gateway, event))
        await ledger.join()

        assert isinstance(first, Ok) and isinstance(second, Ok)
        assert second.value.duplicate is True
        assert second.value.status is WebhookStatus.PROCESSED
        assert storage.uploads == uploads
        assert len(await stored_events(sessions)) == 1

    async def test_bad_signature_writes_nothing(
        self,
        reconciler: WebhookReconciler,
        ledger: OrderLedger,
        gateway: MemoryGateway,
        checkout: Checkout,
        sessions,
    ):
        created = await checkout()
        event = capture_event("WH-1", created.gateway_order_id, "CAP-1")
        headers = gateway.sign(event)
        headers["paypal-transmission-sig"] = "0" * 64

        result = await reconciler.handle(headers, json.dumps(event).encode())

        assert isinstance(result, Error)
        assert result.error.kind is ErrorKind.SIGNATURE_VERIFICATION_FAILED
        assert await stored_events(sessions) == []
        order = await ledger.get(created.order_id)
        assert order is not None
        assert order.status is OrderStatus.PENDING

    async def test_tampered_body_is_rejected(
        self, reconciler: WebhookReconciler, gateway: MemoryGateway, checkout: Checkout,
    ):
        created = await checkout()
        event = capture_event("WH-1", created.gateway_order_id, "CAP-1")
        headers = gateway.sign(event)
        event["resource"]["id"] = "CAP-FORGED"

        result = await reconciler.handle(headers, json.dumps(event).encode())

        assert isinstance(result, Error)
        assert result.error.kind is ErrorKind.SIGNATURE_VERIFICATION_FAILED

    async def test_missing_headers(self, reconciler: WebhookReconciler):
        body = json.dumps(capture_event("WH-1", "PAY-1", "CAP-1")).encode()

        result = await reconciler.handle({}, body)

        assert isinstance(result, Error)
        assert result.error.kind is ErrorKind.SIGNATURE_VERIFICATION_FAILED

    async def test_invalid_json(self, reconciler: WebhookReconciler):
        result = await reconciler.handle({}, b"{not json")

        assert isinstance(result, Error)
        assert result.error.kind is ErrorKind.VALIDATION

    async def test_verification_outage_is_retryable(self, sessions, ledger: OrderLedger, clock):
        gateway = UnreachableGateway()
        reconciler = WebhookReconciler(sessions, gateway, ledger, clock=clock)

        result = await reconciler.handle(*deliver(gateway, capture_event("WH-1", "PAY-1", "CAP-1")))

        assert isinstance(result, Error)
        assert result.error.kind is ErrorKind.GATEWAY_AUTH
        assert await stored_events(sessions) == []

    async def test_unknown_order_is_ignored(
        self, reconciler: WebhookReconciler, gateway: MemoryGateway, sessions,
    ):
        result = await reconciler.handle(*deliver(gateway, capture_event("WH-1", "PAY-UNKNOWN", "CAP-1")))

        assert isinstance(result, Ok)
        assert result.value.status is WebhookStatus.IGNORED
        assert result.value.detail == "no matching order"
        [row] = await stored_events(sessions)
        assert row.status == "ignored"

    async def test_unhandled_event_type(self, reconciler: WebhookReconciler, gateway: MemoryGateway):
        event = {"id": "WH-9", "event_type": "CHECKOUT.ORDER.APPROVED", "resource": {"id": "PAY-1"}}

        result = await reconciler.handle(*deliver(gateway, event))

        assert isinstance(result, Ok)
        assert result.value.status is WebhookStatus.IGNORED

    async def test_denied_capture_fails_order(
        self,
        reconciler: WebhookReconciler,
        ledger: OrderLedger,
        gateway: MemoryGateway,
        checkout: Checkout,
    ):
        created = await checkout()
        event = capture_event(
            "WH-1", created.gateway_order_id, "CAP-1", event_type="PAYMENT.CAPTURE.DENIED",
        )

        result = await reconciler.handle(*deliver(gateway, event))

        assert isinstance(result, Ok)
        assert result.value.status is WebhookStatus.PROCESSED
        order = await ledger.get(created.order_id)
        assert order is not None
        assert order.status is OrderStatus.FAILED
        assert order.failure_reason == "payment capture denied"

    async def test_refund_found_through_capture_id(
        self,
        reconciler: WebhookReconciler,
        ledger: OrderLedger,
        gateway: MemoryGateway,
        checkout: Checkout,
    ):
        created = await checkout()
        await reconciler.handle(*deliver(gateway, capture_event("WH-1", created.gateway_order_id, "CAP-1")))

        result = await reconciler.handle(*deliver(gateway, refund_event("WH-2", "CAP-1")))

        assert isinstance(result, Ok)
        assert result.value.status is WebhookStatus.PROCESSED
        order = await ledger.get(created.order_id)
        assert order is not None
        assert order.status is OrderStatus.REFUNDED

    async def test_late_capture_after_refund_is_ignored(
        self,
        reconciler: WebhookReconciler,
        ledger: OrderLedger,
        gateway: MemoryGateway,
        checkout: Checkout,
    ):
        created = await checkout()
        await ledger.capture(created.order_id, "CAP-1")
        await ledger.refund(created.order_id)

        late = capture_event("WH-3", created.gateway_order_id, "CAP-1")
        result = await reconciler.handle(*deliver(gateway, late))

        assert isinstance(result, Ok)
        assert result.value.status is WebhookStatus.IGNORED
        order = await ledger.get(created.order_id)
        assert order is not None
        assert order.status is OrderStatus.REFUNDED


class TestReplay:
    async def test_failed_event_is_replayed(
        self,
        sessions,
        gateway: MemoryGateway,
        catalog,
        discounts,
        dispatcher,
        clock,
        checkout: Checkout,
        ledger: OrderLedger,
    ):
        flaky = FlakyLedger(
            sessions, prices=catalog, discounts=discounts, gateway=gateway, entitlements=dispatcher, clock=clock,
        )
        reconciler = WebhookReconciler(sessions, gateway, flaky, clock=clock)
        created = await checkout()
        event = capture_event("WH-1", created.gateway_order_id, "CAP-1")

        first = await reconciler.handle(*deliver(gateway, event))

        assert isinstance(first, Ok)
        assert first.value.status is WebhookStatus.FAILED
        [row] = await stored_events(sessions)
        assert row.status == "failed"
        assert row.last_error is not None and "connection reset" in row.last_error

        replayed = await reconciler.replay_pending()
        await flaky.join()

        assert [ack.status for ack in replayed] == [WebhookStatus.PROCESSED]
        order = await ledger.get(created.order_id)
        assert order is not None
        assert order.status is OrderStatus.COMPLETED
        async with sessions() as session:
            attempts = (await session.execute(select(func.max(WebhookEventTable.attempts)))).scalar_one()
        assert attempts == 2

    async def test_failed_event_redelivery_is_processed(
        self, sessions, gateway: MemoryGateway, catalog, discounts, clock, checkout: Checkout,
    ):
        flaky = FlakyLedger(sessions, prices=catalog, discounts=discounts, gateway=gateway, clock=clock)
        reconciler = WebhookReconciler(sessions, gateway, flaky, clock=clock)
        created = await checkout()
        event = capture_event("WH-1", created.gateway_order_id, "CAP-1")

        await reconciler.handle(*deliver(gateway, event))
        again = await reconciler.handle(*deliver(gateway, event))

        assert isinstance(again, Ok)
        assert again.value.duplicate is False
        assert again.value.status is WebhookStatus.PROCESSED

    async def test_nothing_to_replay(self, reconciler: WebhookReconciler):
        assert await reconciler.replay_pending() == []


class BrokenReconciler(WebhookReconciler):
    async def replay_pending(self, limit: int = 100):
        raise RuntimeError("database is locked")


class TestReplayer:
    def flaky(self, sessions, gateway, catalog, discounts, dispatcher, clock) -> FlakyLedger:
        return FlakyLedger(
            sessions, prices=catalog, discounts=discounts, gateway=gateway, entitlements=dispatcher, clock=clock,
        )

    async def test_run_once_finishes_a_failed_event(
        self, sessions, gateway: MemoryGateway, catalog, discounts, dispatcher, clock, checkout: Checkout,
    ):
        flaky = self.flaky(sessions, gateway, catalog, discounts, dispatcher, clock)
        reconciler = WebhookReconciler(sessions, gateway, flaky, clock=clock)
        created = await checkout()
        first = await reconciler.handle(*deliver(gateway, capture_event("WH-1", created.gateway_order_id, "CAP-1")))
        assert isinstance(first, Ok) and first.value.status is WebhookStatus.FAILED

        result = await WebhookReplayer(reconciler).run_once()
        await flaky.join()

        assert isinstance(result, Ok)
        assert [ack.status for ack in result.value] == [WebhookStatus.PROCESSED]
        [row] = await stored_events(sessions)
        assert row.status == "processed"

    async def test_background_loop_completes_the_order(
        self, sessions, gateway: MemoryGateway, catalog, discounts, dispatcher, clock, checkout: Checkout,
    ):
        flaky = self.flaky(sessions, gateway, catalog, discounts, dispatcher, clock)
        reconciler = WebhookReconciler(sessions, gateway, flaky, clock=clock)
        created = await checkout()
        await reconciler.handle(*deliver(gateway, capture_event("WH-1", created.gateway_order_id, "CAP-1")))
        replayer = WebhookReplayer(reconciler, interval_seconds=0.01, max_interval_seconds=0.05)

        replayer.start()
        try:
            for _ in range(200):
                order = await flaky.get(created.order_id)
                assert order is not None
                if order.status is OrderStatus.COMPLETED:
                    break
                await asyncio.sleep(0.01)
        finally:
            await replayer.stop()
        await flaky.join()

        assert order.status is OrderStatus.COMPLETED
        assert order.gateway_capture_id == "CAP-1"
        assert not replayer.running

    async def test_replay_crash_is_an_error_value(self, sessions, gateway: MemoryGateway, ledger: OrderLedger):
        replayer = WebhookReplayer(BrokenReconciler(sessions, gateway, ledger))

        result = await replayer.run_once()

        assert isinstance(result, Error)
        assert result.error.kind is ErrorKind.DATABASE
        assert "database is locked" in result.error.message

    async def test_stop_without_start(self, reconciler: WebhookReconciler):
        replayer = WebhookReplayer(reconciler)

        await replayer.stop()

        assert not replayer.running
