"""
Webhook reconciler — verify, persist, then drive ledger transitions.

Order of operations per delivery:

    1. parse JSON                        (400 on garbage)
    2. verify the transmission signature (401, nothing written)
    3. record the event durably          (500 if this fails, gateway redelivers)
    4. process → capture / fail / refund
    5. mark processed / ignored / failed and acknowledge

Redeliveries are safe: the event row is inserted with ON CONFLICT DO
NOTHING and the ledger transitions are themselves idempotent.
"""

import json
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any

from combinators import lift as L
from kungfu import Error, Ok, Result
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tracklease import errors
from tracklease.db import WebhookEventTable
from tracklease.domain import Order, utcnow
from tracklease.errors import ErrorKind, LeaseError
from tracklease.gateway import PaymentGatewayAdapter, WebhookHeaders
from tracklease.log import get_logger
from tracklease.orders import OrderLedger
from tracklease.repo import conflict_insert
from tracklease.webhooks._events import EventCategory, GatewayEvent, parse_event

log = get_logger("webhook_reconciler")


class WebhookStatus(StrEnum):
    RECEIVED = "received"
    PROCESSED = "processed"
    IGNORED = "ignored"
    FAILED = "failed"


FINAL_STATUSES = frozenset({WebhookStatus.PROCESSED, WebhookStatus.IGNORED})


@dataclass(frozen=True, slots=True)
class WebhookAck:
    event_id: str
    event_type: str
    status: WebhookStatus
    detail: str = ""
    duplicate: bool = False


def _rejected(message: str) -> LeaseError:
    return LeaseError(ErrorKind.SIGNATURE_VERIFICATION_FAILED, message)


class WebhookReconciler:
    """
    Turns inbound gateway events into ledger transitions.

    Example:
        match await reconciler.handle(request.headers, await request.body()):
            case Ok(ack):
                return 200
            case Error(e) if e.kind is ErrorKind.SIGNATURE_VERIFICATION_FAILED:
                return 401
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        gateway: PaymentGatewayAdapter,
        ledger: OrderLedger,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._sessions = session_factory
        self._gateway = gateway
        self._ledger = ledger
        self._clock = clock

    async def handle(self, headers: Mapping[str, str], body: bytes) -> Result[WebhookAck, LeaseError]:
        try:
            payload = json.loads(body)
        except ValueError:
            return Error(errors.validation("Webhook body is not valid JSON"))
        if not isinstance(payload, dict):
            return Error(errors.validation("Webhook body must be a JSON object"))

        transmission = WebhookHeaders.from_headers(headers)
        if transmission is None:
            log.warning("webhook.signature_rejected", reason="missing transmission headers")
            return Error(_rejected("Missing webhook transmission headers"))

        verified = await self._gateway.verify_webhook_signature(transmission, payload)
        match verified:
            case Error(e):
                log.error("webhook.verification_unavailable", error=str(e))
                return Error(e)
            case Ok(False):
                log.warning(
                    "webhook.signature_rejected",
                    transmission_id=transmission.transmission_id,
                    event_id=payload.get("id"),
                )
                return Error(_rejected("Webhook signature verification failed"))

        parsed = parse_event(payload)
        if isinstance(parsed, Error):
            return Error(parsed.error)
        event = parsed.value

        recorded = await L.catching_async(
            lambda: self._record(event, payload),
            on_error=errors.database,
        )
        if isinstance(recorded, Error):
            log.error("webhook.persist_failed", event_id=event.event_id, error=str(recorded.error))
            return Error(recorded.error)

        if recorded.value in FINAL_STATUSES:
            log.info("webhook.duplicate", event_id=event.event_id, status=recorded.value.value)
            return Ok(WebhookAck(event.event_id, event.event_type, recorded.value, duplicate=True))

        return Ok(await self._process_and_mark(event))

    async def replay_pending(self, limit: int = 100) -> list[WebhookAck]:
        """Retry events that were recorded but never finished processing."""
        async with self._sessions() as session:
            rows = (
                await session.execute(
                    select(WebhookEventTable)
                    .where(WebhookEventTable.status.in_([
                        WebhookStatus.RECEIVED.value,
                        WebhookStatus.FAILED.value,
                    ]))
                    .order_by(WebhookEventTable.received_at)
                    .limit(limit)
                )
            ).scalars().all()

        acks: list[WebhookAck] = []
        for row in rows:
            parsed = parse_event(json.loads(row.payload))
            match parsed:
                case Ok(event):
                    acks.append(await self._process_and_mark(event))
                case Error(e):
                    await self._mark(row.event_id, WebhookStatus.IGNORED, str(e))
        log.info("webhook.replayed", count=len(acks))
        return acks

    # ───────────────────────────────────────────────────────────────────────
    # Processing
    # ───────────────────────────────────────────────────────────────────────

    async def _process_and_mark(self, event: GatewayEvent) -> WebhookAck:
        outcome = await L.catching_async(
            lambda: self._process(event),
            on_error=errors.database,
        )
        match outcome.then(lambda inner: inner):
            case Ok((status, detail)):
                pass
            case Error(e):
                status, detail = WebhookStatus.FAILED, str(e)
                log.error("webhook.processing_failed", event_id=event.event_id, error=detail)

        await self._mark(event.event_id, status, detail)
        log.info(
            "webhook.handled",
            event_id=event.event_id,
            event_type=event.event_type,
            status=status.value,
            detail=detail,
        )
        return WebhookAck(event.event_id, event.event_type, status, detail)

    async def _process(self, event: GatewayEvent) -> Result[tuple[WebhookStatus, str], LeaseError]:
        if event.category is EventCategory.IGNORED:
            return Ok((WebhookStatus.IGNORED, f"{event.event_type} is not handled"))

        order = await self._locate(event)
        if order is None:
            log.warning(
                "webhook.order_not_found",
                event_id=event.event_id,
                gateway_order_id=event.gateway_order_id,
                capture_id=event.capture_id,
            )
            return Ok((WebhookStatus.IGNORED, "no matching order"))

        result: Result[Any, LeaseError]
        match event.category:
            case EventCategory.CAPTURE_COMPLETED:
                if not event.capture_id:
                    return Error(errors.validation("Capture event has no capture id"))
                result = await self._ledger.capture(order.id, event.capture_id)
            case EventCategory.CAPTURE_DENIED:
                result = await self._ledger.fail(order.id, "payment capture denied")
            case EventCategory.CAPTURE_REFUNDED:
                result = await self._ledger.refund(order.id)

        match result:
            case Ok(_):
                return Ok((WebhookStatus.PROCESSED, f"order {order.id} {event.category.value}"))
            case Error(LeaseError(kind=ErrorKind.INVALID_TRANSITION) as e):
                # out-of-order or redelivered event for an order that already moved on
                return Ok((WebhookStatus.IGNORED, e.message))
            case Error(e):
                return Error(e)

    async def _locate(self, event: GatewayEvent) -> Order | None:
        if event.gateway_order_id:
            order = await self._ledger.find_by_gateway_order(event.gateway_order_id)
            if order is not None:
                return order
        if event.capture_id:
            return await self._ledger.find_by_capture(event.capture_id)
        return None

    # ───────────────────────────────────────────────────────────────────────
    # Event log
    # ───────────────────────────────────────────────────────────────────────

    async def _record(self, event: GatewayEvent, payload: Mapping[str, Any]) -> WebhookStatus:
        """Insert the event if new; return its stored status either way."""
        async with self._sessions() as session, session.begin():
            stmt = conflict_insert(session, WebhookEventTable).values(
                event_id=event.event_id,
                event_type=event.event_type,
                resource_id=event.resource_id,
                payload=json.dumps(payload, separators=(",", ":")),
                status=WebhookStatus.RECEIVED.value,
                attempts=0,
                received_at=self._clock(),
            )
            await session.execute(stmt.on_conflict_do_nothing(index_elements=["event_id"]))
            stored = (
                await session.execute(
                    select(WebhookEventTable.status)
                    .where(WebhookEventTable.event_id == event.event_id)
                )
            ).scalar_one()
            return WebhookStatus(stored)

    async def _mark(self, event_id: str, status: WebhookStatus, detail: str) -> None:
        async with self._sessions() as session, session.begin():
            await session.execute(
                update(WebhookEventTable)
                .where(WebhookEventTable.event_id == event_id)
                .values(
                    status=status.value,
                    attempts=WebhookEventTable.attempts + 1,
                    last_error=detail if status is WebhookStatus.FAILED else None,
                    processed_at=self._clock(),
                )
            )


__all__ = ("WebhookStatus", "WebhookAck", "WebhookReconciler")
