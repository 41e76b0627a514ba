"""
Order ledger — the Order / OrderItem state machine.

Every transition is a conditional UPDATE on the current status, so two
concurrent callers racing the same transition resolve to exactly one
winner. The loser re-reads the order and decides from its final state.
"""

import re
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any, cast

from combinators import lift as L
from kungfu import Error, Ok, Result
from sqlalchemy import update
from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tracklease import errors
from tracklease.catalog import PriceSource
from tracklease.db import OrderItemTable, OrderTable
from tracklease.discounts import DiscountCodeLedger
from tracklease.domain import (
    CaptureOutcome,
    CheckoutRequest,
    CreatedOrder,
    DiscountCode,
    Order,
    OrderStatus,
    PricedLine,
    can_transition,
    item_type_of,
    normalize_code,
    referenced_id,
    utcnow,
)
from tracklease.errors import ErrorKind, LeaseError
from tracklease.gateway import GatewayLineItem, PaymentGatewayAdapter
from tracklease.log import get_logger
from tracklease.orders._dispatch import EntitlementDispatcher
from tracklease.orders._saga import Compensations
from tracklease.repo import find_order_id, load_order

log = get_logger("order_ledger")

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MAX_ITEMS = 50


def validate_request(request: CheckoutRequest) -> Result[CheckoutRequest, LeaseError]:
    if not request.items:
        return Error(errors.validation("Cart is empty"))
    if len(request.items) > MAX_ITEMS:
        return Error(errors.validation(f"Cart has more than {MAX_ITEMS} items"))
    if len(set(request.items)) != len(request.items):
        return Error(errors.validation("Cart contains duplicate lines"))
    if not EMAIL_PATTERN.match(request.customer_email.strip()):
        return Error(errors.validation("Customer email is invalid"))
    return Ok(request)


class OrderLedger:
    """
    Owns order creation and every status transition.

        pending → completed → refunded
                → failed
                → cancelled

    Example:
        match await ledger.create(CheckoutRequest(items, "fan@example.com", discount_code="SAVE10")):
            case Ok(created):
                redirect(created.approval_url)
            case Error(e):
                respond(e.kind, e.message)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        prices: PriceSource,
        discounts: DiscountCodeLedger,
        gateway: PaymentGatewayAdapter,
        entitlements: EntitlementDispatcher | None = None,
        currency: str = "USD",
        download_window: timedelta = timedelta(days=7),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._sessions = session_factory
        self._prices = prices
        self._discounts = discounts
        self._gateway = gateway
        self._entitlements = entitlements
        self._currency = currency
        self._window = download_window
        self._clock = clock

    # ═══════════════════════════════════════════════════════════════════════
    # Reads
    # ═══════════════════════════════════════════════════════════════════════

    async def get(self, order_id: str) -> Order | None:
        async with self._sessions() as session:
            return await load_order(session, order_id)

    async def find_by_gateway_order(self, gateway_order_id: str) -> Order | None:
        async with self._sessions() as session:
            order_id = await find_order_id(session, OrderTable.gateway_order_id == gateway_order_id)
            return await load_order(session, order_id) if order_id else None

    async def find_by_capture(self, capture_id: str) -> Order | None:
        async with self._sessions() as session:
            order_id = await find_order_id(session, OrderTable.gateway_capture_id == capture_id)
            return await load_order(session, order_id) if order_id else None

    async def join(self) -> None:
        """Wait for in-flight license generation."""
        if self._entitlements is not None:
            await self._entitlements.join()

    # ═══════════════════════════════════════════════════════════════════════
    # create
    # ═══════════════════════════════════════════════════════════════════════

    async def create(self, request: CheckoutRequest) -> Result[CreatedOrder, LeaseError]:
        """
        Price the cart from the catalog, reserve the discount, persist the
        pending order and open the remote gateway order.

        Any failure after the discount is consumed rolls back: the pending
        order is cancelled and the discount slot released.
        """
        checked = validate_request(request)
        if isinstance(checked, Error):
            return Error(checked.error)

        priced = await self._prices.price(request.items)
        if isinstance(priced, Error):
            return Error(priced.error)
        lines = priced.value
        subtotal = sum(line.unit_price_cents for line in lines)

        code: DiscountCode | None = None
        if request.discount_code and request.discount_code.strip():
            validated = await self._discounts.validate(request.discount_code, subtotal)
            if isinstance(validated, Error):
                return Error(validated.error)
            code = validated.value

        discount = code.discount_for(subtotal) if code is not None else 0
        total = subtotal - discount
        if total <= 0:
            return Error(errors.validation("Order total must be greater than zero"))

        saga = Compensations()
        if code is not None:
            consumed = await saga.step(
                "consume_discount",
                self._discounts.consume_atomic(code.code),
                compensate=lambda _: self._discounts.release(code.code),
            )
            if isinstance(consumed, Error):
                return Error(consumed.error)

        order_id = str(uuid.uuid4())
        persisted = await saga.step(
            "persist_order",
            self._insert(order_id, request, lines, subtotal, discount, total, code),
            compensate=lambda _: self._abandon(order_id, "checkout aborted"),
        )
        if isinstance(persisted, Error):
            await saga.rollback()
            return Error(persisted.error)

        remote = await saga.step(
            "create_remote_order",
            self._gateway.create_remote_order(
                amount_cents=total,
                currency=self._currency,
                line_items=[
                    GatewayLineItem(line.title, line.license_name, line.unit_price_cents)
                    for line in lines
                ],
                discount_cents=discount,
                request_id=order_id,
            ),
        )
        if isinstance(remote, Error):
            await saga.rollback()
            return Error(remote.error)

        attached = await saga.step(
            "attach_gateway_order",
            self._attach_gateway_order(order_id, remote.value.remote_order_id),
        )
        if isinstance(attached, Error):
            await saga.rollback()
            return Error(attached.error)

        log.info(
            "order.created",
            order_id=order_id,
            gateway_order_id=remote.value.remote_order_id,
            subtotal_cents=subtotal,
            discount_cents=discount,
            total_cents=total,
            discount_code=code.code if code else None,
        )
        return Ok(CreatedOrder(
            order_id=order_id,
            approval_url=remote.value.approval_url,
            gateway_order_id=remote.value.remote_order_id,
        ))

    async def _insert(
        self,
        order_id: str,
        request: CheckoutRequest,
        lines: list[PricedLine],
        subtotal: int,
        discount: int,
        total: int,
        code: DiscountCode | None,
    ) -> Result[None, LeaseError]:
        now = self._clock()

        async def run() -> None:
            async with self._sessions() as session, session.begin():
                session.add(OrderTable(
                    id=order_id,
                    customer_email=request.customer_email.strip(),
                    customer_name=(request.customer_name or "").strip() or None,
                    status=OrderStatus.PENDING.value,
                    subtotal_cents=subtotal,
                    discount_cents=discount,
                    total_cents=total,
                    currency=self._currency,
                    discount_code=normalize_code(code.code) if code else None,
                    download_expires_at=now + self._window,
                    created_at=now,
                    updated_at=now,
                ))
                await session.flush()
                session.add_all([
                    OrderItemTable(
                        id=str(uuid.uuid4()),
                        order_id=order_id,
                        item_type=item_type_of(line.ref).value,
                        referenced_item_id=referenced_id(line.ref),
                        license_tier_id=getattr(line.ref, "license_tier_id", None),
                        title=line.title,
                        license_name=line.license_name,
                        license_type=line.license_type,
                        unit_price_cents=line.unit_price_cents,
                        download_count=0,
                        position=position,
                    )
                    for position, line in enumerate(lines)
                ])

        return await L.catching_async(run, on_error=errors.database)

    async def _attach_gateway_order(self, order_id: str, gateway_order_id: str) -> Result[bool, LeaseError]:
        moved = await self._update(
            order_id,
            OrderStatus.PENDING,
            gateway_order_id=gateway_order_id,
            updated_at=self._clock(),
        )
        match moved:
            case Ok(False):
                return Error(errors.invalid_transition(order_id, "not pending", "awaiting payment"))
            case _:
                return moved

    async def _abandon(self, order_id: str, reason: str) -> Result[bool, LeaseError]:
        return await self._update(
            order_id,
            OrderStatus.PENDING,
            status=OrderStatus.CANCELLED.value,
            failure_reason=reason,
            updated_at=self._clock(),
        )

    # ═══════════════════════════════════════════════════════════════════════
    # capture
    # ═══════════════════════════════════════════════════════════════════════

    async def capture(self, order_id: str, gateway_capture_id: str) -> Result[CaptureOutcome, LeaseError]:
        """
        pending → completed, idempotent.

        Only the caller whose conditional UPDATE matched dispatches license
        generation. Everyone else sees "already completed" as success.
        """
        if not gateway_capture_id:
            return Error(errors.validation("Capture id is required"))

        now = self._clock()
        moved = await self._update(
            order_id,
            OrderStatus.PENDING,
            status=OrderStatus.COMPLETED.value,
            gateway_capture_id=gateway_capture_id,
            download_expires_at=now + self._window,
            updated_at=now,
        )
        if isinstance(moved, Error):
            return Error(moved.error)

        if moved.value:
            log.info("order.captured", order_id=order_id, capture_id=gateway_capture_id)
            if self._entitlements is not None:
                self._entitlements.dispatch(order_id)
            return Ok(CaptureOutcome(order_id, gateway_capture_id, already_completed=False))

        order = await self.get(order_id)
        if order is None:
            return Error(errors.order_not_found(order_id))
        if order.status is not OrderStatus.COMPLETED:
            return Error(errors.invalid_transition(order_id, order.status.value, OrderStatus.COMPLETED.value))

        if order.gateway_capture_id != gateway_capture_id:
            log.warning(
                "order.capture_id_mismatch",
                order_id=order_id,
                stored=order.gateway_capture_id,
                received=gateway_capture_id,
            )
        return Ok(CaptureOutcome(
            order_id,
            order.gateway_capture_id or gateway_capture_id,
            already_completed=True,
        ))

    async def capture_remote(self, order_id: str) -> Result[CaptureOutcome, LeaseError]:
        """Synchronous post-approval capture: ask the gateway, then record."""
        order = await self.get(order_id)
        if order is None:
            return Error(errors.order_not_found(order_id))
        if order.status is OrderStatus.COMPLETED and order.gateway_capture_id:
            return Ok(CaptureOutcome(order_id, order.gateway_capture_id, already_completed=True))
        if order.status is not OrderStatus.PENDING:
            return Error(errors.invalid_transition(order_id, order.status.value, OrderStatus.COMPLETED.value))
        if order.gateway_order_id is None:
            return Error(errors.validation(f"Order {order_id} has no gateway order"))

        captured = await self._gateway.capture_remote_order(order.gateway_order_id)
        if isinstance(captured, Error):
            return Error(captured.error)

        remote = captured.value
        if remote.completed and remote.capture_id:
            return await self.capture(order_id, remote.capture_id)

        if remote.declined:
            await self.fail(order_id, f"gateway capture status {remote.status}")
        else:
            # still settling; a later capture call or webhook completes it
            log.info("order.capture_incomplete", order_id=order_id, status=remote.status)
        return Error(LeaseError(
            ErrorKind.GATEWAY_ORDER,
            f"Payment for order {order_id} was not completed (status {remote.status})",
        ))

    # ═══════════════════════════════════════════════════════════════════════
    # fail / refund / cancel
    # ═══════════════════════════════════════════════════════════════════════

    async def fail(self, order_id: str, reason: str) -> Result[Order, LeaseError]:
        """pending → failed, releasing any discount slot the order holds."""
        return await self._close_pending(order_id, OrderStatus.FAILED, reason)

    async def cancel(self, order_id: str, reason: str = "cancelled by customer") -> Result[Order, LeaseError]:
        """pending → cancelled, releasing any discount slot the order holds."""
        return await self._close_pending(order_id, OrderStatus.CANCELLED, reason)

    async def refund(self, order_id: str) -> Result[Order, LeaseError]:
        """completed → refunded. Download issuance stops; history is kept."""
        moved = await self._update(
            order_id,
            OrderStatus.COMPLETED,
            status=OrderStatus.REFUNDED.value,
            updated_at=self._clock(),
        )
        return await self._after_transition(order_id, moved, OrderStatus.REFUNDED)

    async def _close_pending(
        self, order_id: str, target: OrderStatus, reason: str,
    ) -> Result[Order, LeaseError]:
        moved = await self._update(
            order_id,
            OrderStatus.PENDING,
            status=target.value,
            failure_reason=reason,
            updated_at=self._clock(),
        )
        result = await self._after_transition(order_id, moved, target)
        match result:
            case Ok(order) if order.discount_code:
                await self._discounts.release(order.discount_code)
        return result

    async def _after_transition(
        self,
        order_id: str,
        moved: Result[bool, LeaseError],
        target: OrderStatus,
    ) -> Result[Order, LeaseError]:
        if isinstance(moved, Error):
            return Error(moved.error)

        order = await self.get(order_id)
        if order is None:
            return Error(errors.order_not_found(order_id))
        if not moved.value:
            return Error(errors.invalid_transition(order_id, order.status.value, target.value))

        log.info("order.transitioned", order_id=order_id, status=target.value)
        return Ok(order)

    # ═══════════════════════════════════════════════════════════════════════
    # Conditional update
    # ═══════════════════════════════════════════════════════════════════════

    async def _update(
        self, order_id: str, expected: OrderStatus, **values: Any,
    ) -> Result[bool, LeaseError]:
        """UPDATE orders ... WHERE id = ? AND status = expected. Ok(True) if this call won."""
        target = values.get("status")
        if target is not None and not can_transition(expected, OrderStatus(target)):
            return Error(errors.invalid_transition(order_id, expected.value, target))

        stmt = (
            update(OrderTable)
            .where(OrderTable.id == order_id, OrderTable.status == expected.value)
            .values(**values)
        )

        async def run() -> bool:
            async with self._sessions() as session, session.begin():
                result = cast(CursorResult[Any], await session.execute(stmt))
                return result.rowcount > 0

        return await L.catching_async(run, on_error=errors.database)


__all__ = ("OrderLedger", "validate_request")
