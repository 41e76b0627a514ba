"""
Orders — checkout and the order state machine.

    from tracklease.orders import OrderLedger

    created = await ledger.create(CheckoutRequest(items, email, discount_code="SAVE10"))
    await ledger.capture(order_id, "CAP123")     # idempotent
    await ledger.fail(order_id, "capture denied")
    await ledger.refund(order_id)
"""

from tracklease.orders._dispatch import EntitlementDispatcher
from tracklease.orders._ledger import OrderLedger, validate_request
from tracklease.orders._saga import Compensations, RollbackReport

__all__ = (
    "OrderLedger",
    "validate_request",
    "EntitlementDispatcher",
    "Compensations",
    "RollbackReport",
)
