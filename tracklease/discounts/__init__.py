"""
Discounts — limited-use promotional codes.

    from tracklease.discounts import DiscountCodeLedger

    ledger = DiscountCodeLedger(session_factory)
    await ledger.validate("SAVE10", subtotal_cents)
    await ledger.consume_atomic("SAVE10")
    await ledger.release("SAVE10")  # compensation
"""

from tracklease.discounts._ledger import DiscountCodeLedger, check

__all__ = ("DiscountCodeLedger", "check")
