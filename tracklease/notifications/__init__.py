"""
Notifications — order confirmations once licenses are ready.

    from tracklease.notifications import HttpNotifier, OrderConfirmation

    notifier = HttpNotifier(settings.notifications.url, api_key)
    await notifier.order_completed(OrderConfirmation.for_order(order, paths, site_url))

Delivery is best effort: a failed confirmation is logged by the caller and
never changes the order.
"""

from tracklease.notifications._http import HttpNotifier
from tracklease.notifications._memory import MemoryNotifier
from tracklease.notifications._types import ConfirmationLine, OrderConfirmation, OrderNotifier

__all__ = (
    "ConfirmationLine",
    "OrderConfirmation",
    "OrderNotifier",
    "HttpNotifier",
    "MemoryNotifier",
)
