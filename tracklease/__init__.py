"""
tracklease — order fulfillment for beat and sound kit license sales.

    from tracklease import orders      # checkout + order state machine
    from tracklease import gateway     # PayPal adapter
    from tracklease import webhooks    # verified, idempotent gateway events
    from tracklease import discounts   # limited-use codes
    from tracklease import entitlements  # license PDFs
    from tracklease import downloads   # signed, expiring download URLs
    from tracklease import notifications  # order confirmations
"""

from tracklease import errors
from tracklease import domain
from tracklease import discounts
from tracklease import storage
from tracklease import gateway
from tracklease import notifications
from tracklease import entitlements
from tracklease import orders
from tracklease import webhooks
from tracklease import downloads
from tracklease.errors import ErrorKind, LeaseError

__version__ = "0.1.0"

__all__ = (
    "errors",
    "domain",
    "discounts",
    "storage",
    "gateway",
    "notifications",
    "entitlements",
    "orders",
    "webhooks",
    "downloads",
    "ErrorKind",
    "LeaseError",
)
