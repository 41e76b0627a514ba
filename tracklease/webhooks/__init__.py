"""
Webhooks — verified, durable, idempotent gateway notifications.

    from tracklease.webhooks import WebhookReconciler

    reconciler = WebhookReconciler(session_factory, gateway, ledger)
    match await reconciler.handle(request.headers, await request.body()):
        case Ok(ack):
            ...  # 200, including duplicates and ignored events
        case Error(e):
            ...  # 400 / 401 / 500 by e.kind

    replayer = WebhookReplayer(reconciler, interval_seconds=30)
    replayer.start()  # retries events whose processing failed
"""

from tracklease.webhooks._events import CATEGORIES, EventCategory, GatewayEvent, parse_event
from tracklease.webhooks._reconciler import WebhookAck, WebhookReconciler, WebhookStatus
from tracklease.webhooks._replayer import WebhookReplayer

__all__ = (
    "WebhookReconciler",
    "WebhookReplayer",
    "WebhookAck",
    "WebhookStatus",
    "EventCategory",
    "CATEGORIES",
    "GatewayEvent",
    "parse_event",
)
