"""
Gateway event parsing.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from kungfu import Error, Ok, Result

from tracklease import errors
from tracklease.errors import LeaseError


class EventCategory(StrEnum):
    CAPTURE_COMPLETED = "capture_completed"
    CAPTURE_DENIED = "capture_denied"
    CAPTURE_REFUNDED = "capture_refunded"
    IGNORED = "ignored"


CATEGORIES: dict[str, EventCategory] = {
    "PAYMENT.CAPTURE.COMPLETED": EventCategory.CAPTURE_COMPLETED,
    "PAYMENT.CAPTURE.DENIED": EventCategory.CAPTURE_DENIED,
    "PAYMENT.CAPTURE.DECLINED": EventCategory.CAPTURE_DENIED,
    "PAYMENT.CAPTURE.REFUNDED": EventCategory.CAPTURE_REFUNDED,
}


@dataclass(frozen=True, slots=True)
class GatewayEvent:
    event_id: str
    event_type: str
    category: EventCategory
    resource_id: str | None
    gateway_order_id: str | None
    capture_id: str | None


def _dig(data: Any, *path: str) -> Any:
    for key in path:
        if not isinstance(data, Mapping):
            return None
        data = data.get(key)
    return data


def _capture_from_links(resource: Mapping[str, Any]) -> str | None:
    """Refund resources point at their capture through the rel=up link."""
    for link in resource.get("links", []) or []:
        if not isinstance(link, Mapping):
            continue
        href = str(link.get("href", ""))
        if link.get("rel") == "up" and "/captures/" in href:
            return href.rstrip("/").rsplit("/", 1)[-1]
    return None


def parse_event(payload: Mapping[str, Any]) -> Result[GatewayEvent, LeaseError]:
    event_id = payload.get("id")
    event_type = payload.get("event_type")
    if not isinstance(event_id, str) or not event_id or not isinstance(event_type, str):
        return Error(errors.validation("Webhook event has no id or event_type"))

    resource = payload.get("resource")
    if not isinstance(resource, Mapping):
        resource = {}

    category = CATEGORIES.get(event_type, EventCategory.IGNORED)
    resource_id = resource.get("id") if isinstance(resource.get("id"), str) else None
    gateway_order_id = _dig(resource, "supplementary_data", "related_ids", "order_id")

    match category:
        case EventCategory.CAPTURE_REFUNDED:
            capture_id = _capture_from_links(resource)
        case EventCategory.IGNORED:
            capture_id = None
        case _:
            capture_id = resource_id

    return Ok(GatewayEvent(
        event_id=event_id,
        event_type=event_type,
        category=category,
        resource_id=resource_id,
        gateway_order_id=gateway_order_id if isinstance(gateway_order_id, str) else None,
        capture_id=capture_id,
    ))


__all__ = ("EventCategory", "CATEGORIES", "GatewayEvent", "parse_event")
