"""
Errors — the failure vocabulary shared by every component.

Errors are values. Each fallible operation returns Result[T, LeaseError]
and callers match on `kind`:

    match await ledger.create(request):
        case Ok(created):
            ...
        case Error(LeaseError(kind=ErrorKind.DISCOUNT_EXPIRED)):
            ...
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


# ═══════════════════════════════════════════════════════════════════════════════
# Kinds
# ═══════════════════════════════════════════════════════════════════════════════

class ErrorKind(Enum):
    """Every way a fulfillment operation can fail."""

    VALIDATION = "validation_error"
    GATEWAY_AUTH = "gateway_auth_error"
    GATEWAY_ORDER = "gateway_order_error"
    SIGNATURE_VERIFICATION_FAILED = "signature_verification_failed"
    ORDER_NOT_FOUND = "order_not_found"
    ORDER_NOT_COMPLETED = "order_not_completed"
    DOWNLOAD_WINDOW_EXPIRED = "download_window_expired"
    DISCOUNT_INVALID = "discount_invalid"
    DISCOUNT_EXPIRED = "discount_expired"
    DISCOUNT_LIMIT_REACHED = "discount_limit_reached"
    MIN_ORDER_NOT_MET = "min_order_not_met"
    ENTITLEMENT_GENERATION_FAILED = "entitlement_generation_failed"
    STORAGE = "storage_error"
    NOTIFICATION = "notification_error"
    INVALID_TRANSITION = "invalid_transition"
    UNAUTHORIZED = "unauthorized"
    DATABASE = "database_error"


DISCOUNT_KINDS = frozenset({
    ErrorKind.DISCOUNT_INVALID,
    ErrorKind.DISCOUNT_EXPIRED,
    ErrorKind.DISCOUNT_LIMIT_REACHED,
    ErrorKind.MIN_ORDER_NOT_MET,
})


# ═══════════════════════════════════════════════════════════════════════════════
# Error value
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, slots=True)
class LeaseError:
    """
    A failure with a specific kind.

    transient: the operation may succeed if retried (network blips,
    gateway 5xx, rate limits). Adapters retry these with backoff before
    surfacing them.
    """

    kind: ErrorKind
    message: str
    transient: bool = False

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"

    @property
    def is_discount_error(self) -> bool:
        return self.kind in DISCOUNT_KINDS


def validation(message: str) -> LeaseError:
    return LeaseError(ErrorKind.VALIDATION, message)


def order_not_found(order_id: str) -> LeaseError:
    return LeaseError(ErrorKind.ORDER_NOT_FOUND, f"Order {order_id} not found")


def invalid_transition(order_id: str, current: str, target: str) -> LeaseError:
    return LeaseError(
        ErrorKind.INVALID_TRANSITION,
        f"Order {order_id} cannot move from {current} to {target}",
    )


def database(exc: Exception) -> LeaseError:
    return LeaseError(ErrorKind.DATABASE, f"{type(exc).__name__}: {exc}", transient=True)


def storage(message: str, *, transient: bool = False) -> LeaseError:
    return LeaseError(ErrorKind.STORAGE, message, transient=transient)


def notification(message: str, *, transient: bool = False) -> LeaseError:
    return LeaseError(ErrorKind.NOTIFICATION, message, transient=transient)


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "ErrorKind",
    "DISCOUNT_KINDS",
    "LeaseError",
    "validation",
    "order_not_found",
    "invalid_transition",
    "database",
    "storage",
    "notification",
)
