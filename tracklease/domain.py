"""
Domain — orders, items, discount codes, license documents.

All money is integer minor units (cents). Timestamps are naive UTC, the
same representation the database round-trips.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import StrEnum
from typing import assert_never


def utcnow() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


# ═══════════════════════════════════════════════════════════════════════════════
# Money
# ═══════════════════════════════════════════════════════════════════════════════

CENT = Decimal("1")


def round_cents(amount: Decimal) -> int:
    """Round a fractional cent amount half-up to whole cents."""
    return int(amount.quantize(CENT, rounding=ROUND_HALF_UP))


def to_cents(amount: Decimal | int | str) -> int:
    """Major units (49.99) -> cents (4999)."""
    return round_cents(Decimal(str(amount)) * 100)


def format_cents(cents: int) -> str:
    """Cents (4999) -> "49.99"."""
    sign = "-" if cents < 0 else ""
    whole, frac = divmod(abs(cents), 100)
    return f"{sign}{whole}.{frac:02d}"


# ═══════════════════════════════════════════════════════════════════════════════
# Order status — state machine
# ═══════════════════════════════════════════════════════════════════════════════

class OrderStatus(StrEnum):
    """
    Lifecycle:
        PENDING → COMPLETED → REFUNDED
                → FAILED
                → CANCELLED
    """

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({
        OrderStatus.COMPLETED,
        OrderStatus.FAILED,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.COMPLETED: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.FAILED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in TRANSITIONS[current]


# ═══════════════════════════════════════════════════════════════════════════════
# Item references — tagged sum
# ═══════════════════════════════════════════════════════════════════════════════

class ItemType(StrEnum):
    BEAT = "beat"
    SOUND_KIT = "sound_kit"
    SERVICE = "service"


@dataclass(frozen=True, slots=True)
class BeatLicense:
    """A license tier purchased for a beat."""

    beat_id: str
    license_tier_id: str


@dataclass(frozen=True, slots=True)
class SoundKit:
    sound_kit_id: str


@dataclass(frozen=True, slots=True)
class Service:
    service_id: str


type ItemRef = BeatLicense | SoundKit | Service


def item_type_of(ref: ItemRef) -> ItemType:
    match ref:
        case BeatLicense():
            return ItemType.BEAT
        case SoundKit():
            return ItemType.SOUND_KIT
        case Service():
            return ItemType.SERVICE
        case _:
            assert_never(ref)


def referenced_id(ref: ItemRef) -> str:
    match ref:
        case BeatLicense(beat_id=beat_id):
            return beat_id
        case SoundKit(sound_kit_id=kit_id):
            return kit_id
        case Service(service_id=service_id):
            return service_id
        case _:
            assert_never(ref)


def ref_from_columns(
    item_type: str,
    referenced_item_id: str,
    license_tier_id: str | None,
) -> ItemRef:
    """Rebuild the tagged reference from its stored columns."""
    match ItemType(item_type):
        case ItemType.BEAT:
            if license_tier_id is None:
                raise ValueError(f"Beat item {referenced_item_id} has no license tier")
            return BeatLicense(referenced_item_id, license_tier_id)
        case ItemType.SOUND_KIT:
            return SoundKit(referenced_item_id)
        case ItemType.SERVICE:
            return Service(referenced_item_id)


# ═══════════════════════════════════════════════════════════════════════════════
# Orders
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, slots=True)
class OrderItem:
    id: str
    order_id: str
    ref: ItemRef
    title: str
    license_name: str
    license_type: str | None
    unit_price_cents: int
    download_count: int = 0

    @property
    def item_type(self) -> ItemType:
        return item_type_of(self.ref)


@dataclass(frozen=True, slots=True)
class Order:
    id: str
    customer_email: str
    customer_name: str | None
    status: OrderStatus
    subtotal_cents: int
    discount_cents: int
    total_cents: int
    currency: str
    gateway_order_id: str | None
    gateway_capture_id: str | None
    discount_code: str | None
    failure_reason: str | None
    download_expires_at: datetime
    created_at: datetime
    updated_at: datetime
    items: tuple[OrderItem, ...] = ()

    def owned_by(self, email: str) -> bool:
        return self.customer_email.strip().lower() == email.strip().lower()


@dataclass(frozen=True, slots=True)
class CheckoutRequest:
    """What the client may send. Prices are deliberately absent."""

    items: tuple[ItemRef, ...]
    customer_email: str
    customer_name: str | None = None
    discount_code: str | None = None


@dataclass(frozen=True, slots=True)
class PricedLine:
    """A cart line priced from the catalog."""

    ref: ItemRef
    title: str
    license_name: str
    license_type: str | None
    unit_price_cents: int


@dataclass(frozen=True, slots=True)
class CreatedOrder:
    order_id: str
    approval_url: str
    gateway_order_id: str


@dataclass(frozen=True, slots=True)
class CaptureOutcome:
    order_id: str
    capture_id: str
    already_completed: bool


# ═══════════════════════════════════════════════════════════════════════════════
# Discounts
# ═══════════════════════════════════════════════════════════════════════════════

class DiscountKind(StrEnum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


@dataclass(frozen=True, slots=True)
class DiscountCode:
    """
    value: percent points for PERCENTAGE, major currency units for FIXED.
    max_uses: None means unlimited.
    """

    code: str
    kind: DiscountKind
    value: Decimal
    min_order_cents: int = 0
    max_uses: int | None = None
    current_uses: int = 0
    is_active: bool = True
    starts_at: datetime | None = None
    expires_at: datetime | None = None

    def discount_for(self, subtotal_cents: int) -> int:
        """Discount in cents, never more than the subtotal."""
        match self.kind:
            case DiscountKind.PERCENTAGE:
                amount = round_cents(Decimal(subtotal_cents) * self.value / 100)
            case DiscountKind.FIXED:
                amount = to_cents(self.value)
        return max(0, min(amount, subtotal_cents))


def normalize_code(code: str) -> str:
    return code.strip().upper()


# ═══════════════════════════════════════════════════════════════════════════════
# License documents
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, slots=True)
class LicenseTemplate:
    license_type: str
    storage_path: str | None
    is_active: bool = True


@dataclass(frozen=True, slots=True)
class GeneratedLicenseDocument:
    order_id: str
    order_item_id: str
    storage_path: str
    generated_at: datetime = field(default_factory=utcnow)


def license_document_path(order_id: str, order_item_id: str) -> str:
    """Deterministic storage path, one per (order, item)."""
    return f"generated/{order_id}/{order_item_id}_License.pdf"


__all__ = (
    "utcnow",
    "round_cents",
    "to_cents",
    "format_cents",
    "OrderStatus",
    "TRANSITIONS",
    "can_transition",
    "ItemType",
    "BeatLicense",
    "SoundKit",
    "Service",
    "ItemRef",
    "item_type_of",
    "referenced_id",
    "ref_from_columns",
    "OrderItem",
    "Order",
    "CheckoutRequest",
    "PricedLine",
    "CreatedOrder",
    "CaptureOutcome",
    "DiscountKind",
    "DiscountCode",
    "normalize_code",
    "LicenseTemplate",
    "GeneratedLicenseDocument",
    "license_document_path",
)
