"""
Shared test data: catalog, discount codes, stored assets, gateway events.
"""

from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tracklease.db import (
    BeatTable,
    DiscountCodeTable,
    LicenseTierTable,
    ServiceTable,
    SoundKitTable,
)
from tracklease.domain import CreatedOrder
from tracklease.storage import BEATS_BUCKET, LICENSES_BUCKET, SOUNDKITS_BUCKET, MemoryStorage

START = datetime(2026, 1, 15, 12, 0, 0)

BEAT = "beat-1"
OTHER_BEAT = "beat-2"
RETIRED_BEAT = "beat-off"
TIER_MP3 = "tier-mp3"
TIER_WAV = "tier-wav"
TIER_STEMS = "tier-stems"
TIER_EXCLUSIVE = "tier-exclusive"
TIER_OTHER = "tier-other"
TIER_RETIRED = "tier-off"
KIT = "kit-1"
SERVICE = "svc-1"

EMAIL = "fan@example.com"

MP3_PATH = "beat-1/midnight_drive.mp3"
WAV_PATH = "beat-1/midnight_drive.wav"
STEMS_PATH = "beat-1/midnight_drive_stems.zip"
KIT_PATH = "kits/drum_kit_vol1.zip"
STATIC_WAV_LICENSE = "static/wav_lease.pdf"

type Checkout = Callable[..., Awaitable[CreatedOrder]]


class Clock:
    """Settable clock injected wherever `utcnow` would be used."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now += timedelta(**delta)


def fake_render(html: str) -> bytes:
    return b"%PDF-FAKE\n" + html.encode("utf-8")


async def seed_catalog(sessions: async_sessionmaker[AsyncSession], clock: Clock) -> None:
    async with sessions() as session, session.begin():
        session.add_all([
            BeatTable(
                id=BEAT,
                title="Midnight Drive",
                bpm=140,
                genre="Trap",
                mp3_file_path=MP3_PATH,
                wav_file_path=WAV_PATH,
                stems_file_path=STEMS_PATH,
                is_active=True,
            ),
            BeatTable(id=OTHER_BEAT, title="Sunrise", bpm=90, genre="Lo-fi", is_active=True),
            BeatTable(id=RETIRED_BEAT, title="Old Tape", is_active=False),
        ])
        await session.flush()
        session.add_all([
            LicenseTierTable(id=TIER_MP3, beat_id=BEAT, name="MP3 Lease", type="mp3", price_cents=2999),
            LicenseTierTable(
                id=TIER_WAV,
                beat_id=BEAT,
                name="WAV Lease",
                type="wav",
                price_cents=4999,
                license_pdf_path=STATIC_WAV_LICENSE,
            ),
            LicenseTierTable(id=TIER_STEMS, beat_id=BEAT, name="Trackout", type="stems", price_cents=9999),
            LicenseTierTable(
                id=TIER_EXCLUSIVE, beat_id=BEAT, name="Exclusive", type="exclusive", price_cents=49999,
            ),
            LicenseTierTable(id=TIER_OTHER, beat_id=OTHER_BEAT, name="MP3 Lease", type="mp3", price_cents=1999),
            LicenseTierTable(
                id=TIER_RETIRED, beat_id=RETIRED_BEAT, name="MP3 Lease", type="mp3", price_cents=999,
            ),
            SoundKitTable(id=KIT, title="Drum Kit Vol. 1", price_cents=1999, file_path=KIT_PATH),
            ServiceTable(id=SERVICE, title="Mixing & Mastering", price_cents=15000),
        ])
        session.add_all([
            DiscountCodeTable(
                code="SAVE10", discount_type="percentage", discount_value=Decimal("10"), max_uses=100,
            ),
            DiscountCodeTable(code="FIVE", discount_type="fixed", discount_value=Decimal("5.00")),
            DiscountCodeTable(
                code="ONCE", discount_type="percentage", discount_value=Decimal("50"), max_uses=1,
            ),
            DiscountCodeTable(
                code="RACE3", discount_type="percentage", discount_value=Decimal("20"), max_uses=3,
            ),
            DiscountCodeTable(
                code="EXPIRED",
                discount_type="percentage",
                discount_value=Decimal("10"),
                expires_at=clock.now - timedelta(days=1),
            ),
            DiscountCodeTable(
                code="SOON",
                discount_type="percentage",
                discount_value=Decimal("10"),
                starts_at=clock.now + timedelta(days=1),
            ),
            DiscountCodeTable(
                code="BIG", discount_type="fixed", discount_value=Decimal("20"), min_order_cents=10000,
            ),
            DiscountCodeTable(
                code="OFF", discount_type="percentage", discount_value=Decimal("10"), is_active=False,
            ),
            DiscountCodeTable(code="FREE", discount_type="percentage", discount_value=Decimal("100")),
        ])


async def seed_assets(storage: MemoryStorage) -> None:
    await storage.upload(BEATS_BUCKET, MP3_PATH, b"ID3-mp3", content_type="audio/mpeg")
    await storage.upload(BEATS_BUCKET, WAV_PATH, b"RIFF-wav", content_type="audio/wav")
    await storage.upload(BEATS_BUCKET, STEMS_PATH, b"PK-stems", content_type="application/zip")
    await storage.upload(SOUNDKITS_BUCKET, KIT_PATH, b"PK-kit", content_type="application/zip")
    await storage.upload(LICENSES_BUCKET, STATIC_WAV_LICENSE, b"%PDF-static", content_type="application/pdf")


# ═══════════════════════════════════════════════════════════════════════════════
# Gateway events
# ═══════════════════════════════════════════════════════════════════════════════

def capture_event(
    event_id: str,
    gateway_order_id: str | None,
    capture_id: str,
    event_type: str = "PAYMENT.CAPTURE.COMPLETED",
) -> dict[str, Any]:
    resource: dict[str, Any] = {"id": capture_id, "status": "COMPLETED"}
    if gateway_order_id is not None:
        resource["supplementary_data"] = {"related_ids": {"order_id": gateway_order_id}}
    return {"id": event_id, "event_type": event_type, "resource": resource}


def refund_event(event_id: str, capture_id: str) -> dict[str, Any]:
    return {
        "id": event_id,
        "event_type": "PAYMENT.CAPTURE.REFUNDED",
        "resource": {
            "id": f"REF-{capture_id}",
            "status": "COMPLETED",
            "links": [
                {"rel": "self", "href": f"https://api.paypal.com/v2/payments/refunds/REF-{capture_id}"},
                {"rel": "up", "href": f"https://api.paypal.com/v2/payments/captures/{capture_id}"},
            ],
        },
    }
