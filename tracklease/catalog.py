"""
Catalog — the authoritative price source.

Checkout never trusts a client-supplied price: every line is re-priced by id
from the catalog tables at order creation time.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol, assert_never

from combinators import lift as L
from kungfu import Error, Ok, Result
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tracklease import errors
from tracklease.db import BeatTable, LicenseTierTable, ServiceTable, SoundKitTable
from tracklease.domain import BeatLicense, ItemRef, PricedLine, Service, SoundKit
from tracklease.errors import LeaseError


# ═══════════════════════════════════════════════════════════════════════════════
# Catalog views
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, slots=True)
class BeatFiles:
    beat_id: str
    title: str
    bpm: int | None
    genre: str | None
    mp3_path: str | None
    wav_path: str | None
    stems_path: str | None


@dataclass(frozen=True, slots=True)
class TierInfo:
    tier_id: str
    beat_id: str
    name: str
    license_type: str
    price_cents: int
    license_pdf_path: str | None


# ═══════════════════════════════════════════════════════════════════════════════
# Protocol
# ═══════════════════════════════════════════════════════════════════════════════

class PriceSource(Protocol):
    """Prices cart lines from authoritative data."""

    async def price(self, refs: Sequence[ItemRef]) -> Result[list[PricedLine], LeaseError]: ...


# ═══════════════════════════════════════════════════════════════════════════════
# SQL catalog
# ═══════════════════════════════════════════════════════════════════════════════

class SqlCatalog:
    """Catalog backed by the beats / license_tiers / sound_kits / services tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = session_factory

    async def price(self, refs: Sequence[ItemRef]) -> Result[list[PricedLine], LeaseError]:
        loaded = await L.catching_async(
            lambda: self._load(refs),
            on_error=errors.database,
        )
        match loaded:
            case Error(e):
                return Error(e)
            case Ok(tables):
                beats, tiers, kits, services = tables

        lines: list[PricedLine] = []
        for ref in refs:
            match ref:
                case BeatLicense(beat_id=beat_id, license_tier_id=tier_id):
                    beat = beats.get(beat_id)
                    tier = tiers.get(tier_id)
                    if beat is None or not beat.is_active:
                        return Error(errors.validation(f"Beat {beat_id} is not available"))
                    if tier is None or not tier.is_active or tier.beat_id != beat_id:
                        return Error(errors.validation(
                            f"License tier {tier_id} is not offered for beat {beat_id}"
                        ))
                    lines.append(PricedLine(
                        ref=ref,
                        title=beat.title,
                        license_name=tier.name,
                        license_type=tier.type,
                        unit_price_cents=tier.price_cents,
                    ))
                case SoundKit(sound_kit_id=kit_id):
                    kit = kits.get(kit_id)
                    if kit is None or not kit.is_active:
                        return Error(errors.validation(f"Sound kit {kit_id} is not available"))
                    lines.append(PricedLine(
                        ref=ref,
                        title=kit.title,
                        license_name="Sound Kit License",
                        license_type="sound_kit",
                        unit_price_cents=kit.price_cents,
                    ))
                case Service(service_id=service_id):
                    service = services.get(service_id)
                    if service is None or not service.is_active:
                        return Error(errors.validation(f"Service {service_id} is not available"))
                    lines.append(PricedLine(
                        ref=ref,
                        title=service.title,
                        license_name="Service",
                        license_type=None,
                        unit_price_cents=service.price_cents,
                    ))
                case _:
                    assert_never(ref)

        return Ok(lines)

    async def _load(
        self, refs: Sequence[ItemRef],
    ) -> tuple[
        dict[str, BeatTable],
        dict[str, LicenseTierTable],
        dict[str, SoundKitTable],
        dict[str, ServiceTable],
    ]:
        beat_ids = {r.beat_id for r in refs if isinstance(r, BeatLicense)}
        tier_ids = {r.license_tier_id for r in refs if isinstance(r, BeatLicense)}
        kit_ids = {r.sound_kit_id for r in refs if isinstance(r, SoundKit)}
        service_ids = {r.service_id for r in refs if isinstance(r, Service)}

        async with self._sessions() as session:
            beats = await _by_id(session, BeatTable, beat_ids)
            tiers = await _by_id(session, LicenseTierTable, tier_ids)
            kits = await _by_id(session, SoundKitTable, kit_ids)
            services = await _by_id(session, ServiceTable, service_ids)

        return beats, tiers, kits, services

    # ───────────────────────────────────────────────────────────────────────
    # Read views used by fulfillment
    # ───────────────────────────────────────────────────────────────────────

    async def beat_files(self, beat_ids: set[str]) -> dict[str, BeatFiles]:
        async with self._sessions() as session:
            rows = await _by_id(session, BeatTable, beat_ids)
        return {
            row.id: BeatFiles(
                beat_id=row.id,
                title=row.title,
                bpm=row.bpm,
                genre=row.genre,
                mp3_path=row.mp3_file_path,
                wav_path=row.wav_file_path,
                stems_path=row.stems_file_path,
            )
            for row in rows.values()
        }

    async def tiers(self, tier_ids: set[str]) -> dict[str, TierInfo]:
        async with self._sessions() as session:
            rows = await _by_id(session, LicenseTierTable, tier_ids)
        return {
            row.id: TierInfo(
                tier_id=row.id,
                beat_id=row.beat_id,
                name=row.name,
                license_type=row.type,
                price_cents=row.price_cents,
                license_pdf_path=row.license_pdf_path,
            )
            for row in rows.values()
        }

    async def sound_kit_files(self, kit_ids: set[str]) -> dict[str, str | None]:
        async with self._sessions() as session:
            rows = await _by_id(session, SoundKitTable, kit_ids)
        return {row.id: row.file_path for row in rows.values()}


async def _by_id[M: (BeatTable, LicenseTierTable, SoundKitTable, ServiceTable)](
    session: AsyncSession,
    model: type[M],
    ids: set[str],
) -> dict[str, M]:
    if not ids:
        return {}
    rows = (await session.execute(select(model).where(model.id.in_(ids)))).scalars()
    return {row.id: row for row in rows}


__all__ = ("BeatFiles", "TierInfo", "PriceSource", "SqlCatalog")
