"""
Entitlement generator — one license document per purchased item.

Writes are idempotent by (order_id, order_item_id): the storage path is
derived from the key and the index row is upserted, so regenerating
overwrites instead of duplicating. Items are processed with bounded
concurrency and fail independently; the order's completed status is never
touched from here.
"""

import asyncio
from collections.abc import Callable, Collection
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from combinators import batch_all
from combinators import lift as L
from kungfu import Error, LazyCoroResult, Ok, Result
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tracklease import errors
from tracklease.catalog import BeatFiles, SqlCatalog
from tracklease.db import GeneratedLicenseTable, LicenseTemplateTable
from tracklease.domain import (
    BeatLicense,
    GeneratedLicenseDocument,
    ItemType,
    LicenseTemplate,
    Order,
    OrderItem,
    OrderStatus,
    format_cents,
    license_document_path,
    utcnow,
)
from tracklease.entitlements._render import (
    BUILTIN_TEMPLATE,
    EMAIL_LIMIT,
    NAME_LIMIT,
    TITLE_LIMIT,
    clean_text,
    render_html,
    render_pdf,
)
from tracklease.entitlements._rights import rights_for
from tracklease.errors import ErrorKind, LeaseError
from tracklease.log import get_logger
from tracklease.repo import conflict_insert, load_order
from tracklease.storage import LICENSES_BUCKET, BlobStorage

log = get_logger("entitlement_generator")


# ═══════════════════════════════════════════════════════════════════════════════
# Report
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, slots=True)
class ItemFailure:
    order_item_id: str
    error: LeaseError


@dataclass(frozen=True, slots=True)
class EntitlementReport:
    order_id: str
    generated: tuple[GeneratedLicenseDocument, ...]
    failed: tuple[ItemFailure, ...]
    skipped: tuple[str, ...]
    order: Order | None = None

    @property
    def complete(self) -> bool:
        return not self.failed


def _generation_failed(item: OrderItem, message: str) -> LeaseError:
    return LeaseError(
        ErrorKind.ENTITLEMENT_GENERATION_FAILED,
        f"Item {item.id}: {message}",
    )


# ═══════════════════════════════════════════════════════════════════════════════
# Document context
# ═══════════════════════════════════════════════════════════════════════════════

def build_context(
    order: Order,
    item: OrderItem,
    beat: BeatFiles | None,
    licensor_name: str,
    generated_at: datetime,
) -> dict[str, Any]:
    """Everything a template may interpolate, sanitized."""
    rights = rights_for(item.license_type)
    email = clean_text(order.customer_email, EMAIL_LIMIT)
    return {
        "document_title": (
            "SOUND KIT LICENSE AGREEMENT" if item.item_type is ItemType.SOUND_KIT
            else "BEAT LICENSE AGREEMENT"
        ),
        "licensor": clean_text(licensor_name, NAME_LIMIT),
        "licensee_name": clean_text(order.customer_name, NAME_LIMIT) or email,
        "licensee_email": email,
        "title": clean_text(item.title, TITLE_LIMIT),
        "bpm": beat.bpm if beat is not None else None,
        "genre": clean_text(beat.genre, NAME_LIMIT) if beat is not None else "",
        "license_name": clean_text(item.license_name, NAME_LIMIT),
        "license_type": item.license_type or "standard",
        "price": f"{format_cents(item.unit_price_cents)} {order.currency}",
        "order_id": order.id,
        "order_item_id": item.id,
        "effective_date": order.updated_at.date().isoformat(),
        "generated_at": generated_at.isoformat(timespec="seconds"),
        "rights": rights,
        "rights_granted": rights.granted(),
    }


# ═══════════════════════════════════════════════════════════════════════════════
# Generator
# ═══════════════════════════════════════════════════════════════════════════════

class EntitlementGenerator:
    """
    Produces license documents for completed orders.

    Example:
        match await generator.generate_for_order(order_id):
            case Ok(report) if not report.complete:
                alert_operators(report.failed)
            case Ok(report):
                ...
            case Error(e):
                ...  # order missing or not completed
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        storage: BlobStorage,
        catalog: SqlCatalog,
        *,
        licensor_name: str = "Producer",
        concurrency: int = 4,
        renderer: Callable[[str], bytes] = render_pdf,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._sessions = session_factory
        self._storage = storage
        self._catalog = catalog
        self._licensor = licensor_name
        self._concurrency = concurrency
        self._renderer = renderer
        self._clock = clock

    async def generate_for_order(self, order_id: str) -> Result[EntitlementReport, LeaseError]:
        return await self._generate(order_id, None)

    async def regenerate(
        self, order_id: str, order_item_id: str | None = None,
    ) -> Result[EntitlementReport, LeaseError]:
        """Operator entry point: rebuild one item's document, or all of them."""
        return await self._generate(order_id, order_item_id)

    async def index(self, order_ids: Collection[str]) -> dict[str, dict[str, str]]:
        """Generated document paths for many orders in one query: order -> item -> path."""
        if not order_ids:
            return {}
        async with self._sessions() as session:
            rows = (
                await session.execute(
                    select(GeneratedLicenseTable)
                    .where(GeneratedLicenseTable.order_id.in_(list(order_ids)))
                )
            ).scalars()
            found: dict[str, dict[str, str]] = {}
            for row in rows:
                found.setdefault(row.order_id, {})[row.order_item_id] = row.storage_path
            return found

    # ───────────────────────────────────────────────────────────────────────
    # Per order
    # ───────────────────────────────────────────────────────────────────────

    async def _generate(
        self, order_id: str, only_item: str | None,
    ) -> Result[EntitlementReport, LeaseError]:
        async with self._sessions() as session:
            order = await load_order(session, order_id)

        if order is None:
            return Error(errors.order_not_found(order_id))
        if order.status is not OrderStatus.COMPLETED:
            return Error(LeaseError(
                ErrorKind.ORDER_NOT_COMPLETED,
                f"Order {order_id} is {order.status.value}; licenses are issued for completed orders",
            ))

        items = [i for i in order.items if only_item is None or i.id == only_item]
        if only_item is not None and not items:
            return Error(errors.validation(f"Item {only_item} is not part of order {order_id}"))

        licensable = [i for i in items if i.item_type is not ItemType.SERVICE]
        skipped = tuple(i.id for i in items if i.item_type is ItemType.SERVICE)

        beats = await self._catalog.beat_files({
            i.ref.beat_id for i in licensable if isinstance(i.ref, BeatLicense)
        })
        templates = await self._active_templates()

        results = (
            await batch_all(
                licensable,
                lambda item: self._guarded(order, item, beats, templates),
                concurrency=self._concurrency,
            )
        ).unwrap()

        generated: list[GeneratedLicenseDocument] = []
        failed: list[ItemFailure] = []
        for item, result in zip(licensable, results, strict=True):
            match result:
                case Ok(doc):
                    generated.append(doc)
                case Error(e):
                    log.error(
                        "entitlement.generation_failed",
                        order_id=order.id,
                        order_item_id=item.id,
                        error=str(e),
                    )
                    failed.append(ItemFailure(item.id, e))

        log.info(
            "entitlement.order_processed",
            order_id=order.id,
            generated=len(generated),
            failed=len(failed),
            skipped=len(skipped),
        )
        return Ok(EntitlementReport(
            order_id=order.id,
            generated=tuple(generated),
            failed=tuple(failed),
            skipped=skipped,
            order=order,
        ))

    async def _active_templates(self) -> dict[str, LicenseTemplate]:
        async with self._sessions() as session:
            rows = (
                await session.execute(
                    select(LicenseTemplateTable)
                    .where(
                        LicenseTemplateTable.is_active.is_(True),
                        LicenseTemplateTable.storage_path.is_not(None),
                    )
                    .order_by(LicenseTemplateTable.created_at, LicenseTemplateTable.id)
                )
            ).scalars()
            # newest upload per type wins
            return {
                row.license_type: LicenseTemplate(row.license_type, row.storage_path, row.is_active)
                for row in rows
            }

    # ───────────────────────────────────────────────────────────────────────
    # Per item
    # ───────────────────────────────────────────────────────────────────────

    def _guarded(
        self,
        order: Order,
        item: OrderItem,
        beats: dict[str, BeatFiles],
        templates: dict[str, LicenseTemplate],
    ) -> LazyCoroResult[GeneratedLicenseDocument, LeaseError]:
        """generate_item with unexpected exceptions turned into per-item failures."""
        beat = beats.get(item.ref.beat_id) if isinstance(item.ref, BeatLicense) else None
        template = templates.get(item.license_type or "")

        async def run() -> Result[GeneratedLicenseDocument, LeaseError]:
            outcome = await L.catching_async(
                lambda: self.generate_item(order, item, beat, template),
                on_error=lambda exc: _generation_failed(item, f"{type(exc).__name__}: {exc}"),
            )
            return outcome.then(lambda inner: inner)

        return LazyCoroResult(run)

    async def generate_item(
        self,
        order: Order,
        item: OrderItem,
        beat: BeatFiles | None,
        template: LicenseTemplate | None,
    ) -> Result[GeneratedLicenseDocument, LeaseError]:
        source = BUILTIN_TEMPLATE
        if template is not None and template.storage_path:
            downloaded = await self._storage.download(LICENSES_BUCKET, template.storage_path)
            match downloaded:
                case Error(e):
                    return Error(e)
                case Ok(raw):
                    source = raw.decode("utf-8")

        now = self._clock()
        context = build_context(order, item, beat, self._licensor, now)
        html = await L.catching(
            lambda: render_html(source, context),
            on_error=lambda exc: _generation_failed(item, f"template error: {exc}"),
        )
        if isinstance(html, Error):
            return Error(html.error)

        pdf = await L.catching_async(
            lambda: asyncio.to_thread(self._renderer, html.value),
            on_error=lambda exc: _generation_failed(item, f"render error: {exc}"),
        )
        if isinstance(pdf, Error):
            return Error(pdf.error)

        path = license_document_path(order.id, item.id)
        uploaded = await self._storage.upload(
            LICENSES_BUCKET, path, pdf.value, content_type="application/pdf", upsert=True,
        )
        if isinstance(uploaded, Error):
            return Error(uploaded.error)

        document = GeneratedLicenseDocument(
            order_id=order.id,
            order_item_id=item.id,
            storage_path=path,
            generated_at=now,
        )
        await self._record(document)
        log.info(
            "entitlement.generated",
            order_id=order.id,
            order_item_id=item.id,
            template="uploaded" if source is not BUILTIN_TEMPLATE else "builtin",
        )
        return Ok(document)

    async def _record(self, document: GeneratedLicenseDocument) -> None:
        async with self._sessions() as session, session.begin():
            stmt = conflict_insert(session, GeneratedLicenseTable).values(
                order_id=document.order_id,
                order_item_id=document.order_item_id,
                storage_path=document.storage_path,
                generated_at=document.generated_at,
            )
            await session.execute(stmt.on_conflict_do_update(
                index_elements=["order_id", "order_item_id"],
                set_={
                    "storage_path": stmt.excluded.storage_path,
                    "generated_at": stmt.excluded.generated_at,
                },
            ))


__all__ = (
    "ItemFailure",
    "EntitlementReport",
    "EntitlementGenerator",
    "build_context",
)
