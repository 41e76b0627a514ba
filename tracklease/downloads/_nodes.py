"""
Download graph — access check, then asset and license lookups in parallel.

    DownloadRequest ─┐
    BrokerContext  ──┼─→ OrderAccessNode ─┬─→ AssetPathsNode ──┐
                     │                    └─→ LicenseIndexNode ─┼─→ DownloadBundleNode
                     └──────────────────────────────────────────┘

Nodes carry Result values; a failed access check short-circuits the
lookups below it without raising.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

from combinators import lift as L
from kungfu import Error, Ok, Result
from nodnod import scalar_node
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tracklease import errors
from tracklease.catalog import BeatFiles, SqlCatalog, TierInfo
from tracklease.domain import BeatLicense, Order, OrderItem, OrderStatus, SoundKit
from tracklease.downloads._types import (
    DownloadBundle,
    DownloadFile,
    DownloadItem,
    file_label,
    file_name,
)
from tracklease.entitlements import EntitlementGenerator
from tracklease.errors import ErrorKind, LeaseError
from tracklease.log import get_logger
from tracklease.repo import load_order
from tracklease.storage import (
    BEATS_BUCKET,
    LICENSES_BUCKET,
    SOUNDKITS_BUCKET,
    BlobStorage,
)

log = get_logger("download_broker")

# license type -> audio deliverables, best first
DELIVERABLES: dict[str, tuple[str, ...]] = {
    "exclusive": ("stems", "wav", "mp3"),
    "stems": ("stems", "wav", "mp3"),
    "wav": ("wav", "mp3"),
    "mp3": ("mp3",),
}


# ═══════════════════════════════════════════════════════════════════════════════
# Injections
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, slots=True)
class DownloadRequest:
    order_id: str
    requester_email: str
    authenticated_email: str | None
    now: datetime


@dataclass(frozen=True, slots=True)
class BrokerContext:
    sessions: async_sessionmaker[AsyncSession]
    storage: BlobStorage
    catalog: SqlCatalog
    documents: EntitlementGenerator
    ttl_seconds: int


@dataclass(frozen=True, slots=True)
class AssetPaths:
    beats: dict[str, BeatFiles]
    tiers: dict[str, TierInfo]
    sound_kits: dict[str, str | None]


MIN_SIGNED_TTL = timedelta(seconds=1)


def check_access(order: Order | None, request: DownloadRequest) -> Result[Order, LeaseError]:
    # Missing order and wrong email look the same to the caller.
    if order is None or not order.owned_by(request.requester_email):
        return Error(errors.order_not_found(request.order_id))
    if order.status is not OrderStatus.COMPLETED:
        return Error(LeaseError(
            ErrorKind.ORDER_NOT_COMPLETED,
            f"Order {order.id} is {order.status.value}; downloads require a completed order",
        ))
    # under a second left cannot be signed without outliving the window
    if order.download_expires_at - request.now < MIN_SIGNED_TTL:
        return Error(LeaseError(
            ErrorKind.DOWNLOAD_WINDOW_EXPIRED,
            f"Download window for order {order.id} closed at {order.download_expires_at.isoformat()}",
        ))
    return Ok(order)


# ═══════════════════════════════════════════════════════════════════════════════
# Nodes
# ═══════════════════════════════════════════════════════════════════════════════

@scalar_node
class OrderAccessNode:
    def __init__(self, result: Result[Order, LeaseError]) -> None:
        self.result = result

    @classmethod
    async def __compose__(cls, request: DownloadRequest, ctx: BrokerContext) -> "OrderAccessNode":
        if not request.order_id.strip() or not request.requester_email.strip():
            return cls(Error(errors.validation("order_id and customer email are required")))

        authenticated = request.authenticated_email
        if authenticated and authenticated.strip().lower() != request.requester_email.strip().lower():
            log.warning("download.email_mismatch", order_id=request.order_id)
            return cls(Error(LeaseError(ErrorKind.UNAUTHORIZED, "Authenticated user does not own this order")))

        async def load() -> Order | None:
            async with ctx.sessions() as session:
                return await load_order(session, request.order_id)

        loaded = await L.catching_async(load, on_error=errors.database)
        return cls(loaded.then(lambda order: check_access(order, request)))


@scalar_node
class AssetPathsNode:
    """Storage paths for every beat, tier and sound kit on the order."""

    def __init__(self, result: Result[AssetPaths, LeaseError]) -> None:
        self.result = result

    @classmethod
    async def __compose__(cls, access: OrderAccessNode, ctx: BrokerContext) -> "AssetPathsNode":
        match access.result:
            case Error(e):
                return cls(Error(e))
            case Ok(order):
                pass

        refs = [item.ref for item in order.items]
        beat_ids = {r.beat_id for r in refs if isinstance(r, BeatLicense)}
        tier_ids = {r.license_tier_id for r in refs if isinstance(r, BeatLicense)}
        kit_ids = {r.sound_kit_id for r in refs if isinstance(r, SoundKit)}

        async def load() -> AssetPaths:
            return AssetPaths(
                beats=await ctx.catalog.beat_files(beat_ids),
                tiers=await ctx.catalog.tiers(tier_ids),
                sound_kits=await ctx.catalog.sound_kit_files(kit_ids),
            )

        return cls(await L.catching_async(load, on_error=errors.database))


@scalar_node
class LicenseIndexNode:
    """Generated license documents for the order: item id -> path."""

    def __init__(self, result: Result[dict[str, str], LeaseError]) -> None:
        self.result = result

    @classmethod
    async def __compose__(cls, access: OrderAccessNode, ctx: BrokerContext) -> "LicenseIndexNode":
        match access.result:
            case Error(e):
                return cls(Error(e))
            case Ok(order):
                pass

        indexed = await L.catching_async(
            lambda: ctx.documents.index([order.id]),
            on_error=errors.database,
        )
        return cls(indexed.map(lambda found: found.get(order.id, {})))


@scalar_node
class DownloadBundleNode:
    def __init__(self, result: Result[DownloadBundle, LeaseError]) -> None:
        self.result = result

    @classmethod
    async def __compose__(
        cls,
        request: DownloadRequest,
        ctx: BrokerContext,
        access: OrderAccessNode,
        assets: AssetPathsNode,
        licenses: LicenseIndexNode,
    ) -> "DownloadBundleNode":
        match (access.result, assets.result, licenses.result):
            case (Ok(order), Ok(paths), Ok(documents)):
                pass
            case (Error(e), _, _) | (_, Error(e), _) | (_, _, Error(e)):
                return cls(Error(e))

        # signed URLs never outlive the download window
        remaining = int((order.download_expires_at - request.now).total_seconds())
        signer = _Signer(ctx.storage, min(ctx.ttl_seconds, remaining), order.id)

        items: list[DownloadItem] = []
        for item in order.items:
            match item.ref:
                case BeatLicense() as ref:
                    built = await _beat_item(signer, item, ref, paths, documents)
                case SoundKit() as ref:
                    built = await _sound_kit_item(signer, item, ref, paths, documents)
                case _:
                    built = None
            if built is not None:
                items.append(built)

        return cls(Ok(DownloadBundle(
            order_id=order.id,
            customer_email=order.customer_email,
            total_cents=order.total_cents,
            currency=order.currency,
            created_at=order.created_at,
            download_expires_at=order.download_expires_at,
            items=tuple(items),
        )))


# ═══════════════════════════════════════════════════════════════════════════════
# Deliverables
# ═══════════════════════════════════════════════════════════════════════════════

class _Signer:
    def __init__(self, storage: BlobStorage, ttl_seconds: int, order_id: str) -> None:
        self._storage = storage
        self._ttl = ttl_seconds
        self._order_id = order_id

    async def sign(self, bucket: str, path: str, name: str, file_type: str) -> DownloadFile | None:
        signed = await self._storage.create_signed_url(bucket, path, self._ttl)
        match signed:
            case Ok(url):
                return DownloadFile(name=name, url=url.url, file_type=file_type, expires_at=url.expires_at)
            case Error(e):
                log.warning(
                    "download.sign_failed",
                    order_id=self._order_id,
                    bucket=bucket,
                    path=path,
                    error=str(e),
                )
                return None


async def _license_file(
    signer: _Signer,
    item: OrderItem,
    documents: dict[str, str],
    fallback_path: str | None,
    name: str,
) -> DownloadFile | None:
    generated = documents.get(item.id)
    if generated is not None:
        signed = await signer.sign(LICENSES_BUCKET, generated, name, "license")
        if signed is not None:
            return signed
    if fallback_path:
        return await signer.sign(LICENSES_BUCKET, fallback_path, name, "license")
    return None


async def _beat_item(
    signer: _Signer,
    item: OrderItem,
    ref: BeatLicense,
    paths: AssetPaths,
    documents: dict[str, str],
) -> DownloadItem | None:
    beat = paths.beats.get(ref.beat_id)
    tier = paths.tiers.get(ref.license_tier_id)
    if beat is None or tier is None:
        log.warning("download.asset_missing", order_id=item.order_id, order_item_id=item.id)
        return None

    by_kind = {"stems": beat.stems_path, "wav": beat.wav_path, "mp3": beat.mp3_path}
    files: list[DownloadFile] = []
    for kind in DELIVERABLES.get(tier.license_type, ()):
        path = by_kind[kind]
        if not path:
            continue
        signed = await signer.sign(BEATS_BUCKET, path, file_name(path), file_label(path))
        if signed is not None:
            files.append(signed)

    license_file = await _license_file(
        signer,
        item,
        documents,
        tier.license_pdf_path,
        f"License_{item.title}_{tier.license_type}.pdf",
    )
    if license_file is not None:
        files.append(license_file)

    return DownloadItem(item.id, item.item_type, item.title, item.license_name, tuple(files))


async def _sound_kit_item(
    signer: _Signer,
    item: OrderItem,
    ref: SoundKit,
    paths: AssetPaths,
    documents: dict[str, str],
) -> DownloadItem | None:
    archive = paths.sound_kits.get(ref.sound_kit_id)
    if not archive:
        log.warning("download.asset_missing", order_id=item.order_id, order_item_id=item.id)
        return None

    files: list[DownloadFile] = []
    signed = await signer.sign(SOUNDKITS_BUCKET, archive, file_name(archive), "soundkit")
    if signed is not None:
        files.append(signed)
    license_file = await _license_file(signer, item, documents, None, f"License_{item.title}.pdf")
    if license_file is not None:
        files.append(license_file)

    return DownloadItem(item.id, item.item_type, item.title, item.license_name, tuple(files))


__all__ = (
    "DELIVERABLES",
    "MIN_SIGNED_TTL",
    "DownloadRequest",
    "BrokerContext",
    "AssetPaths",
    "check_access",
    "OrderAccessNode",
    "AssetPathsNode",
    "LicenseIndexNode",
    "DownloadBundleNode",
)
