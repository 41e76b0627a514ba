"""
Download broker — time-limited signed URLs for a completed order.
"""

from collections.abc import Callable
from datetime import datetime
from typing import Any, cast

from combinators import lift as L
from kungfu import Error, Ok, Result
from nodnod import compose_one
from sqlalchemy import update
from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tracklease import errors
from tracklease.catalog import SqlCatalog
from tracklease.db import OrderItemTable
from tracklease.domain import utcnow
from tracklease.downloads._nodes import BrokerContext, DownloadBundleNode, DownloadRequest
from tracklease.downloads._types import DownloadBundle
from tracklease.entitlements import EntitlementGenerator
from tracklease.errors import LeaseError
from tracklease.log import get_logger
from tracklease.storage import BlobStorage

log = get_logger("download_broker")


class DownloadBroker:
    """
    Issues download bundles.

    Example:
        match await broker.issue(order_id, "fan@example.com"):
            case Ok(bundle):
                for item in bundle.items:
                    ...
            case Error(e):
                respond(e.kind, e.message)  # not found / not completed / expired
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        storage: BlobStorage,
        catalog: SqlCatalog,
        documents: EntitlementGenerator,
        *,
        ttl_seconds: int = 900,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._context = BrokerContext(
            sessions=session_factory,
            storage=storage,
            catalog=catalog,
            documents=documents,
            ttl_seconds=ttl_seconds,
        )
        self._sessions = session_factory
        self._clock = clock

    async def issue(
        self,
        order_id: str,
        requester_email: str,
        authenticated_email: str | None = None,
    ) -> Result[DownloadBundle, LeaseError]:
        request = DownloadRequest(order_id, requester_email, authenticated_email, self._clock())
        node = await compose_one(
            DownloadBundleNode,
            injections={DownloadRequest: request, BrokerContext: self._context},
        )

        match node.result:
            case Ok(bundle):
                await self._count_download(bundle.order_id)
                log.info(
                    "download.issued",
                    order_id=bundle.order_id,
                    items=len(bundle.items),
                    files=sum(len(item.files) for item in bundle.items),
                )
                return Ok(bundle)
            case Error(e):
                log.info("download.refused", order_id=order_id, kind=e.kind.value)
                return Error(e)

    async def _count_download(self, order_id: str) -> None:
        """One atomic increment for every item on the order. Best-effort."""

        async def run() -> int:
            async with self._sessions() as session, session.begin():
                result = cast(CursorResult[Any], await session.execute(
                    update(OrderItemTable)
                    .where(OrderItemTable.order_id == order_id)
                    .values(download_count=OrderItemTable.download_count + 1)
                ))
                return result.rowcount

        counted = await L.catching_async(run, on_error=errors.database)
        if isinstance(counted, Error):
            log.warning("download.count_failed", order_id=order_id, error=str(counted.error))


__all__ = ("DownloadBroker",)
