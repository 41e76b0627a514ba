"""
Fire-and-forget entitlement dispatch after an order completes.
"""

import asyncio

from kungfu import Error, Ok

from tracklease.entitlements import EntitlementGenerator, EntitlementReport
from tracklease.log import get_logger
from tracklease.notifications import OrderConfirmation, OrderNotifier

log = get_logger("entitlement_dispatcher")


class EntitlementDispatcher:
    """
    Runs EntitlementGenerator in background tasks.

    The caller never waits for documents; join() is for tests and graceful
    shutdown. At most `max_concurrent_orders` orders generate at once, each
    with the generator's own per-item bound.

    With a notifier, a confirmation follows every generation pass that
    found the order, partial or not. A failed confirmation is logged only.
    """

    def __init__(
        self,
        generator: EntitlementGenerator,
        max_concurrent_orders: int = 4,
        *,
        notifier: OrderNotifier | None = None,
        site_url: str = "",
    ) -> None:
        self._generator = generator
        self._notifier = notifier
        self._site_url = site_url
        self._semaphore = asyncio.Semaphore(max_concurrent_orders)
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def dispatch(self, order_id: str) -> None:
        task = asyncio.create_task(self._run(order_id), name=f"entitlements:{order_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def join(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def _run(self, order_id: str) -> None:
        async with self._semaphore:
            try:
                result = await self._generator.generate_for_order(order_id)
            except Exception:
                log.exception("entitlement.dispatch_crashed", order_id=order_id)
                return

        match result:
            case Ok(report):
                if not report.complete:
                    log.warning(
                        "entitlement.partial",
                        order_id=order_id,
                        failed=[f.order_item_id for f in report.failed],
                    )
                await self._notify(report)
            case Error(e):
                log.error("entitlement.dispatch_failed", order_id=order_id, error=str(e))

    async def _notify(self, report: EntitlementReport) -> None:
        if self._notifier is None or report.order is None:
            return

        confirmation = OrderConfirmation.for_order(
            report.order,
            tuple(doc.storage_path for doc in report.generated),
            self._site_url,
        )
        try:
            sent = await self._notifier.order_completed(confirmation)
        except Exception:
            log.exception("notification.crashed", order_id=report.order_id)
            return

        match sent:
            case Ok(_):
                log.info("notification.sent", order_id=report.order_id)
            case Error(e):
                log.warning("notification.failed", order_id=report.order_id, error=str(e))


__all__ = ("EntitlementDispatcher",)
