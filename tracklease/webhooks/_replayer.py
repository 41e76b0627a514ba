"""
Background replay of webhook events that did not finish processing.

A delivery that failed after being recorded was already acknowledged, so
the gateway will not resend it. The replayer keeps retrying those events
until they reach a final status:

    replayer = WebhookReplayer(reconciler, interval_seconds=30)
    replayer.start()
    ...
    await replayer.stop()
"""

import asyncio

from combinators import lift as L
from kungfu import Error, Ok, Result

from tracklease import errors
from tracklease.errors import LeaseError
from tracklease.log import get_logger
from tracklease.webhooks._reconciler import WebhookAck, WebhookReconciler, WebhookStatus

log = get_logger("webhook_replayer")


class WebhookReplayer:
    """
    Periodic replay_pending() loop.

    The delay doubles after a pass that leaves failures behind, up to
    `max_interval_seconds`, and drops back to `interval_seconds` after a
    clean pass.
    """

    def __init__(
        self,
        reconciler: WebhookReconciler,
        interval_seconds: float = 30.0,
        max_interval_seconds: float = 600.0,
        limit: int = 100,
    ) -> None:
        self._reconciler = reconciler
        self._interval = interval_seconds
        self._max_interval = max(max_interval_seconds, interval_seconds)
        self._limit = limit
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="webhook-replayer")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def run_once(self) -> Result[list[WebhookAck], LeaseError]:
        async def replay() -> list[WebhookAck]:
            return await self._reconciler.replay_pending(limit=self._limit)

        return await L.catching_async(replay, on_error=errors.database)

    async def _loop(self) -> None:
        delay = self._interval
        while True:
            await asyncio.sleep(delay)
            match await self.run_once():
                case Ok(acks):
                    failed = [a.event_id for a in acks if a.status is WebhookStatus.FAILED]
                    if failed:
                        delay = min(delay * 2, self._max_interval)
                        log.warning("webhook.replay_incomplete", failed=failed, next_in=delay)
                    else:
                        delay = self._interval
                case Error(e):
                    delay = min(delay * 2, self._max_interval)
                    log.error("webhook.replay_failed", error=str(e), next_in=delay)


__all__ = ("WebhookReplayer",)
