"""
Checkout compensation — undo completed steps when a later one fails.

Each successful step may record a compensator; rollback() runs them in
reverse order. A failing compensator is logged and counted, never raised,
so the remaining ones still run.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from kungfu import Error, Ok, Result

from tracklease.errors import LeaseError
from tracklease.log import get_logger

log = get_logger("checkout_saga")

type Compensator = Callable[[], Awaitable[object]]


@dataclass(frozen=True, slots=True)
class RollbackReport:
    run: int
    failed: int

    @property
    def complete(self) -> bool:
        return self.failed == 0


@dataclass(slots=True)
class Compensations:
    """
    Recorded compensators for one checkout.

    Example:
        saga = Compensations()
        consumed = await saga.step(
            "consume_discount",
            discounts.consume_atomic(code),
            compensate=lambda _: discounts.release(code),
        )
        ...
        if isinstance(remote, Error):
            await saga.rollback()
    """

    _stack: list[tuple[str, Compensator]] = field(default_factory=list)

    async def step[T](
        self,
        name: str,
        action: Awaitable[Result[T, LeaseError]],
        compensate: Callable[[T], Awaitable[object]] | None = None,
    ) -> Result[T, LeaseError]:
        """Run one step, recording its compensator on success."""
        result = await action
        match result:
            case Ok(value):
                if compensate is not None:
                    self._stack.append((name, lambda: compensate(value)))
                return Ok(value)
            case Error(e):
                log.info("checkout.step_failed", step=name, error=str(e))
                return Error(e)

    async def rollback(self) -> RollbackReport:
        run = 0
        failed = 0
        for name, compensator in reversed(self._stack):
            try:
                outcome = await compensator()
            except Exception:
                log.exception("checkout.compensation_crashed", step=name)
                failed += 1
                continue
            if isinstance(outcome, Error):
                log.error("checkout.compensation_failed", step=name, error=str(outcome.error))
                failed += 1
            else:
                run += 1
        self._stack.clear()
        return RollbackReport(run=run, failed=failed)


__all__ = ("Compensator", "Compensations", "RollbackReport")
