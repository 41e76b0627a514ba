"""
In-process notifier for tests and local runs.
"""

from dataclasses import dataclass, field

from kungfu import Error, Ok, Result

from tracklease.errors import LeaseError
from tracklease.notifications._types import OrderConfirmation


@dataclass(slots=True)
class MemoryNotifier:
    """Keeps every confirmation; set `error` to make sends fail."""

    sent: list[OrderConfirmation] = field(default_factory=list)
    error: LeaseError | None = None

    async def order_completed(self, confirmation: OrderConfirmation) -> Result[None, LeaseError]:
        if self.error is not None:
            return Error(self.error)
        self.sent.append(confirmation)
        return Ok(None)


__all__ = ("MemoryNotifier",)
