"""
Discount code ledger — validation and atomic consumption.

Consumption is a single conditional UPDATE. There is no read-then-write
path: under N concurrent consumers of a code with one slot left, exactly
one UPDATE matches a row.
"""

from datetime import datetime
from typing import Any, cast
from collections.abc import Callable

from combinators import lift as L
from kungfu import Error, Ok, Result
from sqlalchemy import and_, or_, update
from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tracklease import errors
from tracklease.db import DiscountCodeTable
from tracklease.domain import DiscountCode, DiscountKind, normalize_code, utcnow
from tracklease.errors import ErrorKind, LeaseError
from tracklease.log import get_logger

log = get_logger("discount_ledger")


def _to_domain(row: DiscountCodeTable) -> DiscountCode:
    return DiscountCode(
        code=row.code,
        kind=DiscountKind(row.discount_type),
        value=row.discount_value,
        min_order_cents=row.min_order_cents,
        max_uses=row.max_uses,
        current_uses=row.current_uses,
        is_active=row.is_active,
        starts_at=row.starts_at,
        expires_at=row.expires_at,
    )


def check(code: DiscountCode, order_total_cents: int, now: datetime) -> Result[DiscountCode, LeaseError]:
    """Pure validation of a loaded code against an order total."""
    if not code.is_active:
        return Error(LeaseError(ErrorKind.DISCOUNT_INVALID, f"Code {code.code} is not active"))
    if code.starts_at is not None and now < code.starts_at:
        return Error(LeaseError(ErrorKind.DISCOUNT_INVALID, f"Code {code.code} is not active yet"))
    if code.expires_at is not None and now >= code.expires_at:
        return Error(LeaseError(ErrorKind.DISCOUNT_EXPIRED, f"Code {code.code} has expired"))
    if code.max_uses is not None and code.current_uses >= code.max_uses:
        return Error(LeaseError(
            ErrorKind.DISCOUNT_LIMIT_REACHED, f"Code {code.code} has reached its usage limit",
        ))
    if order_total_cents < code.min_order_cents:
        return Error(LeaseError(
            ErrorKind.MIN_ORDER_NOT_MET,
            f"Code {code.code} requires a minimum order of {code.min_order_cents} cents",
        ))
    return Ok(code)


class DiscountCodeLedger:
    """
    Validates, consumes and releases limited-use promotional codes.

    Example:
        match await ledger.validate("SAVE10", 4999):
            case Ok(code):
                consumed = await ledger.consume_atomic(code.code)
            case Error(e):
                ...  # e.kind is one of the DISCOUNT_* kinds or MIN_ORDER_NOT_MET
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._sessions = session_factory
        self._clock = clock

    async def get(self, code: str) -> DiscountCode | None:
        async with self._sessions() as session:
            row = await session.get(DiscountCodeTable, normalize_code(code))
            return _to_domain(row) if row is not None else None

    async def validate(self, code: str, order_total_cents: int) -> Result[DiscountCode, LeaseError]:
        loaded = await L.catching_async(lambda: self.get(code), on_error=errors.database)
        match loaded:
            case Error(e):
                return Error(e)
            case Ok(None):
                return Error(LeaseError(ErrorKind.DISCOUNT_INVALID, f"Code {normalize_code(code)} does not exist"))
            case Ok(found):
                return check(found, order_total_cents, self._clock())

    async def consume_atomic(self, code: str) -> Result[None, LeaseError]:
        """Take one use of the code, or fail with DISCOUNT_LIMIT_REACHED."""
        key = normalize_code(code)
        stmt = (
            update(DiscountCodeTable)
            .where(and_(
                DiscountCodeTable.code == key,
                DiscountCodeTable.is_active.is_(True),
                or_(
                    DiscountCodeTable.max_uses.is_(None),
                    DiscountCodeTable.current_uses < DiscountCodeTable.max_uses,
                ),
            ))
            .values(current_uses=DiscountCodeTable.current_uses + 1)
        )

        async def run() -> int:
            async with self._sessions() as session, session.begin():
                result = cast(CursorResult[Any], await session.execute(stmt))
                return result.rowcount

        updated = await L.catching_async(run, on_error=errors.database)
        match updated:
            case Error(e):
                return Error(e)
            case Ok(0):
                existing = await self.get(key)
                if existing is None or not existing.is_active:
                    return Error(LeaseError(ErrorKind.DISCOUNT_INVALID, f"Code {key} is not active"))
                log.info("discount.limit_reached", code=key)
                return Error(LeaseError(
                    ErrorKind.DISCOUNT_LIMIT_REACHED, f"Code {key} has reached its usage limit",
                ))
            case Ok(_):
                log.info("discount.consumed", code=key)
                return Ok(None)

    async def release(self, code: str) -> Result[None, LeaseError]:
        """Compensating decrement. Never goes below zero."""
        key = normalize_code(code)
        stmt = (
            update(DiscountCodeTable)
            .where(and_(DiscountCodeTable.code == key, DiscountCodeTable.current_uses > 0))
            .values(current_uses=DiscountCodeTable.current_uses - 1)
        )

        async def run() -> int:
            async with self._sessions() as session, session.begin():
                result = cast(CursorResult[Any], await session.execute(stmt))
                return result.rowcount

        released = await L.catching_async(run, on_error=errors.database)
        match released:
            case Error(e):
                log.error("discount.release_failed", code=key, error=str(e))
                return Error(e)
            case Ok(rows):
                log.info("discount.released", code=key, released=bool(rows))
                return Ok(None)


__all__ = ("DiscountCodeLedger", "check")
