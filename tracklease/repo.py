"""
Repository helpers — row <-> domain mapping for orders.
"""

from typing import Any

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from tracklease.db import Base, OrderItemTable, OrderTable
from tracklease.domain import Order, OrderItem, OrderStatus, ref_from_columns


def item_to_domain(row: OrderItemTable) -> OrderItem:
    return OrderItem(
        id=row.id,
        order_id=row.order_id,
        ref=ref_from_columns(row.item_type, row.referenced_item_id, row.license_tier_id),
        title=row.title,
        license_name=row.license_name,
        license_type=row.license_type,
        unit_price_cents=row.unit_price_cents,
        download_count=row.download_count,
    )


def order_to_domain(row: OrderTable, items: list[OrderItemTable]) -> Order:
    return Order(
        id=row.id,
        customer_email=row.customer_email,
        customer_name=row.customer_name,
        status=OrderStatus(row.status),
        subtotal_cents=row.subtotal_cents,
        discount_cents=row.discount_cents,
        total_cents=row.total_cents,
        currency=row.currency,
        gateway_order_id=row.gateway_order_id,
        gateway_capture_id=row.gateway_capture_id,
        discount_code=row.discount_code,
        failure_reason=row.failure_reason,
        download_expires_at=row.download_expires_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
        items=tuple(item_to_domain(item) for item in items),
    )


async def load_order(session: AsyncSession, order_id: str) -> Order | None:
    row = await session.get(OrderTable, order_id, populate_existing=True)
    if row is None:
        return None
    items = (
        await session.execute(
            select(OrderItemTable)
            .where(OrderItemTable.order_id == order_id)
            .order_by(OrderItemTable.position)
        )
    ).scalars().all()
    return order_to_domain(row, list(items))


async def find_order_id(session: AsyncSession, *criteria: Any) -> str | None:
    """Order id matching the given column criteria, if any."""
    return (
        await session.execute(select(OrderTable.id).where(*criteria).limit(1))
    ).scalar_one_or_none()


def conflict_insert(session: AsyncSession, model: type[Base]) -> Any:
    """INSERT supporting ON CONFLICT for the session's dialect."""
    if session.get_bind().dialect.name == "postgresql":
        return pg_insert(model)
    return sqlite_insert(model)


__all__ = (
    "item_to_domain",
    "order_to_domain",
    "load_order",
    "find_order_id",
    "conflict_insert",
)
