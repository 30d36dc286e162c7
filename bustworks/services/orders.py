"""
Order Repository

Single-row reads and writes for orders and their uploads. Every write is
its own committed transaction; there are no multi-row transactions.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any

from fastapi import Depends
from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..models import Order, OrderStatus, Upload
from ..models.order import PAID_STATUSES

logger = logging.getLogger(__name__)

# Columns matched by the admin free-text search
SEARCH_COLUMNS = (
    "email",
    "ship_name",
    "ship_email",
    "ship_city",
    "ship_postal_code",
    "ship_country",
)


class OrderRepository:
    """Data access for orders and uploads."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, order_id: uuid.UUID) -> Order | None:
        """Load one order by id."""
        result = await self.db.execute(select(Order).where(Order.id == order_id))
        return result.scalar_one_or_none()

    async def create(self, **fields: Any) -> Order:
        """Insert a new order and commit."""
        order = Order(**fields)
        self.db.add(order)
        await self.db.commit()
        await self.db.refresh(order)
        logger.info("Created order %s", order.id)
        return order

    async def update(self, order_id: uuid.UUID, **values: Any) -> bool:
        """
        Atomically update columns of one order.

        Returns:
            True if a row was updated
        """
        result = await self.db.execute(
            update(Order).where(Order.id == order_id).values(**values)
        )
        await self.db.commit()
        return result.rowcount == 1

    async def claim_model_task(
        self,
        order_id: uuid.UUID,
        task_id: str,
        started_at: datetime,
    ) -> bool:
        """
        Store a 3D task id only if the order has none yet.

        Two concurrent polls may both submit a model task; only the first
        writer wins, the other gets False.
        """
        result = await self.db.execute(
            update(Order)
            .where(Order.id == order_id, Order.meshy_model_task_id.is_(None))
            .values(
                meshy_model_task_id=task_id,
                meshy_model_attempts=0,
                meshy_model_last_error=None,
                generation_started_at=started_at,
            )
        )
        await self.db.commit()
        return result.rowcount == 1

    async def mark_paid(
        self,
        order_id: uuid.UUID,
        session_id: str | None = None,
        **shipping: Any,
    ) -> bool:
        """
        Record a completed order checkout.

        The status only moves to paid from an unpaid status, so in_production
        and shipped survive a redelivered event. Shipping is always written.

        Returns:
            True if the order exists
        """
        result = await self.db.execute(
            update(Order)
            .where(Order.id == order_id, Order.status.not_in(sorted(PAID_STATUSES)))
            .values(
                status=OrderStatus.PAID.value,
                last_checkout_session_id=session_id,
                **shipping,
            )
        )
        if result.rowcount == 0:
            result = await self.db.execute(
                update(Order)
                .where(Order.id == order_id)
                .values(last_checkout_session_id=session_id, **shipping)
            )
        await self.db.commit()
        return result.rowcount == 1

    async def add_retry_credit(
        self,
        order_id: uuid.UUID,
        session_id: str | None = None,
        **shipping: Any,
    ) -> bool:
        """
        Grant one paid preview retry.

        The increment happens in the UPDATE itself and is skipped when the
        same checkout session was already applied.

        Returns:
            True if a credit was added
        """
        result = await self.db.execute(
            update(Order)
            .where(
                Order.id == order_id,
                or_(
                    Order.last_checkout_session_id.is_(None),
                    Order.last_checkout_session_id != session_id,
                ),
            )
            .values(
                retry_credits=Order.retry_credits + 1,
                last_checkout_session_id=session_id,
                **shipping,
            )
        )
        await self.db.commit()
        return result.rowcount == 1

    async def refresh(self, order: Order) -> Order:
        """Reload an order's columns from the database."""
        await self.db.refresh(order)
        return order

    async def add_upload(self, order_id: uuid.UUID, storage_path: str) -> Upload:
        """Record an uploaded original photo."""
        upload = Upload(order_id=order_id, storage_path=storage_path)
        self.db.add(upload)
        await self.db.commit()
        return upload

    async def latest_upload(self, order_id: uuid.UUID) -> Upload | None:
        """Most recent upload for an order."""
        result = await self.db.execute(
            select(Upload)
            .where(Upload.order_id == order_id)
            .order_by(Upload.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_orders(
        self,
        status: str | None = None,
        query: str | None = None,
        limit: int = 200,
    ) -> list[Order]:
        """
        List orders newest first for the admin view.

        Args:
            status: Exact status filter
            query: Case-insensitive substring over id, email and shipping fields
            limit: Maximum rows
        """
        stmt = select(Order).order_by(Order.created_at.desc())

        if status:
            stmt = stmt.where(func.lower(Order.status) == status.lower())

        if query:
            pattern = f"%{query.lower()}%"
            clauses = [func.lower(getattr(Order, col)).like(pattern) for col in SEARCH_COLUMNS]
            try:
                clauses.append(Order.id == uuid.UUID(query))
            except ValueError:
                pass
            stmt = stmt.where(or_(*clauses))

        result = await self.db.execute(stmt.limit(limit))
        return list(result.scalars().all())


def get_order_repository(db: AsyncSession = Depends(get_db)) -> OrderRepository:
    """FastAPI dependency for the repository."""
    return OrderRepository(db)
