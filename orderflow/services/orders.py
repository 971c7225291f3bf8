"""
Order Store

Durable order records and the location-scoped queries the pipeline needs.
Status writes are conditional on the status they expect to replace, so each
transition happens at most once no matter how many writers race for it.
"""

import json
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from orderflow.core.exceptions import NotFound
from orderflow.database import get_session_maker
from orderflow.models import (
    FulfillmentStatus,
    Order,
    OrderStatus,
    PaymentStatus,
    utcnow,
)

logger = logging.getLogger(__name__)


class OrderStore:

    def __init__(self, session_maker: Optional[async_sessionmaker] = None):
        self._session_maker = session_maker or get_session_maker()

    # =========================================================================
    # CREATE
    # =========================================================================

    @staticmethod
    def create(
        session: AsyncSession,
        order_id: str,
        order_no: int,
        location_id: str,
        tenant_id: str,
        items: List[dict],
        total_amount: float,
        terminal_id: Optional[str] = None,
    ) -> Order:
        """Add a Pending order to the caller's transaction."""
        order = Order(
            id=order_id,
            order_no=order_no,
            location_id=location_id,
            tenant_id=tenant_id,
            terminal_id=terminal_id,
            items=json.dumps(items),
            total_amount=total_amount,
            payment_status=PaymentStatus.PENDING,
            order_status=OrderStatus.PENDING,
            fulfillment_status=FulfillmentStatus.CREATED,
            stock_released=False,
        )
        session.add(order)
        return order

    # =========================================================================
    # READS
    # =========================================================================

    async def get(self, order_id: str, location_id: Optional[str] = None) -> Order:
        """
        Raises:
            NotFound: Unknown order, or it belongs to another location
        """
        query = select(Order).where(Order.id == order_id)
        if location_id is not None:
            query = query.where(Order.location_id == location_id)

        async with self._session_maker() as session:
            order = await session.scalar(query)
        if order is None:
            raise NotFound("Order not found")
        return order

    async def list_active(self, location_id: str) -> List[Order]:
        """Completed orders not yet served, oldest first."""
        async with self._session_maker() as session:
            result = await session.scalars(
                select(Order)
                .where(
                    Order.location_id == location_id,
                    Order.order_status == OrderStatus.COMPLETED,
                    Order.fulfillment_status != FulfillmentStatus.SERVED,
                )
                .order_by(Order.created_at, Order.order_no)
            )
            return list(result)

    async def list_stale_pending(self, cutoff: datetime) -> List[Order]:
        async with self._session_maker() as session:
            result = await session.scalars(
                select(Order)
                .where(Order.order_status == OrderStatus.PENDING, Order.created_at < cutoff)
                .order_by(Order.created_at)
            )
            return list(result)

    async def list_unreleased_failed(self) -> List[Order]:
        async with self._session_maker() as session:
            result = await session.scalars(
                select(Order)
                .where(Order.order_status == OrderStatus.FAILED, Order.stock_released.is_(False))
                .order_by(Order.created_at)
            )
            return list(result)

    # =========================================================================
    # STATUS TRANSITIONS
    # =========================================================================

    async def mark_completed(
        self,
        order_id: str,
        payment_details: dict,
        payment_reference: Optional[str],
    ) -> bool:
        """Pending → done/Completed. Returns False if the order left Pending or gave its stock back."""
        now = utcnow()
        async with self._session_maker() as session:
            async with session.begin():
                result = await session.execute(
                    update(Order)
                    .where(
                        Order.id == order_id,
                        Order.order_status == OrderStatus.PENDING,
                        Order.stock_released.is_(False),
                    )
                    .values(
                        payment_status=PaymentStatus.DONE,
                        order_status=OrderStatus.COMPLETED,
                        payment_details=json.dumps(payment_details),
                        payment_reference=payment_reference,
                        completed_at=now,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
        return result.rowcount == 1

    async def mark_failed(self, order_id: str, reason: str) -> bool:
        """Pending → failed/Failed. Returns False if the order already left Pending."""
        async with self._session_maker() as session:
            async with session.begin():
                result = await session.execute(
                    update(Order)
                    .where(Order.id == order_id, Order.order_status == OrderStatus.PENDING)
                    .values(
                        payment_status=PaymentStatus.FAILED,
                        order_status=OrderStatus.FAILED,
                        failure_reason=reason[:255],
                        updated_at=utcnow(),
                    )
                    .execution_options(synchronize_session=False)
                )
        return result.rowcount == 1

    async def advance_fulfillment(
        self,
        order_id: str,
        current: FulfillmentStatus,
        new: FulfillmentStatus,
    ) -> bool:
        """Compare-and-set on the kitchen status of a Completed order."""
        async with self._session_maker() as session:
            async with session.begin():
                result = await session.execute(
                    update(Order)
                    .where(
                        Order.id == order_id,
                        Order.order_status == OrderStatus.COMPLETED,
                        Order.fulfillment_status == current,
                    )
                    .values(fulfillment_status=new, updated_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
        return result.rowcount == 1
