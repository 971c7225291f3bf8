"""
Order Number Allocator

Each location carries its own counter. Numbers follow allocation order, not
completion order: an order that later fails keeps the number it consumed.
"""

import logging

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.core.exceptions import NotFound
from orderflow.models import Location

logger = logging.getLogger(__name__)


class OrderNumberAllocator:

    async def next(self, session: AsyncSession, location_id: str) -> int:
        """
        Increment the location's counter and return the new value.

        Runs inside the caller's transaction; the UPDATE holds the location
        row until commit so no two callers read the same value.

        Raises:
            NotFound: Unknown or inactive location
        """
        result = await session.execute(
            update(Location)
            .where(Location.id == location_id, Location.is_active.is_(True))
            .values(order_number=Location.order_number + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFound("Outlet not found")

        order_no = await session.scalar(
            select(Location.order_number).where(Location.id == location_id)
        )
        logger.debug(f"Allocated order #{order_no} at {location_id}")
        return order_no
