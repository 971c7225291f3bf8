"""
Fulfillment State Machine

Sole writer of an order's kitchen status:

    created → received → cooking → prepared → served

One step per call, never backwards, only on Completed orders. The write is a
compare-and-set on the status that was read, so two kitchen screens pressing
"advance" at once produce two consecutive steps, never a skipped one.
"""

import logging
from typing import List, Optional

from orderflow.core.config import Settings, get_settings
from orderflow.core.exceptions import AlreadyFinal, ConcurrentUpdate, NotFound
from orderflow.models import FULFILLMENT_SEQUENCE, FulfillmentStatus, Order, OrderStatus
from orderflow.services.orders import OrderStore
from orderflow.services.realtime import BaseBroadcastHub, get_broadcast_hub, order_status

logger = logging.getLogger(__name__)


def next_status(current: FulfillmentStatus) -> Optional[FulfillmentStatus]:
    """The status after ``current``, or None once served."""
    position = FULFILLMENT_SEQUENCE.index(FulfillmentStatus(current))
    if position + 1 >= len(FULFILLMENT_SEQUENCE):
        return None
    return FULFILLMENT_SEQUENCE[position + 1]


class FulfillmentStateMachine:

    def __init__(
        self,
        store: Optional[OrderStore] = None,
        hub: Optional[BaseBroadcastHub] = None,
        settings: Optional[Settings] = None,
    ):
        self.store = store or OrderStore()
        self._hub = hub or get_broadcast_hub()
        self.settings = settings or get_settings()

    async def advance(self, order_id: str, location_id: str) -> Order:
        """
        Move a Completed order one step along the kitchen sequence.

        Raises:
            NotFound: No Completed order with this id at this location
            AlreadyFinal: The order has been served
            ConcurrentUpdate: Lost the compare-and-set on every attempt
        """
        attempts = max(1, self.settings.fulfillment_max_retries)

        for attempt in range(1, attempts + 1):
            order = await self.store.get(order_id, location_id=location_id)
            if order.order_status != OrderStatus.COMPLETED:
                raise NotFound("Order not found")

            target = next_status(order.fulfillment_status)
            if target is None:
                raise AlreadyFinal(f"Order #{order.order_no} has already been served")

            if await self.store.advance_fulfillment(order_id, order.fulfillment_status, target):
                break

            logger.info(
                f"Order {order_id} changed while advancing from "
                f"{order.fulfillment_status.value} (attempt {attempt}/{attempts})"
            )
        else:
            raise ConcurrentUpdate("Order was updated concurrently, please retry")

        order = await self.store.get(order_id)
        logger.info(f"👨‍🍳 Order #{order.order_no} → {order.fulfillment_status.value}")

        await self._hub.broadcast(
            location_id,
            order_status(
                order_id=order.id,
                order_no=order.order_no,
                fulfillment_status=order.fulfillment_status.value,
            ),
        )
        return order

    async def list_active(self, location_id: str) -> List[Order]:
        """Orders the kitchen, billing and display screens show, oldest first."""
        return await self.store.list_active(location_id)
