"""
Order Board

Client-side model of the active orders a kitchen, billing or display screen
shows. It is fed a REST snapshot first and live room events after, and is
safe against the duplicates and reordering an at-least-once channel brings:

    - ``order:new`` is deduplicated by order id
    - ``order:status`` is merged field by field; reapplying is a no-op
    - Orders that reach ``served`` leave the board
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from orderflow.services.realtime.events import (
    InventoryUpdateEvent,
    OrderCreatedEvent,
    OrderStatusEvent,
    RealtimeEvent,
    decode_event,
)

logger = logging.getLogger(__name__)

SERVED = "served"


class OrderBoard:

    def __init__(self):
        self._orders: Dict[str, Dict[str, Any]] = {}
        # Served ids are remembered so a late duplicate cannot bring them back
        self._served: set = set()

    def load_snapshot(self, orders: Iterable[Dict[str, Any]]) -> None:
        """Replace the board with a REST listing (camelCase order payloads)."""
        self._orders = {}
        for order in orders:
            self._add(dict(order))

    def apply(self, event: RealtimeEvent) -> bool:
        """
        Apply one live event.

        Returns:
            True if the board changed
        """
        if isinstance(event, OrderCreatedEvent):
            order_id = event.order_id
            if not order_id or order_id in self._orders or order_id in self._served:
                return False
            return self._add(dict(event.data))

        if isinstance(event, OrderStatusEvent):
            return self._merge(event)

        if isinstance(event, InventoryUpdateEvent):
            return False

        return False

    def apply_message(self, payload) -> bool:
        """Decode a raw wire message and apply it."""
        return self.apply(decode_event(payload))

    def _add(self, order: Dict[str, Any]) -> bool:
        order_id = order.get("id")
        if not order_id:
            return False
        if order.get("fulfillmentStatus") == SERVED:
            self._served.add(order_id)
            return False
        self._orders[order_id] = order
        return True

    def _merge(self, event: OrderStatusEvent) -> bool:
        patch = event.data.model_dump(by_alias=True, exclude_none=True)
        order_id = patch.pop("orderId")
        current = self._orders.get(order_id)
        if current is None:
            # Not on the board yet; the next snapshot load will carry it
            return False

        changed = {k: v for k, v in patch.items() if current.get(k) != v}
        if not changed:
            return False

        current.update(changed)
        if current.get("fulfillmentStatus") == SERVED:
            del self._orders[order_id]
            self._served.add(order_id)
        return True

    def get(self, order_id: str) -> Optional[Dict[str, Any]]:
        return self._orders.get(order_id)

    def orders(self) -> List[Dict[str, Any]]:
        """Active orders, oldest first."""
        return sorted(
            self._orders.values(),
            key=lambda o: (o.get("createdAt") or "", o.get("orderNo") or 0),
        )

    def __len__(self) -> int:
        return len(self._orders)

    def __contains__(self, order_id: str) -> bool:
        return order_id in self._orders
