"""
Terminal Cart Reconciler

Inventory deltas pushed while the customer browses are only queued; the
cart is never changed under their feet. When checkout opens, the queue is
applied to the cart in this precedence per item:

    (a) disabled           → line removed, "no longer available"
    (b) quantity 0         → line removed, "out of stock"
    (c) quantity < in cart → line clamped, old → new quantity
    (d) price changed      → line repriced, old → new price

(c) and (d) can both apply. The catalog cache is then patched with the same
values and the consumed deltas are cleared. "Proceed to pay" stays blocked
until that has finished.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from orderflow.services.realtime.events import (
    InventoryDelta,
    InventoryUpdateEvent,
    decode_event,
)
from orderflow.terminal.cart import Cart, CartEntry
from orderflow.terminal.catalog import CatalogCache
from orderflow.terminal.store import PENDING_DELTAS, TerminalStore

logger = logging.getLogger(__name__)


class CheckoutBlocked(Exception):
    """Submission attempted while the cart is not ready to be paid for."""


def format_price(value: float) -> str:
    text = f"{value:.2f}"
    return text.rstrip("0").rstrip(".") if "." in text else text


class TerminalCartReconciler:

    def __init__(self, store: TerminalStore, cart: Optional[Cart] = None, catalog: Optional[CatalogCache] = None):
        self._store = store
        self.cart = cart or Cart(store)
        self.catalog = catalog or CatalogCache(store)
        self._reconciling = False

    # =========================================================================
    # PASSIVE INGESTION
    # =========================================================================

    def ingest(self, delta: Union[InventoryDelta, Dict[str, Any]]) -> None:
        """Queue a delta, replacing any earlier one for the same item."""
        if not isinstance(delta, InventoryDelta):
            delta = InventoryDelta.model_validate(delta)
        entry = delta.model_dump(by_alias=True, exclude_none=True)
        self._store.put(PENDING_DELTAS, delta.item_id, entry)
        logger.debug(f"Queued inventory delta for {delta.item_id}")

    def handle_event(self, payload) -> bool:
        """
        Feed one realtime message. Only ``inventory:update`` is queued.

        Returns:
            True if a delta was queued
        """
        try:
            event = decode_event(payload)
        except ValueError as e:
            logger.debug(f"Ignoring realtime message: {e}")
            return False

        if isinstance(event, InventoryUpdateEvent):
            self.ingest(event.data)
            return True
        return False

    def pending(self) -> Dict[str, Dict[str, Any]]:
        return self._store.load(PENDING_DELTAS)

    # =========================================================================
    # CHECKOUT
    # =========================================================================

    @property
    def checkout_ready(self) -> bool:
        return not self._reconciling and len(self.cart) > 0

    def open_checkout(self) -> List[str]:
        """Reconcile the cart and return the notices to show the customer."""
        return self._reconcile()

    def close_checkout(self) -> None:
        """Reconcile silently when the customer backs out of checkout."""
        self._reconcile()

    def _reconcile(self) -> List[str]:
        self._reconciling = True
        try:
            deltas = self._store.load(PENDING_DELTAS)
            if not deltas:
                return []

            notices = []
            updates: Dict[str, Optional[CartEntry]] = {}

            for item_id, delta in deltas.items():
                entry = self.cart.get(item_id)
                if entry is None:
                    continue

                if delta.get("enabled") is False:
                    updates[item_id] = None
                    notices.append(f"{entry.name} is no longer available — removed from cart.")
                    continue

                quantity = delta.get("quantity")
                if quantity == 0:
                    updates[item_id] = None
                    notices.append(f"{entry.name} is out of stock — removed from cart.")
                    continue

                changed = False
                if quantity is not None and quantity < entry.quantity:
                    notices.append(
                        f"{entry.name}: only {quantity} available — reduced from {entry.quantity} to {quantity}."
                    )
                    entry.quantity = quantity
                    changed = True

                price = delta.get("price")
                if price is not None and price != entry.price:
                    notices.append(
                        f"Price of {entry.name} updated: ₹{format_price(entry.price)} → ₹{format_price(price)}."
                    )
                    entry.price = price
                    changed = True

                if changed:
                    updates[item_id] = entry

            self.cart.patch(updates)
            self.catalog.apply_deltas(deltas)
            self._store.discard_consumed(PENDING_DELTAS, deltas)

            if notices:
                logger.info(f"Checkout reconciliation changed {len(updates)} cart lines")
            return notices
        finally:
            self._reconciling = False

    async def submit(self, client, payer_name: str, upi_id: str) -> Dict[str, Any]:
        """
        Place the cart as an order through ``client`` (a ``TerminalClient``).

        The cart is cleared only when the order Completed; a Failed order
        leaves it in place for another attempt.

        Raises:
            CheckoutBlocked: Reconciliation running or cart empty
        """
        if self._reconciling:
            raise CheckoutBlocked("Cart is being updated, please wait")
        if len(self.cart) == 0:
            raise CheckoutBlocked("Cart is empty")

        order = await client.place_order(
            items=self.cart.to_order_items(),
            total_amount=self.cart.total,
            payer_name=payer_name,
            upi_id=upi_id,
        )
        if order.get("orderStatus") == "Completed":
            self.cart.clear()
            logger.info(f"Order #{order.get('orderNo')} placed, cart cleared")
        else:
            logger.info(f"Order #{order.get('orderNo')} {order.get('orderStatus')}: {order.get('failureReason')}")
        return order
