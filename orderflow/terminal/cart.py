"""
Terminal Cart

The customer's in-progress cart, keyed by item id and written to the
terminal store on every change so a reload picks up where it left off.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from orderflow.terminal.catalog import CachedCatalogItem
from orderflow.terminal.store import CART, TerminalStore

logger = logging.getLogger(__name__)


@dataclass
class CartEntry:
    item_id: str
    name: str
    price: float
    quantity: int

    @property
    def line_total(self) -> float:
        return self.price * self.quantity

    def to_dict(self) -> dict:
        return {
            "itemId": self.item_id,
            "name": self.name,
            "price": self.price,
            "quantity": self.quantity,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CartEntry":
        return cls(
            item_id=data["itemId"],
            name=data["name"],
            price=float(data["price"]),
            quantity=int(data["quantity"]),
        )


class Cart:

    def __init__(self, store: TerminalStore):
        self._store = store
        self._entries: Dict[str, CartEntry] = {
            item_id: CartEntry.from_dict(data)
            for item_id, data in store.load(CART).items()
        }

    def _save(self) -> None:
        self._store.replace(CART, {item_id: e.to_dict() for item_id, e in self._entries.items()})

    # =========================================================================
    # EDITS
    # =========================================================================

    def add(self, item: CachedCatalogItem) -> Optional[str]:
        """
        Add one unit at the item's display price.

        Returns:
            A notice when the item cannot be added, None otherwise
        """
        if not item.in_stock:
            return f'"{item.name}" is out of stock'

        existing = self._entries.get(item.id)
        if existing is not None:
            if existing.quantity >= item.quantity:
                return f'Only {item.quantity} of "{item.name}" available'
            existing.quantity += 1
        else:
            self._entries[item.id] = CartEntry(
                item_id=item.id,
                name=item.name,
                price=item.display_price,
                quantity=1,
            )
        self._save()
        return None

    def increment(self, item_id: str, available: Optional[int] = None) -> Optional[str]:
        entry = self._entries.get(item_id)
        if entry is None:
            return None
        if available is not None and entry.quantity >= available:
            return f'Only {available} of "{entry.name}" available'
        entry.quantity += 1
        self._save()
        return None

    def decrement(self, item_id: str) -> None:
        """Remove one unit; the line goes away at zero."""
        entry = self._entries.get(item_id)
        if entry is None:
            return
        entry.quantity -= 1
        if entry.quantity <= 0:
            del self._entries[item_id]
        self._save()

    def remove(self, item_id: str) -> None:
        if self._entries.pop(item_id, None) is not None:
            self._save()

    def clear(self) -> None:
        self._entries = {}
        self._save()

    def patch(self, updates: Dict[str, Optional[CartEntry]]) -> None:
        """Apply reconciled lines in one write; None removes the line."""
        if not updates:
            return
        for item_id, entry in updates.items():
            if entry is None:
                self._entries.pop(item_id, None)
            else:
                self._entries[item_id] = entry
        self._save()

    # =========================================================================
    # READS
    # =========================================================================

    def get(self, item_id: str) -> Optional[CartEntry]:
        entry = self._entries.get(item_id)
        if entry is None:
            return None
        return CartEntry(entry.item_id, entry.name, entry.price, entry.quantity)

    def entries(self) -> List[CartEntry]:
        return [self.get(item_id) for item_id in self._entries]

    @property
    def count(self) -> int:
        return sum(e.quantity for e in self._entries.values())

    @property
    def total(self) -> float:
        return round(sum(e.line_total for e in self._entries.values()), 2)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, item_id: str) -> bool:
        return item_id in self._entries

    def to_order_items(self) -> List[dict]:
        """Cart lines in the shape ``POST /orders`` expects."""
        return [
            {"id": e.item_id, "name": e.name, "quantity": e.quantity, "price": e.price}
            for e in self._entries.values()
        ]
