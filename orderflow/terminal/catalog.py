"""
Terminal Catalog Cache

Offline copy of the outlet menu: catalog display fields merged with the
outlet's inventory, so the item grid renders without the network.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Optional

from orderflow.terminal.store import CATALOG, TerminalStore

logger = logging.getLogger(__name__)


@dataclass
class CachedCatalogItem:
    id: str
    name: str
    default_amount: float
    description: Optional[str] = None
    category: Optional[str] = None
    image_url: Optional[str] = None
    status: bool = True
    # Last known outlet values
    price: Optional[float] = None
    quantity: int = 0
    enabled: bool = True

    @property
    def display_price(self) -> float:
        """Outlet price when set, catalog default otherwise."""
        return self.price if self.price is not None else self.default_amount

    @property
    def in_stock(self) -> bool:
        return self.status and self.enabled and self.quantity > 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CachedCatalogItem":
        return cls(**data)


def merge_menu_with_inventory(
    menu: Iterable[Dict[str, Any]],
    inventory: Iterable[Dict[str, Any]],
) -> List[CachedCatalogItem]:
    """
    Combine ``/kiosks/menu`` items with ``/items/inventory`` records
    (both camelCase). Items without an inventory record have no stock.
    """
    by_item = {record["itemId"]: record for record in inventory}
    merged = []
    for item in menu:
        record = by_item.get(item["id"], {})
        merged.append(CachedCatalogItem(
            id=item["id"],
            name=item["name"],
            default_amount=float(item.get("defaultAmount", 0)),
            description=item.get("description"),
            category=item.get("category"),
            image_url=item.get("imageUrl"),
            status=bool(item.get("status", True)),
            price=record.get("price"),
            quantity=int(record.get("quantity", 0)),
            enabled=bool(record.get("enabled", True)),
        ))
    return merged


class CatalogCache:

    def __init__(self, store: TerminalStore):
        self._store = store

    def cache_menu(self, menu: Iterable[Dict[str, Any]], inventory: Iterable[Dict[str, Any]]) -> List[CachedCatalogItem]:
        """Replace the cache with a fresh merge of menu and inventory."""
        items = merge_menu_with_inventory(menu, inventory)
        self._store.replace(CATALOG, {item.id: item.to_dict() for item in items})
        logger.info(f"Cached {len(items)} menu items")
        return items

    def get(self, item_id: str) -> Optional[CachedCatalogItem]:
        data = self._store.get(CATALOG, item_id)
        return CachedCatalogItem.from_dict(data) if data else None

    def items(self) -> List[CachedCatalogItem]:
        items = [CachedCatalogItem.from_dict(d) for d in self._store.load(CATALOG).values()]
        return sorted(items, key=lambda i: (i.category or "", i.name))

    def apply_deltas(self, deltas: Dict[str, Dict[str, Any]]) -> int:
        """
        Patch cached items with pending inventory deltas (camelCase, only
        the fields present are applied). Unknown items are skipped.
        """
        def _patch(data):
            patched = 0
            for item_id, delta in deltas.items():
                cached = data.get(item_id)
                if cached is None:
                    continue
                if delta.get("price") is not None:
                    cached["price"] = delta["price"]
                if delta.get("quantity") is not None:
                    cached["quantity"] = delta["quantity"]
                if delta.get("enabled") is not None:
                    cached["enabled"] = delta["enabled"]
                patched += 1
            return patched

        if not deltas:
            return 0
        return self._store.update(CATALOG, _patch)
