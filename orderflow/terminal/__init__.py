"""
Kiosk terminal side: local store, cart, offline catalog, checkout
reconciliation and the API client.

Usage:
    store = TerminalStore(settings.terminal_data_directory, terminal_id)
    reconciler = TerminalCartReconciler(store)
    notices = reconciler.open_checkout()
    order = await reconciler.submit(client, "Asha", "asha@okbank")
"""

from orderflow.terminal.cart import Cart, CartEntry
from orderflow.terminal.catalog import CachedCatalogItem, CatalogCache, merge_menu_with_inventory
from orderflow.terminal.client import TerminalApiError, TerminalClient
from orderflow.terminal.reconciler import CheckoutBlocked, TerminalCartReconciler
from orderflow.terminal.store import TerminalStore

__all__ = [
    "Cart",
    "CartEntry",
    "CachedCatalogItem",
    "CatalogCache",
    "merge_menu_with_inventory",
    "TerminalApiError",
    "TerminalClient",
    "CheckoutBlocked",
    "TerminalCartReconciler",
    "TerminalStore",
]
