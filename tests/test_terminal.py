"""Terminal store, cart, catalog cache, reconciler and client tests."""

import json

import httpx
import pytest

from orderflow.services.realtime import InventoryDelta, encode_event, inventory_update, order_status
from orderflow.terminal import (
    CachedCatalogItem,
    Cart,
    CartEntry,
    CatalogCache,
    CheckoutBlocked,
    TerminalApiError,
    TerminalCartReconciler,
    TerminalClient,
    TerminalStore,
    merge_menu_with_inventory,
)
from orderflow.terminal.reconciler import format_price
from orderflow.terminal.store import CART, CATALOG, PENDING_DELTAS

MENU = [
    {"id": "wrap", "name": "Paneer Wrap", "defaultAmount": 120.0, "category": "Mains", "status": True},
    {"id": "dosa", "name": "Masala Dosa", "defaultAmount": 90.0, "category": "Mains", "status": True},
    {"id": "lassi", "name": "Mango Lassi", "defaultAmount": 70.0, "category": "Drinks", "status": True},
]
INVENTORY = [
    {"itemId": "wrap", "locationId": "loc-1", "price": 100.0, "quantity": 5, "enabled": True},
    {"itemId": "dosa", "locationId": "loc-1", "price": None, "quantity": 4, "enabled": True},
]


@pytest.fixture
def store(tmp_path):
    return TerminalStore(tmp_path, "kiosk-1")


@pytest.fixture
def catalog(store):
    cache = CatalogCache(store)
    cache.cache_menu(MENU, INVENTORY)
    return cache


@pytest.fixture
def reconciler(store, catalog):
    return TerminalCartReconciler(store, catalog=catalog)


def fill_cart(cart: Cart, *entries):
    cart.patch({e.item_id: e for e in entries})


class TestTerminalStore:

    def test_namespaces_persist_across_instances(self, tmp_path):
        TerminalStore(tmp_path, "kiosk-1").put(CART, "wrap", {"quantity": 2})

        assert TerminalStore(tmp_path, "kiosk-1").get(CART, "wrap") == {"quantity": 2}
        assert TerminalStore(tmp_path, "kiosk-2").load(CART) == {}

    def test_update_returns_mutation_result(self, store):
        assert store.update(CATALOG, lambda data: data.setdefault("a", 1)) == 1
        assert store.load(CATALOG) == {"a": 1}

    def test_delete_and_clear(self, store):
        store.put(PENDING_DELTAS, "a", {"quantity": 1})
        store.put(PENDING_DELTAS, "b", {"quantity": 2})

        store.delete(PENDING_DELTAS, "a")
        assert list(store.load(PENDING_DELTAS)) == ["b"]

        store.clear(PENDING_DELTAS)
        assert store.load(PENDING_DELTAS) == {}

    def test_unknown_namespace(self, store):
        with pytest.raises(ValueError):
            store.load("orders")

    def test_corrupt_file_reads_as_empty(self, store):
        (store.directory / "cart.json").write_text("{not json", encoding="utf-8")
        assert store.load(CART) == {}

    def test_discard_consumed_keeps_newer_writes(self, store):
        store.put(PENDING_DELTAS, "a", {"itemId": "a", "quantity": 1})
        store.put(PENDING_DELTAS, "b", {"itemId": "b", "quantity": 2})
        consumed = store.load(PENDING_DELTAS)

        store.put(PENDING_DELTAS, "b", {"itemId": "b", "quantity": 0})

        assert store.discard_consumed(PENDING_DELTAS, consumed) == 1
        assert store.load(PENDING_DELTAS) == {"b": {"itemId": "b", "quantity": 0}}


class TestCatalogCache:

    def test_merge_prefers_outlet_price(self):
        items = {item.id: item for item in merge_menu_with_inventory(MENU, INVENTORY)}

        assert items["wrap"].display_price == 100.0
        assert items["dosa"].display_price == 90.0
        assert items["dosa"].in_stock is True
        assert items["lassi"].quantity == 0
        assert items["lassi"].in_stock is False

    def test_items_sorted_by_category_and_name(self, catalog):
        assert [i.id for i in catalog.items()] == ["lassi", "dosa", "wrap"]

    def test_apply_deltas_patches_present_fields(self, catalog):
        patched = catalog.apply_deltas({
            "wrap": {"itemId": "wrap", "quantity": 0},
            "ghost": {"itemId": "ghost", "quantity": 3},
        })

        wrap = catalog.get("wrap")
        assert patched == 1
        assert (wrap.quantity, wrap.price, wrap.enabled) == (0, 100.0, True)
        assert catalog.get("ghost") is None

    def test_round_trip(self):
        item = CachedCatalogItem(id="x", name="X", default_amount=10.0, quantity=2)
        assert CachedCatalogItem.from_dict(item.to_dict()) == item


class TestCart:

    def test_add_uses_display_price_and_persists(self, store, catalog):
        cart = Cart(store)
        assert cart.add(catalog.get("wrap")) is None
        assert cart.add(catalog.get("wrap")) is None
        cart.add(catalog.get("dosa"))

        reloaded = Cart(store)
        assert reloaded.get("wrap") == CartEntry("wrap", "Paneer Wrap", 100.0, 2)
        assert reloaded.total == 290.0
        assert reloaded.count == 3

    def test_add_respects_stock(self, store, catalog):
        cart = Cart(store)
        assert cart.add(catalog.get("lassi")) == '"Mango Lassi" is out of stock'

        dosa = catalog.get("dosa")
        for _ in range(4):
            cart.add(dosa)
        assert cart.add(dosa) == 'Only 4 of "Masala Dosa" available'
        assert cart.get("dosa").quantity == 4

    def test_increment_decrement_remove(self, store, catalog):
        cart = Cart(store)
        cart.add(catalog.get("wrap"))

        assert cart.increment("wrap", available=2) is None
        assert cart.increment("wrap", available=2) == 'Only 2 of "Paneer Wrap" available'
        cart.decrement("wrap")
        cart.decrement("wrap")
        assert "wrap" not in cart

        cart.add(catalog.get("dosa"))
        cart.remove("dosa")
        assert len(cart) == 0

    def test_get_returns_a_copy(self, store, catalog):
        cart = Cart(store)
        cart.add(catalog.get("wrap"))

        cart.get("wrap").quantity = 99
        assert cart.get("wrap").quantity == 1

    def test_order_items_shape(self, store):
        cart = Cart(store)
        fill_cart(cart, CartEntry("wrap", "Paneer Wrap", 100.0, 2))
        assert cart.to_order_items() == [{"id": "wrap", "name": "Paneer Wrap", "quantity": 2, "price": 100.0}]


class TestIngestion:

    def test_deltas_are_queued_not_applied(self, reconciler):
        fill_cart(reconciler.cart, CartEntry("wrap", "Paneer Wrap", 100.0, 3))

        reconciler.ingest(InventoryDelta(item_id="wrap", quantity=1))

        assert reconciler.cart.get("wrap").quantity == 3
        assert reconciler.pending() == {"wrap": {"itemId": "wrap", "quantity": 1}}

    def test_latest_delta_per_item_wins(self, reconciler):
        reconciler.ingest({"itemId": "wrap", "quantity": 1})
        reconciler.ingest({"itemId": "wrap", "price": 110.0})
        assert reconciler.pending() == {"wrap": {"itemId": "wrap", "price": 110.0}}

    def test_handle_event_only_queues_inventory_updates(self, reconciler):
        assert reconciler.handle_event(encode_event(inventory_update("dosa", quantity=2))) is True
        assert reconciler.handle_event(encode_event(order_status("o-1", fulfillment_status="cooking"))) is False
        assert reconciler.handle_event("garbage") is False
        assert list(reconciler.pending()) == ["dosa"]


class TestCheckoutReconciliation:

    def test_clamp_to_available(self, reconciler):
        fill_cart(reconciler.cart, CartEntry("wrap", "Paneer Wrap", 100.0, 3))
        reconciler.ingest({"itemId": "wrap", "quantity": 1})

        notices = reconciler.open_checkout()

        assert notices == ["Paneer Wrap: only 1 available — reduced from 3 to 1."]
        assert reconciler.cart.get("wrap").quantity == 1
        assert catalog_quantity(reconciler, "wrap") == 1
        assert reconciler.pending() == {}

    def test_disabled_item_removed(self, reconciler):
        fill_cart(reconciler.cart, CartEntry("wrap", "Paneer Wrap", 100.0, 1))
        reconciler.ingest({"itemId": "wrap", "enabled": False, "quantity": 0})

        assert reconciler.open_checkout() == ["Paneer Wrap is no longer available — removed from cart."]
        assert "wrap" not in reconciler.cart
        assert reconciler.catalog.get("wrap").enabled is False

    def test_sold_out_item_removed(self, reconciler):
        fill_cart(reconciler.cart, CartEntry("dosa", "Masala Dosa", 90.0, 2))
        reconciler.ingest({"itemId": "dosa", "quantity": 0})

        assert reconciler.open_checkout() == ["Masala Dosa is out of stock — removed from cart."]
        assert len(reconciler.cart) == 0

    def test_clamp_and_reprice_compose(self, reconciler):
        fill_cart(reconciler.cart, CartEntry("wrap", "Paneer Wrap", 100.0, 4))
        reconciler.ingest({"itemId": "wrap", "quantity": 2, "price": 112.5})

        notices = reconciler.open_checkout()

        assert notices == [
            "Paneer Wrap: only 2 available — reduced from 4 to 2.",
            "Price of Paneer Wrap updated: ₹100 → ₹112.5.",
        ]
        assert reconciler.cart.get("wrap") == CartEntry("wrap", "Paneer Wrap", 112.5, 2)
        assert reconciler.cart.total == 225.0

    def test_enough_stock_and_same_price_is_silent(self, reconciler):
        fill_cart(reconciler.cart, CartEntry("wrap", "Paneer Wrap", 100.0, 2))
        reconciler.ingest({"itemId": "wrap", "quantity": 4, "price": 100.0})

        assert reconciler.open_checkout() == []
        assert reconciler.cart.get("wrap").quantity == 2
        assert catalog_quantity(reconciler, "wrap") == 4

    def test_delta_for_item_not_in_cart_only_patches_catalog(self, reconciler):
        fill_cart(reconciler.cart, CartEntry("wrap", "Paneer Wrap", 100.0, 1))
        reconciler.ingest({"itemId": "dosa", "quantity": 1})

        assert reconciler.open_checkout() == []
        assert catalog_quantity(reconciler, "dosa") == 1
        assert reconciler.pending() == {}

    def test_reconciling_twice_is_a_no_op(self, reconciler):
        fill_cart(reconciler.cart, CartEntry("wrap", "Paneer Wrap", 100.0, 3))
        reconciler.ingest({"itemId": "wrap", "quantity": 2})

        reconciler.open_checkout()
        assert reconciler.open_checkout() == []
        assert reconciler.cart.get("wrap").quantity == 2

    def test_close_checkout_applies_silently(self, reconciler, store):
        fill_cart(reconciler.cart, CartEntry("wrap", "Paneer Wrap", 100.0, 3))
        reconciler.ingest({"itemId": "wrap", "quantity": 1})

        assert reconciler.close_checkout() is None
        assert Cart(store).get("wrap").quantity == 1
        assert reconciler.pending() == {}


def catalog_quantity(reconciler, item_id):
    return reconciler.catalog.get(item_id).quantity


class FakeClient:
    def __init__(self, order_status="Completed"):
        self.order_status = order_status
        self.calls = []

    async def place_order(self, **kwargs):
        self.calls.append(kwargs)
        return {"id": "o-1", "orderNo": 12, "orderStatus": self.order_status}


class TestSubmit:

    async def test_completed_order_clears_cart(self, reconciler):
        fill_cart(reconciler.cart, CartEntry("wrap", "Paneer Wrap", 100.0, 2))
        client = FakeClient("Completed")

        order = await reconciler.submit(client, "Asha Rao", "asha@okbank")

        assert order["orderNo"] == 12
        assert client.calls == [{
            "items": [{"id": "wrap", "name": "Paneer Wrap", "quantity": 2, "price": 100.0}],
            "total_amount": 200.0,
            "payer_name": "Asha Rao",
            "upi_id": "asha@okbank",
        }]
        assert len(reconciler.cart) == 0

    async def test_failed_order_keeps_cart(self, reconciler):
        fill_cart(reconciler.cart, CartEntry("wrap", "Paneer Wrap", 100.0, 2))

        await reconciler.submit(FakeClient("Failed"), "Asha Rao", "asha@okbank")

        assert reconciler.cart.get("wrap").quantity == 2

    async def test_empty_cart_is_blocked(self, reconciler):
        assert reconciler.checkout_ready is False
        with pytest.raises(CheckoutBlocked):
            await reconciler.submit(FakeClient(), "Asha Rao", "asha@okbank")

    async def test_blocked_while_reconciling(self, reconciler):
        fill_cart(reconciler.cart, CartEntry("wrap", "Paneer Wrap", 100.0, 1))
        reconciler._reconciling = True

        assert reconciler.checkout_ready is False
        with pytest.raises(CheckoutBlocked, match="being updated"):
            await reconciler.submit(FakeClient(), "Asha Rao", "asha@okbank")


def test_format_price():
    assert format_price(100.0) == "100"
    assert format_price(112.5) == "112.5"
    assert format_price(99.99) == "99.99"


class TestTerminalClient:

    @staticmethod
    def client_for(handler):
        return TerminalClient("http://kiosk-api.local/", "tok", transport=httpx.MockTransport(handler))

    async def test_place_order_sends_camel_case_body(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, json={"id": "o-1", "orderStatus": "Completed"})

        order = await self.client_for(handler).place_order(
            [{"id": "wrap", "name": "Paneer Wrap", "quantity": 1, "price": 100.0}], 100.0, "Asha", "asha@okbank"
        )

        assert order["orderStatus"] == "Completed"
        assert seen["url"] == "http://kiosk-api.local/api/v1/orders"
        assert seen["auth"] == "Bearer tok"
        assert seen["body"]["totalAmount"] == 100.0
        assert seen["body"]["paymentDetails"] == {"name": "Asha", "upiId": "asha@okbank"}

    async def test_error_detail_is_raised(self):
        def handler(request):
            return httpx.Response(400, json={"success": False, "error": "Insufficient Stock",
                                             "detail": 'Insufficient stock for item "Paneer Wrap"'})

        with pytest.raises(TerminalApiError) as exc:
            await self.client_for(handler).place_order([], 1.0, "Asha", "asha@okbank")

        assert exc.value.status_code == 400
        assert "Paneer Wrap" in exc.value.detail

    async def test_refresh_catalog(self, store):
        def handler(request):
            if request.url.path.endswith("/kiosks/menu"):
                return httpx.Response(200, json=MENU)
            return httpx.Response(200, json=INVENTORY)

        items = await self.client_for(handler).refresh_catalog(CatalogCache(store))

        assert len(items) == 3
        assert CatalogCache(store).get("wrap").price == 100.0

    def test_ws_url(self):
        assert TerminalClient("http://host:8080", "t").ws_url == "ws://host:8080/ws"
        assert TerminalClient("https://host", "t").ws_url == "wss://host/ws"
