"""Realtime events, broadcast hub and order board tests."""

import asyncio
import json

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from orderflow.services.realtime import (
    InventoryUpdateEvent,
    MemoryBroadcastHub,
    OrderBoard,
    OrderCreatedEvent,
    OrderStatusEvent,
    RedisBroadcastHub,
    decode_event,
    encode_event,
    inventory_update,
    order_created,
    order_status,
    room_name,
)
from tests.conftest import LOCATION_ID, OTHER_LOCATION_ID, RecordingMember


def order_payload(order_id, order_no, created_at, fulfillment_status="created"):
    return {
        "id": order_id,
        "orderNo": order_no,
        "orderStatus": "Completed",
        "fulfillmentStatus": fulfillment_status,
        "createdAt": created_at,
        "items": [],
    }


class TestEvents:

    def test_inventory_update_drops_absent_fields(self):
        event = inventory_update("item-1", quantity=0)
        assert encode_event(event) == {"event": "inventory:update", "data": {"itemId": "item-1", "quantity": 0}}

    def test_order_status_uses_camel_case(self):
        event = order_status("o-1", order_no=4, fulfillment_status="cooking")
        assert encode_event(event) == {
            "event": "order:status",
            "data": {"orderId": "o-1", "orderNo": 4, "fulfillmentStatus": "cooking"},
        }

    def test_decode_picks_shape_from_event_tag(self):
        assert isinstance(decode_event({"event": "order:new", "data": {"id": "o-1"}}), OrderCreatedEvent)
        assert isinstance(decode_event('{"event": "order:status", "data": {"orderId": "o-1"}}'), OrderStatusEvent)
        event = decode_event(b'{"event": "inventory:update", "data": {"itemId": "i", "price": 99.5}}')
        assert isinstance(event, InventoryUpdateEvent)
        assert event.data.item_id == "i"
        assert event.data.price == 99.5

    @pytest.mark.parametrize("payload", [
        {"event": "order:deleted", "data": {}},
        {"event": "inventory:update", "data": {"price": 10}},
        {"event": "inventory:update", "data": {"itemId": "i", "quantity": -1}},
        "not json",
    ])
    def test_decode_rejects_malformed(self, payload):
        with pytest.raises(ValueError):
            decode_event(payload)

    def test_order_created_exposes_id(self):
        assert order_created({"id": "o-9"}).order_id == "o-9"


class TestMemoryBroadcastHub:

    async def test_members_of_the_room_receive_events(self, hub):
        kitchen, display, elsewhere = RecordingMember(), RecordingMember(), RecordingMember()
        assert hub.join(LOCATION_ID, kitchen) == room_name(LOCATION_ID) == "outlet:loc-1"
        hub.join(LOCATION_ID, display)
        hub.join(OTHER_LOCATION_ID, elsewhere)

        assert await hub.broadcast(LOCATION_ID, inventory_update("item-1", quantity=3)) is True

        assert kitchen.messages == display.messages == [
            {"event": "inventory:update", "data": {"itemId": "item-1", "quantity": 3}}
        ]
        assert elsewhere.messages == []

    async def test_empty_room_is_not_an_error(self, hub):
        assert await hub.broadcast("nobody-here", order_status("o-1")) is True

    async def test_dead_member_is_dropped(self, hub):
        alive, dead = RecordingMember(), RecordingMember(fail=True)
        hub.join(LOCATION_ID, alive)
        hub.join(LOCATION_ID, dead)

        delivered = await hub.deliver_local(LOCATION_ID, {"event": "order:status", "data": {"orderId": "o"}})

        assert delivered == 1
        assert hub.members(LOCATION_ID) == {alive}
        assert hub.get_stats()["dropped_connections"] == 1

    async def test_leave_and_disconnect(self, hub):
        member = RecordingMember()
        hub.join(LOCATION_ID, member)
        hub.join(OTHER_LOCATION_ID, member)

        hub.leave(LOCATION_ID, member)
        assert hub.room_size(LOCATION_ID) == 0
        assert hub.room_size(OTHER_LOCATION_ID) == 1

        hub.disconnect(member)
        assert hub.get_stats()["active_rooms"] == 0

    async def test_failed_publish_is_reported_not_raised(self):
        class BrokenHub(MemoryBroadcastHub):
            async def publish(self, location_id, event):
                raise ConnectionError("transport down")

        assert await BrokenHub().broadcast(LOCATION_ID, order_status("o-1")) is False

    async def test_stalled_member_does_not_hold_up_the_room(self):
        class StalledMember(RecordingMember):
            async def send_text(self, data):
                await asyncio.sleep(10)

        hub = MemoryBroadcastHub(send_timeout=0.05)
        alive, stalled = RecordingMember(), StalledMember()
        hub.join(LOCATION_ID, stalled)
        hub.join(LOCATION_ID, alive)

        delivered = await asyncio.wait_for(
            hub.deliver_local(LOCATION_ID, {"event": "order:status", "data": {"orderId": "o"}}), timeout=1
        )

        assert delivered == 1
        assert alive.messages == [{"event": "order:status", "data": {"orderId": "o"}}]
        assert hub.members(LOCATION_ID) == {alive}

    def test_stats(self, hub, room):
        stats = hub.get_stats()
        assert stats["backend"] == "memory"
        assert stats["active_connections"] == 1


class FakePubSub:
    def __init__(self, messages):
        self.messages = messages
        self.closed = False

    async def listen(self):
        for message in self.messages:
            yield message

    async def aclose(self):
        self.closed = True


class DroppingPubSub(FakePubSub):
    """Loses its connection on the first listen, then delivers."""

    def __init__(self, messages):
        super().__init__(messages)
        self.listens = 0
        self.patterns = []

    async def psubscribe(self, pattern):
        self.patterns.append(pattern)

    async def listen(self):
        self.listens += 1
        if self.listens == 1:
            raise RedisConnectionError("Connection reset by peer")
        async for message in super().listen():
            yield message


class TestRedisBroadcastHub:

    @pytest.fixture
    def redis_hub(self):
        return RedisBroadcastHub("redis://127.0.0.1:1/0", channel_prefix="test:outlet:", reconnect_delay=0)

    def test_channel_per_location(self, redis_hub):
        assert redis_hub.channel_for(LOCATION_ID) == "test:outlet:loc-1"
        assert redis_hub.backend_name == "redis"

    async def test_relay_delivers_to_local_members(self, redis_hub):
        member = RecordingMember()
        redis_hub.join(LOCATION_ID, member)
        pubsub = FakePubSub([
            {"type": "psubscribe", "channel": "test:outlet:*", "data": 1},
            {"type": "pmessage", "channel": "test:outlet:loc-1", "data": "{broken"},
            {
                "type": "pmessage",
                "channel": "test:outlet:loc-1",
                "data": json.dumps(encode_event(order_status("o-1", fulfillment_status="served"))),
            },
        ])

        await redis_hub._relay(pubsub)

        assert member.messages == [
            {"event": "order:status", "data": {"orderId": "o-1", "fulfillmentStatus": "served"}}
        ]
        assert pubsub.closed is True

    async def test_relay_resubscribes_after_connection_loss(self, redis_hub):
        member = RecordingMember()
        redis_hub.join(LOCATION_ID, member)
        pubsub = DroppingPubSub([{
            "type": "pmessage",
            "channel": "test:outlet:loc-1",
            "data": json.dumps(encode_event(order_status("o-2", order_status="Completed"))),
        }])

        await asyncio.wait_for(redis_hub._relay(pubsub), timeout=1)

        assert pubsub.listens == 2
        assert pubsub.patterns == ["test:outlet:*"]
        assert member.messages == [
            {"event": "order:status", "data": {"orderId": "o-2", "orderStatus": "Completed"}}
        ]
        assert pubsub.closed is True

    async def test_unreachable_redis_does_not_raise(self, redis_hub):
        assert await redis_hub.broadcast(LOCATION_ID, order_status("o-1")) is False
        assert await redis_hub.ping() is False
        await redis_hub.stop()


class TestOrderBoard:

    def test_snapshot_then_new_order(self):
        board = OrderBoard()
        board.load_snapshot([order_payload("a", 1, "2026-01-01T10:00:00Z")])

        assert board.apply(order_created(order_payload("b", 2, "2026-01-01T10:05:00Z"))) is True
        assert [o["id"] for o in board.orders()] == ["a", "b"]

    def test_duplicate_new_order_is_ignored(self):
        board = OrderBoard()
        event = order_created(order_payload("a", 1, "2026-01-01T10:00:00Z"))

        assert board.apply(event) is True
        assert board.apply(event) is False
        assert len(board) == 1

    def test_status_patch_merges_and_is_idempotent(self):
        board = OrderBoard()
        board.load_snapshot([order_payload("a", 1, "2026-01-01T10:00:00Z")])
        patch = order_status("a", fulfillment_status="cooking")

        assert board.apply(patch) is True
        assert board.apply(patch) is False
        assert board.get("a")["fulfillmentStatus"] == "cooking"
        assert board.get("a")["orderStatus"] == "Completed"

    def test_served_order_leaves_and_stays_gone(self):
        board = OrderBoard()
        new_order = order_created(order_payload("a", 1, "2026-01-01T10:00:00Z"))
        board.apply(new_order)

        assert board.apply(order_status("a", fulfillment_status="served")) is True
        assert "a" not in board
        assert board.apply(new_order) is False

    def test_patch_for_unknown_order_is_ignored(self):
        board = OrderBoard()
        assert board.apply(order_status("ghost", fulfillment_status="cooking")) is False

    def test_inventory_events_do_not_touch_board(self):
        board = OrderBoard()
        assert board.apply_message(json.dumps({"event": "inventory:update", "data": {"itemId": "i"}})) is False

    def test_orders_sorted_by_creation_then_number(self):
        board = OrderBoard()
        board.load_snapshot([
            order_payload("late", 3, "2026-01-01T10:09:00Z"),
            order_payload("tie-b", 2, "2026-01-01T10:00:00Z"),
            order_payload("tie-a", 1, "2026-01-01T10:00:00Z"),
        ])
        assert [o["id"] for o in board.orders()] == ["tie-a", "tie-b", "late"]
