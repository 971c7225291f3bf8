"""
Realtime Broadcast Factory

Usage:
    from orderflow.services.realtime import get_broadcast_hub

    hub = get_broadcast_hub()
    await hub.broadcast(location_id, order_created(payload))

Backend Switching:
    - BROADCAST_BACKEND=memory → MemoryBroadcastHub (one gateway process)
    - BROADCAST_BACKEND=redis → RedisBroadcastHub (pub/sub across processes)
"""

import logging
from functools import lru_cache

from orderflow.core.config import BroadcastBackend, get_settings
from orderflow.services.realtime.board import OrderBoard
from orderflow.services.realtime.events import (
    INVENTORY_UPDATE,
    ORDER_CREATED,
    ORDER_STATUS,
    InventoryDelta,
    InventoryUpdateEvent,
    OrderCreatedEvent,
    OrderStatusEvent,
    OrderStatusPatch,
    RealtimeEvent,
    decode_event,
    encode_event,
    inventory_update,
    order_created,
    order_status,
)
from orderflow.services.realtime.hub import (
    BaseBroadcastHub,
    MemoryBroadcastHub,
    room_name,
)
from orderflow.services.realtime.redis_bridge import RedisBroadcastHub

logger = logging.getLogger(__name__)


def build_broadcast_hub() -> BaseBroadcastHub:
    """Create a new hub for the configured backend."""
    settings = get_settings()

    if settings.broadcast_backend == BroadcastBackend.REDIS:
        logger.info("Broadcast Hub: Using RedisBroadcastHub")
        return RedisBroadcastHub(
            redis_url=settings.redis_url,
            channel_prefix=settings.broadcast_channel_prefix,
            send_timeout=settings.broadcast_send_timeout,
            reconnect_delay=settings.broadcast_reconnect_delay,
            max_reconnect_delay=settings.broadcast_reconnect_max_delay,
        )

    logger.info("Broadcast Hub: Using MemoryBroadcastHub")
    return MemoryBroadcastHub(send_timeout=settings.broadcast_send_timeout)


@lru_cache()
def get_broadcast_hub() -> BaseBroadcastHub:
    """Process-wide hub shared by the API routes and the socket endpoint."""
    return build_broadcast_hub()


def reset_broadcast_hub() -> None:
    get_broadcast_hub.cache_clear()
    logger.debug("Broadcast hub cache cleared")


__all__ = [
    "get_broadcast_hub",
    "build_broadcast_hub",
    "reset_broadcast_hub",
    "BaseBroadcastHub",
    "MemoryBroadcastHub",
    "RedisBroadcastHub",
    "OrderBoard",
    "room_name",
    "RealtimeEvent",
    "OrderCreatedEvent",
    "OrderStatusEvent",
    "InventoryUpdateEvent",
    "OrderStatusPatch",
    "InventoryDelta",
    "ORDER_CREATED",
    "ORDER_STATUS",
    "INVENTORY_UPDATE",
    "decode_event",
    "encode_event",
    "order_created",
    "order_status",
    "inventory_update",
]
