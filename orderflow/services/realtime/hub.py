"""
Realtime Broadcast Hub

One room per location. Kitchen, billing, display and terminal sockets join
the room of the location their credential is bound to; order and inventory
events published for that location fan out to every member.

Delivery is at-least-once and best effort:
    - A member whose socket fails, or stalls past the send timeout, is dropped
      from every room
    - Publishing into an empty room is not an error
    - ``broadcast()`` never raises; a failed publish must not undo an order
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Protocol, Set

from orderflow.services.realtime.events import RealtimeEvent, encode_event

logger = logging.getLogger(__name__)


def room_name(location_id: str) -> str:
    return f"outlet:{location_id}"


class RoomMember(Protocol):
    """Anything that can receive a text frame (a Starlette ``WebSocket``)."""

    async def send_text(self, data: str) -> None: ...


class BaseBroadcastHub(ABC):
    """
    Room bookkeeping and local delivery shared by every backend.

    Subclasses decide how a published event reaches the processes that hold
    the room's sockets; all of them end in ``deliver_local``.
    """

    def __init__(self, send_timeout: float = 2.0):
        self.send_timeout = send_timeout
        self._rooms: Dict[str, Set[RoomMember]] = {}
        self.stats = {
            "published": 0,
            "delivered": 0,
            "dropped_connections": 0,
        }

    @property
    @abstractmethod
    def backend_name(self) -> str:
        pass

    @abstractmethod
    async def publish(self, location_id: str, event: RealtimeEvent) -> None:
        """
        Hand an event to the transport.

        Raises:
            Exception: Transport failures propagate; callers use ``broadcast``
        """
        pass

    async def start(self) -> None:
        """Open transport resources (called from the app lifespan)."""

    async def stop(self) -> None:
        """Release transport resources."""

    # =========================================================================
    # ROOMS
    # =========================================================================

    def join(self, location_id: str, member: RoomMember) -> str:
        room = room_name(location_id)
        self._rooms.setdefault(room, set()).add(member)
        logger.info(f"🔌 Joined {room} ({len(self._rooms[room])} members)")
        return room

    def leave(self, location_id: str, member: RoomMember) -> None:
        room = room_name(location_id)
        members = self._rooms.get(room)
        if not members:
            return
        members.discard(member)
        if not members:
            del self._rooms[room]

    def disconnect(self, member: RoomMember) -> None:
        """Remove a member from every room it joined."""
        for room in list(self._rooms):
            members = self._rooms[room]
            members.discard(member)
            if not members:
                del self._rooms[room]

    def members(self, location_id: str) -> Set[RoomMember]:
        return set(self._rooms.get(room_name(location_id), ()))

    def room_size(self, location_id: str) -> int:
        return len(self._rooms.get(room_name(location_id), ()))

    # =========================================================================
    # DELIVERY
    # =========================================================================

    async def deliver_local(self, location_id: str, message: Dict[str, Any]) -> int:
        """
        Send an encoded event to this process's members of the room.

        Returns:
            Number of members the frame was written to
        """
        members = self.members(location_id)
        if not members:
            return 0

        text = json.dumps(message)
        members = list(members)
        results = await asyncio.gather(
            *(asyncio.wait_for(member.send_text(text), timeout=self.send_timeout) for member in members),
            return_exceptions=True,
        )

        delivered = 0
        disconnected = []
        for member, result in zip(members, results):
            if isinstance(result, BaseException):
                logger.debug(f"Dropping dead connection in {room_name(location_id)}: {result!r}")
                disconnected.append(member)
            else:
                delivered += 1

        for member in disconnected:
            self.disconnect(member)
        self.stats["dropped_connections"] += len(disconnected)
        self.stats["delivered"] += delivered

        return delivered

    async def broadcast(self, location_id: str, event: RealtimeEvent) -> bool:
        """Publish and log on failure. Returns whether the transport accepted it."""
        try:
            await self.publish(location_id, event)
        except Exception as e:
            logger.error(f"⚠️ Broadcast of {event.event} to {room_name(location_id)} failed: {e}")
            return False

        self.stats["published"] += 1
        return True

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self.stats,
            "backend": self.backend_name,
            "active_rooms": len(self._rooms),
            "active_connections": sum(len(m) for m in self._rooms.values()),
        }


class MemoryBroadcastHub(BaseBroadcastHub):
    """Single-process hub: publishing is local delivery."""

    @property
    def backend_name(self) -> str:
        return "memory"

    async def publish(self, location_id: str, event: RealtimeEvent) -> None:
        await self.deliver_local(location_id, encode_event(event))
