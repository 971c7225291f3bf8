"""
Realtime Event Shapes

Every message pushed into a location room is a JSON object with an
``event`` discriminant and a ``data`` payload:

    {"event": "order:new",        "data": {...full order...}}
    {"event": "order:status",     "data": {"orderId", "orderNo"?, "fulfillmentStatus"?,
                                           "orderStatus"?, "paymentStatus"?}}
    {"event": "inventory:update", "data": {"itemId", "price"?, "quantity"?, "enabled"?}}

This module has no database imports so terminals can decode events with it.
"""

import json
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

ORDER_CREATED = "order:new"
ORDER_STATUS = "order:status"
INVENTORY_UPDATE = "inventory:update"


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OrderStatusPatch(_WireModel):
    """Partial order update; absent fields are left untouched by consumers."""
    order_id: str
    order_no: Optional[int] = None
    fulfillment_status: Optional[str] = None
    order_status: Optional[str] = None
    payment_status: Optional[str] = None


class InventoryDelta(_WireModel):
    """Resulting stock values of one item at one location."""
    item_id: str
    price: Optional[float] = None
    quantity: Optional[int] = Field(default=None, ge=0)
    enabled: Optional[bool] = None


class OrderCreatedEvent(_WireModel):
    event: Literal["order:new"] = ORDER_CREATED
    data: Dict[str, Any]

    @property
    def order_id(self) -> Optional[str]:
        return self.data.get("id")


class OrderStatusEvent(_WireModel):
    event: Literal["order:status"] = ORDER_STATUS
    data: OrderStatusPatch


class InventoryUpdateEvent(_WireModel):
    event: Literal["inventory:update"] = INVENTORY_UPDATE
    data: InventoryDelta


RealtimeEvent = Annotated[
    Union[OrderCreatedEvent, OrderStatusEvent, InventoryUpdateEvent],
    Field(discriminator="event"),
]

_event_adapter = TypeAdapter(RealtimeEvent)


def decode_event(payload: Union[str, bytes, Dict[str, Any]]) -> RealtimeEvent:
    """
    Parse a wire message into one of the three event shapes.

    Raises:
        ValueError: Unknown ``event`` tag or malformed payload
    """
    if isinstance(payload, (str, bytes)):
        payload = json.loads(payload)
    return _event_adapter.validate_python(payload)


def encode_event(event: RealtimeEvent) -> Dict[str, Any]:
    return event.model_dump(by_alias=True, exclude_none=True, mode="json")


# =============================================================================
# CONSTRUCTORS
# =============================================================================

def order_created(order_payload: Dict[str, Any]) -> OrderCreatedEvent:
    return OrderCreatedEvent(data=order_payload)


def order_status(
    order_id: str,
    order_no: Optional[int] = None,
    fulfillment_status: Optional[str] = None,
    order_status: Optional[str] = None,
    payment_status: Optional[str] = None,
) -> OrderStatusEvent:
    return OrderStatusEvent(
        data=OrderStatusPatch(
            order_id=order_id,
            order_no=order_no,
            fulfillment_status=fulfillment_status,
            order_status=order_status,
            payment_status=payment_status,
        )
    )


def inventory_update(
    item_id: str,
    price: Optional[float] = None,
    quantity: Optional[int] = None,
    enabled: Optional[bool] = None,
) -> InventoryUpdateEvent:
    return InventoryUpdateEvent(
        data=InventoryDelta(item_id=item_id, price=price, quantity=quantity, enabled=enabled)
    )
