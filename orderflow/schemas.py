"""
Pydantic Schemas for Request/Response Validation

Wire format is camelCase (what the kiosk, kitchen and display clients send
and expect); Python attributes stay snake_case.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from orderflow.models import CatalogItem, InventoryRecord, Order


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class OrderItemCreate(CamelModel):
    """Single cart line submitted by a terminal."""
    id: str = Field(..., min_length=1, examples=["65f0c2a1b3"])
    name: str = Field(..., min_length=1, max_length=100, examples=["Paneer Wrap"])
    quantity: int = Field(..., ge=1, le=99, examples=[2])
    price: float = Field(..., ge=0, examples=[120.0])


class PaymentDetails(CamelModel):
    """UPI payer identity."""
    name: str = Field(..., min_length=1, max_length=100)
    upi_id: str = Field(..., min_length=1, max_length=100, examples=["asha@okbank"])

    @field_validator("name", "upi_id")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class OrderCreate(CamelModel):
    """Request schema for placing a kiosk order."""
    items: List[OrderItemCreate] = Field(..., min_length=1)
    total_amount: float = Field(..., gt=0, examples=[240.0])
    payment_details: PaymentDetails


class InventoryUpsert(CamelModel):
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=0)


class InventoryPriceUpdate(CamelModel):
    price: float = Field(..., ge=0)


class InventoryQuantityUpdate(CamelModel):
    quantity: int = Field(..., ge=0)


class InventoryStatusUpdate(CamelModel):
    enabled: bool


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class OrderLine(CamelModel):
    item_id: str
    name: str
    qty: int
    price: float


class OrderResponse(CamelModel):
    """Full order payload (REST responses and ``order:new`` events)."""
    id: str
    order_no: int
    items: List[OrderLine]
    total_amount: float
    location_id: str
    tenant_id: str
    payment_status: str
    order_status: str
    fulfillment_status: str
    payment_details: Optional[PaymentDetails] = None
    payment_reference: Optional[str] = None
    failure_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_order(cls, order: Order) -> "OrderResponse":
        return cls(
            id=order.id,
            order_no=order.order_no,
            items=[OrderLine(**line) for line in order.items_snapshot],
            total_amount=order.total_amount,
            location_id=order.location_id,
            tenant_id=order.tenant_id,
            payment_status=order.payment_status.value,
            order_status=order.order_status.value,
            fulfillment_status=order.fulfillment_status.value,
            payment_details=order.payment_details_dict,
            payment_reference=order.payment_reference,
            failure_reason=order.failure_reason,
            created_at=order.created_at,
            updated_at=order.updated_at,
            completed_at=order.completed_at,
        )


class DisplayOrderResponse(CamelModel):
    """Reduced order view for the customer-facing display board."""
    id: str
    order_no: int
    fulfillment_status: str
    total_amount: float
    items: List[OrderLine]
    created_at: Optional[datetime] = None

    @classmethod
    def from_order(cls, order: Order) -> "DisplayOrderResponse":
        return cls(
            id=order.id,
            order_no=order.order_no,
            fulfillment_status=order.fulfillment_status.value,
            total_amount=order.total_amount,
            items=[OrderLine(**line) for line in order.items_snapshot],
            created_at=order.created_at,
        )


class InventoryRecordResponse(CamelModel):
    item_id: str
    location_id: str
    quantity: int
    price: Optional[float] = None
    enabled: bool
    updated_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: InventoryRecord) -> "InventoryRecordResponse":
        return cls.model_validate(record)


class CatalogItemResponse(CamelModel):
    id: str
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    default_amount: float
    status: bool
    image_url: Optional[str] = None

    @classmethod
    def from_item(cls, item: CatalogItem) -> "CatalogItemResponse":
        return cls.model_validate(item)


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    database: str
    redis: str
    payment_service: str
    broadcast_backend: str
    timestamp: datetime
