"""
FastAPI Application Entry Point

Kiosk Order Flow - order placement and fulfillment core of a multi-tenant
restaurant ordering platform.
Mock payment step and in-memory broadcast in development, real gateway and
Redis broadcast bridge in staging/production.

Endpoints (prefix /api/v1):
    - POST /orders: Place an order from a kiosk terminal
    - GET /orders/{order_id}: Order detail (staff)
    - GET /kitchen/orders: Active orders, oldest first (staff)
    - PATCH /kitchen/orders/{order_id}/status: Advance one kitchen step (staff)
    - GET /displays/orders: Active orders for the customer display
    - GET/PUT/PATCH /items/inventory...: Outlet stock and price
    - GET /kiosks/menu: Tenant menu for terminals
    - WS /ws: Realtime outlet room
    - GET /health: System health check

Version: 1.0.0
"""

import asyncio
import json
import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

import redis.asyncio as aioredis
from fastapi import Depends, FastAPI, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

# Windows-specific event loop policy
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

from orderflow.core.config import get_settings, setup_logging
from orderflow.core.exceptions import OrderFlowError, Unauthorized
from orderflow.core.security import (
    Principal,
    decode_credential,
    require_display,
    require_location_member,
    require_outlet_admin,
    require_staff,
    require_terminal,
)
from orderflow.database import engine, get_db, init_db
from orderflow.schemas import (
    CatalogItemResponse,
    DisplayOrderResponse,
    ErrorResponse,
    HealthResponse,
    InventoryPriceUpdate,
    InventoryQuantityUpdate,
    InventoryRecordResponse,
    InventoryStatusUpdate,
    InventoryUpsert,
    OrderCreate,
    OrderResponse,
)
from orderflow.services.fulfillment import FulfillmentStateMachine
from orderflow.services.inventory import InventoryLedger
from orderflow.services.orders import OrderStore
from orderflow.services.ordering import OrderPlacementService
from orderflow.services.payment import get_payment_service
from orderflow.services.realtime import get_broadcast_hub

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    # Startup
    logger.info("=" * 60)
    logger.info(f"🚀 Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    # Initialize database
    await init_db()
    logger.info("✅ Database initialized")

    payment_service = get_payment_service()
    logger.info(f"✅ Payment Service: {payment_service.provider_name}")

    hub = get_broadcast_hub()
    await hub.start()
    logger.info(f"✅ Broadcast Hub: {hub.backend_name}")

    # Orders left Pending by a previous process
    recovered = await OrderPlacementService().recover_stale_orders()
    if recovered["expired"] or recovered["released"]:
        logger.info(f"✅ Recovered stale orders: {recovered}")

    # Validate production config
    if settings.use_real_services:
        missing = settings.validate_production_config()
        if missing:
            logger.warning(f"⚠️ Missing production config: {missing}")

    logger.info("=" * 60)
    logger.info("✅ Application ready!")
    logger.info("=" * 60)

    yield  # Application runs

    # Shutdown
    logger.info("Shutting down...")
    await hub.stop()
    await engine.dispose()
    logger.info("✅ Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Kiosk ordering core: transactional stock reservation, payment with "
        "compensation, kitchen fulfillment and realtime outlet rooms."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(OrderFlowError)
async def orderflow_error_handler(request: Request, exc: OrderFlowError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = []
    for err in exc.errors():
        field = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        problems.append(f"{field}: {err.get('msg')}" if field else str(err.get("msg")))
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(error="Validation Error", detail="; ".join(problems)).model_dump(),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error="Internal Server Error",
            detail=str(exc) if settings.debug else None,
        ).model_dump(),
    )


# =============================================================================
# SERVICE DEPENDENCIES
# =============================================================================

def get_placement_service() -> OrderPlacementService:
    return OrderPlacementService()


def get_fulfillment_service() -> FulfillmentStateMachine:
    return FulfillmentStateMachine()


def get_order_store() -> OrderStore:
    return OrderStore()


def get_inventory_ledger() -> InventoryLedger:
    return InventoryLedger()


ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
}


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"🍽️ Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "health": "/health",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(
    db: AsyncSession = Depends(get_db)
) -> HealthResponse:
    """Verify all system components are operational."""

    # Check database
    db_status = "healthy"
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        db_status = f"unhealthy: {str(e)}"
        logger.error(f"Database health check failed: {e}")

    # Check Redis
    redis_status = "healthy"
    client = aioredis.from_url(settings.redis_url, socket_timeout=2, socket_connect_timeout=2)
    try:
        await client.ping()
    except Exception as e:
        redis_status = f"unhealthy: {str(e)}"
        logger.error(f"Redis health check failed: {e}")
    finally:
        await client.aclose()

    # Check payment service
    payment_service = get_payment_service()
    payment_status = "healthy" if await payment_service.health_check() else "unhealthy"

    overall = "operational" if all(
        s == "healthy" for s in [db_status, redis_status, payment_status]
    ) else "degraded"

    return HealthResponse(
        status=overall,
        database=db_status,
        redis=redis_status,
        payment_service=payment_status,
        broadcast_backend=get_broadcast_hub().backend_name,
        timestamp=datetime.now(),
    )


# =============================================================================
# ORDER ENDPOINTS
# =============================================================================

@app.post(
    f"{API_PREFIX}/orders",
    response_model=OrderResponse,
    status_code=201,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
    summary="Place Order (Kiosk)",
)
async def place_order(
    order_data: OrderCreate,
    principal: Principal = Depends(require_terminal),
    service: OrderPlacementService = Depends(get_placement_service),
) -> OrderResponse:
    """
    Reserve stock, allocate an order number and run the payment step.

    Answers 201 with the order whether payment succeeded (Completed) or not
    (Failed); 400 names the item when stock ran out.
    """
    logger.info(f"Placing order from {principal.identity} ({len(order_data.items)} lines)")
    order = await service.place_order(order_data, principal)
    return OrderResponse.from_order(order)


@app.get(
    f"{API_PREFIX}/orders/{{order_id}}",
    response_model=OrderResponse,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
)
async def get_order(
    order_id: str,
    principal: Principal = Depends(require_staff),
    store: OrderStore = Depends(get_order_store),
) -> OrderResponse:
    """Get a single order of the caller's outlet."""
    order = await store.get(order_id, location_id=principal.location_id)
    return OrderResponse.from_order(order)


# =============================================================================
# KITCHEN & DISPLAY ENDPOINTS
# =============================================================================

@app.get(
    f"{API_PREFIX}/kitchen/orders",
    response_model=List[OrderResponse],
    responses=ERROR_RESPONSES,
    tags=["Kitchen"],
)
async def list_kitchen_orders(
    principal: Principal = Depends(require_staff),
    fulfillment: FulfillmentStateMachine = Depends(get_fulfillment_service),
) -> List[OrderResponse]:
    """Completed orders not yet served, oldest first."""
    orders = await fulfillment.list_active(principal.location_id)
    return [OrderResponse.from_order(o) for o in orders]


@app.patch(
    f"{API_PREFIX}/kitchen/orders/{{order_id}}/status",
    response_model=OrderResponse,
    responses={**ERROR_RESPONSES, 409: {"model": ErrorResponse}},
    tags=["Kitchen"],
    summary="Advance Fulfillment Status",
)
async def advance_order_status(
    order_id: str,
    principal: Principal = Depends(require_staff),
    fulfillment: FulfillmentStateMachine = Depends(get_fulfillment_service),
) -> OrderResponse:
    """Move the order exactly one step: created → received → cooking → prepared → served."""
    order = await fulfillment.advance(order_id, principal.location_id)
    return OrderResponse.from_order(order)


@app.get(
    f"{API_PREFIX}/displays/orders",
    response_model=List[DisplayOrderResponse],
    responses=ERROR_RESPONSES,
    tags=["Display"],
)
async def list_display_orders(
    principal: Principal = Depends(require_display),
    fulfillment: FulfillmentStateMachine = Depends(get_fulfillment_service),
) -> List[DisplayOrderResponse]:
    orders = await fulfillment.list_active(principal.location_id)
    return [DisplayOrderResponse.from_order(o) for o in orders]


# =============================================================================
# INVENTORY ENDPOINTS
# =============================================================================

@app.get(
    f"{API_PREFIX}/items/inventory",
    response_model=List[InventoryRecordResponse],
    responses=ERROR_RESPONSES,
    tags=["Inventory"],
)
async def list_inventory(
    principal: Principal = Depends(require_location_member),
    ledger: InventoryLedger = Depends(get_inventory_ledger),
) -> List[InventoryRecordResponse]:
    records = await ledger.list_records(principal.location_id)
    return [InventoryRecordResponse.from_record(r) for r in records]


@app.get(
    f"{API_PREFIX}/items/inventory/{{item_id}}",
    response_model=InventoryRecordResponse,
    responses=ERROR_RESPONSES,
    tags=["Inventory"],
)
async def get_inventory(
    item_id: str,
    principal: Principal = Depends(require_location_member),
    ledger: InventoryLedger = Depends(get_inventory_ledger),
) -> InventoryRecordResponse:
    record = await ledger.get_record(principal.location_id, item_id)
    return InventoryRecordResponse.from_record(record)


@app.put(
    f"{API_PREFIX}/items/inventory/{{item_id}}",
    response_model=InventoryRecordResponse,
    responses=ERROR_RESPONSES,
    tags=["Inventory"],
    summary="Set Price and Quantity",
)
async def upsert_inventory(
    item_id: str,
    body: InventoryUpsert,
    principal: Principal = Depends(require_outlet_admin),
    ledger: InventoryLedger = Depends(get_inventory_ledger),
) -> InventoryRecordResponse:
    record = await ledger.upsert(
        principal.location_id, principal.tenant_id, item_id,
        price=body.price, quantity=body.quantity, edited_by=principal.subject_id,
    )
    return InventoryRecordResponse.from_record(record)


@app.patch(
    f"{API_PREFIX}/items/inventory/{{item_id}}/price",
    response_model=InventoryRecordResponse,
    responses=ERROR_RESPONSES,
    tags=["Inventory"],
)
async def update_inventory_price(
    item_id: str,
    body: InventoryPriceUpdate,
    principal: Principal = Depends(require_outlet_admin),
    ledger: InventoryLedger = Depends(get_inventory_ledger),
) -> InventoryRecordResponse:
    record = await ledger.set_price(
        principal.location_id, principal.tenant_id, item_id, body.price,
        edited_by=principal.subject_id,
    )
    return InventoryRecordResponse.from_record(record)


@app.patch(
    f"{API_PREFIX}/items/inventory/{{item_id}}/quantity",
    response_model=InventoryRecordResponse,
    responses=ERROR_RESPONSES,
    tags=["Inventory"],
)
async def update_inventory_quantity(
    item_id: str,
    body: InventoryQuantityUpdate,
    principal: Principal = Depends(require_outlet_admin),
    ledger: InventoryLedger = Depends(get_inventory_ledger),
) -> InventoryRecordResponse:
    record = await ledger.set_quantity(
        principal.location_id, principal.tenant_id, item_id, body.quantity,
        edited_by=principal.subject_id,
    )
    return InventoryRecordResponse.from_record(record)


@app.patch(
    f"{API_PREFIX}/items/inventory/{{item_id}}/status",
    response_model=InventoryRecordResponse,
    responses=ERROR_RESPONSES,
    tags=["Inventory"],
)
async def update_inventory_status(
    item_id: str,
    body: InventoryStatusUpdate,
    principal: Principal = Depends(require_outlet_admin),
    ledger: InventoryLedger = Depends(get_inventory_ledger),
) -> InventoryRecordResponse:
    record = await ledger.set_enabled(
        principal.location_id, principal.tenant_id, item_id, body.enabled,
        edited_by=principal.subject_id,
    )
    return InventoryRecordResponse.from_record(record)


@app.get(
    f"{API_PREFIX}/kiosks/menu",
    response_model=List[CatalogItemResponse],
    responses=ERROR_RESPONSES,
    tags=["Kiosk"],
)
async def kiosk_menu(
    principal: Principal = Depends(require_terminal),
    ledger: InventoryLedger = Depends(get_inventory_ledger),
) -> List[CatalogItemResponse]:
    items = await ledger.catalog_items(principal.tenant_id)
    return [CatalogItemResponse.from_item(i) for i in items]


# =============================================================================
# REALTIME ENDPOINT
# =============================================================================

async def authenticate_socket(websocket: WebSocket, query_token: Optional[str]) -> Optional[Principal]:
    """
    Accept the socket and authenticate it, from ``?token=`` or from a first
    message ``{"event": "auth", "token": "..."}``. Closes with 4001 on failure.
    """
    await websocket.accept()

    token = query_token
    if not token:
        try:
            raw = await asyncio.wait_for(websocket.receive_text(), timeout=settings.ws_auth_timeout)
            message = json.loads(raw)
        except asyncio.TimeoutError:
            await websocket.close(code=4001, reason="Authentication timeout")
            return None
        except (ValueError, WebSocketDisconnect):
            await websocket.close(code=4001, reason="Invalid auth message")
            return None

        if not isinstance(message, dict) or message.get("event") != "auth" or not message.get("token"):
            await websocket.close(code=4001, reason='First message must be {"event":"auth","token":"..."}')
            return None
        token = message["token"]

    try:
        principal = decode_credential(token)
    except Unauthorized as e:
        await websocket.close(code=4001, reason=e.detail)
        return None

    await websocket.send_json({"event": "auth_success", "data": {"kind": principal.kind.value}})
    return principal


@app.websocket("/ws")
async def realtime_socket(websocket: WebSocket, token: Optional[str] = Query(None)):
    """
    Outlet room channel.

    After auth, send ``{"event": "join:outlet", "outletId": "..."}``. Only the
    outlet bound to the credential can be joined.
    """
    principal = await authenticate_socket(websocket, token)
    if principal is None:
        return

    hub = get_broadcast_hub()
    logger.info(f"🔌 Socket connected: {principal.identity}")

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except ValueError:
                await websocket.send_json({"event": "error", "message": "Invalid JSON"})
                continue
            if not isinstance(message, dict):
                await websocket.send_json({"event": "error", "message": "Invalid message"})
                continue

            event = message.get("event")

            if event == "join:outlet":
                outlet_id = message.get("outletId")
                if not outlet_id or outlet_id != principal.location_id:
                    logger.warning(f"🚫 {principal.identity} tried to join outlet {outlet_id}")
                    await websocket.send_json({"event": "error", "message": "Not authorised for this outlet"})
                    continue
                room = hub.join(outlet_id, websocket)
                await websocket.send_json({"event": "joined:outlet", "data": {"room": room}})

            elif event == "leave:outlet":
                hub.leave(principal.location_id, websocket)
                await websocket.send_json({"event": "left:outlet"})

            elif event == "ping":
                await websocket.send_json({"event": "pong"})

            else:
                await websocket.send_json({"event": "error", "message": f"Unknown event: {event}"})

    except WebSocketDisconnect:
        pass
    finally:
        hub.disconnect(websocket)
        logger.info(f"🔌 Socket disconnected: {principal.identity}")


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "orderflow.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.is_development,
        log_level="debug" if settings.debug else "info",
    )
