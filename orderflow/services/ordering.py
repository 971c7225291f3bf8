"""
Order Placement Service

Turns a terminal's cart into an order in two phases:

    Phase 1 (one transaction)
        reserve stock → allocate order number → insert Pending order
        Any failure rolls all three back: no partial reservation, no orphan row.

    Phase 2 (no transaction held)
        payment step, bounded by PAYMENT_TIMEOUT_SECONDS
        success → Completed, ``order:new`` to the location room
        decline, error or timeout → stock released, Failed, no broadcast

The caller always gets the order back once phase 1 committed; a declined
payment is an outcome, not an error.

``recover_stale_orders`` closes the gap a crash in phase 2 would leave:
old Pending orders are compensated and failed, and Failed orders whose
stock never came back are released.
"""

import asyncio
import logging
from datetime import timedelta
from typing import Callable, Dict, List, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from orderflow.core.config import Settings, get_settings
from orderflow.core.security import Principal
from orderflow.database import get_session_maker
from orderflow.models import Order, OrderStatus, PaymentStatus, generate_id, utcnow
from orderflow.schemas import OrderCreate, OrderResponse
from orderflow.services.inventory import InventoryLedger, ReservationLine
from orderflow.services.order_numbers import OrderNumberAllocator
from orderflow.services.orders import OrderStore
from orderflow.services.payment import BasePaymentService, PaymentResult, get_payment_service
from orderflow.services.realtime import BaseBroadcastHub, get_broadcast_hub, order_created

logger = logging.getLogger(__name__)

STALE_ORDER_REASON = "Payment step did not complete"


def lines_from_snapshot(items: List[dict]) -> List[ReservationLine]:
    return [
        ReservationLine(item_id=line["itemId"], name=line["name"], qty=int(line["qty"]))
        for line in items
    ]


def enqueue_compensation_retry(order_id: str) -> None:
    """Hand a failed release to the Celery worker."""
    from orderflow.tasks import release_order_stock

    release_order_stock.delay(order_id)


class OrderPlacementService:

    def __init__(
        self,
        session_maker: Optional[async_sessionmaker] = None,
        ledger: Optional[InventoryLedger] = None,
        allocator: Optional[OrderNumberAllocator] = None,
        store: Optional[OrderStore] = None,
        payment_service: Optional[BasePaymentService] = None,
        hub: Optional[BaseBroadcastHub] = None,
        settings: Optional[Settings] = None,
        compensation_retry: Optional[Callable[[str], None]] = None,
    ):
        self._session_maker = session_maker or get_session_maker()
        self._hub = hub or get_broadcast_hub()
        self.ledger = ledger or InventoryLedger(self._session_maker, self._hub)
        self.allocator = allocator or OrderNumberAllocator()
        self.store = store or OrderStore(self._session_maker)
        self._payment_service = payment_service
        self.settings = settings or get_settings()
        self._compensation_retry = compensation_retry or enqueue_compensation_retry

    @property
    def payment_service(self) -> BasePaymentService:
        if self._payment_service is None:
            self._payment_service = get_payment_service()
        return self._payment_service

    # =========================================================================
    # PLACEMENT
    # =========================================================================

    async def place_order(self, request: OrderCreate, principal: Principal) -> Order:
        """
        Place an order for the terminal behind ``principal``.

        Raises:
            InsufficientStock: A line could not be reserved (nothing persisted)
            NotFound: The terminal's location does not exist
        """
        location_id = principal.require_location()
        snapshot = [
            {"itemId": item.id, "name": item.name, "qty": item.quantity, "price": item.price}
            for item in request.items
        ]
        lines = lines_from_snapshot(snapshot)

        # ---------------------------------------------------------------------
        # Phase 1
        # ---------------------------------------------------------------------
        async with self._session_maker() as session:
            async with session.begin():
                deltas = await self.ledger.reserve(session, lines, location_id)
                order_no = await self.allocator.next(session, location_id)
                order = self.store.create(
                    session,
                    order_id=generate_id(),
                    order_no=order_no,
                    location_id=location_id,
                    tenant_id=principal.tenant_id,
                    items=snapshot,
                    total_amount=request.total_amount,
                    terminal_id=principal.subject_id,
                )

        logger.info(f"🧾 Order #{order.order_no} ({order.id}) reserved at {location_id} - {request.total_amount:.2f}")
        await self.ledger.publish(location_id, deltas)

        # ---------------------------------------------------------------------
        # Phase 2
        # ---------------------------------------------------------------------
        result = await self._collect_payment(order, request)

        if result.success:
            return await self._finalize(order, request, result)
        return await self._compensate(order, lines, result.error_message or "Payment failed")

    async def _collect_payment(self, order: Order, request: OrderCreate) -> PaymentResult:
        details = request.payment_details
        try:
            return await asyncio.wait_for(
                self.payment_service.process_payment(
                    amount=request.total_amount,
                    payer_name=details.name,
                    upi_id=details.upi_id,
                    reference=order.id,
                    currency=self.settings.currency,
                ),
                timeout=self.settings.payment_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(f"⏱️ Payment step timed out for order {order.id}")
            return PaymentResult(success=False, error_message="Payment timed out", error_code="timeout")
        except Exception as e:
            logger.exception(f"❌ Payment step raised for order {order.id}: {e}")
            return PaymentResult(success=False, error_message="Payment service error", error_code="payment_error")

    async def _finalize(self, order: Order, request: OrderCreate, result: PaymentResult) -> Order:
        details = request.payment_details
        completed = await self.store.mark_completed(
            order.id,
            payment_details={"name": details.name, "upiId": details.upi_id},
            payment_reference=result.payment_reference,
        )
        order = await self.store.get(order.id)

        if not completed:
            # Recovery failed the order while payment was still in flight
            logger.error(
                f"❌ Payment {result.payment_reference} succeeded for order {order.id} "
                f"but the order is already {order.order_status.value}"
            )
            return order

        logger.info(f"✅ Order #{order.order_no} completed ({result.payment_reference})")
        await self._hub.broadcast(
            order.location_id,
            order_created(OrderResponse.from_order(order).model_dump(by_alias=True, mode="json")),
        )
        return order

    async def _compensate(self, order: Order, lines: List[ReservationLine], reason: str) -> Order:
        released = await self.ledger.release(lines, order.location_id, order_id=order.id)
        if not released:
            self._schedule_compensation_retry(order.id)

        try:
            await self.store.mark_failed(order.id, reason)
        except Exception as e:
            # Recovery moves the order out of Pending later
            logger.exception(f"❌ Could not mark order {order.id} failed: {e}")
            order.payment_status = PaymentStatus.FAILED
            order.order_status = OrderStatus.FAILED
            order.failure_reason = reason
            return order

        logger.info(f"💸 Order #{order.order_no} failed: {reason}")
        return await self.store.get(order.id)

    def _schedule_compensation_retry(self, order_id: str) -> None:
        try:
            self._compensation_retry(order_id)
            logger.info(f"🔁 Stock release for order {order_id} queued for retry")
        except Exception as e:
            logger.error(f"⚠️ Could not queue stock release for order {order_id}: {e}")

    # =========================================================================
    # RECOVERY
    # =========================================================================

    async def retry_compensation(self, order_id: str) -> bool:
        """Release an order's stock if it is Failed and still holds it."""
        order = await self.store.get(order_id)
        if order.stock_released:
            return True
        return await self.ledger.release(
            lines_from_snapshot(order.items_snapshot), order.location_id, order_id=order.id
        )

    async def recover_stale_orders(self) -> Dict[str, int]:
        """
        Fail Pending orders older than the TTL and release stuck stock.

        Returns:
            Counts of expired orders and released orders
        """
        cutoff = utcnow() - timedelta(seconds=self.settings.pending_order_ttl_seconds)
        expired = 0
        released = 0

        for order in await self.store.list_stale_pending(cutoff):
            # Fail first: a payment that completes the order in between keeps its stock
            if not await self.store.mark_failed(order.id, STALE_ORDER_REASON):
                continue
            expired += 1
            logger.warning(f"🧹 Stale order #{order.order_no} ({order.id}) failed by recovery")
            if order.stock_released:
                continue

            lines = lines_from_snapshot(order.items_snapshot)
            if await self.ledger.release(lines, order.location_id, order_id=order.id):
                released += 1

        for order in await self.store.list_unreleased_failed():
            lines = lines_from_snapshot(order.items_snapshot)
            if await self.ledger.release(lines, order.location_id, order_id=order.id):
                released += 1

        if expired or released:
            logger.info(f"🧹 Recovery: {expired} expired, {released} released")
        return {"expired": expired, "released": released}
