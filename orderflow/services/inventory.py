"""
Inventory Ledger

Per-(item, location) stock and price records.

Reservation and release never read-then-write: each line is one guarded
UPDATE, so the database decides who gets the last unit even with several
API processes racing. Staff edits are "only set what was provided" upserts
that create the record lazily.

Every successful mutation is announced to the location's room as an
``inventory:update`` carrying the resulting {price, quantity, enabled}.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from orderflow.core.exceptions import InsufficientStock, NotFound, ValidationFailed
from orderflow.database import get_session_maker
from orderflow.models import CatalogItem, InventoryRecord, Order, utcnow
from orderflow.services.realtime import BaseBroadcastHub, get_broadcast_hub, inventory_update

logger = logging.getLogger(__name__)


@dataclass
class ReservationLine:
    """One cart line as the ledger sees it."""
    item_id: str
    name: str
    qty: int


@dataclass
class StockDelta:
    """Resulting values of a record after a mutation."""
    item_id: str
    quantity: int
    price: Optional[float]
    enabled: bool


def merge_lines(lines: Iterable[ReservationLine]) -> List[ReservationLine]:
    """
    Collapse repeated items into one line each, ordered by item id.

    A fixed order means concurrent reservations lock rows in the same order.
    """
    merged: Dict[str, ReservationLine] = {}
    for line in lines:
        if line.item_id in merged:
            merged[line.item_id].qty += line.qty
        else:
            merged[line.item_id] = ReservationLine(line.item_id, line.name, line.qty)
    return [merged[item_id] for item_id in sorted(merged)]


class InventoryLedger:

    def __init__(
        self,
        session_maker: Optional[async_sessionmaker] = None,
        hub: Optional[BaseBroadcastHub] = None,
    ):
        self._session_maker = session_maker or get_session_maker()
        self._hub = hub or get_broadcast_hub()

    # =========================================================================
    # RESERVATION / COMPENSATION
    # =========================================================================

    async def reserve(
        self,
        session: AsyncSession,
        lines: Iterable[ReservationLine],
        location_id: str,
    ) -> List[StockDelta]:
        """
        Decrement stock for every line inside the caller's transaction.

        A line only applies if the record is enabled and holds at least the
        requested quantity. The first line that cannot be satisfied raises,
        and the caller's rollback undoes the lines already applied.

        Raises:
            InsufficientStock: Named after the offending cart line
        """
        deltas = []
        for line in merge_lines(lines):
            if line.qty <= 0:
                raise ValidationFailed(f'Invalid quantity for item "{line.name}"')

            result = await session.execute(
                update(InventoryRecord)
                .where(
                    InventoryRecord.item_id == line.item_id,
                    InventoryRecord.location_id == location_id,
                    InventoryRecord.quantity >= line.qty,
                    InventoryRecord.enabled.is_(True),
                )
                .values(quantity=InventoryRecord.quantity - line.qty, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                logger.info(f"🚫 Insufficient stock for {line.item_id}@{location_id} (wanted {line.qty})")
                raise InsufficientStock(line.name)

            deltas.append(await self._read_delta(session, line.item_id, location_id))

        return deltas

    async def release(
        self,
        lines: Iterable[ReservationLine],
        location_id: str,
        order_id: Optional[str] = None,
    ) -> bool:
        """
        Give reserved stock back in a transaction of its own.

        With ``order_id`` the release is claimed through the order's
        ``stock_released`` marker first, so calling it again is a no-op.
        Failures are logged and reported through the return value only.

        Returns:
            True when the stock is back (or was already given back)
        """
        lines = merge_lines(lines)
        try:
            async with self._session_maker() as session:
                async with session.begin():
                    if order_id is not None:
                        claimed = await session.execute(
                            update(Order)
                            .where(Order.id == order_id, Order.stock_released.is_(False))
                            .values(stock_released=True)
                            .execution_options(synchronize_session=False)
                        )
                        if claimed.rowcount == 0:
                            logger.info(f"Stock for order {order_id} already released")
                            return True

                    deltas = []
                    for line in lines:
                        result = await session.execute(
                            update(InventoryRecord)
                            .where(
                                InventoryRecord.item_id == line.item_id,
                                InventoryRecord.location_id == location_id,
                            )
                            .values(quantity=InventoryRecord.quantity + line.qty, updated_at=utcnow())
                            .execution_options(synchronize_session=False)
                        )
                        if result.rowcount == 0:
                            logger.warning(f"No inventory record for {line.item_id}@{location_id}; nothing to release")
                            continue
                        deltas.append(await self._read_delta(session, line.item_id, location_id))

        except Exception as e:
            logger.exception(f"❌ Stock release failed for order {order_id} at {location_id}: {e}")
            return False

        logger.info(f"↩️ Released stock for order {order_id} ({len(deltas)} items)")
        await self.publish(location_id, deltas)
        return True

    async def publish(self, location_id: str, deltas: Iterable[StockDelta]) -> None:
        for delta in deltas:
            await self._hub.broadcast(
                location_id,
                inventory_update(
                    item_id=delta.item_id,
                    price=delta.price,
                    quantity=delta.quantity,
                    enabled=delta.enabled,
                ),
            )

    async def _read_delta(self, session: AsyncSession, item_id: str, location_id: str) -> StockDelta:
        row = (await session.execute(
            select(InventoryRecord.quantity, InventoryRecord.price, InventoryRecord.enabled)
            .where(InventoryRecord.item_id == item_id, InventoryRecord.location_id == location_id)
        )).one()
        return StockDelta(item_id=item_id, quantity=row.quantity, price=row.price, enabled=row.enabled)

    # =========================================================================
    # STAFF EDITS
    # =========================================================================

    async def set_price(
        self, location_id: str, tenant_id: str, item_id: str, price: float,
        edited_by: Optional[str] = None,
    ) -> InventoryRecord:
        return await self._apply(location_id, tenant_id, item_id, price=price, edited_by=edited_by)

    async def set_quantity(
        self, location_id: str, tenant_id: str, item_id: str, quantity: int,
        edited_by: Optional[str] = None,
    ) -> InventoryRecord:
        return await self._apply(location_id, tenant_id, item_id, quantity=quantity, edited_by=edited_by)

    async def set_enabled(
        self, location_id: str, tenant_id: str, item_id: str, enabled: bool,
        edited_by: Optional[str] = None,
    ) -> InventoryRecord:
        return await self._apply(location_id, tenant_id, item_id, enabled=enabled, edited_by=edited_by)

    async def upsert(
        self, location_id: str, tenant_id: str, item_id: str, price: float, quantity: int,
        edited_by: Optional[str] = None,
    ) -> InventoryRecord:
        return await self._apply(
            location_id, tenant_id, item_id, price=price, quantity=quantity, edited_by=edited_by
        )

    async def _apply(
        self,
        location_id: str,
        tenant_id: str,
        item_id: str,
        price: Optional[float] = None,
        quantity: Optional[int] = None,
        enabled: Optional[bool] = None,
        edited_by: Optional[str] = None,
    ) -> InventoryRecord:
        """
        Set only the provided fields, creating the record if needed.

        A new record starts at quantity 0, no price (catalog default applies)
        and enabled.

        Raises:
            ValidationFailed: Negative price or quantity
            NotFound: Item is not in the caller's tenant catalog
        """
        if price is not None and price < 0:
            raise ValidationFailed("Price must be zero or more")
        if quantity is not None and quantity < 0:
            raise ValidationFailed("Quantity must be zero or more")

        # A concurrent first edit can win the insert; the retry then updates
        for attempt in range(2):
            try:
                async with self._session_maker() as session:
                    async with session.begin():
                        await self._require_catalog_item(session, tenant_id, item_id)

                        record = await session.scalar(
                            select(InventoryRecord).where(
                                InventoryRecord.item_id == item_id,
                                InventoryRecord.location_id == location_id,
                            )
                        )
                        if record is None:
                            record = InventoryRecord(
                                item_id=item_id,
                                location_id=location_id,
                                quantity=0,
                                price=None,
                                enabled=True,
                            )
                            session.add(record)

                        if price is not None:
                            record.price = price
                        if quantity is not None:
                            record.quantity = quantity
                        if enabled is not None:
                            record.enabled = enabled
                        record.edited_by = edited_by
                        record.updated_at = utcnow()
                break
            except IntegrityError:
                if attempt:
                    raise
                logger.info(f"Concurrent create of {item_id}@{location_id}; retrying as update")

        logger.info(
            f"📝 Inventory {item_id}@{location_id} set to "
            f"qty={record.quantity} price={record.price} enabled={record.enabled}"
        )
        await self.publish(location_id, [
            StockDelta(item_id=item_id, quantity=record.quantity, price=record.price, enabled=record.enabled)
        ])
        return record

    async def _require_catalog_item(self, session: AsyncSession, tenant_id: str, item_id: str) -> CatalogItem:
        item = await session.scalar(
            select(CatalogItem).where(CatalogItem.id == item_id, CatalogItem.tenant_id == tenant_id)
        )
        if item is None:
            raise NotFound("Item not found")
        return item

    # =========================================================================
    # READS
    # =========================================================================

    async def list_records(self, location_id: str) -> List[InventoryRecord]:
        async with self._session_maker() as session:
            result = await session.scalars(
                select(InventoryRecord)
                .where(InventoryRecord.location_id == location_id)
                .order_by(InventoryRecord.item_id)
            )
            return list(result)

    async def get_record(self, location_id: str, item_id: str) -> InventoryRecord:
        async with self._session_maker() as session:
            record = await session.scalar(
                select(InventoryRecord).where(
                    InventoryRecord.item_id == item_id,
                    InventoryRecord.location_id == location_id,
                )
            )
        if record is None:
            raise NotFound("Inventory record not found")
        return record

    async def catalog_items(self, tenant_id: str) -> List[CatalogItem]:
        """Tenant menu items that are switched on, for terminal menus."""
        async with self._session_maker() as session:
            result = await session.scalars(
                select(CatalogItem)
                .where(CatalogItem.tenant_id == tenant_id, CatalogItem.status.is_(True))
                .order_by(CatalogItem.category, CatalogItem.name)
            )
            return list(result)
