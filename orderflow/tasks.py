"""
Celery Tasks
Background work for the order pipeline:
    - release_order_stock: retries a compensation that failed inline
    - recover_stale_orders: fails orders a crashed process left Pending
"""

import asyncio
import logging
import time
from datetime import datetime

from orderflow.celery_worker import celery_app
from orderflow.database import engine
from orderflow.services.ordering import OrderPlacementService
from orderflow.services.realtime import build_broadcast_hub

logger = logging.getLogger(__name__)


class CompensationPending(Exception):
    """Stock release did not go through yet; Celery retries the task."""


def _run(coro_factory):
    """
    Run one async job on a fresh event loop.

    Connections and the broadcast hub are bound to the loop they were
    created on, so both are created and released inside it.
    """
    async def _job():
        hub = build_broadcast_hub()
        try:
            return await coro_factory(OrderPlacementService(hub=hub))
        finally:
            await hub.stop()
            await engine.dispose()

    return asyncio.run(_job())


@celery_app.task(
    bind=True,
    max_retries=5,
    default_retry_delay=5,
    autoretry_for=(CompensationPending,),
    retry_backoff=True
)
def release_order_stock(self, order_id: str) -> dict:
    """
    Give back the stock of a Failed order whose inline release failed.
    Safe to run more than once: the order's release marker makes repeats no-ops.
    """
    task_id = self.request.id
    logger.info(f"📋 Task {task_id}: Releasing stock for order {order_id}")
    start_time = time.time()

    released = _run(lambda service: service.retry_compensation(order_id))
    elapsed = round(time.time() - start_time, 3)

    if not released:
        logger.warning(f"⚠️ Task {task_id}: Release for order {order_id} failed after {elapsed}s, retrying")
        raise CompensationPending(order_id)

    logger.info(f"✅ Task {task_id}: Stock for order {order_id} released in {elapsed}s")
    return {
        'order_id': order_id,
        'released': True,
        'task_id': task_id,
        'processing_time_seconds': elapsed,
    }


@celery_app.task
def recover_stale_orders() -> dict:
    """
    Beat task: compensate and fail Pending orders older than the TTL, and
    release Failed orders that still hold stock.
    """
    counts = _run(lambda service: service.recover_stale_orders())
    return {
        **counts,
        'timestamp': datetime.now().isoformat(),
    }


@celery_app.task
def health_check() -> dict:
    """
    Simple health check task to verify Celery is working.
    """
    return {
        'status': 'healthy',
        'worker': 'celery',
        'timestamp': datetime.now().isoformat()
    }
