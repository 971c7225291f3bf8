"""
Payment Service Factory

Provides a single entry point for obtaining a payment service instance.
The rest of the application stays agnostic about which implementation is
being used.

Usage:
    from orderflow.services.payment import get_payment_service

    payment_service = get_payment_service()
    result = await payment_service.process_payment(240.0, "Asha", "asha@okbank", order.id)

Environment Switching:
    - ENV_MODE=development → MockPaymentService (no network)
    - ENV_MODE=staging → HttpPaymentGateway (sandbox gateway)
    - ENV_MODE=production → HttpPaymentGateway (live gateway)
"""

import logging
from functools import lru_cache

from orderflow.core.config import get_settings
from orderflow.services.payment.base import (
    BasePaymentService,
    PaymentResult,
)
from orderflow.services.payment.mock import MockPaymentService
from orderflow.services.payment.gateway import HttpPaymentGateway

logger = logging.getLogger(__name__)


@lru_cache()
def get_payment_service() -> BasePaymentService:
    """
    Get the configured payment service instance.

    The instance is cached so every request shares one service.

    Raises:
        ValueError: If a real gateway is required but not configured
    """
    settings = get_settings()

    if settings.is_development:
        logger.info("Payment Service: Using MockPaymentService (development mode)")
        return MockPaymentService(
            failure_rate=settings.payment_mock_failure_rate,
            min_latency=settings.payment_mock_min_latency,
            max_latency=settings.payment_mock_max_latency,
        )

    logger.info(
        f"Payment Service: Using HttpPaymentGateway "
        f"({settings.env_mode.value} mode)"
    )
    return HttpPaymentGateway()


def reset_payment_service() -> None:
    """
    Clear the cached payment service instance.

    Useful for testing or when configuration changes at runtime.
    """
    get_payment_service.cache_clear()
    logger.debug("Payment service cache cleared")


__all__ = [
    "get_payment_service",
    "reset_payment_service",
    "BasePaymentService",
    "PaymentResult",
    "MockPaymentService",
    "HttpPaymentGateway",
]
