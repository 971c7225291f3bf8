"""
Mock Payment Service Implementation

Simulates a UPI collect request without contacting a gateway.
Used in development mode (ENV_MODE=development) to:
    - Exercise the complete placement flow locally
    - Run concurrency simulations without a gateway account
    - Reproduce declines so compensation paths get exercised

Behavior:
    - Simulates a slow payment step (2-3s by default)
    - Randomly declines a configurable share of payments
    - Generates gateway-like references (upi_mock_xxx)
"""

import asyncio
import random
import uuid
import logging

from orderflow.services.payment.base import (
    BasePaymentService,
    PaymentResult,
)

logger = logging.getLogger(__name__)


class MockPaymentService(BasePaymentService):
    """
    Mock implementation of the payment step.

    Attributes:
        failure_rate: Probability of simulated decline (0.0-1.0)
        min_latency: Minimum simulated response time in seconds
        max_latency: Maximum simulated response time in seconds

    Example:
        >>> service = MockPaymentService(failure_rate=0.1)
        >>> result = await service.process_payment(240.0, "Asha", "asha@okbank", "ref")
        >>> print(result.success)  # True ~90% of the time
    """

    # Simulated decline reasons (mimics UPI response codes)
    DECLINE_REASONS = [
        ("U30", "Debit has failed at the remitter bank."),
        ("Z9", "Insufficient funds in the payer account."),
        ("ZM", "Invalid UPI PIN entered."),
        ("U69", "Collect request expired."),
        ("ZA", "Transaction declined by the payer."),
    ]

    def __init__(
        self,
        failure_rate: float = 0.10,
        min_latency: float = 2.0,
        max_latency: float = 3.0,
    ):
        self.failure_rate = failure_rate
        self.min_latency = min_latency
        self.max_latency = max(max_latency, min_latency)

        logger.info(
            f"MockPaymentService initialized "
            f"(failure_rate={failure_rate:.0%}, "
            f"latency={min_latency}-{self.max_latency}s)"
        )

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return "mock"

    def _generate_reference(self) -> str:
        return f"upi_mock_{uuid.uuid4().hex[:24]}"

    async def _simulate_latency(self) -> float:
        """
        Simulate network latency.

        Returns:
            float: Actual latency in milliseconds
        """
        latency = random.uniform(self.min_latency, self.max_latency)
        if latency > 0:
            await asyncio.sleep(latency)
        return latency * 1000

    def _should_fail(self) -> bool:
        """Determine if this request should simulate a decline."""
        return random.random() < self.failure_rate

    async def process_payment(
        self,
        amount: float,
        payer_name: str,
        upi_id: str,
        reference: str,
        currency: str = "inr",
    ) -> PaymentResult:
        """
        Simulate a UPI collect request.

        Behavior:
            - Validates amount is positive
            - Simulates network latency
            - Randomly declines based on failure_rate
        """
        logger.debug(f"Mock: Collecting {amount:.2f} {currency.upper()} from {upi_id} (ref={reference})")

        if amount <= 0:
            return PaymentResult(
                success=False,
                error_message="Amount must be greater than 0",
                error_code="invalid_amount",
            )

        latency_ms = await self._simulate_latency()

        if self._should_fail():
            error_code, error_message = random.choice(self.DECLINE_REASONS)
            logger.info(f"Mock: Payment declined for ref={reference} - {error_code}")

            return PaymentResult(
                success=False,
                amount=amount,
                currency=currency,
                error_message=error_message,
                error_code=error_code,
                response_time_ms=latency_ms,
            )

        payment_reference = self._generate_reference()

        logger.info(f"Mock: Payment successful - {payment_reference} - {amount:.2f}")

        return PaymentResult(
            success=True,
            payment_reference=payment_reference,
            amount=amount,
            currency=currency,
            response_time_ms=latency_ms,
            metadata={"payer_name": payer_name, "upi_id": upi_id, "mock": True},
        )

    async def health_check(self) -> bool:
        """Mock health check always returns True."""
        return True
