"""
Payment Service Abstract Base Class

Defines the interface contract for the external payment step of order
placement. MockPaymentService and HttpPaymentGateway both implement it, so
the placement service behaves identically regardless of which is active.

Design Pattern: Strategy Pattern
    - Allows runtime switching between payment providers
    - Facilitates testing with scripted implementations

The payment step may take seconds and may raise or time out; callers treat
an exception exactly like a declined payment.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass
class PaymentResult:
    """
    Standardized result from the payment step.

    Attributes:
        success: Whether the payment was collected
        payment_reference: Provider transaction identifier
        amount: Amount charged
        currency: Currency code (e.g., "inr")
        error_message: Error description if payment failed
        error_code: Machine-readable error code
        response_time_ms: Time taken to process the payment
        metadata: Additional data from the payment provider
    """
    success: bool
    payment_reference: Optional[str] = None
    amount: Optional[float] = None
    currency: str = "inr"
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    response_time_ms: float = 0.0
    metadata: Optional[dict] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "success": self.success,
            "payment_reference": self.payment_reference,
            "amount": self.amount,
            "currency": self.currency,
            "error_message": self.error_message,
            "error_code": self.error_code,
            "response_time_ms": self.response_time_ms,
            "metadata": self.metadata,
        }


class BasePaymentService(ABC):
    """
    Abstract base class for payment services.

    Example:
        >>> service = get_payment_service()  # Mock or HTTP gateway
        >>> result = await service.process_payment(
        ...     amount=240.0,
        ...     payer_name="Asha",
        ...     upi_id="asha@okbank",
        ...     reference="9f1c...",
        ... )
        >>> if result.success:
        ...     print(result.payment_reference)
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the name of the payment provider (e.g., "mock")."""
        pass

    @abstractmethod
    async def process_payment(
        self,
        amount: float,
        payer_name: str,
        upi_id: str,
        reference: str,
        currency: str = "inr",
    ) -> PaymentResult:
        """
        Collect a UPI payment for an order.

        Args:
            amount: Amount to collect in major units (e.g., 240.0)
            payer_name: Name entered at the kiosk
            upi_id: Payer's UPI virtual payment address
            reference: Order id, used as the idempotency reference
            currency: Three-letter currency code

        Returns:
            PaymentResult: Standardized result object
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Verify connectivity to the payment service.

        Returns:
            bool: True if service is reachable and operational
        """
        pass
