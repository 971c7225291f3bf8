"""
HTTP Payment Gateway Implementation

Production implementation of the payment step: posts a UPI collect request
to the configured gateway and waits for its verdict.
Used when ENV_MODE=production or ENV_MODE=staging.

Requirements:
    - PAYMENT_GATEWAY_URL must be set in environment
    - PAYMENT_GATEWAY_KEY is sent as a bearer token

Security Notes:
    - Never log full UPI ids at INFO level
    - The order id is sent as the idempotency reference so a retried
      request cannot charge twice
"""

import logging
from datetime import datetime
from typing import Optional

import httpx

from orderflow.core.config import get_settings
from orderflow.services.payment.base import (
    BasePaymentService,
    PaymentResult,
)

logger = logging.getLogger(__name__)


def _mask_upi(upi_id: str) -> str:
    handle, _, bank = upi_id.partition("@")
    return f"{handle[:2]}***@{bank}" if bank else "***"


class HttpPaymentGateway(BasePaymentService):
    """
    UPI payment gateway reached over HTTPS.

    Expected gateway contract:
        POST {base_url}/payments
            {"amount", "currency", "reference", "payer": {"name", "vpa"}}
        → 200 {"id": "...", "status": "succeeded" | "failed",
               "error": {"code", "message"}?}
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Raises:
            ValueError: If no gateway URL is configured
        """
        settings = get_settings()
        self._base_url = base_url or settings.payment_gateway_url
        if not self._base_url:
            raise ValueError(
                "PAYMENT_GATEWAY_URL is required outside development mode. "
                "Set it in your .env file or environment variables."
            )
        self._api_key = api_key or settings.payment_gateway_key
        self._timeout = timeout or settings.payment_timeout_seconds
        self._transport = transport

        logger.info(f"HttpPaymentGateway initialized ({self._base_url})")

    @property
    def provider_name(self) -> str:
        return "upi-gateway"

    def _client(self) -> httpx.AsyncClient:
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return httpx.AsyncClient(
            base_url=self._base_url,
            headers=headers,
            timeout=self._timeout,
            transport=self._transport,
        )

    async def process_payment(
        self,
        amount: float,
        payer_name: str,
        upi_id: str,
        reference: str,
        currency: str = "inr",
    ) -> PaymentResult:
        start_time = datetime.now()

        logger.info(f"Gateway: Collecting {amount:.2f} from {_mask_upi(upi_id)} (ref={reference})")

        if amount <= 0:
            return PaymentResult(
                success=False,
                error_message="Amount must be greater than 0",
                error_code="invalid_amount",
            )

        try:
            async with self._client() as client:
                response = await client.post(
                    "/payments",
                    json={
                        "amount": round(amount, 2),
                        "currency": currency,
                        "reference": reference,
                        "payer": {"name": payer_name, "vpa": upi_id},
                    },
                    headers={"Idempotency-Key": reference},
                )
                response.raise_for_status()
                body = response.json()

        except httpx.TimeoutException as e:
            elapsed_ms = (datetime.now() - start_time).total_seconds() * 1000
            logger.error(f"Gateway: Timeout for ref={reference} - {e}")
            return PaymentResult(
                success=False,
                error_message="Payment service timed out",
                error_code="timeout",
                response_time_ms=elapsed_ms,
            )

        except httpx.HTTPStatusError as e:
            elapsed_ms = (datetime.now() - start_time).total_seconds() * 1000
            logger.error(f"Gateway: HTTP {e.response.status_code} for ref={reference}")
            return PaymentResult(
                success=False,
                error_message="Payment was rejected by the gateway",
                error_code=f"http_{e.response.status_code}",
                response_time_ms=elapsed_ms,
            )

        except httpx.HTTPError as e:
            elapsed_ms = (datetime.now() - start_time).total_seconds() * 1000
            logger.error(f"Gateway: Connection error for ref={reference} - {e}")
            return PaymentResult(
                success=False,
                error_message="Payment service temporarily unavailable",
                error_code="connection_error",
                response_time_ms=elapsed_ms,
            )

        elapsed_ms = (datetime.now() - start_time).total_seconds() * 1000

        if body.get("status") != "succeeded":
            error = body.get("error") or {}
            logger.warning(f"Gateway: Payment declined for ref={reference} - {error.get('code')}")
            return PaymentResult(
                success=False,
                payment_reference=body.get("id"),
                amount=amount,
                currency=currency,
                error_message=error.get("message") or "Payment declined",
                error_code=error.get("code") or "declined",
                response_time_ms=elapsed_ms,
            )

        logger.info(f"Gateway: Payment successful - {body.get('id')}")

        return PaymentResult(
            success=True,
            payment_reference=body.get("id"),
            amount=amount,
            currency=currency,
            response_time_ms=elapsed_ms,
            metadata={"gateway_status": body.get("status")},
        )

    async def health_check(self) -> bool:
        try:
            async with self._client() as client:
                response = await client.get("/health")
                return response.status_code == 200
        except httpx.HTTPError as e:
            logger.error(f"Gateway health check failed: {e}")
            return False
