"""
Hosted checkout gateway client.

WHAT: Create checkout sessions and query their status
WHY: Payment completion is owned by the external gateway; the core only hands
     off and later observes the outcome
HOW: httpx.AsyncClient with bearer auth; every failure becomes a result value
     (success=False / status=failed), never an exception to the caller
"""

import asyncio
import json
import time
from datetime import datetime
from typing import Callable

import httpx

from ..core.config import settings
from ..models.payment import (
    BuyerInfo,
    CheckoutItem,
    CheckoutSessionResult,
    FINAL_PAYMENT_STATUSES,
    PaymentSessionStatus,
    VerifyPaymentResult,
)
from ..utils.exceptions import ConfigurationError
from ..utils.logger import get_logger

logger = get_logger(__name__)

# Upstream status strings -> normalized status
STATUS_MAP = {
    "complete": PaymentSessionStatus.COMPLETED,
    "completed": PaymentSessionStatus.COMPLETED,
    "paid": PaymentSessionStatus.COMPLETED,
    "succeeded": PaymentSessionStatus.COMPLETED,
    "pending": PaymentSessionStatus.PENDING,
    "processing": PaymentSessionStatus.PROCESSING,
    "failed": PaymentSessionStatus.FAILED,
    "cancelled": PaymentSessionStatus.CANCELLED,
    "canceled": PaymentSessionStatus.CANCELLED,
    "expired": PaymentSessionStatus.EXPIRED,
}

TIMEOUT_MESSAGE = "Payment verification timed out. Please check your bank statement."


def normalize_status(raw: str | None) -> PaymentSessionStatus:
    """Unknown or missing upstream status reads as pending."""
    if not raw:
        return PaymentSessionStatus.PENDING
    return STATUS_MAP.get(raw.lower(), PaymentSessionStatus.PENDING)


def new_order_id() -> str:
    return f"AB-{int(time.time() * 1000)}"


def _parse_timestamp(value) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        logger.debug(f"Unparseable completed_at: {value}")
        return None


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = {}
    if isinstance(data, dict) and data.get("message"):
        return data["message"]
    return f"API error: {response.status_code}"


class PaymentGateway:
    """Hosted checkout client (disabled when no API key is configured)."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        mode: str | None = None,
    ):
        self.api_key = settings.PAYMENT_API_KEY if api_key is None else api_key
        self.base_url = (base_url or settings.PAYMENT_API_BASE).rstrip("/")
        self.mode = mode or settings.PAYMENT_MODE
        self.currency = settings.PAYMENT_CURRENCY
        self.payment_methods = settings.get_payment_methods_list()
        self.client: httpx.AsyncClient | None = None

        if self.is_configured:
            self.client = httpx.AsyncClient(
                timeout=httpx.Timeout(settings.PAYMENT_TIMEOUT, connect=5.0),
                limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
            )
            masked = "*" * 10 + self.api_key[-4:] if len(self.api_key) > 4 else "***"
            logger.info(f"Payment gateway initialized ({self.mode} mode, API key: {masked})")
        else:
            logger.warning("Payment gateway not configured: set PAYMENT_API_KEY to enable checkout")

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.api_key.strip())

    def _check_configured(self):
        if not self.is_configured:
            raise ConfigurationError(
                "Payment service not configured. Please set PAYMENT_API_KEY.",
                setting="PAYMENT_API_KEY"
            )

    def build_checkout_payload(
        self,
        items: list[CheckoutItem],
        total_amount: float,
        buyer: BuyerInfo | None,
        order_id: str,
        return_url: str | None = None,
        payment_method: str | None = None,
        metadata: dict | None = None,
    ) -> dict:
        buyer = buyer or BuyerInfo()
        payload = {
            "return_url": return_url or f"{settings.PAYMENT_RETURN_URL}?payment=complete&order={order_id}",
            "metadata": {
                "order_id": order_id,
                "buyer_id": buyer.buyer_id or "anonymous",
                "total_amount": str(total_amount),
                "items_json": json.dumps([
                    {"name": i.name, "price": i.price, "qty": i.quantity, "farmerId": i.farmer_id}
                    for i in items
                ]),
                **(metadata or {}),
            },
            "allowed_payment_method_types": [payment_method] if payment_method else list(self.payment_methods),
            "billing_currency": self.currency,
        }
        if buyer.email:
            payload["customer"] = {"email": buyer.email, "name": buyer.name}
        return payload

    async def create_checkout_session(
        self,
        items: list[CheckoutItem],
        total_amount: float,
        buyer: BuyerInfo | None = None,
        order_id: str | None = None,
        return_url: str | None = None,
        payment_method: str | None = None,
        metadata: dict | None = None,
    ) -> CheckoutSessionResult:
        """
        Create a hosted checkout session.

        Returns:
            CheckoutSessionResult; success=False carries the upstream or
            configuration error message. No network call is made when the
            gateway is not configured.
        """
        try:
            self._check_configured()
        except ConfigurationError as e:
            logger.warning(e.message)
            return CheckoutSessionResult(success=False, error=e.message)

        if payment_method and payment_method not in self.payment_methods:
            logger.warning(f"Rejected unsupported payment method {payment_method!r}")
            return CheckoutSessionResult(
                success=False, order_id=order_id, error=f"Unsupported payment method: {payment_method}"
            )

        order_id = order_id or new_order_id()
        payload = self.build_checkout_payload(
            items, total_amount, buyer, order_id, return_url, payment_method, metadata
        )

        try:
            response = await self.client.post(f"{self.base_url}/checkout_sessions", json=payload)
            if response.is_error:
                raise ValueError(_error_detail(response))
            data = response.json()
            if not isinstance(data, dict):
                raise ValueError("Malformed checkout response")
        except httpx.TimeoutException:
            logger.warning(f"Checkout session for {order_id} timed out")
            return CheckoutSessionResult(success=False, order_id=order_id, error="Request timed out")
        except httpx.ConnectError:
            logger.warning("Payment gateway not reachable")
            return CheckoutSessionResult(success=False, order_id=order_id, error="Connection refused")
        except Exception as e:
            logger.error(f"Checkout session for {order_id} failed: {e}")
            return CheckoutSessionResult(
                success=False, order_id=order_id, error=str(e) or "Failed to create checkout session"
            )

        session_id = data.get("session_id") or data.get("id")
        checkout_url = data.get("checkout_url") or data.get("url")
        if not checkout_url:
            logger.error(f"Checkout session for {order_id} returned no checkout URL")
            return CheckoutSessionResult(
                success=False, session_id=session_id, order_id=order_id,
                error="No checkout URL returned"
            )

        logger.info(f"Checkout session {session_id} created for order {order_id} ({total_amount} {self.currency})")
        return CheckoutSessionResult(
            success=True,
            session_id=session_id,
            checkout_url=checkout_url,
            order_id=order_id,
        )

    async def verify_payment(self, session_id: str) -> VerifyPaymentResult:
        """Fetch the session and normalize its status; verified only when completed."""
        try:
            self._check_configured()
        except ConfigurationError:
            return VerifyPaymentResult(
                verified=False, status=PaymentSessionStatus.FAILED, error="Service not configured"
            )

        try:
            response = await self.client.get(f"{self.base_url}/checkout_sessions/{session_id}")
            if response.is_error:
                raise ValueError(f"Failed to verify: {response.status_code}")
            data = response.json()
            if not isinstance(data, dict):
                raise ValueError("Malformed payment status response")
        except Exception as e:
            logger.error(f"Payment verification for {session_id} failed: {e}")
            return VerifyPaymentResult(
                verified=False, status=PaymentSessionStatus.FAILED, error=str(e) or "Verification failed"
            )

        status = normalize_status(data.get("status"))
        logger.debug(f"Session {session_id} status {data.get('status')!r} -> {status.value}")
        return VerifyPaymentResult(
            verified=status == PaymentSessionStatus.COMPLETED,
            status=status,
            transaction_id=data.get("payment_id") or data.get("transaction_id") or session_id,
            amount=data.get("amount"),
            currency=data.get("currency") or self.currency,
            completed_at=_parse_timestamp(data.get("completed_at")),
        )

    async def get_session_status(self, session_id: str) -> PaymentSessionStatus:
        """Normalized status only; retrieval errors read as failed."""
        result = await self.verify_payment(session_id)
        return result.status

    async def wait_for_payment_completion(
        self,
        session_id: str,
        max_attempts: int | None = None,
        interval: float | None = None,
        on_status_change: Callable[[PaymentSessionStatus], None] | None = None,
    ) -> VerifyPaymentResult:
        """
        Poll until the session reaches a final status or attempts run out.

        On timeout returns status=pending with an explanatory error.
        """
        max_attempts = settings.PAYMENT_POLL_MAX_ATTEMPTS if max_attempts is None else max_attempts
        interval = settings.PAYMENT_POLL_INTERVAL if interval is None else interval
        last_status = PaymentSessionStatus.PENDING

        for attempt in range(1, max_attempts + 1):
            result = await self.verify_payment(session_id)

            if result.status != last_status:
                last_status = result.status
                if on_status_change is not None:
                    on_status_change(result.status)

            if result.verified or result.status in FINAL_PAYMENT_STATUSES:
                logger.info(f"Session {session_id} settled as {result.status.value} after {attempt} polls")
                return result

            if attempt < max_attempts:
                await asyncio.sleep(interval)

        logger.warning(f"Session {session_id} still pending after {max_attempts} polls")
        return VerifyPaymentResult(
            verified=False, status=PaymentSessionStatus.PENDING, error=TIMEOUT_MESSAGE
        )

    async def aclose(self):
        if self.client is not None:
            await self.client.aclose()
            self.client = None


_gateway_instance: PaymentGateway | None = None


def get_payment_gateway() -> PaymentGateway:
    """Process-wide gateway built from settings on first use."""
    global _gateway_instance
    if _gateway_instance is None:
        _gateway_instance = PaymentGateway()
    return _gateway_instance


def reset_payment_gateway() -> None:
    """Drop the cached gateway (tests, settings reload)."""
    global _gateway_instance
    _gateway_instance = None
