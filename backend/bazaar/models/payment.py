"""
Payment handoff types.

WHAT: Checkout items, session results and payment status values
WHY: The gateway boundary returns values, never raises
HOW: Dataclasses for results, str Enum for status
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class PaymentSessionStatus(str, Enum):
    """Normalized hosted-checkout status."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


FINAL_PAYMENT_STATUSES = frozenset({
    PaymentSessionStatus.COMPLETED,
    PaymentSessionStatus.FAILED,
    PaymentSessionStatus.CANCELLED,
    PaymentSessionStatus.EXPIRED,
})


@dataclass
class CheckoutItem:
    """Line item sent to the checkout session metadata."""
    product_id: str
    name: str
    price: float
    quantity: int
    farmer_id: str | None = None


@dataclass
class BuyerInfo:
    """Customer details for the hosted checkout page."""
    buyer_id: str | None = None
    email: str | None = None
    name: str | None = None


@dataclass
class CheckoutSessionResult:
    """Outcome of creating a checkout session."""
    success: bool
    session_id: str | None = None
    checkout_url: str | None = None
    order_id: str | None = None
    error: str | None = None


@dataclass
class VerifyPaymentResult:
    """Outcome of verifying a checkout session."""
    verified: bool
    status: PaymentSessionStatus
    transaction_id: str | None = None
    amount: float | None = None
    currency: str | None = None
    completed_at: datetime | None = None
    error: str | None = None
