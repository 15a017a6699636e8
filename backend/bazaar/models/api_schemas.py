"""
Pydantic API schemas for the payment handoff endpoints.

WHAT: Request and response models for FastAPI
WHY: Type-safe validation of checkout requests before the gateway is called
HOW: Pydantic v2 models with field constraints
"""

from datetime import datetime
from typing import Optional, List

from pydantic import BaseModel, Field, field_validator

from ..core.config import settings
from .payment import PaymentSessionStatus


class CheckoutLine(BaseModel):
    """One cart line sent for checkout."""
    product_id: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=200)
    price: float = Field(..., gt=0, description="Unit price")
    quantity: int = Field(..., ge=1, description="Cart quantity")
    farmer_id: Optional[str] = Field(default=None, max_length=100)

    @property
    def line_total(self) -> float:
        return self.price * self.quantity


class CheckoutRequest(BaseModel):
    """Cart handoff to the hosted checkout."""
    buyer_id: str = Field(..., min_length=1, max_length=100)
    buyer_email: Optional[str] = Field(default=None, max_length=200)
    buyer_name: Optional[str] = Field(default=None, max_length=100)
    items: List[CheckoutLine] = Field(..., min_length=1)
    order_id: Optional[str] = Field(default=None, max_length=100)
    return_url: Optional[str] = Field(default=None, max_length=500)
    payment_method: Optional[str] = Field(default=None, max_length=50)

    @field_validator("payment_method")
    @classmethod
    def check_payment_method(cls, v):
        if v is not None and v not in settings.get_payment_methods_list():
            raise ValueError(f"Unsupported payment method: {v}")
        return v

    @property
    def total_amount(self) -> float:
        return sum(line.line_total for line in self.items)


class CheckoutResponse(BaseModel):
    success: bool
    session_id: Optional[str] = None
    checkout_url: Optional[str] = None
    order_id: Optional[str] = None
    total_amount: float
    error: Optional[str] = None


class PaymentStatusResponse(BaseModel):
    session_id: str
    status: PaymentSessionStatus


class VerifyPaymentResponse(BaseModel):
    session_id: str
    verified: bool
    status: PaymentSessionStatus
    transaction_id: Optional[str] = None
    amount: Optional[float] = None
    currency: Optional[str] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
