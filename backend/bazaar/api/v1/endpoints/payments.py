"""
Payment handoff endpoints.

WHAT: Create hosted checkout sessions and report their status
WHY: The browser is redirected to the gateway; the backend keeps the API key
HOW: Cart-minimum gate, then PaymentGateway; gateway failures are returned as
     result bodies rather than raised
"""

from fastapi import APIRouter, Depends, Response, status

from ....models.api_schemas import (
    CheckoutRequest,
    CheckoutResponse,
    PaymentStatusResponse,
    VerifyPaymentResponse,
)
from ....models.payment import BuyerInfo, CheckoutItem
from ....services import gates
from ....services.payment_gateway import PaymentGateway, get_payment_gateway
from ....utils.exceptions import ConfigurationError
from ....utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.post("/payments/checkout", response_model=CheckoutResponse)
async def create_checkout(
    request: CheckoutRequest,
    response: Response,
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """
    Start a hosted checkout for a cart.

    Returns:
        CheckoutResponse with the checkout URL to redirect to

    Raises:
        ValidationError: cart total below the minimum order value (400)
        ConfigurationError: gateway has no API key (503)
    """
    total = request.total_amount
    gates.ensure_cart_minimum(total)
    if not gateway.is_configured:
        raise ConfigurationError(
            "Payment service not configured. Please set PAYMENT_API_KEY.",
            setting="PAYMENT_API_KEY"
        )

    items = [
        CheckoutItem(
            product_id=line.product_id,
            name=line.name,
            price=line.price,
            quantity=line.quantity,
            farmer_id=line.farmer_id,
        )
        for line in request.items
    ]
    buyer = BuyerInfo(buyer_id=request.buyer_id, email=request.buyer_email, name=request.buyer_name)

    result = await gateway.create_checkout_session(
        items,
        total,
        buyer,
        order_id=request.order_id,
        return_url=request.return_url,
        payment_method=request.payment_method,
    )
    if not result.success:
        logger.warning(f"Checkout for {request.buyer_id} failed upstream: {result.error}")
        response.status_code = status.HTTP_502_BAD_GATEWAY

    return CheckoutResponse(
        success=result.success,
        session_id=result.session_id,
        checkout_url=result.checkout_url,
        order_id=result.order_id,
        total_amount=total,
        error=result.error,
    )


@router.get("/payments/{session_id}/status", response_model=PaymentStatusResponse)
async def payment_status(session_id: str, gateway: PaymentGateway = Depends(get_payment_gateway)):
    """Normalized session status; lookup failures read as failed."""
    session_status = await gateway.get_session_status(session_id)
    return PaymentStatusResponse(session_id=session_id, status=session_status)


@router.get("/payments/{session_id}/verify", response_model=VerifyPaymentResponse)
async def verify_payment(session_id: str, gateway: PaymentGateway = Depends(get_payment_gateway)):
    result = await gateway.verify_payment(session_id)
    return VerifyPaymentResponse(
        session_id=session_id,
        verified=result.verified,
        status=result.status,
        transaction_id=result.transaction_id,
        amount=result.amount,
        currency=result.currency,
        completed_at=result.completed_at,
        error=result.error,
    )
