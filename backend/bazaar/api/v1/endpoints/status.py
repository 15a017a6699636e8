"""
Status and health check endpoints.

WHAT: Health monitoring for the reference store and payment gateway
WHY: Quick diagnostics for frontend and ops
HOW: FastAPI endpoint calling the database ping and reading gateway config
"""

from fastapi import APIRouter, Depends

from ....core.config import settings
from ....core.database import ping_database
from ....services.payment_gateway import PaymentGateway, get_payment_gateway

router = APIRouter()


@router.get("/health")
async def health_check(gateway: PaymentGateway = Depends(get_payment_gateway)):
    """
    Overall application health check.

    The database decides healthy/degraded; an unconfigured gateway only
    disables checkout and is reported, not counted against health.

    Returns:
        JSON with overall health status
    """
    db_status = ping_database()

    return {
        "status": "healthy" if db_status["available"] else "degraded",
        "version": settings.APP_VERSION,
        "app_name": settings.APP_NAME,
        "components": {
            "database": db_status,
            "payments": {
                "configured": gateway.is_configured,
                "mode": gateway.mode,
                "currency": gateway.currency,
            },
        },
        "gates": {
            "min_bulk_qty": settings.MIN_BULK_QTY,
            "min_cart_value": settings.MIN_CART_VALUE,
        },
    }
