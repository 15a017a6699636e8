"""
Gate checks applied before state transitions.

WHAT: Bulk minimum, cart minimum, KYC, authentication and price floor checks
WHY: Engine, controller and HTTP layer must enforce identical thresholds
HOW: Plain functions raising ValidationError subclasses; thresholds from settings
"""

from ..core.config import settings
from ..models.negotiation import KycStatus, PriceBand, User, UserRole
from ..utils.exceptions import KycRequiredError, ValidationError
from .pricing import validate_offer_against_floor

# KYC statuses that block a farmer from trading
BLOCKING_KYC_STATUSES = frozenset({"none", "rejected"})


def ensure_authenticated(user: User | None) -> User:
    if user is None:
        raise ValidationError("You must be signed in to do that", field="user")
    return user


def ensure_bulk_quantity(quantity: int, minimum: int | None = None):
    """Minimum bulk order is one quintal."""
    minimum = settings.MIN_BULK_QTY if minimum is None else minimum
    if quantity < minimum:
        raise ValidationError(
            f"Minimum bulk order is {minimum}kg (1 quintal). You specified: {quantity}kg",
            field="quantity"
        )


def ensure_positive_price(price: float, field: str = "price"):
    if price <= 0:
        raise ValidationError(f"Price must be greater than zero, got {price}", field=field)


def ensure_above_floor(price: float, floor_price: float | None, field: str = "price"):
    if floor_price is None:
        return
    check = validate_offer_against_floor(price, floor_price)
    if not check.is_valid:
        raise ValidationError(
            f"Offer of {price}/kg rejected: {check.error_message}, short by {check.shortfall}/kg",
            field=field
        )


def floor_of(band: PriceBand | None) -> float | None:
    return band.floor_price if band else None


def cart_shortfall(total: float, minimum: float | None = None) -> float:
    """Amount still needed before checkout unlocks (0 when allowed)."""
    minimum = settings.MIN_CART_VALUE if minimum is None else minimum
    return max(0.0, minimum - total)


def ensure_cart_minimum(total: float, minimum: float | None = None):
    minimum = settings.MIN_CART_VALUE if minimum is None else minimum
    shortfall = cart_shortfall(total, minimum)
    if shortfall > 0:
        raise ValidationError(
            f"Add {shortfall:.2f} more to checkout (minimum order value {minimum:.2f})",
            field="cart_total"
        )


def ensure_kyc_cleared(user: User, kyc_status: KycStatus):
    """Farmers cannot trade until verification is submitted and not rejected."""
    if user.role == UserRole.FARMER and kyc_status in BLOCKING_KYC_STATUSES:
        raise KycRequiredError(user.uid, kyc_status)
