"""
Cart models.

WHAT: Cart line items and totals
WHY: Checkout is gated on the cart total
HOW: Frozen Pydantic model wrapping a product reference
"""

from typing import Iterable

from pydantic import BaseModel, ConfigDict, Field

from .negotiation import Product


class CartItem(BaseModel):
    """A product reference plus the quantity placed in the cart."""

    model_config = ConfigDict(frozen=True)

    product: Product
    cart_quantity: int = Field(ge=1)

    @property
    def product_id(self) -> str:
        return self.product.id

    @property
    def line_total(self) -> float:
        return self.product.price * self.cart_quantity


def cart_total(items: Iterable[CartItem]) -> float:
    """Sum of price x quantity over all lines."""
    return sum(item.line_total for item in items)
