"""
Location-aware price band computation.

WHAT: Derive a product's floor and target price from mandi modal prices
WHY: Buyer offers are blocked below a regional market floor, so the floor must
     come from the same formula everywhere it is checked
HOW: Resolve a modal price (district mandi -> state average -> national
     fallback), then floor = modal/100 * grade multiplier - 1.5 and
     target = floor * 1.15, both per kg
"""

from dataclasses import dataclass
from typing import Iterable

from ..models.negotiation import PriceBand, PriceSource, Product
from ..utils.logger import get_logger

logger = get_logger(__name__)

# Quality grade -> share of the mandi modal price
GRADE_MULTIPLIERS = {
    "A": 1.0,
    "B": 0.90,
    "C": 0.80,
    "X": 0.0,   # non-agricultural, floor collapses to zero
}
DEFAULT_GRADE_MULTIPLIER = 0.90

FLOOR_DEDUCTION = 1.5    # per kg
TARGET_MARKUP = 1.15
KG_PER_QUINTAL = 100

# Per-quintal state averages used when no district quote exists
STATE_AVERAGE_PRICES: dict[str, dict[str, float]] = {
    "West Bengal": {
        "Rice": 3200, "Wheat": 2400, "Potato": 1600, "Onion": 2100, "Tomato": 2800,
        "Cauliflower": 2200, "Cabbage": 1400, "Brinjal": 2000, "Mango": 5500, "Banana": 2800,
        "default": 2500,
    },
    "Maharashtra": {
        "Rice": 3000, "Wheat": 2600, "Potato": 1800, "Onion": 1900, "Tomato": 2500,
        "Grapes": 6000, "Orange": 4500, "Mango": 6500, "Sugarcane": 3200, "Cotton": 7000,
        "default": 2800,
    },
    "Punjab": {
        "Rice": 3500, "Wheat": 2800, "Potato": 1500, "Maize": 2200, "Cotton": 7500,
        "Sugarcane": 3500, "Mustard": 5500, "Barley": 2000,
        "default": 3000,
    },
    "Uttar Pradesh": {
        "Rice": 3100, "Wheat": 2500, "Potato": 1400, "Onion": 1800, "Sugarcane": 3400,
        "Mango": 5000, "Tomato": 2600, "Cauliflower": 2000,
        "default": 2600,
    },
    "Karnataka": {
        "Rice": 3300, "Ragi": 3500, "Tomato": 2400, "Onion": 2000, "Potato": 1700,
        "Mango": 6000, "Coconut": 2500, "Coffee": 8000,
        "default": 2700,
    },
    "Tamil Nadu": {
        "Rice": 3400, "Coconut": 2800, "Banana": 3000, "Mango": 5800, "Tomato": 2700,
        "Onion": 2200, "Groundnut": 5500,
        "default": 2900,
    },
    "Gujarat": {
        "Cotton": 7200, "Groundnut": 5800, "Wheat": 2600, "Potato": 1600, "Onion": 2000,
        "Cumin": 18000, "Castor": 6500,
        "default": 3000,
    },
    "Madhya Pradesh": {
        "Wheat": 2700, "Soybean": 4500, "Gram": 5000, "Onion": 1800, "Potato": 1500,
        "Tomato": 2300, "Garlic": 12000,
        "default": 2800,
    },
    "Rajasthan": {
        "Wheat": 2600, "Mustard": 5600, "Gram": 5200, "Barley": 2100, "Cumin": 17000,
        "Coriander": 8000, "Onion": 1700,
        "default": 2700,
    },
    "default": {
        "Rice": 3200, "Wheat": 2500, "Potato": 1600, "Onion": 2000, "Tomato": 2500,
        "Mango": 5500, "Banana": 2600, "default": 2500,
    },
}

NATIONAL_FALLBACK_PRICE = 2500.0


@dataclass(frozen=True)
class MandiQuote:
    """One district market report, prices per quintal."""
    state: str
    district: str
    market: str
    commodity: str
    modal_price: float
    is_verified: bool = True


@dataclass(frozen=True)
class ModalPrice:
    """Modal price chosen for a commodity and where it came from."""
    per_quintal: float
    price_source: PriceSource
    is_verified: bool
    label: str

    @property
    def per_kg(self) -> float:
        return round(self.per_quintal / KG_PER_QUINTAL, 2)


@dataclass(frozen=True)
class PriceValidation:
    is_valid: bool
    floor_price: float
    offer_price: float
    shortfall: float = 0.0
    error_message: str | None = None


def _loose_match(a: str, b: str) -> bool:
    """Either name contains the other, ignoring case."""
    a, b = a.strip().lower(), b.strip().lower()
    return bool(a and b) and (a in b or b in a)


def grade_multiplier(grade: str | None) -> float:
    if not grade:
        return DEFAULT_GRADE_MULTIPLIER
    return GRADE_MULTIPLIERS.get(grade.strip().upper(), DEFAULT_GRADE_MULTIPLIER)


def state_average_price(state: str, commodity: str) -> float | None:
    table = STATE_AVERAGE_PRICES.get(state.strip())
    if table is None:
        table = next(
            (prices for name, prices in STATE_AVERAGE_PRICES.items()
             if name != "default" and _loose_match(name, state)),
            STATE_AVERAGE_PRICES["default"]
        )

    for name, price in table.items():
        if name != "default" and _loose_match(name, commodity):
            return float(price)
    default = table.get("default")
    return float(default) if default is not None else None


def resolve_modal_price(
    commodity: str,
    state: str | None = None,
    district: str | None = None,
    quotes: Iterable[MandiQuote] = (),
) -> ModalPrice:
    """
    Pick the modal price for a commodity.

    District quotes win when one matches state, district and commodity; then
    the state average (only when a state is known); then the national price.
    """
    if state and district:
        for quote in quotes:
            if (
                quote.state.strip().lower() == state.strip().lower()
                and quote.district.strip().lower() == district.strip().lower()
                and _loose_match(quote.commodity, commodity)
                and quote.modal_price > 0
            ):
                return ModalPrice(
                    per_quintal=quote.modal_price,
                    price_source="district-mandi",
                    is_verified=quote.is_verified,
                    label=f"{quote.market or 'Mandi'}, {quote.district}",
                )

    if state:
        average = state_average_price(state, commodity)
        if average:
            logger.info(f"No district quote for {commodity} in {district}, {state}; using state average")
            return ModalPrice(
                per_quintal=average,
                price_source="state-average",
                is_verified=False,
                label=f"{state.strip()} State Average (district data unavailable)",
            )

    logger.info(f"No regional price for {commodity}; using national fallback")
    return ModalPrice(
        per_quintal=NATIONAL_FALLBACK_PRICE,
        price_source="national-fallback",
        is_verified=False,
        label="National Average (no regional data)",
    )


def calculate_prices(modal_per_quintal: float, grade: str | None = "B") -> tuple[float, float]:
    """Returns (floor, target) per kg, rounded to paise."""
    floor = max(0.0, modal_per_quintal / KG_PER_QUINTAL * grade_multiplier(grade) - FLOOR_DEDUCTION)
    target = floor * TARGET_MARKUP
    return round(floor, 2), round(target, 2)


def compute_price_band(
    commodity: str,
    grade: str | None = "B",
    state: str | None = None,
    district: str | None = None,
    quotes: Iterable[MandiQuote] = (),
) -> PriceBand:
    modal = resolve_modal_price(commodity, state, district, quotes)
    floor, target = calculate_prices(modal.per_quintal, grade)
    logger.debug(
        f"{commodity} grade {grade}: modal {modal.per_quintal}/q ({modal.price_source}) "
        f"-> floor {floor}/kg, target {target}/kg"
    )
    return PriceBand(
        floor_price=floor,
        target_price=target,
        price_source=modal.price_source,
        is_verified=modal.is_verified,
    )


def quality_grade_for(product: Product) -> str:
    """Verified listings trade as grade A, everything else as grade B."""
    return "A" if product.is_verified else "B"


def band_for_product(product: Product, quotes: Iterable[MandiQuote] = ()) -> PriceBand | None:
    """
    The product's price band.

    An attached band is used as-is; otherwise one is computed from the
    farmer's location. Products with neither have no floor.
    """
    if product.price_band is not None:
        return product.price_band
    if product.farmer_location is None:
        return None
    location = product.farmer_location
    return compute_price_band(
        product.name, quality_grade_for(product), location.state, location.district, quotes
    )


def validate_offer_against_floor(offer_price: float, floor_price: float) -> PriceValidation:
    if offer_price < floor_price:
        return PriceValidation(
            is_valid=False,
            floor_price=floor_price,
            offer_price=offer_price,
            shortfall=round(floor_price - offer_price, 2),
            error_message=f"Price below regional market floor ({floor_price:.2f}/kg)",
        )
    return PriceValidation(is_valid=True, floor_price=floor_price, offer_price=offer_price)
