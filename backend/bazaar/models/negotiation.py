"""
Negotiation domain models.

WHAT: Users, products, negotiations and settlement records
WHY: Consistent immutable typing across engine, store and state container
HOW: Frozen Pydantic v2 models; changes go through model_copy(update=...)
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    """Timezone-aware current time used for all local timestamps."""
    return datetime.now(timezone.utc)


class UserRole(str, Enum):
    """Marketplace roles. Farmers are the sellers."""
    BUYER = "Buyer"
    FARMER = "Farmer"


class NegotiationStatus(str, Enum):
    """Negotiation status values as stored remotely."""
    PENDING = "Pending"
    # Legacy undifferentiated counter, kept for reading old records only
    COUNTER_OFFER = "Counter-Offer"
    COUNTER_BY_FARMER = "Counter-By-Farmer"
    COUNTER_BY_BUYER = "Counter-By-Buyer"
    ACCEPTED = "Accepted"
    REJECTED = "Rejected"


COUNTER_STATUSES = frozenset({
    NegotiationStatus.COUNTER_OFFER,
    NegotiationStatus.COUNTER_BY_FARMER,
    NegotiationStatus.COUNTER_BY_BUYER,
})

TERMINAL_STATUSES = frozenset({
    NegotiationStatus.ACCEPTED,
    NegotiationStatus.REJECTED,
})


KycStatus = Literal["none", "pending", "approved", "rejected"]


class User(BaseModel):
    """Authenticated marketplace user."""

    model_config = ConfigDict(frozen=True)

    uid: str
    name: str = "User"
    role: UserRole
    email: str | None = None


PriceSource = Literal["district-mandi", "state-average", "national-fallback"]


class PriceBand(BaseModel):
    """Location-aware price guidance attached to a product."""

    model_config = ConfigDict(frozen=True)

    floor_price: float = Field(ge=0.0)
    target_price: float = Field(ge=0.0)
    price_source: PriceSource = "national-fallback"
    is_verified: bool = False


class FarmerLocation(BaseModel):
    model_config = ConfigDict(frozen=True)

    state: str
    district: str = ""


class Product(BaseModel):
    """A farmer's listed lot."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    price: float = Field(ge=0.0)  # per kg
    quantity: int = Field(default=0, ge=0)
    farmer_id: str
    image_url: str = ""
    is_verified: bool = False
    price_band: PriceBand | None = None
    farmer_location: FarmerLocation | None = None


class BuyerOffer(BaseModel):
    """Opening offer a buyer makes on a product."""

    model_config = ConfigDict(frozen=True)

    price: float
    quantity: int
    notes: str = ""


class Negotiation(BaseModel):
    """Buyer/farmer bargaining record for one product."""

    model_config = ConfigDict(frozen=True)

    id: str
    product_id: str
    product_name: str = ""
    buyer_id: str
    farmer_id: str
    initial_price: float
    offered_price: float
    counter_price: float | None = None
    quantity: int
    status: NegotiationStatus = NegotiationStatus.PENDING
    notes: str = ""
    last_updated: datetime = Field(default_factory=utcnow)

    # Price provenance
    floor_price: float | None = None
    target_price: float | None = None
    price_source: str | None = None
    price_verified: bool = False
    quality_grade: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def has_counter(self) -> bool:
        """True for both role-specific counters and the legacy alias."""
        return self.status in COUNTER_STATUSES

    def involves(self, user_id: str) -> bool:
        return user_id in (self.buyer_id, self.farmer_id)


class SettlementEvent(BaseModel):
    """Agreed deal handed to the external ledger once a negotiation is accepted."""

    model_config = ConfigDict(frozen=True)

    negotiation_id: str
    product_id: str = ""
    product_name: str = ""
    buyer_id: str
    farmer_id: str
    final_price: float
    quantity: int

    @property
    def amount(self) -> float:
        return self.final_price * self.quantity
