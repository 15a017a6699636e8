"""
Negotiation state machine.

WHAT: Validate and apply negotiation transitions, compute settlement price
WHY: Either party may counter until one side accepts or rejects; terminal
     states are final and acceptance must survive ledger failures
HOW: Pure transition functions + an async engine that writes through the
     remote store (non-optimistic) and emits a best-effort settlement event
"""

from dataclasses import dataclass
from typing import Iterable, Literal

from ..models.negotiation import (
    BuyerOffer, Negotiation, NegotiationStatus, Product, SettlementEvent,
    User, UserRole, utcnow
)
from ..store.contract import RemoteStore
from ..utils.exceptions import (
    InvalidTransitionError, RemoteWriteError, SettlementRecordingError, ValidationError
)
from ..utils.logger import get_logger
from . import gates
from .pricing import MandiQuote, band_for_product, quality_grade_for

logger = get_logger(__name__)

Decision = Literal["Accepted", "Rejected"]


@dataclass
class TransitionResult:
    """Outcome of respond(): the committed negotiation plus any settlement."""
    negotiation: Negotiation
    settlement: SettlementEvent | None = None
    settlement_recorded: bool = False


def compute_final_price(negotiation: Negotiation) -> float:
    """
    Agreed per-kg price for an accepted negotiation.

    Any counter status (including the legacy alias) settles at the counter
    price when one is set; otherwise the standing offer wins.
    """
    if negotiation.has_counter and negotiation.counter_price is not None:
        return negotiation.counter_price
    return negotiation.offered_price


def counter_status_for(role: UserRole) -> NegotiationStatus:
    """Status records who just moved, not whose turn is next."""
    if role == UserRole.FARMER:
        return NegotiationStatus.COUNTER_BY_FARMER
    return NegotiationStatus.COUNTER_BY_BUYER


def apply_counter(
    negotiation: Negotiation,
    actor_role: UserRole,
    new_price: float,
    notes: str | None = None,
) -> Negotiation:
    """Return the countered negotiation, or raise if the move is illegal."""
    if negotiation.is_terminal:
        raise InvalidTransitionError(negotiation.id, negotiation.status.value, "counter")
    gates.ensure_positive_price(new_price, field="counter_price")
    # Farmers may counter below the floor; buyers may not
    if actor_role == UserRole.BUYER:
        gates.ensure_above_floor(new_price, negotiation.floor_price, field="counter_price")

    return negotiation.model_copy(update={
        "status": counter_status_for(actor_role),
        "offered_price": new_price,
        "counter_price": new_price,
        "notes": notes if notes else negotiation.notes,
        "last_updated": utcnow(),
    })


def apply_response(negotiation: Negotiation, decision: Decision) -> Negotiation:
    if negotiation.is_terminal:
        raise InvalidTransitionError(negotiation.id, negotiation.status.value, "respond to")
    if decision not in ("Accepted", "Rejected"):
        raise ValidationError(f"Unknown decision: {decision}", field="decision")

    return negotiation.model_copy(update={
        "status": NegotiationStatus(decision),
        "last_updated": utcnow(),
    })


def build_settlement(negotiation: Negotiation) -> SettlementEvent:
    return SettlementEvent(
        negotiation_id=negotiation.id,
        product_id=negotiation.product_id,
        product_name=negotiation.product_name,
        buyer_id=negotiation.buyer_id,
        farmer_id=negotiation.farmer_id,
        final_price=compute_final_price(negotiation),
        quantity=negotiation.quantity,
    )


class NegotiationEngine:
    """
    Owns negotiation transitions against the remote store.

    Writes are not optimistic: a failed write raises RemoteWriteError and the
    caller's local state stays as it was.
    """

    def __init__(self, store: RemoteStore, mandi_quotes: Iterable[MandiQuote] = ()):
        self.store = store
        self.mandi_quotes = tuple(mandi_quotes)

    async def create_negotiation(
        self,
        user: User | None,
        product: Product,
        offer: BuyerOffer,
    ) -> Negotiation:
        """
        Open a Pending negotiation on a product.

        Raises:
            ValidationError: unauthenticated, below bulk minimum, non-positive
                price, or below the product's floor price
            RemoteWriteError: the store rejected the write
        """
        buyer = gates.ensure_authenticated(user)
        gates.ensure_bulk_quantity(offer.quantity)
        gates.ensure_positive_price(offer.price, field="offered_price")
        band = band_for_product(product, self.mandi_quotes)
        gates.ensure_above_floor(offer.price, gates.floor_of(band), field="offered_price")

        now = utcnow()
        fields = {
            "product_id": product.id,
            "product_name": product.name,
            "buyer_id": buyer.uid,
            "farmer_id": product.farmer_id,
            "initial_price": product.price,
            "offered_price": offer.price,
            "quantity": offer.quantity,
            "status": NegotiationStatus.PENDING,
            "notes": offer.notes,
            "last_updated": now,
            "floor_price": band.floor_price if band else None,
            "target_price": band.target_price if band else None,
            "price_source": band.price_source if band else None,
            "price_verified": band.is_verified if band else False,
            "quality_grade": quality_grade_for(product),
        }

        try:
            result = await self.store.create_negotiation(fields)
        except Exception as e:
            logger.error(f"Store raised creating negotiation on {product.id}: {e}")
            raise RemoteWriteError("create_negotiation", str(e)) from e
        if not result.success or not result.id:
            logger.error(f"Failed to create negotiation on {product.id}: {result.error}")
            raise RemoteWriteError("create_negotiation", result.error)

        logger.info(
            f"Negotiation {result.id} opened by {buyer.uid}: "
            f"{offer.quantity}kg at {offer.price}/kg (listed {product.price})"
        )
        return Negotiation(id=result.id, **fields)

    async def counter(
        self,
        negotiation: Negotiation,
        actor_role: UserRole,
        new_price: float,
        notes: str | None = None,
    ) -> Negotiation:
        updated = apply_counter(negotiation, actor_role, new_price, notes)

        try:
            result = await self.store.update_negotiation(negotiation.id, {
                "status": updated.status,
                "offered_price": updated.offered_price,
                "counter_price": updated.counter_price,
                "notes": updated.notes,
                "last_updated": updated.last_updated,
            })
        except Exception as e:
            logger.error(f"Store raised on counter for {negotiation.id}: {e}")
            raise RemoteWriteError("counter", str(e)) from e
        if not result.success:
            logger.error(f"Counter on {negotiation.id} failed: {result.error}")
            raise RemoteWriteError("counter", result.error)

        logger.info(f"Negotiation {negotiation.id}: {updated.status.value} at {new_price}/kg")
        return updated

    async def respond(self, negotiation: Negotiation, decision: Decision) -> TransitionResult:
        """
        Accept or reject. Acceptance is committed before the settlement is
        recorded, and a ledger failure never undoes it.
        """
        updated = apply_response(negotiation, decision)

        try:
            result = await self.store.update_negotiation(negotiation.id, {
                "status": updated.status,
                "last_updated": updated.last_updated,
            })
        except Exception as e:
            logger.error(f"Store raised on {decision} for {negotiation.id}: {e}")
            raise RemoteWriteError("respond", str(e)) from e
        if not result.success:
            logger.error(f"Response {decision} on {negotiation.id} failed: {result.error}")
            raise RemoteWriteError("respond", result.error)

        logger.info(f"Negotiation {negotiation.id} {decision.lower()}")
        if updated.status != NegotiationStatus.ACCEPTED:
            return TransitionResult(negotiation=updated)

        # Price is read from the pre-acceptance status, where the counter lives
        settlement = build_settlement(negotiation)
        recorded = await self._record_settlement(settlement)
        return TransitionResult(negotiation=updated, settlement=settlement, settlement_recorded=recorded)

    async def _record_settlement(self, settlement: SettlementEvent) -> bool:
        try:
            result = await self.store.record_settlement(settlement)
            if not result.success:
                raise SettlementRecordingError(settlement.negotiation_id, result.error or "rejected")
        except SettlementRecordingError as e:
            logger.warning(e.message)
            return False
        except Exception as e:
            logger.warning(SettlementRecordingError(settlement.negotiation_id, str(e)).message)
            return False

        logger.info(
            f"Bulk deal confirmed: {settlement.quantity}kg at {settlement.final_price}/kg "
            f"(negotiation {settlement.negotiation_id})"
        )
        return True
