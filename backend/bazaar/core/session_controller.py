"""
Session orchestrator.

WHAT: Top-level entry point for user actions and the session boundary
WHY: Gates (KYC, bulk quantity, cart minimum) must run at the triggering
     action, and sign-in / role switch must tear down feeds and local state
     as one step
HOW: Composes NegotiationEngine, MessagePipeline, SubscriptionCoordinator and
     PaymentGateway around a single StateStore
"""

from dataclasses import dataclass
from typing import Callable, Iterable

from ..models.cart import CartItem
from ..models.message import ChatMessage
from ..models.negotiation import BuyerOffer, KycStatus, Negotiation, Product, User, UserRole
from ..models.payment import BuyerInfo, CheckoutItem, CheckoutSessionResult, VerifyPaymentResult
from ..services import gates
from ..services.message_pipeline import MessagePipeline
from ..services.negotiation_engine import Decision, NegotiationEngine, TransitionResult
from ..services.payment_gateway import PaymentGateway
from ..services.pricing import MandiQuote
from ..services.session_state import (
    CartCleared, CartItemAdded, CartQuantityUpdated, KycStatusChanged,
    NegotiationTransitioned, SessionCleared, SessionStarted, StateStore, WishlistToggled
)
from ..services.subscription_coordinator import SubscriptionCoordinator
from ..store.contract import RemoteStore
from ..utils.exceptions import NotFoundError, RemoteWriteError, SubscriptionError, ValidationError
from ..utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class SessionView:
    """Derived, read-only view of the current session."""
    user: User | None
    kyc_status: KycStatus
    negotiations: tuple[Negotiation, ...]
    messages_by_negotiation: dict[str, list[ChatMessage]]
    cart: tuple[CartItem, ...]
    cart_total: float
    can_checkout: bool
    checkout_shortfall: float
    wishlist: tuple[str, ...]
    sync_error: str | None


class SessionController:
    """
    Orchestrate one user's session against a remote store.

    Every local mutation is a dispatched event; feeds are owned by the
    coordinator and rebuilt only at the session boundary or on scope change.
    """

    def __init__(
        self,
        store: RemoteStore,
        gateway: PaymentGateway | None = None,
        state: StateStore | None = None,
        on_sync_error: Callable[[SubscriptionError], None] | None = None,
        mandi_quotes: Iterable[MandiQuote] = (),
    ):
        self.store = store
        self.state = state or StateStore()
        self.gateway = gateway or PaymentGateway()
        self.engine = NegotiationEngine(store, mandi_quotes)
        self.pipeline = MessagePipeline(store, self.state)
        self.coordinator = SubscriptionCoordinator(store, self.state, on_error=on_sync_error)

    @property
    def user(self) -> User | None:
        return self.state.state.user

    # ------------------------------------------------------------------
    # Session boundary
    # ------------------------------------------------------------------

    def _teardown(self):
        self.coordinator.close_session()
        self.state.dispatch(SessionCleared())

    async def sign_in(self, user: User):
        """Start a fresh session for `user`; any previous session is torn down first."""
        self._teardown()
        self.state.dispatch(SessionStarted(user))
        logger.info(f"Session started for {user.uid} as {user.role.value}")

        if user.role == UserRole.FARMER:
            kyc_status = await self._fetch_kyc_status(user)
            if self.user is not user:
                logger.info(f"Session for {user.uid} replaced during KYC lookup")
                return
            self.state.dispatch(KycStatusChanged(kyc_status))

        self.coordinator.open_session(user)

    def sign_out(self):
        user = self.user
        self._teardown()
        if user is not None:
            logger.info(f"Session ended for {user.uid}")

    async def switch_role(self, role: UserRole) -> User:
        """
        Persist the new role, then restart the session under it.

        Raises:
            RemoteWriteError: role could not be saved; the session is unchanged
        """
        user = gates.ensure_authenticated(self.user)
        if user.role == role:
            return user

        try:
            result = await self.store.set_user_role(user.uid, role)
        except Exception as e:
            raise RemoteWriteError("set_user_role", str(e)) from e
        if not result.success:
            logger.error(f"Role switch for {user.uid} failed: {result.error}")
            raise RemoteWriteError("set_user_role", result.error)

        switched = user.model_copy(update={"role": role})
        logger.info(f"{user.uid} switched role {user.role.value} -> {role.value}")
        await self.sign_in(switched)
        return switched

    async def refresh_kyc_status(self) -> KycStatus:
        user = gates.ensure_authenticated(self.user)
        status = await self._fetch_kyc_status(user)
        if self.user is user:
            self.state.dispatch(KycStatusChanged(status))
        return status

    async def _fetch_kyc_status(self, user: User) -> KycStatus:
        try:
            return await self.store.get_kyc_status(user.uid)
        except Exception as e:
            logger.warning(f"KYC status lookup for {user.uid} failed, treating as none: {e}")
            return "none"

    # ------------------------------------------------------------------
    # Negotiations
    # ------------------------------------------------------------------

    def _require_party(self, negotiation_id: str) -> tuple[User, Negotiation]:
        user = gates.ensure_authenticated(self.user)
        negotiation = self.state.state.find_negotiation(negotiation_id)
        if negotiation is None:
            raise NotFoundError("Negotiation", negotiation_id)
        if not negotiation.involves(user.uid):
            raise ValidationError(
                f"{user.uid} is not a party to negotiation {negotiation_id}",
                field="negotiation_id"
            )
        return user, negotiation

    def _ensure_kyc(self, user: User):
        gates.ensure_kyc_cleared(user, self.state.state.kyc_status)

    async def create_negotiation(self, product: Product, offer: BuyerOffer) -> Negotiation:
        user = self.user
        if user is not None and user.role != UserRole.BUYER:
            raise ValidationError("Only buyers can open negotiations", field="role")
        # The new record arrives through the negotiation feed
        return await self.engine.create_negotiation(user, product, offer)

    async def counter(self, negotiation_id: str, new_price: float, notes: str | None = None) -> Negotiation:
        user, negotiation = self._require_party(negotiation_id)
        self._ensure_kyc(user)
        updated = await self.engine.counter(negotiation, user.role, new_price, notes)
        self.state.dispatch(NegotiationTransitioned(updated))
        return updated

    async def respond(self, negotiation_id: str, decision: Decision) -> TransitionResult:
        user, negotiation = self._require_party(negotiation_id)
        self._ensure_kyc(user)
        result = await self.engine.respond(negotiation, decision)
        self.state.dispatch(NegotiationTransitioned(result.negotiation))
        return result

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    async def send_message(self, negotiation_id: str, text: str) -> ChatMessage:
        user, negotiation = self._require_party(negotiation_id)
        return await self.pipeline.send(negotiation, user.uid, text)

    async def retry_message(self, message_id: str) -> bool:
        gates.ensure_authenticated(self.user)
        return await self.pipeline.retry(message_id)

    # ------------------------------------------------------------------
    # Cart, wishlist, checkout
    # ------------------------------------------------------------------

    def add_to_cart(self, product: Product, quantity: int = 1):
        if quantity < 1:
            raise ValidationError(f"Quantity must be at least 1, got {quantity}", field="quantity")
        self.state.dispatch(CartItemAdded(product, quantity))

    def update_cart_quantity(self, product_id: str, quantity: int):
        """Set a line's quantity; zero or less removes the line."""
        self.state.dispatch(CartQuantityUpdated(product_id, quantity))

    def toggle_wishlist(self, product_id: str) -> bool:
        """Returns True when the product is now wishlisted."""
        self.state.dispatch(WishlistToggled(product_id))
        return product_id in self.state.state.wishlist

    @property
    def cart_total(self) -> float:
        return self.state.state.cart_total

    @property
    def checkout_shortfall(self) -> float:
        return gates.cart_shortfall(self.cart_total)

    @property
    def can_checkout(self) -> bool:
        return bool(self.state.state.cart) and self.checkout_shortfall == 0

    async def checkout(
        self,
        return_url: str | None = None,
        payment_method: str | None = None,
    ) -> CheckoutSessionResult:
        """
        Hand the cart off to the hosted checkout.

        Raises:
            ValidationError: not signed in, empty cart, or below the cart minimum
        """
        user = gates.ensure_authenticated(self.user)
        cart = self.state.state.cart
        if not cart:
            raise ValidationError("Cart is empty", field="cart")
        total = self.state.state.cart_total
        gates.ensure_cart_minimum(total)

        items = [
            CheckoutItem(
                product_id=item.product_id,
                name=item.product.name,
                price=item.product.price,
                quantity=item.cart_quantity,
                farmer_id=item.product.farmer_id,
            )
            for item in cart
        ]
        buyer = BuyerInfo(buyer_id=user.uid, email=user.email, name=user.name)
        result = await self.gateway.create_checkout_session(
            items, total, buyer, return_url=return_url, payment_method=payment_method
        )
        if not result.success:
            logger.warning(f"Checkout for {user.uid} failed: {result.error}")
        return result

    async def complete_checkout(self, session_id: str) -> VerifyPaymentResult:
        """Verify a returned checkout; the cart is cleared only once payment completed."""
        result = await self.gateway.verify_payment(session_id)
        if result.verified:
            self.state.dispatch(CartCleared())
            logger.info(f"Checkout {session_id} completed, cart cleared")
        else:
            logger.info(f"Checkout {session_id} not completed: {result.status.value}")
        return result

    # ------------------------------------------------------------------
    # View
    # ------------------------------------------------------------------

    def view(self) -> SessionView:
        state = self.state.state
        grouped: dict[str, list[ChatMessage]] = {}
        for message in state.messages:
            grouped.setdefault(message.negotiation_id, []).append(message)

        return SessionView(
            user=state.user,
            kyc_status=state.kyc_status,
            negotiations=state.negotiations,
            messages_by_negotiation=grouped,
            cart=state.cart,
            cart_total=state.cart_total,
            can_checkout=self.can_checkout,
            checkout_shortfall=self.checkout_shortfall,
            wishlist=state.wishlist,
            sync_error=state.sync_error,
        )

    async def aclose(self):
        self._teardown()
        await self.gateway.aclose()
