"""
Reducer-style session state container.

WHAT: Single immutable snapshot of negotiations, messages, cart and wishlist
WHY: Many independent async callbacks update the same view; reasoning about
     their interleaving is only tractable as an ordered replay of events
HOW: Frozen dataclasses for state and events, a pure reduce(state, event),
     and a StateStore that swaps the state value wholesale on dispatch
"""

from collections import deque
from dataclasses import dataclass, replace
from typing import Callable, Iterable

from ..models.cart import CartItem, cart_total
from ..models.message import ChatMessage, MessageStatus
from ..models.negotiation import KycStatus, Negotiation, Product, User
from ..utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class SessionState:
    """Everything the current session shows. Never edited in place."""
    user: User | None = None
    kyc_status: KycStatus = "none"
    negotiations: tuple[Negotiation, ...] = ()
    messages: tuple[ChatMessage, ...] = ()
    # ids present in the last authoritative message snapshot
    confirmed_message_ids: frozenset[str] = frozenset()
    # in-flight provisional ids whose echo already arrived
    echoed_provisional_ids: frozenset[str] = frozenset()
    cart: tuple[CartItem, ...] = ()
    wishlist: tuple[str, ...] = ()
    sync_error: str | None = None

    def find_negotiation(self, negotiation_id: str) -> Negotiation | None:
        return next((n for n in self.negotiations if n.id == negotiation_id), None)

    def find_message(self, message_id: str) -> ChatMessage | None:
        return next((m for m in self.messages if m.id == message_id), None)

    def messages_for(self, negotiation_id: str) -> list[ChatMessage]:
        return [m for m in self.messages if m.negotiation_id == negotiation_id]

    @property
    def negotiation_ids(self) -> list[str]:
        return [n.id for n in self.negotiations]

    @property
    def cart_total(self) -> float:
        return cart_total(self.cart)


# ----------------------------------------------------------------------
# Events
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class SessionStarted:
    user: User


@dataclass(frozen=True)
class SessionCleared:
    pass


@dataclass(frozen=True)
class KycStatusChanged:
    status: KycStatus


@dataclass(frozen=True)
class NegotiationsSnapshotReceived:
    negotiations: tuple[Negotiation, ...]


@dataclass(frozen=True)
class NegotiationTransitioned:
    negotiation: Negotiation


@dataclass(frozen=True)
class MessagesSnapshotReceived:
    messages: tuple[ChatMessage, ...]


@dataclass(frozen=True)
class MessageQueued:
    message: ChatMessage


@dataclass(frozen=True)
class MessageStatusChanged:
    message_id: str
    status: MessageStatus


@dataclass(frozen=True)
class MessageRemoved:
    message_id: str


@dataclass(frozen=True)
class SyncErrorReported:
    message: str


@dataclass(frozen=True)
class CartItemAdded:
    product: Product
    quantity: int = 1


@dataclass(frozen=True)
class CartQuantityUpdated:
    product_id: str
    quantity: int


@dataclass(frozen=True)
class CartCleared:
    pass


@dataclass(frozen=True)
class WishlistToggled:
    product_id: str


SessionEvent = (
    SessionStarted | SessionCleared | KycStatusChanged
    | NegotiationsSnapshotReceived | NegotiationTransitioned
    | MessagesSnapshotReceived | MessageQueued | MessageStatusChanged | MessageRemoved
    | SyncErrorReported | CartItemAdded | CartQuantityUpdated | CartCleared | WishlistToggled
)


# ----------------------------------------------------------------------
# Reducer
# ----------------------------------------------------------------------

def _by_recency(negotiations) -> tuple[Negotiation, ...]:
    return tuple(sorted(negotiations, key=lambda n: n.last_updated, reverse=True))


def _by_time(messages) -> tuple[ChatMessage, ...]:
    return tuple(sorted(messages, key=lambda m: m.timestamp))


def reconcile_messages(
    local: tuple[ChatMessage, ...],
    remote: tuple[ChatMessage, ...],
    previously_confirmed: frozenset[str],
    echoed: frozenset[str] = frozenset(),
    scope: Iterable[str] | None = None,
) -> tuple[tuple[ChatMessage, ...], frozenset[str]]:
    """
    Merge an authoritative snapshot with local provisional messages.

    The snapshot replaces every confirmed record. A record it echoes (same
    negotiation, sender, text) that was not in the previous snapshot matches
    at most one provisional message:

    - a `sent` provisional is dropped, its write is known complete
    - a `sending` provisional is kept and marked echoed; it is dropped only
      when its own write settles as sent
    - a `failed` provisional is never superseded

    Provisional messages outside `scope` (visible negotiation ids) are
    discarded; `scope=None` keeps them all.

    Returns:
        (merged messages, ids of provisional messages marked echoed)
    """
    visible = None if scope is None else set(scope)
    fresh = [m for m in remote if m.id not in previously_confirmed]
    kept = []
    claimed = set()
    for message in local:
        if not message.is_provisional:
            continue
        if visible is not None and message.negotiation_id not in visible:
            continue
        if message.id in echoed:
            claimed.add(message.id)
            kept.append(message)
            continue
        if message.status == "failed":
            kept.append(message)
            continue
        echo = next((r for r in fresh if r.echoes(message)), None)
        if echo is None:
            kept.append(message)
            continue
        fresh.remove(echo)
        if message.status != "sent":
            claimed.add(message.id)
            kept.append(message)
    return _by_time(list(remote) + kept), frozenset(claimed)


def reduce(state: SessionState, event: SessionEvent) -> SessionState:
    """Apply one event; returns the same object when nothing changes."""
    if isinstance(event, SessionStarted):
        return SessionState(user=event.user)

    if isinstance(event, SessionCleared):
        return SessionState()

    if isinstance(event, KycStatusChanged):
        return replace(state, kyc_status=event.status)

    if isinstance(event, NegotiationsSnapshotReceived):
        return replace(state, negotiations=_by_recency(event.negotiations), sync_error=None)

    if isinstance(event, NegotiationTransitioned):
        updated = event.negotiation
        if state.find_negotiation(updated.id) is None:
            return state
        return replace(
            state,
            negotiations=_by_recency(updated if n.id == updated.id else n for n in state.negotiations)
        )

    if isinstance(event, MessagesSnapshotReceived):
        messages, echoed = reconcile_messages(
            state.messages,
            event.messages,
            state.confirmed_message_ids,
            state.echoed_provisional_ids,
            scope=state.negotiation_ids,
        )
        return replace(
            state,
            messages=messages,
            confirmed_message_ids=frozenset(m.id for m in event.messages),
            echoed_provisional_ids=echoed,
        )

    if isinstance(event, MessageQueued):
        return replace(state, messages=_by_time(state.messages + (event.message,)))

    if isinstance(event, MessageStatusChanged):
        if state.find_message(event.message_id) is None:
            return state
        echoed = state.echoed_provisional_ids - {event.message_id}
        if event.status == "sent" and event.message_id in state.echoed_provisional_ids:
            # the confirmed record is already on screen
            return replace(
                state,
                messages=tuple(m for m in state.messages if m.id != event.message_id),
                echoed_provisional_ids=echoed,
            )
        return replace(
            state,
            messages=tuple(
                m.model_copy(update={"status": event.status}) if m.id == event.message_id else m
                for m in state.messages
            ),
            echoed_provisional_ids=echoed if event.status == "failed" else state.echoed_provisional_ids,
        )

    if isinstance(event, MessageRemoved):
        if state.find_message(event.message_id) is None:
            return state
        return replace(
            state,
            messages=tuple(m for m in state.messages if m.id != event.message_id),
            echoed_provisional_ids=state.echoed_provisional_ids - {event.message_id},
        )

    if isinstance(event, SyncErrorReported):
        return replace(state, sync_error=event.message)

    if isinstance(event, CartItemAdded):
        if any(item.product_id == event.product.id for item in state.cart):
            cart = tuple(
                item.model_copy(update={"cart_quantity": item.cart_quantity + event.quantity})
                if item.product_id == event.product.id else item
                for item in state.cart
            )
        else:
            cart = state.cart + (CartItem(product=event.product, cart_quantity=event.quantity),)
        return replace(state, cart=cart)

    if isinstance(event, CartQuantityUpdated):
        if event.quantity <= 0:
            cart = tuple(item for item in state.cart if item.product_id != event.product_id)
        else:
            cart = tuple(
                item.model_copy(update={"cart_quantity": event.quantity})
                if item.product_id == event.product_id else item
                for item in state.cart
            )
        return replace(state, cart=cart)

    if isinstance(event, CartCleared):
        return replace(state, cart=())

    if isinstance(event, WishlistToggled):
        if event.product_id in state.wishlist:
            wishlist = tuple(pid for pid in state.wishlist if pid != event.product_id)
        else:
            wishlist = state.wishlist + (event.product_id,)
        return replace(state, wishlist=wishlist)

    raise TypeError(f"Unknown session event: {type(event).__name__}")


StateListener = Callable[[SessionState, SessionEvent], None]


class StateStore:
    """
    Holder of the current SessionState.

    All mutation goes through dispatch(); listeners see the new state and the
    event that produced it, in dispatch order. Only the most recent
    `history_size` events are kept in `events`.
    """

    def __init__(self, initial: SessionState | None = None, history_size: int = 200):
        self._state = initial or SessionState()
        self._listeners: list[StateListener] = []
        self.events: deque[SessionEvent] = deque(maxlen=history_size)

    @property
    def state(self) -> SessionState:
        return self._state

    def dispatch(self, event: SessionEvent) -> SessionState:
        new_state = reduce(self._state, event)
        self.events.append(event)
        if new_state is self._state:
            logger.debug(f"{type(event).__name__} had no effect")
            return new_state
        self._state = new_state
        for listener in list(self._listeners):
            listener(new_state, event)
        return new_state

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe
