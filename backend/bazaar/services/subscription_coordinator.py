"""
Scoped live sync for negotiations and messages.

WHAT: Hold exactly one negotiation feed and one message feed for the session
WHY: The message feed is scoped to the visible negotiation ids; rebuilding it
     on every negotiation field update causes feed churn and flicker
HOW: FeedHandle wraps each subscription so closed feeds drop late callbacks;
     scope_equals (unordered set equality) gates re-opening the message feed
"""

from enum import Enum
from typing import Any, Callable, Iterable

from ..models.negotiation import User
from ..store.contract import ErrorCallback, RemoteStore, Unsubscribe
from ..utils.exceptions import SubscriptionError
from ..utils.logger import get_logger
from .session_state import (
    MessagesSnapshotReceived, NegotiationsSnapshotReceived, StateStore, SyncErrorReported
)

logger = get_logger(__name__)


class SyncErrorCategory(str, Enum):
    INDEX = "index"
    PERMISSION = "permission"
    SYNC = "sync"


_USER_MESSAGES = {
    SyncErrorCategory.INDEX: "Database index required for live {feed}. Sync is paused until it is created.",
    SyncErrorCategory.PERMISSION: "Permission denied accessing {feed}.",
    SyncErrorCategory.SYNC: "Error loading {feed}. Live updates may be out of date.",
}


def classify_subscription_error(error: BaseException | str) -> SyncErrorCategory:
    """Map store error text to a user-facing category."""
    text = str(error).lower()
    if "index" in text:
        return SyncErrorCategory.INDEX
    if "permission" in text:
        return SyncErrorCategory.PERMISSION
    return SyncErrorCategory.SYNC


def scope_equals(old: Iterable[str] | None, new: Iterable[str]) -> bool:
    """Unordered id-set equality; no previous scope never equals."""
    if old is None:
        return False
    return set(old) == set(new)


class FeedHandle:
    """
    One open live query.

    After close() no further data or errors reach the handler, even if the
    store already scheduled a delivery.
    """

    def __init__(self, kind: str, scope: Any = None):
        self.kind = kind
        self.scope = scope
        self.active = True
        self.error_reported = False
        self._unsubscribe: Unsubscribe | None = None

    def attach(self, unsubscribe: Unsubscribe):
        self._unsubscribe = unsubscribe
        if not self.active:
            # closed while the store was still subscribing
            unsubscribe()

    def close(self):
        if not self.active:
            return
        self.active = False
        if self._unsubscribe is not None:
            self._unsubscribe()
        logger.debug(f"Closed {self.kind} feed")

    def __repr__(self):
        return f"<FeedHandle(kind={self.kind}, active={self.active})>"


SubscribeFn = Callable[[Callable[[Any], None], ErrorCallback], Unsubscribe]


def open_feed(
    kind: str,
    scope: Any,
    subscribe: SubscribeFn,
    on_data: Callable[[Any], None],
    on_error: Callable[[FeedHandle, Exception], None],
) -> FeedHandle:
    handle = FeedHandle(kind, scope)

    def deliver(payload):
        if handle.active:
            on_data(payload)

    def fail(error: Exception):
        if handle.active:
            on_error(handle, error)

    handle.attach(subscribe(deliver, fail))
    return handle


class SubscriptionCoordinator:
    """
    Maintain the session's two feeds and merge their snapshots into state.

    Errors are classified, recorded in state and passed to `on_error`; the
    feed stays open so the caller can choose a reconnection policy.
    """

    def __init__(
        self,
        store: RemoteStore,
        state: StateStore,
        on_error: Callable[[SubscriptionError], None] | None = None,
    ):
        self.store = store
        self.state = state
        self.on_error = on_error
        self.negotiation_feed: FeedHandle | None = None
        self.message_feed: FeedHandle | None = None
        self._message_scope: frozenset[str] | None = None
        self.message_feed_opens = 0

    @property
    def message_scope(self) -> frozenset[str] | None:
        return self._message_scope

    @property
    def is_open(self) -> bool:
        return self.negotiation_feed is not None and self.negotiation_feed.active

    def open_session(self, user: User):
        """Open the user-scoped negotiation feed; the message feed follows its snapshots."""
        if self.negotiation_feed is not None or self.message_feed is not None:
            self.close_session()

        logger.info(f"Subscribing to negotiations as {user.role.value} {user.uid}")
        self.negotiation_feed = open_feed(
            "negotiations",
            (user.uid, user.role),
            lambda on_data, on_error: self.store.subscribe_negotiations(user.uid, user.role, on_data, on_error),
            self._on_negotiations,
            self._on_feed_error,
        )

    def close_session(self):
        for handle in (self.negotiation_feed, self.message_feed):
            if handle is not None:
                handle.close()
        self.negotiation_feed = None
        self.message_feed = None
        self._message_scope = None
        logger.info("All feeds closed")

    def sync_message_scope(self, negotiation_ids: Iterable[str]) -> bool:
        """
        Re-point the message feed at `negotiation_ids` if the set changed.

        Returns True when the feed was rebuilt (or cleared), False when skipped.
        """
        ids = frozenset(negotiation_ids)
        if scope_equals(self._message_scope, ids):
            logger.debug("Negotiation ids unchanged, skipping message resubscription")
            return False

        if self.message_feed is not None:
            self.message_feed.close()
            self.message_feed = None
        self._message_scope = ids

        if not ids:
            logger.info("No negotiations, clearing messages")
            self.state.dispatch(MessagesSnapshotReceived(()))
            return True

        logger.info(f"Subscribing to messages for {len(ids)} negotiations")
        self.message_feed_opens += 1
        self.message_feed = open_feed(
            "messages",
            ids,
            lambda on_data, on_error: self.store.subscribe_messages(sorted(ids), on_data, on_error),
            self._on_messages,
            self._on_feed_error,
        )
        return True

    def _on_negotiations(self, negotiations):
        self.state.dispatch(NegotiationsSnapshotReceived(tuple(negotiations)))
        self.sync_message_scope(self.state.state.negotiation_ids)

    def _on_messages(self, messages):
        self.state.dispatch(MessagesSnapshotReceived(tuple(messages)))

    def _on_feed_error(self, handle: FeedHandle, error: Exception):
        category = classify_subscription_error(error)
        logger.error(f"{handle.kind} feed error ({category.value}): {error}")
        if handle.error_reported:
            return
        handle.error_reported = True

        sync_error = SubscriptionError(
            feed=handle.kind,
            category=category.value,
            user_message=_USER_MESSAGES[category].format(feed=handle.kind),
            reason=str(error),
        )
        self.state.dispatch(SyncErrorReported(sync_error.message))
        if self.on_error is not None:
            self.on_error(sync_error)
