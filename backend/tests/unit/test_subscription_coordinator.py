"""
Unit tests for scoped live sync.

WHAT: Test scope diffing, feed teardown and error classification
WHY: Resubscribing on every negotiation update causes churn and flicker;
     closed feeds must never write into a newer session
HOW: SubscriptionCoordinator over FakeRemoteStore with manual pushes
"""

from datetime import datetime, timezone

import pytest

from bazaar.models.message import ChatMessage
from bazaar.models.negotiation import NegotiationStatus, UserRole
from bazaar.services.subscription_coordinator import (
    FeedHandle, SubscriptionCoordinator, SyncErrorCategory,
    classify_subscription_error, scope_equals
)


@pytest.fixture
def errors():
    return []


@pytest.fixture
def coordinator(fake_store, state_store, errors):
    return SubscriptionCoordinator(fake_store, state_store, on_error=errors.append)


def _chat(message_id, negotiation_id, text="hello"):
    return ChatMessage(
        id=message_id,
        negotiation_id=negotiation_id,
        sender_id="farmer-1",
        text=text,
        timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


@pytest.mark.unit
class TestScopeEquals:

    def test_order_independent(self):
        assert scope_equals(["A", "B"], ["B", "A"])

    def test_added_id_differs(self):
        assert not scope_equals(["A", "B"], ["A", "B", "C"])

    def test_no_previous_scope(self):
        assert not scope_equals(None, [])
        assert not scope_equals(None, ["A"])

    def test_empty_scopes_equal(self):
        assert scope_equals([], frozenset())


@pytest.mark.unit
class TestClassification:

    @pytest.mark.parametrize("text,category", [
        ("FAILED_PRECONDITION: The query requires an index", SyncErrorCategory.INDEX),
        ("Missing or insufficient permissions", SyncErrorCategory.PERMISSION),
        ("permission-denied", SyncErrorCategory.PERMISSION),
        ("socket hang up", SyncErrorCategory.SYNC),
    ])
    def test_categories(self, text, category):
        assert classify_subscription_error(RuntimeError(text)) == category


@pytest.mark.unit
class TestResubscription:

    def test_same_set_different_order_does_not_rebuild(self, coordinator, fake_store, make_negotiation, buyer):
        a, b = make_negotiation("A"), make_negotiation("B")
        coordinator.open_session(buyer)

        fake_store.push_negotiations([a, b])
        assert coordinator.message_feed_opens == 1

        fake_store.push_negotiations([b, a])
        assert coordinator.message_feed_opens == 1
        assert len(fake_store.calls_to("subscribe_messages")) == 1

    def test_field_update_does_not_rebuild(self, coordinator, fake_store, make_negotiation, buyer):
        a = make_negotiation("A")
        coordinator.open_session(buyer)
        fake_store.push_negotiations([a])
        fake_store.push_negotiations([a.model_copy(update={"status": NegotiationStatus.COUNTER_BY_FARMER})])
        assert coordinator.message_feed_opens == 1

    def test_new_id_rebuilds_and_closes_old_feed(self, coordinator, fake_store, make_negotiation, buyer):
        a, b, c = make_negotiation("A"), make_negotiation("B"), make_negotiation("C")
        coordinator.open_session(buyer)

        fake_store.push_negotiations([a, b])
        fake_store.push_negotiations([a, b, c])

        assert coordinator.message_feed_opens == 2
        assert coordinator.message_scope == frozenset({"A", "B", "C"})
        assert len(fake_store.active_message_subscriptions) == 1
        assert fake_store.message_subscriptions[0].active is False

    def test_empty_scope_clears_messages_without_feed(self, coordinator, fake_store, state_store, make_negotiation, buyer):
        coordinator.open_session(buyer)
        fake_store.push_negotiations([make_negotiation("A")])
        fake_store.push_messages([_chat("m1", "A")])
        assert len(state_store.state.messages) == 1

        fake_store.push_negotiations([])
        assert state_store.state.messages == ()
        assert fake_store.active_message_subscriptions == []
        assert coordinator.message_scope == frozenset()

    def test_feed_is_scoped_by_role(self, coordinator, fake_store, farmer):
        coordinator.open_session(farmer)
        call = fake_store.calls_to("subscribe_negotiations")[0]
        assert call["user_id"] == farmer.uid
        assert call["role"] == UserRole.FARMER


@pytest.mark.unit
class TestTeardown:

    def test_closed_feed_drops_late_snapshots(self, coordinator, fake_store, state_store, make_negotiation, buyer):
        coordinator.open_session(buyer)
        fake_store.push_negotiations([make_negotiation("A")])
        stale_negotiations = fake_store.negotiation_subscriptions[0]
        stale_messages = fake_store.message_subscriptions[0]

        coordinator.close_session()
        stale_negotiations.on_data([make_negotiation("B")])
        stale_messages.on_data([_chat("m1", "A")])

        assert state_store.state.negotiation_ids == ["A"]
        assert state_store.state.messages == ()
        assert fake_store.active_negotiation_subscriptions == []
        assert coordinator.message_scope is None

    def test_reopen_closes_previous_session(self, coordinator, fake_store, buyer, farmer):
        coordinator.open_session(buyer)
        coordinator.open_session(farmer)
        assert len(fake_store.active_negotiation_subscriptions) == 1
        assert fake_store.active_negotiation_subscriptions[0].scope == (farmer.uid, UserRole.FARMER)

    def test_feed_handle_close_is_idempotent(self):
        calls = []
        handle = FeedHandle("messages")
        handle.attach(lambda: calls.append(1))
        handle.close()
        handle.close()
        assert calls == [1]
        assert handle.active is False


@pytest.mark.unit
class TestErrors:

    def test_error_is_classified_and_surfaced(self, coordinator, fake_store, state_store, errors, make_negotiation, buyer):
        coordinator.open_session(buyer)
        fake_store.push_negotiations([make_negotiation("A")])
        fake_store.push_error("messages", RuntimeError("The query requires an index"))

        [error] = errors
        assert error.code == "INDEX_REQUIRED"
        assert error.feed == "messages"
        assert state_store.state.sync_error == error.message

    def test_error_does_not_close_feed(self, coordinator, fake_store, state_store, make_negotiation, buyer):
        coordinator.open_session(buyer)
        fake_store.push_error("negotiations", RuntimeError("Missing or insufficient permissions"))
        assert coordinator.is_open

        fake_store.push_negotiations([make_negotiation("A")])
        assert state_store.state.negotiation_ids == ["A"]
        assert state_store.state.sync_error is None

    def test_one_error_reported_per_feed(self, coordinator, fake_store, errors, buyer):
        coordinator.open_session(buyer)
        fake_store.push_error("negotiations", RuntimeError("permission denied"))
        fake_store.push_error("negotiations", RuntimeError("permission denied"))
        assert len(errors) == 1
        assert errors[0].code == "PERMISSION_DENIED"

    def test_generic_error(self, coordinator, fake_store, errors, buyer):
        coordinator.open_session(buyer)
        fake_store.push_error("negotiations", RuntimeError("deadline exceeded"))
        assert errors[0].code == "SYNC_ERROR"
        assert errors[0].category == "sync"
