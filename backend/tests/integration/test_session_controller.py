"""
Integration tests for the session orchestrator.

WHAT: Test the session boundary, gates and checkout gating end to end
WHY: Cross-cutting gates must fire at the triggering action and a role
     switch must never leak the previous session's state
HOW: SessionController wired to FakeRemoteStore and an unconfigured gateway
"""

import asyncio

import pytest

from bazaar.core.session_controller import SessionController
from bazaar.models.message import ChatMessage
from bazaar.models.negotiation import BuyerOffer, NegotiationStatus, Product, UserRole
from bazaar.models.payment import CheckoutSessionResult, PaymentSessionStatus, VerifyPaymentResult
from bazaar.services.payment_gateway import PaymentGateway
from bazaar.utils.exceptions import KycRequiredError, NotFoundError, RemoteWriteError, ValidationError


class RecordingGateway(PaymentGateway):
    """Gateway double that records handoffs instead of calling the network."""

    def __init__(self, verified: bool = True):
        super().__init__(api_key="")
        self.checkouts = []
        self.verified = verified

    async def create_checkout_session(self, items, total_amount, buyer=None, **kwargs):
        self.checkouts.append((items, total_amount, buyer))
        return CheckoutSessionResult(success=True, session_id="cks_1", checkout_url="https://checkout.test/1")

    async def verify_payment(self, session_id):
        status = PaymentSessionStatus.COMPLETED if self.verified else PaymentSessionStatus.PENDING
        return VerifyPaymentResult(verified=self.verified, status=status)


@pytest.fixture
def gateway():
    return RecordingGateway()


@pytest.fixture
def controller(fake_store, gateway):
    return SessionController(fake_store, gateway=gateway)


def _product(product_id: str, price: float) -> Product:
    return Product(id=product_id, name=product_id.title(), price=price, farmer_id="farmer-1")


@pytest.mark.integration
class TestSessionBoundary:

    @pytest.mark.asyncio
    async def test_sign_in_opens_user_scoped_feed(self, controller, fake_store, buyer, make_negotiation):
        await controller.sign_in(buyer)
        fake_store.push_negotiations([make_negotiation("A"), make_negotiation("B")])

        view = controller.view()
        assert view.user == buyer
        assert {n.id for n in view.negotiations} == {"A", "B"}
        assert fake_store.active_message_subscriptions[0].scope == frozenset({"A", "B"})

    @pytest.mark.asyncio
    async def test_role_switch_clears_state_and_resubscribes(self, controller, fake_store, buyer, make_negotiation):
        await controller.sign_in(buyer)
        fake_store.push_negotiations([make_negotiation("A")])
        controller.add_to_cart(_product("rice", 60.0), 2)
        controller.toggle_wishlist("rice")
        old_feed = fake_store.active_negotiation_subscriptions[0]

        switched = await controller.switch_role(UserRole.FARMER)

        state = controller.state.state
        assert switched.role == UserRole.FARMER
        assert state.user.role == UserRole.FARMER
        assert state.negotiations == ()
        assert state.messages == ()
        assert state.cart == ()
        assert state.wishlist == ()
        assert old_feed.active is False
        [new_feed] = fake_store.active_negotiation_subscriptions
        assert new_feed.scope == (buyer.uid, UserRole.FARMER)
        assert fake_store.active_message_subscriptions == []

    @pytest.mark.asyncio
    async def test_failed_role_switch_changes_nothing(self, controller, fake_store, buyer, make_negotiation):
        await controller.sign_in(buyer)
        fake_store.push_negotiations([make_negotiation("A")])
        fake_store.fail("set_user_role", "offline")

        with pytest.raises(RemoteWriteError):
            await controller.switch_role(UserRole.FARMER)

        assert controller.user.role == UserRole.BUYER
        assert controller.state.state.negotiation_ids == ["A"]
        assert len(fake_store.active_negotiation_subscriptions) == 1

    @pytest.mark.asyncio
    async def test_sign_out_tears_down(self, controller, fake_store, buyer, make_negotiation):
        await controller.sign_in(buyer)
        fake_store.push_negotiations([make_negotiation("A")])
        controller.sign_out()

        assert controller.user is None
        assert fake_store.active_negotiation_subscriptions == []
        assert fake_store.active_message_subscriptions == []

        # a stale snapshot for the old session is dropped
        fake_store.negotiation_subscriptions[0].on_data([make_negotiation("B")])
        assert controller.state.state.negotiations == ()

    @pytest.mark.asyncio
    async def test_farmer_kyc_loaded_on_sign_in(self, controller, fake_store, farmer):
        fake_store.kyc_status = "pending"
        await controller.sign_in(farmer)
        assert controller.view().kyc_status == "pending"

    @pytest.mark.asyncio
    async def test_kyc_lookup_failure_reads_as_none(self, controller, fake_store, farmer):
        fake_store.fail("get_kyc_status", "unavailable")
        await controller.sign_in(farmer)
        assert controller.state.state.kyc_status == "none"
        assert controller.coordinator.is_open

    @pytest.mark.asyncio
    async def test_stale_kyc_lookup_is_discarded(self, controller, fake_store, farmer, buyer):
        fake_store.kyc_status = "rejected"
        fake_store.hold_writes()
        farmer_sign_in = asyncio.create_task(controller.sign_in(farmer))
        await asyncio.sleep(0)

        await controller.sign_in(buyer)
        fake_store.release_writes()
        await farmer_sign_in

        assert controller.user == buyer
        assert controller.state.state.kyc_status == "none"
        assert [s.scope[0] for s in fake_store.active_negotiation_subscriptions] == ["buyer-1"]

    @pytest.mark.asyncio
    async def test_sync_errors_reach_callback(self, fake_store, gateway, buyer):
        reported = []
        controller = SessionController(fake_store, gateway=gateway, on_sync_error=reported.append)
        await controller.sign_in(buyer)
        fake_store.push_error("negotiations", RuntimeError("requires an index"))

        assert reported[0].code == "INDEX_REQUIRED"
        assert controller.view().sync_error == reported[0].message


@pytest.mark.integration
class TestNegotiationActions:

    @pytest.mark.asyncio
    async def test_buyer_opens_negotiation(self, controller, fake_store, buyer, product):
        await controller.sign_in(buyer)
        neg = await controller.create_negotiation(product, BuyerOffer(price=48.0, quantity=200))
        assert neg.status == NegotiationStatus.PENDING
        assert neg.buyer_id == buyer.uid

    @pytest.mark.asyncio
    async def test_below_bulk_minimum_changes_nothing(self, controller, fake_store, buyer, product):
        await controller.sign_in(buyer)
        before = controller.state.state

        with pytest.raises(ValidationError):
            await controller.create_negotiation(product, BuyerOffer(price=48.0, quantity=50))

        assert controller.state.state is before
        assert fake_store.calls_to("create_negotiation") == []

    @pytest.mark.asyncio
    async def test_farmer_cannot_open_negotiation(self, controller, fake_store, farmer, product):
        await controller.sign_in(farmer)
        with pytest.raises(ValidationError):
            await controller.create_negotiation(product, BuyerOffer(price=48.0, quantity=200))

    @pytest.mark.asyncio
    async def test_farmer_without_kyc_cannot_counter(self, controller, fake_store, farmer, make_negotiation):
        fake_store.kyc_status = "none"
        await controller.sign_in(farmer)
        fake_store.push_negotiations([make_negotiation("A")])

        with pytest.raises(KycRequiredError):
            await controller.counter("A", 52.0)
        assert fake_store.calls_to("update_negotiation") == []

    @pytest.mark.asyncio
    async def test_farmer_counter_applies_locally(self, controller, fake_store, farmer, make_negotiation):
        await controller.sign_in(farmer)
        fake_store.push_negotiations([make_negotiation("A")])

        updated = await controller.counter("A", 52.0, notes="Fresh harvest")

        assert updated.status == NegotiationStatus.COUNTER_BY_FARMER
        assert controller.state.state.find_negotiation("A").counter_price == 52.0

    @pytest.mark.asyncio
    async def test_failed_counter_leaves_local_state(self, controller, fake_store, buyer, make_negotiation):
        await controller.sign_in(buyer)
        fake_store.push_negotiations([make_negotiation("A")])
        fake_store.fail("update_negotiation")

        with pytest.raises(RemoteWriteError):
            await controller.counter("A", 45.0)
        assert controller.state.state.find_negotiation("A").status == NegotiationStatus.PENDING

    @pytest.mark.asyncio
    async def test_buyer_accepts_farmer_counter(self, controller, fake_store, buyer, make_negotiation):
        await controller.sign_in(buyer)
        fake_store.push_negotiations([
            make_negotiation("A", status=NegotiationStatus.COUNTER_BY_FARMER, offered_price=45.0, counter_price=45.0)
        ])

        result = await controller.respond("A", "Accepted")

        assert result.settlement.final_price == 45.0
        assert controller.state.state.find_negotiation("A").status == NegotiationStatus.ACCEPTED

    @pytest.mark.asyncio
    async def test_unknown_negotiation(self, controller, buyer):
        await controller.sign_in(buyer)
        with pytest.raises(NotFoundError):
            await controller.respond("missing", "Rejected")

    @pytest.mark.asyncio
    async def test_actions_require_sign_in(self, controller):
        with pytest.raises(ValidationError):
            await controller.counter("A", 45.0)


@pytest.mark.integration
class TestChat:

    @pytest.mark.asyncio
    async def test_send_then_echo_leaves_one_message(self, controller, fake_store, buyer, make_negotiation):
        await controller.sign_in(buyer)
        fake_store.push_negotiations([make_negotiation("A")])

        sent = await controller.send_message("A", "Can you deliver Friday?")
        assert sent.status == "sent"

        fake_store.push_messages([ChatMessage(
            id="m1", negotiation_id="A", sender_id=buyer.uid,
            text="Can you deliver Friday?", timestamp=sent.timestamp,
        )])
        [message] = controller.view().messages_by_negotiation["A"]
        assert message.id == "m1"

    @pytest.mark.asyncio
    async def test_older_same_text_does_not_swallow_failed_send(self, controller, fake_store, buyer, make_negotiation):
        await controller.sign_in(buyer)
        fake_store.push_negotiations([make_negotiation("A")])
        fake_store.fail("send_message")
        fake_store.hold_writes()

        sending = asyncio.create_task(controller.send_message("A", "ok"))
        await asyncio.sleep(0)
        old = ChatMessage(
            id="m-old", negotiation_id="A", sender_id=buyer.uid, text="ok",
            timestamp=make_negotiation("A").last_updated,
        )
        fake_store.push_messages([old])
        fake_store.release_writes()
        result = await sending

        assert result.status == "failed"
        statuses = [(m.id, m.status) for m in controller.state.state.messages]
        assert ("m-old", "sent") in statuses
        assert (result.id, "failed") in statuses

    @pytest.mark.asyncio
    async def test_echo_before_write_resolves_leaves_one_message(self, controller, fake_store, buyer, make_negotiation):
        await controller.sign_in(buyer)
        fake_store.push_negotiations([make_negotiation("A")])
        fake_store.hold_writes()

        sending = asyncio.create_task(controller.send_message("A", "Friday works"))
        await asyncio.sleep(0)
        [pending] = controller.state.state.messages
        fake_store.push_messages([ChatMessage(
            id="m1", negotiation_id="A", sender_id=buyer.uid,
            text="Friday works", timestamp=pending.timestamp,
        )])
        assert pending.id in controller.state.state.echoed_provisional_ids
        fake_store.release_writes()
        await sending

        assert [m.id for m in controller.state.state.messages] == ["m1"]

    @pytest.mark.asyncio
    async def test_failed_message_retried(self, controller, fake_store, buyer, make_negotiation):
        await controller.sign_in(buyer)
        fake_store.push_negotiations([make_negotiation("A")])
        fake_store.fail("send_message")
        failed = await controller.send_message("A", "hello")
        fake_store.succeed("send_message")

        assert await controller.retry_message(failed.id) is True
        assert controller.state.state.messages == ()


@pytest.mark.integration
class TestCheckout:

    @pytest.mark.asyncio
    async def test_checkout_unlocks_at_minimum(self, controller, gateway, buyer):
        await controller.sign_in(buyer)
        controller.add_to_cart(_product("tomato", 50.0), 3)

        assert controller.cart_total == 150.0
        assert controller.can_checkout is False
        assert controller.checkout_shortfall == 49.0
        with pytest.raises(ValidationError):
            await controller.checkout()
        assert gateway.checkouts == []

        controller.add_to_cart(_product("chilli", 49.0), 1)
        assert controller.cart_total == 199.0
        assert controller.can_checkout is True

        result = await controller.checkout()
        assert result.success is True
        items, total, buyer_info = gateway.checkouts[0]
        assert total == 199.0
        assert {i.product_id for i in items} == {"tomato", "chilli"}
        assert buyer_info.buyer_id == buyer.uid

    @pytest.mark.asyncio
    async def test_empty_cart_cannot_checkout(self, controller, buyer):
        await controller.sign_in(buyer)
        assert controller.can_checkout is False
        with pytest.raises(ValidationError):
            await controller.checkout()

    @pytest.mark.asyncio
    async def test_completed_payment_clears_cart(self, controller, buyer):
        await controller.sign_in(buyer)
        controller.add_to_cart(_product("rice", 250.0))

        result = await controller.complete_checkout("cks_1")
        assert result.verified is True
        assert controller.state.state.cart == ()

    @pytest.mark.asyncio
    async def test_pending_payment_keeps_cart(self, fake_store, buyer):
        controller = SessionController(fake_store, gateway=RecordingGateway(verified=False))
        await controller.sign_in(buyer)
        controller.add_to_cart(_product("rice", 250.0))

        await controller.complete_checkout("cks_1")
        assert len(controller.state.state.cart) == 1

    @pytest.mark.asyncio
    async def test_cart_quantity_and_wishlist(self, controller, buyer):
        await controller.sign_in(buyer)
        controller.add_to_cart(_product("rice", 60.0))
        controller.update_cart_quantity("rice", 0)
        assert controller.view().cart == ()

        assert controller.toggle_wishlist("rice") is True
        assert controller.toggle_wishlist("rice") is False

        with pytest.raises(ValidationError):
            controller.add_to_cart(_product("rice", 60.0), 0)
