"""
Demo script to run a buyer/farmer negotiation against the reference store.

WHAT: Terminal walk-through of offer, counter, chat and acceptance
WHY: Visual verification of live sync, reconciliation and settlement
HOW: Two SessionControllers share one SqlRemoteStore; each state change is
     printed as it is dispatched
"""

import asyncio
import sys
from pathlib import Path

# Add backend to path if running directly
sys.path.insert(0, str(Path(__file__).parent))

from bazaar.core.database import init_db
from bazaar.core.session_controller import SessionController
from bazaar.models.negotiation import BuyerOffer, PriceBand, Product, User, UserRole
from bazaar.services.payment_gateway import PaymentGateway
from bazaar.store.sql_store import SqlRemoteStore
from bazaar.utils.logger import setup_logging, get_logger

setup_logging()
logger = get_logger(__name__)


def print_banner(text: str, char: str = "="):
    """Print a formatted banner."""
    width = 80
    print(f"\n{char * width}\n{text.center(width)}\n{char * width}\n")


def watch(label: str, controller: SessionController):
    """Print every state change the controller's store produces."""
    def on_change(state, event):
        print(f"[{label}] {type(event).__name__}: "
              f"{len(state.negotiations)} negotiations, {len(state.messages)} messages")
    controller.state.subscribe(on_change)


async def settle():
    for _ in range(10):
        await asyncio.sleep(0)


async def main():
    init_db()
    store = SqlRemoteStore()

    buyer = User(uid="demo-buyer", name="Asha Traders", role=UserRole.BUYER, email="asha@example.com")
    farmer = User(uid="demo-farmer", name="Ravi", role=UserRole.FARMER)
    store.upsert_user(buyer)
    store.upsert_user(farmer)
    store.set_kyc_status(farmer.uid, "approved")

    onion = Product(
        id="demo-onion",
        name="Red Onion",
        price=32.0,
        quantity=5000,
        farmer_id=farmer.uid,
        is_verified=True,
        price_band=PriceBand(floor_price=26.0, target_price=31.0, price_source="district-mandi", is_verified=True),
    )

    gateway = PaymentGateway()
    buyer_session = SessionController(store, gateway=gateway)
    farmer_session = SessionController(store, gateway=gateway)
    watch("buyer", buyer_session)
    watch("farmer", farmer_session)

    print_banner("SIGN IN")
    await buyer_session.sign_in(buyer)
    await farmer_session.sign_in(farmer)
    await settle()

    print_banner("BUYER OFFER")
    negotiation = await buyer_session.create_negotiation(onion, BuyerOffer(price=28.0, quantity=500))
    await settle()
    print(f"Opened {negotiation.id}: 500kg at 28.0/kg (listed {onion.price}/kg)")

    print_banner("FARMER COUNTER")
    await farmer_session.counter(negotiation.id, 30.0, notes="Fresh harvest, sorted")
    await settle()

    print_banner("CHAT")
    await buyer_session.send_message(negotiation.id, "30 is fine if you can deliver by Friday")
    await farmer_session.send_message(negotiation.id, "Friday works")
    await settle()
    for message in buyer_session.view().messages_by_negotiation.get(negotiation.id, []):
        print(f"  {message.sender_id}: {message.text} ({message.status})")

    print_banner("ACCEPT")
    result = await buyer_session.respond(negotiation.id, "Accepted")
    await settle()
    print(f"Final price: {result.settlement.final_price}/kg, amount {result.settlement.amount:.2f}")
    print(f"Farmer wallet balance: {store.get_wallet_balance(farmer.uid):.2f}")

    buyer_session.sign_out()
    farmer_session.sign_out()
    await gateway.aclose()


if __name__ == "__main__":
    asyncio.run(main())
