"""
Pytest configuration and shared fixtures for backend tests.

WHAT: Centralized test configuration with markers and shared fixtures
WHY: Enable test organization, filtering, and shared test utilities
HOW: Define pytest markers, point settings at an in-memory database, and
     build stores, users and negotiations for tests
"""

import os

# Settings are read at import time; keep tests off the real database and gateway
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["PAYMENT_API_KEY"] = ""
os.environ.setdefault("LOG_FILE", "./test_logs/app.log")

import pytest
from datetime import datetime, timedelta, timezone

from bazaar.core.database import build_engine, build_session_factory, close_db, init_db
from bazaar.models.negotiation import (
    Negotiation, NegotiationStatus, PriceBand, Product, User, UserRole
)
from bazaar.services.payment_gateway import reset_payment_gateway
from bazaar.services.session_state import StateStore
from bazaar.store.sql_store import SqlRemoteStore
from tests.fixtures.fake_store import FakeRemoteStore


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (isolated component tests)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (multiple components)"
    )
    config.addinivalue_line(
        "markers", "api: FastAPI endpoint tests"
    )


@pytest.fixture(autouse=True)
def reset_gateway_singleton():
    """
    Reset the payment gateway singleton before each test.

    WHAT: Clear gateway cache between tests
    WHY: Prevent test pollution through a cached httpx client or API key
    """
    reset_payment_gateway()
    yield
    reset_payment_gateway()


@pytest.fixture
def db_engine():
    """Fresh in-memory SQLite database with all tables."""
    engine = build_engine("sqlite://")
    init_db(engine)
    yield engine
    close_db(engine)


@pytest.fixture
def sql_store(db_engine):
    return SqlRemoteStore(build_session_factory(db_engine))


@pytest.fixture
def fake_store():
    return FakeRemoteStore()


@pytest.fixture
def state_store():
    return StateStore()


@pytest.fixture
def buyer():
    return User(uid="buyer-1", name="Asha Traders", role=UserRole.BUYER, email="asha@example.com")


@pytest.fixture
def farmer():
    return User(uid="farmer-1", name="Ravi", role=UserRole.FARMER)


@pytest.fixture
def product(farmer):
    return Product(
        id="prod-onion",
        name="Red Onion",
        price=50.0,
        quantity=2000,
        farmer_id=farmer.uid,
        is_verified=True,
        price_band=PriceBand(floor_price=40.0, target_price=55.0, price_source="district-mandi", is_verified=True),
    )


@pytest.fixture
def make_negotiation(buyer, farmer):
    """Factory for negotiations between the default buyer and farmer."""
    base_time = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def _make(
        negotiation_id: str = "neg-1",
        status: NegotiationStatus = NegotiationStatus.PENDING,
        offered_price: float = 50.0,
        counter_price: float | None = None,
        minutes: int = 0,
        **overrides,
    ) -> Negotiation:
        fields = dict(
            id=negotiation_id,
            product_id="prod-onion",
            product_name="Red Onion",
            buyer_id=buyer.uid,
            farmer_id=farmer.uid,
            initial_price=55.0,
            offered_price=offered_price,
            counter_price=counter_price,
            quantity=500,
            status=status,
            last_updated=base_time + timedelta(minutes=minutes),
            floor_price=40.0,
        )
        fields.update(overrides)
        return Negotiation(**fields)

    return _make
