from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from loyalty_shared.config import load_config
from loyalty_shared.db import dispose_engine, get_session, init_db, init_engine
from loyalty_shared.models import Base, Customer, CustomerAddress, MenuItem, Rider
from loyalty_shared.services import wallet_service

RESTAURANT_ID = 1
OTHER_RESTAURANT_ID = 2
BRANCH_ID = 10
STAFF_ID = 501

# Fixed checkout instant used by most tests
NOW = datetime(2026, 2, 18, 12, 0, 0)
SEEDED_AT = NOW - timedelta(hours=1)


@pytest.fixture(autouse=True)
def database(tmp_path, monkeypatch):
    """Fresh SQLite database file per test."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'loyalty.db'}")
    dispose_engine()
    init_engine(load_config("loyalty-tests"))
    init_db(Base.metadata)
    yield
    dispose_engine()


@pytest.fixture
def make_customer():
    """Create a customer; a starting balance is funded through a ledger top-up."""

    def _make(balance=0, restaurant_id: int = RESTAURANT_ID, name: str = "Layla") -> int:
        with get_session() as session:
            customer = Customer(
                restaurant_id=restaurant_id,
                name=name,
                wallet_balance=Decimal("0"),
                wallet_version=0,
            )
            session.add(customer)
            session.flush()
            customer_id = customer.id
        if balance:
            wallet_service.top_up(customer_id, balance, staff_id=STAFF_ID, now=SEEDED_AT)
        return customer_id

    return _make


@pytest.fixture
def make_menu_item():
    def _make(
        price=50,
        *,
        name: str = "Chicken Shawarma",
        pricing_type: str = "price_only",
        points_price: int = 0,
        points_discount_percent: int = 0,
        is_available: bool = True,
        restaurant_id: int = RESTAURANT_ID,
    ) -> int:
        with get_session() as session:
            item = MenuItem(
                restaurant_id=restaurant_id,
                name=name,
                price=Decimal(str(price)),
                pricing_type=pricing_type,
                points_price=points_price,
                points_discount_percent=points_discount_percent,
                is_available=is_available,
            )
            session.add(item)
            session.flush()
            return item.id

    return _make


@pytest.fixture
def make_address():
    def _make(customer_id: int, city: str = "Dubai") -> int:
        with get_session() as session:
            address = CustomerAddress(
                restaurant_id=RESTAURANT_ID,
                customer_id=customer_id,
                label="Home",
                address_line1="12 Marina Walk",
                city=city,
                building="Tower B",
            )
            session.add(address)
            session.flush()
            return address.id

    return _make


@pytest.fixture
def make_rider():
    def _make(name: str = "Omar", is_active: bool = True, restaurant_id: int = RESTAURANT_ID) -> int:
        with get_session() as session:
            rider = Rider(
                restaurant_id=restaurant_id,
                branch_id=BRANCH_ID,
                name=name,
                phone="+971500000000",
                is_active=is_active,
            )
            session.add(rider)
            session.flush()
            return rider.id

    return _make
