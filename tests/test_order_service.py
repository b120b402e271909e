from __future__ import annotations

import threading
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from loyalty_shared.errors import (
    InvalidTransition,
    MessagingUnavailable,
    NotFound,
    PaymentFailure,
    ReferentialFailure,
    ValidationError,
)
from loyalty_shared.services import (
    customer_locks,
    order_service,
    payment_coordinator,
    wallet_service,
)

NOW = datetime(2026, 2, 18, 12, 0, 0)
BRANCH_ID = 10


def create_pickup(customer_id: int, item_id: int, **kwargs) -> dict:
    params = {
        "customer_id": customer_id,
        "branch_id": BRANCH_ID,
        "order_type": "pickup",
        "items": [{"item_id": item_id, "quantity": 1}],
        "payment_method": "card",
        "now": NOW,
    }
    params.update(kwargs)
    return order_service.create_order_record(**params)


def advance_to_ready(order_id: int) -> dict:
    order_service.accept_order(order_id, now=NOW + timedelta(minutes=1))
    order_service.mark_preparing(order_id, now=NOW + timedelta(minutes=2))
    return order_service.mark_ready(order_id, now=NOW + timedelta(minutes=20))


class TestCreateOrderRecord:
    def test_inserts_pending_order_with_snapshot(self, make_customer, make_menu_item):
        customer_id = make_customer()
        item_id = make_menu_item(24, name="Falafel Wrap")

        order = create_pickup(customer_id, item_id, items=[{"item_id": item_id, "quantity": 2}])

        assert order["status"] == "pending"
        assert order["payment_status"] == "pending"
        assert order["subtotal"] == 48.0
        assert order["total_amount"] == 48.0
        assert order["items"] == [
            {
                "item_id": item_id,
                "name": "Falafel Wrap",
                "pricing_type": "price_only",
                "unit_price": 24.0,
                "points_used": 0,
                "quantity": 2,
            }
        ]
        assert order["delivery_address"] is None
        assert order["estimated_ready_time"] == 20

    def test_order_numbers_are_sequential_per_day(self, make_customer, make_menu_item):
        customer_id = make_customer()
        item_id = make_menu_item()

        first = create_pickup(customer_id, item_id)
        second = create_pickup(customer_id, item_id)
        next_day = create_pickup(customer_id, item_id, now=NOW + timedelta(days=1))

        assert first["order_number"] == "ORD-20260218-0001"
        assert second["order_number"] == "ORD-20260218-0002"
        assert next_day["order_number"] == "ORD-20260219-0001"

    def test_order_numbers_are_unique_across_restaurants(self, make_customer, make_menu_item):
        first_customer = make_customer(restaurant_id=1)
        second_customer = make_customer(restaurant_id=2)
        first_item = make_menu_item(restaurant_id=1)
        second_item = make_menu_item(restaurant_id=2)

        first = create_pickup(first_customer, first_item)
        second = create_pickup(second_customer, second_item)

        assert first["order_number"] == "ORD-20260218-0001"
        assert second["order_number"] == "ORD-20260218-0002"

    def test_order_number_column_is_unique(self, make_customer, make_menu_item):
        from sqlalchemy.exc import IntegrityError

        from loyalty_shared.db import get_session
        from loyalty_shared.models import Order

        first = create_pickup(make_customer(restaurant_id=1), make_menu_item(restaurant_id=1))
        second = create_pickup(make_customer(restaurant_id=2), make_menu_item(restaurant_id=2))

        with pytest.raises(IntegrityError):
            with get_session() as session:
                session.get(Order, second["id"]).order_number = first["order_number"]

    def test_snapshot_is_not_affected_by_later_catalog_edits(self, make_customer, make_menu_item):
        from loyalty_shared.db import get_session
        from loyalty_shared.models import MenuItem

        customer_id = make_customer()
        item_id = make_menu_item(30)
        order = create_pickup(customer_id, item_id)

        with get_session() as session:
            session.get(MenuItem, item_id).price = Decimal("99")

        assert order_service.get_order(order["id"])["items"][0]["unit_price"] == 30.0

    def test_hybrid_and_points_pricing(self, make_customer, make_menu_item):
        customer_id = make_customer()
        hybrid = make_menu_item(
            20, pricing_type="hybrid", points_price=150, points_discount_percent=25
        )
        points_only = make_menu_item(0, pricing_type="points_only", points_price=300)

        order = create_pickup(
            customer_id,
            hybrid,
            items=[
                {"item_id": hybrid, "quantity": 2, "use_points": True},
                {"item_id": hybrid, "quantity": 1},
                {"item_id": points_only, "quantity": 1},
            ],
        )

        unit_prices = [line["unit_price"] for line in order["items"]]
        assert unit_prices == [15.0, 20.0, 0.0]
        assert order["total_amount"] == 50.0
        assert order["total_points_used"] == 600

    def test_unavailable_or_foreign_items_are_rejected(self, make_customer, make_menu_item):
        customer_id = make_customer()
        unavailable = make_menu_item(is_available=False)
        foreign = make_menu_item(restaurant_id=2)

        with pytest.raises(ReferentialFailure):
            create_pickup(customer_id, unavailable)
        with pytest.raises(ReferentialFailure):
            create_pickup(customer_id, foreign)
        with pytest.raises(ReferentialFailure):
            create_pickup(customer_id, 9999)

    def test_input_validation(self, make_customer, make_menu_item):
        customer_id = make_customer()
        item_id = make_menu_item()

        with pytest.raises(ValidationError):
            create_pickup(customer_id, item_id, items=[])
        with pytest.raises(ValidationError):
            create_pickup(customer_id, item_id, items=[{"item_id": item_id, "quantity": 0}])
        with pytest.raises(ValidationError):
            create_pickup(customer_id, item_id, order_type="dine_in")
        with pytest.raises(NotFound):
            create_pickup(404, item_id)

    def test_delivery_snapshots_customer_address(self, make_customer, make_menu_item, make_address):
        customer_id = make_customer()
        item_id = make_menu_item()
        address_id = make_address(customer_id)

        order = create_pickup(customer_id, item_id, order_type="delivery", address_id=address_id)

        assert order["address_id"] == address_id
        assert order["delivery_address"]["address_line1"] == "12 Marina Walk"
        assert order["delivery_address"]["city"] == "Dubai"

    def test_delivery_requires_own_address(self, make_customer, make_menu_item, make_address):
        customer_id = make_customer()
        other_customer = make_customer(name="Sam")
        item_id = make_menu_item()
        foreign_address = make_address(other_customer)

        with pytest.raises(ReferentialFailure):
            create_pickup(customer_id, item_id, order_type="delivery")
        with pytest.raises(ReferentialFailure):
            create_pickup(customer_id, item_id, order_type="delivery", address_id=foreign_address)

    def test_delivery_accepts_explicit_address(self, make_customer, make_menu_item):
        customer_id = make_customer()
        item_id = make_menu_item()

        order = create_pickup(
            customer_id,
            item_id,
            order_type="delivery",
            delivery_address={"address_line1": "Villa 3", "city": "Sharjah"},
        )
        assert order["address_id"] is None
        assert order["delivery_address"] == {"address_line1": "Villa 3", "city": "Sharjah"}


class TestLifecycle:
    def test_pickup_flow_writes_timestamps_and_history(self, make_customer, make_menu_item):
        customer_id = make_customer()
        order = create_pickup(customer_id, make_menu_item())

        accepted = order_service.accept_order(
            order["id"], estimated_ready_time=35, now=NOW + timedelta(minutes=1)
        )
        assert accepted["status"] == "accepted"
        assert accepted["estimated_ready_time"] == 35
        assert accepted["accepted_at"] == (NOW + timedelta(minutes=1)).isoformat()

        advance = order_service.mark_preparing(order["id"], now=NOW + timedelta(minutes=2))
        assert advance["preparing_at"] is not None
        order_service.mark_ready(order["id"], now=NOW + timedelta(minutes=3))
        completed = order_service.mark_completed(order["id"], now=NOW + timedelta(minutes=4))
        assert completed["status"] == "completed"
        assert completed["completed_at"] == (NOW + timedelta(minutes=4)).isoformat()

        history = order_service.get_order(order["id"])["history"]
        assert [entry["status"] for entry in history] == [
            "pending",
            "accepted",
            "preparing",
            "ready",
            "completed",
        ]

    def test_out_of_order_transition_is_rejected(self, make_customer, make_menu_item):
        customer_id = make_customer()
        order = create_pickup(customer_id, make_menu_item())

        with pytest.raises(InvalidTransition):
            order_service.mark_ready(order["id"])
        assert order_service.get_order(order["id"])["status"] == "pending"

    def test_completed_order_cannot_be_cancelled(self, make_customer, make_menu_item):
        customer_id = make_customer()
        order = create_pickup(customer_id, make_menu_item())
        advance_to_ready(order["id"])
        order_service.mark_completed(order["id"])

        with pytest.raises(InvalidTransition):
            order_service.cancel_order(order["id"], "Too late")

    def test_accept_rejects_bad_estimate(self, make_customer, make_menu_item):
        order = create_pickup(make_customer(), make_menu_item())
        with pytest.raises(ValidationError):
            order_service.accept_order(order["id"], estimated_ready_time=0)

    def test_unknown_order(self):
        with pytest.raises(NotFound):
            order_service.accept_order(404)


class TestRiders:
    def delivery_order(self, make_customer, make_menu_item, make_address) -> dict:
        customer_id = make_customer()
        return create_pickup(
            customer_id,
            make_menu_item(),
            order_type="delivery",
            address_id=make_address(customer_id),
        )

    def test_assign_rider_before_ready_is_invalid(
        self, make_customer, make_menu_item, make_address, make_rider
    ):
        order = self.delivery_order(make_customer, make_menu_item, make_address)
        order_service.accept_order(order["id"])
        order_service.mark_preparing(order["id"])

        with pytest.raises(InvalidTransition):
            order_service.assign_rider(order["id"], make_rider())
        assert order_service.get_order(order["id"])["rider_id"] is None

    def test_assign_rider_does_not_advance_status(
        self, make_customer, make_menu_item, make_address, make_rider
    ):
        order = self.delivery_order(make_customer, make_menu_item, make_address)
        advance_to_ready(order["id"])
        rider_id = make_rider()

        assigned = order_service.assign_rider(order["id"], rider_id, now=NOW + timedelta(minutes=21))
        assert assigned["status"] == "ready"
        assert assigned["rider_id"] == rider_id
        assert assigned["rider_assigned_at"] == (NOW + timedelta(minutes=21)).isoformat()

        with pytest.raises(InvalidTransition):
            order_service.assign_rider(order["id"], make_rider(name="Karim"))

    def test_assign_rider_rejects_pickup_orders(self, make_customer, make_menu_item, make_rider):
        order = create_pickup(make_customer(), make_menu_item())
        advance_to_ready(order["id"])
        with pytest.raises(InvalidTransition):
            order_service.assign_rider(order["id"], make_rider())

    def test_dispatch_assigns_and_advances(
        self, make_customer, make_menu_item, make_address, make_rider
    ):
        order = self.delivery_order(make_customer, make_menu_item, make_address)
        advance_to_ready(order["id"])
        rider_id = make_rider()

        dispatched = order_service.dispatch_order(
            order["id"], rider_id, now=NOW + timedelta(minutes=25)
        )

        assert dispatched["status"] == "out_for_delivery"
        assert dispatched["rider_id"] == rider_id
        assert dispatched["rider_assigned_at"] == dispatched["out_for_delivery_at"]
        assert order_service.mark_completed(order["id"])["status"] == "completed"

    def test_dispatch_after_assign_requires_same_rider(
        self, make_customer, make_menu_item, make_address, make_rider
    ):
        order = self.delivery_order(make_customer, make_menu_item, make_address)
        advance_to_ready(order["id"])
        rider_id = make_rider()
        order_service.assign_rider(order["id"], rider_id)

        with pytest.raises(InvalidTransition):
            order_service.dispatch_order(order["id"], make_rider(name="Karim"))
        assert order_service.mark_on_the_way(order["id"], rider_id)["status"] == "out_for_delivery"

    def test_dispatch_requires_active_rider(
        self, make_customer, make_menu_item, make_address, make_rider
    ):
        order = self.delivery_order(make_customer, make_menu_item, make_address)
        advance_to_ready(order["id"])

        with pytest.raises(ReferentialFailure):
            order_service.dispatch_order(order["id"], make_rider(is_active=False))
        with pytest.raises(ReferentialFailure):
            order_service.dispatch_order(order["id"], 9999)
        assert order_service.get_order(order["id"])["status"] == "ready"

    def test_dispatch_pickup_order_is_invalid(self, make_customer, make_menu_item, make_rider):
        order = create_pickup(make_customer(), make_menu_item())
        advance_to_ready(order["id"])
        with pytest.raises(InvalidTransition):
            order_service.dispatch_order(order["id"], make_rider())

    def test_busy_rider_is_logged(
        self, make_customer, make_menu_item, make_address, make_rider, caplog
    ):
        rider_id = make_rider()
        first = self.delivery_order(make_customer, make_menu_item, make_address)
        second = self.delivery_order(make_customer, make_menu_item, make_address)
        advance_to_ready(first["id"])
        advance_to_ready(second["id"])
        order_service.dispatch_order(first["id"], rider_id)

        with caplog.at_level("WARNING", logger="loyalty_shared.services.order_service"):
            order_service.dispatch_order(second["id"], rider_id)

        assert any("still on order" in record.getMessage() for record in caplog.records)


class TestCancelOrder:
    def test_cancel_unpaid_order(self, make_customer, make_menu_item):
        customer_id = make_customer()
        order = create_pickup(customer_id, make_menu_item())

        cancelled = order_service.cancel_order(order["id"], "Customer changed mind", now=NOW)

        assert cancelled["status"] == "cancelled"
        assert cancelled["cancellation_reason"] == "Customer changed mind"
        assert cancelled["cancelled_at"] == NOW.isoformat()
        assert cancelled["payment_status"] == "pending"
        assert wallet_service.get_history(customer_id) == []

    def test_cancel_paid_order_refunds(self, make_customer, make_menu_item):
        customer_id = make_customer(100)
        item_id = make_menu_item(50)
        order = payment_coordinator.create_order(
            customer_id=customer_id,
            branch_id=BRANCH_ID,
            order_type="pickup",
            items=[{"item_id": item_id, "quantity": 1}],
            now=NOW,
        )
        assert order["payment_status"] == "paid"

        cancelled = order_service.cancel_order(
            order["id"], "Kitchen closed", staff_id=9, now=NOW + timedelta(minutes=30)
        )

        assert cancelled["status"] == "cancelled"
        assert cancelled["payment_status"] == "refunded"
        refund = wallet_service.get_history(customer_id)[0]
        assert refund["type"] == "refund"
        assert refund["amount"] == 50.0
        assert refund["reference_type"] == "order"
        assert refund["reference_id"] == str(order["id"])
        assert refund["staff_id"] == 9
        assert wallet_service.get_balance(customer_id) == Decimal("100.00")

    def test_refund_failure_leaves_order_unchanged(self, make_customer, make_menu_item, monkeypatch):
        customer_id = make_customer(100)
        item_id = make_menu_item(50)
        order = payment_coordinator.create_order(
            customer_id=customer_id,
            branch_id=BRANCH_ID,
            order_type="pickup",
            items=[{"item_id": item_id, "quantity": 1}],
            now=NOW,
        )

        def failing_refund(*args, **kwargs):
            raise PaymentFailure("Ledger unavailable", retryable=True)

        monkeypatch.setattr(order_service, "apply_transaction_in_session", failing_refund)

        with pytest.raises(PaymentFailure):
            order_service.cancel_order(order["id"], "Kitchen closed")

        unchanged = order_service.get_order(order["id"])
        assert unchanged["status"] == "pending"
        assert unchanged["payment_status"] == "paid"
        assert wallet_service.get_balance(customer_id) == Decimal("50.00")

    def test_unpaid_cancel_does_not_wait_for_wallet(self, make_customer, make_menu_item, monkeypatch):
        customer_id = make_customer()
        order = create_pickup(customer_id, make_menu_item())
        monkeypatch.setattr(customer_locks, "PAYMENT_TIMEOUT_SECONDS", 0.2)
        holding = threading.Event()
        release = threading.Event()

        def hold() -> None:
            with customer_locks.customer_lock(customer_id):
                holding.set()
                release.wait(timeout=10)

        thread = threading.Thread(target=hold)
        thread.start()
        assert holding.wait(timeout=5)
        try:
            cancelled = order_service.cancel_order(order["id"], "Customer left", now=NOW)
        finally:
            release.set()
            thread.join(timeout=10)

        assert cancelled["status"] == "cancelled"
        assert cancelled["cancellation_reason"] == "Customer left"

    def test_cancelling_twice_is_rejected(self, make_customer, make_menu_item):
        order = create_pickup(make_customer(), make_menu_item())
        order_service.cancel_order(order["id"])
        with pytest.raises(InvalidTransition):
            order_service.cancel_order(order["id"])


class TestMessaging:
    def test_message_window(self, make_customer, make_menu_item):
        customer_id = make_customer()
        order = create_pickup(customer_id, make_menu_item())

        with pytest.raises(MessagingUnavailable):
            order_service.send_message(
                order["id"], "customer", customer_id, "Where is my food?", now=NOW + timedelta(minutes=5)
            )

        message = order_service.send_message(
            order["id"], "customer", customer_id, "  Where is my food?  ", now=NOW + timedelta(minutes=11)
        )
        assert message["message"] == "Where is my food?"

        order_service.send_message(
            order["id"], "staff", 7, "Almost ready", now=NOW + timedelta(minutes=12)
        )
        messages = order_service.get_order_messages(order["id"])
        assert [entry["sender_type"] for entry in messages] == ["customer", "staff"]

    def test_messaging_closes_once_ready(self, make_customer, make_menu_item):
        customer_id = make_customer()
        order = create_pickup(customer_id, make_menu_item())
        advance_to_ready(order["id"])

        with pytest.raises(MessagingUnavailable):
            order_service.send_message(
                order["id"], "customer", customer_id, "Hello", now=NOW + timedelta(hours=1)
            )

    def test_customer_can_only_message_own_order(self, make_customer, make_menu_item):
        order = create_pickup(make_customer(), make_menu_item())
        stranger = make_customer(name="Stranger")
        with pytest.raises(ValidationError):
            order_service.send_message(
                order["id"], "customer", stranger, "Hi", now=NOW + timedelta(minutes=15)
            )


class TestListOrders:
    def test_filters_and_newest_first(self, make_customer, make_menu_item):
        customer_id = make_customer()
        other_customer = make_customer(name="Noor")
        item_id = make_menu_item()
        first = create_pickup(customer_id, item_id, now=NOW)
        second = create_pickup(customer_id, item_id, now=NOW + timedelta(minutes=5))
        create_pickup(other_customer, item_id, now=NOW + timedelta(minutes=10))
        order_service.cancel_order(first["id"])

        mine = order_service.list_orders(1, customer_id=customer_id)
        assert [order["id"] for order in mine["orders"]] == [second["id"], first["id"]]
        assert mine["total"] == 2

        cancelled = order_service.list_orders(1, status="cancelled")
        assert [order["id"] for order in cancelled["orders"]] == [first["id"]]

        paged = order_service.list_orders(1, page=2, limit=2)
        assert paged["total"] == 3
        assert paged["total_pages"] == 2
        assert len(paged["orders"]) == 1
