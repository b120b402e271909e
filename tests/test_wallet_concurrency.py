from __future__ import annotations

import threading
from decimal import Decimal

import pytest

from loyalty_shared.errors import InsufficientFunds, PaymentFailure
from loyalty_shared.services import wallet_service
from loyalty_shared.services.customer_locks import CustomerLockRegistry


def run_concurrently(count: int, target) -> list:
    barrier = threading.Barrier(count)
    outcomes: list = [None] * count

    def worker(index: int) -> None:
        barrier.wait()
        try:
            outcomes[index] = target(index)
        except Exception as exc:  # collected for assertions
            outcomes[index] = exc

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return outcomes


class TestContention:
    @pytest.mark.parametrize("workers", [2, 8])
    def test_only_one_draining_payment_succeeds(self, make_customer, workers):
        customer_id = make_customer(100)

        outcomes = run_concurrently(
            workers,
            lambda index: wallet_service.apply_transaction(
                customer_id, "payment", -100, reference_type="order", reference_id=index
            ),
        )

        successes = [outcome for outcome in outcomes if isinstance(outcome, int)]
        failures = [outcome for outcome in outcomes if isinstance(outcome, InsufficientFunds)]
        assert len(successes) == 1
        assert len(failures) == workers - 1
        assert wallet_service.get_balance(customer_id) == Decimal("0.00")

        history = wallet_service.get_history(customer_id)
        assert sum(Decimal(str(entry["amount"])) for entry in history) == Decimal("0.00")
        assert all(entry["balance_after"] >= 0 for entry in history)

    def test_concurrent_small_payments_never_overdraw(self, make_customer):
        customer_id = make_customer(50)

        outcomes = run_concurrently(
            10, lambda index: wallet_service.apply_transaction(customer_id, "payment", -10)
        )

        assert sum(isinstance(outcome, int) for outcome in outcomes) == 5
        assert sum(isinstance(outcome, InsufficientFunds) for outcome in outcomes) == 5
        assert wallet_service.get_balance(customer_id) == Decimal("0.00")

    def test_different_customers_are_independent(self, make_customer):
        first = make_customer(30)
        second = make_customer(30)

        outcomes = run_concurrently(
            2,
            lambda index: wallet_service.apply_transaction(
                (first, second)[index], "payment", -30
            ),
        )

        assert all(isinstance(outcome, int) for outcome in outcomes)
        assert wallet_service.get_balance(first) == Decimal("0.00")
        assert wallet_service.get_balance(second) == Decimal("0.00")


class TestCustomerLockRegistry:
    def test_timeout_is_retryable_payment_failure(self):
        registry = CustomerLockRegistry()
        held = threading.Event()
        release = threading.Event()

        def holder():
            with registry.hold(1):
                held.set()
                release.wait(timeout=5)

        thread = threading.Thread(target=holder)
        thread.start()
        held.wait(timeout=5)
        try:
            with pytest.raises(PaymentFailure) as excinfo:
                with registry.hold(1, timeout=0.05):
                    pass
        finally:
            release.set()
            thread.join(timeout=5)

        assert excinfo.value.retryable is True
        assert excinfo.value.http_status == 503

    def test_lock_is_reentrant_and_released(self):
        registry = CustomerLockRegistry()
        with registry.hold(5):
            with registry.hold(5, timeout=0.05):
                assert registry.active_count() == 1
        assert registry.active_count() == 0

    def test_other_customers_do_not_wait(self):
        registry = CustomerLockRegistry()
        with registry.hold(1):
            with registry.hold(2, timeout=0.05):
                assert registry.active_count() == 2
