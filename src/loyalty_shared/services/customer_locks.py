"""
Per-customer mutual exclusion for wallet movements.

All balance-affecting work for one customer runs inside ``customer_lock``;
different customers never wait on each other. The lock is re-entrant so a
flow that already holds it (cancel + refund) can call into the ledger.
The row lock taken with ``SELECT ... FOR UPDATE`` extends the same guarantee
across processes on PostgreSQL.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager

from loyalty_shared.config import PAYMENT_TIMEOUT_SECONDS
from loyalty_shared.errors import PaymentFailure
from loyalty_shared.logging_config import get_logger

logger = get_logger(__name__)


class _LockEntry:
    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.holders = 0


class CustomerLockRegistry:
    """Hands out one re-entrant lock per customer id and forgets it once unused."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[int, _LockEntry] = {}

    @contextmanager
    def hold(self, customer_id: int, timeout: float | None = None) -> Iterator[None]:
        with self._guard:
            entry = self._entries.get(customer_id)
            if entry is None:
                entry = self._entries[customer_id] = _LockEntry()
            entry.holders += 1

        wait = PAYMENT_TIMEOUT_SECONDS if timeout is None else timeout
        acquired = entry.lock.acquire(timeout=wait)
        try:
            if not acquired:
                logger.warning(
                    "Timed out after %.1fs waiting for wallet lock of customer %s",
                    wait,
                    customer_id,
                )
                raise PaymentFailure(
                    "Timed out waiting for the customer wallet; please retry",
                    retryable=True,
                    customer_id=customer_id,
                )
            yield
        finally:
            if acquired:
                entry.lock.release()
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    self._entries.pop(customer_id, None)

    def active_count(self) -> int:
        with self._guard:
            return len(self._entries)


_registry = CustomerLockRegistry()


def customer_lock(customer_id: int, timeout: float | None = None):
    """Context manager serializing wallet movements for ``customer_id``."""
    return _registry.hold(customer_id, timeout=timeout)
