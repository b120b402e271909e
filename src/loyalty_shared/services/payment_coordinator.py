"""
Payment coordinator - checkout as a two-step saga.

Step one commits the order (``pending``/``pending``). Step two debits the
wallet and flags the order paid in a single transaction. When step two fails
the order is not deleted: it is cancelled with ``Payment failed: <reason>``
so the attempt stays visible, and the error is raised to the caller.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from loyalty_shared.constants import PaymentMethod
from loyalty_shared.datetime_utils import as_naive_utc
from loyalty_shared.errors import InsufficientFunds, LoyaltyError, PaymentFailure
from loyalty_shared.logging_config import LoggerAdapter, get_logger
from loyalty_shared.serializers import serialize_order
from loyalty_shared.services import order_service, wallet_service

logger = get_logger(__name__)


def _compensate(order: dict[str, Any], failure: PaymentFailure, now: datetime, log) -> None:
    """Cancel the unpaid order. The caller re-raises ``failure`` either way."""
    reason = f"Payment failed: {failure.message}"
    log.warning("Cancelling order after failed payment: %s", failure.message)
    try:
        order_service.cancel_order(order["id"], reason, now=now)
    except (LoyaltyError, SQLAlchemyError):
        log.exception("Compensating cancellation failed for order %s", order["order_number"])


def create_order(
    *,
    customer_id: int,
    branch_id: int,
    order_type: str,
    items: Iterable[Mapping[str, Any]],
    payment_method: str | PaymentMethod = PaymentMethod.WALLET,
    address_id: int | None = None,
    delivery_address: Mapping[str, Any] | None = None,
    notes: str | None = None,
    estimated_ready_time: int | None = None,
    staff_id: int | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Create an order and, for wallet orders, pay it from the customer's balance.

    Returns:
        The serialized order, ``payment_status=paid`` for settled wallet orders

    Raises:
        InsufficientFunds: The wallet cannot cover the total; the order is left cancelled
        PaymentFailure: The debit failed for another reason; the order is left cancelled
    """
    moment = as_naive_utc(now)
    order = order_service.create_order_record(
        customer_id=customer_id,
        branch_id=branch_id,
        order_type=order_type,
        items=items,
        payment_method=payment_method,
        address_id=address_id,
        delivery_address=delivery_address,
        notes=notes,
        estimated_ready_time=estimated_ready_time,
        now=moment,
    )
    log = LoggerAdapter(
        logger,
        {"order_id": order["id"], "order_number": order["order_number"], "customer_id": customer_id},
    )

    total = Decimal(str(order["total_amount"]))
    if order["payment_method"] != PaymentMethod.WALLET.value or total <= 0:
        return order

    try:
        if not wallet_service.can_afford(customer_id, total):
            raise InsufficientFunds(customer_id=customer_id, requested=float(total))
        with wallet_service.wallet_session(customer_id) as db_session:
            paid = order_service.mark_paid_in_session(
                db_session, order["id"], staff_id=staff_id, now=moment
            )
            result = serialize_order(paid)
    except PaymentFailure as exc:
        _compensate(order, exc, moment, log)
        raise
    except SQLAlchemyError as exc:
        failure = PaymentFailure(f"Wallet debit failed: {exc.__class__.__name__}")
        _compensate(order, failure, moment, log)
        raise failure from exc

    log.info("Order paid from wallet: total=%s", total)
    return result
