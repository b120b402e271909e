"""
Order fulfillment service.

Drives orders through the lifecycle defined in ``order_state_machine``. Each
public operation runs in its own transaction, locks the order row it changes
and returns the serialized order.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from loyalty_shared.config import DEFAULT_ESTIMATED_READY_MINUTES
from loyalty_shared.constants import (
    OrderStatus,
    OrderType,
    PaymentMethod,
    PaymentStatus,
    ReferenceType,
    SenderType,
    TransactionType,
)
from loyalty_shared.datetime_utils import as_naive_utc
from loyalty_shared.db import get_session
from loyalty_shared.errors import (
    InvalidTransition,
    MessagingUnavailable,
    NotFound,
    ReferentialFailure,
    ValidationError,
)
from loyalty_shared.logging_config import get_logger
from loyalty_shared.models import Customer, CustomerAddress, Order, OrderMessage
from loyalty_shared.serializers import serialize_message, serialize_order
from loyalty_shared.services.menu_service import build_item_snapshot
from loyalty_shared.services.order_numbering import next_order_number
from loyalty_shared.services.order_state_machine import (
    OrderEvent,
    apply_transition,
    can_message_order,
    validate_transition,
)
from loyalty_shared.services.rider_service import (
    find_busy_order_in_session,
    get_active_rider_in_session,
)
from loyalty_shared.services.wallet_service import (
    apply_transaction_in_session,
    wallet_session,
)
from loyalty_shared.validation import require, validate_pagination

logger = get_logger(__name__)


def _load_order(db_session: Session, order_id: int, for_update: bool = False) -> Order:
    stmt = select(Order).where(Order.id == order_id)
    if for_update:
        stmt = stmt.with_for_update(of=Order).execution_options(populate_existing=True)
    order = db_session.execute(stmt).scalars().one_or_none()
    if order is None:
        raise NotFound(f"Order {order_id} not found", order_id=order_id)
    return order


def _parse_enum(enum_cls, value, field: str):
    try:
        return enum_cls(value)
    except ValueError as exc:
        raise ValidationError(f"Invalid {field}: {value}", field=field) from exc


def _resolve_delivery_address(
    db_session: Session,
    customer: Customer,
    order_type: OrderType,
    address_id: int | None,
    delivery_address: Mapping[str, Any] | None,
) -> tuple[int | None, dict[str, Any] | None]:
    if order_type != OrderType.DELIVERY:
        return None, None

    if address_id is not None:
        address = db_session.get(CustomerAddress, address_id)
        if address is None or address.customer_id != customer.id:
            raise ReferentialFailure(
                f"Address {address_id} not found for customer {customer.id}",
                address_id=address_id,
            )
        return address.id, address.to_snapshot()

    if delivery_address:
        if not delivery_address.get("address_line1") or not delivery_address.get("city"):
            raise ReferentialFailure("Delivery address requires address_line1 and city")
        return None, dict(delivery_address)

    raise ReferentialFailure("Delivery orders require an address")


def create_order_record(
    *,
    customer_id: int,
    branch_id: int,
    order_type: str | OrderType,
    items: Iterable[Mapping[str, Any]],
    payment_method: str | PaymentMethod = PaymentMethod.WALLET,
    address_id: int | None = None,
    delivery_address: Mapping[str, Any] | None = None,
    notes: str | None = None,
    estimated_ready_time: int | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Insert a new order with ``status=pending`` and ``payment_status=pending``.

    Items are priced and snapshotted from the menu, the delivery address is
    copied onto the order and an order number is allocated, all in one
    committed transaction. Payment is not touched here.
    """
    require(branch_id, "branch_id")
    kind = _parse_enum(OrderType, order_type, "order_type")
    method = _parse_enum(PaymentMethod, payment_method, "payment_method")
    moment = as_naive_utc(now)

    with get_session() as db_session:
        customer = db_session.get(Customer, customer_id)
        if customer is None:
            raise NotFound(f"Customer {customer_id} not found", customer_id=customer_id)

        snapshot, subtotal, total_points = build_item_snapshot(
            db_session, customer.restaurant_id, items
        )
        resolved_address_id, address_snapshot = _resolve_delivery_address(
            db_session, customer, kind, address_id, delivery_address
        )

        order = Order(
            order_number=next_order_number(db_session, moment),
            restaurant_id=customer.restaurant_id,
            customer_id=customer.id,
            branch_id=branch_id,
            type=kind.value,
            items=snapshot,
            subtotal=subtotal,
            total_amount=subtotal,
            total_points_used=total_points,
            payment_method=method.value,
            payment_status=PaymentStatus.PENDING.value,
            address_id=resolved_address_id,
            delivery_address=address_snapshot,
            estimated_ready_time=estimated_ready_time or DEFAULT_ESTIMATED_READY_MINUTES,
            notes=notes,
            created_at=moment,
        )
        order.mark_status(OrderStatus.PENDING, moment)
        db_session.add(order)
        db_session.flush()

        logger.info(
            "Order %s created for customer %s: type=%s total=%s payment_method=%s",
            order.order_number,
            customer.id,
            order.type,
            order.total_amount,
            order.payment_method,
        )
        return serialize_order(order)


def mark_paid_in_session(
    db_session: Session,
    order_id: int,
    *,
    staff_id: int | None = None,
    now: datetime | None = None,
) -> Order:
    """
    Debit the order total from the wallet and flag the order paid.

    Runs in the caller's ``wallet_session`` so the ledger row and the payment
    flag commit together.
    """
    moment = as_naive_utc(now)
    order = _load_order(db_session, order_id, for_update=True)
    if order.payment_status != PaymentStatus.PENDING.value:
        raise ValidationError(
            f"Order {order.order_number} payment is already {order.payment_status}",
            order_id=order_id,
        )
    if order.status == OrderStatus.CANCELLED.value:
        raise InvalidTransition(
            f"Order {order.order_number} is cancelled and cannot be paid",
            current_status=order.status,
        )

    total = Decimal(str(order.total_amount))
    if total > 0:
        apply_transaction_in_session(
            db_session,
            order.customer_id,
            TransactionType.PAYMENT,
            -total,
            description=f"Payment for order {order.order_number}",
            reference_type=ReferenceType.ORDER,
            reference_id=order.id,
            staff_id=staff_id,
            branch_id=order.branch_id,
            now=moment,
        )
    order.payment_status = PaymentStatus.PAID.value
    order.updated_at = moment
    return order


def _transition(order_id: int, event: OrderEvent, now: datetime | None, **changes) -> dict[str, Any]:
    moment = as_naive_utc(now)
    with get_session() as db_session:
        order = _load_order(db_session, order_id, for_update=True)
        validate_transition(order, event)
        for field, value in changes.items():
            setattr(order, field, value)
        status = apply_transition(order, event, moment)
        logger.info("Order %s moved to %s", order.order_number, status.value)
        return serialize_order(order)


def accept_order(
    order_id: int, estimated_ready_time: int | None = None, now: datetime | None = None
) -> dict[str, Any]:
    changes = {}
    if estimated_ready_time is not None:
        if estimated_ready_time < 1:
            raise ValidationError(
                "estimated_ready_time must be at least one minute", field="estimated_ready_time"
            )
        changes["estimated_ready_time"] = estimated_ready_time
    return _transition(order_id, OrderEvent.ACCEPT, now, **changes)


def mark_preparing(order_id: int, now: datetime | None = None) -> dict[str, Any]:
    return _transition(order_id, OrderEvent.START_PREPARING, now)


def mark_ready(order_id: int, now: datetime | None = None) -> dict[str, Any]:
    return _transition(order_id, OrderEvent.MARK_READY, now)


def mark_completed(order_id: int, now: datetime | None = None) -> dict[str, Any]:
    return _transition(order_id, OrderEvent.COMPLETE, now)


def _warn_if_rider_busy(db_session: Session, rider_id: int, order: Order) -> None:
    busy = find_busy_order_in_session(db_session, rider_id, exclude_order_id=order.id)
    if busy is not None:
        logger.warning(
            "Rider %s assigned to order %s while still on order %s",
            rider_id,
            order.order_number,
            busy.order_number,
        )


def assign_rider(order_id: int, rider_id: int, now: datetime | None = None) -> dict[str, Any]:
    """
    Attach a rider to a ready delivery order without changing its status.

    Prefer ``dispatch_order``, which attaches the rider and moves the order
    out for delivery in one step.

    Raises:
        InvalidTransition: If the order is not a ready delivery order without a rider
        ReferentialFailure: If the rider is unknown or inactive
    """
    moment = as_naive_utc(now)
    with get_session() as db_session:
        order = _load_order(db_session, order_id, for_update=True)
        if (
            order.type != OrderType.DELIVERY.value
            or order.status != OrderStatus.READY.value
            or order.rider_id is not None
        ):
            raise InvalidTransition(
                f"Rider can only be assigned to a ready delivery order without a rider "
                f"(order {order.order_number} is a {order.type} order in {order.status})",
                current_status=order.status,
            )

        rider = get_active_rider_in_session(db_session, rider_id, order.restaurant_id)
        _warn_if_rider_busy(db_session, rider.id, order)
        order.rider_id = rider.id
        order.rider_assigned_at = moment
        order.updated_at = moment
        logger.info("Rider %s assigned to order %s", rider.id, order.order_number)
        return serialize_order(order)


def dispatch_order(order_id: int, rider_id: int, now: datetime | None = None) -> dict[str, Any]:
    """
    Assign ``rider_id`` and move a ready delivery order to ``out_for_delivery``.

    If a rider was attached earlier through ``assign_rider`` it must be the
    same rider.
    """
    moment = as_naive_utc(now)
    with get_session() as db_session:
        order = _load_order(db_session, order_id, for_update=True)
        validate_transition(order, OrderEvent.DISPATCH)
        if order.rider_id is not None and order.rider_id != rider_id:
            raise InvalidTransition(
                f"Order {order.order_number} is already assigned to rider {order.rider_id}",
                current_status=order.status,
                target_status=OrderStatus.OUT_FOR_DELIVERY.value,
            )

        rider = get_active_rider_in_session(db_session, rider_id, order.restaurant_id)
        if order.rider_id is None:
            _warn_if_rider_busy(db_session, rider.id, order)
            order.rider_id = rider.id
            order.rider_assigned_at = moment

        apply_transition(order, OrderEvent.DISPATCH, moment)
        logger.info("Order %s dispatched with rider %s", order.order_number, rider.id)
        return serialize_order(order)


def mark_on_the_way(order_id: int, rider_id: int, now: datetime | None = None) -> dict[str, Any]:
    return dispatch_order(order_id, rider_id, now=now)


def cancel_order(
    order_id: int,
    reason: str | None = None,
    *,
    staff_id: int | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Cancel an order, refunding the wallet when it was paid.

    The refund ledger row, the ``refunded`` flag and the ``cancelled`` status
    commit in one transaction. If the refund fails nothing is written and the
    error propagates, leaving the order as it was.

    Orders with nothing to refund are cancelled under the order row lock only,
    without waiting for the customer's wallet.
    """
    moment = as_naive_utc(now)

    with get_session() as db_session:
        order = _load_order(db_session, order_id)
        customer_id = order.customer_id
        refund_due = _refund_due(order)

    if not refund_due:
        with get_session() as db_session:
            order = _load_order(db_session, order_id, for_update=True)
            # Payment may have landed since the first read
            if not _refund_due(order):
                return _cancel_in_session(db_session, order, reason, staff_id, moment)

    with wallet_session(customer_id) as db_session:
        order = _load_order(db_session, order_id, for_update=True)
        return _cancel_in_session(db_session, order, reason, staff_id, moment)


def _refund_due(order: Order) -> bool:
    return order.payment_status == PaymentStatus.PAID.value and Decimal(str(order.total_amount)) > 0


def _cancel_in_session(
    db_session: Session,
    order: Order,
    reason: str | None,
    staff_id: int | None,
    moment: datetime,
) -> dict[str, Any]:
    validate_transition(order, OrderEvent.CANCEL)

    if _refund_due(order):
        apply_transaction_in_session(
            db_session,
            order.customer_id,
            TransactionType.REFUND,
            Decimal(str(order.total_amount)),
            description=f"Refund for order {order.order_number}",
            reference_type=ReferenceType.ORDER,
            reference_id=order.id,
            staff_id=staff_id,
            branch_id=order.branch_id,
            now=moment,
        )
        order.payment_status = PaymentStatus.REFUNDED.value

    order.cancellation_reason = reason
    apply_transition(order, OrderEvent.CANCEL, moment)
    logger.info(
        "Order %s cancelled (payment_status=%s): %s",
        order.order_number,
        order.payment_status,
        reason,
    )
    return serialize_order(order)


def get_order(order_id: int, include_history: bool = True) -> dict[str, Any]:
    with get_session() as db_session:
        order = _load_order(db_session, order_id)
        return serialize_order(order, include_history=include_history)


def list_orders(
    restaurant_id: int,
    *,
    customer_id: int | None = None,
    branch_id: int | None = None,
    status: str | None = None,
    page: int = 1,
    limit: int = 50,
) -> dict[str, Any]:
    """
    List orders of a restaurant, newest first.

    Returns:
        Dict with orders, total, page, limit and total_pages
    """
    page, limit = validate_pagination(page, limit)
    with get_session() as db_session:
        base_stmt = select(Order).where(Order.restaurant_id == restaurant_id)
        if customer_id is not None:
            base_stmt = base_stmt.where(Order.customer_id == customer_id)
        if branch_id is not None:
            base_stmt = base_stmt.where(Order.branch_id == branch_id)
        if status:
            base_stmt = base_stmt.where(
                Order.status == _parse_enum(OrderStatus, status, "status").value
            )

        count_stmt = select(func.count()).select_from(base_stmt.subquery())
        total = db_session.execute(count_stmt).scalar() or 0

        stmt = (
            base_stmt.order_by(Order.created_at.desc(), Order.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        orders = db_session.execute(stmt).scalars().all()
        total_pages = (total + limit - 1) // limit if total > 0 else 1

        return {
            "orders": [serialize_order(order) for order in orders],
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": total_pages,
        }


def send_message(
    order_id: int,
    sender_type: str | SenderType,
    sender_id: int,
    message: str,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Post a chat message on an order.

    Raises:
        MessagingUnavailable: Outside the messaging window of the order
    """
    sender = _parse_enum(SenderType, sender_type, "sender_type")
    require(sender_id, "sender_id")
    require(message, "message")
    moment = as_naive_utc(now)

    with get_session() as db_session:
        order = _load_order(db_session, order_id)
        if not can_message_order(order, moment):
            raise MessagingUnavailable(
                f"Messaging is not available for order {order.order_number}",
                order_id=order_id,
                status=order.status,
            )
        if sender == SenderType.CUSTOMER and sender_id != order.customer_id:
            raise ValidationError(
                "Customers can only message about their own orders", field="sender_id"
            )

        entry = OrderMessage(
            order_id=order.id,
            sender_type=sender.value,
            sender_id=sender_id,
            message=message.strip(),
            created_at=moment,
        )
        db_session.add(entry)
        db_session.flush()
        return serialize_message(entry)


def get_order_messages(order_id: int) -> list[dict[str, Any]]:
    with get_session() as db_session:
        _load_order(db_session, order_id)
        messages = (
            db_session.execute(
                select(OrderMessage)
                .where(OrderMessage.order_id == order_id)
                .order_by(OrderMessage.created_at, OrderMessage.id)
            )
            .scalars()
            .all()
        )
        return [serialize_message(entry) for entry in messages]
