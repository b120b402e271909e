"""
Order State Machine - keeps status transition rules out of the Order model.

The transition table is closed per order type. Every service that changes an
order's status validates the move here first, so an invalid transition is
rejected no matter which caller requested it.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from loyalty_shared.constants import (
    CANCELABLE_STATUSES,
    MESSAGEABLE_STATUSES,
    MESSAGING_DELAY,
    ORDER_FLOWS,
    TERMINAL_STATUSES,
    OrderStatus,
    OrderType,
)
from loyalty_shared.datetime_utils import as_naive_utc
from loyalty_shared.errors import InvalidTransition
from loyalty_shared.models import Order


class OrderEvent(str, Enum):
    """Events that can trigger a status transition."""

    ACCEPT = "accept"
    START_PREPARING = "start_preparing"
    MARK_READY = "mark_ready"
    DISPATCH = "dispatch"
    COMPLETE = "complete"
    CANCEL = "cancel"


EVENT_TARGETS = {
    OrderEvent.ACCEPT: OrderStatus.ACCEPTED,
    OrderEvent.START_PREPARING: OrderStatus.PREPARING,
    OrderEvent.MARK_READY: OrderStatus.READY,
    OrderEvent.DISPATCH: OrderStatus.OUT_FOR_DELIVERY,
    OrderEvent.COMPLETE: OrderStatus.COMPLETED,
    OrderEvent.CANCEL: OrderStatus.CANCELLED,
}


def _coerce_status(status: str | OrderStatus) -> OrderStatus | None:
    try:
        return OrderStatus(status)
    except ValueError:
        return None


def _coerce_type(order_type: str | OrderType) -> OrderType | None:
    try:
        return OrderType(order_type)
    except ValueError:
        return None


def get_next_status(status: str | OrderStatus, order_type: str | OrderType) -> OrderStatus | None:
    """
    Return the next forward status for an order, or ``None``.

    ``None`` means no forward move exists: the status is terminal, unknown, or
    not part of the flow for ``order_type`` (``out_for_delivery`` on a pickup).
    """
    current = _coerce_status(status)
    flow_type = _coerce_type(order_type)
    if current is None or flow_type is None or current in TERMINAL_STATUSES:
        return None

    flow = ORDER_FLOWS[flow_type]
    if current not in flow:
        return None
    index = flow.index(current)
    if index + 1 >= len(flow):
        return None
    return flow[index + 1]


def can_transition(
    status: str | OrderStatus, target: str | OrderStatus, order_type: str | OrderType
) -> bool:
    """Check whether ``status -> target`` is in the transition table for ``order_type``."""
    current = _coerce_status(status)
    target_status = _coerce_status(target)
    flow_type = _coerce_type(order_type)
    if current is None or target_status is None or flow_type is None:
        return False

    if target_status == OrderStatus.CANCELLED:
        return current in CANCELABLE_STATUSES and current in ORDER_FLOWS[flow_type]

    return get_next_status(current, flow_type) == target_status


def validate_transition(order: Order, event: OrderEvent) -> OrderStatus:
    """
    Validate that ``event`` may be applied to ``order`` and return the target status.

    Raises:
        InvalidTransition: If the move is not in the table for the order type
    """
    target = EVENT_TARGETS[event]
    if not can_transition(order.status, target, order.type):
        raise InvalidTransition(
            f"Invalid transition for {order.type} order {order.order_number}: "
            f"{order.status} -> {target.value}",
            current_status=order.status,
            target_status=target.value,
        )
    return target


def apply_transition(order: Order, event: OrderEvent, now: datetime) -> OrderStatus:
    """Validate ``event`` and write the new status with its timestamp."""
    target = validate_transition(order, event)
    order.mark_status(target, now)
    return target


def can_message_order(order: Order, now: datetime | None = None) -> bool:
    """
    Messaging opens 10 minutes after checkout and stays open while the order
    is pending, accepted or preparing.
    """
    current = _coerce_status(order.status)
    if current not in MESSAGEABLE_STATUSES:
        return False
    return as_naive_utc(now) - as_naive_utc(order.created_at) >= MESSAGING_DELAY
