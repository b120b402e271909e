"""
Serializers for consistent API responses.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from loyalty_shared.models import Order, OrderMessage, Rider, WalletTransaction


def _safe_float(value) -> float:
    try:
        return float(value) if value is not None else 0.0
    except (TypeError, ValueError):
        return 0.0


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def serialize_transaction(transaction: WalletTransaction) -> dict[str, Any]:
    """Serialize a WalletTransaction ledger row."""
    return {
        "id": transaction.id,
        "restaurant_id": transaction.restaurant_id,
        "customer_id": transaction.customer_id,
        "type": transaction.type,
        "amount": _safe_float(transaction.amount),
        "balance_after": _safe_float(transaction.balance_after),
        "description": transaction.description,
        "reference_type": transaction.reference_type,
        "reference_id": transaction.reference_id,
        "staff_id": transaction.staff_id,
        "branch_id": transaction.branch_id,
        "created_at": _iso(transaction.created_at),
    }


def serialize_order(order: Order, include_history: bool = False) -> dict[str, Any]:
    """Serialize Order model."""
    data = {
        "id": order.id,
        "order_number": order.order_number,
        "restaurant_id": order.restaurant_id,
        "customer_id": order.customer_id,
        "branch_id": order.branch_id,
        "type": order.type,
        "status": order.status,
        "items": list(order.items or []),
        "subtotal": _safe_float(order.subtotal),
        "total_amount": _safe_float(order.total_amount),
        "total_points_used": order.total_points_used,
        "payment_method": order.payment_method,
        "payment_status": order.payment_status,
        "address_id": order.address_id,
        "delivery_address": order.delivery_address,
        "rider_id": order.rider_id,
        "rider_assigned_at": _iso(order.rider_assigned_at),
        "estimated_ready_time": order.estimated_ready_time,
        "accepted_at": _iso(order.accepted_at),
        "preparing_at": _iso(order.preparing_at),
        "ready_at": _iso(order.ready_at),
        "out_for_delivery_at": _iso(order.out_for_delivery_at),
        "completed_at": _iso(order.completed_at),
        "cancelled_at": _iso(order.cancelled_at),
        "cancellation_reason": order.cancellation_reason,
        "notes": order.notes,
        "created_at": _iso(order.created_at),
        "updated_at": _iso(order.updated_at),
    }
    if include_history:
        data["history"] = [
            {"status": entry.status, "changed_at": _iso(entry.changed_at)}
            for entry in order.history
        ]
    return data


def serialize_rider(rider: Rider) -> dict[str, Any]:
    return {
        "id": rider.id,
        "restaurant_id": rider.restaurant_id,
        "branch_id": rider.branch_id,
        "name": rider.name,
        "phone": rider.phone,
        "is_active": rider.is_active,
    }


def serialize_message(message: OrderMessage) -> dict[str, Any]:
    return {
        "id": message.id,
        "order_id": message.order_id,
        "sender_type": message.sender_type,
        "sender_id": message.sender_id,
        "message": message.message,
        "created_at": _iso(message.created_at),
    }


def success_response(data: Any, message: str | None = None) -> dict[str, Any]:
    """Create a standardized success response."""
    response = {"status": "success", "data": data, "error": None}
    if message:
        response["message"] = message
    return response


def error_response(error: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    """Create a standardized error response."""
    response = {"status": "error", "data": None, "error": error}
    if details:
        response["details"] = details
    return response
