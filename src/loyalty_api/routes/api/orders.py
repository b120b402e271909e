"""
Order endpoints: checkout, staff lifecycle actions, rider dispatch and chat.
"""

from http import HTTPStatus

from flask import Blueprint, jsonify, request

from loyalty_api.identity import current_customer_id, current_restaurant_id, current_staff_id
from loyalty_shared.constants import SenderType
from loyalty_shared.errors import ValidationError
from loyalty_shared.schemas import (
    AcceptOrderRequest,
    CancelOrderRequest,
    CreateOrderRequest,
    RiderRequest,
    SendMessageRequest,
)
from loyalty_shared.serializers import success_response
from loyalty_shared.services import order_service, payment_coordinator

orders_bp = Blueprint("orders", __name__)


def _payload() -> dict:
    return request.get_json(silent=True) or {}


@orders_bp.post("/orders")
def create_order_endpoint():
    """
    Check out an order and pay it from the wallet when requested.

    A failed wallet payment answers with the payment error while the order
    itself stays on record as cancelled.
    """
    payload = CreateOrderRequest.model_validate(_payload())
    customer_id = payload.customer_id or current_customer_id()
    if customer_id is None:
        raise ValidationError("customer_id is required", field="customer_id")

    order = payment_coordinator.create_order(
        customer_id=customer_id,
        branch_id=payload.branch_id,
        order_type=payload.type.value,
        items=[item.model_dump() for item in payload.items],
        payment_method=payload.payment_method.value,
        address_id=payload.address_id,
        delivery_address=(
            payload.delivery_address.model_dump(exclude_none=True)
            if payload.delivery_address
            else None
        ),
        notes=payload.notes,
        staff_id=current_staff_id(),
    )
    return jsonify(success_response(order, "Order created")), HTTPStatus.CREATED


@orders_bp.get("/orders")
def list_orders_endpoint():
    result = order_service.list_orders(
        current_restaurant_id(),
        customer_id=request.args.get("customer_id", type=int),
        branch_id=request.args.get("branch_id", type=int),
        status=request.args.get("status"),
        page=request.args.get("page", 1, type=int),
        limit=request.args.get("limit", 50, type=int),
    )
    return jsonify(success_response(result)), HTTPStatus.OK


@orders_bp.get("/orders/<int:order_id>")
def get_order_endpoint(order_id: int):
    return jsonify(success_response(order_service.get_order(order_id))), HTTPStatus.OK


@orders_bp.post("/orders/<int:order_id>/accept")
def accept_order_endpoint(order_id: int):
    payload = AcceptOrderRequest.model_validate(_payload())
    order = order_service.accept_order(order_id, payload.estimated_ready_time)
    return jsonify(success_response(order)), HTTPStatus.OK


@orders_bp.post("/orders/<int:order_id>/preparing")
def mark_preparing_endpoint(order_id: int):
    return jsonify(success_response(order_service.mark_preparing(order_id))), HTTPStatus.OK


@orders_bp.post("/orders/<int:order_id>/ready")
def mark_ready_endpoint(order_id: int):
    return jsonify(success_response(order_service.mark_ready(order_id))), HTTPStatus.OK


@orders_bp.post("/orders/<int:order_id>/rider")
def assign_rider_endpoint(order_id: int):
    payload = RiderRequest.model_validate(_payload())
    order = order_service.assign_rider(order_id, payload.rider_id)
    return jsonify(success_response(order)), HTTPStatus.OK


@orders_bp.post("/orders/<int:order_id>/dispatch")
def dispatch_order_endpoint(order_id: int):
    payload = RiderRequest.model_validate(_payload())
    order = order_service.dispatch_order(order_id, payload.rider_id)
    return jsonify(success_response(order)), HTTPStatus.OK


@orders_bp.post("/orders/<int:order_id>/complete")
def complete_order_endpoint(order_id: int):
    return jsonify(success_response(order_service.mark_completed(order_id))), HTTPStatus.OK


@orders_bp.post("/orders/<int:order_id>/cancel")
def cancel_order_endpoint(order_id: int):
    payload = CancelOrderRequest.model_validate(_payload())
    order = order_service.cancel_order(order_id, payload.reason, staff_id=current_staff_id())
    return jsonify(success_response(order, "Order cancelled")), HTTPStatus.OK


@orders_bp.get("/orders/<int:order_id>/messages")
def get_messages_endpoint(order_id: int):
    messages = order_service.get_order_messages(order_id)
    return jsonify(success_response({"messages": messages})), HTTPStatus.OK


@orders_bp.post("/orders/<int:order_id>/messages")
def send_message_endpoint(order_id: int):
    payload = SendMessageRequest.model_validate(_payload())
    if payload.sender_type == SenderType.STAFF:
        sender_id = current_staff_id()
    else:
        sender_id = current_customer_id()
    if sender_id is None:
        raise ValidationError(
            f"{payload.sender_type.value} identity header is required", field="sender_id"
        )

    message = order_service.send_message(
        order_id, payload.sender_type, sender_id, payload.message
    )
    return jsonify(success_response(message)), HTTPStatus.CREATED
