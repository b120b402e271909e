"""
Wallet endpoints: balance, ledger history, top-ups, QR payments and undo.
"""

from http import HTTPStatus

from flask import Blueprint, jsonify, request

from loyalty_api.identity import current_staff_id
from loyalty_shared.schemas import QRPaymentRequest, TopUpRequest, UndoTopUpRequest
from loyalty_shared.serializers import success_response
from loyalty_shared.services import wallet_service

wallet_bp = Blueprint("wallet", __name__)


@wallet_bp.get("/customers/<int:customer_id>/wallet")
def get_wallet(customer_id: int):
    return jsonify(success_response(wallet_service.get_wallet(customer_id))), HTTPStatus.OK


@wallet_bp.get("/customers/<int:customer_id>/wallet/transactions")
def get_wallet_transactions(customer_id: int):
    limit = request.args.get("limit", type=int)
    history = wallet_service.get_history(customer_id, limit=limit)
    return jsonify(success_response({"transactions": history})), HTTPStatus.OK


@wallet_bp.post("/customers/<int:customer_id>/wallet/top-up")
def top_up_wallet(customer_id: int):
    """Credit the wallet at the counter; attributed to the acting staff member."""
    payload = TopUpRequest.model_validate(request.get_json(silent=True) or {})
    transaction = wallet_service.top_up(
        customer_id,
        payload.amount,
        staff_id=current_staff_id(),
        branch_id=payload.branch_id,
        description=payload.description,
    )
    return jsonify(success_response(transaction, "Wallet topped up")), HTTPStatus.CREATED


@wallet_bp.post("/customers/<int:customer_id>/wallet/qr-payment")
def qr_payment(customer_id: int):
    payload = QRPaymentRequest.model_validate(request.get_json(silent=True) or {})
    transaction = wallet_service.pay_qr(
        customer_id,
        payload.amount,
        branch_id=payload.branch_id,
        staff_id=current_staff_id(),
        description=payload.description,
    )
    return jsonify(success_response(transaction, "Payment accepted")), HTTPStatus.CREATED


@wallet_bp.post("/wallet/transactions/<int:transaction_id>/undo")
def undo_top_up(transaction_id: int):
    payload = UndoTopUpRequest.model_validate(request.get_json(silent=True) or {})
    adjustment = wallet_service.undo_top_up(
        transaction_id, staff_id=current_staff_id(), reason=payload.reason
    )
    return jsonify(success_response(adjustment, "Top-up reversed")), HTTPStatus.CREATED
