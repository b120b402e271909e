"""
Rider endpoints.
"""

from http import HTTPStatus

from flask import Blueprint, jsonify, request

from loyalty_api.identity import current_restaurant_id
from loyalty_shared.schemas import CreateRiderRequest, UpdateRiderRequest
from loyalty_shared.serializers import success_response
from loyalty_shared.services import rider_service

riders_bp = Blueprint("riders", __name__)


@riders_bp.get("/riders")
def list_riders():
    riders = rider_service.list_active_riders(
        current_restaurant_id(), branch_id=request.args.get("branch_id", type=int)
    )
    return jsonify(success_response({"riders": riders})), HTTPStatus.OK


@riders_bp.post("/riders")
def create_rider():
    payload = CreateRiderRequest.model_validate(request.get_json(silent=True) or {})
    rider = rider_service.create_rider(
        current_restaurant_id(), payload.name, payload.phone, branch_id=payload.branch_id
    )
    return jsonify(success_response(rider, "Rider created")), HTTPStatus.CREATED


@riders_bp.get("/riders/<int:rider_id>")
def get_rider(rider_id: int):
    return jsonify(success_response(rider_service.get_rider(rider_id))), HTTPStatus.OK


@riders_bp.patch("/riders/<int:rider_id>")
def update_rider(rider_id: int):
    payload = UpdateRiderRequest.model_validate(request.get_json(silent=True) or {})
    rider = rider_service.set_rider_active(rider_id, payload.is_active)
    return jsonify(success_response(rider)), HTTPStatus.OK
