"""
Loyalty API - Modular Blueprint Structure

All endpoints are registered under the main api_bp blueprint, which the app
mounts at /api.
"""

from flask import Blueprint

# Create main API blueprint
api_bp = Blueprint("loyalty_api", __name__)

from loyalty_api.routes.api.orders import orders_bp  # noqa: E402
from loyalty_api.routes.api.riders import riders_bp  # noqa: E402
from loyalty_api.routes.api.wallet import wallet_bp  # noqa: E402

# Register all sub-blueprints with the main API blueprint
api_bp.register_blueprint(wallet_bp)
api_bp.register_blueprint(orders_bp)
api_bp.register_blueprint(riders_bp)

__all__ = ["api_bp"]
