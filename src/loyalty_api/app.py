"""
Factory for the loyalty API service (REST).

Serves the wallet, order and rider endpoints under /api. Authentication is
handled upstream; the acting staff member or customer arrives in request
headers (see ``loyalty_api.identity``).
"""

from __future__ import annotations

import os

from flask import Flask, jsonify
from flask_cors import CORS

from loyalty_api.routes.api import api_bp
from loyalty_shared.config import load_config
from loyalty_shared.db import init_db, init_engine
from loyalty_shared.error_handlers import register_error_handlers
from loyalty_shared.logging_config import configure_logging
from loyalty_shared.models import Base


def create_app() -> Flask:
    """
    Build and configure the Flask app.
    """
    app = Flask(__name__)
    config = load_config("loyalty-api")

    configure_logging(config.app_name, config.log_level)

    # Database
    init_engine(config)
    init_db(Base.metadata)

    # Basic Config
    app.config["SECRET_KEY"] = config.secret_key
    app.config["APP_NAME"] = "Loyalty API"
    app.config["CURRENCY"] = config.currency
    app.config["DEBUG_MODE"] = config.debug_mode
    app.config["DEBUG"] = config.flask_debug

    app.register_blueprint(api_bp, url_prefix="/api")

    # Error Handlers
    register_error_handlers(app)

    # CORS
    allowed_origins = [
        origin.strip()
        for origin in os.getenv(
            "CORS_ALLOWED_ORIGINS", "http://localhost:6080,http://127.0.0.1:6080"
        ).split(",")
        if origin.strip()
    ]
    CORS(app, resources={r"/api/*": {"origins": allowed_origins, "supports_credentials": True}})

    @app.route("/health")
    def health():
        return jsonify({"status": "ok", "service": config.app_name}), 200

    return app
