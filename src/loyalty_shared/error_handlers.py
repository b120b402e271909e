"""
Centralized error handlers for the Flask API.
"""

from http import HTTPStatus

from flask import Flask, jsonify
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from loyalty_shared.error_catalog import describe_error
from loyalty_shared.errors import LoyaltyError, PaymentFailure
from loyalty_shared.logging_config import get_logger
from loyalty_shared.serializers import error_response

logger = get_logger(__name__)


def register_error_handlers(app: Flask) -> None:
    """
    Register centralized error handlers for the Flask app.

    Args:
        app: Flask application instance
    """

    @app.errorhandler(LoyaltyError)
    def handle_loyalty_error(e: LoyaltyError):
        """Handle typed domain failures."""
        if isinstance(e, PaymentFailure):
            logger.warning("Payment error %s: %s", e.code, e.message)
        elif e.http_status >= 500:
            logger.error("Request failed %s: %s", e.code, e.message)
        else:
            logger.info("Request rejected %s: %s", e.code, e.message)
        details = e.to_dict()
        details["title"] = describe_error(e.code)["title"]
        return jsonify(error_response(e.message, details)), e.http_status

    @app.errorhandler(PydanticValidationError)
    def handle_pydantic_validation_error(e: PydanticValidationError):
        """Handle Pydantic validation errors."""
        logger.warning("Pydantic validation error: %s", e)
        return jsonify(
            error_response(
                "Invalid request data",
                {"code": "VALID_001", "errors": e.errors(include_url=False, include_context=False)},
            )
        ), HTTPStatus.BAD_REQUEST

    @app.errorhandler(SQLAlchemyError)
    def handle_database_error(e: SQLAlchemyError):
        """Handle database errors."""
        logger.error("Database error: %s", e, exc_info=True)
        return jsonify(
            error_response("Database error", {"code": "SYSTEM_001"})
        ), HTTPStatus.INTERNAL_SERVER_ERROR

    @app.errorhandler(HTTPException)
    def handle_http_exception(e: HTTPException):
        """Handle HTTP exceptions from Werkzeug."""
        logger.warning("HTTP exception %s: %s", e.code, e.description)
        return jsonify(error_response(e.description or str(e))), e.code

    @app.errorhandler(Exception)
    def handle_generic_exception(e: Exception):
        """Handle any unhandled exceptions."""
        logger.error("Unhandled exception: %s", e, exc_info=True)
        return jsonify(
            error_response("Internal server error", {"code": "SYSTEM_001"})
        ), HTTPStatus.INTERNAL_SERVER_ERROR
