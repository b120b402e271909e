"""
Typed failures raised by the wallet ledger and the order services.

Every error carries a stable ``code`` (documented in ``error_catalog``) and
the HTTP status the API layer answers with.
"""

from __future__ import annotations

from http import HTTPStatus
from typing import Any


class LoyaltyError(Exception):
    """Base class for controlled domain failures."""

    code = "SYSTEM_001"
    http_status = HTTPStatus.INTERNAL_SERVER_ERROR

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code}
        if self.details:
            payload.update(self.details)
        return payload


class ValidationError(LoyaltyError):
    """Raised when input fails validation (non-positive amount, missing field)."""

    code = "VALID_001"
    http_status = HTTPStatus.BAD_REQUEST


class NotFound(LoyaltyError):
    """Raised when a customer, order, rider or transaction does not exist."""

    code = "NOTFOUND_001"
    http_status = HTTPStatus.NOT_FOUND


class WindowExpired(LoyaltyError):
    """Raised when a time-bounded action is attempted after its window closed."""

    code = "WALLET_002"
    http_status = HTTPStatus.CONFLICT


class InvalidTransition(LoyaltyError):
    """Raised when an order status change is not allowed from its current state."""

    code = "ORDER_001"
    http_status = HTTPStatus.CONFLICT

    def __init__(
        self,
        message: str,
        current_status: str | None = None,
        target_status: str | None = None,
        **details: Any,
    ):
        super().__init__(message, **details)
        self.current_status = current_status
        self.target_status = target_status

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["current_status"] = self.current_status
        payload["target_status"] = self.target_status
        return payload


class MessagingUnavailable(LoyaltyError):
    """Raised when a message is sent outside the order's messaging window."""

    code = "ORDER_002"
    http_status = HTTPStatus.CONFLICT


class PaymentFailure(LoyaltyError):
    """
    Raised when a wallet debit or credit could not be completed.

    ``retryable`` is set for timeouts and concurrent-modification conflicts;
    the caller may safely repeat the request.
    """

    code = "PAYMENT_001"
    http_status = HTTPStatus.PAYMENT_REQUIRED

    def __init__(self, message: str, *, retryable: bool = False, **details: Any):
        super().__init__(message, **details)
        self.retryable = retryable
        if retryable:
            self.http_status = HTTPStatus.SERVICE_UNAVAILABLE

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["retryable"] = self.retryable
        return payload


class InsufficientFunds(PaymentFailure):
    """Raised when a movement would take the wallet balance below zero."""

    code = "WALLET_001"

    def __init__(self, message: str = "Insufficient wallet balance", **details: Any):
        super().__init__(message, retryable=False, **details)


class ReferentialFailure(LoyaltyError):
    """Raised when a linked entity (address, rider, menu item) is missing or unusable."""

    code = "REF_001"
    http_status = HTTPStatus.UNPROCESSABLE_ENTITY
