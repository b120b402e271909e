"""
Input validation utilities.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from loyalty_shared.constants import (
    CREDIT_TRANSACTION_TYPES,
    DEBIT_TRANSACTION_TYPES,
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    TransactionType,
)
from loyalty_shared.errors import ValidationError

CENT = Decimal("0.01")


def to_money(value, field: str = "amount") -> Decimal:
    """
    Convert ``value`` to a Decimal rounded to cents.

    Raises:
        ValidationError: If the value is missing, not numeric or not finite
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} is required", field=field)
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"{field} must be a number", field=field) from exc
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a finite number", field=field)
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def validate_positive_amount(value, field: str = "amount") -> Decimal:
    amount = to_money(value, field)
    if amount <= 0:
        raise ValidationError(f"{field} must be greater than zero", field=field)
    return amount


def validate_transaction_amount(transaction_type: str | TransactionType, value) -> tuple[TransactionType, Decimal]:
    """
    Check that a signed ledger amount agrees with its transaction type.

    Credits (top_up, refund) are positive, payments are negative and
    adjustments may go either way. Zero is never a valid movement.
    """
    try:
        kind = TransactionType(transaction_type)
    except ValueError as exc:
        raise ValidationError(
            f"Unknown transaction type: {transaction_type}", field="type"
        ) from exc

    amount = to_money(value)
    if amount == 0:
        raise ValidationError("amount must not be zero", field="amount")
    if kind in CREDIT_TRANSACTION_TYPES and amount < 0:
        raise ValidationError(f"{kind.value} amount must be positive", field="amount")
    if kind in DEBIT_TRANSACTION_TYPES and amount > 0:
        raise ValidationError(f"{kind.value} amount must be negative", field="amount")
    return kind, amount


def require(value, field: str):
    """Raise ValidationError when a required field is missing or blank."""
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{field} is required", field=field)
    return value


def validate_pagination(page: int | None, limit: int | None) -> tuple[int, int]:
    """
    Validate and normalize pagination parameters.

    Returns: (page, limit) tuple with validated values.
    """
    if page is None or page < 1:
        page = 1

    if limit is None or limit < 1:
        limit = DEFAULT_PAGE_SIZE
    elif limit > MAX_PAGE_SIZE:
        limit = MAX_PAGE_SIZE

    return page, limit
