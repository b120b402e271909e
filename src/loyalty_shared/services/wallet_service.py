"""
Wallet ledger service.

Owns the customer balance and the append-only transaction log. Every balance
change goes through ``apply_transaction_in_session`` which, while the caller
holds the per-customer lock, locks the customer row, checks the non-negative
invariant and performs one version-guarded conditional UPDATE together with
the ledger insert in the same database transaction.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from loyalty_shared.constants import TOP_UP_UNDO_WINDOW, ReferenceType, TransactionType
from loyalty_shared.datetime_utils import as_naive_utc
from loyalty_shared.db import get_session
from loyalty_shared.errors import (
    InsufficientFunds,
    NotFound,
    PaymentFailure,
    ValidationError,
    WindowExpired,
)
from loyalty_shared.logging_config import get_logger
from loyalty_shared.models import Customer, WalletTransaction
from loyalty_shared.serializers import serialize_transaction
from loyalty_shared.services.customer_locks import customer_lock
from loyalty_shared.validation import (
    CENT,
    require,
    to_money,
    validate_pagination,
    validate_positive_amount,
    validate_transaction_amount,
)

logger = get_logger(__name__)


@contextmanager
def wallet_session(customer_id: int) -> Iterator[Session]:
    """
    Hold the customer's wallet lock for the whole lifetime of one session.

    The lock is released only after the session commits or rolls back, so no
    other movement for the same customer can observe uncommitted state.
    Database lock timeouts surface as a retryable ``PaymentFailure``.
    """
    try:
        with customer_lock(customer_id), get_session() as db_session:
            yield db_session
    except OperationalError as exc:
        logger.warning("Wallet storage busy for customer %s: %s", customer_id, exc)
        raise PaymentFailure(
            "Wallet storage is busy; please retry",
            retryable=True,
            customer_id=customer_id,
        ) from exc


def _lock_customer(db_session: Session, customer_id: int) -> Customer:
    customer = (
        db_session.execute(
            select(Customer)
            .where(Customer.id == customer_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        .scalars()
        .one_or_none()
    )
    if customer is None:
        raise NotFound(f"Customer {customer_id} not found", customer_id=customer_id)
    return customer


def _get_customer(db_session: Session, customer_id: int) -> Customer:
    customer = db_session.get(Customer, customer_id)
    if customer is None:
        raise NotFound(f"Customer {customer_id} not found", customer_id=customer_id)
    return customer


def _normalize_reference_type(reference_type: str | ReferenceType | None) -> str | None:
    if reference_type is None:
        return None
    try:
        return ReferenceType(reference_type).value
    except ValueError as exc:
        raise ValidationError(
            f"Unknown reference type: {reference_type}", field="reference_type"
        ) from exc


def apply_transaction_in_session(
    db_session: Session,
    customer_id: int,
    transaction_type: str | TransactionType,
    amount,
    *,
    description: str | None = None,
    reference_type: str | ReferenceType | None = None,
    reference_id: str | int | None = None,
    staff_id: int | None = None,
    branch_id: int | None = None,
    now: datetime | None = None,
) -> WalletTransaction:
    """
    Apply one signed movement to a customer's wallet inside ``db_session``.

    The caller must hold ``customer_lock(customer_id)`` until the session
    commits (``wallet_session`` does both).

    Args:
        db_session: Open session, committed by the caller
        customer_id: Wallet owner
        transaction_type: top_up, payment, refund or adjustment
        amount: Signed amount; credits positive, payments negative

    Returns:
        The flushed WalletTransaction row

    Raises:
        ValidationError: If the sign does not match the transaction type
        NotFound: If the customer does not exist
        InsufficientFunds: If the resulting balance would be negative
        PaymentFailure: If the balance changed underneath (retryable)
    """
    kind, delta = validate_transaction_amount(transaction_type, amount)
    ref_type = _normalize_reference_type(reference_type)
    moment = as_naive_utc(now)

    customer = _lock_customer(db_session, customer_id)
    current_balance = to_money(customer.wallet_balance, "wallet_balance")
    current_version = customer.wallet_version
    new_balance = (current_balance + delta).quantize(CENT)

    if new_balance < 0:
        logger.warning(
            "Rejected %s of %s for customer %s: balance %s is insufficient",
            kind.value,
            delta,
            customer_id,
            current_balance,
        )
        raise InsufficientFunds(
            customer_id=customer_id,
            balance=float(current_balance),
            requested=float(-delta),
        )

    result = db_session.execute(
        update(Customer)
        .where(
            Customer.id == customer_id,
            Customer.wallet_version == current_version,
            Customer.wallet_balance + delta >= 0,
        )
        .values(
            wallet_balance=Customer.wallet_balance + delta,
            wallet_version=Customer.wallet_version + 1,
            updated_at=moment,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.warning(
            "Wallet of customer %s changed concurrently (version %s); movement aborted",
            customer_id,
            current_version,
        )
        raise PaymentFailure(
            "Wallet balance changed concurrently; please retry",
            retryable=True,
            customer_id=customer_id,
        )
    db_session.expire(customer, ["wallet_balance", "wallet_version", "updated_at"])

    transaction = WalletTransaction(
        restaurant_id=customer.restaurant_id,
        customer_id=customer_id,
        type=kind.value,
        amount=delta,
        balance_after=new_balance,
        description=description,
        reference_type=ref_type,
        reference_id=str(reference_id) if reference_id is not None else None,
        staff_id=staff_id,
        branch_id=branch_id,
        created_at=moment,
    )
    db_session.add(transaction)
    db_session.flush()

    logger.info(
        "Wallet %s applied for customer %s: amount=%s balance_after=%s transaction=%s",
        kind.value,
        customer_id,
        delta,
        new_balance,
        transaction.id,
    )
    return transaction


def apply_transaction(
    customer_id: int,
    transaction_type: str | TransactionType,
    amount,
    *,
    description: str | None = None,
    reference_type: str | ReferenceType | None = None,
    reference_id: str | int | None = None,
    staff_id: int | None = None,
    branch_id: int | None = None,
    now: datetime | None = None,
) -> int:
    """Apply a signed movement in its own transaction and return the ledger row id."""
    with wallet_session(customer_id) as db_session:
        transaction = apply_transaction_in_session(
            db_session,
            customer_id,
            transaction_type,
            amount,
            description=description,
            reference_type=reference_type,
            reference_id=reference_id,
            staff_id=staff_id,
            branch_id=branch_id,
            now=now,
        )
        return transaction.id


def undo_top_up(
    transaction_id: int,
    *,
    staff_id: int | None = None,
    reason: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Reverse a top-up with a compensating adjustment.

    Only top-ups younger than five minutes can be undone, and each one only
    once. The adjustment goes through the regular ledger path, so it fails
    with InsufficientFunds when the topped-up money has already been spent.
    """
    moment = as_naive_utc(now)

    with get_session() as db_session:
        original = db_session.get(WalletTransaction, transaction_id)
        if original is None:
            raise NotFound(
                f"Transaction {transaction_id} not found", transaction_id=transaction_id
            )
        customer_id = original.customer_id

    with wallet_session(customer_id) as db_session:
        original = db_session.get(WalletTransaction, transaction_id)
        if original.type != TransactionType.TOP_UP.value:
            raise ValidationError(
                f"Transaction {transaction_id} is a {original.type}, only top-ups can be undone",
                transaction_id=transaction_id,
            )

        elapsed = moment - original.created_at
        if elapsed > TOP_UP_UNDO_WINDOW:
            logger.warning(
                "Undo of top-up %s rejected: %ss elapsed",
                transaction_id,
                int(elapsed.total_seconds()),
            )
            raise WindowExpired(
                "Top-ups can only be undone within 5 minutes",
                transaction_id=transaction_id,
            )

        already_undone = db_session.execute(
            select(WalletTransaction.id).where(
                WalletTransaction.customer_id == customer_id,
                WalletTransaction.type == TransactionType.ADJUSTMENT.value,
                WalletTransaction.reference_type == ReferenceType.MANUAL.value,
                WalletTransaction.reference_id == str(transaction_id),
            )
        ).first()
        if already_undone is not None:
            raise ValidationError(
                f"Top-up {transaction_id} has already been undone",
                transaction_id=transaction_id,
            )

        adjustment = apply_transaction_in_session(
            db_session,
            customer_id,
            TransactionType.ADJUSTMENT,
            -to_money(original.amount),
            description=f"Undo top-up #{transaction_id}" + (f": {reason}" if reason else ""),
            reference_type=ReferenceType.MANUAL,
            reference_id=transaction_id,
            staff_id=staff_id,
            branch_id=original.branch_id,
            now=moment,
        )
        return serialize_transaction(adjustment)


def get_balance(customer_id: int) -> Decimal:
    with get_session() as db_session:
        customer = _get_customer(db_session, customer_id)
        return to_money(customer.wallet_balance, "wallet_balance")


def get_wallet(customer_id: int) -> dict[str, Any]:
    with get_session() as db_session:
        customer = _get_customer(db_session, customer_id)
        return {
            "customer_id": customer.id,
            "restaurant_id": customer.restaurant_id,
            "wallet_balance": float(customer.wallet_balance),
        }


def get_history(customer_id: int, limit: int | None = None) -> list[dict[str, Any]]:
    """
    Return the customer's ledger, newest entry first.

    ``limit=None`` returns every entry; any other value is clamped to the
    usual page size bounds.
    """
    with get_session() as db_session:
        _get_customer(db_session, customer_id)
        stmt = (
            select(WalletTransaction)
            .where(WalletTransaction.customer_id == customer_id)
            .order_by(WalletTransaction.created_at.desc(), WalletTransaction.id.desc())
        )
        if limit is not None:
            _, limit = validate_pagination(1, limit)
            stmt = stmt.limit(limit)
        transactions = db_session.execute(stmt).scalars().all()
        return [serialize_transaction(transaction) for transaction in transactions]


def can_afford(customer_id: int, amount) -> bool:
    """
    Advisory affordability check without taking any lock.

    A True answer can be stale by the time the debit runs; the ledger checks
    the balance again under the lock.
    """
    required = to_money(amount)
    return get_balance(customer_id) >= required


def top_up(
    customer_id: int,
    amount,
    *,
    staff_id: int | None = None,
    branch_id: int | None = None,
    description: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    credit = validate_positive_amount(amount)
    with wallet_session(customer_id) as db_session:
        transaction = apply_transaction_in_session(
            db_session,
            customer_id,
            TransactionType.TOP_UP,
            credit,
            description=description or "Wallet top-up",
            reference_type=ReferenceType.MANUAL,
            staff_id=staff_id,
            branch_id=branch_id,
            now=now,
        )
        return serialize_transaction(transaction)


def pay_with_wallet(
    customer_id: int,
    amount,
    *,
    reference_type: str | ReferenceType = ReferenceType.ORDER,
    reference_id: str | int | None = None,
    description: str | None = None,
    staff_id: int | None = None,
    branch_id: int | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Debit ``amount`` (a positive number) from the wallet."""
    debit = validate_positive_amount(amount)
    if not can_afford(customer_id, debit):
        logger.warning("Customer %s cannot afford payment of %s", customer_id, debit)
        raise InsufficientFunds(customer_id=customer_id, requested=float(debit))

    with wallet_session(customer_id) as db_session:
        transaction = apply_transaction_in_session(
            db_session,
            customer_id,
            TransactionType.PAYMENT,
            -debit,
            description=description or "Wallet payment",
            reference_type=reference_type,
            reference_id=reference_id,
            staff_id=staff_id,
            branch_id=branch_id,
            now=now,
        )
        return serialize_transaction(transaction)


def refund_to_wallet(
    customer_id: int,
    amount,
    *,
    reference_type: str | ReferenceType = ReferenceType.ORDER,
    reference_id: str | int | None = None,
    description: str | None = None,
    staff_id: int | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    credit = validate_positive_amount(amount)
    with wallet_session(customer_id) as db_session:
        transaction = apply_transaction_in_session(
            db_session,
            customer_id,
            TransactionType.REFUND,
            credit,
            description=description or "Wallet refund",
            reference_type=reference_type,
            reference_id=reference_id,
            staff_id=staff_id,
            now=now,
        )
        return serialize_transaction(transaction)


def pay_qr(
    customer_id: int,
    amount,
    *,
    branch_id: int | None,
    staff_id: int | None = None,
    description: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Charge an in-store QR payment at ``branch_id`` against the wallet."""
    require(branch_id, "branch_id")
    reference = f"QR-{uuid.uuid4().hex[:12].upper()}"
    return pay_with_wallet(
        customer_id,
        amount,
        reference_type=ReferenceType.QR_PAYMENT,
        reference_id=reference,
        description=description or "QR payment",
        staff_id=staff_id,
        branch_id=branch_id,
        now=now,
    )
