"""
Order number allocation.

Numbers look like ``ORD-20260218-0001``: a prefix, the UTC day of checkout and
a counter shared by every restaurant that restarts every day. The counter row
is locked while it is incremented, so two checkouts can never be handed the
same value.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from loyalty_shared.config import ORDER_NUMBER_PREFIX
from loyalty_shared.models import OrderNumberSequence


def period_key(issued_at: datetime) -> str:
    """Daily reset period for ``issued_at`` (naive UTC)."""
    return issued_at.strftime("%Y%m%d")


def format_order_number(key: str, value: int, prefix: str = ORDER_NUMBER_PREFIX) -> str:
    return f"{prefix}-{key}-{value:04d}"


def _ensure_sequence_row(db_session: Session, key: str) -> None:
    dialect = db_session.get_bind().dialect.name
    values = {"period_key": key, "last_value": 0}
    if dialect == "postgresql":
        stmt = postgresql.insert(OrderNumberSequence).values(**values)
    elif dialect == "sqlite":
        stmt = sqlite.insert(OrderNumberSequence).values(**values)
    else:
        existing = db_session.execute(
            select(OrderNumberSequence.id).where(OrderNumberSequence.period_key == key)
        ).first()
        if existing is None:
            db_session.add(OrderNumberSequence(**values))
            db_session.flush()
        return
    db_session.execute(stmt.on_conflict_do_nothing(index_elements=["period_key"]))


def next_order_number(db_session: Session, issued_at: datetime) -> str:
    """
    Allocate the next order number inside ``db_session``.

    The increment is part of the caller's transaction; a rolled back checkout
    gives its number back.
    """
    key = period_key(issued_at)
    _ensure_sequence_row(db_session, key)

    sequence = (
        db_session.execute(
            select(OrderNumberSequence)
            .where(OrderNumberSequence.period_key == key)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        .scalars()
        .one()
    )
    sequence.last_value += 1
    db_session.flush()
    return format_order_number(key, sequence.last_value)
