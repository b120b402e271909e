"""
Rider reference data used when dispatching delivery orders.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from loyalty_shared.constants import OrderStatus, OrderType
from loyalty_shared.datetime_utils import utcnow
from loyalty_shared.db import get_session
from loyalty_shared.errors import NotFound, ReferentialFailure
from loyalty_shared.logging_config import get_logger
from loyalty_shared.models import Order, Rider
from loyalty_shared.serializers import serialize_rider
from loyalty_shared.validation import require

logger = get_logger(__name__)


def get_active_rider_in_session(db_session: Session, rider_id: int, restaurant_id: int) -> Rider:
    """Load a rider that can take a delivery for ``restaurant_id``."""
    rider = db_session.get(Rider, rider_id)
    if rider is None or rider.restaurant_id != restaurant_id:
        raise ReferentialFailure(f"Rider {rider_id} not found", rider_id=rider_id)
    if not rider.is_active:
        raise ReferentialFailure(f"Rider {rider.name} is not active", rider_id=rider_id)
    return rider


def find_busy_order_in_session(
    db_session: Session, rider_id: int, exclude_order_id: int | None = None
) -> Order | None:
    """Return another active delivery the rider is attached to, if any."""
    stmt = select(Order).where(
        Order.rider_id == rider_id,
        Order.type == OrderType.DELIVERY.value,
        Order.status.in_([OrderStatus.READY.value, OrderStatus.OUT_FOR_DELIVERY.value]),
    )
    if exclude_order_id is not None:
        stmt = stmt.where(Order.id != exclude_order_id)
    return db_session.execute(stmt.limit(1)).scalars().first()


def get_rider(rider_id: int) -> dict[str, Any]:
    with get_session() as db_session:
        rider = db_session.get(Rider, rider_id)
        if rider is None:
            raise NotFound(f"Rider {rider_id} not found", rider_id=rider_id)
        return serialize_rider(rider)


def list_active_riders(restaurant_id: int, branch_id: int | None = None) -> list[dict[str, Any]]:
    with get_session() as db_session:
        stmt = select(Rider).where(Rider.restaurant_id == restaurant_id, Rider.is_active.is_(True))
        if branch_id is not None:
            stmt = stmt.where(Rider.branch_id == branch_id)
        riders = db_session.execute(stmt.order_by(Rider.name)).scalars().all()
        return [serialize_rider(rider) for rider in riders]


def create_rider(
    restaurant_id: int, name: str, phone: str, branch_id: int | None = None
) -> dict[str, Any]:
    require(name, "name")
    require(phone, "phone")
    with get_session() as db_session:
        rider = Rider(
            restaurant_id=restaurant_id,
            branch_id=branch_id,
            name=name.strip(),
            phone=phone.strip(),
            is_active=True,
        )
        db_session.add(rider)
        db_session.flush()
        logger.info("Rider %s created for restaurant %s", rider.id, restaurant_id)
        return serialize_rider(rider)


def set_rider_active(rider_id: int, is_active: bool) -> dict[str, Any]:
    with get_session() as db_session:
        rider = db_session.get(Rider, rider_id)
        if rider is None:
            raise NotFound(f"Rider {rider_id} not found", rider_id=rider_id)
        rider.is_active = is_active
        rider.updated_at = utcnow()
        db_session.flush()
        return serialize_rider(rider)
