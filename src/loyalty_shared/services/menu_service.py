"""
Menu snapshot pricing.

Checkout copies the catalog data of every ordered item into the order so that
later menu edits never change historical orders.

Examples:
    price_only item priced 12.00, quantity 2:
        unit_price = 12.00, points_used = 0
    hybrid item priced 20.00, 25% points discount, 150 points, use_points:
        unit_price = 15.00, points_used = 150
    points_only item worth 300 points:
        unit_price = 0.00, points_used = 300
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from loyalty_shared.constants import PricingType
from loyalty_shared.errors import ReferentialFailure, ValidationError
from loyalty_shared.models import MenuItem
from loyalty_shared.validation import CENT

HUNDRED = Decimal("100")


def calculate_unit_price(item: MenuItem, use_points: bool = False) -> tuple[Decimal, int]:
    """
    Return ``(unit_price, points_used)`` for one unit of ``item``.

    Args:
        item: Catalog entry
        use_points: Whether the customer redeems points on a hybrid item

    Returns:
        Money price per unit and loyalty points redeemed per unit
    """
    price = Decimal(str(item.price)).quantize(CENT)
    pricing = PricingType(item.pricing_type)

    if pricing == PricingType.POINTS_ONLY:
        return Decimal("0.00"), int(item.points_price or 0)

    if pricing == PricingType.HYBRID and use_points:
        discount = Decimal(item.points_discount_percent or 0)
        discounted = (price * (HUNDRED - discount) / HUNDRED).quantize(CENT, rounding=ROUND_HALF_UP)
        return discounted, int(item.points_price or 0)

    return price, 0


def build_item_snapshot(
    db_session: Session, restaurant_id: int, items: Iterable[Mapping[str, Any]]
) -> tuple[list[dict[str, Any]], Decimal, int]:
    """
    Price the requested items against the catalog and snapshot them.

    Each requested entry carries ``item_id``, ``quantity`` and optionally
    ``use_points``.

    Returns:
        (snapshot lines, subtotal, total points used)

    Raises:
        ValidationError: If no items or a non-positive quantity is requested
        ReferentialFailure: If an item is unknown, unavailable or belongs to
            another restaurant
    """
    requested = list(items)
    if not requested:
        raise ValidationError("Order must contain at least one item", field="items")

    item_ids = {entry.get("item_id") for entry in requested}
    catalog = {
        item.id: item
        for item in db_session.execute(select(MenuItem).where(MenuItem.id.in_(item_ids)))
        .scalars()
        .all()
    }

    snapshot: list[dict[str, Any]] = []
    subtotal = Decimal("0.00")
    total_points = 0
    for entry in requested:
        item_id = entry.get("item_id")
        quantity = entry.get("quantity", 1)
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
            raise ValidationError(
                "quantity must be a positive integer", field="quantity", item_id=item_id
            )

        item = catalog.get(item_id)
        if item is None or item.restaurant_id != restaurant_id:
            raise ReferentialFailure(f"Menu item {item_id} not found", item_id=item_id)
        if not item.is_available:
            raise ReferentialFailure(f"Menu item {item.name} is not available", item_id=item_id)

        unit_price, points_used = calculate_unit_price(item, bool(entry.get("use_points")))
        subtotal += unit_price * quantity
        total_points += points_used * quantity
        snapshot.append(
            {
                "item_id": item.id,
                "name": item.name,
                "pricing_type": item.pricing_type,
                "unit_price": float(unit_price),
                "points_used": points_used,
                "quantity": quantity,
            }
        )

    return snapshot, subtotal.quantize(CENT), total_points
