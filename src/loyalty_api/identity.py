"""
Acting identity for the current request.

The gateway in front of this service authenticates callers and forwards who
they are in ``X-Staff-Id``, ``X-Customer-Id`` and ``X-Restaurant-Id``.
"""

from __future__ import annotations

from flask import request

from loyalty_shared.errors import ValidationError


def _header_int(name: str) -> int | None:
    raw = request.headers.get(name)
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise ValidationError(f"Header {name} must be an integer", field=name) from exc


def current_staff_id() -> int | None:
    return _header_int("X-Staff-Id")


def current_customer_id() -> int | None:
    return _header_int("X-Customer-Id")


def current_restaurant_id() -> int:
    """Restaurant scope from ``X-Restaurant-Id`` or the ``restaurant_id`` query arg."""
    restaurant_id = _header_int("X-Restaurant-Id")
    if restaurant_id is None:
        restaurant_id = request.args.get("restaurant_id", type=int)
    if restaurant_id is None:
        raise ValidationError("restaurant_id is required", field="restaurant_id")
    return restaurant_id
