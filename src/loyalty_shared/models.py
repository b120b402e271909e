"""
SQLAlchemy ORM models shared by the loyalty services.
"""

from __future__ import annotations

import json
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.types import TypeDecorator

from .constants import STATUS_TIMESTAMP_FIELDS, OrderStatus
from .datetime_utils import utcnow

MONEY = Numeric(12, 2)


class JSONBType(TypeDecorator):
    """
    JSONB on PostgreSQL, TEXT with JSON serialization everywhere else.

    This allows tests to run with SQLite while production uses PostgreSQL JSONB.
    """

    impl = Text
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(Text())

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if dialect.name == "postgresql":
            return value
        return json.dumps(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if dialect.name == "postgresql":
            return value
        if isinstance(value, str):
            return json.loads(value)
        return value

    @property
    def python_type(self):
        return object


JSONB_TYPE = JSONBType()


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class Customer(Base):
    __tablename__ = "customers"
    __table_args__ = (
        CheckConstraint("wallet_balance >= 0", name="ck_customer_wallet_non_negative"),
        Index("ix_customer_restaurant_id", "restaurant_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    restaurant_id: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    # Mutated only by the wallet ledger
    wallet_balance: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    wallet_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    addresses: Mapped[list[CustomerAddress]] = relationship(
        "CustomerAddress", back_populates="customer"
    )
    transactions: Mapped[list[WalletTransaction]] = relationship(
        "WalletTransaction",
        back_populates="customer",
        order_by="WalletTransaction.id",
    )
    orders: Mapped[list[Order]] = relationship("Order", back_populates="customer")


class CustomerAddress(Base):
    __tablename__ = "customer_addresses"
    __table_args__ = (Index("ix_customer_address_customer_id", "customer_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    restaurant_id: Mapped[int] = mapped_column(Integer, nullable=False)
    customer_id: Mapped[int] = mapped_column(ForeignKey("customers.id"), nullable=False)
    label: Mapped[str] = mapped_column(String(64), nullable=False, default="Home")
    address_line1: Mapped[str] = mapped_column(String(255), nullable=False)
    address_line2: Mapped[str | None] = mapped_column(String(255), nullable=True)
    city: Mapped[str] = mapped_column(String(120), nullable=False)
    area: Mapped[str | None] = mapped_column(String(120), nullable=True)
    building: Mapped[str | None] = mapped_column(String(120), nullable=True)
    floor: Mapped[str | None] = mapped_column(String(32), nullable=True)
    apartment: Mapped[str | None] = mapped_column(String(32), nullable=True)
    instructions: Mapped[str | None] = mapped_column(Text, nullable=True)
    latitude: Mapped[Decimal | None] = mapped_column(Numeric(9, 6), nullable=True)
    longitude: Mapped[Decimal | None] = mapped_column(Numeric(9, 6), nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    customer: Mapped[Customer] = relationship("Customer", back_populates="addresses")

    def to_snapshot(self) -> dict[str, Any]:
        """Copy of the address as stored on a delivery order."""
        return {
            "address_id": self.id,
            "label": self.label,
            "address_line1": self.address_line1,
            "address_line2": self.address_line2,
            "city": self.city,
            "area": self.area,
            "building": self.building,
            "floor": self.floor,
            "apartment": self.apartment,
            "instructions": self.instructions,
            "latitude": float(self.latitude) if self.latitude is not None else None,
            "longitude": float(self.longitude) if self.longitude is not None else None,
        }


class MenuItem(Base):
    __tablename__ = "menu_items"
    __table_args__ = (
        CheckConstraint(
            "points_discount_percent >= 0 AND points_discount_percent <= 100",
            name="ck_menu_item_points_discount_range",
        ),
        Index("ix_menu_item_restaurant_id", "restaurant_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    restaurant_id: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    price: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    pricing_type: Mapped[str] = mapped_column(String(32), nullable=False, default="price_only")
    points_price: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    points_discount_percent: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class Rider(Base):
    __tablename__ = "riders"
    __table_args__ = (Index("ix_rider_restaurant_active", "restaurant_id", "is_active"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    restaurant_id: Mapped[int] = mapped_column(Integer, nullable=False)
    branch_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    phone: Mapped[str] = mapped_column(String(32), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class WalletTransaction(Base):
    """
    Immutable ledger entry. ``balance_after`` is the running balance at the
    moment the row was inserted.
    """

    __tablename__ = "wallet_transactions"
    __table_args__ = (
        Index("ix_wallet_transaction_customer", "customer_id", "created_at"),
        Index("ix_wallet_transaction_restaurant", "restaurant_id", "created_at"),
        Index("ix_wallet_transaction_reference", "reference_type", "reference_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    restaurant_id: Mapped[int] = mapped_column(Integer, nullable=False)
    customer_id: Mapped[int] = mapped_column(ForeignKey("customers.id"), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    reference_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    reference_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    staff_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    branch_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    customer: Mapped[Customer] = relationship("Customer", back_populates="transactions")


@event.listens_for(WalletTransaction, "before_update")
def _reject_ledger_update(mapper, connection, target) -> None:
    raise ValueError(f"Wallet transaction {target.id} is append-only and cannot be updated")


@event.listens_for(WalletTransaction, "before_delete")
def _reject_ledger_delete(mapper, connection, target) -> None:
    raise ValueError(f"Wallet transaction {target.id} is append-only and cannot be deleted")


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        Index("ix_order_customer", "customer_id", "created_at"),
        Index("ix_order_restaurant_status", "restaurant_id", "status", "created_at"),
        Index("ix_order_branch", "branch_id", "status", "created_at"),
        Index("ix_order_rider_id", "rider_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    restaurant_id: Mapped[int] = mapped_column(Integer, nullable=False)
    customer_id: Mapped[int] = mapped_column(ForeignKey("customers.id"), nullable=False)
    branch_id: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")
    # Snapshot of catalog data taken at checkout
    items: Mapped[list[dict[str, Any]]] = mapped_column(JSONB_TYPE, nullable=False, default=list)
    subtotal: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    total_points_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    payment_method: Mapped[str] = mapped_column(String(32), nullable=False, default="wallet")
    payment_status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")
    address_id: Mapped[int | None] = mapped_column(
        ForeignKey("customer_addresses.id"), nullable=True
    )
    delivery_address: Mapped[dict[str, Any] | None] = mapped_column(JSONB_TYPE, nullable=True)
    rider_id: Mapped[int | None] = mapped_column(ForeignKey("riders.id"), nullable=True)
    rider_assigned_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    estimated_ready_time: Mapped[int] = mapped_column(Integer, nullable=False, default=20)
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    preparing_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    ready_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    out_for_delivery_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    customer: Mapped[Customer] = relationship("Customer", back_populates="orders")
    rider: Mapped[Rider | None] = relationship("Rider")
    history: Mapped[list[OrderStatusHistory]] = relationship(
        "OrderStatusHistory",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderStatusHistory.id",
    )
    messages: Mapped[list[OrderMessage]] = relationship(
        "OrderMessage",
        back_populates="order",
        order_by="OrderMessage.id",
    )

    def mark_status(self, status: OrderStatus, now: datetime) -> None:
        """
        Write ``status`` together with its timestamp column and a history row.

        Transition legality is checked by the order state machine before this
        is called.
        """
        status = OrderStatus(status)
        self.status = status.value
        timestamp_field = STATUS_TIMESTAMP_FIELDS.get(status)
        if timestamp_field:
            setattr(self, timestamp_field, now)
        self.updated_at = now
        self.history.append(OrderStatusHistory(status=status.value, changed_at=now))


class OrderStatusHistory(Base):
    __tablename__ = "order_status_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    changed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    order: Mapped[Order] = relationship("Order", back_populates="history")


class OrderMessage(Base):
    __tablename__ = "order_messages"
    __table_args__ = (Index("ix_order_message_order", "order_id", "created_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"), nullable=False)
    sender_type: Mapped[str] = mapped_column(String(16), nullable=False)
    sender_id: Mapped[int] = mapped_column(Integer, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    order: Mapped[Order] = relationship("Order", back_populates="messages")


class OrderNumberSequence(Base):
    """Per-day counter backing human-facing order numbers."""

    __tablename__ = "order_number_sequences"
    __table_args__ = (
        UniqueConstraint("period_key", name="uq_order_number_sequence_period"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    period_key: Mapped[str] = mapped_column(String(8), nullable=False)
    last_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
