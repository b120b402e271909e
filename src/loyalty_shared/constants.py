"""
Application constants and enums.
"""

from datetime import timedelta
from enum import Enum


class OrderStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    PREPARING = "preparing"
    READY = "ready"
    OUT_FOR_DELIVERY = "out_for_delivery"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class OrderType(str, Enum):
    PICKUP = "pickup"
    DELIVERY = "delivery"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    WALLET = "wallet"
    CASH_ON_DELIVERY = "cash_on_delivery"
    CARD = "card"


class TransactionType(str, Enum):
    TOP_UP = "top_up"
    PAYMENT = "payment"
    REFUND = "refund"
    ADJUSTMENT = "adjustment"


class ReferenceType(str, Enum):
    ORDER = "order"
    QR_PAYMENT = "qr_payment"
    MANUAL = "manual"


class SenderType(str, Enum):
    CUSTOMER = "customer"
    STAFF = "staff"


class PricingType(str, Enum):
    PRICE_ONLY = "price_only"
    POINTS_ONLY = "points_only"
    HYBRID = "hybrid"


# Forward path per order type; cancellation is handled separately.
ORDER_FLOWS: dict[OrderType, tuple[OrderStatus, ...]] = {
    OrderType.PICKUP: (
        OrderStatus.PENDING,
        OrderStatus.ACCEPTED,
        OrderStatus.PREPARING,
        OrderStatus.READY,
        OrderStatus.COMPLETED,
    ),
    OrderType.DELIVERY: (
        OrderStatus.PENDING,
        OrderStatus.ACCEPTED,
        OrderStatus.PREPARING,
        OrderStatus.READY,
        OrderStatus.OUT_FOR_DELIVERY,
        OrderStatus.COMPLETED,
    ),
}

TERMINAL_STATUSES = {
    OrderStatus.COMPLETED,
    OrderStatus.CANCELLED,
}

CANCELABLE_STATUSES = {
    OrderStatus.PENDING,
    OrderStatus.ACCEPTED,
    OrderStatus.PREPARING,
    OrderStatus.READY,
    OrderStatus.OUT_FOR_DELIVERY,
}

MESSAGEABLE_STATUSES = {
    OrderStatus.PENDING,
    OrderStatus.ACCEPTED,
    OrderStatus.PREPARING,
}

# Column stamped when an order enters each status
STATUS_TIMESTAMP_FIELDS = {
    OrderStatus.ACCEPTED: "accepted_at",
    OrderStatus.PREPARING: "preparing_at",
    OrderStatus.READY: "ready_at",
    OrderStatus.OUT_FOR_DELIVERY: "out_for_delivery_at",
    OrderStatus.COMPLETED: "completed_at",
    OrderStatus.CANCELLED: "cancelled_at",
}

CREDIT_TRANSACTION_TYPES = {TransactionType.TOP_UP, TransactionType.REFUND}
DEBIT_TRANSACTION_TYPES = {TransactionType.PAYMENT}

TOP_UP_UNDO_WINDOW = timedelta(minutes=5)
MESSAGING_DELAY = timedelta(minutes=10)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200
