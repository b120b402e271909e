"""
Pydantic schemas for request validation.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator, model_validator

from loyalty_shared.constants import OrderType, PaymentMethod, SenderType


class TopUpRequest(BaseModel):
    amount: float = Field(..., gt=0)
    branch_id: int | None = None
    description: str | None = Field(None, max_length=255)


class UndoTopUpRequest(BaseModel):
    reason: str | None = Field(None, max_length=255)


class QRPaymentRequest(BaseModel):
    amount: float = Field(..., gt=0)
    branch_id: int
    description: str | None = Field(None, max_length=255)


class OrderItemRequest(BaseModel):
    item_id: int
    quantity: int = Field(default=1, ge=1, le=99)
    use_points: bool = False


class DeliveryAddressRequest(BaseModel):
    label: str | None = None
    address_line1: str = Field(..., min_length=1, max_length=255)
    address_line2: str | None = None
    city: str = Field(..., min_length=1, max_length=120)
    area: str | None = None
    building: str | None = None
    floor: str | None = None
    apartment: str | None = None
    instructions: str | None = None


class CreateOrderRequest(BaseModel):
    customer_id: int | None = None
    branch_id: int
    type: OrderType
    items: list[OrderItemRequest] = Field(..., min_length=1, max_length=50)
    payment_method: PaymentMethod = PaymentMethod.WALLET
    address_id: int | None = None
    delivery_address: DeliveryAddressRequest | None = None
    notes: str | None = Field(None, max_length=500)

    @model_validator(mode="after")
    def check_delivery_address(self):
        if self.type == OrderType.DELIVERY and not (self.address_id or self.delivery_address):
            raise ValueError("Delivery orders require address_id or delivery_address")
        return self


class AcceptOrderRequest(BaseModel):
    estimated_ready_time: int | None = Field(None, ge=1, le=240)


class CancelOrderRequest(BaseModel):
    reason: str | None = Field(None, max_length=500)

    @field_validator("reason")
    @classmethod
    def strip_reason(cls, v):
        if v is None:
            return v
        return v.strip() or None


class RiderRequest(BaseModel):
    rider_id: int


class CreateRiderRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    phone: str = Field(..., min_length=3, max_length=32)
    branch_id: int | None = None


class SendMessageRequest(BaseModel):
    sender_type: SenderType
    message: str = Field(..., min_length=1, max_length=1000)

    @field_validator("message")
    @classmethod
    def strip_message(cls, v):
        stripped = v.strip()
        if not stripped:
            raise ValueError("message must not be blank")
        return stripped


class UpdateRiderRequest(BaseModel):
    is_active: bool
