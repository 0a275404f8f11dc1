from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Optional

from storefront_orders.domain.order import MAX_QUANTITY
from storefront_orders.domain.status import OrderStatus, PaymentMethod, PaymentStatus

class OrderItemCreate(BaseModel):
    product_id: str = Field(..., min_length=1, description="Catalog product identifier")
    quantity: int = Field(..., ge=1, le=MAX_QUANTITY)
    model_config = ConfigDict(str_strip_whitespace=True)

class ShippingAddressCreate(BaseModel):
    full_name: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zip_code: str = Field(..., min_length=1)
    # Falls back to the configured home country
    country: Optional[str] = None
    model_config = ConfigDict(str_strip_whitespace=True)

class OrderCreate(BaseModel):
    # Emptiness is a domain rule, checked by the aggregate
    items: list[OrderItemCreate]
    shipping_address: ShippingAddressCreate
    payment_method: PaymentMethod = PaymentMethod.CARD
    notes: Optional[str] = None

class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    tracking_number: Optional[str] = None

class PaymentStatusUpdate(BaseModel):
    payment_status: PaymentStatus
    payment_intent_id: Optional[str] = None

class OrderDetailsUpdate(BaseModel):
    """Administrative edits; an explicit null clears the field"""
    tracking_number: Optional[str] = None
    notes: Optional[str] = None

class OrderItemRead(BaseModel):
    product_id: str
    name: str
    price: float
    quantity: int
    icon: str
    subtotal: float
    model_config = ConfigDict(from_attributes=True)

class ShippingAddressRead(BaseModel):
    full_name: str
    address: str
    city: str
    state: str
    zip_code: str
    country: str
    model_config = ConfigDict(from_attributes=True)

class OrderRead(BaseModel):
    id: str
    order_number: str
    user_id: str
    items: list[OrderItemRead]
    total: float
    status: OrderStatus
    payment_status: PaymentStatus
    payment_method: PaymentMethod
    payment_intent_id: Optional[str] = None
    tracking_number: Optional[str] = None
    notes: Optional[str] = None
    shipping_address: ShippingAddressRead
    created_at: datetime
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)

class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    pages: int

class OrderPage(BaseModel):
    orders: list[OrderRead]
    pagination: Pagination

class OrderResult(BaseModel):
    order: OrderRead
    # Non-fatal problems, e.g. the confirmation email could not be delivered
    warnings: list[str] = Field(default_factory=list)
