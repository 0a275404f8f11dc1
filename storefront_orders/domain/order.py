"""
Order aggregate root.

The aggregate owns its line items, shipping address and derived total.
Invariants are enforced by the constructor and every mutator, so an
``Order`` value is never observed with no items or a stale total.
"""

import random
import string
import time
import uuid
from dataclasses import dataclass, fields, replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable, List, Optional, Tuple, Union

from storefront_orders.core.logging_config import get_logger
from .errors import InvalidTransitionError, ValidationError
from .status import (
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    can_transition,
    can_transition_payment,
)

logger = get_logger(__name__)

DEFAULT_ICON = "📦"
DEFAULT_COUNTRY = "United States"
NOTES_MAX_LENGTH = 500
MAX_QUANTITY = 10_000
# Largest amount a NUMERIC(10, 2) column holds
MAX_AMOUNT = Decimal("99999999.99")
CENT = Decimal("0.01")

MoneyLike = Union[Decimal, int, float, str]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_money(value: MoneyLike) -> Decimal:
    """Coerce a price to a two-place Decimal (floats go through ``str``)"""
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid monetary amount: {value!r}")
    if not amount.is_finite():
        raise ValidationError(f"Invalid monetary amount: {value!r}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def generate_order_number() -> str:
    """Human-facing reference in format ORD-<base36 millis>-<5 random chars>"""
    alphabet = string.digits + string.ascii_uppercase
    millis = int(time.time() * 1000)
    stamp = ""
    while millis:
        millis, rem = divmod(millis, 36)
        stamp = alphabet[rem] + stamp
    suffix = "".join(random.choices(alphabet, k=5))
    return f"ORD-{stamp}-{suffix}"


@dataclass(frozen=True)
class OrderItem:
    """Line item with name and price snapshotted at order time"""
    product_id: str
    name: str
    price: Decimal
    quantity: int
    icon: str = DEFAULT_ICON

    def __post_init__(self):
        object.__setattr__(self, "product_id", str(self.product_id).strip())
        object.__setattr__(self, "price", to_money(self.price))
        object.__setattr__(self, "icon", self.icon or DEFAULT_ICON)
        if not self.product_id:
            raise ValidationError("Product ID is required")
        if self.price < 0:
            raise ValidationError(
                f"Price must not be negative for {self.name!r}",
                {"product_id": self.product_id, "price": str(self.price)},
            )
        if self.price > MAX_AMOUNT:
            raise ValidationError(
                f"Price must be at most {MAX_AMOUNT} for {self.name!r}",
                {"product_id": self.product_id, "price": str(self.price)},
            )
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int) or self.quantity < 1:
            raise ValidationError(
                "Quantity must be at least 1",
                {"product_id": self.product_id, "quantity": self.quantity},
            )
        if self.quantity > MAX_QUANTITY:
            raise ValidationError(
                f"Quantity must be at most {MAX_QUANTITY}",
                {"product_id": self.product_id, "quantity": self.quantity},
            )

    @property
    def subtotal(self) -> Decimal:
        return self.price * self.quantity


@dataclass(frozen=True)
class ShippingAddress:
    full_name: str
    address: str
    city: str
    state: str
    zip_code: str
    country: str = DEFAULT_COUNTRY

    def __post_init__(self):
        for f in fields(self):
            object.__setattr__(self, f.name, (getattr(self, f.name) or "").strip())
        if not self.country:
            object.__setattr__(self, "country", DEFAULT_COUNTRY)


def _compute_total(items: Iterable[OrderItem]) -> Decimal:
    total = sum((item.subtotal for item in items), Decimal("0.00"))
    if total > MAX_AMOUNT:
        raise ValidationError(
            f"Order total must be at most {MAX_AMOUNT}",
            {"total": str(total), "max_total": str(MAX_AMOUNT)},
        )
    return total


def _clean_optional(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _check_notes(notes: Optional[str], max_length: Optional[int]) -> Optional[str]:
    notes = _clean_optional(notes)
    if notes is not None and max_length is not None and len(notes) > max_length:
        raise ValidationError(
            f"Notes must be at most {max_length} characters",
            {"length": len(notes), "max_length": max_length},
        )
    return notes


class Order:
    """
    Order aggregate root.

    ``total`` is derived from ``items`` and has no setter. Fulfillment
    ``status`` and ``payment_status`` move only through ``transition``,
    ``mark_paid`` and ``mark_failed``.
    """

    def __init__(
        self,
        *,
        id: str,
        order_number: str,
        user_id: str,
        items: Iterable[OrderItem],
        shipping_address: ShippingAddress,
        payment_method: PaymentMethod,
        status: OrderStatus,
        payment_status: PaymentStatus,
        created_at: datetime,
        updated_at: datetime,
        payment_intent_id: Optional[str] = None,
        tracking_number: Optional[str] = None,
        notes: Optional[str] = None,
        customer_email: Optional[str] = None,
        customer_name: Optional[str] = None,
        version: Optional[int] = None,
        notes_max_length: Optional[int] = NOTES_MAX_LENGTH,
    ):
        items = list(items)
        if not items:
            raise ValidationError("Order must have at least one item")
        self.id = id
        self.order_number = order_number
        self.user_id = str(user_id)
        self._items: List[OrderItem] = items
        self._total = _compute_total(items)
        self.shipping_address = shipping_address
        self.payment_method = _coerce(PaymentMethod, payment_method, "payment method")
        self._status = _coerce(OrderStatus, status, "status")
        self._payment_status = _coerce(PaymentStatus, payment_status, "payment status")
        self.payment_intent_id = _clean_optional(payment_intent_id)
        self.tracking_number = _clean_optional(tracking_number)
        self.notes = _check_notes(notes, notes_max_length)
        self.customer_email = customer_email
        self.customer_name = customer_name
        self.created_at = created_at
        self.updated_at = updated_at
        # Optimistic concurrency token; None until first persisted
        self.version = version

    @classmethod
    def create(
        cls,
        items: Iterable[OrderItem],
        shipping_address: ShippingAddress,
        payment_method: Union[PaymentMethod, str],
        user_id: str,
        notes: Optional[str] = None,
        customer_email: Optional[str] = None,
        customer_name: Optional[str] = None,
        notes_max_length: int = NOTES_MAX_LENGTH,
    ) -> "Order":
        """Build a new order in pending/pending state with a computed total"""
        now = utcnow()
        return cls(
            id=uuid.uuid4().hex,
            order_number=generate_order_number(),
            user_id=user_id,
            items=items,
            shipping_address=shipping_address,
            payment_method=payment_method,
            status=OrderStatus.PENDING,
            payment_status=PaymentStatus.PENDING,
            notes=notes,
            customer_email=customer_email,
            customer_name=customer_name,
            created_at=now,
            updated_at=now,
            notes_max_length=notes_max_length,
        )

    def __repr__(self) -> str:
        return (
            f"<Order {self.id} {self.order_number} status={self._status.value} "
            f"payment={self._payment_status.value} total={self._total}>"
        )

    # -- read-only views -------------------------------------------------

    @property
    def items(self) -> Tuple[OrderItem, ...]:
        return tuple(self._items)

    @property
    def total(self) -> Decimal:
        return self._total

    @property
    def status(self) -> OrderStatus:
        return self._status

    @property
    def payment_status(self) -> PaymentStatus:
        return self._payment_status

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self._items)

    # -- item mutation ---------------------------------------------------

    def _replace_items(self, items: List[OrderItem]) -> None:
        if not items:
            raise ValidationError("Order must have at least one item")
        total = _compute_total(items)
        self._items = items
        self._total = total
        self._touch()

    def add_item(self, item: OrderItem) -> "Order":
        self._replace_items(self._items + [item])
        return self

    def remove_item(self, product_id: str) -> "Order":
        """Drop every line for ``product_id``; the last line cannot be removed"""
        remaining = [item for item in self._items if item.product_id != str(product_id)]
        if len(remaining) == len(self._items):
            raise ValidationError(f"Product {product_id} is not part of this order")
        self._replace_items(remaining)
        return self

    def change_quantity(self, product_id: str, quantity: int) -> "Order":
        product_id = str(product_id)
        if not any(item.product_id == product_id for item in self._items):
            raise ValidationError(f"Product {product_id} is not part of this order")
        self._replace_items([
            replace(item, quantity=quantity) if item.product_id == product_id else item
            for item in self._items
        ])
        return self

    # -- fulfillment status machine ---------------------------------------

    def transition(self, new_status: Union[OrderStatus, str]) -> "Order":
        target = _coerce(OrderStatus, new_status, "status")
        if not can_transition(self._status, target):
            raise InvalidTransitionError("status", self._status.value, target.value)
        logger.info(
            f"Order {self.id} status {self._status.value} -> {target.value}",
            extra={"extra_fields": {"order_id": self.id, "from": self._status.value, "to": target.value}},
        )
        self._status = target
        self._touch()
        return self

    # -- payment status tracker ------------------------------------------

    def mark_paid(self, payment_intent_id: Optional[str] = None) -> "Order":
        """
        Record that money was received.

        Calling this on an already paid order is a no-op for the status.
        A supplied intent id always overwrites the stored one.
        """
        intent = _clean_optional(payment_intent_id)
        if self._payment_status != PaymentStatus.PAID:
            if not can_transition_payment(self._payment_status, PaymentStatus.PAID):
                raise InvalidTransitionError(
                    "payment_status", self._payment_status.value, PaymentStatus.PAID.value
                )
            self._payment_status = PaymentStatus.PAID
            self._touch()
        if intent and intent != self.payment_intent_id:
            if self.payment_intent_id:
                logger.warning(
                    f"Order {self.id} payment intent overwritten",
                    extra={"extra_fields": {
                        "order_id": self.id,
                        "previous_intent": self.payment_intent_id,
                        "new_intent": intent,
                    }},
                )
            self.payment_intent_id = intent
            self._touch()
        return self

    def mark_failed(self) -> "Order":
        if self._payment_status == PaymentStatus.FAILED:
            return self
        if not can_transition_payment(self._payment_status, PaymentStatus.FAILED):
            raise InvalidTransitionError(
                "payment_status", self._payment_status.value, PaymentStatus.FAILED.value
            )
        self._payment_status = PaymentStatus.FAILED
        self._touch()
        return self

    # -- administrative edits --------------------------------------------

    def set_tracking_number(self, value: Optional[str]) -> "Order":
        self.tracking_number = _clean_optional(value)
        self._touch()
        return self

    def set_notes(self, value: Optional[str], max_length: int = NOTES_MAX_LENGTH) -> "Order":
        self.notes = _check_notes(value, max_length)
        self._touch()
        return self

    def _touch(self) -> None:
        now = utcnow()
        # Strictly increasing, even when the clock has not moved past the stored value
        if self.updated_at is not None:
            now = max(now, _aware(self.updated_at) + timedelta(microseconds=1))
        self.updated_at = now


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _coerce(enum_cls, value, label: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"Invalid {label} '{value}'. Allowed: {allowed}")
