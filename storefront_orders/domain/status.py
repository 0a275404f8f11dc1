from enum import Enum
from typing import Dict, FrozenSet, Type


class OrderStatus(str, Enum):
    """Fulfillment progress of an order"""
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return not ORDER_TRANSITIONS[self]


class PaymentStatus(str, Enum):
    """Money-received state of an order"""
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return not PAYMENT_TRANSITIONS[self]


class PaymentMethod(str, Enum):
    CARD = "card"
    PAYPAL = "paypal"
    CASH = "cash"


ORDER_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

PAYMENT_TRANSITIONS: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.PAID, PaymentStatus.FAILED}),
    PaymentStatus.PAID: frozenset(),
    PaymentStatus.FAILED: frozenset(),
}


def _check_exhaustive(enum_cls: Type[Enum], table: Dict) -> None:
    missing = [member.value for member in enum_cls if member not in table]
    if missing:
        raise RuntimeError(
            f"{enum_cls.__name__} transition table is missing states: {', '.join(missing)}"
        )


# Adding a status without a table entry fails at import time
_check_exhaustive(OrderStatus, ORDER_TRANSITIONS)
_check_exhaustive(PaymentStatus, PAYMENT_TRANSITIONS)


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ORDER_TRANSITIONS[current]


def can_transition_payment(current: PaymentStatus, target: PaymentStatus) -> bool:
    return target in PAYMENT_TRANSITIONS[current]
