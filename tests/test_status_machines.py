import logging

import pytest

from storefront_orders.domain.errors import InvalidTransitionError
from storefront_orders.domain.order import Order, OrderItem, ShippingAddress
from storefront_orders.domain.status import (
    ORDER_TRANSITIONS,
    PAYMENT_TRANSITIONS,
    OrderStatus,
    PaymentStatus,
)

ALLOWED = {
    ("pending", "processing"),
    ("pending", "cancelled"),
    ("processing", "shipped"),
    ("processing", "cancelled"),
    ("shipped", "delivered"),
}

DISALLOWED = [
    (current, target)
    for current in OrderStatus
    for target in OrderStatus
    if (current.value, target.value) not in ALLOWED
]


def new_order() -> Order:
    return Order.create(
        [OrderItem(product_id="p-reverb", name="Abyss Reverb", price=10, quantity=1)],
        ShippingAddress("Ada Lovelace", "12 Analytical Way", "London", "Greater London", "NW1 6XE"),
        "card",
        "user-1",
    )


def order_in(status: OrderStatus) -> Order:
    order = new_order()
    order._status = status
    return order


def test_tables_cover_every_state():
    assert set(ORDER_TRANSITIONS) == set(OrderStatus)
    assert set(PAYMENT_TRANSITIONS) == set(PaymentStatus)
    assert {s for s in OrderStatus if s.is_terminal} == {OrderStatus.DELIVERED, OrderStatus.CANCELLED}


@pytest.mark.parametrize("current,target", sorted(ALLOWED))
def test_allowed_transitions(current, target):
    order = order_in(OrderStatus(current))
    order.transition(target)
    assert order.status == OrderStatus(target)


@pytest.mark.parametrize("current,target", DISALLOWED, ids=lambda s: s.value)
def test_disallowed_transitions_leave_status_unchanged(current, target):
    order = order_in(current)
    with pytest.raises(InvalidTransitionError) as info:
        order.transition(target)
    assert order.status == current
    assert info.value.status_code == 409
    assert info.value.details == {"dimension": "status", "current": current.value, "target": target.value}


def test_full_fulfillment_path():
    order = new_order()
    for status in ("processing", "shipped", "delivered"):
        order.transition(status)
    assert order.status == OrderStatus.DELIVERED
    assert order.status.is_terminal


def test_processing_cannot_go_back_to_pending():
    order = new_order().transition("processing")
    with pytest.raises(InvalidTransitionError):
        order.transition("pending")
    assert order.status == OrderStatus.PROCESSING


def test_mark_paid_is_idempotent():
    order = new_order()
    order.mark_paid("pi_123")
    stamp = order.updated_at

    order.mark_paid()

    assert order.payment_status == PaymentStatus.PAID
    assert order.payment_intent_id == "pi_123"
    assert order.updated_at == stamp


def test_mark_failed_is_idempotent():
    order = new_order().mark_failed()
    order.mark_failed()
    assert order.payment_status == PaymentStatus.FAILED


def test_failed_payment_cannot_become_paid():
    order = new_order().mark_failed()
    with pytest.raises(InvalidTransitionError):
        order.mark_paid("pi_late")
    assert order.payment_status == PaymentStatus.FAILED
    assert order.payment_intent_id is None


def test_paid_payment_cannot_become_failed():
    order = new_order().mark_paid("pi_123")
    with pytest.raises(InvalidTransitionError):
        order.mark_failed()
    assert order.payment_status == PaymentStatus.PAID


def test_new_intent_overwrites_and_warns(caplog):
    order = new_order().mark_paid("pi_first")

    with caplog.at_level(logging.WARNING, logger="storefront_orders.domain.order"):
        order.mark_paid("pi_second")

    assert order.payment_intent_id == "pi_second"
    assert order.payment_status == PaymentStatus.PAID
    assert any("overwritten" in record.getMessage() for record in caplog.records)


def test_payment_and_fulfillment_are_independent():
    order = new_order().transition("processing").transition("shipped")
    order.mark_paid("pi_123")
    assert (order.status, order.payment_status) == (OrderStatus.SHIPPED, PaymentStatus.PAID)

    refunded = new_order().mark_paid("pi_456")
    refunded.transition("cancelled")
    assert (refunded.status, refunded.payment_status) == (OrderStatus.CANCELLED, PaymentStatus.PAID)
