from decimal import Decimal

import aiosmtplib
import pydantic
import pytest

from conftest import order_payload
from storefront_orders.application.notifications import OrderNotifier
from storefront_orders.application.service import OrderService
from storefront_orders.application.schemas import OrderCreate, OrderDetailsUpdate
from storefront_orders.domain.errors import (
    ConflictError,
    InsufficientStockError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from storefront_orders.domain.models import OrderRecord
from storefront_orders.domain.status import OrderStatus, PaymentStatus
from storefront_orders.infrastructure.mailer import SMTPMailer


def place(service, *lines, user_id="user-1", **overrides):
    return service.create(user_id, OrderCreate.model_validate(order_payload(*lines, **overrides)))


def test_create_snapshots_catalog_and_reserves_stock(service, catalog_stub):
    order = place(service, ("p-reverb", 2), ("p-delay", 1))

    assert order.total == Decimal("25.00")
    assert [(i.name, i.price, i.icon) for i in order.items] == [
        ("Abyss Reverb", Decimal("10.00"), "🌌"),
        ("Void Delay", Decimal("5.00"), "📦"),
    ]
    assert order.shipping_address.full_name == "Ada Lovelace"
    assert order.shipping_address.country == "United States"
    assert order.customer_email == "user-1@example.com"
    assert catalog_stub.stock("p-reverb") == 8
    assert catalog_stub.stock("p-delay") == 2

    # Later catalog price changes do not touch the stored order
    catalog_stub.products["p-reverb"]["price"] = 99.0
    assert service.get(order.id).total == Decimal("25.00")


def test_unknown_product_persists_nothing(service, catalog_stub):
    with pytest.raises(NotFoundError, match="Product not found: p-missing"):
        place(service, ("p-reverb", 1), ("p-missing", 1))

    assert service.orders.count() == 0
    assert catalog_stub.adjustments == []


def test_insufficient_stock_is_rejected(service, catalog_stub):
    with pytest.raises(InsufficientStockError, match="Available: 3"):
        place(service, ("p-delay", 4))
    assert catalog_stub.stock("p-delay") == 3


def test_stock_check_sums_repeated_lines(service):
    with pytest.raises(InsufficientStockError):
        place(service, ("p-delay", 2), ("p-delay", 2))


def test_empty_order_is_rejected(service, catalog_stub):
    with pytest.raises(ValidationError, match="at least one item"):
        place(service)
    assert catalog_stub.adjustments == []


def test_failed_reservation_releases_earlier_lines(service, catalog_stub):
    catalog_stub.reject.add("p-delay")

    with pytest.raises(InsufficientStockError):
        place(service, ("p-reverb", 1), ("p-delay", 1))

    assert catalog_stub.adjustments == [("p-reverb", -1), ("p-reverb", 1)]
    assert catalog_stub.stock("p-reverb") == 10
    assert service.orders.count() == 0


def test_unexpected_error_while_persisting_releases_stock(service, catalog_stub, monkeypatch):
    def explode(order):
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(service.orders, "add", explode)

    with pytest.raises(RuntimeError):
        place(service, ("p-reverb", 2), ("p-delay", 1))

    assert catalog_stub.stock("p-reverb") == 10
    assert catalog_stub.stock("p-delay") == 3
    assert catalog_stub.adjustments[-2:] == [("p-reverb", 2), ("p-delay", 1)]


def test_oversized_quantity_is_rejected_at_the_boundary():
    with pytest.raises(pydantic.ValidationError):
        OrderCreate.model_validate(order_payload(("p-digital", 10**19)))


def test_total_beyond_money_column_reserves_nothing(service, catalog_stub):
    catalog_stub.add("p-digital", "Infinite Sample Pack", "99999999.99", 10**20)

    with pytest.raises(ValidationError, match="total must be at most"):
        place(service, ("p-digital", 2))

    assert catalog_stub.adjustments == []
    assert catalog_stub.stock("p-digital") == 10**20
    assert service.orders.count() == 0


def test_cancel_restores_stock(service, catalog_stub):
    order = place(service, ("p-reverb", 3))
    assert catalog_stub.stock("p-reverb") == 7

    cancelled = service.cancel(order.id)

    assert cancelled.status == OrderStatus.CANCELLED
    assert catalog_stub.stock("p-reverb") == 10


def test_cannot_cancel_shipped_order(service, catalog_stub):
    order = place(service, ("p-reverb", 1))
    service.update_status(order.id, OrderStatus.PROCESSING)
    service.update_status(order.id, OrderStatus.SHIPPED, tracking_number="TRK-9")

    with pytest.raises(InvalidTransitionError):
        service.cancel(order.id)

    stored = service.get(order.id)
    assert stored.status == OrderStatus.SHIPPED
    assert stored.tracking_number == "TRK-9"
    assert catalog_stub.stock("p-reverb") == 9


def test_update_payment_reports_first_transition_only(service):
    order = place(service, ("p-free", 1))

    _, newly_paid = service.update_payment(order.id, PaymentStatus.PAID, "pi_123")
    assert newly_paid is True

    again, newly_paid = service.update_payment(order.id, PaymentStatus.PAID)
    assert newly_paid is False
    assert again.payment_intent_id == "pi_123"


def test_payment_cannot_be_reset_to_pending(service):
    order = place(service, ("p-free", 1))
    with pytest.raises(InvalidTransitionError):
        service.update_payment(order.id, PaymentStatus.PENDING)


def test_update_details_touches_only_given_fields(service):
    order = place(service, ("p-reverb", 1), notes="ring twice")
    service.update_details(order.id, OrderDetailsUpdate(tracking_number="TRK-1"))

    stored = service.get(order.id)
    assert stored.tracking_number == "TRK-1"
    assert stored.notes == "ring twice"

    service.update_details(order.id, OrderDetailsUpdate(notes=None))
    assert service.get(order.id).notes is None


def test_update_details_enforces_notes_limit(service):
    order = place(service, ("p-reverb", 1))
    with pytest.raises(ValidationError):
        service.update_details(order.id, OrderDetailsUpdate(notes="n" * 501))


def test_list_orders_paginates(service):
    for _ in range(3):
        place(service, ("p-free", 1))
    place(service, ("p-free", 1), user_id="user-2")

    orders, pagination = service.list_orders(page=2, limit=3)
    assert len(orders) == 1
    assert pagination == {"total": 4, "page": 2, "limit": 3, "pages": 2}

    mine, pagination = service.list_for_user("user-2")
    assert [o.user_id for o in mine] == ["user-2"]
    assert pagination["total"] == 1
    assert len(service.list_pending()) == 4


def test_mutate_retries_after_conflict(service, monkeypatch):
    order = place(service, ("p-reverb", 1))
    original_save = service.orders.save
    calls = []

    def flaky_save(o):
        calls.append(o.status)
        if len(calls) == 1:
            raise ConflictError("simulated concurrent write")
        return original_save(o)

    monkeypatch.setattr(service.orders, "save", flaky_save)

    updated = service.update_status(order.id, OrderStatus.PROCESSING)

    assert len(calls) == 2
    assert updated.status == OrderStatus.PROCESSING
    assert service.get(order.id).status == OrderStatus.PROCESSING


def test_mutate_gives_up_after_retries(service, monkeypatch):
    order = place(service, ("p-reverb", 1))

    def always_conflict(o):
        raise ConflictError("simulated concurrent write")

    monkeypatch.setattr(service.orders, "save", always_conflict)

    with pytest.raises(ConflictError):
        service.update_status(order.id, OrderStatus.PROCESSING)
    assert service.get(order.id).status == OrderStatus.PENDING


@pytest.mark.asyncio
async def test_place_order_sends_confirmation(service, mailer):
    outcome = await service.place_order("user-1", OrderCreate.model_validate(order_payload(("p-reverb", 1))))
    order = outcome.order

    assert outcome.warnings == []
    assert len(mailer.sent) == 1
    assert mailer.sent[0]["to"] == "user-1@example.com"
    assert order.order_number in mailer.sent[0]["subject"]


@pytest.mark.asyncio
async def test_place_order_without_contact_skips_email(service, mailer):
    outcome = await service.place_order("ghost", OrderCreate.model_validate(order_payload(("p-reverb", 1))))

    assert outcome.order.customer_email is None
    assert outcome.warnings == []
    assert mailer.sent == []


@pytest.mark.asyncio
async def test_confirm_payment_emails_once(service, mailer):
    order = place(service, ("p-reverb", 1))

    outcome = await service.confirm_payment(order.id, PaymentStatus.PAID, "pi_123")
    assert outcome.order.payment_status == PaymentStatus.PAID
    assert outcome.warnings == []
    assert len(mailer.sent) == 1
    assert "Payment confirmed" in mailer.sent[0]["subject"]
    assert "pi_123" in mailer.sent[0]["html"]

    await service.confirm_payment(order.id, PaymentStatus.PAID)
    assert len(mailer.sent) == 1


@pytest.mark.asyncio
async def test_email_failure_does_not_undo_payment(service, mailer):
    order = place(service, ("p-reverb", 1))
    mailer.fail = True

    outcome = await service.confirm_payment(order.id, PaymentStatus.PAID, "pi_123")

    assert len(outcome.warnings) == 1
    assert "not delivered" in outcome.warnings[0]
    assert service.get(order.id).payment_status == PaymentStatus.PAID


@pytest.mark.asyncio
async def test_failed_payment_and_status_changes_send_no_email(service, mailer):
    order = place(service, ("p-reverb", 1))

    outcome = await service.confirm_payment(order.id, PaymentStatus.FAILED)
    service.update_status(order.id, OrderStatus.PROCESSING)
    service.update_status(order.id, OrderStatus.SHIPPED)

    assert outcome.order.payment_status == PaymentStatus.FAILED
    assert mailer.sent == []


@pytest.mark.asyncio
async def test_place_order_reports_email_failure(service, mailer):
    mailer.fail = True

    outcome = await service.place_order("user-1", OrderCreate.model_validate(order_payload(("p-reverb", 1))))

    assert outcome.warnings == ["order_placed email was not delivered: SMTP connection refused"]
    assert service.get(outcome.order.id).status == OrderStatus.PENDING


@pytest.mark.asyncio
async def test_unsendable_address_does_not_undo_payment(session, catalog, users, settings, monkeypatch):
    async def never(message, **kwargs):
        raise AssertionError("message must not be sent")

    monkeypatch.setattr(aiosmtplib, "send", never)
    service = OrderService(session, catalog, users, OrderNotifier(SMTPMailer("smtp.test")), settings)
    order = place(service, ("p-reverb", 1))
    record = session.query(OrderRecord).filter(OrderRecord.id == order.id).one()
    record.customer_email_snapshot = "a@b.com\r\nBcc: evil@x.com"
    session.commit()

    outcome = await service.confirm_payment(order.id, PaymentStatus.PAID, "pi_x")

    assert len(outcome.warnings) == 1
    assert "payment_confirmed email was not delivered" in outcome.warnings[0]
    assert service.get(order.id).payment_status == PaymentStatus.PAID
