from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from dataclasses import dataclass, field
from math import ceil
from typing import Callable, Dict, List, Optional, Tuple, TypeVar

from storefront_orders.core_settings import Settings
from storefront_orders.core.logging_config import get_logger
from storefront_orders.domain.errors import (
    ConflictError,
    InsufficientStockError,
    InvalidTransitionError,
    NotFoundError,
    OrderError,
)
from storefront_orders.domain.order import Order, OrderItem, ShippingAddress
from storefront_orders.domain.status import OrderStatus, PaymentStatus
from storefront_orders.infrastructure.repository import OrderRepository
from .notifications import OrderNotifier
from .schemas import OrderCreate, OrderDetailsUpdate

logger = get_logger(__name__)

T = TypeVar("T")

@dataclass
class OrderOutcome:
    """A committed order change plus the non-fatal problems that followed it"""
    order: Order
    warnings: List[str] = field(default_factory=list)

class OrderService:
    def __init__(self, db: Session, catalog, users, notifier: OrderNotifier, settings: Settings):
        self.db = db
        self.orders = OrderRepository(db)
        self.catalog = catalog
        self.users = users
        self.notifier = notifier
        self.settings = settings

    # -- placement -------------------------------------------------------

    def create(self, user_id: str, data: OrderCreate) -> Order:
        """Snapshot catalog prices, reserve stock and persist a pending order"""
        items = []
        wanted: Dict[str, int] = {}
        products = {}
        for line in data.items:
            product = products.get(line.product_id) or self.catalog.get_product(line.product_id)
            if product is None:
                raise NotFoundError(f"Product not found: {line.product_id}", {"product_id": line.product_id})
            products[line.product_id] = product
            wanted[line.product_id] = wanted.get(line.product_id, 0) + line.quantity
            if product.stock < wanted[line.product_id]:
                raise InsufficientStockError(
                    f"Insufficient stock for {product.name}. Available: {product.stock}",
                    {"product_id": line.product_id, "available": product.stock},
                )
            items.append(OrderItem(
                product_id=line.product_id,
                name=product.name,
                price=product.price,
                quantity=line.quantity,
                icon=product.icon,
            ))

        address = data.shipping_address
        contact = self.users.get_contact(user_id)
        order = Order.create(
            items=items,
            shipping_address=ShippingAddress(
                full_name=address.full_name,
                address=address.address,
                city=address.city,
                state=address.state,
                zip_code=address.zip_code,
                country=address.country or self.settings.HOME_COUNTRY,
            ),
            payment_method=data.payment_method,
            user_id=user_id,
            notes=data.notes,
            customer_email=contact.email if contact else None,
            customer_name=contact.name if contact else None,
            notes_max_length=self.settings.NOTES_MAX_LENGTH,
        )

        reserved: List[Tuple[str, int]] = []
        try:
            for product_id, quantity in wanted.items():
                self.catalog.adjust_stock(product_id, -quantity)
                reserved.append((product_id, quantity))
            self.orders.add(order)
            self.db.commit()
        except Exception:
            self.db.rollback()
            self._restore_stock(reserved, reason=f"placement of {order.order_number} failed")
            raise

        logger.info(
            f"Order placed: {order.order_number}",
            extra={"extra_fields": {
                "order_id": order.id,
                "user_id": user_id,
                "total": str(order.total),
                "items": len(order.items),
            }},
        )
        return order

    async def place_order(self, user_id: str, data: OrderCreate) -> OrderOutcome:
        """Commit the order, then send the confirmation email; a failed email is a warning"""
        order = await run_in_threadpool(self.create, user_id, data)
        outcome = OrderOutcome(order=order)
        warning = await self.notifier.order_placed(order)
        if warning:
            outcome.warnings.append(warning)
        return outcome

    # -- queries ---------------------------------------------------------

    def get(self, order_id: str) -> Order:
        return self.orders.get(order_id)

    def list_for_user(self, user_id: str, page: int = 1, limit: Optional[int] = None) -> Tuple[List[Order], dict]:
        limit, offset = self._page(page, limit)
        orders = self.orders.find_by_user(user_id, limit=limit, offset=offset)
        return orders, self._pagination(self.orders.count(user_id=user_id), page, limit)

    def list_orders(
        self,
        status: Optional[OrderStatus] = None,
        payment_status: Optional[PaymentStatus] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> Tuple[List[Order], dict]:
        limit, offset = self._page(page, limit)
        orders = self.orders.list(status=status, payment_status=payment_status, limit=limit, offset=offset)
        total = self.orders.count(status=status, payment_status=payment_status)
        return orders, self._pagination(total, page, limit)

    def list_pending(self, page: int = 1, limit: Optional[int] = None) -> List[Order]:
        limit, offset = self._page(page, limit)
        return self.orders.find_pending(limit=limit, offset=offset)

    def _page(self, page: int, limit: Optional[int]) -> Tuple[int, int]:
        limit = min(limit or self.settings.DEFAULT_PAGE_SIZE, self.settings.MAX_PAGE_SIZE)
        return limit, (max(page, 1) - 1) * limit

    @staticmethod
    def _pagination(total: int, page: int, limit: int) -> dict:
        return {"total": total, "page": max(page, 1), "limit": limit, "pages": ceil(total / limit) if limit else 0}

    # -- fulfillment -----------------------------------------------------

    def update_status(self, order_id: str, status: OrderStatus, tracking_number: Optional[str] = None) -> Order:
        def apply(order: Order) -> None:
            order.transition(status)
            if tracking_number:
                order.set_tracking_number(tracking_number)

        order, _ = self._mutate(order_id, apply)
        if order.status == OrderStatus.CANCELLED:
            self._restore_stock(
                [(item.product_id, item.quantity) for item in order.items],
                reason=f"order {order.order_number} cancelled",
            )
        return order

    def cancel(self, order_id: str) -> Order:
        """Owner-initiated cancellation; only pending or processing orders qualify"""
        return self.update_status(order_id, OrderStatus.CANCELLED)

    def update_details(self, order_id: str, data: OrderDetailsUpdate) -> Order:
        provided = data.model_fields_set

        def apply(order: Order) -> None:
            if "tracking_number" in provided:
                order.set_tracking_number(data.tracking_number)
            if "notes" in provided:
                order.set_notes(data.notes, max_length=self.settings.NOTES_MAX_LENGTH)

        order, _ = self._mutate(order_id, apply)
        return order

    # -- payment ---------------------------------------------------------

    def update_payment(
        self, order_id: str, payment_status: PaymentStatus, payment_intent_id: Optional[str] = None
    ) -> Tuple[Order, bool]:
        """Apply a payment status change; the flag is True when the order just became paid"""
        target = PaymentStatus(payment_status)

        def apply(order: Order) -> bool:
            was_paid = order.payment_status == PaymentStatus.PAID
            if target == PaymentStatus.PAID:
                order.mark_paid(payment_intent_id)
            elif target == PaymentStatus.FAILED:
                order.mark_failed()
            else:
                raise InvalidTransitionError("payment_status", order.payment_status.value, target.value)
            return not was_paid and order.payment_status == PaymentStatus.PAID

        order, newly_paid = self._mutate(order_id, apply)
        logger.info(
            f"Order {order.order_number} payment status is {order.payment_status.value}",
            extra={"extra_fields": {
                "order_id": order.id,
                "payment_status": order.payment_status.value,
                "payment_intent_id": order.payment_intent_id,
            }},
        )
        return order, newly_paid

    async def confirm_payment(
        self, order_id: str, payment_status: PaymentStatus, payment_intent_id: Optional[str] = None
    ) -> OrderOutcome:
        """Payment change first, email second; a failed email never reverts the payment"""
        order, newly_paid = await run_in_threadpool(
            self.update_payment, order_id, payment_status, payment_intent_id
        )
        outcome = OrderOutcome(order=order)
        if newly_paid:
            warning = await self.notifier.payment_confirmed(order)
            if warning:
                outcome.warnings.append(warning)
        return outcome

    # -- helpers ---------------------------------------------------------

    def _mutate(self, order_id: str, apply: Callable[[Order], T]) -> Tuple[Order, T]:
        """Read-modify-write one order, re-reading on a concurrent write"""
        attempts = self.settings.CONFLICT_RETRIES + 1
        for attempt in range(1, attempts + 1):
            try:
                order = self.orders.get(order_id)
                result = apply(order)
                self.orders.save(order)
                self.db.commit()
                return order, result
            except ConflictError:
                self.db.rollback()
                if attempt == attempts:
                    raise
                logger.warning(
                    f"Concurrent update on order {order_id}, retrying",
                    extra={"extra_fields": {"order_id": order_id, "attempt": attempt}},
                )
            except Exception:
                self.db.rollback()
                raise
        raise ConflictError(f"Order {order_id} was modified concurrently")

    def _restore_stock(self, lines: List[Tuple[str, int]], reason: str) -> None:
        for product_id, quantity in lines:
            try:
                self.catalog.adjust_stock(product_id, quantity)
            except OrderError as e:
                logger.error(
                    f"Could not restore stock for product {product_id}: {e.message}",
                    extra={"extra_fields": {"product_id": product_id, "quantity": quantity, "reason": reason}},
                )
