"""
Order repository.

Maps ``Order`` aggregates to ``OrderRecord`` rows and answers the status
and history queries. The repository flushes but never commits; the
application service owns the transaction boundary.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional, Union

from sqlalchemy.exc import DataError, IntegrityError
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.orm.exc import StaleDataError

from storefront_orders.core.logging_config import get_logger
from storefront_orders.domain.errors import ConflictError, ConstraintError, NotFoundError
from storefront_orders.domain.models import OrderItemRecord, OrderRecord
from storefront_orders.domain.order import Order, OrderItem, ShippingAddress
from storefront_orders.domain.status import OrderStatus, PaymentStatus

logger = get_logger(__name__)


class OrderRepository:
    def __init__(self, db: Session):
        self.db = db

    # -- writes ----------------------------------------------------------

    def add(self, order: Order) -> Order:
        """Persist a new order; raises ConstraintError on invariant violations"""
        self._check_invariants(order)
        self._check_payment_intent_unique(order)
        record = OrderRecord(id=order.id)
        self._apply(order, record)
        self.db.add(record)
        self._flush(order)
        order.version = record.version
        return order

    def save(self, order: Order) -> Order:
        """Write back a mutated order loaded from this repository"""
        record = self._load_record(order.id)
        if order.version is not None and record.version != order.version:
            raise ConflictError(
                f"Order {order.id} was modified concurrently",
                {"expected_version": order.version, "actual_version": record.version},
            )
        self._check_invariants(order)
        self._check_payment_intent_unique(order)
        self._apply(order, record)
        self._flush(order)
        order.version = record.version
        return order

    def _flush(self, order: Order) -> None:
        try:
            self.db.flush()
        except StaleDataError:
            self.db.rollback()
            logger.warning(f"Stale write rejected for order {order.id}")
            raise ConflictError(f"Order {order.id} was modified concurrently")
        except IntegrityError as e:
            self.db.rollback()
            message = str(e.orig).lower()
            if "payment_intent_id" in message:
                raise ConstraintError(
                    f"Payment intent {order.payment_intent_id} is already attached to another order",
                    {"payment_intent_id": order.payment_intent_id},
                )
            raise ConstraintError(f"Order {order.id} violates a storage constraint: {e.orig}")
        except DataError as e:
            # Value out of range for its column, e.g. numeric overflow on Postgres
            self.db.rollback()
            raise ConstraintError(f"Order {order.id} has a value the database cannot store: {e.orig}")

    # -- reads -----------------------------------------------------------

    def get(self, order_id: str) -> Order:
        return self._to_domain(self._load_record(order_id))

    def find(self, order_id: str) -> Optional[Order]:
        record = self._base_query().filter(OrderRecord.id == str(order_id)).first()
        return self._to_domain(record) if record else None

    def find_by_user(self, user_id: str, limit: Optional[int] = None, offset: int = 0) -> List[Order]:
        return self.list(user_id=user_id, limit=limit, offset=offset)

    def find_by_status(
        self, status: Union[OrderStatus, str], limit: Optional[int] = None, offset: int = 0
    ) -> List[Order]:
        return self.list(status=status, limit=limit, offset=offset)

    def find_pending(self, limit: Optional[int] = None, offset: int = 0) -> List[Order]:
        return self.find_by_status(OrderStatus.PENDING, limit=limit, offset=offset)

    def find_by_payment_status(
        self, payment_status: Union[PaymentStatus, str], limit: Optional[int] = None, offset: int = 0
    ) -> List[Order]:
        return self.list(payment_status=payment_status, limit=limit, offset=offset)

    def find_by_payment_intent(self, payment_intent_id: str) -> Optional[Order]:
        record = self._base_query().filter(OrderRecord.payment_intent_id == payment_intent_id).first()
        return self._to_domain(record) if record else None

    def list(
        self,
        status: Union[OrderStatus, str, None] = None,
        payment_status: Union[PaymentStatus, str, None] = None,
        user_id: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Order]:
        """Newest first; ties fall back to insertion order"""
        query = self._filtered(self._base_query(), status, payment_status, user_id)
        query = query.order_by(OrderRecord.created_at.desc(), OrderRecord.pk.desc())
        if offset:
            query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)
        return [self._to_domain(record) for record in query.all()]

    def count(
        self,
        status: Union[OrderStatus, str, None] = None,
        payment_status: Union[PaymentStatus, str, None] = None,
        user_id: Optional[str] = None,
    ) -> int:
        return self._filtered(self.db.query(OrderRecord), status, payment_status, user_id).count()

    # -- helpers ---------------------------------------------------------

    def _base_query(self):
        return self.db.query(OrderRecord).options(selectinload(OrderRecord.items))

    @staticmethod
    def _filtered(query, status, payment_status, user_id):
        if status is not None:
            query = query.filter(OrderRecord.status == OrderStatus(status).value)
        if payment_status is not None:
            query = query.filter(OrderRecord.payment_status == PaymentStatus(payment_status).value)
        if user_id is not None:
            query = query.filter(OrderRecord.user_id == str(user_id))
        return query

    def _load_record(self, order_id: str) -> OrderRecord:
        record = self._base_query().filter(OrderRecord.id == str(order_id)).first()
        if record is None:
            raise NotFoundError(f"Order {order_id} not found", {"order_id": str(order_id)})
        return record

    def _check_invariants(self, order: Order) -> None:
        items = order.items
        if not items:
            raise ConstraintError("Order must have at least one item")
        for item in items:
            if item.price < 0 or item.quantity < 1:
                raise ConstraintError(
                    f"Invalid line for product {item.product_id}",
                    {"price": str(item.price), "quantity": item.quantity},
                )
        expected = sum((item.price * item.quantity for item in items), Decimal("0.00"))
        if order.total < 0 or order.total != expected:
            raise ConstraintError(
                f"Order total {order.total} does not match its items ({expected})"
            )

    def _check_payment_intent_unique(self, order: Order) -> None:
        if not order.payment_intent_id:
            return
        clash = (
            self.db.query(OrderRecord.id)
            .filter(
                OrderRecord.payment_intent_id == order.payment_intent_id,
                OrderRecord.id != order.id,
            )
            .first()
        )
        if clash is not None:
            raise ConstraintError(
                f"Payment intent {order.payment_intent_id} is already attached to another order",
                {"payment_intent_id": order.payment_intent_id},
            )

    @staticmethod
    def _apply(order: Order, record: OrderRecord) -> None:
        record.order_number = order.order_number
        record.user_id = order.user_id
        record.status = order.status.value
        record.payment_status = order.payment_status.value
        record.payment_method = order.payment_method.value
        record.total = order.total
        record.payment_intent_id = order.payment_intent_id
        record.tracking_number = order.tracking_number
        record.notes = order.notes
        address = order.shipping_address
        record.shipping_full_name = address.full_name
        record.shipping_address = address.address
        record.shipping_city = address.city
        record.shipping_state = address.state
        record.shipping_zip_code = address.zip_code
        record.shipping_country = address.country
        record.customer_email_snapshot = order.customer_email
        record.customer_name_snapshot = order.customer_name
        record.created_at = order.created_at
        record.updated_at = order.updated_at

        current = [
            (i.product_id, i.product_name, i.product_icon, i.quantity, Decimal(i.unit_price))
            for i in record.items
        ]
        wanted = [(i.product_id, i.name, i.icon, i.quantity, i.price) for i in order.items]
        if current != wanted:
            record.items = [
                OrderItemRecord(
                    position=position,
                    product_id=item.product_id,
                    product_name=item.name,
                    product_icon=item.icon,
                    quantity=item.quantity,
                    unit_price=item.price,
                )
                for position, item in enumerate(order.items)
            ]

    @staticmethod
    def _to_domain(record: OrderRecord) -> Order:
        return Order(
            id=record.id,
            order_number=record.order_number,
            user_id=record.user_id,
            items=[
                OrderItem(
                    product_id=item.product_id,
                    name=item.product_name,
                    price=item.unit_price,
                    quantity=item.quantity,
                    icon=item.product_icon,
                )
                for item in record.items
            ],
            shipping_address=ShippingAddress(
                full_name=record.shipping_full_name,
                address=record.shipping_address,
                city=record.shipping_city,
                state=record.shipping_state,
                zip_code=record.shipping_zip_code,
                country=record.shipping_country,
            ),
            payment_method=record.payment_method,
            status=record.status,
            payment_status=record.payment_status,
            payment_intent_id=record.payment_intent_id,
            tracking_number=record.tracking_number,
            notes=record.notes,
            # Stored notes were validated on write; a lowered limit must not hide them
            notes_max_length=None,
            customer_email=record.customer_email_snapshot,
            customer_name=record.customer_name_snapshot,
            created_at=_aware(record.created_at),
            updated_at=_aware(record.updated_at),
            version=record.version,
        )


def _aware(value: datetime) -> datetime:
    # SQLite drops tzinfo; stored values are always UTC
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
