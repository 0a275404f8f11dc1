from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy import String, ForeignKey, Numeric, DateTime, Integer, Index, CheckConstraint
from datetime import datetime
from decimal import Decimal
from typing import Optional

class Base(DeclarativeBase):
    pass

class OrderRecord(Base):
    __tablename__ = "orders"
    # Internal key; the public identifier is `id`
    pk: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    order_number: Mapped[str] = mapped_column(String(50), unique=True)
    # Lookup key into the auth service (no FK - microservices pattern)
    user_id: Mapped[str] = mapped_column(String(64))
    status: Mapped[str] = mapped_column(String(20), default="pending")
    payment_status: Mapped[str] = mapped_column(String(20), default="pending")
    payment_method: Mapped[str] = mapped_column(String(20), default="card")
    total: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    # NULLs are exempt from uniqueness (sparse unique)
    payment_intent_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, unique=True)
    tracking_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    shipping_full_name: Mapped[str] = mapped_column(String(200))
    shipping_address: Mapped[str] = mapped_column(String(255))
    shipping_city: Mapped[str] = mapped_column(String(100))
    shipping_state: Mapped[str] = mapped_column(String(100))
    shipping_zip_code: Mapped[str] = mapped_column(String(20))
    shipping_country: Mapped[str] = mapped_column(String(100), default="United States")
    # Customer snapshot data (captured at order creation time)
    customer_email_snapshot: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    customer_name_snapshot: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    items: Mapped[list["OrderItemRecord"]] = relationship(
        "OrderItemRecord",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItemRecord.position",
    )

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        CheckConstraint("total >= 0", name="ck_orders_total_non_negative"),
        CheckConstraint(
            "status IN ('pending', 'processing', 'shipped', 'delivered', 'cancelled')",
            name="ck_orders_status",
        ),
        CheckConstraint(
            "payment_status IN ('pending', 'paid', 'failed')",
            name="ck_orders_payment_status",
        ),
        CheckConstraint(
            "payment_method IN ('card', 'paypal', 'cash')",
            name="ck_orders_payment_method",
        ),
    )

class OrderItemRecord(Base):
    __tablename__ = "order_items"
    pk: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_pk: Mapped[int] = mapped_column(ForeignKey("orders.pk", ondelete="CASCADE"))
    position: Mapped[int]
    # Store product_id as opaque string (no FK - catalog lives elsewhere)
    product_id: Mapped[str] = mapped_column(String(64))
    # Product snapshot data (captured at order creation time)
    product_name: Mapped[str] = mapped_column(String(200))
    product_icon: Mapped[str] = mapped_column(String(32), default="📦")
    quantity: Mapped[int]
    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    order: Mapped[OrderRecord] = relationship("OrderRecord", back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_order_items_quantity_positive"),
        CheckConstraint("unit_price >= 0", name="ck_order_items_price_non_negative"),
    )

# Query indexes: (user, newest), (status, newest), payment status
Index("ix_orders_user_created", OrderRecord.user_id, OrderRecord.created_at.desc())
Index("ix_orders_status_created", OrderRecord.status, OrderRecord.created_at.desc())
Index("ix_orders_payment_status", OrderRecord.payment_status)
Index("ix_order_items_order_pk", OrderItemRecord.order_pk)
