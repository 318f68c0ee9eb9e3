from datetime import datetime, timezone

from sqlalchemy import (
    Boolean, CheckConstraint, Column, Date, DateTime, ForeignKey, Integer,
    Numeric, String, Text, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Role:
    SUPER_ADMIN = "Super Admin"
    MANAGER = "Manager"
    CASHIER = "Cashier"
    WAITER = "Waiter"

    ALL = (SUPER_ADMIN, MANAGER, CASHIER, WAITER)
    ADMINS = (SUPER_ADMIN, MANAGER)


class ItemCategory:
    OTHERS = "others"
    FOOD = "food"
    BEVERAGES = "beverages"

    ALL = (OTHERS, FOOD, BEVERAGES)


class OrderStatus:
    PENDING = "pending"
    COMPLETED = "completed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

    ALL = (PENDING, COMPLETED, EXPIRED, CANCELLED)


class User(Base):
    """Staff member; waiters are assigned to orders"""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    password = Column(String, nullable=False)
    role = Column(String, nullable=False)  # Super Admin, Manager, Cashier, Waiter
    email_verified = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    served_orders = relationship("Order", back_populates="waiter", passive_deletes=True)


class Item(Base):
    """Inventory item sold through orders"""
    __tablename__ = "items"
    __table_args__ = (
        CheckConstraint("stock_quantity >= 0", name="ck_items_stock_non_negative"),
        CheckConstraint("price >= 0", name="ck_items_price_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, index=True, nullable=False)
    description = Column(Text)
    price = Column(Numeric(10, 2), nullable=False, index=True)
    category = Column(String, nullable=False, index=True)  # others, food, beverages
    expiry_date = Column(Date, nullable=True, index=True)
    stock_quantity = Column(Integer, nullable=False, default=0)
    discounted_price = Column(Numeric(10, 2), nullable=True)
    discount_applied = Column(Boolean, nullable=False, default=False)
    version = Column(Integer, nullable=False, default=1)  # bumped on every stock adjustment
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    order_items = relationship("OrderItem", back_populates="item", passive_deletes="all")


class Order(Base):
    """Order taken by a cashier and served by a waiter"""
    __tablename__ = "orders"
    __table_args__ = (
        CheckConstraint("total_cost >= 0", name="ck_orders_total_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    status = Column(String, nullable=False, default=OrderStatus.PENDING, index=True)
    total_cost = Column(Numeric(10, 2), nullable=False, default=0)
    waiter_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = Column(DateTime, default=utcnow, index=True)
    # Doubles as the completion timestamp for reporting
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    waiter = relationship("User", back_populates="served_orders")
    order_items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="OrderItem.id",
    )


class OrderItem(Base):
    """Line of an order: one per (order, item) with the price snapshot"""
    __tablename__ = "order_items"
    __table_args__ = (
        UniqueConstraint("order_id", "item_id", name="uq_order_items_order_item"),
        CheckConstraint("quantity >= 1", name="ck_order_items_quantity_positive"),
    )

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    item_id = Column(Integer, ForeignKey("items.id", ondelete="RESTRICT"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    price_at_order = Column(Numeric(10, 2), nullable=False)

    order = relationship("Order", back_populates="order_items")
    item = relationship("Item", back_populates="order_items")
