from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .database import Base, utcnow


class Order(Base):
    """Order database model"""
    __tablename__ = "orders"
    __table_args__ = (
        UniqueConstraint("order_date", "order_number", name="uq_orders_date_number"),
    )

    id = Column(Integer, primary_key=True, index=True)
    order_date = Column(Date, nullable=False, index=True)
    order_number = Column(Integer, nullable=False)
    type = Column(String(16), nullable=False)
    status = Column(String(32), nullable=False, default="RECIBIDO", index=True)
    payment_status = Column(String(32), nullable=False, default="AWAITING_PAYMENT", index=True)
    paid_at = Column(DateTime, nullable=True)
    customer_name = Column(String(120), nullable=True)
    customer_phone = Column(String(40), nullable=True)
    address_json = Column(JSON, nullable=True)
    notes = Column(Text, nullable=True)
    subtotal_cents = Column(Integer, nullable=False, default=0)
    delivery_fee_cents = Column(Integer, nullable=False, default=0)
    total_cents = Column(Integer, nullable=False, default=0)
    printed_customer_at = Column(DateTime, nullable=True)
    printed_packaging_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    # Relationship with OrderItem
    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )
    payments = relationship("Payment", back_populates="order", cascade="all, delete-orphan")


class OrderItem(Base):
    """Order item database model"""
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    # Weak reference: catalog rows may disappear without touching history
    product_id = Column(Integer, nullable=True)
    station = Column(String(16), nullable=False, index=True)
    status = Column(String(32), nullable=False, default="EN_COLA")
    name_snapshot = Column(String(200), nullable=False)
    price_cents_snapshot = Column(Integer, nullable=False)
    qty = Column(Integer, nullable=False, default=1)
    notes = Column(Text, nullable=True)
    group_id = Column(String(64), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    # Relationship with Order
    order = relationship("Order", back_populates="items")


class Payment(Base):
    """Payment database model"""
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    amount_cents = Column(Integer, nullable=False)
    method = Column(String(32), nullable=True)
    provider = Column(String(64), nullable=True)
    status = Column(String(32), nullable=True)
    external_id = Column(String(128), nullable=True)
    currency = Column(String(3), nullable=True)
    raw_json = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    order = relationship("Order", back_populates="payments")


class Category(Base):
    """Menu category database model"""
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False, unique=True)
    sort_order = Column(Integer, nullable=False, default=0)

    products = relationship("Product", back_populates="category")


class Product(Base):
    """Catalog product database model"""
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    price_cents = Column(Integer, nullable=False)
    station = Column(String(16), nullable=False)
    is_available = Column(Boolean, nullable=False, default=True)
    image_url = Column(String(500), nullable=True)
    sort_order = Column(Integer, nullable=False, default=0)

    category = relationship("Category", back_populates="products")
