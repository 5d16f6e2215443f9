"""Database models for the storefront service."""
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what the DateTime columns store."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ProductStatus:
    """Product availability states."""
    ACTIVE = "ACTIVE"
    DRAFT = "DRAFT"
    OUT_OF_STOCK = "OUT_OF_STOCK"
    DISCONTINUED = "DISCONTINUED"

    ALL = (ACTIVE, DRAFT, OUT_OF_STOCK, DISCONTINUED)


PAYMENT_METHODS = ("COD", "CARD", "UPI", "WALLET")
PAYMENT_STATUSES = ("pending", "paid", "failed", "refunded")
ORDER_STATUSES = (
    "processing",
    "confirmed",
    "shipped",
    "out_for_delivery",
    "delivered",
    "cancelled",
    "returned",
)


class Product(Base):
    """Product model."""
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False, index=True)
    slug = Column(String(220), nullable=False, index=True)
    description = Column(Text, default="")
    category = Column(String(100), index=True)
    purchase_price = Column(Float, nullable=False)
    selling_price = Column(Float)
    stock = Column(Integer, nullable=False, default=0)
    low_stock_threshold = Column(Integer, nullable=False, default=10)
    status = Column(String(20), nullable=False, default=ProductStatus.DRAFT, index=True)
    sku = Column(String(50), unique=True, nullable=False)
    is_deleted = Column(Boolean, nullable=False, default=False, index=True)
    is_featured = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def is_in_stock(self) -> bool:
        return self.stock > 0 and self.status != ProductStatus.OUT_OF_STOCK

    @property
    def is_low_stock(self) -> bool:
        return 0 < self.stock <= self.low_stock_threshold

    @property
    def stock_status(self) -> str:
        if self.stock == 0 or self.status == ProductStatus.OUT_OF_STOCK:
            return "out-of-stock"
        if self.stock <= self.low_stock_threshold:
            return "low-stock"
        return "in-stock"

    @property
    def profit_margin(self) -> Optional[float]:
        """Margin over purchase price, in percent."""
        if self.purchase_price and self.selling_price:
            return (self.selling_price - self.purchase_price) / self.purchase_price * 100
        return None


class Cart(Base):
    """Shopping cart, one per user."""
    __tablename__ = "carts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(100), nullable=False, unique=True, index=True)
    total_items = Column(Integer, nullable=False, default=0)
    total_price = Column(Float, nullable=False, default=0.0)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    items = relationship(
        "CartItem",
        back_populates="cart",
        cascade="all, delete-orphan",
        order_by="CartItem.id"
    )


class CartItem(Base):
    """Cart line."""
    __tablename__ = "cart_items"

    id = Column(Integer, primary_key=True, index=True)
    cart_id = Column(Integer, ForeignKey("carts.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    price_at_add_time = Column(Float, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    cart = relationship("Cart", back_populates="items")
    product = relationship("Product")

    __table_args__ = (
        UniqueConstraint("cart_id", "product_id", name="uq_cart_item_cart_product"),
    )


class Order(Base):
    """Order model. Items are a snapshot and are never rewritten."""
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(40), nullable=False, unique=True)
    user_id = Column(String(100), nullable=False, index=True)

    shipping_full_name = Column(String(200), nullable=False)
    shipping_phone = Column(String(40), nullable=False)
    shipping_street = Column(String(300), nullable=False)
    shipping_city = Column(String(100), nullable=False)
    shipping_state = Column(String(100), nullable=False)
    shipping_postal_code = Column(String(20), nullable=False, index=True)
    shipping_country = Column(String(100), nullable=False)

    payment_method = Column(String(10), nullable=False)
    payment_status = Column(String(20), nullable=False, default="pending", index=True)
    order_status = Column(String(20), nullable=False, default="processing", index=True)
    transaction_id = Column(String(100))
    payment_gateway = Column(String(100))
    paid_at = Column(DateTime)

    tracking_number = Column(String(100))
    estimated_delivery = Column(DateTime)
    notes = Column(String(500))
    cancel_reason = Column(String(200))

    total_amount = Column(Float, nullable=False)
    discount = Column(Float, nullable=False, default=0.0)
    shipping_fee = Column(Float, nullable=False, default=0.0)

    is_delivered = Column(Boolean, nullable=False, default=False)
    delivered_at = Column(DateTime)
    stock_restored = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id"
    )

    @property
    def shipping_address(self) -> Dict[str, Any]:
        return {
            "full_name": self.shipping_full_name,
            "phone": self.shipping_phone,
            "street": self.shipping_street,
            "city": self.shipping_city,
            "state": self.shipping_state,
            "postal_code": self.shipping_postal_code,
            "country": self.shipping_country,
        }

    @property
    def payment_details(self) -> Dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "payment_gateway": self.payment_gateway,
            "paid_at": self.paid_at,
        }

    @property
    def order_age_days(self) -> int:
        if self.created_at is None:
            return 0
        return (utcnow() - self.created_at).days


class OrderItem(Base):
    """Snapshot of one ordered product."""
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    # Back-reference only; the product row is never modified through an order
    product_id = Column(Integer, nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Float, nullable=False)
    total_price = Column(Float, nullable=False)

    order = relationship("Order", back_populates="items")
