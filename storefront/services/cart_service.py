"""Cart management service."""
import logging
from typing import Any, Dict, Optional

from opentelemetry import trace
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from storefront.cache import CacheBackend
from storefront.config import CART_CACHE_TTL
from storefront.errors import InvalidInputError, NotFoundError
from storefront.models import Cart, CartItem, Product
from storefront.monitoring import cart_additions_counter

logger = logging.getLogger(__name__)


def recompute_cart_totals(cart: Cart) -> None:
    """Rederive the stored totals from the current lines.

    Must run after every change to ``cart.items``.
    """
    cart.total_items = sum(line.quantity for line in cart.items)
    cart.total_price = sum(
        (line.quantity * line.price_at_add_time for line in cart.items), 0.0
    )


def _cache_key(user_id: str) -> str:
    return f"cart:{user_id}"


class CartService:
    """Service for managing shopping carts."""

    def __init__(self, cache: CacheBackend):
        """
        Initialize cart service.

        Args:
            cache: Cache for per-user cart summaries
        """
        self.cache = cache
        self.tracer = trace.get_tracer(__name__)

    def find_cart(self, db: Session, user_id: str) -> Optional[Cart]:
        with self.tracer.start_as_current_span("db.query.get_cart") as db_span:
            db_span.set_attribute("db.operation", "SELECT")
            db_span.set_attribute("db.table", "carts")
            db_span.set_attribute("user.id", user_id)

            cart = db.query(Cart).filter(Cart.user_id == user_id).first()
            db_span.set_attribute("db.rows_returned", 1 if cart else 0)
            return cart

    def lock_cart(self, db: Session, user_id: str) -> Optional[Cart]:
        """
        Load the cart for writing.

        The row lock serializes concurrent writers for the same user, and the
        lines are reloaded so totals are computed over what is committed.
        """
        with self.tracer.start_as_current_span("db.query.lock_cart") as db_span:
            db_span.set_attribute("db.operation", "SELECT FOR UPDATE")
            db_span.set_attribute("db.table", "carts")
            db_span.set_attribute("user.id", user_id)

            return db.query(Cart) \
                .options(selectinload(Cart.items)) \
                .filter(Cart.user_id == user_id) \
                .with_for_update() \
                .populate_existing() \
                .first()

    def _read_cart(self, db: Session, user_id: str) -> Cart:
        cart = self.find_cart(db, user_id)
        if cart is None:
            raise NotFoundError("Cart")
        return cart

    def _require_cart(self, db: Session, user_id: str) -> Cart:
        cart = self.lock_cart(db, user_id)
        if cart is None:
            raise NotFoundError("Cart")
        return cart

    def _get_or_create_cart(self, db: Session, user_id: str) -> Cart:
        cart = self.lock_cart(db, user_id)
        if cart is not None:
            return cart

        cart = Cart(user_id=user_id, total_items=0, total_price=0.0)
        db.add(cart)
        try:
            db.flush()
        except IntegrityError:
            # Another request created the cart first
            db.rollback()
            cart = self._require_cart(db, user_id)
        return cart

    @staticmethod
    def _find_line(cart: Cart, product_id: int) -> Optional[CartItem]:
        for line in cart.items:
            if line.product_id == product_id:
                return line
        return None

    def _save(self, db: Session, cart: Cart) -> Cart:
        recompute_cart_totals(cart)
        db.commit()
        db.refresh(cart)
        self.refresh_cache(cart)
        return cart

    def add_line(
        self,
        db: Session,
        user_id: str,
        product_id: int,
        quantity: int,
        price_at_add_time: float
    ) -> Cart:
        """
        Add a product to the user's cart.

        An existing line for the product gets its quantity increased; its
        recorded price is kept.

        Args:
            db: Database session
            user_id: User identifier
            product_id: Product identifier
            quantity: Quantity to add (>= 1)
            price_at_add_time: Price shown to the user (>= 0)

        Returns:
            The updated cart

        Raises:
            InvalidInputError: If quantity or price is out of range
            NotFoundError: If the product does not exist
        """
        if quantity is None or quantity < 1:
            raise InvalidInputError("Quantity must be at least 1")
        if price_at_add_time is None or price_at_add_time < 0:
            raise InvalidInputError("Price must not be negative")

        product = db.query(Product).filter(
            Product.id == product_id,
            Product.is_deleted.is_(False)
        ).first()
        if product is None:
            raise NotFoundError("Product", product_id)

        cart = self._get_or_create_cart(db, user_id)
        line = self._find_line(cart, product_id)
        if line is not None:
            line.quantity += quantity
        else:
            cart.items.append(CartItem(
                product_id=product_id,
                quantity=quantity,
                price_at_add_time=price_at_add_time
            ))

        cart = self._save(db, cart)

        cart_additions_counter.add(1, {"product_id": str(product_id)})
        logger.info("Added product to cart", extra={
            "user_id": user_id,
            "product_id": product_id,
            "product_name": product.name,
            "quantity": quantity,
            "merged": line is not None
        })
        return cart

    def set_line_quantity(self, db: Session, user_id: str, product_id: int, quantity: int) -> Cart:
        """Set a line's quantity; zero removes the line."""
        if quantity is None or quantity < 0:
            raise InvalidInputError("Quantity must be zero or positive")

        cart = self._require_cart(db, user_id)
        line = self._find_line(cart, product_id)
        if line is None:
            raise NotFoundError("Product in cart", product_id)

        if quantity == 0:
            cart.items.remove(line)
        else:
            line.quantity = quantity

        logger.info("Updated cart line", extra={
            "user_id": user_id,
            "product_id": product_id,
            "quantity": quantity
        })
        return self._save(db, cart)

    def remove_line(self, db: Session, user_id: str, product_id: int) -> Cart:
        cart = self._require_cart(db, user_id)
        line = self._find_line(cart, product_id)
        if line is None:
            raise NotFoundError("Product in cart", product_id)

        cart.items.remove(line)
        logger.info("Removed product from cart", extra={
            "user_id": user_id,
            "product_id": product_id
        })
        return self._save(db, cart)

    def clear_lines(self, cart: Cart) -> None:
        """Empty a cart inside the caller's transaction."""
        cart.items.clear()
        recompute_cart_totals(cart)

    def clear(self, db: Session, user_id: str) -> Cart:
        cart = self._require_cart(db, user_id)
        self.clear_lines(cart)
        logger.info("Cleared cart", extra={"user_id": user_id})
        return self._save(db, cart)

    def get_cart(self, db: Session, user_id: str) -> Dict[str, Any]:
        """
        Get user's cart contents with product details.

        Raises:
            NotFoundError: If the user has no cart
        """
        return self.serialize(self._read_cart(db, user_id))

    def get_summary(self, db: Session, user_id: str) -> Dict[str, Any]:
        """Item count and total, served from cache when possible."""
        cached = self.cache.get(_cache_key(user_id))
        if cached is not None:
            return cached
        cart = self._read_cart(db, user_id)
        return self.refresh_cache(cart)

    def refresh_cache(self, cart: Cart) -> Dict[str, Any]:
        summary = {
            "user_id": cart.user_id,
            "total_items": cart.total_items,
            "total_price": cart.total_price,
        }
        self.cache.set(_cache_key(cart.user_id), summary, CART_CACHE_TTL)
        return summary

    def invalidate_cache(self, user_id: str) -> None:
        self.cache.delete(_cache_key(user_id))

    @staticmethod
    def serialize(cart: Cart) -> Dict[str, Any]:
        items = []
        for line in cart.items:
            product = line.product
            items.append({
                "product_id": line.product_id,
                "product_name": product.name if product else None,
                "sku": product.sku if product else None,
                "selling_price": product.selling_price if product else None,
                "stock_status": product.stock_status if product else None,
                "quantity": line.quantity,
                "price_at_add_time": line.price_at_add_time,
                "subtotal": line.quantity * line.price_at_add_time,
            })
        return {
            "id": cart.id,
            "user_id": cart.user_id,
            "items": items,
            "total_items": cart.total_items,
            "total_price": cart.total_price,
            "updated_at": cart.updated_at,
        }
