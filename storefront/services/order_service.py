"""Order management service."""
import logging
import secrets
from datetime import datetime
from typing import Any, Dict, List, Optional

from opentelemetry import trace
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from storefront import order_rules
from storefront.cache import CacheBackend
from storefront.config import DEFAULT_COUNTRY, ORDER_NUMBER_MAX_ATTEMPTS, TRACKING_CACHE_TTL
from storefront.errors import (
    ConflictError,
    EmptyCartError,
    InvalidInputError,
    NoItemsError,
    NotFoundError,
    StorefrontError,
)
from storefront.models import PAYMENT_METHODS, Order, OrderItem, utcnow
from storefront.monitoring import (
    order_amount_histogram,
    order_status_changes_counter,
    orders_cancelled_counter,
    orders_placed_counter,
    stock_restocks_counter,
)
from storefront.services.cart_service import CartService
from storefront.services.inventory_service import InventoryService

logger = logging.getLogger(__name__)

ADDRESS_FIELDS = ("full_name", "phone", "street", "city", "state", "postal_code")
MAX_NOTES_LENGTH = 500
MAX_CANCEL_REASON_LENGTH = 200


class _OrderNumberTaken(Exception):
    """Unique order number lost a race at insert time."""


def generate_order_number() -> str:
    """ORD-<yyyymmdd>-<8 random hex chars>."""
    return f"ORD-{utcnow():%Y%m%d}-{secrets.token_hex(4).upper()}"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _tracking_key(order_id: int) -> str:
    return f"order-tracking:{order_id}"


def serialize_order(order: Order) -> Dict[str, Any]:
    return {
        "id": order.id,
        "order_number": order.order_number,
        "user_id": order.user_id,
        "items": [
            {
                "product_id": item.product_id,
                "quantity": item.quantity,
                "unit_price": item.unit_price,
                "total_price": item.total_price,
            }
            for item in order.items
        ],
        "shipping_address": order.shipping_address,
        "payment_method": order.payment_method,
        "payment_status": order.payment_status,
        "order_status": order.order_status,
        "payment_details": order.payment_details,
        "tracking_number": order.tracking_number,
        "estimated_delivery": order.estimated_delivery,
        "notes": order.notes,
        "cancel_reason": order.cancel_reason,
        "total_amount": order.total_amount,
        "discount": order.discount,
        "shipping_fee": order.shipping_fee,
        "is_delivered": order.is_delivered,
        "delivered_at": order.delivered_at,
        "order_age_days": order.order_age_days,
        "created_at": order.created_at,
        "updated_at": order.updated_at,
    }


class OrderService:
    """Service for placing orders and driving their lifecycle."""

    def __init__(
        self,
        cart_service: CartService,
        inventory_service: InventoryService,
        cache: CacheBackend
    ):
        """
        Initialize order service.

        Args:
            cart_service: Cart service instance
            inventory_service: Stock coordinator
            cache: Cache for public tracking lookups
        """
        self.cart_service = cart_service
        self.inventory_service = inventory_service
        self.cache = cache
        self.tracer = trace.get_tracer(__name__)

    # ------------------------------------------------------------------
    # Placement
    # ------------------------------------------------------------------
    @staticmethod
    def _normalize_address(shipping_address: Optional[Dict[str, Any]]) -> Dict[str, str]:
        if not shipping_address:
            raise InvalidInputError("Shipping address is required")
        address = {}
        for name in ADDRESS_FIELDS:
            value = shipping_address.get(name)
            if value is None or not str(value).strip():
                raise InvalidInputError(f"Shipping address field '{name}' is required")
            address[name] = str(value).strip()
        country = shipping_address.get("country")
        address["country"] = str(country).strip() if country and str(country).strip() else DEFAULT_COUNTRY
        return address

    @staticmethod
    def _validate_intake(
        payment_method: str,
        total_amount: float,
        discount: float,
        shipping_fee: float,
        notes: Optional[str]
    ) -> None:
        if payment_method not in PAYMENT_METHODS:
            raise InvalidInputError(
                f"Invalid payment method '{payment_method}'. Allowed: {', '.join(PAYMENT_METHODS)}"
            )
        if total_amount is None or total_amount < 0:
            raise InvalidInputError("Total amount must not be negative")
        if discount < 0 or shipping_fee < 0:
            raise InvalidInputError("Discount and shipping fee must not be negative")
        if notes and len(notes) > MAX_NOTES_LENGTH:
            raise InvalidInputError(f"Notes must be at most {MAX_NOTES_LENGTH} characters")

    def _snapshot_cart(self, db: Session, user_id: str):
        cart = self.cart_service.lock_cart(db, user_id)
        if cart is None or not cart.items:
            raise EmptyCartError()

        snapshot = []
        for line in cart.items:
            product = line.product
            if product is None or product.is_deleted:
                raise NotFoundError("Product", line.product_id)
            if product.selling_price is None:
                raise InvalidInputError(f"Product {product.id} has no selling price")
            # Unit price comes from the live catalogue, not price_at_add_time
            snapshot.append({
                "product_id": product.id,
                "quantity": line.quantity,
                "unit_price": product.selling_price,
            })
        return cart, snapshot

    @staticmethod
    def _snapshot_items(items: Optional[List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
        if not items:
            raise NoItemsError()

        snapshot = []
        for item in items:
            quantity = item.get("quantity")
            price = item.get("price")
            if item.get("product_id") is None:
                raise InvalidInputError("Each item needs a product_id")
            if quantity is None or quantity < 1:
                raise InvalidInputError("Item quantity must be at least 1")
            if price is None or price < 0:
                raise InvalidInputError("Item price must not be negative")
            snapshot.append({
                "product_id": item["product_id"],
                "quantity": quantity,
                "unit_price": price,
            })
        return snapshot

    def _next_order_number(self, db: Session) -> str:
        for _ in range(ORDER_NUMBER_MAX_ATTEMPTS):
            candidate = generate_order_number()
            taken = db.query(Order.id).filter(Order.order_number == candidate).first()
            if taken is None:
                return candidate
            logger.warning("Order number collision, regenerating", extra={
                "order_number": candidate
            })
        raise ConflictError("Could not allocate a unique order number")

    def _place_once(
        self,
        db: Session,
        user_id: str,
        address: Dict[str, str],
        payment_method: str,
        total_amount: float,
        notes: Optional[str],
        use_cart: bool,
        items: Optional[List[Dict[str, Any]]],
        discount: float,
        shipping_fee: float
    ) -> Order:
        cart = None
        if use_cart:
            cart, snapshot = self._snapshot_cart(db, user_id)
        else:
            snapshot = self._snapshot_items(items)

        order = Order(
            order_number=self._next_order_number(db),
            user_id=user_id,
            shipping_full_name=address["full_name"],
            shipping_phone=address["phone"],
            shipping_street=address["street"],
            shipping_city=address["city"],
            shipping_state=address["state"],
            shipping_postal_code=address["postal_code"],
            shipping_country=address["country"],
            payment_method=payment_method,
            payment_status="pending",
            order_status="processing",
            notes=notes,
            total_amount=total_amount,
            discount=discount,
            shipping_fee=shipping_fee,
            items=[
                OrderItem(
                    product_id=line["product_id"],
                    quantity=line["quantity"],
                    unit_price=line["unit_price"],
                    total_price=line["unit_price"] * line["quantity"],
                )
                for line in snapshot
            ],
        )
        db.add(order)
        try:
            db.flush()
        except IntegrityError as e:
            if "order_number" in str(e.orig):
                raise _OrderNumberTaken(order.order_number) from e
            raise

        with self.tracer.start_as_current_span("inventory.reserve_order_stock") as span:
            span.set_attribute("order.number", order.order_number)
            span.set_attribute("order.item_count", len(snapshot))
            self.inventory_service.apply_decrements(
                db,
                [{"product_id": line["product_id"], "quantity": line["quantity"]} for line in snapshot],
                atomic=True
            )

        if cart is not None:
            self.cart_service.clear_lines(cart)

        db.commit()
        return order

    def place_order(
        self,
        db: Session,
        user_id: str,
        shipping_address: Dict[str, Any],
        payment_method: str,
        total_amount: float,
        notes: Optional[str] = None,
        use_cart: bool = True,
        items: Optional[List[Dict[str, Any]]] = None,
        discount: float = 0.0,
        shipping_fee: float = 0.0
    ) -> Dict[str, Any]:
        """
        Place an order from the user's cart or an explicit item list.

        Snapshotting, order insert, stock decrements and cart clearing share
        one transaction: either all of them persist or none does.

        Args:
            db: Database session
            user_id: Owner of the order
            shipping_address: Address fields (country optional)
            payment_method: One of COD, CARD, UPI, WALLET
            total_amount: Caller-computed total, stored as given
            notes: Optional customer notes
            use_cart: Take items from the cart instead of ``items``
            items: Dicts with product_id, quantity and price
            discount: Discount applied by the caller
            shipping_fee: Shipping fee applied by the caller

        Returns:
            Order id and order number

        Raises:
            InvalidInputError: On malformed fields
            EmptyCartError: If the cart is missing or empty
            NoItemsError: If an explicit order has no items
            StockReservationError: If any item could not be taken from stock
            ConflictError: If no unique order number could be allocated
        """
        self._validate_intake(payment_method, total_amount, discount, shipping_fee, notes)
        address = self._normalize_address(shipping_address)

        span = trace.get_current_span()
        span.set_attribute("payment.method", payment_method)
        span.set_attribute("order.source", "cart" if use_cart else "items")

        for attempt in range(1, ORDER_NUMBER_MAX_ATTEMPTS + 1):
            try:
                with self.tracer.start_as_current_span("db.transaction.create_order") as db_span:
                    db_span.set_attribute("user.id", user_id)
                    db_span.set_attribute("attempt", attempt)
                    order = self._place_once(
                        db, user_id, address, payment_method, total_amount,
                        notes, use_cart, items, discount, shipping_fee
                    )
            except _OrderNumberTaken as e:
                db.rollback()
                logger.warning("Order number taken at insert, retrying", extra={
                    "order_number": str(e),
                    "attempt": attempt
                })
                continue
            except StorefrontError:
                db.rollback()
                raise
            except SQLAlchemyError as e:
                db.rollback()
                logger.error("Failed to create order", extra={
                    "user_id": user_id,
                    "amount": total_amount,
                    "payment_method": payment_method,
                    "error": str(e)
                })
                raise

            if use_cart:
                self.cart_service.invalidate_cache(user_id)

            orders_placed_counter.add(1, {
                "payment_method": payment_method,
                "source": "cart" if use_cart else "items"
            })
            order_amount_histogram.record(total_amount, {"payment_method": payment_method})
            logger.info("Order placed", extra={
                "user_id": user_id,
                "order_id": order.id,
                "order_number": order.order_number,
                "amount": total_amount,
                "payment_method": payment_method,
                "item_count": len(order.items)
            })
            return {"order_id": order.id, "order_number": order.order_number}

        raise ConflictError("Could not allocate a unique order number")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get_order(
        self,
        db: Session,
        order_id: int,
        user_id: Optional[str] = None,
        is_admin: bool = False
    ) -> Order:
        """Fetch an order; non-admin callers only see their own."""
        query = db.query(Order).filter(Order.id == order_id)
        if not is_admin:
            query = query.filter(Order.user_id == user_id)
        order = query.first()
        if order is None:
            raise NotFoundError("Order", order_id)
        return order

    def list_orders(
        self,
        db: Session,
        status: Optional[str] = None,
        payment_status: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
        user_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Page through orders, newest first.

        Args:
            db: Database session
            status: Order status filter
            payment_status: Payment status filter
            search: Case-insensitive fragment of the order number
            page: 1-based page
            limit: Page size
            user_id: Restrict to one user's orders

        Returns:
            Orders on the page plus paging totals
        """
        if page < 1 or limit < 1:
            raise InvalidInputError("page and limit must be positive")

        query = db.query(Order)
        if user_id is not None:
            query = query.filter(Order.user_id == user_id)
        if status:
            query = query.filter(Order.order_status == order_rules.validate_order_status(status))
        if payment_status:
            query = query.filter(
                Order.payment_status == order_rules.validate_payment_status(payment_status)
            )
        if search:
            query = query.filter(Order.order_number.ilike(f"%{search.strip()}%"))

        total = query.count()
        orders = query.order_by(Order.created_at.desc(), Order.id.desc()) \
            .offset((page - 1) * limit).limit(limit).all()

        return {
            "orders": orders,
            "total": total,
            "page": page,
            "total_pages": (total + limit - 1) // limit,
        }

    def list_user_orders(
        self,
        db: Session,
        user_id: str,
        status: Optional[str] = None,
        page: int = 1,
        limit: int = 10
    ) -> Dict[str, Any]:
        return self.list_orders(db, status=status, page=page, limit=limit, user_id=user_id)

    def track_order(self, db: Session, order_id: int) -> Dict[str, Any]:
        """Public tracking projection, cached until the order changes."""
        cached = self.cache.get(_tracking_key(order_id))
        if cached is not None:
            return cached

        order = db.query(Order).filter(Order.id == order_id).first()
        if order is None:
            raise NotFoundError("Order", order_id)

        projection = {
            "order_number": order.order_number,
            "order_status": order.order_status,
            "tracking_number": order.tracking_number,
            "estimated_delivery": _iso(order.estimated_delivery),
            "created_at": _iso(order.created_at),
            "delivered_at": _iso(order.delivered_at),
        }
        self.cache.set(_tracking_key(order_id), projection, TRACKING_CACHE_TTL)
        return projection

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def update_order_status(
        self,
        db: Session,
        order_id: int,
        status: str,
        tracking_number: Optional[str] = None,
        estimated_delivery: Optional[datetime] = None
    ) -> Order:
        """Administrative status change; stock is not touched."""
        order_rules.validate_order_status(status)
        order = self.get_order(db, order_id, is_admin=True)
        previous = order.order_status

        order_rules.apply_order_status(order, status)
        if tracking_number:
            order.tracking_number = tracking_number
        if estimated_delivery:
            order.estimated_delivery = estimated_delivery

        db.commit()
        db.refresh(order)
        self.cache.delete(_tracking_key(order_id))

        order_status_changes_counter.add(1, {"kind": "order", "status": status})
        logger.info("Order status updated", extra={
            "order_id": order_id,
            "from_status": previous,
            "to_status": status,
            "tracking_number": order.tracking_number
        })
        return order

    def update_payment_status(
        self,
        db: Session,
        order_id: int,
        status: str,
        transaction_id: Optional[str] = None,
        payment_gateway: Optional[str] = None
    ) -> Order:
        order_rules.validate_payment_status(status)
        order = self.get_order(db, order_id, is_admin=True)
        previous = order.payment_status

        order_rules.apply_payment_status(order, status)
        if transaction_id:
            order.transaction_id = transaction_id
        if payment_gateway:
            order.payment_gateway = payment_gateway

        db.commit()
        db.refresh(order)

        order_status_changes_counter.add(1, {"kind": "payment", "status": status})
        logger.info("Payment status updated", extra={
            "order_id": order_id,
            "from_status": previous,
            "to_status": status,
            "transaction_id": order.transaction_id
        })
        return order

    def cancel_order(self, db: Session, order_id: int, user_id: str, reason: Optional[str]) -> Order:
        """
        Cancel the user's own order and put its items back in stock.

        Raises:
            NotFoundError: If the order does not exist or belongs to someone else
            InvalidTransitionError: If the order is past the confirmed stage
        """
        if reason and len(reason) > MAX_CANCEL_REASON_LENGTH:
            raise InvalidInputError(
                f"Cancel reason must be at most {MAX_CANCEL_REASON_LENGTH} characters"
            )

        order = self.get_order(db, order_id, user_id=user_id)
        order_rules.cancel(order, reason)

        try:
            if not order.stock_restored:
                restocked = self.inventory_service.apply_increments(
                    db,
                    [{"product_id": item.product_id, "quantity": item.quantity} for item in order.items]
                )
                order.stock_restored = True
                stock_restocks_counter.add(sum(r.quantity for r in restocked.applied))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Failed to cancel order", extra={"order_id": order_id, "error": str(e)})
            raise

        db.refresh(order)
        self.cache.delete(_tracking_key(order_id))

        orders_cancelled_counter.add(1)
        logger.info("Order cancelled", extra={
            "order_id": order_id,
            "user_id": user_id,
            "reason": reason
        })
        return order
