"""Inventory consistency coordinator.

Stock is only ever decremented through a single conditional UPDATE:

    UPDATE products
       SET stock = stock - :qty, status = CASE ... END
     WHERE id = :id AND is_deleted = false AND stock >= :qty

so two checkouts racing for the last unit cannot both succeed and stock
can never go negative. Nothing here commits; the caller owns the
transaction.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from opentelemetry import trace
from sqlalchemy.orm import Session

from storefront.errors import InvalidInputError, StockReservationError
from storefront.models import Product, utcnow
from storefront.monitoring import stock_reservation_failures_counter
from storefront.stock_ledger import STOCK_OPERATIONS, adjust_stock, status_expression

logger = logging.getLogger(__name__)

APPLIED = "applied"
INSUFFICIENT_STOCK = "insufficient_stock"
NOT_FOUND = "not_found"


@dataclass
class ItemResult:
    """Outcome of one stock change."""
    product_id: int
    quantity: int
    outcome: str
    stock_after: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.outcome == APPLIED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "product_id": self.product_id,
            "quantity": self.quantity,
            "outcome": self.outcome,
            "stock_after": self.stock_after,
        }


@dataclass
class BulkResult:
    """Per-item outcomes of a bulk stock operation."""
    results: List[ItemResult] = field(default_factory=list)

    @property
    def applied(self) -> List[ItemResult]:
        return [r for r in self.results if r.ok]

    @property
    def failed(self) -> List[ItemResult]:
        return [r for r in self.results if not r.ok]

    @property
    def all_applied(self) -> bool:
        return not self.failed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "applied_count": len(self.applied),
            "failed_count": len(self.failed),
            "items": [r.to_dict() for r in self.results],
        }


def _expire_cached(db: Session, product_id: int) -> None:
    # Bulk UPDATEs bypass the identity map; drop any stale copy
    cached = db.identity_map.get(db.identity_key(Product, product_id))
    if cached is not None:
        db.expire(cached, ["stock", "status", "updated_at"])


class InventoryService:
    """Applies stock changes for orders and administrative corrections."""

    def __init__(self):
        self.tracer = trace.get_tracer(__name__)

    def decrement_stock(self, db: Session, product_id: int, quantity: int) -> ItemResult:
        """
        Atomically take ``quantity`` units of a product.

        Args:
            db: Database session
            product_id: Product identifier
            quantity: Units to remove (>= 1)

        Returns:
            Item result; ``insufficient_stock`` leaves the row untouched
        """
        if quantity < 1:
            raise InvalidInputError("Quantity must be at least 1")

        with self.tracer.start_as_current_span("db.update.decrement_stock") as db_span:
            db_span.set_attribute("db.operation", "UPDATE")
            db_span.set_attribute("db.table", "products")
            db_span.set_attribute("product.id", product_id)
            db_span.set_attribute("quantity", quantity)

            new_stock = Product.stock - quantity
            rows = db.query(Product).filter(
                Product.id == product_id,
                Product.is_deleted.is_(False),
                Product.stock >= quantity
            ).update(
                {
                    Product.stock: new_stock,
                    Product.status: status_expression(new_stock),
                    Product.updated_at: utcnow(),
                },
                synchronize_session=False
            )
            db_span.set_attribute("db.rows_affected", rows)
            _expire_cached(db, product_id)

            if rows == 1:
                stock_after = db.query(Product.stock).filter(Product.id == product_id).scalar()
                return ItemResult(product_id, quantity, APPLIED, stock_after)

            current = db.query(Product.stock, Product.is_deleted).filter(
                Product.id == product_id
            ).first()
            if current is None or current.is_deleted:
                return ItemResult(product_id, quantity, NOT_FOUND)
            return ItemResult(product_id, quantity, INSUFFICIENT_STOCK, current.stock)

    def apply_decrements(
        self,
        db: Session,
        items: Iterable[Dict[str, Any]],
        atomic: bool = False
    ) -> BulkResult:
        """
        Decrement stock for several products.

        Args:
            db: Database session
            items: Dicts with ``product_id`` and ``quantity``
            atomic: Raise instead of returning when any item fails, so the
                caller's transaction is rolled back as a whole

        Returns:
            Per-item results

        Raises:
            StockReservationError: In atomic mode, if any item failed
        """
        bulk = BulkResult()
        for item in items:
            bulk.results.append(
                self.decrement_stock(db, item["product_id"], item["quantity"])
            )

        for failure in bulk.failed:
            stock_reservation_failures_counter.add(1, {"outcome": failure.outcome})
            logger.warning("Stock decrement rejected", extra={
                "product_id": failure.product_id,
                "quantity": failure.quantity,
                "outcome": failure.outcome,
                "stock": failure.stock_after
            })

        if atomic and not bulk.all_applied:
            raise StockReservationError(bulk.results)
        return bulk

    def apply_increments(self, db: Session, items: Iterable[Dict[str, Any]]) -> BulkResult:
        """Return units to stock (e.g. for a cancelled order)."""
        bulk = BulkResult()
        for item in items:
            product_id, quantity = item["product_id"], item["quantity"]
            new_stock = Product.stock + quantity
            rows = db.query(Product).filter(Product.id == product_id).update(
                {
                    Product.stock: new_stock,
                    Product.status: status_expression(new_stock),
                    Product.updated_at: utcnow(),
                },
                synchronize_session=False
            )
            _expire_cached(db, product_id)
            if rows == 1:
                stock_after = db.query(Product.stock).filter(Product.id == product_id).scalar()
                bulk.results.append(ItemResult(product_id, quantity, APPLIED, stock_after))
            else:
                logger.warning("Restock skipped, product missing", extra={
                    "product_id": product_id,
                    "quantity": quantity
                })
                bulk.results.append(ItemResult(product_id, quantity, NOT_FOUND))
        return bulk

    def apply_corrections(self, db: Session, corrections: List[Dict[str, Any]]) -> BulkResult:
        """
        Apply administrative stock corrections.

        Each correction is ``{"product_id", "quantity", "op"}`` with op in
        set/add/subtract and goes through the stock ledger under a row lock.
        """
        for correction in corrections:
            if correction.get("op", "set") not in STOCK_OPERATIONS:
                raise InvalidInputError(
                    f"Invalid stock operation '{correction.get('op')}'. "
                    f"Allowed: {', '.join(STOCK_OPERATIONS)}"
                )
            if correction["quantity"] < 0:
                raise InvalidInputError("Stock quantity must be zero or positive")

        bulk = BulkResult()
        with self.tracer.start_as_current_span("db.update.stock_corrections") as db_span:
            db_span.set_attribute("corrections.count", len(corrections))
            for correction in corrections:
                product_id = correction["product_id"]
                quantity = correction["quantity"]
                product = db.query(Product).filter(
                    Product.id == product_id,
                    Product.is_deleted.is_(False)
                ).with_for_update().first()
                if product is None:
                    bulk.results.append(ItemResult(product_id, quantity, NOT_FOUND))
                    continue
                stock_after = adjust_stock(product, quantity, correction.get("op", "set"))
                bulk.results.append(ItemResult(product_id, quantity, APPLIED, stock_after))
            db.flush()

        logger.info("Applied stock corrections", extra={
            "applied": len(bulk.applied),
            "failed": len(bulk.failed)
        })
        return bulk
