"""Product catalogue and stock ledger service."""
import logging
import re
from typing import Any, Dict, List, Optional

from opentelemetry import trace
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query, Session

from storefront import stock_ledger
from storefront.config import DEFAULT_LOW_STOCK_THRESHOLD, SKU_MAX_ATTEMPTS
from storefront.errors import ConflictError, InvalidInputError, NotFoundError
from storefront.models import Product, ProductStatus
from storefront.services.inventory_service import BulkResult, InventoryService, ItemResult
from storefront.sku import assign_unique_sku

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset({
    "name",
    "description",
    "category",
    "purchase_price",
    "selling_price",
    "stock",
    "low_stock_threshold",
    "status",
    "is_featured",
})


def slugify(text: str) -> str:
    """Convert a product name to a URL-friendly slug."""
    text = text.lower().strip()
    text = re.sub(r'[^\w\s-]', '', text)
    text = re.sub(r'[\s_-]+', '-', text)
    return text.strip('-')


def _round_price(value: Optional[float]) -> Optional[float]:
    if value is None:
        return None
    return round(float(value), 2)


def _validate_product_fields(
    name: Optional[str],
    purchase_price: Optional[float],
    selling_price: Optional[float],
    stock: Optional[int],
    status: str,
    low_stock_threshold: int
) -> None:
    if not name or not name.strip():
        raise InvalidInputError("Product name is required")
    if purchase_price is None or stock is None:
        raise InvalidInputError("purchase_price and stock are required")
    if purchase_price < 0 or (selling_price is not None and selling_price < 0) or stock < 0:
        raise InvalidInputError("Prices and stock must not be negative")
    if selling_price is not None and selling_price < purchase_price:
        raise InvalidInputError("Selling price cannot be less than purchase price")
    if status not in ProductStatus.ALL:
        raise InvalidInputError(f"Invalid product status '{status}'")
    if low_stock_threshold is None or low_stock_threshold < 0:
        raise InvalidInputError("low_stock_threshold must not be negative")


class ProductService:
    """Service owning products and their stock ledger."""

    def __init__(self, inventory_service: InventoryService):
        """
        Initialize product service.

        Args:
            inventory_service: Coordinator used for conditional stock writes
        """
        self.inventory_service = inventory_service
        self.tracer = trace.get_tracer(__name__)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    @staticmethod
    def _visible(db: Session, include_deleted: bool = False) -> Query:
        query = db.query(Product)
        if not include_deleted:
            query = query.filter(Product.is_deleted.is_(False))
        return query

    def get_product(self, db: Session, product_id: int, include_deleted: bool = False) -> Product:
        product = self._visible(db, include_deleted).filter(Product.id == product_id).first()
        if product is None:
            raise NotFoundError("Product", product_id)
        return product

    def get_by_slug(self, db: Session, slug: str) -> Product:
        product = self._visible(db).filter(Product.slug == slug).first()
        if product is None:
            raise NotFoundError("Product", slug)
        return product

    def get_by_sku(self, db: Session, sku: str) -> Product:
        product = self._visible(db).filter(Product.sku == sku.upper()).first()
        if product is None:
            raise NotFoundError("Product", sku)
        return product

    def list_products(
        self,
        db: Session,
        search: Optional[str] = None,
        category: Optional[str] = None,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        in_stock: Optional[bool] = None,
        featured: Optional[bool] = None,
        status: Optional[str] = None,
        include_deleted: bool = False,
        page: int = 1,
        limit: int = 20
    ) -> Dict[str, Any]:
        """
        List products with optional filters.

        Soft-deleted products are left out unless ``include_deleted`` is set.

        Returns:
            Page of products plus total count
        """
        if page < 1 or limit < 1:
            raise InvalidInputError("page and limit must be positive")
        if status is not None and status not in ProductStatus.ALL:
            raise InvalidInputError(f"Invalid product status '{status}'")

        query = self._visible(db, include_deleted)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(or_(
                Product.name.ilike(pattern),
                Product.description.ilike(pattern)
            ))
        if category:
            query = query.filter(Product.category == category)
        if min_price is not None:
            query = query.filter(Product.selling_price >= min_price)
        if max_price is not None:
            query = query.filter(Product.selling_price <= max_price)
        if in_stock:
            query = query.filter(Product.stock > 0)
        if featured is not None:
            query = query.filter(Product.is_featured.is_(featured))
        if status:
            query = query.filter(Product.status == status)

        total = query.count()
        products = query.order_by(Product.created_at.desc(), Product.id.desc()) \
            .offset((page - 1) * limit).limit(limit).all()

        return {
            "products": products,
            "total": total,
            "page": page,
            "total_pages": (total + limit - 1) // limit,
        }

    def list_featured(self, db: Session, limit: int = 10) -> List[Product]:
        return self._visible(db).filter(
            Product.is_featured.is_(True),
            Product.status == ProductStatus.ACTIVE
        ).order_by(Product.created_at.desc()).limit(limit).all()

    def list_low_stock(self, db: Session, threshold: Optional[int] = None) -> List[Product]:
        """Active products at or below their own (or the given) threshold."""
        query = self._visible(db).filter(Product.status == ProductStatus.ACTIVE)
        if threshold is not None:
            query = query.filter(Product.stock < threshold)
        else:
            query = query.filter(Product.stock <= Product.low_stock_threshold)
        return query.order_by(Product.stock.asc()).all()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def _sku_taken(self, db: Session, code: str) -> bool:
        # Deleted products keep their SKU
        return db.query(Product.id).filter(Product.sku == code).first() is not None

    def create_product(
        self,
        db: Session,
        name: str,
        purchase_price: float,
        selling_price: Optional[float],
        stock: int,
        category: Optional[str] = None,
        description: str = "",
        status: str = ProductStatus.ACTIVE,
        low_stock_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD,
        is_featured: bool = False,
        sku: Optional[str] = None
    ) -> Product:
        """
        Create a product, assigning a SKU when none is given.

        Raises:
            InvalidInputError: On missing or out-of-range fields
            ConflictError: If an explicit SKU is already taken
            SKUExhaustedError: If no free SKU could be generated
        """
        _validate_product_fields(
            name, purchase_price, selling_price, stock, status, low_stock_threshold
        )

        with self.tracer.start_as_current_span("db.insert.product") as db_span:
            if sku:
                sku = sku.strip().upper()
                if self._sku_taken(db, sku):
                    raise ConflictError(f"SKU already exists: {sku}")
            else:
                sku = assign_unique_sku(lambda code: self._sku_taken(db, code), SKU_MAX_ATTEMPTS)
            db_span.set_attribute("product.sku", sku)

            product = Product(
                name=name.strip(),
                slug=slugify(name),
                description=description or "",
                category=category,
                purchase_price=_round_price(purchase_price),
                selling_price=_round_price(selling_price),
                stock=0,
                low_stock_threshold=low_stock_threshold,
                status=status,
                sku=sku,
                is_featured=is_featured,
            )
            stock_ledger.set_stock(product, stock)
            db.add(product)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                logger.warning("Product SKU collided on insert", extra={"sku": sku})
                raise ConflictError(f"SKU already exists: {sku}")
            db.refresh(product)
            db_span.set_attribute("product.id", product.id)

        logger.info("Created product", extra={
            "product_id": product.id,
            "sku": product.sku,
            "stock": product.stock,
            "status": product.status
        })
        return product

    def update_product(self, db: Session, product_id: int, changes: Dict[str, Any]) -> Product:
        """
        Update catalogue fields of a live product.

        Omitted fields keep their value. A new name re-derives the slug, the
        SKU never changes and a new stock goes through the ledger so the
        status follows it. Existing orders keep the prices they were placed at.

        Raises:
            InvalidInputError: On unknown fields or values that fail creation rules
            NotFoundError: If the product does not exist or is deleted
        """
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise InvalidInputError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

        with self.tracer.start_as_current_span("db.update.product") as db_span:
            db_span.set_attribute("product.id", product_id)
            product = self._visible(db).filter(Product.id == product_id) \
                .with_for_update().populate_existing().first()
            if product is None:
                raise NotFoundError("Product", product_id)

            merged = {field: getattr(product, field) for field in UPDATABLE_FIELDS}
            merged.update(changes)
            _validate_product_fields(
                merged["name"],
                merged["purchase_price"],
                merged["selling_price"],
                merged["stock"],
                merged["status"],
                merged["low_stock_threshold"]
            )

            product.name = merged["name"].strip()
            product.slug = slugify(merged["name"])
            product.description = merged["description"] or ""
            product.category = merged["category"]
            product.purchase_price = _round_price(merged["purchase_price"])
            product.selling_price = _round_price(merged["selling_price"])
            product.low_stock_threshold = merged["low_stock_threshold"]
            product.is_featured = bool(merged["is_featured"])
            product.status = merged["status"]
            stock_ledger.set_stock(product, merged["stock"])

            db.commit()
            db.refresh(product)

        logger.info("Updated product", extra={
            "product_id": product.id,
            "fields": sorted(changes),
            "stock": product.stock,
            "status": product.status
        })
        return product

    def adjust_stock(self, db: Session, product_id: int, quantity: int, op: str) -> Product:
        """
        Change stock with "set", "add" or "subtract".

        "subtract" clamps at zero like the ledger does.
        """
        result = self.inventory_service.apply_corrections(db, [
            {"product_id": product_id, "quantity": quantity, "op": op}
        ]).results[0]
        if not result.ok:
            db.rollback()
            raise NotFoundError("Product", product_id)
        db.commit()
        product = self.get_product(db, product_id)
        logger.info("Stock adjusted", extra={
            "product_id": product_id,
            "op": op,
            "quantity": quantity,
            "stock": product.stock
        })
        return product

    def reserve_stock(self, db: Session, product_id: int, quantity: int) -> ItemResult:
        """Conditional decrement that never clamps; failures are reported, not applied."""
        result = self.inventory_service.decrement_stock(db, product_id, quantity)
        db.commit()
        return result

    def bulk_adjust_stock(self, db: Session, corrections: List[Dict[str, Any]]) -> BulkResult:
        if not corrections:
            raise InvalidInputError("No stock corrections provided")
        bulk = self.inventory_service.apply_corrections(db, corrections)
        db.commit()
        return bulk

    def soft_delete(self, db: Session, product_id: int) -> Product:
        product = self.get_product(db, product_id)
        stock_ledger.soft_delete(product)
        db.commit()
        db.refresh(product)
        logger.info("Product soft-deleted", extra={"product_id": product_id})
        return product

    def restore(self, db: Session, product_id: int) -> Product:
        product = self.get_product(db, product_id, include_deleted=True)
        if not product.is_deleted:
            raise InvalidInputError("Product is not deleted")
        stock_ledger.restore(product)
        db.commit()
        db.refresh(product)
        logger.info("Product restored", extra={
            "product_id": product_id,
            "status": product.status
        })
        return product
