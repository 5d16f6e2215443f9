"""Stock ledger rules for products.

Every code path that changes ``Product.stock`` goes through one of these
functions so the availability status stays consistent with the quantity:

- stock reaching 0 flips an ACTIVE product to OUT_OF_STOCK
- stock becoming positive flips an OUT_OF_STOCK product back to ACTIVE
- DRAFT and DISCONTINUED products are never moved by stock changes

``status_expression`` is the same rule rendered as SQL so it can be applied
inside a single conditional UPDATE.
"""
from sqlalchemy import and_, case

from storefront.errors import InvalidInputError
from storefront.models import Product, ProductStatus, utcnow

STOCK_OPERATIONS = ("set", "add", "subtract")


def resolve_status(stock: int, status: str) -> str:
    """Return the status a product with ``status`` should have at ``stock``."""
    if stock == 0 and status == ProductStatus.ACTIVE:
        return ProductStatus.OUT_OF_STOCK
    if stock > 0 and status == ProductStatus.OUT_OF_STOCK:
        return ProductStatus.ACTIVE
    return status


def _apply(product: Product, new_stock: int) -> int:
    product.stock = new_stock
    product.status = resolve_status(new_stock, product.status)
    product.updated_at = utcnow()
    return product.stock


def set_stock(product: Product, quantity: int) -> int:
    """Set the quantity on hand, clamping at zero."""
    return _apply(product, max(0, int(quantity)))


def adjust_stock(product: Product, delta: int, op: str) -> int:
    """
    Move stock up or down by ``delta``.

    Args:
        product: Product to change
        delta: Non-negative amount
        op: "add" or "subtract" ("set" is accepted and delegates to set_stock)

    Returns:
        The resulting stock

    Raises:
        InvalidInputError: On an unknown operation or a negative delta
    """
    if op not in STOCK_OPERATIONS:
        raise InvalidInputError(
            f"Invalid stock operation '{op}'. Allowed: {', '.join(STOCK_OPERATIONS)}"
        )
    if delta < 0:
        raise InvalidInputError("Stock quantity must be zero or positive")

    if op == "set":
        return set_stock(product, delta)
    if op == "add":
        return _apply(product, product.stock + delta)
    # subtract never goes below zero
    return _apply(product, max(0, product.stock - delta))


def soft_delete(product: Product) -> None:
    product.is_deleted = True
    product.status = ProductStatus.DISCONTINUED
    product.updated_at = utcnow()


def restore(product: Product) -> None:
    product.is_deleted = False
    product.status = ProductStatus.ACTIVE if product.stock > 0 else ProductStatus.OUT_OF_STOCK
    product.updated_at = utcnow()


def status_expression(new_stock):
    """SQL CASE applying ``resolve_status`` to a stock expression.

    Both SET clauses must see the pre-update row, which holds on PostgreSQL
    and SQLite. MySQL evaluates SET left to right and is not supported.
    """
    return case(
        (
            and_(new_stock == 0, Product.status == ProductStatus.ACTIVE),
            ProductStatus.OUT_OF_STOCK
        ),
        (
            and_(new_stock > 0, Product.status == ProductStatus.OUT_OF_STOCK),
            ProductStatus.ACTIVE
        ),
        else_=Product.status
    )
