"""Database connection and session management."""
import logging
from typing import Any, Dict, Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from storefront.config import DATABASE_URL, DEFAULT_LOW_STOCK_THRESHOLD
from storefront.models import Base, Product, ProductStatus
from storefront.sku import assign_unique_sku

logger = logging.getLogger(__name__)


def _engine_options(url: str) -> Dict[str, Any]:
    if url.startswith("sqlite"):
        options: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, otherwise every session sees an empty database
            options["poolclass"] = StaticPool
        return options
    return {
        "pool_size": 10,
        "max_overflow": 20,
        "pool_pre_ping": True,  # Verify connections before use
        "pool_recycle": 3600,
        "pool_timeout": 30,
    }


def build_engine(url: str) -> Engine:
    return create_engine(url, **_engine_options(url))


engine = build_engine(DATABASE_URL)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """
    Dependency for getting database session.

    Yields:
        Database session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


SEED_PRODUCTS = [
    ("Laptop", "Electronics", 820.00, 999.99, 50),
    ("Smartphone", "Electronics", 450.00, 599.99, 100),
    ("Headphones", "Electronics", 60.00, 99.99, 200),
    ("Desk Chair", "Furniture", 120.00, 199.99, 30),
    ("Monitor", "Electronics", 210.00, 299.99, 75),
    ("Keyboard", "Electronics", 45.00, 79.99, 150),
    ("Mouse", "Electronics", 15.00, 29.99, 300),
    ("Webcam", "Electronics", 55.00, 89.99, 0),
]


def init_db(bind: Engine = None) -> None:
    """Initialize database tables and seed data."""
    bind = bind or engine
    Base.metadata.create_all(bind=bind)

    db = Session(bind=bind)
    try:
        if db.query(Product).count() == 0:
            taken = set()
            for name, category, purchase_price, selling_price, stock in SEED_PRODUCTS:
                sku = assign_unique_sku(lambda code: code in taken)
                taken.add(sku)
                db.add(Product(
                    name=name,
                    slug=name.lower().replace(" ", "-"),
                    category=category,
                    purchase_price=purchase_price,
                    selling_price=selling_price,
                    stock=stock,
                    low_stock_threshold=DEFAULT_LOW_STOCK_THRESHOLD,
                    status=ProductStatus.ACTIVE if stock > 0 else ProductStatus.OUT_OF_STOCK,
                    sku=sku,
                ))
            db.commit()
            logger.info("Seeded database with sample products", extra={
                "product_count": len(SEED_PRODUCTS)
            })
    finally:
        db.close()
