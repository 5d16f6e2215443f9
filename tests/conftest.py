"""Shared fixtures: in-memory SQLite, in-process cache, real services."""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["CACHE_BACKEND"] = "memory"
os.environ["OTEL_ENABLED"] = "false"
os.environ["PYROSCOPE_ENABLED"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"

import pytest
from fastapi.testclient import TestClient

from storefront.cache import LocalCache
from storefront.database import SessionLocal, engine, get_db
from storefront.dependencies import get_cache
from storefront.main import app
from storefront.models import Base
from storefront.services.cart_service import CartService
from storefront.services.inventory_service import InventoryService
from storefront.services.order_service import OrderService
from storefront.services.product_service import ProductService

USER_HEADERS = {"Authorization": "Bearer user-token-123"}
OTHER_USER_HEADERS = {"Authorization": "Bearer test-token-789"}
ADMIN_HEADERS = {"Authorization": "Bearer admin-token-456"}

ADDRESS = {
    "full_name": "Asha Rao",
    "phone": "9800000000",
    "street": "12 MG Road",
    "city": "Bengaluru",
    "state": "KA",
    "postal_code": "560001",
}


@pytest.fixture
def db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def cache():
    return LocalCache()


@pytest.fixture
def inventory_service():
    return InventoryService()


@pytest.fixture
def product_service(inventory_service):
    return ProductService(inventory_service)


@pytest.fixture
def cart_service(cache):
    return CartService(cache)


@pytest.fixture
def order_service(cart_service, inventory_service, cache):
    return OrderService(cart_service, inventory_service, cache)


@pytest.fixture
def make_product(db, product_service):
    """Factory creating persisted products with sensible defaults."""
    def _make(name="Widget", purchase_price=5.0, selling_price=10.0, stock=10, **kwargs):
        return product_service.create_product(
            db,
            name=name,
            purchase_price=purchase_price,
            selling_price=selling_price,
            stock=stock,
            **kwargs
        )
    return _make


@pytest.fixture
def place_from_cart(db, cart_service, order_service):
    """Fill a user's cart with (product, quantity) pairs and check it out."""
    def _place(user_id, lines, total_amount=None, **kwargs):
        for product, quantity in lines:
            cart_service.add_line(db, user_id, product.id, quantity, product.selling_price)
        if total_amount is None:
            total_amount = sum(product.selling_price * quantity for product, quantity in lines)
        return order_service.place_order(
            db,
            user_id=user_id,
            shipping_address=dict(ADDRESS),
            payment_method="COD",
            total_amount=total_amount,
            **kwargs
        )
    return _place


@pytest.fixture
def client(db, cache):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_cache] = lambda: cache
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
