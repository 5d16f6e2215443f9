"""Dependency injection for services."""
from fastapi import Depends, Request

from storefront.cache import CacheBackend
from storefront.services.cart_service import CartService
from storefront.services.inventory_service import InventoryService
from storefront.services.order_service import OrderService
from storefront.services.product_service import ProductService


def get_cache(request: Request) -> CacheBackend:
    """Get the cache backend from app state."""
    return request.app.state.cache


def get_inventory_service() -> InventoryService:
    return InventoryService()


def get_product_service(
    inventory_service: InventoryService = Depends(get_inventory_service)
) -> ProductService:
    return ProductService(inventory_service)


def get_cart_service(cache: CacheBackend = Depends(get_cache)) -> CartService:
    return CartService(cache)


def get_order_service(
    cache: CacheBackend = Depends(get_cache),
    inventory_service: InventoryService = Depends(get_inventory_service)
) -> OrderService:
    """Get order service instance."""
    return OrderService(CartService(cache), inventory_service, cache)
