"""Cart API router."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storefront.auth import get_current_user_id
from storefront.database import get_db
from storefront.dependencies import get_cart_service
from storefront.schemas import (
    AddToCartRequest,
    CartResponse,
    CartSummaryResponse,
    UpdateCartLineRequest,
)
from storefront.services.cart_service import CartService

router = APIRouter(prefix="/cart", tags=["cart"])


@router.post("/items", response_model=CartResponse)
async def add_to_cart(
    request: AddToCartRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    cart_service: CartService = Depends(get_cart_service)
):
    """Add item to cart - requires authentication."""
    cart = cart_service.add_line(
        db,
        user_id=user_id,
        product_id=request.product_id,
        quantity=request.quantity,
        price_at_add_time=request.price_at_add_time
    )
    return cart_service.serialize(cart)


@router.get("", response_model=CartResponse)
async def get_cart(
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    cart_service: CartService = Depends(get_cart_service)
):
    """Get user's cart - requires authentication."""
    return cart_service.get_cart(db, user_id)


@router.get("/summary", response_model=CartSummaryResponse)
async def get_cart_summary(
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    cart_service: CartService = Depends(get_cart_service)
):
    return cart_service.get_summary(db, user_id)


@router.put("/items/{product_id}", response_model=CartResponse)
async def update_cart_line(
    product_id: int,
    request: UpdateCartLineRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    cart_service: CartService = Depends(get_cart_service)
):
    """Change a line's quantity; 0 removes it."""
    cart = cart_service.set_line_quantity(db, user_id, product_id, request.quantity)
    return cart_service.serialize(cart)


@router.delete("/items/{product_id}", response_model=CartResponse)
async def remove_cart_line(
    product_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    cart_service: CartService = Depends(get_cart_service)
):
    cart = cart_service.remove_line(db, user_id, product_id)
    return cart_service.serialize(cart)


@router.delete("", response_model=CartResponse)
async def clear_cart(
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    cart_service: CartService = Depends(get_cart_service)
):
    cart = cart_service.clear(db, user_id)
    return cart_service.serialize(cart)
