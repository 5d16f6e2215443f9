"""Orders API router."""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from storefront.auth import (
    get_current_user_id,
    get_user_id_from_token,
    is_admin_token,
    require_admin,
    verify_token,
)
from storefront.database import get_db
from storefront.dependencies import get_order_service
from storefront.schemas import (
    AnalyticsResponse,
    CancelOrderRequest,
    OrderResponse,
    OrdersListResponse,
    PlaceOrderRequest,
    PlaceOrderResponse,
    TrackOrderResponse,
    UpdateOrderStatusRequest,
    UpdatePaymentStatusRequest,
)
from storefront.services import analytics_service
from storefront.services.order_service import OrderService, serialize_order

router = APIRouter(prefix="/orders", tags=["orders"])


def _page(result):
    return {**result, "orders": [serialize_order(order) for order in result["orders"]]}


@router.post("", response_model=PlaceOrderResponse, status_code=201)
async def place_order(
    request: PlaceOrderRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    order_service: OrderService = Depends(get_order_service)
):
    """Place an order from the cart or an explicit item list - requires authentication."""
    return order_service.place_order(
        db,
        user_id=user_id,
        shipping_address=request.shipping_address.model_dump(),
        payment_method=request.payment_method,
        total_amount=request.total_amount,
        notes=request.notes,
        use_cart=request.from_cart,
        items=[item.model_dump() for item in request.items] if request.items else None,
        discount=request.discount,
        shipping_fee=request.shipping_fee
    )


# Public route, no authentication
@router.get("/track/{order_id}", response_model=TrackOrderResponse)
async def track_order(
    order_id: int,
    db: Session = Depends(get_db),
    order_service: OrderService = Depends(get_order_service)
):
    return order_service.track_order(db, order_id)


@router.get("/mine", response_model=OrdersListResponse)
async def my_orders(
    status: Optional[str] = None,
    page: int = Query(1),
    limit: int = Query(10),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    order_service: OrderService = Depends(get_order_service)
):
    """Get user's orders - requires authentication."""
    return _page(order_service.list_user_orders(db, user_id, status=status, page=page, limit=limit))


@router.get("", response_model=OrdersListResponse)
async def list_orders(
    status: Optional[str] = None,
    payment_status: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1),
    limit: int = Query(20),
    db: Session = Depends(get_db),
    _admin: str = Depends(require_admin),
    order_service: OrderService = Depends(get_order_service)
):
    """All orders with filters - admin only."""
    return _page(order_service.list_orders(
        db,
        status=status,
        payment_status=payment_status,
        search=search,
        page=page,
        limit=limit
    ))


@router.get("/analytics", response_model=AnalyticsResponse)
async def order_analytics(
    days: int = Query(30),
    db: Session = Depends(get_db),
    _admin: str = Depends(require_admin)
):
    return analytics_service.summarize(db, days)


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: int,
    db: Session = Depends(get_db),
    token: str = Depends(verify_token),
    order_service: OrderService = Depends(get_order_service)
):
    """Get one order; customers only see their own."""
    order = order_service.get_order(
        db,
        order_id,
        user_id=get_user_id_from_token(token),
        is_admin=is_admin_token(token)
    )
    return serialize_order(order)


@router.patch("/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    order_id: int,
    request: UpdateOrderStatusRequest,
    db: Session = Depends(get_db),
    _admin: str = Depends(require_admin),
    order_service: OrderService = Depends(get_order_service)
):
    order = order_service.update_order_status(
        db,
        order_id,
        request.status,
        tracking_number=request.tracking_number,
        estimated_delivery=request.estimated_delivery
    )
    return serialize_order(order)


@router.patch("/{order_id}/payment-status", response_model=OrderResponse)
async def update_payment_status(
    order_id: int,
    request: UpdatePaymentStatusRequest,
    db: Session = Depends(get_db),
    _admin: str = Depends(require_admin),
    order_service: OrderService = Depends(get_order_service)
):
    order = order_service.update_payment_status(
        db,
        order_id,
        request.status,
        transaction_id=request.transaction_id,
        payment_gateway=request.payment_gateway
    )
    return serialize_order(order)


@router.patch("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: int,
    request: CancelOrderRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    order_service: OrderService = Depends(get_order_service)
):
    """Cancel an order that is still processing or confirmed."""
    order = order_service.cancel_order(db, order_id, user_id, request.cancel_reason)
    return serialize_order(order)
