"""Pydantic schemas for request/response validation."""
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict


class ProductCreate(BaseModel):
    """Schema for creating a product."""
    name: str
    purchase_price: float
    selling_price: Optional[float] = None
    stock: int
    category: Optional[str] = None
    description: str = ""
    status: str = "ACTIVE"
    low_stock_threshold: int = 10
    is_featured: bool = False
    sku: Optional[str] = None


class ProductUpdate(BaseModel):
    """Schema for updating a product; omitted fields are left unchanged."""
    name: Optional[str] = None
    purchase_price: Optional[float] = None
    selling_price: Optional[float] = None
    stock: Optional[int] = None
    category: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None
    low_stock_threshold: Optional[int] = None
    is_featured: Optional[bool] = None


class ProductResponse(BaseModel):
    """Schema for product response."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    slug: str
    description: Optional[str] = None
    category: Optional[str] = None
    purchase_price: float
    selling_price: Optional[float] = None
    stock: int
    low_stock_threshold: int
    status: str
    sku: str
    is_deleted: bool
    is_featured: bool
    is_in_stock: bool
    is_low_stock: bool
    stock_status: str
    profit_margin: Optional[float] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ProductListResponse(BaseModel):
    """Schema for a page of products."""
    products: List[ProductResponse]
    total: int
    page: int
    total_pages: int


class StockUpdateRequest(BaseModel):
    """Schema for a stock change on one product."""
    quantity: int
    op: str = "set"


class StockCorrection(BaseModel):
    """One line of a bulk stock correction."""
    product_id: int
    quantity: int
    op: str = "set"


class BulkStockRequest(BaseModel):
    """Schema for bulk stock corrections."""
    items: List[StockCorrection]


class StockItemResult(BaseModel):
    """Per-item outcome of a stock operation."""
    product_id: int
    quantity: int
    outcome: str
    stock_after: Optional[int] = None


class BulkStockResponse(BaseModel):
    """Schema for bulk stock results."""
    applied_count: int
    failed_count: int
    items: List[StockItemResult]


class AddToCartRequest(BaseModel):
    """Schema for add to cart request."""
    product_id: int
    quantity: int = 1
    price_at_add_time: float


class UpdateCartLineRequest(BaseModel):
    """Schema for changing a cart line quantity."""
    quantity: int


class CartItemResponse(BaseModel):
    """Schema for cart item in response."""
    product_id: int
    product_name: Optional[str] = None
    sku: Optional[str] = None
    selling_price: Optional[float] = None
    stock_status: Optional[str] = None
    quantity: int
    price_at_add_time: float
    subtotal: float


class CartResponse(BaseModel):
    """Schema for cart response."""
    id: int
    user_id: str
    items: List[CartItemResponse]
    total_items: int
    total_price: float
    updated_at: Optional[datetime] = None


class CartSummaryResponse(BaseModel):
    """Schema for the cached cart summary."""
    user_id: str
    total_items: int
    total_price: float


class ShippingAddress(BaseModel):
    """Shipping address; every field but country is required."""
    full_name: str
    phone: str
    street: str
    city: str
    state: str
    postal_code: str
    country: Optional[str] = None


class OrderItemRequest(BaseModel):
    """Explicit order line."""
    product_id: int
    quantity: int
    price: float


class PlaceOrderRequest(BaseModel):
    """Schema for placing an order."""
    shipping_address: ShippingAddress
    payment_method: str
    total_amount: float
    notes: Optional[str] = None
    from_cart: bool = True
    items: Optional[List[OrderItemRequest]] = None
    discount: float = 0.0
    shipping_fee: float = 0.0


class PlaceOrderResponse(BaseModel):
    """Schema for a placed order."""
    order_id: int
    order_number: str


class OrderItemResponse(BaseModel):
    """Snapshot line of an order."""
    product_id: int
    quantity: int
    unit_price: float
    total_price: float


class PaymentDetails(BaseModel):
    transaction_id: Optional[str] = None
    payment_gateway: Optional[str] = None
    paid_at: Optional[datetime] = None


class OrderResponse(BaseModel):
    """Schema for order response."""
    id: int
    order_number: str
    user_id: str
    items: List[OrderItemResponse]
    shipping_address: ShippingAddress
    payment_method: str
    payment_status: str
    order_status: str
    payment_details: PaymentDetails
    tracking_number: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    notes: Optional[str] = None
    cancel_reason: Optional[str] = None
    total_amount: float
    discount: float
    shipping_fee: float
    is_delivered: bool
    delivered_at: Optional[datetime] = None
    order_age_days: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class OrdersListResponse(BaseModel):
    """Schema for orders list response."""
    orders: List[OrderResponse]
    total: int
    page: int
    total_pages: int


class UpdateOrderStatusRequest(BaseModel):
    status: str
    tracking_number: Optional[str] = None
    estimated_delivery: Optional[datetime] = None


class UpdatePaymentStatusRequest(BaseModel):
    status: str
    transaction_id: Optional[str] = None
    payment_gateway: Optional[str] = None


class CancelOrderRequest(BaseModel):
    cancel_reason: Optional[str] = None


class TrackOrderResponse(BaseModel):
    """Public tracking projection."""
    order_number: str
    order_status: str
    tracking_number: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    created_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None


class AnalyticsResponse(BaseModel):
    """Order analytics over a time window."""
    window_days: int
    total_orders: int
    total_revenue: float
    avg_order_value: float
    cancelled_orders: int
    delivered_orders: int
    status_breakdown: Dict[str, int]
