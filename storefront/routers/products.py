"""Products API router."""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from storefront.auth import require_admin
from storefront.database import get_db
from storefront.dependencies import get_product_service
from storefront.schemas import (
    BulkStockRequest,
    BulkStockResponse,
    ProductCreate,
    ProductListResponse,
    ProductResponse,
    ProductUpdate,
    StockItemResult,
    StockUpdateRequest,
)
from storefront.services.product_service import ProductService

router = APIRouter(prefix="/products", tags=["products"])


@router.get("", response_model=ProductListResponse)
async def list_products(
    search: Optional[str] = None,
    category: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    in_stock: Optional[bool] = None,
    featured: Optional[bool] = None,
    status: Optional[str] = None,
    page: int = Query(1),
    limit: int = Query(20),
    db: Session = Depends(get_db),
    product_service: ProductService = Depends(get_product_service)
):
    """List catalogue products; soft-deleted products are never shown here."""
    return product_service.list_products(
        db,
        search=search,
        category=category,
        min_price=min_price,
        max_price=max_price,
        in_stock=in_stock,
        featured=featured,
        status=status,
        page=page,
        limit=limit
    )


@router.get("/featured", response_model=List[ProductResponse])
async def featured_products(
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    product_service: ProductService = Depends(get_product_service)
):
    return product_service.list_featured(db, limit)


@router.get("/low-stock", response_model=List[ProductResponse])
async def low_stock_products(
    threshold: Optional[int] = None,
    db: Session = Depends(get_db),
    _admin: str = Depends(require_admin),
    product_service: ProductService = Depends(get_product_service)
):
    """Active products running low - admin only."""
    return product_service.list_low_stock(db, threshold)


@router.get("/slug/{slug}", response_model=ProductResponse)
async def get_product_by_slug(
    slug: str,
    db: Session = Depends(get_db),
    product_service: ProductService = Depends(get_product_service)
):
    return product_service.get_by_slug(db, slug)


@router.get("/sku/{sku}", response_model=ProductResponse)
async def get_product_by_sku(
    sku: str,
    db: Session = Depends(get_db),
    product_service: ProductService = Depends(get_product_service)
):
    return product_service.get_by_sku(db, sku)


@router.post("", response_model=ProductResponse, status_code=201)
async def create_product(
    request: ProductCreate,
    db: Session = Depends(get_db),
    _admin: str = Depends(require_admin),
    product_service: ProductService = Depends(get_product_service)
):
    """Create a product - admin only. A SKU is generated when none is given."""
    return product_service.create_product(db, **request.model_dump())


@router.post("/stock/bulk", response_model=BulkStockResponse)
async def bulk_stock(
    request: BulkStockRequest,
    db: Session = Depends(get_db),
    _admin: str = Depends(require_admin),
    product_service: ProductService = Depends(get_product_service)
):
    """Apply several stock corrections; results are reported per item."""
    bulk = product_service.bulk_adjust_stock(
        db, [item.model_dump() for item in request.items]
    )
    return bulk.to_dict()


@router.get("/{product_id}", response_model=ProductResponse)
async def get_product(
    product_id: int,
    db: Session = Depends(get_db),
    product_service: ProductService = Depends(get_product_service)
):
    return product_service.get_product(db, product_id)


@router.put("/{product_id}", response_model=ProductResponse)
async def update_product(
    product_id: int,
    request: ProductUpdate,
    db: Session = Depends(get_db),
    _admin: str = Depends(require_admin),
    product_service: ProductService = Depends(get_product_service)
):
    """Update product details - admin only. The SKU cannot be changed."""
    return product_service.update_product(db, product_id, request.model_dump(exclude_unset=True))


@router.patch("/{product_id}/stock", response_model=ProductResponse)
async def update_stock(
    product_id: int,
    request: StockUpdateRequest,
    db: Session = Depends(get_db),
    _admin: str = Depends(require_admin),
    product_service: ProductService = Depends(get_product_service)
):
    """Set, add to or subtract from a product's stock - admin only."""
    return product_service.adjust_stock(db, product_id, request.quantity, request.op)


@router.post("/{product_id}/reserve", response_model=StockItemResult)
async def reserve_stock(
    product_id: int,
    request: StockUpdateRequest,
    db: Session = Depends(get_db),
    _admin: str = Depends(require_admin),
    product_service: ProductService = Depends(get_product_service)
):
    """Conditionally take units from stock; rejected rather than clamped when short."""
    return product_service.reserve_stock(db, product_id, request.quantity).to_dict()


@router.delete("/{product_id}", response_model=ProductResponse)
async def delete_product(
    product_id: int,
    db: Session = Depends(get_db),
    _admin: str = Depends(require_admin),
    product_service: ProductService = Depends(get_product_service)
):
    """Soft delete: the product is hidden and discontinued, not removed."""
    return product_service.soft_delete(db, product_id)


@router.post("/{product_id}/restore", response_model=ProductResponse)
async def restore_product(
    product_id: int,
    db: Session = Depends(get_db),
    _admin: str = Depends(require_admin),
    product_service: ProductService = Depends(get_product_service)
):
    return product_service.restore(db, product_id)
