"""Product endpoints."""

from decimal import Decimal
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from auth import require_role
from catalog import (
    CatalogManager,
    CatalogError,
    ProductNotFoundError,
    MerchantNotFoundError,
    get_catalog_manager
)

from ..responses import success

router = APIRouter(
    prefix="/api/products",
    tags=["Products"]
)

class ProductRequest(BaseModel):
    """Request model for creating a product."""
    name: str
    price: Decimal
    description: Optional[str] = None
    category: Optional[str] = None
    unit: Optional[str] = None
    stock_quantity: Optional[int] = None
    image_url: Optional[str] = None
    is_available: bool = True
    merchant_id: Optional[UUID] = None

class ProductUpdateRequest(BaseModel):
    """Request model for product updates."""
    name: Optional[str] = None
    price: Optional[Decimal] = None
    description: Optional[str] = None
    category: Optional[str] = None
    unit: Optional[str] = None
    stock_quantity: Optional[int] = None
    image_url: Optional[str] = None
    is_available: Optional[bool] = None

async def _merchant_for(user: dict, catalog: CatalogManager, merchant_id: Optional[UUID] = None) -> UUID:
    """Merchant the caller acts for; admins may name any merchant."""
    if user['role'] == 'admin' and merchant_id:
        return merchant_id
    merchant = await catalog.get_merchant_by_user(user['id'])
    if not merchant:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="No merchant profile for this account"
        )
    return merchant['id']

@router.get("")
async def list_products(
    category: Optional[str] = None,
    merchant_id: Optional[UUID] = None,
    search: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    catalog: CatalogManager = Depends(get_catalog_manager)
):
    """List available products."""
    products = await catalog.list_products(
        category=category,
        merchant_id=merchant_id,
        search=search,
        limit=limit,
        offset=offset
    )
    return success(products)

@router.get("/{product_id}")
async def get_product(product_id: UUID, catalog: CatalogManager = Depends(get_catalog_manager)):
    try:
        return success(await catalog.get_product(product_id))
    except ProductNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

@router.post("", status_code=status.HTTP_201_CREATED)
async def create_product(
    request: ProductRequest,
    user: dict = Depends(require_role('merchant', 'admin')),
    catalog: CatalogManager = Depends(get_catalog_manager)
):
    merchant_id = await _merchant_for(user, catalog, request.merchant_id)
    try:
        product = await catalog.create_product(
            merchant_id,
            request.model_dump(exclude={'merchant_id'}, exclude_none=True)
        )
        return success(product)
    except MerchantNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except CatalogError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

@router.put("/{product_id}")
async def update_product(
    product_id: UUID,
    request: ProductUpdateRequest,
    user: dict = Depends(require_role('merchant', 'admin')),
    catalog: CatalogManager = Depends(get_catalog_manager)
):
    try:
        product = await catalog.get_product(product_id)
        if user['role'] != 'admin':
            merchant_id = await _merchant_for(user, catalog)
            if str(product['merchant_id']) != str(merchant_id):
                raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
        updated = await catalog.update_product(product_id, request.model_dump(exclude_none=True))
        return success(updated, "Product updated")
    except ProductNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
