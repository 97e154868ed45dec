"""Merchant and review endpoints."""

import logging
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from auth import authenticate_user, optional_auth, require_role
from catalog import (
    CatalogManager,
    CatalogError,
    MerchantNotFoundError,
    InvalidRatingError,
    get_catalog_manager
)

from ..responses import success

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/merchants",
    tags=["Merchants"]
)

class MerchantRequest(BaseModel):
    """Request model for creating a merchant profile."""
    business_name: str
    business_type: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    operating_hours: Optional[Dict[str, Any]] = None

class ReviewRequest(BaseModel):
    """Request model for a merchant review."""
    rating: int
    comment: Optional[str] = None
    order_id: Optional[UUID] = None

@router.get("/nearby")
async def nearby_merchants(
    lat: float,
    lng: float,
    radius: Optional[float] = Query(None, gt=0),
    user: Optional[dict] = Depends(optional_auth),
    catalog: CatalogManager = Depends(get_catalog_manager)
):
    """Active merchants within radius km of a point, nearest first."""
    if user:
        logger.debug(f"Nearby search by user {user['id']}")
    return success(await catalog.find_nearby_merchants(lat, lng, radius))

@router.post("", status_code=status.HTTP_201_CREATED)
async def create_merchant(
    request: MerchantRequest,
    user: dict = Depends(require_role('merchant')),
    catalog: CatalogManager = Depends(get_catalog_manager)
):
    if await catalog.get_merchant_by_user(user['id']):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Merchant profile already exists"
        )
    try:
        return success(await catalog.create_merchant(user['id'], request.model_dump(exclude_none=True)))
    except CatalogError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

@router.get("/{merchant_id}")
async def get_merchant(merchant_id: UUID, catalog: CatalogManager = Depends(get_catalog_manager)):
    try:
        return success(await catalog.get_merchant(merchant_id))
    except MerchantNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

@router.get("/{merchant_id}/reviews")
async def get_reviews(
    merchant_id: UUID,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    catalog: CatalogManager = Depends(get_catalog_manager)
):
    return success(await catalog.get_reviews(merchant_id, limit, offset))

@router.post("/{merchant_id}/reviews", status_code=status.HTTP_201_CREATED)
async def add_review(
    merchant_id: UUID,
    request: ReviewRequest,
    user: dict = Depends(authenticate_user),
    catalog: CatalogManager = Depends(get_catalog_manager)
):
    try:
        review = await catalog.add_review(
            user['id'],
            merchant_id,
            request.rating,
            request.comment,
            request.order_id
        )
        return success(review, "Review added")
    except InvalidRatingError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except MerchantNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
