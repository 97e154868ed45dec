"""Order endpoints."""

import logging
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from auth import authenticate_user, ensure_self_or_admin, require_role
from catalog import CatalogManager, ProductNotFoundError, get_catalog_manager
from orders import (
    OrderManager,
    OrderError,
    OrderNotFoundError,
    OrderAccessError,
    InvalidStatusTransitionError,
    CLAIMABLE_STATUSES,
    get_order_manager,
    normalize_status
)

from ..responses import success

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/orders",
    tags=["Orders"]
)

class OrderItem(BaseModel):
    """Request model for order items."""
    product_id: UUID
    quantity: Decimal = Field(..., gt=0)

class CreateOrderRequest(BaseModel):
    """Request model for creating an order."""
    items: List[OrderItem] = Field(..., min_length=1)
    delivery_address_id: Optional[UUID] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None
    delivery_type: Optional[str] = None
    recipient_name: Optional[str] = None
    recipient_phone: Optional[str] = None

class StatusUpdateRequest(BaseModel):
    """Request model for moving an order to a new status."""
    status: str
    driver_id: Optional[UUID] = None

async def can_view_order(user: dict, order: dict, catalog: CatalogManager) -> bool:
    """Admins, the buyer, the assigned driver and the selling merchant may see an order."""
    if user['role'] == 'admin':
        return True
    if str(order['user_id']) == str(user['id']):
        return True
    if order.get('driver_id') and str(order['driver_id']) == str(user['id']):
        return True
    if user['role'] == 'merchant':
        merchant = await catalog.get_merchant_by_user(user['id'])
        if merchant and str(merchant['id']) == str(order['merchant_id']):
            return True
    return False

async def _check_order_access(user: dict, order: dict, catalog: CatalogManager) -> None:
    if not await can_view_order(user, order, catalog):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")

@router.post("/create")
async def create_order(
    request: CreateOrderRequest,
    user: dict = Depends(authenticate_user),
    orders: OrderManager = Depends(get_order_manager)
):
    """Create an order for the authenticated user."""
    try:
        order = await orders.create_order(
            user_id=user['id'],
            items=[item.model_dump() for item in request.items],
            delivery_address_id=request.delivery_address_id,
            payment_method=request.payment_method,
            notes=request.notes,
            delivery_type=request.delivery_type,
            recipient_name=request.recipient_name,
            recipient_phone=request.recipient_phone
        )
        return success(order)
    except ProductNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except OrderError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

@router.get("/user/{user_id}")
async def get_user_orders(
    user_id: UUID,
    order_status: Optional[str] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: dict = Depends(authenticate_user),
    orders: OrderManager = Depends(get_order_manager)
):
    ensure_self_or_admin(user, user_id)
    return success(await orders.get_user_orders(user_id, order_status, limit, offset))

@router.get("/{order_id}")
async def get_order(
    order_id: UUID,
    user: dict = Depends(authenticate_user),
    orders: OrderManager = Depends(get_order_manager),
    catalog: CatalogManager = Depends(get_catalog_manager)
):
    try:
        order = await orders.get_order(order_id)
    except OrderNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    await _check_order_access(user, order, catalog)
    return success(order)

@router.put("/{order_id}/status")
async def update_order_status(
    order_id: UUID,
    request: StatusUpdateRequest,
    user: dict = Depends(require_role('merchant', 'driver', 'admin')),
    orders: OrderManager = Depends(get_order_manager),
    catalog: CatalogManager = Depends(get_catalog_manager)
):
    """Advance an order through its lifecycle."""
    try:
        order = await orders.get_order(order_id)
        if user['role'] == 'driver' and not order.get('driver_id'):
            # An unassigned driver may only claim the order by taking it out for delivery
            claiming = (
                normalize_status(request.status) == 'IN_TRANSIT'
                and order['status'] in CLAIMABLE_STATUSES
            )
            if not claiming:
                raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
        else:
            await _check_order_access(user, order, catalog)
        driver_id = user['id'] if user['role'] == 'driver' else request.driver_id
        updated = await orders.update_status(order_id, request.status, driver_id)
        return success(updated, "Order status updated")
    except OrderNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except OrderAccessError:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    except InvalidStatusTransitionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except OrderError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

@router.post("/{order_id}/cancel")
async def cancel_order(
    order_id: UUID,
    user: dict = Depends(authenticate_user),
    orders: OrderManager = Depends(get_order_manager)
):
    try:
        return success(await orders.cancel_order(order_id, user['id']), "Order cancelled")
    except OrderNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except OrderAccessError:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    except InvalidStatusTransitionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
