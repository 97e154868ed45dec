"""Cart endpoints for the authenticated user."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from auth import authenticate_user
from cart.remote import (
    RemoteCart,
    CartItemNotFoundError,
    ProductUnavailableError,
    get_remote_cart
)

from ..responses import success

router = APIRouter(
    prefix="/api/cart",
    tags=["Cart"]
)

class AddToCartRequest(BaseModel):
    """Request model for adding a product to the cart."""
    product_id: UUID
    quantity: int = Field(1, gt=0)

class UpdateCartRequest(BaseModel):
    """Request model for changing a cart row's quantity."""
    quantity: int = Field(..., gt=0)

@router.get("")
async def get_cart(
    user: dict = Depends(authenticate_user),
    cart: RemoteCart = Depends(get_remote_cart)
):
    return success(await cart.list_items(user['id']))

@router.post("/add")
async def add_to_cart(
    request: AddToCartRequest,
    user: dict = Depends(authenticate_user),
    cart: RemoteCart = Depends(get_remote_cart)
):
    """Add a product; an existing row for the product gets its quantity increased."""
    try:
        return success(await cart.add_item(user['id'], request.product_id, request.quantity))
    except ProductUnavailableError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

@router.put("/{item_id}")
async def update_cart_item(
    item_id: UUID,
    request: UpdateCartRequest,
    user: dict = Depends(authenticate_user),
    cart: RemoteCart = Depends(get_remote_cart)
):
    try:
        return success(await cart.update_item(user['id'], item_id, request.quantity))
    except CartItemNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

@router.delete("/{item_id}")
async def remove_cart_item(
    item_id: UUID,
    user: dict = Depends(authenticate_user),
    cart: RemoteCart = Depends(get_remote_cart)
):
    await cart.remove_item(user['id'], item_id)
    return success(message="Item removed from cart")
