"""User and address endpoints."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from auth import authenticate_user, ensure_self_or_admin
from users import (
    UserManager,
    UserError,
    UserNotFoundError,
    DuplicateUserError,
    InvalidRoleError,
    SELF_REGISTRATION_ROLES,
    get_user_manager
)

from ..responses import success

router = APIRouter(
    prefix="/api/users",
    tags=["Users"]
)

class CreateUserRequest(BaseModel):
    """Request model for registering a user after identity sign-up."""
    firebase_uid: str
    email: str
    role: str
    full_name: Optional[str] = None
    phone_number: Optional[str] = None
    profile_image_url: Optional[str] = None

class UpdateUserRequest(BaseModel):
    """Request model for profile updates."""
    full_name: Optional[str] = None
    phone_number: Optional[str] = None
    profile_image_url: Optional[str] = None

class AddressRequest(BaseModel):
    """Request model for a delivery address."""
    label: Optional[str] = None
    address_line1: str
    address_line2: Optional[str] = None
    city: str
    state: str
    country: str
    postal_code: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    is_default: bool = False

@router.post("", status_code=status.HTTP_201_CREATED)
async def create_user(
    request: CreateUserRequest,
    users: UserManager = Depends(get_user_manager)
):
    """Create the profile row for a newly signed-up identity."""
    if request.role not in SELF_REGISTRATION_ROLES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(InvalidRoleError(request.role, SELF_REGISTRATION_ROLES))
        )
    try:
        user = await users.create_user(
            firebase_uid=request.firebase_uid,
            email=request.email,
            role=request.role,
            full_name=request.full_name,
            phone_number=request.phone_number,
            profile_image_url=request.profile_image_url
        )
        return success(user)
    except InvalidRoleError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except DuplicateUserError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

@router.get("/{user_id}")
async def get_user(user_id: UUID, users: UserManager = Depends(get_user_manager)):
    try:
        return success(await users.get_user(user_id))
    except UserNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

@router.put("/{user_id}")
async def update_user(
    user_id: UUID,
    request: UpdateUserRequest,
    user: dict = Depends(authenticate_user),
    users: UserManager = Depends(get_user_manager)
):
    ensure_self_or_admin(user, user_id)
    try:
        updated = await users.update_user(user_id, request.model_dump(exclude_none=True))
        return success(updated, "Profile updated")
    except UserNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

@router.get("/{user_id}/addresses")
async def get_addresses(
    user_id: UUID,
    user: dict = Depends(authenticate_user),
    users: UserManager = Depends(get_user_manager)
):
    ensure_self_or_admin(user, user_id)
    return success(await users.get_addresses(user_id))

@router.post("/{user_id}/addresses", status_code=status.HTTP_201_CREATED)
async def add_address(
    user_id: UUID,
    request: AddressRequest,
    user: dict = Depends(authenticate_user),
    users: UserManager = Depends(get_user_manager)
):
    ensure_self_or_admin(user, user_id)
    try:
        return success(await users.add_address(user_id, request.model_dump()))
    except UserError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
