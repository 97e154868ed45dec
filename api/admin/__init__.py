"""Admin endpoints: platform metrics, analytics, KYC review, user management and escrow."""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from analytics import AnalyticsManager, InvalidTimeframeError, get_analytics_manager
from auth import require_role
from escrow import (
    EscrowManager,
    EscrowError,
    EscrowNotFoundError,
    get_escrow_manager
)
from kyc import KYCManager, KYCError, DocumentNotFoundError, get_kyc_manager
from users import UserManager, UserNotFoundError, InvalidRoleError, get_user_manager

from ..responses import success

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/admin",
    tags=["Admin"]
)

admin_only = require_role('admin')

class RejectRequest(BaseModel):
    """Request model for rejecting a KYC document."""
    reason: str

class BlockRequest(BaseModel):
    """Request model for blocking or unblocking a user."""
    blocked: bool = True
    reason: Optional[str] = None

class RoleRequest(BaseModel):
    """Request model for changing a user's role."""
    role: str

class EscrowActionRequest(BaseModel):
    """Request model for releasing, refunding or disputing an escrow."""
    action: str
    reason: Optional[str] = None

@router.get("/metrics")
async def system_metrics(
    admin: dict = Depends(admin_only),
    analytics: AnalyticsManager = Depends(get_analytics_manager)
):
    return success(await analytics.system_metrics())

@router.get("/analytics")
async def platform_analytics(
    timeframe: str = Query('week'),
    admin: dict = Depends(admin_only),
    analytics: AnalyticsManager = Depends(get_analytics_manager)
):
    """Revenue and activity for the last day, week, month or year."""
    try:
        return success(await analytics.analytics(timeframe))
    except InvalidTimeframeError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

@router.get("/kyc/pending")
async def pending_documents(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    admin: dict = Depends(admin_only),
    kyc: KYCManager = Depends(get_kyc_manager)
):
    return success(await kyc.get_pending_documents(limit, offset))

@router.post("/kyc/{document_id}/approve")
async def approve_document(
    document_id: UUID,
    admin: dict = Depends(admin_only),
    kyc: KYCManager = Depends(get_kyc_manager)
):
    try:
        return success(await kyc.approve_document(document_id, admin['id']), "Document approved")
    except DocumentNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

@router.post("/kyc/{document_id}/reject")
async def reject_document(
    document_id: UUID,
    request: RejectRequest,
    admin: dict = Depends(admin_only),
    kyc: KYCManager = Depends(get_kyc_manager)
):
    try:
        document = await kyc.reject_document(document_id, admin['id'], request.reason)
        return success(document, "Document rejected")
    except DocumentNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except KYCError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

@router.post("/users/{user_id}/block")
async def block_user(
    user_id: UUID,
    request: Optional[BlockRequest] = None,
    admin: dict = Depends(admin_only),
    users: UserManager = Depends(get_user_manager)
):
    blocked = request.blocked if request else True
    try:
        user = await users.set_active(user_id, not blocked)
    except UserNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if request and request.reason:
        logger.info(f"Admin {admin['id']} changed user {user_id}: {request.reason}")
    return success(user, "User blocked" if blocked else "User unblocked")

@router.post("/users/{user_id}/role")
async def set_user_role(
    user_id: UUID,
    request: RoleRequest,
    admin: dict = Depends(admin_only),
    users: UserManager = Depends(get_user_manager)
):
    """Change a user's role. The only way to grant admin."""
    try:
        user = await users.set_role(user_id, request.role)
    except InvalidRoleError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except UserNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    logger.info(f"Admin {admin['id']} set user {user_id} role to {request.role}")
    return success(user, "Role updated")

@router.get("/escrow")
async def list_escrows(
    escrow_status: Optional[str] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    admin: dict = Depends(admin_only),
    escrows: EscrowManager = Depends(get_escrow_manager)
):
    try:
        return success(await escrows.list_escrows(escrow_status, limit, offset))
    except EscrowError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

@router.post("/escrow/{escrow_id}")
async def update_escrow(
    escrow_id: UUID,
    request: EscrowActionRequest,
    admin: dict = Depends(admin_only),
    escrows: EscrowManager = Depends(get_escrow_manager)
):
    """Release, refund or dispute an escrow."""
    try:
        escrow = await escrows.update_escrow(escrow_id, request.action, request.reason)
    except EscrowNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except EscrowError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    logger.info(f"Admin {admin['id']} applied {request.action} to escrow {escrow_id}")
    return success(escrow, f"Escrow {request.action} successful")
