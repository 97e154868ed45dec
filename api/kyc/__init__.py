"""KYC document endpoints."""

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status

from auth import authenticate_user
from kyc import (
    KYCManager,
    KYCError,
    InvalidDocumentError,
    get_kyc_manager,
    get_requirements
)

from ..responses import success

router = APIRouter(
    prefix="/api/kyc",
    tags=["KYC"]
)

@router.post("/documents", status_code=status.HTTP_201_CREATED)
async def submit_document(
    document_type: str = Form(...),
    file: UploadFile = File(...),
    user: dict = Depends(authenticate_user),
    kyc: KYCManager = Depends(get_kyc_manager)
):
    """Upload a verification document for review."""
    content = await file.read()
    try:
        document = await kyc.submit_document(
            user['id'],
            document_type,
            content,
            content_type=file.content_type
        )
        return success(document, "Document submitted for review")
    except InvalidDocumentError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except KYCError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

@router.get("/status")
async def verification_status(
    user: dict = Depends(authenticate_user),
    kyc: KYCManager = Depends(get_kyc_manager)
):
    return success(await kyc.get_status(user['id'], user['role']))

@router.get("/requirements/{role}")
async def requirements(role: str):
    try:
        return success(get_requirements(role))
    except KYCError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
