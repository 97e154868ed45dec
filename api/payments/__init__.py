"""Payment endpoints."""

from decimal import Decimal
from typing import Optional
from uuid import UUID

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel

from auth import authenticate_user
from config import settings_conf
from orders import OrderNotFoundError, OrderAccessError
from payments import (
    PaymentManager,
    PaymentError,
    PaymentMethodNotFoundError,
    TransactionNotFoundError,
    get_payment_manager,
    verify_signature
)

from ..responses import success

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api",
    tags=["Payments"]
)

class PaymentRequest(BaseModel):
    """Request model for paying an order."""
    order_id: UUID
    amount: Decimal
    payment_method: Optional[str] = None

class PaymentMethodRequest(BaseModel):
    """Request model for saving a payment method."""
    type: str
    last_four: Optional[str] = None
    card_brand: Optional[str] = None
    bank_name: Optional[str] = None
    account_number: Optional[str] = None
    is_default: bool = False

@router.post("/payment/process")
async def process_payment(
    request: PaymentRequest,
    user: dict = Depends(authenticate_user),
    payments: PaymentManager = Depends(get_payment_manager)
):
    try:
        result = await payments.process_payment(
            user['id'],
            request.order_id,
            request.amount,
            request.payment_method
        )
        return success(result)
    except OrderNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except OrderAccessError:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    except PaymentError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

@router.post("/payment/initialize")
async def initialize_payment(
    request: PaymentRequest,
    user: dict = Depends(authenticate_user),
    payments: PaymentManager = Depends(get_payment_manager)
):
    """Start a gateway payment; the returned reference is settled by the webhook."""
    try:
        result = await payments.initialize_payment(
            user['id'],
            request.order_id,
            request.amount,
            request.payment_method
        )
        return success(result)
    except OrderNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except OrderAccessError:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    except PaymentError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

def get_gateway_secret() -> str:
    return settings_conf['paystack_secret_key']

@router.post("/payments/webhook")
async def payment_webhook(
    request: Request,
    secret: str = Depends(get_gateway_secret),
    payments: PaymentManager = Depends(get_payment_manager)
):
    """Payment gateway events, signed with HMAC-SHA512 in x-paystack-signature."""
    if not secret:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payment gateway not configured"
        )

    body = await request.body()
    if not verify_signature(body, request.headers.get('x-paystack-signature'), secret):
        logger.warning("Rejected payment webhook with invalid signature")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid signature")

    try:
        event = json.loads(body)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON body")

    try:
        await payments.handle_gateway_event(event)
        return success()
    except TransactionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except PaymentError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get("/payment-methods")
async def get_payment_methods(
    user: dict = Depends(authenticate_user),
    payments: PaymentManager = Depends(get_payment_manager)
):
    return success(await payments.get_payment_methods(user['id']))

@router.post("/payment-methods", status_code=status.HTTP_201_CREATED)
async def add_payment_method(
    request: PaymentMethodRequest,
    user: dict = Depends(authenticate_user),
    payments: PaymentManager = Depends(get_payment_manager)
):
    try:
        return success(await payments.add_payment_method(user['id'], request.model_dump()))
    except PaymentError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

@router.delete("/payment-methods/{method_id}")
async def delete_payment_method(
    method_id: UUID,
    user: dict = Depends(authenticate_user),
    payments: PaymentManager = Depends(get_payment_manager)
):
    try:
        await payments.delete_payment_method(user['id'], method_id)
        return success(message="Payment method removed")
    except PaymentMethodNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
