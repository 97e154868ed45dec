"""Conversation and message endpoints."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from auth import authenticate_user
from chat import (
    ChatManager,
    ChatError,
    ConversationNotFoundError,
    ChatAccessError,
    get_chat_manager
)

from ..responses import success

router = APIRouter(
    prefix="/api/conversations",
    tags=["Chat"]
)

class ConversationRequest(BaseModel):
    """Request model for starting a conversation.

    Consumers start conversations with a merchant or driver. Merchants and
    drivers name the consumer instead.
    """
    consumer_id: Optional[UUID] = None
    merchant_id: Optional[UUID] = None
    driver_id: Optional[UUID] = None
    order_id: Optional[UUID] = None

class MessageRequest(BaseModel):
    """Request model for sending a message."""
    message: str
    message_type: str = 'text'

def _chat_errors(e: ChatError) -> HTTPException:
    if isinstance(e, ConversationNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, ChatAccessError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

@router.get("")
async def list_conversations(
    user: dict = Depends(authenticate_user),
    chat: ChatManager = Depends(get_chat_manager)
):
    return success(await chat.list_conversations(user['id']))

@router.post("")
async def start_conversation(
    request: ConversationRequest,
    user: dict = Depends(authenticate_user),
    chat: ChatManager = Depends(get_chat_manager)
):
    consumer_id = request.consumer_id
    merchant_id = request.merchant_id
    driver_id = request.driver_id
    if user['role'] == 'consumer':
        consumer_id = user['id']
    elif user['role'] == 'merchant':
        merchant_id = user['id']
    elif user['role'] == 'driver':
        driver_id = user['id']

    if consumer_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="consumer_id is required")

    try:
        conversation = await chat.get_or_create_conversation(
            consumer_id, merchant_id, driver_id, request.order_id
        )
        return success(conversation)
    except ChatError as e:
        raise _chat_errors(e)

@router.get("/{conversation_id}/messages")
async def get_messages(
    conversation_id: UUID,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: dict = Depends(authenticate_user),
    chat: ChatManager = Depends(get_chat_manager)
):
    try:
        return success(await chat.get_messages(conversation_id, user['id'], limit, offset))
    except ChatError as e:
        raise _chat_errors(e)

@router.post("/{conversation_id}/messages", status_code=status.HTTP_201_CREATED)
async def send_message(
    conversation_id: UUID,
    request: MessageRequest,
    user: dict = Depends(authenticate_user),
    chat: ChatManager = Depends(get_chat_manager)
):
    try:
        message = await chat.send_message(
            conversation_id, user['id'], request.message, request.message_type
        )
        return success(message)
    except ChatError as e:
        raise _chat_errors(e)

@router.post("/{conversation_id}/read")
async def mark_read(
    conversation_id: UUID,
    user: dict = Depends(authenticate_user),
    chat: ChatManager = Depends(get_chat_manager)
):
    try:
        return success({'updated': await chat.mark_read(conversation_id, user['id'])})
    except ChatError as e:
        raise _chat_errors(e)
