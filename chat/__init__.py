"""Chat module for order conversations.

A conversation links a consumer with a merchant and/or driver, optionally
for a specific order. Only participants can read or post messages.
"""
import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from asyncpg.pool import Pool

from database import get_pool

logger = logging.getLogger(__name__)

MESSAGE_TYPES = ('text', 'image', 'location')

PARTICIPANT_COLUMNS = ('consumer_id', 'merchant_id', 'driver_id')

class ChatError(Exception):
    """Base class for chat errors."""
    pass

class ConversationNotFoundError(ChatError):
    """Raised when a conversation does not exist."""
    pass

class ChatAccessError(ChatError):
    """Raised when a user is not a participant of a conversation."""
    pass

def is_participant(conversation: Dict[str, Any], user_id: UUID) -> bool:
    return any(
        conversation.get(column) is not None and str(conversation[column]) == str(user_id)
        for column in PARTICIPANT_COLUMNS
    )

class ChatManager:
    """Manages conversations and messages."""

    def __init__(self, pool: Optional[Pool] = None) -> None:
        """Initialize chat manager.

        Args:
            pool: Optional database connection pool. If not provided, will get from database module.
        """
        self.pool = pool

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def get_or_create_conversation(
        self,
        consumer_id: UUID,
        merchant_id: Optional[UUID] = None,
        driver_id: Optional[UUID] = None,
        order_id: Optional[UUID] = None
    ) -> Dict[str, Any]:
        """Find the conversation for these participants (or order) or start one.

        Raises:
            ChatError: If there is nobody to talk to
        """
        if merchant_id is None and driver_id is None:
            raise ChatError("Conversation needs a merchant or a driver")

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            if order_id is not None:
                existing = await conn.fetchrow(
                    'SELECT * FROM conversations WHERE order_id = $1',
                    order_id
                )
            else:
                existing = await conn.fetchrow(
                    '''
                    SELECT * FROM conversations
                    WHERE order_id IS NULL
                    AND consumer_id = $1
                    AND merchant_id IS NOT DISTINCT FROM $2
                    AND driver_id IS NOT DISTINCT FROM $3
                    LIMIT 1
                    ''',
                    consumer_id,
                    merchant_id,
                    driver_id
                )
            if existing:
                return dict(existing)

            row = await conn.fetchrow(
                '''
                INSERT INTO conversations (order_id, consumer_id, merchant_id, driver_id)
                VALUES ($1, $2, $3, $4)
                RETURNING *
                ''',
                order_id,
                consumer_id,
                merchant_id,
                driver_id
            )
        logger.info(f"Started conversation {row['id']}")
        return dict(row)

    async def get_conversation(self, conversation_id: UUID, user_id: UUID) -> Dict[str, Any]:
        """Get a conversation the user takes part in.

        Raises:
            ConversationNotFoundError: If it does not exist
            ChatAccessError: If the user is not a participant
        """
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                'SELECT * FROM conversations WHERE id = $1',
                conversation_id
            )
        if not row:
            raise ConversationNotFoundError(f"Conversation {conversation_id} not found")
        conversation = dict(row)
        if not is_participant(conversation, user_id):
            raise ChatAccessError("Not a participant of this conversation")
        return conversation

    async def list_conversations(self, user_id: UUID) -> List[Dict[str, Any]]:
        """Conversations of a user, most recently active first, with unread counts."""
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT c.*,
                    (SELECT COUNT(*) FROM messages m
                     WHERE m.conversation_id = c.id
                     AND m.sender_id <> $1
                     AND m.read = false) AS unread_count
                FROM conversations c
                WHERE c.consumer_id = $1 OR c.merchant_id = $1 OR c.driver_id = $1
                ORDER BY COALESCE(c.last_message_at, c.created_at) DESC
                ''',
                user_id
            )
        return [dict(row) for row in rows]

    async def get_messages(
        self,
        conversation_id: UUID,
        user_id: UUID,
        limit: int = 50,
        offset: int = 0
    ) -> List[Dict[str, Any]]:
        """Messages of a conversation in chronological order."""
        await self.get_conversation(conversation_id, user_id)
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT * FROM (
                    SELECT * FROM messages
                    WHERE conversation_id = $1
                    ORDER BY created_at DESC
                    LIMIT $2 OFFSET $3
                ) recent
                ORDER BY created_at
                ''',
                conversation_id,
                limit,
                offset
            )
        return [dict(row) for row in rows]

    async def send_message(
        self,
        conversation_id: UUID,
        sender_id: UUID,
        message: str,
        message_type: str = 'text'
    ) -> Dict[str, Any]:
        """Post a message and update the conversation preview.

        Raises:
            ChatError: If the message is empty or the type is unknown
            ConversationNotFoundError: If the conversation does not exist
            ChatAccessError: If the sender is not a participant
        """
        if not message or not message.strip():
            raise ChatError("Message cannot be empty")
        if message_type not in MESSAGE_TYPES:
            raise ChatError(f"Invalid message type: {message_type}")

        await self.get_conversation(conversation_id, sender_id)
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    '''
                    INSERT INTO messages (conversation_id, sender_id, message, message_type)
                    VALUES ($1, $2, $3, $4)
                    RETURNING *
                    ''',
                    conversation_id,
                    sender_id,
                    message,
                    message_type
                )
                await conn.execute(
                    '''
                    UPDATE conversations SET
                        last_message = $2,
                        last_message_at = $3,
                        updated_at = now()
                    WHERE id = $1
                    ''',
                    conversation_id,
                    message if message_type == 'text' else f"[{message_type}]",
                    row['created_at']
                )
        return dict(row)

    async def mark_read(self, conversation_id: UUID, user_id: UUID) -> int:
        """Mark messages from the other participants read; returns how many changed."""
        await self.get_conversation(conversation_id, user_id)
        async with self.pool.acquire() as conn:
            status = await conn.execute(
                '''
                UPDATE messages SET read = true
                WHERE conversation_id = $1 AND sender_id <> $2 AND read = false
                ''',
                conversation_id,
                user_id
            )
        return int(status.split()[-1])

def get_chat_manager() -> ChatManager:
    """Request-scoped chat manager."""
    return ChatManager()

__all__ = [
    'ChatManager',
    'ChatError',
    'ConversationNotFoundError',
    'ChatAccessError',
    'MESSAGE_TYPES',
    'is_participant',
    'get_chat_manager'
]
