"""Notifications module.

Persists per-user notifications and their read state. Inserts are published
to realtime subscribers by the notifications row trigger.
"""
import json
import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from asyncpg.pool import Pool

from database import get_pool

logger = logging.getLogger(__name__)

NOTIFICATION_TYPES = ('order', 'promo', 'system', 'delivery', 'payment', 'promotion')
PRIORITIES = ('high', 'medium', 'low')

class NotificationError(Exception):
    """Base class for notification errors."""
    pass

class NotificationNotFoundError(NotificationError):
    """Raised when a notification does not exist for the user."""
    pass

def _notification(row) -> Dict[str, Any]:
    notification = dict(row)
    if isinstance(notification.get('data'), str):
        notification['data'] = json.loads(notification['data'])
    return notification

class NotificationManager:
    """Manages user notifications."""

    def __init__(self, pool: Optional[Pool] = None) -> None:
        """Initialize notification manager.

        Args:
            pool: Optional database connection pool. If not provided, will get from database module.
        """
        self.pool = pool

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def send(
        self,
        user_id: UUID,
        title: str,
        message: str,
        type: str = 'system',
        role: Optional[str] = None,
        priority: str = 'medium',
        data: Optional[Dict[str, Any]] = None,
        action: Optional[str] = None,
        conn=None
    ) -> Dict[str, Any]:
        """Create a notification for a user.

        Args:
            user_id: Recipient
            title: Short title
            message: Body text
            type: Notification type
            role: Role the notification is addressed to
            priority: high, medium or low
            data: Arbitrary JSON payload
            action: Client action identifier
            conn: Existing connection to insert within its transaction

        Returns:
            The notification row

        Raises:
            NotificationError: If type or priority is unknown
        """
        if type not in NOTIFICATION_TYPES:
            raise NotificationError(f"Invalid notification type: {type}")
        if priority not in PRIORITIES:
            raise NotificationError(f"Invalid priority: {priority}")

        query = '''
            INSERT INTO notifications (user_id, title, message, type, role, priority, data, action)
            VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb, $8)
            RETURNING *
        '''
        args = (
            user_id,
            title,
            message,
            type,
            role,
            priority,
            json.dumps(data, default=str) if data is not None else None,
            action
        )

        if conn is not None:
            row = await conn.fetchrow(query, *args)
        else:
            await self.ensure_pool()
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(query, *args)

        logger.debug(f"Sent {type} notification to {user_id}")
        return _notification(row)

    async def get_user_notifications(
        self,
        user_id: UUID,
        unread_only: bool = False,
        limit: int = 50,
        offset: int = 0
    ) -> List[Dict[str, Any]]:
        """Notifications for a user, newest first."""
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT * FROM notifications
                WHERE user_id = $1
                AND (NOT $2 OR read = false)
                ORDER BY created_at DESC
                LIMIT $3 OFFSET $4
                ''',
                user_id,
                unread_only,
                limit,
                offset
            )
        return [_notification(row) for row in rows]

    async def get_unread_count(self, user_id: UUID) -> int:
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            return await conn.fetchval(
                'SELECT COUNT(*) FROM notifications WHERE user_id = $1 AND read = false',
                user_id
            )

    async def mark_read(self, user_id: UUID, notification_ids: List[UUID]) -> int:
        """Mark notifications read; returns how many changed."""
        if not notification_ids:
            return 0
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            status = await conn.execute(
                '''
                UPDATE notifications SET read = true
                WHERE user_id = $1 AND id = ANY($2) AND read = false
                ''',
                user_id,
                notification_ids
            )
        return int(status.split()[-1])

    async def mark_all_read(self, user_id: UUID) -> int:
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            status = await conn.execute(
                'UPDATE notifications SET read = true WHERE user_id = $1 AND read = false',
                user_id
            )
        return int(status.split()[-1])

    async def delete(self, user_id: UUID, notification_id: UUID) -> None:
        """Delete one of a user's notifications.

        Raises:
            NotificationNotFoundError: If it does not exist for the user
        """
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            status = await conn.execute(
                'DELETE FROM notifications WHERE id = $1 AND user_id = $2',
                notification_id,
                user_id
            )
        if status == 'DELETE 0':
            raise NotificationNotFoundError(f"Notification {notification_id} not found")

def get_notification_manager() -> NotificationManager:
    """Request-scoped notification manager."""
    return NotificationManager()

__all__ = [
    'NotificationManager',
    'NotificationError',
    'NotificationNotFoundError',
    'NOTIFICATION_TYPES',
    'PRIORITIES',
    'get_notification_manager'
]
