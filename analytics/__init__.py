"""Analytics.

Client side, AnalyticsTracker queues events in local storage and posts them
in batches to /api/analytics/events, either when the queue reaches capacity
or on a periodic timer. Server side, AnalyticsManager stores posted events
and computes the admin panel metrics.
"""
import asyncio
import json
import logging
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from asyncpg.pool import Pool

from database import get_pool

logger = logging.getLogger(__name__)

QUEUE_KEY = 'analytics_queue'

TIMEFRAMES = {
    'day': 1,
    'week': 7,
    'month': 30,
    'year': 365
}

class AnalyticsError(Exception):
    """Base exception for analytics errors."""
    pass

class InvalidTimeframeError(AnalyticsError):
    """Raised when an unknown timeframe is requested."""
    pass

class AnalyticsTracker:
    """Client side event queue with batched delivery."""

    def __init__(self, store, api_client, flush_interval: Optional[int] = None,
                 max_queue: Optional[int] = None, clock=time.time):
        from config import settings_conf

        self.store = store
        self.api_client = api_client
        self.flush_interval = (
            settings_conf['analytics_flush_interval'] if flush_interval is None else flush_interval
        )
        self.max_queue = settings_conf['analytics_max_queue'] if max_queue is None else max_queue
        self.clock = clock
        self.queue: List[Dict[str, Any]] = []
        self._task: Optional[asyncio.Task] = None

    async def _save_queue(self):
        try:
            await self.store.set_item(QUEUE_KEY, json.dumps(self.queue))
        except Exception as e:
            logger.error(f"Error saving analytics queue: {e}")

    async def load_queue(self):
        """Restore queued events persisted by a previous run."""
        try:
            raw = await self.store.get_item(QUEUE_KEY)
            if raw:
                self.queue = json.loads(raw)
        except Exception as e:
            logger.error(f"Error loading analytics queue: {e}")

    async def track(self, name: str, properties: Optional[Dict[str, Any]] = None):
        """Queue an event, flushing when the queue is full."""
        self.queue.append({
            'name': name,
            'properties': properties,
            'timestamp': int(self.clock() * 1000)
        })
        await self._save_queue()

        if len(self.queue) >= self.max_queue:
            await self.flush()

    async def track_screen(self, screen_name: str):
        await self.track('screen_view', {'screen_name': screen_name})

    async def track_error(self, error: BaseException, context: Optional[str] = None):
        await self.track('error', {
            'message': str(error),
            'type': type(error).__name__,
            'context': context
        })

    async def track_purchase(self, amount: float, item_count: int):
        await self.track('purchase', {'amount': amount, 'item_count': item_count})

    async def flush(self) -> bool:
        """Send queued events.

        The queue is cleared only when the API accepts the batch; on failure
        the events stay queued for the next flush.

        Returns:
            True if events were delivered
        """
        if not self.queue:
            return False

        batch = list(self.queue)
        result = await self.api_client.post('/api/analytics/events', {'events': batch})
        if not result.success:
            logger.warning(f"Error flushing analytics: {result.error}")
            return False

        # Events tracked while the batch was in flight stay queued
        self.queue = self.queue[len(batch):]
        try:
            if self.queue:
                await self._save_queue()
            else:
                await self.store.remove_item(QUEUE_KEY)
        except Exception as e:
            logger.error(f"Error clearing analytics queue: {e}")

        logger.debug(f"Flushed {len(batch)} analytics events")
        return True

    async def _flush_loop(self):
        while True:
            await asyncio.sleep(self.flush_interval)
            try:
                await self.flush()
            except Exception as e:
                logger.error(f"Analytics flush failed: {e}")

    async def start(self):
        """Load the persisted queue and start the periodic flush."""
        await self.load_queue()
        if self._task is None:
            self._task = asyncio.create_task(self._flush_loop())
            logger.info(f"Analytics flush every {self.flush_interval}s")

    async def stop(self):
        """Stop the periodic flush."""
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

def timeframe_start(timeframe: str, now: Optional[datetime] = None) -> datetime:
    """Start of a reporting window.

    Raises:
        InvalidTimeframeError: If timeframe is not day, week, month or year
    """
    if timeframe not in TIMEFRAMES:
        raise InvalidTimeframeError(f"Invalid timeframe: {timeframe}")
    return (now or datetime.now(timezone.utc)) - timedelta(days=TIMEFRAMES[timeframe])

def _event_time(value) -> Optional[datetime]:
    if value is None:
        return None
    try:
        return datetime.fromtimestamp(float(value) / 1000, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None

class AnalyticsManager:
    """Stores client events and computes admin metrics."""

    def __init__(self, pool: Optional[Pool] = None):
        self.pool = pool

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def record_events(self, user_id: Optional[str], events: List[Dict[str, Any]]) -> int:
        """Store a batch of client events.

        Args:
            user_id: Authenticated user, if any
            events: Dicts with name, properties and timestamp (epoch ms)

        Returns:
            Number of events stored
        """
        await self.ensure_pool()
        rows = [
            (
                user_id,
                event['name'],
                json.dumps(event.get('properties')) if event.get('properties') is not None else None,
                _event_time(event.get('timestamp'))
            )
            for event in events
            if event.get('name')
        ]
        if not rows:
            return 0

        async with self.pool.acquire() as conn:
            await conn.executemany('''
                INSERT INTO analytics_events (user_id, event, properties, client_timestamp)
                VALUES ($1, $2, $3::jsonb, $4)
            ''', rows)

        logger.info(f"Recorded {len(rows)} analytics events")
        return len(rows)

    async def system_metrics(self) -> Dict[str, Any]:
        """Platform wide totals for the admin dashboard."""
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            users = await conn.fetch(
                'SELECT role, COUNT(*) AS count FROM users GROUP BY role'
            )
            orders = await conn.fetchrow('''
                SELECT
                    COUNT(*) AS total_orders,
                    COUNT(*) FILTER (WHERE status = 'PENDING') AS pending_orders,
                    COUNT(*) FILTER (WHERE status = 'DELIVERED') AS delivered_orders,
                    COALESCE(SUM(total_amount) FILTER (WHERE payment_status = 'paid'), 0) AS total_revenue
                FROM orders
            ''')
            pending_kyc = await conn.fetchval(
                "SELECT COUNT(*) FROM kyc_documents WHERE verification_status = 'pending'"
            )

        by_role = {row['role']: row['count'] for row in users}
        return {
            'total_users': sum(by_role.values()),
            'users_by_role': by_role,
            'total_orders': orders['total_orders'],
            'pending_orders': orders['pending_orders'],
            'delivered_orders': orders['delivered_orders'],
            'total_revenue': float(orders['total_revenue'] or Decimal(0)),
            'pending_kyc_documents': pending_kyc
        }

    async def analytics(self, timeframe: str = 'week') -> Dict[str, Any]:
        """Revenue and activity breakdown for a timeframe.

        Raises:
            InvalidTimeframeError: If timeframe is unknown
        """
        since = timeframe_start(timeframe)
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            daily = await conn.fetch('''
                SELECT date_trunc('day', created_at) AS day,
                       COUNT(*) AS orders,
                       COALESCE(SUM(total_amount), 0) AS revenue
                FROM orders
                WHERE created_at >= $1 AND status <> 'CANCELLED'
                GROUP BY day
                ORDER BY day
            ''', since)
            by_category = await conn.fetch('''
                SELECT p.category,
                       COALESCE(SUM(oi.total_price), 0) AS revenue
                FROM order_items oi
                JOIN orders o ON o.id = oi.order_id
                JOIN products p ON p.id = oi.product_id
                WHERE o.created_at >= $1 AND o.status <> 'CANCELLED'
                GROUP BY p.category
                ORDER BY revenue DESC
            ''', since)
            top_merchants = await conn.fetch('''
                SELECT m.id, m.business_name AS name,
                       COUNT(o.id) AS orders,
                       COALESCE(SUM(o.total_amount), 0) AS revenue
                FROM orders o
                JOIN merchants m ON m.id = o.merchant_id
                WHERE o.created_at >= $1 AND o.status <> 'CANCELLED'
                GROUP BY m.id, m.business_name
                ORDER BY revenue DESC
                LIMIT 10
            ''', since)
            top_events = await conn.fetch('''
                SELECT event, COUNT(*) AS count
                FROM analytics_events
                WHERE created_at >= $1
                GROUP BY event
                ORDER BY count DESC
                LIMIT 20
            ''', since)

        total_revenue = sum(float(row['revenue']) for row in by_category)
        return {
            'timeframe': timeframe,
            'since': since.isoformat(),
            'daily': [
                {
                    'date': row['day'].date().isoformat(),
                    'orders': row['orders'],
                    'revenue': float(row['revenue'])
                }
                for row in daily
            ],
            'revenue_by_category': [
                {
                    'category': row['category'],
                    'revenue': float(row['revenue']),
                    'percentage': round(float(row['revenue']) / total_revenue * 100, 1)
                    if total_revenue else 0
                }
                for row in by_category
            ],
            'top_merchants': [
                {
                    'id': str(row['id']),
                    'name': row['name'],
                    'orders': row['orders'],
                    'revenue': float(row['revenue'])
                }
                for row in top_merchants
            ],
            'top_events': [dict(row) for row in top_events]
        }

def get_analytics_manager() -> AnalyticsManager:
    """Provide an analytics manager bound to the shared pool."""
    return AnalyticsManager()

__all__ = [
    'AnalyticsTracker',
    'AnalyticsManager',
    'AnalyticsError',
    'InvalidTimeframeError',
    'QUEUE_KEY',
    'TIMEFRAMES',
    'timeframe_start',
    'get_analytics_manager'
]
