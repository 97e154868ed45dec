"""Postgres-backed realtime provider.

A single dedicated asyncpg connection LISTENs on two notify channels:

- row_changes: JSON row-change events published by the notify_row_change
  trigger ({table, type, record, old_record})
- realtime_broadcast: ad-hoc events sent by clients through a channel

Channels bind callbacks to row changes (optionally filtered with the
``column=eq.value`` form) or to broadcast events, and are only delivered
events once subscribed.
"""
import asyncio
import inspect
import json
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

import asyncpg

logger = logging.getLogger(__name__)

ROW_CHANGES_CHANNEL = 'row_changes'
BROADCAST_CHANNEL = 'realtime_broadcast'

EVENTS = ('*', 'INSERT', 'UPDATE', 'DELETE')

Callback = Callable[[Dict[str, Any]], Any]

class RealtimeError(Exception):
    """Base exception for realtime errors."""
    pass

class InvalidFilterError(RealtimeError):
    """Raised when a row filter is not of the form column=eq.value."""
    pass

def parse_filter(filter: Optional[str]) -> Optional[Tuple[str, str]]:
    """Parse ``column=eq.value`` into (column, value)."""
    if not filter:
        return None
    column, sep, condition = filter.partition('=')
    if not sep or not condition.startswith('eq.') or not column:
        raise InvalidFilterError(f"Unsupported filter: {filter}")
    return column, condition[3:]

def change_payload(change: Dict[str, Any]) -> Dict[str, Any]:
    """Shape a raw row-change notification for callbacks."""
    return {
        'eventType': change.get('type'),
        'table': change.get('table'),
        'new': change.get('record') or {},
        'old': change.get('old_record') or {}
    }

class RealtimeChannel:
    """A named set of event bindings."""

    def __init__(self, client: 'RealtimeClient', name: str) -> None:
        self.client = client
        self.name = name
        self.state = 'closed'
        self._postgres_bindings: List[Dict[str, Any]] = []
        self._broadcast_bindings: List[Tuple[str, Callback]] = []

    def on_postgres_changes(
        self,
        event: str,
        table: str,
        callback: Callback,
        filter: Optional[str] = None
    ) -> 'RealtimeChannel':
        """Bind a callback to row changes on a table."""
        if event not in EVENTS:
            raise RealtimeError(f"Unknown event: {event}")
        self._postgres_bindings.append({
            'event': event,
            'table': table,
            'filter': parse_filter(filter),
            'callback': callback
        })
        return self

    def on_broadcast(self, event: str, callback: Callback) -> 'RealtimeChannel':
        """Bind a callback to broadcast events sent on this channel."""
        self._broadcast_bindings.append((event, callback))
        return self

    async def subscribe(self) -> 'RealtimeChannel':
        """Start receiving events."""
        await self.client._join(self)
        self.state = 'joined'
        return self

    async def send(self, event: str, payload: Dict[str, Any]) -> None:
        """Broadcast an event to every subscriber of this channel name."""
        await self.client._broadcast(self.name, event, payload)

    def _matches(self, binding: Dict[str, Any], change: Dict[str, Any]) -> bool:
        if binding['table'] != change.get('table'):
            return False
        if binding['event'] != '*' and binding['event'] != change.get('type'):
            return False
        if binding['filter']:
            column, value = binding['filter']
            row = change.get('record') or change.get('old_record') or {}
            if str(row.get(column)) != value:
                return False
        return True

    def dispatch_change(self, change: Dict[str, Any]) -> None:
        for binding in self._postgres_bindings:
            if self._matches(binding, change):
                self.client._run_callback(binding['callback'], change_payload(change))

    def dispatch_broadcast(self, message: Dict[str, Any]) -> None:
        if message.get('channel') != self.name:
            return
        for event, callback in self._broadcast_bindings:
            if event in ('*', message.get('event')):
                self.client._run_callback(callback, {
                    'type': 'broadcast',
                    'event': message.get('event'),
                    'payload': message.get('payload')
                })

class RealtimeClient:
    """Realtime provider on a dedicated LISTEN connection."""

    def __init__(self, db_url: Optional[str] = None) -> None:
        """Initialize the client.

        Args:
            db_url: Database URL, defaults to db_url from settings
        """
        if db_url is None:
            from config import settings_conf
            db_url = settings_conf['db_url']
        self.db_url = db_url
        self.access_token: Optional[str] = None
        self._conn: Optional[asyncpg.Connection] = None
        self._channels: List[RealtimeChannel] = []
        self._connect_lock = asyncio.Lock()
        self._tasks = set()

    @property
    def is_connected(self) -> bool:
        return self._conn is not None and not self._conn.is_closed()

    def set_auth(self, token: Optional[str]) -> None:
        """Record the access token used for channel authorization; None clears it."""
        self.access_token = token
        logger.debug("Realtime auth %s", 'set' if token else 'cleared')

    def channel(self, name: str) -> RealtimeChannel:
        return RealtimeChannel(self, name)

    def get_channels(self) -> List[RealtimeChannel]:
        return list(self._channels)

    async def connect(self) -> None:
        """Open the LISTEN connection if it is not open."""
        async with self._connect_lock:
            if self.is_connected:
                return
            self._conn = await asyncpg.connect(self.db_url)
            await self._conn.add_listener(ROW_CHANGES_CHANNEL, self._on_row_change)
            await self._conn.add_listener(BROADCAST_CHANNEL, self._on_broadcast)
            logger.info("Realtime connection established")

    async def _join(self, channel: RealtimeChannel) -> None:
        await self.connect()
        if channel not in self._channels:
            self._channels.append(channel)
        logger.debug(f"Joined channel {channel.name}")

    async def remove_channel(self, channel: RealtimeChannel) -> None:
        """Stop delivering events to a channel."""
        if channel in self._channels:
            self._channels.remove(channel)
        channel.state = 'closed'
        logger.debug(f"Removed channel {channel.name}")

    async def remove_all_channels(self) -> None:
        for channel in list(self._channels):
            await self.remove_channel(channel)

    async def close(self) -> None:
        """Remove every channel and close the connection."""
        await self.remove_all_channels()
        if self.is_connected:
            await self._conn.remove_listener(ROW_CHANGES_CHANNEL, self._on_row_change)
            await self._conn.remove_listener(BROADCAST_CHANNEL, self._on_broadcast)
            await self._conn.close()
        self._conn = None
        logger.info("Realtime connection closed")

    async def _broadcast(self, channel_name: str, event: str, payload: Dict[str, Any]) -> None:
        await self.connect()
        message = json.dumps(
            {'channel': channel_name, 'event': event, 'payload': payload},
            default=str
        )
        await self._conn.execute('SELECT pg_notify($1, $2)', BROADCAST_CHANNEL, message)

    def _decode(self, channel: str, payload: str) -> Optional[Dict[str, Any]]:
        try:
            return json.loads(payload)
        except json.JSONDecodeError as e:
            logger.error(f"Invalid notification on {channel}: {e}")
            return None

    def _on_row_change(self, connection, pid, channel, payload) -> None:
        change = self._decode(channel, payload)
        if change is None:
            return
        for realtime_channel in list(self._channels):
            realtime_channel.dispatch_change(change)

    def _on_broadcast(self, connection, pid, channel, payload) -> None:
        message = self._decode(channel, payload)
        if message is None:
            return
        for realtime_channel in list(self._channels):
            realtime_channel.dispatch_broadcast(message)

    def _run_callback(self, callback: Callback, payload: Dict[str, Any]) -> None:
        try:
            result = callback(payload)
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
        except Exception as e:
            logger.error(f"Realtime callback failed: {e}")

__all__ = [
    'RealtimeClient',
    'RealtimeChannel',
    'RealtimeError',
    'InvalidFilterError',
    'parse_filter',
    'change_payload',
    'ROW_CHANGES_CHANNEL',
    'BROADCAST_CHANNEL'
]
