"""Realtime subscriptions.

The SubscriptionRegistry maps a string channel key (``order:<id>``,
``driver_location:<id>``, ``chat:<id>``, ...) to a subscribed provider
channel. Subscribing an existing key is a no-op that returns the same
teardown; tearing down removes the entry and the provider channel.
"""
import asyncio
import functools
import logging
from typing import Any, Callable, Dict, Optional, Set

from .client import (
    RealtimeClient,
    RealtimeChannel,
    RealtimeError,
    InvalidFilterError,
    Callback
)

logger = logging.getLogger(__name__)

_client: Optional[RealtimeClient] = None
_registry: Optional['SubscriptionRegistry'] = None

class SubscriptionRegistry:
    """Registry of active realtime subscriptions keyed by channel name."""

    def __init__(self, client: Optional[RealtimeClient] = None) -> None:
        """Initialize the registry.

        Args:
            client: Realtime provider. Defaults to the shared client.
        """
        self.client = client or get_realtime_client()
        self.channels: Dict[str, RealtimeChannel] = {}
        self._tasks: Set[asyncio.Task] = set()

    def _teardown(self, key: str) -> Callable:
        return functools.partial(self.unsubscribe, key)

    async def subscribe(
        self,
        key: str,
        table: str,
        callback: Callback,
        event: str = '*',
        filter: Optional[str] = None
    ) -> Callable:
        """Subscribe a callback to row changes under a channel key.

        Args:
            key: Channel key
            table: Table to watch
            callback: Called with {eventType, table, new, old}
            event: INSERT, UPDATE, DELETE or * for all
            filter: Optional row filter of the form column=eq.value

        Returns:
            Coroutine function that removes the subscription
        """
        if key in self.channels:
            logger.debug(f"Already subscribed to {key}")
            return self._teardown(key)

        channel = self.client.channel(key).on_postgres_changes(
            event, table, callback, filter=filter
        )
        # Reserve the key before joining so concurrent subscribes stay no-ops
        self.channels[key] = channel
        try:
            await channel.subscribe()
        except Exception:
            if self.channels.get(key) is channel:
                del self.channels[key]
            raise
        logger.info(f"Subscribed to {key}")
        return self._teardown(key)

    async def unsubscribe(self, key: str) -> None:
        """Remove a subscription and its provider channel."""
        channel = self.channels.pop(key, None)
        if channel is not None:
            await self.client.remove_channel(channel)
            logger.info(f"Unsubscribed from {key}")

    async def unsubscribe_all(self) -> None:
        for channel in list(self.channels.values()):
            await self.client.remove_channel(channel)
        self.channels.clear()

    def connection_status(self) -> str:
        """'connected' when authenticated with at least one active channel."""
        if not self.client.access_token:
            return 'disconnected'
        return 'connected' if self.channels else 'disconnected'

    def bind_identity(self, identity) -> Callable[[], None]:
        """Follow the identity provider's signed-in user.

        Signing in sets the realtime auth token; signing out clears it and
        removes every subscription.
        """
        def on_change(user: Optional[Dict[str, Any]]) -> None:
            if user:
                self.client.set_auth(user.get('id_token'))
                return

            self.client.set_auth(None)
            if self.channels:
                task = asyncio.get_running_loop().create_task(self.unsubscribe_all())
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)

        return identity.on_auth_state_changed(on_change)

    async def subscribe_to_order_updates(self, order_id: str, callback: Callback) -> Callable:
        return await self.subscribe(
            f"order:{order_id}", 'orders', callback, filter=f"id=eq.{order_id}"
        )

    async def subscribe_to_driver_location(self, driver_id: str, callback: Callback) -> Callable:
        return await self.subscribe(
            f"driver_location:{driver_id}",
            'driver_locations',
            callback,
            event='UPDATE',
            filter=f"driver_id=eq.{driver_id}"
        )

    async def subscribe_to_chat_messages(self, conversation_id: str, callback: Callback) -> Callable:
        return await self.subscribe(
            f"chat:{conversation_id}",
            'messages',
            callback,
            event='INSERT',
            filter=f"conversation_id=eq.{conversation_id}"
        )

    async def subscribe_to_inventory_updates(self, merchant_id: str, callback: Callback) -> Callable:
        return await self.subscribe(
            f"inventory:{merchant_id}", 'products', callback, filter=f"merchant_id=eq.{merchant_id}"
        )

    async def subscribe_to_notifications(self, user_id: str, callback: Callback) -> Callable:
        return await self.subscribe(
            f"notifications:{user_id}",
            'notifications',
            callback,
            event='INSERT',
            filter=f"user_id=eq.{user_id}"
        )

    async def broadcast_driver_location(self, location: Dict[str, Any]) -> None:
        """Send a driver's location to everyone on the driver's channel.

        Args:
            location: Dict with driverId, latitude, longitude and optional heading and timestamp
        """
        key = f"driver_location:{location['driverId']}"
        channel = self.channels.get(key)
        if channel is None:
            channel = self.client.channel(key)
            self.channels[key] = channel
            try:
                await channel.subscribe()
            except Exception:
                if self.channels.get(key) is channel:
                    del self.channels[key]
                raise
        await channel.send('location_update', location)

def get_realtime_client() -> RealtimeClient:
    """Shared realtime client."""
    global _client
    if _client is None:
        _client = RealtimeClient()
    return _client

def get_registry() -> SubscriptionRegistry:
    """Shared subscription registry."""
    global _registry
    if _registry is None:
        _registry = SubscriptionRegistry(get_realtime_client())
    return _registry

async def close() -> None:
    """Drop all subscriptions and close the shared client."""
    global _client, _registry
    if _registry is not None:
        await _registry.unsubscribe_all()
        _registry = None
    if _client is not None:
        await _client.close()
        _client = None

__all__ = [
    'SubscriptionRegistry',
    'RealtimeClient',
    'RealtimeChannel',
    'RealtimeError',
    'InvalidFilterError',
    'get_realtime_client',
    'get_registry',
    'close'
]
