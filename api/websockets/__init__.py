"""WebSocket endpoints for real-time updates.

Each socket path maps to a realtime subscription key. The first socket on a
key subscribes through the shared registry and every change is fanned out to
all sockets on that key; the last socket to leave removes the subscription.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Set
from uuid import UUID

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from auth import UID_HEADER
from catalog import CatalogManager, get_catalog_manager
from chat import ChatManager, ChatAccessError, ConversationNotFoundError, get_chat_manager
from orders import OrderManager, OrderNotFoundError, get_order_manager
from realtime import SubscriptionRegistry, get_registry
from users import UserManager, get_user_manager

from ..orders import can_view_order

logger = logging.getLogger(__name__)

# Close code for sockets refused by authentication or access checks
POLICY_VIOLATION = 1008

router = APIRouter(
    prefix="/ws",
    tags=["WebSocket"]
)

class ConnectionManager:
    """Tracks sockets per subscription key."""

    def __init__(self, registry_factory: Callable[[], SubscriptionRegistry] = get_registry):
        self.registry_factory = registry_factory
        self.active_connections: Dict[str, Set[WebSocket]] = {}
        self._lock = asyncio.Lock()

    @property
    def registry(self) -> SubscriptionRegistry:
        return self.registry_factory()

    async def connect(self, websocket: WebSocket, key: str, subscribe: Callable[[Callable], Awaitable[Callable]]):
        """Accept a socket and make sure its key is subscribed."""
        await websocket.accept()
        async with self._lock:
            if key not in self.active_connections:
                await subscribe(lambda payload: self._forward(key, payload))
                self.active_connections[key] = set()
            self.active_connections[key].add(websocket)
        logger.info(f"New connection established for {key}")

    async def disconnect(self, websocket: WebSocket, key: str):
        """Forget a socket; the last one on a key removes the subscription."""
        async with self._lock:
            sockets = self.active_connections.get(key)
            if sockets is None:
                return
            sockets.discard(websocket)
            if not sockets:
                del self.active_connections[key]
                await self.registry.unsubscribe(key)
        logger.info(f"Connection closed for {key}")

    async def _forward(self, key: str, payload: Dict[str, Any]):
        await self.broadcast(key, payload)

    async def broadcast(self, key: str, data: Dict[str, Any]):
        """Send an update to every socket on a key."""
        message = {
            "type": "update",
            "channel": key,
            "data": data,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

        dead_connections = set()
        for connection in list(self.active_connections.get(key, ())):
            try:
                await connection.send_json(message)
            except Exception as e:
                logger.error(f"Failed to send to connection: {e}")
                dead_connections.add(connection)

        for dead in dead_connections:
            await self.disconnect(dead, key)

manager = ConnectionManager()

async def handle_connection(
    websocket: WebSocket,
    key: str,
    subscribe: Callable[[Callable], Awaitable[Callable]],
    on_message: Optional[Callable[[Dict[str, Any]], Awaitable[None]]] = None
):
    """Serve one socket until it disconnects."""
    try:
        await manager.connect(websocket, key, subscribe)
    except Exception as e:
        logger.error(f"Subscription for {key} failed: {e}")
        await websocket.close(code=1011, reason="Realtime unavailable")
        return

    try:
        while True:
            message = await websocket.receive_json()
            if not isinstance(message, dict):
                continue
            if message.get("type") == "ping":
                await websocket.send_json({
                    "type": "pong",
                    "timestamp": datetime.now(timezone.utc).isoformat()
                })
            elif on_message is not None:
                await on_message(message)
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"WebSocket error on {key}: {e}")
    finally:
        await manager.disconnect(websocket, key)

async def socket_user(
    websocket: WebSocket,
    users: UserManager = Depends(get_user_manager)
) -> Optional[Dict[str, Any]]:
    """Resolve the socket's user from the x-firebase-uid header or the uid query parameter."""
    uid = websocket.headers.get(UID_HEADER) or websocket.query_params.get('uid')
    if not uid:
        return None
    try:
        return await users.get_by_firebase_uid(uid)
    except Exception as e:
        logger.error(f"Socket authentication lookup failed: {e}")
        return None

async def reject(websocket: WebSocket, key: str, reason: str) -> None:
    logger.warning(f"Refused socket for {key}: {reason}")
    await websocket.close(code=POLICY_VIOLATION, reason=reason)

@router.websocket("/orders/{order_id}")
async def order_updates(
    websocket: WebSocket,
    order_id: UUID,
    user: Optional[Dict[str, Any]] = Depends(socket_user),
    orders: OrderManager = Depends(get_order_manager),
    catalog: CatalogManager = Depends(get_catalog_manager)
):
    """Status changes of one order, for the people who may see it."""
    key = f"order:{order_id}"
    if user is None:
        return await reject(websocket, key, "Unauthorized")
    try:
        order = await orders.get_order(order_id)
    except OrderNotFoundError:
        return await reject(websocket, key, "Order not found")
    if not await can_view_order(user, order, catalog):
        return await reject(websocket, key, "Access denied")

    await handle_connection(
        websocket,
        key,
        lambda callback: manager.registry.subscribe_to_order_updates(str(order_id), callback)
    )

@router.websocket("/drivers/{driver_id}")
async def driver_location(
    websocket: WebSocket,
    driver_id: UUID,
    user: Optional[Dict[str, Any]] = Depends(socket_user)
):
    """Location of one driver. The driver posts {"type": "location", ...} to share theirs."""
    key = f"driver_location:{driver_id}"
    if user is None:
        return await reject(websocket, key, "Unauthorized")
    is_driver = str(user['id']) == str(driver_id)

    async def subscribe(callback):
        teardown = await manager.registry.subscribe_to_driver_location(str(driver_id), callback)
        manager.registry.channels[key].on_broadcast('location_update', callback)
        return teardown

    async def on_message(message: Dict[str, Any]):
        if message.get("type") != "location":
            return
        if not is_driver:
            logger.warning(f"User {user['id']} tried to publish a location for driver {driver_id}")
            return
        await manager.registry.broadcast_driver_location({
            'driverId': str(driver_id),
            'latitude': message.get('latitude'),
            'longitude': message.get('longitude'),
            'heading': message.get('heading'),
            'timestamp': message.get('timestamp') or datetime.now(timezone.utc).isoformat()
        })

    await handle_connection(websocket, key, subscribe, on_message)

@router.websocket("/chat/{conversation_id}")
async def chat_messages(
    websocket: WebSocket,
    conversation_id: UUID,
    user: Optional[Dict[str, Any]] = Depends(socket_user),
    chat: ChatManager = Depends(get_chat_manager)
):
    """New messages in one conversation, for its participants."""
    key = f"chat:{conversation_id}"
    if user is None:
        return await reject(websocket, key, "Unauthorized")
    try:
        await chat.get_conversation(conversation_id, user['id'])
    except ConversationNotFoundError:
        return await reject(websocket, key, "Conversation not found")
    except ChatAccessError:
        return await reject(websocket, key, "Access denied")

    await handle_connection(
        websocket,
        key,
        lambda callback: manager.registry.subscribe_to_chat_messages(str(conversation_id), callback)
    )

@router.websocket("/notifications/{user_id}")
async def user_notifications(
    websocket: WebSocket,
    user_id: UUID,
    user: Optional[Dict[str, Any]] = Depends(socket_user)
):
    """New notifications for one user, for that user or an admin."""
    key = f"notifications:{user_id}"
    if user is None:
        return await reject(websocket, key, "Unauthorized")
    if str(user['id']) != str(user_id) and user['role'] != 'admin':
        return await reject(websocket, key, "Access denied")

    await handle_connection(
        websocket,
        key,
        lambda callback: manager.registry.subscribe_to_notifications(str(user_id), callback)
    )
