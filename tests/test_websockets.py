"""Tests for the WebSocket fan-out."""

import uuid

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from api import app
from api import websockets
from api.websockets import ConnectionManager
from catalog import get_catalog_manager
from chat import ChatAccessError, ConversationNotFoundError, get_chat_manager
from orders import get_order_manager
from realtime import SubscriptionRegistry
from users import get_user_manager

from conftest import FakeRealtimeClient

class FakeSocket:
    def __init__(self, fail=False):
        self.fail = fail
        self.accepted = False
        self.sent = []

    async def accept(self):
        self.accepted = True

    async def send_json(self, message):
        if self.fail:
            raise RuntimeError('socket closed')
        self.sent.append(message)

@pytest.fixture
def registry():
    return SubscriptionRegistry(FakeRealtimeClient())

@pytest.mark.asyncio
async def test_sockets_share_one_subscription(registry):
    manager = ConnectionManager(lambda: registry)
    subscribe = lambda callback: registry.subscribe_to_order_updates('o1', callback)
    first, second = FakeSocket(), FakeSocket()

    await manager.connect(first, 'order:o1', subscribe)
    await manager.connect(second, 'order:o1', subscribe)

    assert first.accepted and second.accepted
    assert len(registry.client.created) == 1

    callback = registry.channels['order:o1'].bindings[0]['callback']
    await callback({'eventType': 'UPDATE', 'new': {'status': 'READY'}})

    for socket in (first, second):
        [message] = socket.sent
        assert message['type'] == 'update'
        assert message['channel'] == 'order:o1'
        assert message['data']['new'] == {'status': 'READY'}

    await manager.disconnect(first, 'order:o1')
    assert 'order:o1' in registry.channels
    await manager.disconnect(second, 'order:o1')
    assert 'order:o1' not in registry.channels
    assert manager.active_connections == {}

@pytest.mark.asyncio
async def test_dead_sockets_are_dropped(registry):
    manager = ConnectionManager(lambda: registry)
    subscribe = lambda callback: registry.subscribe_to_notifications('u1', callback)
    alive, dead = FakeSocket(), FakeSocket(fail=True)
    await manager.connect(alive, 'notifications:u1', subscribe)
    await manager.connect(dead, 'notifications:u1', subscribe)

    await manager.broadcast('notifications:u1', {'title': 'Hi'})

    assert manager.active_connections['notifications:u1'] == {alive}
    assert len(alive.sent) == 1

CONSUMER = {'id': uuid.UUID('00000000-0000-0000-0000-000000000001'), 'role': 'consumer'}
DRIVER = {'id': uuid.UUID('00000000-0000-0000-0000-0000000000dd'), 'role': 'driver'}
CONVERSATION_ID = '44444444-4444-4444-4444-444444444444'
ORDER_ID = '22222222-2222-2222-2222-222222222222'

class FakeUsers:
    users = {'uid-1': CONSUMER, 'uid-driver': DRIVER}

    async def get_by_firebase_uid(self, uid):
        return self.users.get(uid)

class FakeChat:
    async def get_conversation(self, conversation_id, user_id):
        if str(conversation_id) != CONVERSATION_ID:
            raise ConversationNotFoundError(f"Conversation {conversation_id} not found")
        if user_id != CONSUMER['id']:
            raise ChatAccessError("Not a participant of this conversation")
        return {'id': conversation_id}

class FakeOrders:
    async def get_order(self, order_id):
        return {'id': order_id, 'user_id': 'someone-else', 'merchant_id': 'm1', 'driver_id': DRIVER['id']}

class FakeCatalog:
    async def get_merchant_by_user(self, user_id):
        return None

@pytest.fixture
def client(monkeypatch, registry):
    monkeypatch.setattr(websockets.manager, 'registry_factory', lambda: registry)
    app.dependency_overrides[get_user_manager] = FakeUsers
    app.dependency_overrides[get_chat_manager] = FakeChat
    app.dependency_overrides[get_order_manager] = FakeOrders
    app.dependency_overrides[get_catalog_manager] = FakeCatalog
    yield TestClient(app)
    app.dependency_overrides.clear()

def refused(client, path, **kwargs):
    with pytest.raises(WebSocketDisconnect) as info:
        with client.websocket_connect(path, **kwargs):
            pass
    return info.value.code

def test_ping_pong_over_socket(client, registry):
    with client.websocket_connect(f'/ws/chat/{CONVERSATION_ID}', headers={'x-firebase-uid': 'uid-1'}) as socket:
        socket.send_json({'type': 'ping'})
        reply = socket.receive_json()

        assert reply['type'] == 'pong'
        assert f'chat:{CONVERSATION_ID}' in registry.channels

def test_sockets_require_a_known_user(client, registry):
    assert refused(client, f"/ws/notifications/{CONSUMER['id']}") == 1008
    assert refused(client, f"/ws/notifications/{CONSUMER['id']}?uid=nobody") == 1008
    assert registry.channels == {}

def test_sockets_enforce_access(client, registry):
    driver = {'headers': {'x-firebase-uid': 'uid-driver'}}

    assert refused(client, f"/ws/notifications/{CONSUMER['id']}", **driver) == 1008
    assert refused(client, f'/ws/chat/{CONVERSATION_ID}', **driver) == 1008
    assert refused(client, f'/ws/chat/{uuid.uuid4()}?uid=uid-1') == 1008
    assert refused(client, f'/ws/orders/{ORDER_ID}?uid=uid-1') == 1008
    assert registry.channels == {}

    with client.websocket_connect(f'/ws/orders/{ORDER_ID}', **driver) as socket:
        socket.send_json({'type': 'ping'})
        assert socket.receive_json()['type'] == 'pong'

def test_only_the_driver_publishes_location(client, registry):
    key = f"driver_location:{DRIVER['id']}"
    location = {'type': 'location', 'latitude': 6.5, 'longitude': 3.3}

    with client.websocket_connect(f"/ws/drivers/{DRIVER['id']}?uid=uid-1") as socket:
        socket.send_json(location)
        socket.send_json({'type': 'ping'})
        socket.receive_json()
        assert registry.channels[key].sent == []

    with client.websocket_connect(f"/ws/drivers/{DRIVER['id']}?uid=uid-driver") as socket:
        socket.send_json(location)
        socket.send_json({'type': 'ping'})
        socket.receive_json()
        [(event, payload)] = registry.channels[key].sent
        assert event == 'location_update'
        assert payload['driverId'] == str(DRIVER['id'])
