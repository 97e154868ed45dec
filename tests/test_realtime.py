"""Tests for realtime channels and the subscription registry."""

import asyncio
import json

import pytest

from realtime import InvalidFilterError, SubscriptionRegistry
from realtime.client import RealtimeClient, change_payload, parse_filter

def test_parse_filter():
    assert parse_filter('id=eq.42') == ('id', '42')
    assert parse_filter(None) is None
    with pytest.raises(InvalidFilterError):
        parse_filter('id=gt.4')

@pytest.mark.asyncio
async def test_duplicate_subscribe_reuses_channel(realtime_client):
    registry = SubscriptionRegistry(realtime_client)

    teardown = await registry.subscribe_to_order_updates('o1', lambda payload: None)
    await registry.subscribe_to_order_updates('o1', lambda payload: None)

    assert len(realtime_client.created) == 1
    [channel] = realtime_client.joined
    assert channel.name == 'order:o1'
    assert channel.bindings[0]['filter'] == 'id=eq.o1'

    await teardown()
    assert realtime_client.removed == [channel]
    assert 'order:o1' not in registry.channels

@pytest.mark.asyncio
async def test_connection_status(realtime_client):
    registry = SubscriptionRegistry(realtime_client)
    assert registry.connection_status() == 'disconnected'

    realtime_client.set_auth('token')
    await registry.subscribe_to_notifications('u1', lambda payload: None)
    assert registry.connection_status() == 'connected'

    await registry.unsubscribe_all()
    assert registry.connection_status() == 'disconnected'
    assert len(realtime_client.removed) == 1

@pytest.mark.asyncio
async def test_driver_location_broadcast_creates_channel(realtime_client):
    registry = SubscriptionRegistry(realtime_client)
    location = {'driverId': 'd1', 'latitude': 6.5, 'longitude': 3.3}

    await registry.broadcast_driver_location(location)

    channel = registry.channels['driver_location:d1']
    assert channel.sent == [('location_update', location)]

class IdentityStub:
    def __init__(self):
        self.listener = None

    def on_auth_state_changed(self, listener):
        self.listener = listener
        listener(None)
        return lambda: None

def test_bind_identity_tracks_token(realtime_client):
    registry = SubscriptionRegistry(realtime_client)
    identity = IdentityStub()
    registry.bind_identity(identity)

    identity.listener({'id_token': 'abc'})
    assert realtime_client.access_token == 'abc'

    identity.listener(None)
    assert realtime_client.access_token is None

@pytest.fixture
def pg_client(monkeypatch):
    client = RealtimeClient(db_url='postgresql://unused')

    async def connect():
        return None

    monkeypatch.setattr(client, 'connect', connect)
    return client

@pytest.mark.asyncio
async def test_row_changes_reach_matching_bindings(pg_client):
    received = []
    channel = pg_client.channel('order:o1').on_postgres_changes(
        '*', 'orders', received.append, filter='id=eq.o1'
    )
    await channel.subscribe()

    change = {'table': 'orders', 'type': 'UPDATE', 'record': {'id': 'o1', 'status': 'READY'}, 'old_record': None}
    pg_client._on_row_change(None, 1, 'row_changes', json.dumps(change))
    pg_client._on_row_change(None, 1, 'row_changes', json.dumps(dict(change, record={'id': 'o2'})))
    pg_client._on_row_change(None, 1, 'row_changes', json.dumps(dict(change, table='products')))

    assert received == [change_payload(change)]
    assert received[0]['new']['status'] == 'READY'

@pytest.mark.asyncio
async def test_event_filter_and_removed_channels(pg_client):
    received = []
    channel = pg_client.channel('chat:c1').on_postgres_changes('INSERT', 'messages', received.append)
    await channel.subscribe()

    pg_client._on_row_change(None, 1, 'row_changes', json.dumps({'table': 'messages', 'type': 'UPDATE', 'record': {}}))
    assert received == []

    await pg_client.remove_channel(channel)
    pg_client._on_row_change(None, 1, 'row_changes', json.dumps({'table': 'messages', 'type': 'INSERT', 'record': {}}))
    assert received == []
    assert channel.state == 'closed'

@pytest.mark.asyncio
async def test_broadcast_only_reaches_same_channel(pg_client):
    received = []
    channel = pg_client.channel('driver_location:d1').on_broadcast('location_update', received.append)
    await channel.subscribe()

    message = {'channel': 'driver_location:d1', 'event': 'location_update', 'payload': {'latitude': 1}}
    pg_client._on_broadcast(None, 1, 'realtime_broadcast', json.dumps(message))
    pg_client._on_broadcast(None, 1, 'realtime_broadcast', json.dumps(dict(message, channel='driver_location:d2')))

    assert received == [{'type': 'broadcast', 'event': 'location_update', 'payload': {'latitude': 1}}]

def test_failing_callback_is_contained(pg_client):
    def boom(payload):
        raise RuntimeError('boom')

    pg_client._run_callback(boom, {})

@pytest.mark.asyncio
async def test_concurrent_subscribes_share_one_channel(realtime_client):
    realtime_client.join_delay = 0.01
    registry = SubscriptionRegistry(realtime_client)

    await asyncio.gather(
        registry.subscribe_to_order_updates('o1', lambda payload: None),
        registry.subscribe_to_order_updates('o1', lambda payload: None)
    )

    assert len(realtime_client.created) == 1
    assert len(realtime_client.joined) == 1

    await registry.unsubscribe('order:o1')
    assert realtime_client.removed == realtime_client.created
    assert registry.channels == {}

@pytest.mark.asyncio
async def test_failed_join_releases_key(realtime_client):
    realtime_client.join_error = ConnectionError('down')
    registry = SubscriptionRegistry(realtime_client)

    with pytest.raises(ConnectionError):
        await registry.subscribe_to_order_updates('o1', lambda payload: None)
    assert 'order:o1' not in registry.channels

    realtime_client.join_error = None
    await registry.subscribe_to_order_updates('o1', lambda payload: None)
    assert len(realtime_client.joined) == 1

@pytest.mark.asyncio
async def test_sign_out_removes_subscriptions(realtime_client):
    registry = SubscriptionRegistry(realtime_client)
    identity = IdentityStub()
    registry.bind_identity(identity)
    identity.listener({'id_token': 'abc'})
    await registry.subscribe_to_notifications('u1', lambda payload: None)

    identity.listener(None)
    assert len(registry._tasks) == 1
    await asyncio.gather(*registry._tasks)

    assert registry.channels == {}
    assert len(realtime_client.removed) == 1
    assert registry._tasks == set()
