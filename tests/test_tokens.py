"""Tests for the ID token cache and refresh."""

import pytest
from jose import jwt

from auth.tokens import EXPIRY_KEY, TOKEN_KEY, TokenManager, token_expiry_ms
from identity import TokenRefreshError

NOW = 1_700_000_000.0

def make_tokens(local_store, identity, realtime_client=None):
    return TokenManager(
        local_store,
        identity,
        realtime=realtime_client,
        buffer_minutes=5,
        lifetime_minutes=55,
        clock=lambda: NOW
    )

def test_expiry_read_from_jwt():
    token = jwt.encode({'exp': 1_700_003_600, 'sub': 'uid-1'}, 'secret', algorithm='HS256')

    assert token_expiry_ms(token) == 1_700_003_600_000
    assert token_expiry_ms('not-a-jwt') is None

@pytest.mark.asyncio
async def test_cached_token_outside_buffer_is_reused(local_store, identity):
    tokens = make_tokens(local_store, identity)
    await local_store.multi_set([(TOKEN_KEY, 'cached'), (EXPIRY_KEY, str(int(NOW * 1000) + 10 * 60 * 1000))])

    assert await tokens.get_token() == 'cached'
    assert identity.refresh_calls == 0

@pytest.mark.asyncio
async def test_token_inside_buffer_is_refreshed(local_store, identity, realtime_client):
    tokens = make_tokens(local_store, identity, realtime_client)
    await local_store.multi_set([(TOKEN_KEY, 'cached'), (EXPIRY_KEY, str(int(NOW * 1000) + 60 * 1000))])

    assert await tokens.get_token() == 'fresh-token'
    assert await local_store.get_item(TOKEN_KEY) == 'fresh-token'
    assert await tokens.get_expiry() == int(NOW * 1000) + 55 * 60 * 1000
    assert realtime_client.access_token == 'fresh-token'

@pytest.mark.asyncio
async def test_refreshed_jwt_uses_its_exp_claim(local_store, identity):
    identity.refreshed_token = jwt.encode({'exp': 1_700_007_200}, 'secret', algorithm='HS256')
    tokens = make_tokens(local_store, identity)

    await tokens.get_token()

    assert await tokens.get_expiry() == 1_700_007_200_000

@pytest.mark.asyncio
async def test_refresh_failure_returns_stale_token(local_store, identity):
    identity.refresh_error = TokenRefreshError('Session expired, please sign in again')
    tokens = make_tokens(local_store, identity)
    await local_store.multi_set([(TOKEN_KEY, 'stale'), (EXPIRY_KEY, str(int(NOW * 1000) - 1000))])

    assert await tokens.get_token() == 'stale'
    assert await local_store.get_item(TOKEN_KEY) == 'stale'

@pytest.mark.asyncio
async def test_clear_removes_token_and_realtime_auth(local_store, identity, realtime_client):
    tokens = make_tokens(local_store, identity, realtime_client)
    await tokens.store_token('abc')

    await tokens.clear()

    assert await local_store.get_item(TOKEN_KEY) is None
    assert realtime_client.access_token is None

@pytest.mark.asyncio
async def test_zero_buffer_reuses_token_until_expiry(local_store, identity):
    tokens = TokenManager(local_store, identity, buffer_minutes=0, lifetime_minutes=55, clock=lambda: NOW)
    await local_store.multi_set([(TOKEN_KEY, 'cached'), (EXPIRY_KEY, str(int(NOW * 1000) + 60 * 1000))])

    assert tokens.buffer_ms == 0
    assert await tokens.get_token() == 'cached'
    assert identity.refresh_calls == 0
