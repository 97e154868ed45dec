"""Tests for the identity provider client."""

import pytest
import requests

from identity import (
    EmailExistsError, IdentityClient, IdentityConnectionError, InvalidCredentialsError, TokenRefreshError
)

class FakeResponse:
    def __init__(self, body, status_code=200):
        self.body = body
        self.status_code = status_code

    def json(self):
        if isinstance(self.body, Exception):
            raise self.body
        return self.body

class FakeSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.headers = {}
        self.calls = []

    def post(self, url, **kwargs):
        self.calls.append((url, kwargs))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

def make_client(*responses):
    return IdentityClient(
        api_key='key',
        identity_url='https://id.test/v1',
        secure_token_url='https://token.test/v1',
        session=FakeSession(responses)
    )

SIGN_IN = {
    'localId': 'uid-1',
    'email': 'ada@example.com',
    'idToken': 'id-1',
    'refreshToken': 'refresh-1',
    'expiresIn': '3600'
}

@pytest.mark.asyncio
async def test_sign_in_sets_current_user_and_notifies():
    client = make_client(FakeResponse(SIGN_IN))
    seen = []
    client.on_auth_state_changed(seen.append)

    user = await client.sign_in_with_password('ada@example.com', 'pw')

    assert user['uid'] == 'uid-1'
    assert user['id_token'] == 'id-1'
    assert seen == [None, user]
    url, kwargs = client.session.calls[0]
    assert url == 'https://id.test/v1/accounts:signInWithPassword'
    assert kwargs['params'] == {'key': 'key'}

@pytest.mark.asyncio
@pytest.mark.parametrize('code, error_class, message', [
    ('EMAIL_EXISTS', EmailExistsError, 'An account with this email already exists'),
    ('INVALID_LOGIN_CREDENTIALS', InvalidCredentialsError, 'Invalid email or password'),
    ('WEAK_PASSWORD : Password should be at least 6 characters', Exception, 'Password should be at least 6 characters'),
])
async def test_provider_error_codes(code, error_class, message):
    client = make_client(FakeResponse({'error': {'message': code}}, status_code=400))

    with pytest.raises(error_class) as info:
        await client.sign_up('ada@example.com', 'pw')

    assert str(info.value) == message

@pytest.mark.asyncio
async def test_connection_failure_is_wrapped():
    client = make_client(requests.exceptions.ConnectionError('refused'))

    with pytest.raises(IdentityConnectionError):
        await client.sign_in_with_password('ada@example.com', 'pw')

@pytest.mark.asyncio
async def test_forced_refresh_exchanges_refresh_token():
    client = make_client(
        FakeResponse(SIGN_IN),
        FakeResponse({'id_token': 'id-2', 'refresh_token': 'refresh-2', 'user_id': 'uid-1', 'expires_in': '3600'})
    )
    await client.sign_in_with_password('ada@example.com', 'pw')

    token = await client.get_id_token(force_refresh=True)

    assert token == 'id-2'
    assert client.current_user['email'] == 'ada@example.com'
    url, kwargs = client.session.calls[1]
    assert url == 'https://token.test/v1/token'
    assert kwargs['data']['refresh_token'] == 'refresh-1'

@pytest.mark.asyncio
async def test_cached_token_returned_without_request():
    client = make_client(FakeResponse(SIGN_IN))
    await client.sign_in_with_password('ada@example.com', 'pw')

    assert await client.get_id_token() == 'id-1'
    assert len(client.session.calls) == 1

@pytest.mark.asyncio
async def test_refresh_without_user_fails():
    client = make_client()

    with pytest.raises(TokenRefreshError):
        await client.get_id_token(force_refresh=True)

@pytest.mark.asyncio
async def test_sign_out_clears_user():
    client = make_client(FakeResponse(SIGN_IN))
    await client.sign_in_with_password('ada@example.com', 'pw')

    await client.sign_out()

    assert client.current_user is None
