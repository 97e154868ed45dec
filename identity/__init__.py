"""Identity provider client.

Talks to the hosted identity REST API for email/password accounts, OAuth
credential exchange, password reset and ID token refresh. The client keeps
the signed-in user in memory and notifies listeners when it changes.

HTTP calls are blocking and run in a worker thread so they only suspend the
awaiting coroutine.
"""
import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional

import requests

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 15

class IdentityError(Exception):
    """Base exception for identity provider errors"""
    def __init__(self, message: str, code: Optional[str] = None):
        self.code = code
        super().__init__(message)

class IdentityConnectionError(IdentityError):
    """Raised when the identity provider cannot be reached"""
    pass

class InvalidCredentialsError(IdentityError):
    """Raised when email/password or an OAuth credential is rejected"""
    pass

class EmailExistsError(IdentityError):
    """Raised when signing up with an email that already has an account"""
    pass

class TokenRefreshError(IdentityError):
    """Raised when the refresh token is rejected or missing"""
    pass

# Provider error codes mapped to exception type and readable message
ERROR_CODES = {
    'EMAIL_NOT_FOUND': (InvalidCredentialsError, 'No account found for this email'),
    'INVALID_PASSWORD': (InvalidCredentialsError, 'Invalid email or password'),
    'INVALID_LOGIN_CREDENTIALS': (InvalidCredentialsError, 'Invalid email or password'),
    'INVALID_IDP_RESPONSE': (InvalidCredentialsError, 'Invalid OAuth credential'),
    'USER_DISABLED': (InvalidCredentialsError, 'This account has been disabled'),
    'EMAIL_EXISTS': (EmailExistsError, 'An account with this email already exists'),
    'WEAK_PASSWORD': (IdentityError, 'Password should be at least 6 characters'),
    'INVALID_EMAIL': (IdentityError, 'Invalid email address'),
    'TOKEN_EXPIRED': (TokenRefreshError, 'Session expired, please sign in again'),
    'INVALID_REFRESH_TOKEN': (TokenRefreshError, 'Session expired, please sign in again'),
    'USER_NOT_FOUND': (TokenRefreshError, 'Account no longer exists'),
}

AuthStateListener = Callable[[Optional[Dict[str, Any]]], None]

class IdentityClient:
    """Client for the identity provider REST API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        identity_url: Optional[str] = None,
        secure_token_url: Optional[str] = None,
        session: Optional[requests.Session] = None
    ) -> None:
        """Initialize the client with settings from settings.conf.

        Args:
            api_key: Provider API key
            identity_url: Base URL of the accounts API
            secure_token_url: Base URL of the token refresh API
            session: Optional requests session
        """
        from config import settings_conf

        self.api_key = api_key if api_key is not None else settings_conf['identity_api_key']
        self.identity_url = (identity_url or settings_conf['identity_url']).rstrip('/')
        self.secure_token_url = (secure_token_url or settings_conf['secure_token_url']).rstrip('/')
        self.session = session or requests.Session()
        self.session.headers['content-type'] = 'application/json'

        self.current_user: Optional[Dict[str, Any]] = None
        self._listeners: List[AuthStateListener] = []

    def _post(self, url: str, **kwargs) -> Dict[str, Any]:
        """POST to the provider and decode the JSON response.

        Raises:
            IdentityConnectionError: Connection failed or timed out
            IdentityError: Provider returned an error
        """
        try:
            response = self.session.post(
                url,
                params={'key': self.api_key},
                timeout=REQUEST_TIMEOUT,
                **kwargs
            )
            result = response.json()
        except requests.exceptions.Timeout as e:
            raise IdentityConnectionError(
                f"Request timed out after {REQUEST_TIMEOUT} seconds"
            ) from e
        except requests.exceptions.ConnectionError as e:
            raise IdentityConnectionError("Unable to connect to identity provider") from e
        except requests.exceptions.RequestException as e:
            raise IdentityConnectionError(f"Request failed: {str(e)}") from e
        except ValueError as e:
            raise IdentityError(f"Invalid response format: {str(e)}") from e

        if isinstance(result, dict) and result.get('error'):
            error = result['error']
            raw = error.get('message', 'UNKNOWN') if isinstance(error, dict) else str(error)
            # Messages look like "WEAK_PASSWORD : Password should be ..."
            code = raw.split(' ')[0].split(':')[0].strip()
            error_class, message = ERROR_CODES.get(code, (IdentityError, raw))
            raise error_class(message, code)

        if response.status_code >= 400:
            raise IdentityError(f"HTTP error {response.status_code}")

        return result

    def _accounts(self, action: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._post(f"{self.identity_url}/accounts:{action}", json=payload)

    def _set_user(self, result: Dict[str, Any]) -> Dict[str, Any]:
        expires_in = int(result.get('expiresIn') or result.get('expires_in') or 3600)
        self.current_user = {
            'uid': result.get('localId') or result.get('user_id'),
            'email': result.get('email', (self.current_user or {}).get('email')),
            'id_token': result.get('idToken') or result.get('id_token'),
            'refresh_token': result.get('refreshToken') or result.get('refresh_token'),
            'expires_at': time.time() + expires_in
        }
        self._notify()
        return self.current_user

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self.current_user)
            except Exception as e:
                logger.error(f"Auth state listener failed: {e}")

    def on_auth_state_changed(self, listener: AuthStateListener) -> Callable[[], None]:
        """Register a listener called with the current user (or None) on every change.

        The listener is called once immediately. Returns a function that
        removes the listener.
        """
        self._listeners.append(listener)
        listener(self.current_user)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def sign_up(self, email: str, password: str) -> Dict[str, Any]:
        """Create an email/password account and sign it in."""
        result = await asyncio.to_thread(self._accounts, 'signUp', {
            'email': email,
            'password': password,
            'returnSecureToken': True
        })
        logger.info(f"Created identity account for {email}")
        return self._set_user(result)

    async def sign_in_with_password(self, email: str, password: str) -> Dict[str, Any]:
        """Sign in with email and password."""
        result = await asyncio.to_thread(self._accounts, 'signInWithPassword', {
            'email': email,
            'password': password,
            'returnSecureToken': True
        })
        return self._set_user(result)

    async def sign_in_with_credential(self, provider_id: str, id_token: str) -> Dict[str, Any]:
        """Exchange an OAuth provider ID token (e.g. google.com, apple.com) for a session."""
        result = await asyncio.to_thread(self._accounts, 'signInWithIdp', {
            'postBody': f"id_token={id_token}&providerId={provider_id}",
            'requestUri': 'http://localhost',
            'returnSecureToken': True,
            'returnIdpCredential': True
        })
        return self._set_user(result)

    async def send_password_reset_email(self, email: str) -> None:
        await asyncio.to_thread(self._accounts, 'sendOobCode', {
            'requestType': 'PASSWORD_RESET',
            'email': email
        })
        logger.info(f"Password reset requested for {email}")

    async def lookup(self, id_token: str) -> Optional[Dict[str, Any]]:
        """Fetch the account record for an ID token."""
        result = await asyncio.to_thread(self._accounts, 'lookup', {'idToken': id_token})
        users = result.get('users') or []
        return users[0] if users else None

    async def get_id_token(self, force_refresh: bool = False) -> Optional[str]:
        """Return the current ID token, exchanging the refresh token when forced or expired.

        Raises:
            TokenRefreshError: If there is no signed-in user or the refresh is rejected
        """
        if not self.current_user:
            raise TokenRefreshError("No signed-in user")

        if not force_refresh and self.current_user['expires_at'] > time.time():
            return self.current_user['id_token']

        refresh_token = self.current_user.get('refresh_token')
        if not refresh_token:
            raise TokenRefreshError("No refresh token available")

        result = await asyncio.to_thread(
            self._post,
            f"{self.secure_token_url}/token",
            data={'grant_type': 'refresh_token', 'refresh_token': refresh_token},
            headers={'content-type': 'application/x-www-form-urlencoded'}
        )
        logger.debug("Refreshed ID token")
        return self._set_user(result)['id_token']

    async def sign_out(self) -> None:
        """Forget the signed-in user."""
        self.current_user = None
        self._notify()

__all__ = [
    'IdentityClient',
    'IdentityError',
    'IdentityConnectionError',
    'InvalidCredentialsError',
    'EmailExistsError',
    'TokenRefreshError'
]
