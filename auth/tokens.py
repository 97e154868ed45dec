"""Client-side ID token lifecycle.

The current ID token and its expiry (epoch milliseconds) live in local
storage. A cached token is used until it is within the refresh buffer of its
expiry; then a fresh token is requested from the identity provider, stored,
and handed to the realtime client. A failed refresh falls back to the stale
token.
"""
import logging
import time
from typing import Callable, Optional

from jose import jwt
from jose.exceptions import JOSEError

from identity import IdentityClient, IdentityError
from storage import LocalStore

logger = logging.getLogger(__name__)

TOKEN_KEY = 'userToken'
EXPIRY_KEY = 'tokenExpiry'

def token_expiry_ms(token: str) -> Optional[int]:
    """Expiry of a JWT in epoch milliseconds, or None when it has no readable exp claim."""
    try:
        claims = jwt.get_unverified_claims(token)
    except JOSEError:
        return None
    exp = claims.get('exp')
    return int(exp) * 1000 if isinstance(exp, (int, float)) else None

class TokenManager:
    """Caches, refreshes and propagates the ID token."""

    def __init__(
        self,
        store: LocalStore,
        identity: IdentityClient,
        realtime=None,
        buffer_minutes: Optional[int] = None,
        lifetime_minutes: Optional[int] = None,
        clock: Callable[[], float] = time.time
    ) -> None:
        """Initialize the token manager.

        Args:
            store: Local storage holding the token and expiry
            identity: Identity provider client used to refresh
            realtime: Realtime client receiving the token, if any
            buffer_minutes: Refresh when expiry is closer than this
            lifetime_minutes: Assumed lifetime of a token without an exp claim
            clock: Returns the current time in seconds
        """
        from config import settings_conf

        self.store = store
        self.identity = identity
        self.realtime = realtime
        if buffer_minutes is None:
            buffer_minutes = settings_conf['token_refresh_buffer_minutes']
        if lifetime_minutes is None:
            lifetime_minutes = settings_conf['token_lifetime_minutes']
        self.buffer_ms = buffer_minutes * 60 * 1000
        self.lifetime_ms = lifetime_minutes * 60 * 1000
        self.clock = clock

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    async def get_expiry(self) -> Optional[int]:
        value = await self.store.get_item(EXPIRY_KEY)
        try:
            return int(value) if value else None
        except ValueError:
            return None

    async def get_token(self) -> Optional[str]:
        """Return a usable ID token, refreshing it when it is about to expire.

        Returns:
            The cached token, a fresh token, or the stale token when the
            refresh fails. None when no token was ever stored and refresh fails.
        """
        token = await self.store.get_item(TOKEN_KEY)
        expiry = await self.get_expiry()

        if token and expiry and expiry - self.buffer_ms > self._now_ms():
            return token

        try:
            fresh = await self.identity.get_id_token(force_refresh=True)
        except IdentityError as e:
            logger.warning(f"Token refresh failed, using stored token: {e}")
            return token

        if not fresh:
            return token

        await self.store_token(fresh)
        logger.info("Token refreshed successfully")
        return fresh

    async def store_token(self, token: str) -> int:
        """Persist a token with its expiry and propagate it to realtime.

        Returns:
            The stored expiry in epoch milliseconds
        """
        expiry = token_expiry_ms(token) or self._now_ms() + self.lifetime_ms
        await self.store.multi_set([
            (TOKEN_KEY, token),
            (EXPIRY_KEY, str(expiry))
        ])
        if self.realtime is not None:
            self.realtime.set_auth(token)
        return expiry

    async def clear(self) -> None:
        await self.store.multi_remove([TOKEN_KEY, EXPIRY_KEY])
        if self.realtime is not None:
            self.realtime.set_auth(None)

__all__ = ['TokenManager', 'token_expiry_ms', 'TOKEN_KEY', 'EXPIRY_KEY']
