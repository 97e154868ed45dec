"""Client session service.

Signs users up and in through the identity provider, keeps the session in
local storage and tears everything down on sign out.
"""
import json
import logging
from typing import Any, Dict, Optional

from database.store import DataStore
from identity import IdentityClient
from results import ServiceResult
from storage import LocalStore
from users import SELF_REGISTRATION_ROLES, InvalidRoleError

from . import RoleMismatchError
from .tokens import TokenManager, TOKEN_KEY, EXPIRY_KEY

logger = logging.getLogger(__name__)

USER_KEY = 'userData'
ROLE_KEY = 'userRole'
SELECTED_ROLE_KEY = 'selectedRole'
EMAIL_KEY = 'userEmail'

AUTH_KEYS = [
    TOKEN_KEY,
    USER_KEY,
    ROLE_KEY,
    EXPIRY_KEY,
    SELECTED_ROLE_KEY,
    'pendingUserData',
    'tempUserEmail',
    'tempUserRole',
    'isOfflineMode',
    EMAIL_KEY,
    'biometricEnabled'
]

class AuthService:
    """Sign-up, sign-in and sign-out for the client."""

    def __init__(
        self,
        store: LocalStore,
        identity: IdentityClient,
        data: DataStore,
        tokens: TokenManager,
        registry=None,
        session_hours: Optional[int] = None
    ) -> None:
        """Initialize the service.

        Args:
            store: Local storage
            identity: Identity provider client
            data: Data store holding user profiles
            tokens: Token manager
            registry: Realtime subscription registry, torn down on sign out
            session_hours: Lifetime of a stored session
        """
        from config import settings_conf

        self.store = store
        self.identity = identity
        self.data = data
        self.tokens = tokens
        self.registry = registry
        self.session_ms = (session_hours or settings_conf['session_lifetime_hours']) * 3600 * 1000

    async def _store_auth_data(self, token: str, user: Dict[str, Any]) -> None:
        expiry = int(self.tokens.clock() * 1000) + self.session_ms
        await self.store.multi_set([
            (TOKEN_KEY, token),
            (USER_KEY, json.dumps(user, default=str)),
            (ROLE_KEY, user['role']),
            (EXPIRY_KEY, str(expiry)),
            (SELECTED_ROLE_KEY, user['role']),
            (EMAIL_KEY, user['email'])
        ])
        if self.tokens.realtime is not None:
            self.tokens.realtime.set_auth(token)

    async def clear_auth_data(self) -> None:
        await self.store.multi_remove(AUTH_KEYS)

    async def _load_profile(self, account: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return await self.data.find_one('users', {'firebase_uid': account['uid']})

    async def sign_up(
        self,
        email: str,
        password: str,
        role: str,
        full_name: Optional[str] = None,
        phone_number: Optional[str] = None
    ) -> ServiceResult:
        """Create an account, its user profile and a stored session."""
        try:
            if role not in SELF_REGISTRATION_ROLES:
                raise InvalidRoleError(role, SELF_REGISTRATION_ROLES)

            account = await self.identity.sign_up(email, password)
            user = await self.data.create('users', {
                'firebase_uid': account['uid'],
                'email': email,
                'full_name': full_name,
                'role': role,
                'phone_number': phone_number
            })
            await self._store_auth_data(account['id_token'], user)

            logger.info(f"Signed up {role} {email}")
            return ServiceResult.ok({'token': account['id_token'], 'user': user})
        except Exception as e:
            logger.error(f"Sign up failed: {e}")
            return ServiceResult.fail(e)

    async def _complete_sign_in(
        self,
        account: Dict[str, Any],
        role: Optional[str],
        create_missing: bool = False
    ) -> ServiceResult:
        user = await self._load_profile(account)
        if user is None:
            if not create_missing:
                await self.identity.sign_out()
                return ServiceResult.fail('User profile not found')
            if role and role not in SELF_REGISTRATION_ROLES:
                await self.identity.sign_out()
                return ServiceResult.fail(InvalidRoleError(role, SELF_REGISTRATION_ROLES))
            user = await self.data.create('users', {
                'firebase_uid': account['uid'],
                'email': account.get('email') or '',
                'role': role or 'consumer'
            })

        if role and user['role'] != role:
            await self.identity.sign_out()
            return ServiceResult.fail(RoleMismatchError(role, user['role']))

        await self._store_auth_data(account['id_token'], user)
        return ServiceResult.ok({'token': account['id_token'], 'user': user})

    async def sign_in(self, email: str, password: str, role: Optional[str] = None) -> ServiceResult:
        """Sign in with email and password, optionally asserting the account role."""
        try:
            account = await self.identity.sign_in_with_password(email, password)
            return await self._complete_sign_in(account, role)
        except Exception as e:
            logger.error(f"Sign in failed: {e}")
            return ServiceResult.fail(e)

    async def sign_in_with_oauth(
        self,
        provider: str,
        credential: str,
        role: Optional[str] = None
    ) -> ServiceResult:
        """Sign in with an OAuth provider ID token, creating the profile on first use."""
        try:
            account = await self.identity.sign_in_with_credential(provider, credential)
            return await self._complete_sign_in(account, role, create_missing=True)
        except Exception as e:
            logger.error(f"OAuth sign in with {provider} failed: {e}")
            return ServiceResult.fail(e)

    async def request_password_reset(self, email: str) -> ServiceResult:
        try:
            await self.identity.send_password_reset_email(email)
            return ServiceResult.ok({
                'message': 'Password reset email sent successfully. Please check your inbox.'
            })
        except Exception as e:
            logger.error(f"Password reset error: {e}")
            return ServiceResult.fail(e)

    async def sign_out(self) -> None:
        """Sign out everywhere. Local auth data is always cleared."""
        try:
            try:
                await self.identity.sign_out()
            except Exception as e:
                logger.error(f"Error during identity sign out: {e}")

            if self.registry is not None:
                self.registry.client.set_auth(None)
                await self.registry.unsubscribe_all()
        except Exception as e:
            logger.error(f"Error tearing down realtime subscriptions: {e}")
        finally:
            await self.clear_auth_data()
            logger.info("Signed out")

    async def is_authenticated(self) -> bool:
        """True while a token is stored and the session has not expired.

        An expired session clears local auth data.
        """
        token = await self.tokens.get_token()
        if not token:
            return False

        expiry = await self.tokens.get_expiry()
        if not expiry or int(self.tokens.clock() * 1000) > expiry:
            await self.clear_auth_data()
            return False

        return True

    async def get_stored_user(self) -> Optional[Dict[str, Any]]:
        value = await self.store.get_item(USER_KEY)
        if not value:
            return None
        try:
            return json.loads(value)
        except json.JSONDecodeError as e:
            logger.error(f"Error reading stored user: {e}")
            return None

__all__ = ['AuthService', 'AUTH_KEYS']
