"""Users module for managing accounts and delivery addresses.

Users are keyed by their own UUID and linked to the identity provider by
firebase_uid. Each user has exactly one role.
"""
import logging
from typing import Dict, List, Optional, Any
from uuid import UUID

from asyncpg.pool import Pool
from asyncpg.exceptions import UniqueViolationError

from database import get_pool

logger = logging.getLogger(__name__)

ROLES = ('consumer', 'merchant', 'driver', 'admin')

# Roles a user may pick when registering; admin is granted by another admin
SELF_REGISTRATION_ROLES = ('consumer', 'merchant', 'driver')

USER_FIELDS = ('full_name', 'phone_number', 'profile_image_url', 'is_verified')

ADDRESS_FIELDS = (
    'label', 'address_line1', 'address_line2', 'city', 'state', 'country',
    'postal_code', 'latitude', 'longitude', 'is_default'
)

class UserError(Exception):
    """Base class for user-related errors."""
    pass

class UserNotFoundError(UserError):
    """Raised when a user does not exist."""
    pass

class DuplicateUserError(UserError):
    """Raised when the email or identity uid is already registered."""
    pass

class InvalidRoleError(UserError):
    """Raised when a role is not one of the known roles."""
    def __init__(self, role: str, allowed=ROLES):
        self.role = role
        super().__init__(f"Invalid role: {role}. Must be one of {', '.join(allowed)}")

def format_address(address: Optional[Dict[str, Any]]) -> str:
    """Single-line delivery address, 'N/A' when there is none."""
    if not address:
        return 'N/A'
    return f"{address['address_line1']}, {address['city']}, {address['state']}"

class UserManager:
    """Manages users and their addresses."""

    def __init__(self, pool: Optional[Pool] = None) -> None:
        """Initialize user manager.

        Args:
            pool: Optional database connection pool. If not provided, will get from database module.
        """
        self.pool = pool

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def get_user(self, user_id: UUID) -> Dict[str, Any]:
        """Get a user by id.

        Raises:
            UserNotFoundError: If the user does not exist
        """
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow('SELECT * FROM users WHERE id = $1', user_id)
        if not row:
            raise UserNotFoundError(f"User {user_id} not found")
        return dict(row)

    async def get_by_firebase_uid(self, firebase_uid: str) -> Optional[Dict[str, Any]]:
        """Look up a user by identity provider uid."""
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                'SELECT * FROM users WHERE firebase_uid = $1 LIMIT 1',
                firebase_uid
            )
        return dict(row) if row else None

    async def create_user(
        self,
        firebase_uid: str,
        email: str,
        role: str,
        full_name: Optional[str] = None,
        phone_number: Optional[str] = None,
        profile_image_url: Optional[str] = None
    ) -> Dict[str, Any]:
        """Create a user.

        Args:
            firebase_uid: Identity provider uid
            email: Email address
            role: One of consumer, merchant, driver, admin
            full_name: Display name
            phone_number: Phone number
            profile_image_url: Avatar URL

        Returns:
            The created user row

        Raises:
            InvalidRoleError: If role is unknown
            DuplicateUserError: If the email or uid is already registered
        """
        if role not in ROLES:
            raise InvalidRoleError(role)

        await self.ensure_pool()
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    '''
                    INSERT INTO users (
                        firebase_uid, email, full_name, role, phone_number, profile_image_url
                    ) VALUES ($1, $2, $3, $4, $5, $6)
                    RETURNING *
                    ''',
                    firebase_uid,
                    email,
                    full_name,
                    role,
                    phone_number,
                    profile_image_url
                )
        except UniqueViolationError:
            raise DuplicateUserError(f"User with email {email} already exists")

        logger.info(f"Created {role} user {row['id']}")
        return dict(row)

    async def update_user(self, user_id: UUID, updates: Dict[str, Any]) -> Dict[str, Any]:
        """Update profile fields of a user.

        Unknown fields are ignored.

        Raises:
            UserNotFoundError: If the user does not exist
        """
        fields = {k: v for k, v in updates.items() if k in USER_FIELDS}
        if not fields:
            return await self.get_user(user_id)

        assignments = ', '.join(f"{name} = ${i}" for i, name in enumerate(fields, start=2))
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f'''
                UPDATE users SET {assignments}, updated_at = now()
                WHERE id = $1
                RETURNING *
                ''',
                user_id,
                *fields.values()
            )
        if not row:
            raise UserNotFoundError(f"User {user_id} not found")
        return dict(row)

    async def set_active(self, user_id: UUID, active: bool) -> Dict[str, Any]:
        """Block or unblock a user."""
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                '''
                UPDATE users SET is_active = $2, updated_at = now()
                WHERE id = $1
                RETURNING *
                ''',
                user_id,
                active
            )
        if not row:
            raise UserNotFoundError(f"User {user_id} not found")
        logger.info(f"User {user_id} {'activated' if active else 'blocked'}")
        return dict(row)

    async def set_role(self, user_id: UUID, role: str) -> Dict[str, Any]:
        """Change a user's role.

        Raises:
            InvalidRoleError: If role is unknown
            UserNotFoundError: If the user does not exist
        """
        if role not in ROLES:
            raise InvalidRoleError(role)

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                '''
                UPDATE users SET role = $2, updated_at = now()
                WHERE id = $1
                RETURNING *
                ''',
                user_id,
                role
            )
        if not row:
            raise UserNotFoundError(f"User {user_id} not found")
        logger.info(f"User {user_id} is now {role}")
        return dict(row)

    async def list_users(
        self,
        role: Optional[str] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[Dict[str, Any]]:
        """List users, newest first, optionally by role."""
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT * FROM users
                WHERE ($1::text IS NULL OR role = $1)
                ORDER BY created_at DESC
                LIMIT $2 OFFSET $3
                ''',
                role,
                limit,
                offset
            )
        return [dict(row) for row in rows]

    async def get_addresses(self, user_id: UUID) -> List[Dict[str, Any]]:
        """Addresses of a user, default first."""
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT * FROM addresses
                WHERE user_id = $1
                ORDER BY is_default DESC, created_at DESC
                ''',
                user_id
            )
        return [dict(row) for row in rows]

    async def get_default_address(self, user_id: UUID) -> Optional[Dict[str, Any]]:
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                '''
                SELECT * FROM addresses
                WHERE user_id = $1
                ORDER BY is_default DESC, created_at DESC
                LIMIT 1
                ''',
                user_id
            )
        return dict(row) if row else None

    async def add_address(self, user_id: UUID, address: Dict[str, Any]) -> Dict[str, Any]:
        """Add an address. A new default address clears the previous default.

        Raises:
            UserError: If required address fields are missing
        """
        fields = {k: v for k, v in address.items() if k in ADDRESS_FIELDS and v is not None}
        missing = [k for k in ('address_line1', 'city', 'state', 'country') if not fields.get(k)]
        if missing:
            raise UserError(f"Missing address fields: {', '.join(missing)}")

        columns = ['user_id', *fields]
        placeholders = ', '.join(f"${i}" for i in range(1, len(columns) + 1))

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                if fields.get('is_default'):
                    await conn.execute(
                        'UPDATE addresses SET is_default = false WHERE user_id = $1',
                        user_id
                    )
                row = await conn.fetchrow(
                    f'''
                    INSERT INTO addresses ({', '.join(columns)})
                    VALUES ({placeholders})
                    RETURNING *
                    ''',
                    user_id,
                    *fields.values()
                )
        return dict(row)

def get_user_manager() -> UserManager:
    """Request-scoped user manager."""
    return UserManager()

__all__ = [
    'UserManager',
    'UserError',
    'UserNotFoundError',
    'DuplicateUserError',
    'InvalidRoleError',
    'ROLES',
    'SELF_REGISTRATION_ROLES',
    'format_address',
    'get_user_manager'
]
