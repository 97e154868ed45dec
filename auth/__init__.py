"""Authentication module.

This module provides:
1. Request authentication for the HTTP API from the x-firebase-uid header
2. Role guards for protected routes
3. The client-side token lifecycle (auth.tokens) and session service (auth.session)
"""

import logging
from typing import Any, Callable, Dict, Optional

from fastapi import Depends, Header, HTTPException, status

from users import UserManager, get_user_manager

logger = logging.getLogger(__name__)

UID_HEADER = 'x-firebase-uid'

class AuthError(Exception):
    """Base exception for authentication errors."""
    pass

class RoleMismatchError(AuthError):
    """Raised when an account signs in under a role it does not have."""
    def __init__(self, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Account role mismatch. Expected {expected} but account is {actual}")

async def authenticate_user(
    x_firebase_uid: Optional[str] = Header(None),
    users: UserManager = Depends(get_user_manager)
) -> Dict[str, Any]:
    """FastAPI dependency resolving the calling user.

    Returns:
        The user row

    Raises:
        HTTPException: 401 without the header, 404 for an unknown uid
    """
    if not x_firebase_uid:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized - No authentication token provided"
        )

    try:
        user = await users.get_by_firebase_uid(x_firebase_uid)
    except Exception as e:
        logger.error(f"Authentication lookup failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Authentication error"
        )

    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )

    return user

async def optional_auth(
    x_firebase_uid: Optional[str] = Header(None),
    users: UserManager = Depends(get_user_manager)
) -> Optional[Dict[str, Any]]:
    """FastAPI dependency resolving the calling user when possible. Never fails."""
    if not x_firebase_uid:
        return None
    try:
        return await users.get_by_firebase_uid(x_firebase_uid)
    except Exception as e:
        logger.debug(f"Optional authentication lookup failed: {e}")
        return None

def require_role(*roles: str) -> Callable:
    """Build a dependency admitting only users with one of the given roles."""
    async def check_role(user: Dict[str, Any] = Depends(authenticate_user)) -> Dict[str, Any]:
        if user['role'] not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires role: {', '.join(roles)}"
            )
        return user
    return check_role

def ensure_self_or_admin(user: Dict[str, Any], user_id) -> None:
    """Reject access to another user's resources unless the caller is an admin."""
    if str(user['id']) != str(user_id) and user['role'] != 'admin':
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied"
        )

__all__ = [
    'ensure_self_or_admin',
    'authenticate_user',
    'optional_auth',
    'require_role',
    'AuthError',
    'RoleMismatchError',
    'UID_HEADER'
]
