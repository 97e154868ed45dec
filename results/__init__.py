"""Uniform service results and error classification.

Client-side services never raise to their callers. Every call returns a
ServiceResult carrying either data or an error message; failures are logged
where they happen.
"""
import logging
from typing import Any, Optional

import requests
from pydantic import BaseModel

logger = logging.getLogger(__name__)

DEFAULT_ERROR_MESSAGE = 'An unexpected error occurred'

NETWORK_ERROR_MARKERS = ('network', 'fetch', 'unable to connect', 'timeout', 'connection')
AUTH_ERROR_MARKERS = ('unauthorized', 'authentication', 'token')

class ServiceResult(BaseModel):
    """Result of a service call: {success, data?, error?, message?}."""
    success: bool
    data: Any = None
    error: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None, message: Optional[str] = None) -> 'ServiceResult':
        return cls(success=True, data=data, message=message)

    @classmethod
    def fail(cls, error: Any) -> 'ServiceResult':
        return cls(success=False, error=get_error_message(error))

    def to_dict(self) -> dict:
        """Render without unset optional fields."""
        return self.model_dump(exclude_none=True)

def get_error_message(err: Any) -> str:
    """Extract a human readable message from an error of any shape."""
    if not err:
        return DEFAULT_ERROR_MESSAGE
    if isinstance(err, str):
        return err
    if isinstance(err, dict):
        for key in ('message', 'error', 'detail'):
            if isinstance(err.get(key), str):
                return err[key]
        return DEFAULT_ERROR_MESSAGE
    if isinstance(err, BaseException):
        return str(err) or err.__class__.__name__
    message = getattr(err, 'message', None)
    if isinstance(message, str):
        return message
    return str(err)

def _status_code(err: Any) -> Optional[int]:
    response = getattr(err, 'response', None)
    if response is not None and getattr(response, 'status_code', None) is not None:
        return response.status_code
    return getattr(err, 'status_code', None)

def is_network_error(err: Any) -> bool:
    """Heuristically decide whether an error is a transient network failure."""
    if not err:
        return False
    if isinstance(err, (requests.ConnectionError, requests.Timeout, ConnectionError, TimeoutError)):
        return True

    message = get_error_message(err).lower()
    return any(marker in message for marker in NETWORK_ERROR_MARKERS)

def is_auth_error(err: Any) -> bool:
    """Heuristically decide whether an error is an authentication failure."""
    if not err:
        return False
    if _status_code(err) in (401, 403):
        return True

    message = get_error_message(err).lower()
    return any(marker in message for marker in AUTH_ERROR_MARKERS)

__all__ = [
    'ServiceResult',
    'get_error_message',
    'is_network_error',
    'is_auth_error',
    'DEFAULT_ERROR_MESSAGE'
]
