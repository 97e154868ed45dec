"""HTTP client for the BrillPrime API.

Every call returns a ServiceResult; transport and HTTP errors are logged and
converted, never raised. Responses in the API's {success, data, error}
envelope are unwrapped.
"""
import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional

import requests

from results import ServiceResult

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 60

class ApiClient:
    """Client for the custom HTTP API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        uid_provider: Optional[Callable[[], Optional[str]]] = None,
        session: Optional[requests.Session] = None
    ) -> None:
        """Initialize the client.

        Args:
            base_url: API base URL, defaults to api_base_url from settings
            uid_provider: Returns the signed-in identity uid sent as x-firebase-uid
            session: Optional requests session
        """
        if base_url is None:
            from config import settings_conf
            base_url = settings_conf['api_base_url']
        self.base_url = base_url.rstrip('/')
        self.uid_provider = uid_provider
        self.session = session or requests.Session()
        self.session.headers['content-type'] = 'application/json'

    def _headers(self, headers: Optional[Dict[str, str]]) -> Dict[str, str]:
        merged = {}
        uid = self.uid_provider() if self.uid_provider else None
        if uid:
            merged['x-firebase-uid'] = uid
        merged.update(headers or {})
        return merged

    def _request(
        self,
        method: str,
        endpoint: str,
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None
    ) -> ServiceResult:
        url = f"{self.base_url}{endpoint}"
        started = time.monotonic()
        try:
            response = self.session.request(
                method,
                url,
                json=json,
                params=params,
                headers=self._headers(headers),
                timeout=REQUEST_TIMEOUT
            )
        except requests.exceptions.Timeout:
            logger.error(f"API request timed out: {method} {endpoint}")
            return ServiceResult.fail(
                'Request timeout - The server is taking too long to respond.'
            )
        except requests.exceptions.ConnectionError:
            logger.error(f"API connection failed: {method} {endpoint}")
            return ServiceResult.fail(
                'Cannot connect to server. Please check your internet connection.'
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"API request failed: {method} {endpoint}: {e}")
            return ServiceResult.fail(e)

        logger.debug(
            f"API {method} {endpoint} [{response.status_code}] "
            f"({(time.monotonic() - started) * 1000:.0f}ms)"
        )

        try:
            body = response.json() if response.content else {}
        except ValueError:
            body = None

        if not response.ok:
            if isinstance(body, dict) and body.get('error'):
                detail = body['error']
            else:
                detail = response.text or response.reason
            logger.error(f"API error [{response.status_code}] {endpoint}: {detail}")
            return ServiceResult.fail(f"HTTP {response.status_code}: {detail}")

        if body is None:
            return ServiceResult.fail('Invalid JSON response from server')

        if isinstance(body, dict) and 'success' in body:
            if not body['success']:
                return ServiceResult.fail(body.get('error'))
            return ServiceResult.ok(body.get('data'), body.get('message'))

        return ServiceResult.ok(body)

    async def get(self, endpoint: str, params: Optional[Dict[str, Any]] = None,
                  headers: Optional[Dict[str, str]] = None) -> ServiceResult:
        return await asyncio.to_thread(self._request, 'GET', endpoint, None, params, headers)

    async def post(self, endpoint: str, data: Any = None,
                   headers: Optional[Dict[str, str]] = None) -> ServiceResult:
        return await asyncio.to_thread(self._request, 'POST', endpoint, data, None, headers)

    async def put(self, endpoint: str, data: Any = None,
                  headers: Optional[Dict[str, str]] = None) -> ServiceResult:
        return await asyncio.to_thread(self._request, 'PUT', endpoint, data, None, headers)

    async def delete(self, endpoint: str,
                     headers: Optional[Dict[str, str]] = None) -> ServiceResult:
        return await asyncio.to_thread(self._request, 'DELETE', endpoint, None, None, headers)

    # Endpoints

    async def health(self) -> ServiceResult:
        return await self.get('/health')

    async def create_order(
        self,
        items: List[Dict[str, Any]],
        delivery_address_id: Optional[str] = None,
        payment_method: Optional[str] = None,
        notes: Optional[str] = None
    ) -> ServiceResult:
        return await self.post('/api/orders/create', {
            'items': items,
            'delivery_address_id': delivery_address_id,
            'payment_method': payment_method,
            'notes': notes
        })

    async def get_user_orders(self, user_id: str) -> ServiceResult:
        return await self.get(f"/api/orders/user/{user_id}")

    async def get_user(self, user_id: str) -> ServiceResult:
        return await self.get(f"/api/users/{user_id}")

    async def create_user(self, user: Dict[str, Any]) -> ServiceResult:
        return await self.post('/api/users', user)

    async def get_products(self, **filters) -> ServiceResult:
        params = {k: v for k, v in filters.items() if v is not None}
        return await self.get('/api/products', params=params)

    async def get_notifications(self, user_id: str) -> ServiceResult:
        return await self.get(f"/api/notifications/user/{user_id}")

    async def send_analytics_events(self, events: List[Dict[str, Any]]) -> ServiceResult:
        return await self.post('/api/analytics/events', {'events': events})

__all__ = ['ApiClient']
