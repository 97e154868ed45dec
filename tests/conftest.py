"""Shared fixtures and fakes for the test suite."""

import asyncio
import os
import uuid
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio

# Keep tests away from the user's real local store and buckets
os.environ.setdefault('BRILLPRIME_SETTINGS', os.path.join(os.path.dirname(__file__), 'settings.conf'))

from storage import LocalStore

class FakeTransaction:
    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

class FakeConnection:
    """Connection answering queries from a list of (query fragment, result) rules.

    A result may be a value or a callable taking the query arguments. The
    first rule whose fragment appears in the query wins; otherwise fetch
    returns [], fetchrow and fetchval return None and execute returns 'OK'.
    """

    def __init__(self, rules: Optional[List[Tuple[str, Any]]] = None):
        self.rules = list(rules or [])
        self.calls: List[Tuple[str, str, tuple]] = []

    def _answer(self, method: str, query: str, args: tuple, default: Any) -> Any:
        self.calls.append((method, query, args))
        for fragment, result in self.rules:
            if fragment in query:
                return result(*args) if callable(result) else result
        return default

    async def fetch(self, query, *args):
        return self._answer('fetch', query, args, [])

    async def fetchrow(self, query, *args):
        return self._answer('fetchrow', query, args, None)

    async def fetchval(self, query, *args):
        return self._answer('fetchval', query, args, None)

    async def execute(self, query, *args):
        return self._answer('execute', query, args, 'OK')

    async def executemany(self, query, args):
        self.calls.append(('executemany', query, tuple(args)))

    def transaction(self):
        return FakeTransaction()

    def queries(self, method: Optional[str] = None) -> List[str]:
        return [q for m, q, _ in self.calls if method is None or m == method]

class _Acquire:
    def __init__(self, conn):
        self.conn = conn

    async def __aenter__(self):
        return self.conn

    async def __aexit__(self, exc_type, exc, tb):
        return False

class FakePool:
    """Pool handing out a single FakeConnection."""

    def __init__(self, rules: Optional[List[Tuple[str, Any]]] = None):
        self.conn = FakeConnection(rules)

    def acquire(self):
        return _Acquire(self.conn)

class FakeIdentity:
    """Identity provider double."""

    def __init__(self, uid: str = 'uid-1', email: str = 'user@example.com'):
        self.uid = uid
        self.email = email
        self.current_user = None
        self.refreshed_token: Optional[str] = 'fresh-token'
        self.refresh_error: Optional[Exception] = None
        self.sign_out_error: Optional[Exception] = None
        self.sign_out_calls = 0
        self.refresh_calls = 0

    def _account(self, token: str = 'id-token') -> Dict[str, Any]:
        self.current_user = {
            'uid': self.uid,
            'email': self.email,
            'id_token': token,
            'refresh_token': 'refresh-token'
        }
        return self.current_user

    async def sign_up(self, email, password):
        self.email = email
        return self._account()

    async def sign_in_with_password(self, email, password):
        return self._account()

    async def sign_in_with_credential(self, provider_id, id_token):
        return self._account()

    async def send_password_reset_email(self, email):
        return None

    async def get_id_token(self, force_refresh=False):
        self.refresh_calls += 1
        if self.refresh_error is not None:
            raise self.refresh_error
        return self.refreshed_token

    async def sign_out(self):
        self.sign_out_calls += 1
        self.current_user = None
        if self.sign_out_error is not None:
            raise self.sign_out_error

class FakeChannel:
    def __init__(self, client, name):
        self.client = client
        self.name = name
        self.bindings = []
        self.broadcast_bindings = []
        self.sent = []

    def on_postgres_changes(self, event, table, callback, filter=None):
        self.bindings.append({'event': event, 'table': table, 'callback': callback, 'filter': filter})
        return self

    def on_broadcast(self, event, callback):
        self.broadcast_bindings.append((event, callback))
        return self

    async def subscribe(self):
        if self.client.join_delay:
            await asyncio.sleep(self.client.join_delay)
        if self.client.join_error is not None:
            raise self.client.join_error
        self.client.joined.append(self)
        return self

    async def send(self, event, payload):
        self.sent.append((event, payload))

class FakeRealtimeClient:
    """Realtime provider double recording channel activity."""

    def __init__(self):
        self.access_token: Optional[str] = None
        self.created: List[FakeChannel] = []
        self.joined: List[FakeChannel] = []
        self.removed: List[FakeChannel] = []
        self.join_delay = 0
        self.join_error: Optional[Exception] = None

    def set_auth(self, token):
        self.access_token = token

    def channel(self, name):
        channel = FakeChannel(self, name)
        self.created.append(channel)
        return channel

    async def remove_channel(self, channel):
        self.removed.append(channel)

class FakeDataStore:
    """In-memory stand-in for DataStore keyed by table."""

    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = {}

    def _matches(self, row, filters):
        for column, value in (filters or {}).items():
            if isinstance(value, tuple):
                op, operand = value
                if op == 'in':
                    if row.get(column) not in operand:
                        return False
                    continue
                value = operand
            if row.get(column) != value:
                return False
        return True

    async def create(self, table, data):
        row = {'id': str(uuid.uuid4()), **data}
        self.tables.setdefault(table, []).append(row)
        return row

    async def find(self, table, filters=None, order_by=None, descending=False, limit=None, offset=None):
        rows = [r for r in self.tables.get(table, []) if self._matches(r, filters)]
        return rows[:limit] if limit else rows

    async def find_one(self, table, filters):
        rows = await self.find(table, filters, limit=1)
        return rows[0] if rows else None

    async def update(self, table, filters, data):
        rows = [r for r in self.tables.get(table, []) if self._matches(r, filters)]
        for row in rows:
            row.update(data)
        return rows

    async def delete(self, table, filters):
        before = self.tables.get(table, [])
        kept = [r for r in before if not self._matches(r, filters)]
        self.tables[table] = kept
        return len(before) - len(kept)

@pytest.fixture
def fake_pool_factory() -> Callable[..., FakePool]:
    return FakePool

@pytest_asyncio.fixture
async def local_store(tmp_path):
    """LocalStore backed by a temporary file."""
    return LocalStore(str(tmp_path / 'store.json'))

@pytest.fixture
def identity():
    return FakeIdentity()

@pytest.fixture
def realtime_client():
    return FakeRealtimeClient()

@pytest.fixture
def data_store():
    return FakeDataStore()
