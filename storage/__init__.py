"""Local key-value storage.

A small persistent string store backed by a JSON file, used by the client
services for session data, the cart snapshot and the analytics queue.
Values are strings; callers serialize structured values to JSON themselves.
"""
import asyncio
import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import aiofiles
import aiofiles.os

logger = logging.getLogger(__name__)

class StorageError(Exception):
    """Raised when the backing file cannot be read or written."""
    pass

class LocalStore:
    """Persistent string key-value store."""

    def __init__(self, path: Optional[str] = None) -> None:
        """Initialize the store.

        Args:
            path: JSON file backing the store. Defaults to local_store_path from settings.
        """
        if path is None:
            from config import settings_conf
            path = settings_conf['local_store_path']
        self.path = Path(path)
        self._data: Optional[Dict[str, str]] = None
        self._lock = asyncio.Lock()

    async def _load(self) -> Dict[str, str]:
        if self._data is not None:
            return self._data

        try:
            async with aiofiles.open(self.path, 'r') as f:
                content = await f.read()
            self._data = json.loads(content) if content.strip() else {}
        except FileNotFoundError:
            self._data = {}
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Failed to read local store {self.path}: {e}")

        return self._data

    async def _save(self) -> None:
        try:
            await aiofiles.os.makedirs(self.path.parent, exist_ok=True)
            async with aiofiles.open(self.path, 'w') as f:
                await f.write(json.dumps(self._data))
        except OSError as e:
            raise StorageError(f"Failed to write local store {self.path}: {e}")

    async def get_item(self, key: str) -> Optional[str]:
        async with self._lock:
            data = await self._load()
            return data.get(key)

    async def set_item(self, key: str, value: str) -> None:
        async with self._lock:
            data = await self._load()
            data[key] = value
            await self._save()

    async def remove_item(self, key: str) -> None:
        async with self._lock:
            data = await self._load()
            if data.pop(key, None) is not None:
                await self._save()

    async def multi_get(self, keys: Iterable[str]) -> List[Tuple[str, Optional[str]]]:
        async with self._lock:
            data = await self._load()
            return [(key, data.get(key)) for key in keys]

    async def multi_set(self, pairs: Iterable[Tuple[str, str]]) -> None:
        """Set several keys with a single write."""
        async with self._lock:
            data = await self._load()
            data.update(dict(pairs))
            await self._save()

    async def multi_remove(self, keys: Iterable[str]) -> None:
        """Remove several keys with a single write."""
        async with self._lock:
            data = await self._load()
            for key in keys:
                data.pop(key, None)
            await self._save()

    async def get_all_keys(self) -> List[str]:
        async with self._lock:
            data = await self._load()
            return list(data)

    async def clear(self) -> None:
        async with self._lock:
            self._data = {}
            await self._save()

__all__ = ['LocalStore', 'StorageError']
