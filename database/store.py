"""Generic table store on top of the connection pool.

Provides the CRUD surface used by the service packages:
- create / find / find_one / update / delete / count on any schema table
- file buckets stored below a local storage root
- named function invocation

Filters are dicts mapping a column to either a plain value (equality, or
IS NULL for None) or an (operator, value) tuple where operator is one of
eq, neq, gt, gte, lt, lte, in.
"""
import logging
import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import aiofiles
import aiofiles.os
from asyncpg.pool import Pool

from . import get_pool
from .exceptions import BucketError, InvalidIdentifierError
from .functions import FunctionRegistry, default_registry
from .schema.v3 import schema as current_schema

logger = logging.getLogger(__name__)

KNOWN_TABLES = frozenset(table['name'] for table in current_schema['tables'])

IDENTIFIER_RE = re.compile(r'^[a-z_][a-z0-9_]*$')

OPERATORS = {
    'eq': '=',
    'neq': '<>',
    'gt': '>',
    'gte': '>=',
    'lt': '<',
    'lte': '<='
}

def check_identifier(name: str) -> str:
    """Validate a column name for use in generated SQL."""
    if not isinstance(name, str) or not IDENTIFIER_RE.match(name):
        raise InvalidIdentifierError(f"Invalid identifier: {name!r}")
    return name

def check_table(name: str, tables: Iterable[str] = KNOWN_TABLES) -> str:
    """Validate a table name against the known schema tables."""
    check_identifier(name)
    if name not in tables:
        raise InvalidIdentifierError(f"Unknown table: {name}")
    return name

def build_where(filters: Optional[Dict[str, Any]], start: int = 1) -> Tuple[str, List[Any]]:
    """Build a WHERE clause and its positional arguments.

    Args:
        filters: Column filters
        start: Index of the first positional parameter

    Returns:
        Tuple of (clause, args); clause is empty when there are no filters
    """
    if not filters:
        return '', []

    conditions = []
    args = []
    for column, value in filters.items():
        check_identifier(column)

        if isinstance(value, tuple):
            op, operand = value
            if op == 'in':
                args.append(list(operand))
                conditions.append(f"{column} = ANY(${start + len(args) - 1})")
                continue
            if op not in OPERATORS:
                raise InvalidIdentifierError(f"Unknown operator: {op}")
            sql_op = OPERATORS[op]
        else:
            operand = value
            sql_op = '='

        if operand is None:
            conditions.append(f"{column} IS {'NOT ' if sql_op == '<>' else ''}NULL")
            continue

        args.append(operand)
        conditions.append(f"{column} {sql_op} ${start + len(args) - 1}")

    return ' WHERE ' + ' AND '.join(conditions), args

def build_select(
    table: str,
    filters: Optional[Dict[str, Any]] = None,
    order_by: Optional[str] = None,
    descending: bool = False,
    limit: Optional[int] = None,
    offset: Optional[int] = None,
    tables: Iterable[str] = KNOWN_TABLES
) -> Tuple[str, List[Any]]:
    """Build a SELECT statement."""
    check_table(table, tables)
    where, args = build_where(filters)
    query = f"SELECT * FROM {table}{where}"

    if order_by:
        query += f" ORDER BY {check_identifier(order_by)}{' DESC' if descending else ''}"
    if limit is not None:
        args.append(int(limit))
        query += f" LIMIT ${len(args)}"
    if offset:
        args.append(int(offset))
        query += f" OFFSET ${len(args)}"

    return query, args

def build_insert(
    table: str,
    data: Dict[str, Any],
    tables: Iterable[str] = KNOWN_TABLES
) -> Tuple[str, List[Any]]:
    """Build an INSERT ... RETURNING * statement."""
    check_table(table, tables)
    if not data:
        raise ValueError("No values to insert")

    columns = [check_identifier(column) for column in data]
    placeholders = ', '.join(f"${i}" for i in range(1, len(columns) + 1))
    query = (
        f"INSERT INTO {table} ({', '.join(columns)}) "
        f"VALUES ({placeholders}) RETURNING *"
    )
    return query, list(data.values())

def build_update(
    table: str,
    filters: Dict[str, Any],
    data: Dict[str, Any],
    tables: Iterable[str] = KNOWN_TABLES
) -> Tuple[str, List[Any]]:
    """Build an UPDATE ... RETURNING * statement.

    Refuses to build an update without filters.
    """
    check_table(table, tables)
    if not data:
        raise ValueError("No values to update")
    if not filters:
        raise ValueError("Refusing to update without filters")

    assignments = [
        f"{check_identifier(column)} = ${i}"
        for i, column in enumerate(data, start=1)
    ]
    where, where_args = build_where(filters, start=len(data) + 1)
    query = f"UPDATE {table} SET {', '.join(assignments)}{where} RETURNING *"
    return query, list(data.values()) + where_args

def build_delete(
    table: str,
    filters: Dict[str, Any],
    tables: Iterable[str] = KNOWN_TABLES
) -> Tuple[str, List[Any]]:
    """Build a DELETE statement. Refuses to delete without filters."""
    check_table(table, tables)
    if not filters:
        raise ValueError("Refusing to delete without filters")
    where, args = build_where(filters)
    return f"DELETE FROM {table}{where}", args

class DataStore:
    """Table CRUD, file buckets and function invocation."""

    def __init__(
        self,
        pool: Optional[Pool] = None,
        storage_root: Optional[str] = None,
        public_base_url: Optional[str] = None,
        functions: Optional[FunctionRegistry] = None
    ) -> None:
        """Initialize the store.

        Args:
            pool: Optional database connection pool. If not provided, will get from database module.
            storage_root: Directory holding bucket files
            public_base_url: Base URL bucket files are served from
            functions: Function registry, defaults to the built-in functions
        """
        from config import settings_conf

        self.pool = pool
        self.storage_root = Path(storage_root or settings_conf['storage_root'])
        self.public_base_url = (public_base_url or settings_conf['public_base_url']).rstrip('/')
        self.functions = functions or default_registry()

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def create(self, table: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a row and return it."""
        await self.ensure_pool()
        query, args = build_insert(table, data)
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(query, *args)
        logger.debug(f"Inserted row into {table}")
        return dict(row)

    async def find(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        offset: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """Select rows matching filters."""
        await self.ensure_pool()
        query, args = build_select(table, filters, order_by, descending, limit, offset)
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(query, *args)
        return [dict(row) for row in rows]

    async def find_one(self, table: str, filters: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Select the first row matching filters, or None."""
        rows = await self.find(table, filters, limit=1)
        return rows[0] if rows else None

    async def update(
        self,
        table: str,
        filters: Dict[str, Any],
        data: Dict[str, Any]
    ) -> List[Dict[str, Any]]:
        """Update rows matching filters and return the updated rows."""
        await self.ensure_pool()
        query, args = build_update(table, filters, data)
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(query, *args)
        logger.debug(f"Updated {len(rows)} rows in {table}")
        return [dict(row) for row in rows]

    async def delete(self, table: str, filters: Dict[str, Any]) -> int:
        """Delete rows matching filters and return how many were removed."""
        await self.ensure_pool()
        query, args = build_delete(table, filters)
        async with self.pool.acquire() as conn:
            status = await conn.execute(query, *args)
        # asyncpg returns the command tag, e.g. 'DELETE 3'
        return int(status.split()[-1]) if status else 0

    async def count(self, table: str, filters: Optional[Dict[str, Any]] = None) -> int:
        """Count rows matching filters."""
        await self.ensure_pool()
        check_table(table)
        where, args = build_where(filters)
        async with self.pool.acquire() as conn:
            return await conn.fetchval(f"SELECT COUNT(*) FROM {table}{where}", *args)

    # Buckets

    def _bucket_path(self, bucket: str, path: str) -> Path:
        check_identifier(bucket.replace('-', '_'))
        relative = Path(path)
        if relative.is_absolute() or '..' in relative.parts or not relative.parts:
            raise BucketError(f"Invalid file path: {path}")
        return self.storage_root / bucket / relative

    async def upload_file(self, bucket: str, path: str, content: bytes) -> str:
        """Store a file in a bucket.

        Args:
            bucket: Bucket name
            path: Path of the file inside the bucket
            content: File bytes

        Returns:
            The stored path inside the bucket

        Raises:
            BucketError: If the path is invalid or the write fails
        """
        target = self._bucket_path(bucket, path)
        try:
            await aiofiles.os.makedirs(target.parent, exist_ok=True)
            async with aiofiles.open(target, 'wb') as f:
                await f.write(content)
        except OSError as e:
            logger.error(f"Upload to {bucket}/{path} failed: {e}")
            raise BucketError(f"Failed to upload {path}: {e}")

        logger.info(f"Uploaded {len(content)} bytes to {bucket}/{path}")
        return path

    def get_public_url(self, bucket: str, path: str) -> str:
        """Public URL of a bucket file."""
        self._bucket_path(bucket, path)
        return f"{self.public_base_url}/storage/{bucket}/{path}"

    async def delete_files(self, bucket: str, paths: List[str]) -> List[str]:
        """Delete files from a bucket, returning the paths that were removed."""
        removed = []
        for path in paths:
            target = self._bucket_path(bucket, path)
            try:
                await aiofiles.os.remove(target)
                removed.append(path)
            except FileNotFoundError:
                logger.warning(f"File {bucket}/{path} not found")
            except OSError as e:
                raise BucketError(f"Failed to delete {path}: {e}")
        return removed

    # Functions

    async def invoke(self, name: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Invoke a named function."""
        return await self.functions.invoke(name, payload)

def get_data_store() -> DataStore:
    """Provide a data store bound to the shared pool and settings."""
    return DataStore()

__all__ = [
    'DataStore',
    'get_data_store',
    'KNOWN_TABLES',
    'build_where',
    'build_select',
    'build_insert',
    'build_update',
    'build_delete',
    'check_identifier',
    'check_table'
]
