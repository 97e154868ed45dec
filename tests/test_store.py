"""Tests for the generic table store and file buckets."""

import pytest

from database.exceptions import BucketError, FunctionNotFoundError, InvalidIdentifierError
from database.store import (
    DataStore, build_delete, build_insert, build_select, build_update, build_where, check_table
)

from conftest import FakePool

def test_build_where_operators():
    clause, args = build_where({
        'status': 'PENDING',
        'driver_id': None,
        'merchant_id': ('neq', None),
        'total': ('gte', 10),
        'id': ('in', ['a', 'b'])
    })

    assert clause == (
        " WHERE status = $1 AND driver_id IS NULL AND merchant_id IS NOT NULL"
        " AND total >= $2 AND id = ANY($3)"
    )
    assert args == ['PENDING', 10, ['a', 'b']]

def test_build_where_rejects_unknown_operator_and_bad_column():
    with pytest.raises(InvalidIdentifierError):
        build_where({'status': ('like', 'x%')})
    with pytest.raises(InvalidIdentifierError):
        build_where({'status; DROP TABLE users': 1})

def test_build_select_with_paging():
    query, args = build_select(
        'orders', {'user_id': 'u1'}, order_by='created_at', descending=True, limit=10, offset=20
    )

    assert query == (
        "SELECT * FROM orders WHERE user_id = $1 ORDER BY created_at DESC LIMIT $2 OFFSET $3"
    )
    assert args == ['u1', 10, 20]

def test_build_insert_and_update():
    query, args = build_insert('products', {'name': 'Rice', 'price': 12})
    assert query == "INSERT INTO products (name, price) VALUES ($1, $2) RETURNING *"
    assert args == ['Rice', 12]

    query, args = build_update('products', {'id': 'p1'}, {'price': 15, 'stock_quantity': 3})
    assert query == "UPDATE products SET price = $1, stock_quantity = $2 WHERE id = $3 RETURNING *"
    assert args == [15, 3, 'p1']

def test_unfiltered_update_and_delete_are_refused():
    with pytest.raises(ValueError):
        build_update('products', {}, {'price': 1})
    with pytest.raises(ValueError):
        build_delete('products', {})

def test_unknown_table_is_rejected():
    with pytest.raises(InvalidIdentifierError):
        check_table('pg_user')

@pytest.mark.asyncio
async def test_create_and_delete_use_pool(tmp_path):
    pool = FakePool([
        ('INSERT INTO notifications', {'id': 'n1', 'title': 'Hi'}),
        ('DELETE FROM notifications', 'DELETE 2')
    ])
    store = DataStore(pool=pool, storage_root=str(tmp_path))

    row = await store.create('notifications', {'title': 'Hi'})
    removed = await store.delete('notifications', {'user_id': 'u1'})

    assert row == {'id': 'n1', 'title': 'Hi'}
    assert removed == 2
    assert pool.conn.calls[1][2] == ('u1',)

@pytest.mark.asyncio
async def test_find_one_limits_to_one_row(tmp_path):
    pool = FakePool([('SELECT * FROM users', [{'id': 'u1'}])])
    store = DataStore(pool=pool, storage_root=str(tmp_path))

    row = await store.find_one('users', {'email': 'a@b.c'})

    assert row == {'id': 'u1'}
    method, query, args = pool.conn.calls[0]
    assert query.endswith('LIMIT $2')
    assert args == ('a@b.c', 1)

@pytest.mark.asyncio
async def test_bucket_upload_url_and_delete(tmp_path):
    store = DataStore(pool=FakePool(), storage_root=str(tmp_path), public_base_url='http://cdn.test/')

    path = await store.upload_file('kyc-documents', 'u1/id.png', b'image')

    assert path == 'u1/id.png'
    assert (tmp_path / 'kyc-documents' / 'u1' / 'id.png').read_bytes() == b'image'
    assert store.get_public_url('kyc-documents', path) == 'http://cdn.test/storage/kyc-documents/u1/id.png'

    removed = await store.delete_files('kyc-documents', ['u1/id.png', 'u1/missing.png'])
    assert removed == ['u1/id.png']

@pytest.mark.asyncio
async def test_bucket_rejects_escaping_paths(tmp_path):
    store = DataStore(pool=FakePool(), storage_root=str(tmp_path))

    with pytest.raises(BucketError):
        await store.upload_file('kyc-documents', '../outside.txt', b'x')
    with pytest.raises(BucketError):
        store.get_public_url('kyc-documents', '/etc/passwd')

@pytest.mark.asyncio
async def test_invoke_unknown_function(tmp_path):
    store = DataStore(pool=FakePool(), storage_root=str(tmp_path))

    with pytest.raises(FunctionNotFoundError):
        await store.invoke('does-not-exist')
