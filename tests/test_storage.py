"""Tests for the persistent local key-value store."""

import pytest

from storage import LocalStore, StorageError

@pytest.mark.asyncio
async def test_set_get_and_remove(local_store):
    await local_store.set_item('userToken', 'abc')

    assert await local_store.get_item('userToken') == 'abc'
    assert await local_store.get_item('missing') is None

    await local_store.remove_item('userToken')
    assert await local_store.get_item('userToken') is None

@pytest.mark.asyncio
async def test_multi_operations(local_store):
    await local_store.multi_set([('a', '1'), ('b', '2'), ('c', '3')])

    assert await local_store.multi_get(['a', 'c', 'z']) == [('a', '1'), ('c', '3'), ('z', None)]

    await local_store.multi_remove(['a', 'b'])
    assert await local_store.get_all_keys() == ['c']

@pytest.mark.asyncio
async def test_values_persist_across_instances(tmp_path):
    path = str(tmp_path / 'nested' / 'store.json')
    await LocalStore(path).set_item('cartItems', '[]')

    assert await LocalStore(path).get_item('cartItems') == '[]'

@pytest.mark.asyncio
async def test_clear_empties_the_file(tmp_path):
    path = str(tmp_path / 'store.json')
    store = LocalStore(path)
    await store.set_item('a', '1')
    await store.clear()

    assert await LocalStore(path).get_all_keys() == []

@pytest.mark.asyncio
async def test_corrupt_file_raises(tmp_path):
    path = tmp_path / 'store.json'
    path.write_text('{not json')

    with pytest.raises(StorageError):
        await LocalStore(str(path)).get_item('a')
