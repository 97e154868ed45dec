"""Tests for catalog lookups."""

import json

import pytest

from catalog import CatalogManager, InvalidRatingError, nearby

from conftest import FakePool

LAGOS = (6.5244, 3.3792)

MERCHANTS = [
    {'id': 'far', 'latitude': 7.3775, 'longitude': 3.9470},
    {'id': 'near', 'latitude': 6.5300, 'longitude': 3.3800},
    {'id': 'nowhere', 'latitude': None, 'longitude': None},
    {'id': 'close', 'latitude': 6.5800, 'longitude': 3.3800}
]

def test_nearby_filters_and_sorts_by_distance():
    results = nearby(MERCHANTS, *LAGOS, radius_km=10)

    assert [m['id'] for m in results] == ['near', 'close']
    assert results[0]['distance'] < 1
    assert 6 < results[1]['distance'] < 7

@pytest.mark.asyncio
async def test_create_merchant_serializes_operating_hours():
    pool = FakePool([('INSERT INTO merchants', lambda *args: {'id': 'm1', 'args': args})])
    manager = CatalogManager(pool)
    hours = {'mon': '08:00-18:00'}

    await manager.create_merchant('u1', {'business_name': 'Mama Put', 'operating_hours': hours})

    [(method, query, args)] = [c for c in pool.conn.calls if 'INSERT INTO merchants' in c[1]]
    assert json.dumps(hours) in args

@pytest.mark.asyncio
async def test_review_rating_must_be_in_range():
    manager = CatalogManager(FakePool())

    with pytest.raises(InvalidRatingError):
        await manager.add_review('m1', 'u1', 6)
