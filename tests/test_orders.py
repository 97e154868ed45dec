"""Tests for order pricing, status lifecycle and creation."""

from decimal import Decimal

import pytest

from catalog import ProductNotFoundError
from orders import (
    InvalidStatusTransitionError, OrderAccessError, OrderError, OrderManager,
    calculate_order_totals, check_transition, normalize_status
)

from conftest import FakePool

PRODUCT_ID = '11111111-1111-1111-1111-111111111111'

def test_totals_are_rounded_to_cents():
    totals = calculate_order_totals([(Decimal('10.005'), 2), ('3.10', 1)], '5')

    assert totals == {
        'subtotal': Decimal('23.11'),
        'delivery_fee': Decimal('5.00'),
        'total_amount': Decimal('28.11')
    }

def test_normalize_status_maps_legacy_names():
    assert normalize_status(' out_for_delivery ') == 'IN_TRANSIT'
    assert normalize_status('ready') == 'READY'

@pytest.mark.parametrize('current, requested', [
    ('PENDING', 'CONFIRMED'),
    ('CONFIRMED', 'PREPARING'),
    ('PREPARING', 'IN_TRANSIT'),
    ('READY', 'IN_TRANSIT'),
    ('IN_TRANSIT', 'DELIVERED'),
    ('PENDING', 'CANCELLED'),
])
def test_allowed_transitions(current, requested):
    check_transition(current, requested)

@pytest.mark.parametrize('current, requested', [
    ('PENDING', 'DELIVERED'),
    ('DELIVERED', 'CANCELLED'),
    ('CANCELLED', 'PENDING'),
])
def test_rejected_transitions(current, requested):
    with pytest.raises(InvalidStatusTransitionError):
        check_transition(current, requested)

def test_unknown_status_is_an_order_error():
    with pytest.raises(OrderError):
        check_transition('PENDING', 'LOST')

def order_rules(products):
    return [
        ('FROM products WHERE id = ANY', products),
        ('INSERT INTO orders', lambda *args: {'id': 'order-1', 'user_id': args[0], 'status': 'PENDING', 'total_amount': args[2]}),
        ('INSERT INTO order_items', lambda *args: {'order_id': args[0], 'product_id': args[1], 'quantity': args[2], 'total_price': args[4]}),
        ('SELECT user_id FROM merchants', 'merchant-user'),
        ('INSERT INTO notifications', lambda *args: {'id': 'n1', 'user_id': args[0], 'data': args[6]})
    ]

@pytest.mark.asyncio
async def test_create_order_prices_items_and_notifies_merchant():
    pool = FakePool(order_rules([{'id': PRODUCT_ID, 'merchant_id': 'm1', 'price': Decimal('12.50')}]))
    manager = OrderManager(pool, delivery_fee=Decimal('5.00'))

    order = await manager.create_order('u1', [{'product_id': PRODUCT_ID, 'quantity': 2}])

    assert order['total_amount'] == Decimal('30.00')
    assert order['items'][0]['total_price'] == Decimal('25.00')
    [notify] = [c for c in pool.conn.calls if 'INSERT INTO notifications' in c[1]]
    assert notify[2][0] == 'merchant-user'
    assert notify[2][1] == 'New Order'

@pytest.mark.asyncio
async def test_create_order_with_missing_product():
    manager = OrderManager(FakePool(order_rules([])), delivery_fee=Decimal('5.00'))

    with pytest.raises(ProductNotFoundError):
        await manager.create_order('u1', [{'product_id': PRODUCT_ID, 'quantity': 1}])

@pytest.mark.asyncio
async def test_create_order_validates_input():
    manager = OrderManager(FakePool(), delivery_fee=Decimal('5.00'))

    with pytest.raises(OrderError):
        await manager.create_order('u1', [])
    with pytest.raises(OrderError):
        await manager.create_order('u1', [{'product_id': PRODUCT_ID, 'quantity': 0}])
    with pytest.raises(OrderError):
        await manager.create_order('u1', [{'product_id': PRODUCT_ID, 'quantity': 1}], delivery_type='drone')

@pytest.mark.asyncio
async def test_update_status_assigns_driver_and_notifies():
    pool = FakePool([
        ('FOR UPDATE', {'id': 'order-1', 'user_id': 'u1', 'status': 'READY', 'driver_id': None}),
        ('UPDATE orders SET', lambda *args: {'id': args[0], 'status': args[1], 'driver_id': args[2]}),
        ('INSERT INTO notifications', lambda *args: {'id': 'n', 'user_id': args[0]})
    ])
    manager = OrderManager(pool, delivery_fee=Decimal('5.00'))

    updated = await manager.update_status('order-1', 'out_for_delivery', driver_id='d1')

    assert updated == {'id': 'order-1', 'status': 'IN_TRANSIT', 'driver_id': 'd1'}
    recipients = [c[2][0] for c in pool.conn.calls if 'INSERT INTO notifications' in c[1]]
    assert recipients == ['u1', 'd1']

@pytest.mark.asyncio
async def test_update_status_rejects_invalid_transition():
    pool = FakePool([('FOR UPDATE', {'id': 'order-1', 'user_id': 'u1', 'status': 'DELIVERED'})])
    manager = OrderManager(pool, delivery_fee=Decimal('5.00'))

    with pytest.raises(InvalidStatusTransitionError):
        await manager.update_status('order-1', 'CANCELLED')

@pytest.mark.asyncio
async def test_cancel_requires_ownership():
    pool = FakePool([('SELECT * FROM orders WHERE id', {'id': 'order-1', 'user_id': 'u1', 'status': 'PENDING'})])
    manager = OrderManager(pool, delivery_fee=Decimal('5.00'))

    with pytest.raises(OrderAccessError):
        await manager.cancel_order('order-1', 'someone-else')

@pytest.mark.asyncio
async def test_claimed_order_cannot_be_taken_by_another_driver():
    pool = FakePool([('FOR UPDATE', {'id': 'order-1', 'user_id': 'u1', 'status': 'READY', 'driver_id': 'd1'})])
    manager = OrderManager(pool, delivery_fee=Decimal('5.00'))

    with pytest.raises(OrderAccessError):
        await manager.update_status('order-1', 'IN_TRANSIT', driver_id='d2')
    assert not any('UPDATE orders' in q for q in pool.conn.queries())

@pytest.mark.asyncio
async def test_delivery_releases_escrow_to_merchant():
    escrow_row = {
        'id': 'e1', 'order_id': 'order-1', 'buyer_id': 'u1', 'seller_id': 'merchant-user',
        'amount': Decimal('30.00'), 'status': 'HELD'
    }
    pool = FakePool([
        ('FROM escrow_transactions', escrow_row),
        ('UPDATE escrow_transactions', lambda id, status: dict(escrow_row, status=status)),
        ('FOR UPDATE', {'id': 'order-1', 'user_id': 'u1', 'status': 'IN_TRANSIT', 'driver_id': 'd1'}),
        ('UPDATE orders SET', lambda *args: {'id': args[0], 'status': args[1]}),
        ('INSERT INTO notifications', {'id': 'n'})
    ])
    manager = OrderManager(pool, delivery_fee=Decimal('5.00'))

    await manager.update_status('order-1', 'DELIVERED')

    [(_, _, args)] = [c for c in pool.conn.calls if 'INSERT INTO wallet_transactions' in c[1]]
    assert args[0] == 'merchant-user'
    assert args[1] == Decimal('30.00')
    assert args[3] == 'escrow-e1'
