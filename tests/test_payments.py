"""Tests for payment processing, gateway events and saved payment methods."""

import hashlib
import hmac
from decimal import Decimal

import pytest

from orders import OrderAccessError, OrderNotFoundError
from payments import (
    PaymentError,
    PaymentManager,
    PaymentMethodNotFoundError,
    TransactionNotFoundError,
    verify_signature
)

from conftest import FakePool

def order(**overrides):
    row = {
        'id': 'o1', 'user_id': 'u1', 'status': 'PENDING',
        'payment_status': 'pending', 'total_amount': Decimal('30.00')
    }
    row.update(overrides)
    return row

def inserted_transaction(user_id, order_id, amount, method, reference, status):
    return {'id': 't1', 'order_id': order_id, 'amount': amount, 'reference': reference, 'status': status}

def payment_pool(**overrides):
    return FakePool([
        ('SELECT * FROM orders', order(**overrides)),
        ('INSERT INTO transactions', inserted_transaction)
    ])

@pytest.mark.asyncio
async def test_process_payment_settles_order_and_holds_escrow():
    pool = payment_pool()

    result = await PaymentManager(pool).process_payment('u1', 'o1', Decimal('30.00'), 'card')

    assert result['status'] == 'completed'
    assert result['transaction_id'] == 't1'
    assert result['reference'].startswith('txn_')

    [(_, _, args)] = [c for c in pool.conn.calls if 'INSERT INTO transactions' in c[1]]
    assert args[2] == Decimal('30.00')
    assert args[5] == 'completed'
    assert any("payment_status = 'paid'" in q for q in pool.conn.queries('execute'))
    assert any('INSERT INTO escrow_transactions' in q for q in pool.conn.queries('fetchrow'))

@pytest.mark.asyncio
async def test_amount_must_match_order_total():
    pool = payment_pool()

    with pytest.raises(PaymentError, match='does not match order total 30.00'):
        await PaymentManager(pool).process_payment('u1', 'o1', Decimal('0.01'))

    assert not any('INSERT INTO transactions' in q for q in pool.conn.queries())

@pytest.mark.asyncio
@pytest.mark.parametrize('overrides', [{'status': 'CANCELLED'}, {'payment_status': 'paid'}])
async def test_closed_or_paid_orders_are_rejected(overrides):
    with pytest.raises(PaymentError):
        await PaymentManager(payment_pool(**overrides)).process_payment('u1', 'o1', 30)

@pytest.mark.asyncio
async def test_payment_checks():
    with pytest.raises(PaymentError):
        await PaymentManager(payment_pool()).process_payment('u1', 'o1', 0)
    with pytest.raises(OrderAccessError):
        await PaymentManager(payment_pool(user_id='u2')).process_payment('u1', 'o1', 30)
    with pytest.raises(OrderNotFoundError):
        await PaymentManager(FakePool()).process_payment('u1', 'o1', 30)

@pytest.mark.asyncio
async def test_initialize_payment_leaves_order_unpaid():
    pool = payment_pool()

    result = await PaymentManager(pool).initialize_payment('u1', 'o1', Decimal('30.00'), 'card')

    assert result['status'] == 'pending'
    assert not any("payment_status = 'paid'" in q for q in pool.conn.queries())

def test_verify_signature():
    body = b'{"event": "charge.success"}'
    signature = hmac.new(b'secret', body, hashlib.sha512).hexdigest()

    assert verify_signature(body, signature, 'secret')
    assert not verify_signature(body, signature, 'other')
    assert not verify_signature(body, None, 'secret')
    assert not verify_signature(body, signature, '')

def gateway_pool(status='pending'):
    transaction = {'id': 't1', 'order_id': 'o1', 'reference': 'txn_1', 'amount': Decimal('30.00'), 'status': status}
    return FakePool([
        ('SELECT * FROM transactions', transaction),
        ('UPDATE transactions', lambda id, status, response: dict(transaction, status=status))
    ])

@pytest.mark.asyncio
async def test_charge_success_settles_order():
    pool = gateway_pool()
    event = {'event': 'charge.success', 'data': {'reference': 'txn_1', 'amount': 3000}}

    transaction = await PaymentManager(pool).handle_gateway_event(event)

    assert transaction['status'] == 'completed'
    assert any("payment_status = 'paid'" in q for q in pool.conn.queries('execute'))

@pytest.mark.asyncio
async def test_underpaid_charge_fails_transaction():
    pool = gateway_pool()
    event = {'event': 'charge.success', 'data': {'reference': 'txn_1', 'amount': 100}}

    transaction = await PaymentManager(pool).handle_gateway_event(event)

    assert transaction['status'] == 'failed'
    assert not any("payment_status = 'paid'" in q for q in pool.conn.queries())

@pytest.mark.asyncio
async def test_replayed_and_unknown_events():
    pool = gateway_pool(status='completed')
    event = {'event': 'charge.success', 'data': {'reference': 'txn_1'}}

    assert (await PaymentManager(pool).handle_gateway_event(event))['status'] == 'completed'
    assert not any('UPDATE transactions' in q for q in pool.conn.queries())

    assert await PaymentManager(pool).handle_gateway_event({'event': 'transfer.success'}) is None

    with pytest.raises(TransactionNotFoundError):
        await PaymentManager(FakePool()).handle_gateway_event(event)
    with pytest.raises(PaymentError):
        await PaymentManager(FakePool()).handle_gateway_event({'event': 'charge.failed', 'data': {}})

@pytest.mark.asyncio
async def test_new_default_method_replaces_previous():
    pool = FakePool([('INSERT INTO payment_methods', {'id': 'pm1', 'type': 'card'})])

    await PaymentManager(pool).add_payment_method(
        'u1', {'type': 'card', 'last_four': '4242', 'is_default': True}
    )

    assert any('SET is_default = false' in q for q in pool.conn.queries('execute'))

@pytest.mark.asyncio
async def test_payment_method_validation():
    manager = PaymentManager(FakePool())

    with pytest.raises(PaymentError):
        await manager.add_payment_method('u1', {'type': 'cheque'})
    with pytest.raises(PaymentError):
        await manager.add_payment_method('u1', {'type': 'card', 'last_four': '42'})

@pytest.mark.asyncio
async def test_deleting_unknown_method():
    pool = FakePool([('UPDATE payment_methods SET is_active = false', 'UPDATE 0')])

    with pytest.raises(PaymentMethodNotFoundError):
        await PaymentManager(pool).delete_payment_method('u1', 'pm9')
