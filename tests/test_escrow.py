"""Tests for escrow hold, release, refund and dispute."""

from decimal import Decimal

import pytest

from escrow import (
    EscrowError,
    EscrowManager,
    EscrowNotFoundError,
    InvalidEscrowActionError,
    hold_funds,
    settle_order
)

from conftest import FakePool

ESCROW = {
    'id': 'e1', 'order_id': 'order-1', 'buyer_id': 'buyer', 'seller_id': 'seller',
    'amount': Decimal('42.00'), 'status': 'HELD'
}

def escrow_pool(**overrides):
    row = dict(ESCROW, **overrides)

    def update(escrow_id, value):
        # dispute passes the reason, release and refund the new status
        return dict(row, status=value if value in ('RELEASED', 'REFUNDED') else 'DISPUTED')

    return FakePool([
        ('SELECT * FROM escrow_transactions', row),
        ('UPDATE escrow_transactions', update)
    ])

def wallet_credits(pool):
    return [args for _, query, args in pool.conn.calls if 'INSERT INTO wallet_transactions' in query]

@pytest.mark.asyncio
async def test_refund_credits_buyer_and_marks_order():
    pool = escrow_pool()

    escrow = await EscrowManager(pool).update_escrow('e1', 'refund')

    assert escrow['status'] == 'REFUNDED'
    [(user_id, amount, description, reference)] = wallet_credits(pool)
    assert (user_id, amount, reference) == ('buyer', Decimal('42.00'), 'escrow-refund-e1')
    assert description == 'Refund for order #order-1'
    assert any("payment_status = 'refunded'" in q for q in pool.conn.queries('execute'))

@pytest.mark.asyncio
async def test_dispute_records_reason_without_moving_money():
    pool = escrow_pool()

    escrow = await EscrowManager(pool).update_escrow('e1', 'dispute', reason='Items missing')

    assert escrow['status'] == 'DISPUTED'
    [(_, query, args)] = [c for c in pool.conn.calls if 'UPDATE escrow_transactions' in c[1]]
    assert args == ('e1', 'Items missing')
    assert wallet_credits(pool) == []

@pytest.mark.asyncio
async def test_disputed_escrow_can_still_be_released():
    pool = escrow_pool(status='DISPUTED')

    await EscrowManager(pool).update_escrow('e1', 'release')

    [(user_id, *_)] = wallet_credits(pool)
    assert user_id == 'seller'

@pytest.mark.asyncio
@pytest.mark.parametrize('status, action', [('RELEASED', 'refund'), ('REFUNDED', 'release'), ('DISPUTED', 'dispute')])
async def test_settled_escrow_rejects_action(status, action):
    with pytest.raises(InvalidEscrowActionError):
        await EscrowManager(escrow_pool(status=status)).update_escrow('e1', action)

@pytest.mark.asyncio
async def test_unknown_escrow_and_action():
    with pytest.raises(EscrowNotFoundError):
        await EscrowManager(FakePool()).update_escrow('missing', 'release')
    with pytest.raises(InvalidEscrowActionError):
        await EscrowManager(escrow_pool()).update_escrow('e1', 'burn')
    with pytest.raises(EscrowError):
        await EscrowManager(FakePool()).list_escrows(status='LOST')

@pytest.mark.asyncio
async def test_nothing_held_means_nothing_settled():
    pool = FakePool()
    async with pool.acquire() as conn:
        assert await settle_order(conn, 'order-1', 'release') is None
        assert await hold_funds(conn, 'order-1') is None
    assert wallet_credits(pool) == []
