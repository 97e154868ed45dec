"""Escrow for order payments.

A paid order's total is held in escrow until the order is delivered, when it
is released to the selling merchant's wallet, or cancelled, when it is
refunded to the buyer's wallet. Admins can also release, refund or dispute
an escrow by hand.

The module-level helpers take an open connection so orders and payments can
move escrow inside their own transactions.
"""
import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from asyncpg.pool import Pool

from database import get_pool

logger = logging.getLogger(__name__)

ESCROW_STATUSES = ('HELD', 'RELEASED', 'REFUNDED', 'DISPUTED')

# Escrow statuses each admin action may start from
ACTION_SOURCES = {
    'release': ('HELD', 'DISPUTED'),
    'refund': ('HELD', 'DISPUTED'),
    'dispute': ('HELD',)
}

class EscrowError(Exception):
    """Base class for escrow errors."""
    pass

class EscrowNotFoundError(EscrowError):
    """Raised when an escrow transaction does not exist."""
    pass

class InvalidEscrowActionError(EscrowError):
    """Raised when an action does not apply to the escrow's status."""
    pass

async def hold_funds(conn, order_id: UUID) -> Optional[Dict[str, Any]]:
    """Hold an order's total for its merchant.

    Returns the escrow row, or None when the order already has one or its
    merchant has no owning user.
    """
    row = await conn.fetchrow(
        '''
        INSERT INTO escrow_transactions (order_id, buyer_id, seller_id, amount)
        SELECT o.id, o.user_id, m.user_id, o.total_amount
        FROM orders o
        JOIN merchants m ON m.id = o.merchant_id
        WHERE o.id = $1 AND m.user_id IS NOT NULL
        ON CONFLICT (order_id) DO NOTHING
        RETURNING *
        ''',
        order_id
    )
    if row:
        logger.info(f"Holding {row['amount']} in escrow for order {order_id}")
    return dict(row) if row else None

async def apply_action(
    conn,
    escrow: Dict[str, Any],
    action: str,
    reason: Optional[str] = None
) -> Dict[str, Any]:
    """Release, refund or dispute an escrow row locked by the caller.

    Raises:
        InvalidEscrowActionError: If the action is unknown or the escrow's
            status does not allow it
    """
    if action not in ACTION_SOURCES:
        raise InvalidEscrowActionError(f"Invalid escrow action: {action}")
    if escrow['status'] not in ACTION_SOURCES[action]:
        raise InvalidEscrowActionError(
            f"Cannot {action} an escrow that is {escrow['status']}"
        )

    escrow_id = escrow['id']
    short_id = str(escrow['order_id'])[:8]

    if action == 'dispute':
        row = await conn.fetchrow(
            '''
            UPDATE escrow_transactions SET
                status = 'DISPUTED', disputed_at = now(), dispute_reason = $2, updated_at = now()
            WHERE id = $1
            RETURNING *
            ''',
            escrow_id,
            reason
        )
        logger.warning(f"Escrow {escrow_id} disputed: {reason}")
        return dict(row)

    if action == 'release':
        status, payee = 'RELEASED', escrow['seller_id']
        description = f"Escrow release for order #{short_id}"
        reference = f"escrow-{escrow_id}"
    else:
        status, payee = 'REFUNDED', escrow['buyer_id']
        description = f"Refund for order #{short_id}"
        reference = f"escrow-refund-{escrow_id}"

    row = await conn.fetchrow(
        '''
        UPDATE escrow_transactions SET
            status = $2,
            released_at = CASE WHEN $2 = 'RELEASED' THEN now() ELSE released_at END,
            updated_at = now()
        WHERE id = $1
        RETURNING *
        ''',
        escrow_id,
        status
    )
    await conn.execute(
        '''
        INSERT INTO wallet_transactions (user_id, amount, type, description, reference)
        VALUES ($1, $2, 'CREDIT', $3, $4)
        ''',
        payee,
        escrow['amount'],
        description,
        reference
    )
    if action == 'refund':
        await conn.execute(
            "UPDATE orders SET payment_status = 'refunded', updated_at = now() WHERE id = $1",
            escrow['order_id']
        )

    logger.info(f"Escrow {escrow_id} {status.lower()}: {escrow['amount']} to user {payee}")
    return dict(row)

async def settle_order(conn, order_id: UUID, action: str) -> Optional[Dict[str, Any]]:
    """Release or refund the escrow still held for an order.

    Returns None when nothing is held for the order.
    """
    escrow = await conn.fetchrow(
        "SELECT * FROM escrow_transactions WHERE order_id = $1 AND status = 'HELD' FOR UPDATE",
        order_id
    )
    if not escrow:
        return None
    return await apply_action(conn, dict(escrow), action)

class EscrowManager:
    """Admin view and manual control of escrow transactions."""

    def __init__(self, pool: Optional[Pool] = None) -> None:
        self.pool = pool

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def list_escrows(
        self,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[Dict[str, Any]]:
        """Escrow transactions, newest first, optionally filtered by status."""
        if status is not None and status not in ESCROW_STATUSES:
            raise EscrowError(f"Invalid escrow status: {status}")

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT * FROM escrow_transactions
                WHERE ($1::text IS NULL OR status = $1)
                ORDER BY created_at DESC
                LIMIT $2 OFFSET $3
                ''',
                status,
                limit,
                offset
            )
        return [dict(row) for row in rows]

    async def update_escrow(
        self,
        escrow_id: UUID,
        action: str,
        reason: Optional[str] = None
    ) -> Dict[str, Any]:
        """Apply an admin action to an escrow.

        Raises:
            EscrowNotFoundError: If the escrow does not exist
            InvalidEscrowActionError: If the action does not apply
        """
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                escrow = await conn.fetchrow(
                    'SELECT * FROM escrow_transactions WHERE id = $1 FOR UPDATE',
                    escrow_id
                )
                if not escrow:
                    raise EscrowNotFoundError(f"Escrow transaction {escrow_id} not found")
                return await apply_action(conn, dict(escrow), action, reason)

def get_escrow_manager() -> EscrowManager:
    """Request-scoped escrow manager."""
    return EscrowManager()

__all__ = [
    'EscrowManager',
    'EscrowError',
    'EscrowNotFoundError',
    'InvalidEscrowActionError',
    'ESCROW_STATUSES',
    'hold_funds',
    'apply_action',
    'settle_order',
    'get_escrow_manager'
]
