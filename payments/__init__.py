"""Payments module.

Paying an order records a transaction, marks the order paid and holds its
total in escrow until delivery. Payments taken through the card gateway start
as pending transactions and are settled by the gateway's signed webhook
events, matched on the transaction reference.

Saved payment methods are kept per user; deleting one deactivates it.
"""
import hashlib
import hmac
import json
import logging
import secrets
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional
from uuid import UUID

from asyncpg.pool import Pool

from database import get_pool
from escrow import hold_funds
from orders import OrderNotFoundError, OrderAccessError

logger = logging.getLogger(__name__)

PAYMENT_METHOD_TYPES = ('card', 'bank', 'wallet')

PAYMENT_METHOD_FIELDS = (
    'type', 'last_four', 'card_brand', 'bank_name', 'account_number', 'is_default'
)

# Orders in these statuses can no longer be paid
UNPAYABLE_STATUSES = ('CANCELLED', 'DELIVERED')

# Gateway event -> transaction status
GATEWAY_EVENTS = {
    'charge.success': 'completed',
    'charge.failed': 'failed'
}

class PaymentError(Exception):
    """Base class for payment errors."""
    pass

class PaymentMethodNotFoundError(PaymentError):
    """Raised when a payment method does not exist for the user."""
    pass

class TransactionNotFoundError(PaymentError):
    """Raised when a gateway event names an unknown transaction."""
    pass

def transaction_reference() -> str:
    return f"txn_{int(time.time() * 1000)}_{secrets.token_hex(4)}"

def _money(value) -> Decimal:
    try:
        return Decimal(str(value)).quantize(Decimal('0.01'))
    except InvalidOperation:
        raise PaymentError(f"Invalid payment amount: {value!r}")

def verify_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    """Check a gateway webhook's HMAC-SHA512 signature of the raw body."""
    if not secret or not signature:
        return False
    expected = hmac.new(secret.encode(), body, hashlib.sha512).hexdigest()
    return hmac.compare_digest(expected, signature)

def check_payable(order: Dict[str, Any], user_id: UUID, amount: Decimal) -> None:
    """Raise unless the user may pay this amount for the order.

    Raises:
        OrderAccessError: If the order belongs to someone else
        PaymentError: If the order is closed, already paid, or the amount
            differs from the order total
    """
    if str(order['user_id']) != str(user_id):
        raise OrderAccessError(f"Order {order['id']} does not belong to user {user_id}")
    if order['status'] in UNPAYABLE_STATUSES:
        raise PaymentError(f"Order {order['id']} is {order['status']} and cannot be paid")
    if order.get('payment_status') == 'paid':
        raise PaymentError(f"Order {order['id']} is already paid")
    if amount != _money(order['total_amount']):
        raise PaymentError(
            f"Payment amount {amount} does not match order total {_money(order['total_amount'])}"
        )

class PaymentManager:
    """Processes payments and manages saved payment methods."""

    def __init__(self, pool: Optional[Pool] = None) -> None:
        """Initialize payment manager.

        Args:
            pool: Optional database connection pool. If not provided, will get from database module.
        """
        self.pool = pool

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def _locked_order(self, conn, order_id: UUID) -> Dict[str, Any]:
        order = await conn.fetchrow(
            'SELECT * FROM orders WHERE id = $1 FOR UPDATE',
            order_id
        )
        if not order:
            raise OrderNotFoundError(f"Order {order_id} not found")
        return dict(order)

    async def _insert_transaction(
        self,
        conn,
        user_id: UUID,
        order_id: UUID,
        amount: Decimal,
        payment_method: Optional[str],
        status: str
    ) -> Dict[str, Any]:
        row = await conn.fetchrow(
            '''
            INSERT INTO transactions (user_id, order_id, amount, payment_method, reference, status, type)
            VALUES ($1, $2, $3, $4, $5, $6, 'order_payment')
            RETURNING *
            ''',
            user_id,
            order_id,
            amount,
            payment_method,
            transaction_reference(),
            status
        )
        return dict(row)

    async def _settle_order(self, conn, order_id: UUID) -> None:
        await conn.execute(
            "UPDATE orders SET payment_status = 'paid', updated_at = now() WHERE id = $1",
            order_id
        )
        await hold_funds(conn, order_id)

    async def process_payment(
        self,
        user_id: UUID,
        order_id: UUID,
        amount: Decimal,
        payment_method: Optional[str] = None
    ) -> Dict[str, Any]:
        """Charge an order, mark it paid and hold the funds in escrow.

        Returns:
            Dict with transaction_id, reference and status

        Raises:
            PaymentError: If the amount is not the order total or the order
                cannot be paid
            OrderNotFoundError: If the order does not exist
            OrderAccessError: If the order belongs to someone else
        """
        amount = _money(amount)
        if amount <= 0:
            raise PaymentError("Payment amount must be positive")

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                order = await self._locked_order(conn, order_id)
                check_payable(order, user_id, amount)
                transaction = await self._insert_transaction(
                    conn, user_id, order_id, amount, payment_method, 'completed'
                )
                await self._settle_order(conn, order_id)

        logger.info(
            f"Payment {transaction['reference']} of {amount} for order {order_id} "
            f"via {payment_method or 'default method'}"
        )
        return {
            'transaction_id': str(transaction['id']),
            'reference': transaction['reference'],
            'status': 'completed'
        }

    async def initialize_payment(
        self,
        user_id: UUID,
        order_id: UUID,
        amount: Decimal,
        payment_method: Optional[str] = None
    ) -> Dict[str, Any]:
        """Record a pending gateway payment for an order.

        The returned reference is handed to the gateway; the order is settled
        when the gateway confirms the charge.

        Raises:
            Same as process_payment
        """
        amount = _money(amount)
        if amount <= 0:
            raise PaymentError("Payment amount must be positive")

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                order = await self._locked_order(conn, order_id)
                check_payable(order, user_id, amount)
                transaction = await self._insert_transaction(
                    conn, user_id, order_id, amount, payment_method, 'pending'
                )

        logger.info(f"Started gateway payment {transaction['reference']} for order {order_id}")
        return {
            'transaction_id': str(transaction['id']),
            'reference': transaction['reference'],
            'status': 'pending'
        }

    async def handle_gateway_event(self, event: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Apply a verified gateway webhook event to its pending transaction.

        charge.success completes the transaction, marks the order paid and
        holds escrow, unless the charged amount (in minor units) differs from
        the transaction amount, which fails it. charge.failed fails it.
        Events for settled transactions are ignored, as are other event types.

        Returns:
            The transaction row, or None for ignored event types

        Raises:
            PaymentError: If the event carries no reference
            TransactionNotFoundError: If no transaction has the reference
        """
        kind = event.get('event')
        if kind not in GATEWAY_EVENTS:
            logger.debug(f"Ignoring gateway event {kind}")
            return None

        data = event.get('data') or {}
        reference = data.get('reference')
        if not reference:
            raise PaymentError("Gateway event has no reference")

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                transaction = await conn.fetchrow(
                    'SELECT * FROM transactions WHERE reference = $1 FOR UPDATE',
                    reference
                )
                if not transaction:
                    raise TransactionNotFoundError(f"Transaction {reference} not found")
                if transaction['status'] != 'pending':
                    logger.info(f"Transaction {reference} already {transaction['status']}")
                    return dict(transaction)

                status = GATEWAY_EVENTS[kind]
                if status == 'completed' and data.get('amount') is not None:
                    charged = _money(Decimal(str(data['amount'])) / 100)
                    if charged != _money(transaction['amount']):
                        logger.warning(
                            f"Gateway charged {charged} for {reference}, expected {transaction['amount']}"
                        )
                        status = 'failed'

                updated = await conn.fetchrow(
                    '''
                    UPDATE transactions SET
                        status = $2, gateway_response = $3::jsonb, updated_at = now()
                    WHERE id = $1
                    RETURNING *
                    ''',
                    transaction['id'],
                    status,
                    json.dumps(data, default=str)
                )
                if status == 'completed':
                    await self._settle_order(conn, transaction['order_id'])

        logger.info(f"Gateway {kind}: transaction {reference} {status}")
        return dict(updated)

    async def get_payment_methods(self, user_id: UUID) -> List[Dict[str, Any]]:
        """Active payment methods of a user, default first."""
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT * FROM payment_methods
                WHERE user_id = $1 AND is_active = true
                ORDER BY is_default DESC, created_at DESC
                ''',
                user_id
            )
        return [dict(row) for row in rows]

    async def add_payment_method(self, user_id: UUID, method: Dict[str, Any]) -> Dict[str, Any]:
        """Save a payment method. A new default replaces the previous default.

        Raises:
            PaymentError: If the type is unknown or last_four is not four digits
        """
        fields = {k: v for k, v in method.items() if k in PAYMENT_METHOD_FIELDS and v is not None}
        if fields.get('type') not in PAYMENT_METHOD_TYPES:
            raise PaymentError(f"Invalid payment method type: {fields.get('type')}")
        last_four = fields.get('last_four')
        if last_four is not None and not (len(last_four) == 4 and last_four.isdigit()):
            raise PaymentError("last_four must be exactly 4 digits")

        columns = ['user_id', *fields]
        placeholders = ', '.join(f"${i}" for i in range(1, len(columns) + 1))

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                if fields.get('is_default'):
                    await conn.execute(
                        'UPDATE payment_methods SET is_default = false WHERE user_id = $1',
                        user_id
                    )
                row = await conn.fetchrow(
                    f'''
                    INSERT INTO payment_methods ({', '.join(columns)})
                    VALUES ({placeholders})
                    RETURNING *
                    ''',
                    user_id,
                    *fields.values()
                )
        logger.info(f"Added {fields['type']} payment method for user {user_id}")
        return dict(row)

    async def delete_payment_method(self, user_id: UUID, method_id: UUID) -> None:
        """Deactivate one of a user's payment methods.

        Raises:
            PaymentMethodNotFoundError: If it does not exist for the user
        """
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            status = await conn.execute(
                '''
                UPDATE payment_methods SET is_active = false, is_default = false, updated_at = now()
                WHERE id = $1 AND user_id = $2 AND is_active = true
                ''',
                method_id,
                user_id
            )
        if status == 'UPDATE 0':
            raise PaymentMethodNotFoundError(f"Payment method {method_id} not found")

def get_payment_manager() -> PaymentManager:
    """Request-scoped payment manager."""
    return PaymentManager()

__all__ = [
    'PaymentManager',
    'PaymentError',
    'PaymentMethodNotFoundError',
    'TransactionNotFoundError',
    'PAYMENT_METHOD_TYPES',
    'GATEWAY_EVENTS',
    'check_payable',
    'verify_signature',
    'transaction_reference',
    'get_payment_manager'
]
