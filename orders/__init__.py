"""Orders module for managing marketplace orders.

This module handles order creation, lookup and the order status lifecycle.
Orders are priced from the current product prices plus a flat delivery fee,
and the merchant of the first item owns the order.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple
from uuid import UUID

from asyncpg.pool import Pool

from catalog import ProductNotFoundError
from database import get_pool
from escrow import settle_order
from notifications import NotificationManager
from users import format_address

logger = logging.getLogger(__name__)

ORDER_STATUSES = (
    'PENDING', 'CONFIRMED', 'PREPARING', 'READY', 'IN_TRANSIT', 'DELIVERED', 'CANCELLED'
)

DELIVERY_TYPES = ('yourself', 'someone_else')

# Allowed next statuses for each status
STATUS_TRANSITIONS = {
    'PENDING': ('CONFIRMED', 'CANCELLED'),
    'CONFIRMED': ('PREPARING', 'CANCELLED'),
    'PREPARING': ('READY', 'IN_TRANSIT', 'CANCELLED'),
    'READY': ('IN_TRANSIT', 'CANCELLED'),
    'IN_TRANSIT': ('DELIVERED', 'CANCELLED'),
    'DELIVERED': (),
    'CANCELLED': ()
}

# Status names used by older clients
STATUS_ALIASES = {
    'OUT_FOR_DELIVERY': 'IN_TRANSIT'
}

# Statuses an unassigned driver may claim an order from by taking it IN_TRANSIT
CLAIMABLE_STATUSES = ('PREPARING', 'READY')

# Escrow action taken when an order reaches these statuses
ESCROW_SETTLEMENT = {
    'DELIVERED': 'release',
    'CANCELLED': 'refund'
}

class OrderError(Exception):
    """Base class for order-related errors."""
    pass

class OrderNotFoundError(OrderError):
    """Raised when the requested order does not exist."""
    pass

class InvalidStatusTransitionError(OrderError):
    """Raised when an order cannot move from its status to the requested one."""
    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Invalid status transition from {current} to {requested}")

class OrderAccessError(OrderError):
    """Raised when a user acts on an order that is not theirs."""
    pass

def _money(value) -> Decimal:
    return Decimal(str(value)).quantize(Decimal('0.01'))

def calculate_order_totals(
    lines: Iterable[Tuple[Any, Any]],
    delivery_fee: Any
) -> Dict[str, Decimal]:
    """Price an order.

    Args:
        lines: (unit_price, quantity) pairs
        delivery_fee: Flat delivery fee

    Returns:
        Dict with subtotal, delivery_fee and total_amount
    """
    subtotal = sum(
        (Decimal(str(price)) * Decimal(str(quantity)) for price, quantity in lines),
        Decimal('0')
    )
    fee = Decimal(str(delivery_fee))
    return {
        'subtotal': _money(subtotal),
        'delivery_fee': _money(fee),
        'total_amount': _money(subtotal + fee)
    }

def normalize_status(value: str) -> str:
    value = value.strip().upper()
    return STATUS_ALIASES.get(value, value)

def check_transition(current: str, requested: str) -> None:
    """Raise InvalidStatusTransitionError unless current -> requested is allowed."""
    if requested not in ORDER_STATUSES:
        raise OrderError(f"Invalid order status: {requested}")
    if requested not in STATUS_TRANSITIONS.get(current, ()):
        raise InvalidStatusTransitionError(current, requested)

class OrderManager:
    """Manages order operations and state transitions."""

    def __init__(
        self,
        pool: Optional[Pool] = None,
        delivery_fee: Optional[Decimal] = None,
        notifications: Optional[NotificationManager] = None
    ) -> None:
        """Initialize order manager.

        Args:
            pool: Optional database connection pool. If not provided, will get from database module.
            delivery_fee: Flat delivery fee, defaults to delivery_fee from settings
            notifications: Notification manager used for order notifications
        """
        if delivery_fee is None:
            from config import settings_conf
            delivery_fee = settings_conf['delivery_fee']

        self.pool = pool
        self.delivery_fee = Decimal(str(delivery_fee))
        self.notifications = notifications or NotificationManager(pool)

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()
            self.notifications.pool = self.pool

    async def create_order(
        self,
        user_id: UUID,
        items: List[Dict[str, Any]],
        delivery_address_id: Optional[UUID] = None,
        payment_method: Optional[str] = None,
        notes: Optional[str] = None,
        delivery_type: Optional[str] = None,
        recipient_name: Optional[str] = None,
        recipient_phone: Optional[str] = None
    ) -> Dict[str, Any]:
        """Create an order from product ids and quantities.

        Args:
            user_id: Ordering user
            items: List of {product_id, quantity}
            delivery_address_id: One of the user's addresses
            payment_method: Payment method identifier
            notes: Free text for the merchant
            delivery_type: yourself or someone_else
            recipient_name: Recipient when delivering to someone else
            recipient_phone: Recipient phone when delivering to someone else

        Returns:
            The order row with its items

        Raises:
            OrderError: If there are no items or a quantity is not positive
            ProductNotFoundError: If a product does not exist
        """
        if not items:
            raise OrderError("Order must contain at least one item")
        for item in items:
            if Decimal(str(item['quantity'])) <= 0:
                raise OrderError(f"Invalid quantity for product {item['product_id']}")
        if delivery_type is not None and delivery_type not in DELIVERY_TYPES:
            raise OrderError(f"Invalid delivery type: {delivery_type}")

        await self.ensure_pool()

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                product_ids = [item['product_id'] for item in items]
                rows = await conn.fetch(
                    'SELECT id, merchant_id, price FROM products WHERE id = ANY($1)',
                    product_ids
                )
                products = {str(row['id']): row for row in rows}

                lines = []
                for item in items:
                    product = products.get(str(item['product_id']))
                    if not product:
                        raise ProductNotFoundError(f"Product {item['product_id']} not found")
                    lines.append((product, Decimal(str(item['quantity']))))

                totals = calculate_order_totals(
                    [(product['price'], quantity) for product, quantity in lines],
                    self.delivery_fee
                )
                merchant_id = lines[0][0]['merchant_id']

                address = None
                if delivery_address_id:
                    address = await conn.fetchrow(
                        'SELECT * FROM addresses WHERE id = $1 AND user_id = $2',
                        delivery_address_id,
                        user_id
                    )

                order = await conn.fetchrow(
                    '''
                    INSERT INTO orders (
                        user_id, merchant_id, status, total_amount, subtotal,
                        delivery_fee, delivery_address, delivery_type,
                        recipient_name, recipient_phone, payment_method, notes
                    ) VALUES ($1, $2, 'PENDING', $3, $4, $5, $6, $7, $8, $9, $10, $11)
                    RETURNING *
                    ''',
                    user_id,
                    merchant_id,
                    totals['total_amount'],
                    totals['subtotal'],
                    totals['delivery_fee'],
                    format_address(dict(address) if address else None),
                    delivery_type,
                    recipient_name,
                    recipient_phone,
                    payment_method,
                    notes
                )

                order_items = []
                for product, quantity in lines:
                    row = await conn.fetchrow(
                        '''
                        INSERT INTO order_items (
                            order_id, product_id, quantity, unit_price, total_price
                        ) VALUES ($1, $2, $3, $4, $5)
                        RETURNING *
                        ''',
                        order['id'],
                        product['id'],
                        quantity,
                        product['price'],
                        _money(product['price'] * quantity)
                    )
                    order_items.append(dict(row))

                merchant_user_id = await conn.fetchval(
                    'SELECT user_id FROM merchants WHERE id = $1',
                    merchant_id
                )
                if merchant_user_id:
                    await self.notifications.send(
                        merchant_user_id,
                        'New Order',
                        f"You have a new order #{str(order['id'])[:8]}",
                        type='order',
                        role='merchant',
                        data={'order_id': str(order['id'])},
                        conn=conn
                    )

        logger.info(
            f"Created order {order['id']} for user {user_id}: "
            f"{len(order_items)} items, total {totals['total_amount']}"
        )
        return {**dict(order), 'items': order_items}

    async def get_order(self, order_id: UUID) -> Dict[str, Any]:
        """Get an order with its items.

        Raises:
            OrderNotFoundError: If the order does not exist
        """
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            order = await conn.fetchrow('SELECT * FROM orders WHERE id = $1', order_id)
            if not order:
                raise OrderNotFoundError(f"Order {order_id} not found")

            items = await conn.fetch(
                '''
                SELECT oi.*, p.name AS product_name, p.image_url AS product_image_url
                FROM order_items oi
                LEFT JOIN products p ON p.id = oi.product_id
                WHERE oi.order_id = $1
                ORDER BY oi.created_at
                ''',
                order_id
            )

        return {**dict(order), 'items': [dict(item) for item in items]}

    async def get_user_orders(
        self,
        user_id: UUID,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[Dict[str, Any]]:
        """Orders placed by a user, newest first, with the merchant's business name."""
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT o.*, m.business_name AS merchant_name
                FROM orders o
                LEFT JOIN merchants m ON m.id = o.merchant_id
                WHERE o.user_id = $1
                AND ($2::text IS NULL OR o.status = $2)
                ORDER BY o.created_at DESC
                LIMIT $3 OFFSET $4
                ''',
                user_id,
                status,
                limit,
                offset
            )
        return [dict(row) for row in rows]

    async def update_status(
        self,
        order_id: UUID,
        new_status: str,
        driver_id: Optional[UUID] = None
    ) -> Dict[str, Any]:
        """Move an order to a new status and notify the people involved.

        A driver can be assigned when the order goes IN_TRANSIT. DELIVERED
        records delivered_at and releases the escrow to the merchant;
        CANCELLED refunds any escrow still held.

        Raises:
            OrderNotFoundError: If the order does not exist
            InvalidStatusTransitionError: If the transition is not allowed
            OrderAccessError: If another driver already holds the order
        """
        new_status = normalize_status(new_status)
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                order = await conn.fetchrow(
                    'SELECT * FROM orders WHERE id = $1 FOR UPDATE',
                    order_id
                )
                if not order:
                    raise OrderNotFoundError(f"Order {order_id} not found")

                check_transition(order['status'], new_status)

                assign_driver = driver_id if new_status == 'IN_TRANSIT' else None
                if assign_driver and order['driver_id'] and str(order['driver_id']) != str(assign_driver):
                    raise OrderAccessError(f"Order {order_id} is assigned to another driver")

                updated = await conn.fetchrow(
                    '''
                    UPDATE orders SET
                        status = $2,
                        driver_id = COALESCE($3, driver_id),
                        delivered_at = CASE WHEN $2 = 'DELIVERED' THEN now() ELSE delivered_at END,
                        updated_at = now()
                    WHERE id = $1
                    RETURNING *
                    ''',
                    order_id,
                    new_status,
                    assign_driver
                )

                if new_status in ESCROW_SETTLEMENT:
                    await settle_order(conn, order_id, ESCROW_SETTLEMENT[new_status])

                short_id = str(order_id)[:8]
                readable = new_status.replace('_', ' ').lower()
                await self.notifications.send(
                    order['user_id'],
                    'Order Status Updated',
                    f"Your order #{short_id} is now {readable}",
                    type='order',
                    role='consumer',
                    data={'order_id': str(order_id), 'status': new_status},
                    conn=conn
                )
                if assign_driver:
                    await self.notifications.send(
                        assign_driver,
                        'New Delivery Assignment',
                        f"You have been assigned to order #{short_id}",
                        type='delivery',
                        role='driver',
                        data={'order_id': str(order_id), 'status': new_status},
                        conn=conn
                    )

        logger.info(f"Order {order_id}: {order['status']} -> {new_status}")
        return dict(updated)

    async def cancel_order(self, order_id: UUID, user_id: UUID) -> Dict[str, Any]:
        """Cancel one of the user's own orders.

        Raises:
            OrderNotFoundError: If the order does not exist
            OrderAccessError: If the order belongs to someone else
            InvalidStatusTransitionError: If the order can no longer be cancelled
        """
        order = await self.get_order(order_id)
        if str(order['user_id']) != str(user_id):
            raise OrderAccessError(f"Order {order_id} does not belong to user {user_id}")
        return await self.update_status(order_id, 'CANCELLED')

def get_order_manager() -> OrderManager:
    """Request-scoped order manager."""
    return OrderManager()

__all__ = [
    'OrderManager',
    'OrderError',
    'OrderNotFoundError',
    'OrderAccessError',
    'InvalidStatusTransitionError',
    'ORDER_STATUSES',
    'STATUS_TRANSITIONS',
    'calculate_order_totals',
    'check_transition',
    'normalize_status',
    'STATUS_ALIASES',
    'CLAIMABLE_STATUSES',
    'get_order_manager'
]
