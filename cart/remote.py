"""Remote half of the cart.

Cart rows live in the cart_items table, one row per (user, product). The
client cart mirrors them wholesale: pull reads the user's rows, push replaces
them. The HTTP API uses the per-row operations below.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from database.store import DataStore

logger = logging.getLogger(__name__)

class CartError(Exception):
    """Base class for cart errors."""
    pass

class CartItemNotFoundError(CartError):
    """Raised when a cart row does not exist for the user."""
    pass

class ProductUnavailableError(CartError):
    """Raised when adding a product that does not exist or is not available."""
    pass

def to_local_item(
    row: Dict[str, Any],
    product: Optional[Dict[str, Any]],
    merchant: Optional[Dict[str, Any]]
) -> Dict[str, Any]:
    """Convert a cart_items row to the local cart item shape."""
    product = product or {}
    merchant = merchant or {}
    price = row.get('unit_price')
    if price is None:
        price = product.get('price') or 0
    return {
        'id': str(row['id']),
        'commodity_id': str(row['product_id']),
        'commodity_name': product.get('name') or '',
        'merchant_id': str(row['merchant_id'] or product.get('merchant_id') or ''),
        'merchant_name': merchant.get('business_name') or '',
        'price': float(price),
        'quantity': int(row['quantity']),
        'unit': product.get('unit') or '',
        'category': product.get('category'),
        'image': product.get('image_url')
    }

class RemoteCart:
    """Cart rows in the data store."""

    def __init__(self, data: Optional[DataStore] = None) -> None:
        self.data = data or DataStore()

    async def pull(self, user_id: str) -> List[Dict[str, Any]]:
        """Read a user's cart rows in the local item shape."""
        rows = await self.data.find(
            'cart_items', {'user_id': user_id}, order_by='created_at'
        )
        if not rows:
            return []

        product_ids = list({row['product_id'] for row in rows})
        products = {
            p['id']: p
            for p in await self.data.find('products', {'id': ('in', product_ids)})
        }
        merchant_ids = list({
            row['merchant_id'] or products.get(row['product_id'], {}).get('merchant_id')
            for row in rows
        } - {None})
        merchants = {
            m['id']: m
            for m in await self.data.find('merchants', {'id': ('in', merchant_ids)})
        } if merchant_ids else {}

        items = []
        for row in rows:
            product = products.get(row['product_id'])
            merchant_id = row['merchant_id'] or (product or {}).get('merchant_id')
            items.append(to_local_item(row, product, merchants.get(merchant_id)))
        return items

    async def push(self, user_id: str, items: List[Dict[str, Any]]) -> None:
        """Replace a user's cart rows with the local items."""
        await self.data.delete('cart_items', {'user_id': user_id})
        for item in items:
            await self.data.create('cart_items', {
                'user_id': user_id,
                'product_id': item['commodity_id'],
                'merchant_id': item['merchant_id'],
                'quantity': int(item['quantity']),
                'unit_price': Decimal(str(item['price']))
            })
        logger.debug(f"Pushed {len(items)} cart items for user {user_id}")

    async def list_items(self, user_id: UUID) -> List[Dict[str, Any]]:
        """Cart rows with product and merchant details, newest first."""
        await self.data.ensure_pool()
        async with self.data.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT
                    c.id,
                    c.user_id,
                    c.product_id,
                    c.quantity,
                    c.created_at,
                    c.updated_at,
                    p.name AS product_name,
                    p.price AS product_price,
                    p.image_url AS product_image_url,
                    p.merchant_id AS product_merchant_id,
                    m.business_name AS merchant_business_name
                FROM cart_items c
                LEFT JOIN products p ON p.id = c.product_id
                LEFT JOIN merchants m ON m.id = p.merchant_id
                WHERE c.user_id = $1
                ORDER BY c.created_at DESC
                ''',
                user_id
            )

        return [
            {
                'id': row['id'],
                'user_id': row['user_id'],
                'product_id': row['product_id'],
                'quantity': row['quantity'],
                'created_at': row['created_at'],
                'updated_at': row['updated_at'],
                'product': {
                    'id': row['product_id'],
                    'name': row['product_name'],
                    'price': row['product_price'],
                    'image_url': row['product_image_url'],
                    'merchant_id': row['product_merchant_id']
                },
                'merchant': {
                    'id': row['product_merchant_id'],
                    'business_name': row['merchant_business_name']
                }
            }
            for row in rows
        ]

    async def add_item(self, user_id: UUID, product_id: UUID, quantity: int) -> Dict[str, Any]:
        """Add a product, incrementing the quantity when it is already in the cart.

        Raises:
            ProductUnavailableError: If the product does not exist or is unavailable
        """
        await self.data.ensure_pool()
        async with self.data.pool.acquire() as conn:
            product = await conn.fetchrow(
                'SELECT id, merchant_id, price, is_available FROM products WHERE id = $1',
                product_id
            )
            if not product or not product['is_available']:
                raise ProductUnavailableError(f"Product {product_id} not available")

            row = await conn.fetchrow(
                '''
                INSERT INTO cart_items (user_id, product_id, merchant_id, quantity, unit_price)
                VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (user_id, product_id) DO UPDATE
                SET quantity = cart_items.quantity + EXCLUDED.quantity,
                    updated_at = now()
                RETURNING *
                ''',
                user_id,
                product_id,
                product['merchant_id'],
                quantity,
                product['price']
            )
        return dict(row)

    async def update_item(self, user_id: UUID, item_id: UUID, quantity: int) -> Dict[str, Any]:
        """Set a cart row's quantity.

        Raises:
            CartItemNotFoundError: If the row does not belong to the user
        """
        rows = await self.data.update(
            'cart_items',
            {'id': item_id, 'user_id': user_id},
            {'quantity': quantity}
        )
        if not rows:
            raise CartItemNotFoundError(f"Cart item {item_id} not found")
        return rows[0]

    async def remove_item(self, user_id: UUID, item_id: UUID) -> None:
        await self.data.delete('cart_items', {'id': item_id, 'user_id': user_id})

def get_remote_cart() -> RemoteCart:
    """Provide a remote cart bound to the shared data store."""
    return RemoteCart()

__all__ = [
    'RemoteCart',
    'get_remote_cart',
    'CartError',
    'CartItemNotFoundError',
    'ProductUnavailableError',
    'to_local_item'
]
