"""Local-first cart.

The cart is a list of line items kept in local storage. Each (commodity,
merchant) pair appears once; adding it again increases the quantity. Every
change is written locally first and then pushed to the remote cart on a
best-effort basis. Reads pull the remote snapshot when possible and always
answer from local storage.
"""
import json
import logging
import random
import time
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import BaseModel

from results import ServiceResult
from storage import LocalStore

from .remote import (
    RemoteCart,
    CartError,
    CartItemNotFoundError,
    ProductUnavailableError
)

logger = logging.getLogger(__name__)

CART_KEY = 'cartItems'
LEGACY_CART_KEY = 'commoditiesCart'
CHECKOUT_KEY = 'checkoutItems'

class CartItem(BaseModel):
    """A cart line item."""
    id: Optional[str] = None
    commodity_id: str
    commodity_name: str = ''
    merchant_id: str
    merchant_name: str = ''
    price: float
    quantity: int
    unit: str = ''
    category: Optional[str] = None
    image: Optional[str] = None

def temp_item_id() -> str:
    return f"temp-{int(time.time() * 1000)}-{random.random()}"

class CartManager:
    """Client cart backed by local storage with remote sync."""

    def __init__(
        self,
        store: LocalStore,
        remote: Optional[RemoteCart] = None,
        user_id: Optional[str] = None
    ) -> None:
        """Initialize the cart.

        Args:
            store: Local storage
            remote: Remote cart, or None for a purely local cart
            user_id: Id of the signed-in user owning the remote rows
        """
        self.store = store
        self.remote = remote
        self.user_id = user_id
        self.is_online = True
        self._realtime_teardown: Optional[Callable] = None

    def set_online(self, online: bool) -> None:
        self.is_online = online

    @property
    def _can_sync(self) -> bool:
        return self.is_online and self.remote is not None and self.user_id is not None

    async def _read_local(self) -> List[Dict[str, Any]]:
        value = await self.store.get_item(CART_KEY)
        return json.loads(value) if value else []

    async def _write_local(self, items: List[Dict[str, Any]]) -> None:
        """Store the cart and its mirror in the older commodities format."""
        legacy = [
            {
                'productId': item['commodity_id'],
                'quantity': item['quantity'],
                'price': item['price'],
                'productName': item.get('commodity_name', ''),
                'productUnit': item.get('unit', ''),
                'merchantId': item['merchant_id'],
                'merchantName': item.get('merchant_name', '')
            }
            for item in items
        ]
        await self.store.multi_set([
            (CART_KEY, json.dumps(items)),
            (LEGACY_CART_KEY, json.dumps(legacy))
        ])

    async def sync_from_remote(self) -> None:
        """Replace the local snapshot with the remote cart."""
        items = await self.remote.pull(self.user_id)
        await self._write_local(items)

    async def _push(self, items: List[Dict[str, Any]]) -> None:
        if not self._can_sync:
            return
        try:
            await self.remote.push(self.user_id, items)
        except Exception as e:
            logger.warning(f"Remote cart sync failed (saved locally): {e}")

    async def get_cart_items(self) -> ServiceResult:
        try:
            if self._can_sync:
                try:
                    await self.sync_from_remote()
                except Exception as e:
                    logger.warning(f"Remote cart read failed, using local storage: {e}")

            return ServiceResult.ok(await self._read_local())
        except Exception as e:
            logger.error(f"Error getting cart items: {e}")
            return ServiceResult.fail('Failed to get cart items')

    async def add_to_cart(self, item: Union[CartItem, Dict[str, Any]]) -> ServiceResult:
        """Add an item, merging it with an existing line for the same commodity and merchant."""
        try:
            if not isinstance(item, CartItem):
                item = CartItem(**item)

            items = await self._read_local()
            existing = next(
                (
                    i for i in items
                    if i['commodity_id'] == item.commodity_id
                    and i['merchant_id'] == item.merchant_id
                ),
                None
            )
            if existing is not None:
                existing['quantity'] += item.quantity
            else:
                new_item = item.model_dump()
                new_item['id'] = temp_item_id()
                items.append(new_item)

            await self._write_local(items)
            await self._push(items)
            return ServiceResult.ok({'message': 'Item added to cart'})
        except Exception as e:
            logger.error(f"Error adding to cart: {e}")
            return ServiceResult.fail('Failed to add to cart')

    async def update_quantity(self, item_id: str, quantity: int) -> ServiceResult:
        """Set an item's quantity; zero or less removes it."""
        if quantity <= 0:
            return await self.remove_from_cart(item_id)

        try:
            items = await self._read_local()
            for item in items:
                if item['id'] == item_id:
                    item['quantity'] = quantity

            await self._write_local(items)
            await self._push(items)
            return ServiceResult.ok({'message': 'Quantity updated'})
        except Exception as e:
            logger.error(f"Error updating quantity: {e}")
            return ServiceResult.fail('Failed to update cart item')

    async def remove_from_cart(self, item_id: str) -> ServiceResult:
        try:
            items = [i for i in await self._read_local() if i['id'] != item_id]
            await self._write_local(items)
            await self._push(items)
            return ServiceResult.ok({'message': 'Item removed from cart'})
        except Exception as e:
            logger.error(f"Error removing from cart: {e}")
            return ServiceResult.fail('Failed to remove from cart')

    async def clear_cart(self) -> ServiceResult:
        try:
            await self.store.multi_remove([CART_KEY, LEGACY_CART_KEY, CHECKOUT_KEY])
            await self._push([])
            return ServiceResult.ok({'message': 'Cart cleared'})
        except Exception as e:
            logger.error(f"Error clearing cart: {e}")
            return ServiceResult.fail('Failed to clear cart')

    async def get_cart_total(self) -> float:
        result = await self.get_cart_items()
        if not result.success or not result.data:
            return 0
        return sum(item['price'] * item['quantity'] for item in result.data)

    async def get_cart_item_count(self) -> int:
        result = await self.get_cart_items()
        if not result.success or not result.data:
            return 0
        return sum(item['quantity'] for item in result.data)

    async def prepare_checkout(self) -> ServiceResult:
        """Copy the cart to the checkout key."""
        try:
            result = await self.get_cart_items()
            if not result.success or not result.data:
                return ServiceResult.fail('Cart is empty')

            await self.store.set_item(CHECKOUT_KEY, json.dumps(result.data))
            return ServiceResult.ok({'message': 'Checkout prepared'})
        except Exception as e:
            logger.error(f"Error preparing checkout: {e}")
            return ServiceResult.fail('Failed to prepare checkout')

    async def start_realtime_sync(self, registry) -> None:
        """Pull the remote cart whenever the user's cart rows change."""
        if self.user_id is None or self._realtime_teardown is not None:
            return

        async def on_change(payload: Dict[str, Any]) -> None:
            if not self._can_sync:
                return
            try:
                await self.sync_from_remote()
            except Exception as e:
                logger.warning(f"Realtime cart refresh failed: {e}")

        self._realtime_teardown = await registry.subscribe(
            f"cart:{self.user_id}",
            'cart_items',
            on_change,
            filter=f"user_id=eq.{self.user_id}"
        )

    async def stop_realtime_sync(self) -> None:
        if self._realtime_teardown is not None:
            await self._realtime_teardown()
            self._realtime_teardown = None

__all__ = [
    'CartManager',
    'CartItem',
    'RemoteCart',
    'CartError',
    'CartItemNotFoundError',
    'ProductUnavailableError',
    'CART_KEY',
    'LEGACY_CART_KEY',
    'CHECKOUT_KEY'
]
