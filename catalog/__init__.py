"""Catalog module for merchants, products and reviews.

This module handles:
- Product browsing and management
- Merchant lookup and nearby search
- Merchant reviews and the aggregated merchant rating
"""
import json
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from asyncpg.pool import Pool

from database import get_pool
from database.functions import haversine_km

logger = logging.getLogger(__name__)

PRODUCT_FIELDS = (
    'name', 'description', 'category', 'unit', 'price',
    'stock_quantity', 'image_url', 'is_available'
)

MERCHANT_FIELDS = (
    'business_name', 'business_type', 'address', 'city', 'state', 'country',
    'latitude', 'longitude', 'operating_hours', 'is_active'
)

class CatalogError(Exception):
    """Base class for catalog errors."""
    pass

class ProductNotFoundError(CatalogError):
    """Raised when a product does not exist."""
    pass

class MerchantNotFoundError(CatalogError):
    """Raised when a merchant does not exist."""
    pass

class InvalidRatingError(CatalogError):
    """Raised when a review rating is outside 1..5."""
    def __init__(self, rating: int):
        self.rating = rating
        super().__init__(f"Rating must be between 1 and 5, got {rating}")

def nearby(
    merchants: List[Dict[str, Any]],
    lat: float,
    lng: float,
    radius_km: float
) -> List[Dict[str, Any]]:
    """Merchants within radius_km of a point, nearest first, with a distance field.

    Merchants without coordinates are skipped.
    """
    results = []
    for merchant in merchants:
        if merchant.get('latitude') is None or merchant.get('longitude') is None:
            continue
        distance = haversine_km(
            lat, lng, float(merchant['latitude']), float(merchant['longitude'])
        )
        if distance <= radius_km:
            results.append({**merchant, 'distance': distance})
    return sorted(results, key=lambda m: m['distance'])

class CatalogManager:
    """Manages products, merchants and reviews."""

    def __init__(self, pool: Optional[Pool] = None) -> None:
        """Initialize catalog manager.

        Args:
            pool: Optional database connection pool. If not provided, will get from database module.
        """
        self.pool = pool

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    # Products

    async def list_products(
        self,
        category: Optional[str] = None,
        merchant_id: Optional[UUID] = None,
        search: Optional[str] = None,
        available_only: bool = True,
        limit: int = 50,
        offset: int = 0
    ) -> List[Dict[str, Any]]:
        """List products with optional filters, newest first.

        Args:
            category: Only products in this category
            merchant_id: Only products of this merchant
            search: Case-insensitive substring of the product name
            available_only: Skip products marked unavailable
            limit: Maximum rows
            offset: Rows to skip

        Returns:
            List of product rows with the merchant's business name
        """
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT p.*, m.business_name AS merchant_name
                FROM products p
                LEFT JOIN merchants m ON m.id = p.merchant_id
                WHERE ($1::text IS NULL OR p.category = $1)
                AND ($2::uuid IS NULL OR p.merchant_id = $2)
                AND ($3::text IS NULL OR p.name ILIKE '%' || $3 || '%')
                AND (NOT $4 OR p.is_available)
                ORDER BY p.created_at DESC
                LIMIT $5 OFFSET $6
                ''',
                category,
                merchant_id,
                search,
                available_only,
                limit,
                offset
            )
        return [dict(row) for row in rows]

    async def get_product(self, product_id: UUID) -> Dict[str, Any]:
        """Get a product.

        Raises:
            ProductNotFoundError: If the product does not exist
        """
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                '''
                SELECT p.*, m.business_name AS merchant_name
                FROM products p
                LEFT JOIN merchants m ON m.id = p.merchant_id
                WHERE p.id = $1
                ''',
                product_id
            )
        if not row:
            raise ProductNotFoundError(f"Product {product_id} not found")
        return dict(row)

    async def create_product(self, merchant_id: UUID, product: Dict[str, Any]) -> Dict[str, Any]:
        """Create a product for a merchant.

        Raises:
            MerchantNotFoundError: If the merchant does not exist
            CatalogError: If name or price is missing or the price is negative
        """
        fields = {k: v for k, v in product.items() if k in PRODUCT_FIELDS and v is not None}
        if not fields.get('name') or fields.get('price') is None:
            raise CatalogError("Product name and price are required")
        if Decimal(str(fields['price'])) < 0:
            raise CatalogError("Product price must not be negative")

        await self.get_merchant(merchant_id)

        columns = ['merchant_id', *fields]
        placeholders = ', '.join(f"${i}" for i in range(1, len(columns) + 1))
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f'''
                INSERT INTO products ({', '.join(columns)})
                VALUES ({placeholders})
                RETURNING *
                ''',
                merchant_id,
                *fields.values()
            )
        logger.info(f"Created product {row['id']} for merchant {merchant_id}")
        return dict(row)

    async def update_product(self, product_id: UUID, updates: Dict[str, Any]) -> Dict[str, Any]:
        """Update product fields. Unknown fields are ignored."""
        fields = {k: v for k, v in updates.items() if k in PRODUCT_FIELDS}
        if not fields:
            return await self.get_product(product_id)

        assignments = ', '.join(f"{name} = ${i}" for i, name in enumerate(fields, start=2))
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f'''
                UPDATE products SET {assignments}, updated_at = now()
                WHERE id = $1
                RETURNING *
                ''',
                product_id,
                *fields.values()
            )
        if not row:
            raise ProductNotFoundError(f"Product {product_id} not found")
        return dict(row)

    # Merchants

    async def get_merchant(self, merchant_id: UUID) -> Dict[str, Any]:
        """Get a merchant.

        Raises:
            MerchantNotFoundError: If the merchant does not exist
        """
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow('SELECT * FROM merchants WHERE id = $1', merchant_id)
        if not row:
            raise MerchantNotFoundError(f"Merchant {merchant_id} not found")
        return dict(row)

    async def get_merchant_by_user(self, user_id: UUID) -> Optional[Dict[str, Any]]:
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                'SELECT * FROM merchants WHERE user_id = $1 LIMIT 1',
                user_id
            )
        return dict(row) if row else None

    async def create_merchant(self, user_id: UUID, merchant: Dict[str, Any]) -> Dict[str, Any]:
        """Create the merchant profile of a user."""
        fields = {k: v for k, v in merchant.items() if k in MERCHANT_FIELDS and v is not None}
        if not fields.get('business_name'):
            raise CatalogError("Business name is required")
        if isinstance(fields.get('operating_hours'), dict):
            fields['operating_hours'] = json.dumps(fields['operating_hours'])

        columns = ['user_id', *fields]
        placeholders = ', '.join(f"${i}" for i in range(1, len(columns) + 1))
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f'''
                INSERT INTO merchants ({', '.join(columns)})
                VALUES ({placeholders})
                RETURNING *
                ''',
                user_id,
                *fields.values()
            )
        logger.info(f"Created merchant {row['id']} for user {user_id}")
        return dict(row)

    async def find_nearby_merchants(
        self,
        lat: float,
        lng: float,
        radius_km: Optional[float] = None
    ) -> List[Dict[str, Any]]:
        """Active merchants within radius_km, nearest first."""
        if radius_km is None:
            from config import settings_conf
            radius_km = float(settings_conf['nearby_radius_km'])

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch('SELECT * FROM merchants WHERE is_active = true')
        return nearby([dict(row) for row in rows], lat, lng, radius_km)

    # Reviews

    async def get_reviews(self, merchant_id: UUID, limit: int = 50, offset: int = 0) -> List[Dict[str, Any]]:
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT r.*, u.full_name AS reviewer_name
                FROM reviews r
                LEFT JOIN users u ON u.id = r.user_id
                WHERE r.merchant_id = $1
                ORDER BY r.created_at DESC
                LIMIT $2 OFFSET $3
                ''',
                merchant_id,
                limit,
                offset
            )
        return [dict(row) for row in rows]

    async def add_review(
        self,
        user_id: UUID,
        merchant_id: UUID,
        rating: int,
        comment: Optional[str] = None,
        order_id: Optional[UUID] = None
    ) -> Dict[str, Any]:
        """Add a review and recompute the merchant's rating and review count.

        Raises:
            InvalidRatingError: If rating is outside 1..5
            MerchantNotFoundError: If the merchant does not exist
        """
        if not 1 <= rating <= 5:
            raise InvalidRatingError(rating)

        await self.get_merchant(merchant_id)

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                review = await conn.fetchrow(
                    '''
                    INSERT INTO reviews (order_id, merchant_id, user_id, rating, comment)
                    VALUES ($1, $2, $3, $4, $5)
                    RETURNING *
                    ''',
                    order_id,
                    merchant_id,
                    user_id,
                    rating,
                    comment
                )
                await conn.execute(
                    '''
                    UPDATE merchants SET
                        rating = (SELECT ROUND(AVG(rating)::numeric, 1) FROM reviews WHERE merchant_id = $1),
                        total_reviews = (SELECT COUNT(*) FROM reviews WHERE merchant_id = $1),
                        updated_at = now()
                    WHERE id = $1
                    ''',
                    merchant_id
                )
        logger.info(f"Added {rating}-star review for merchant {merchant_id}")
        return dict(review)

def get_catalog_manager() -> CatalogManager:
    """Request-scoped catalog manager."""
    return CatalogManager()

__all__ = [
    'CatalogManager',
    'CatalogError',
    'ProductNotFoundError',
    'MerchantNotFoundError',
    'InvalidRatingError',
    'nearby',
    'get_catalog_manager'
]
