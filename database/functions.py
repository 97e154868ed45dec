"""Named server-side functions invoked through the data store.

Functions are async callables taking a JSON-style payload dict and returning
a JSON-style dict. They are looked up by name in a registry.
"""
import logging
import math
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

from .exceptions import FunctionNotFoundError

logger = logging.getLogger(__name__)

FunctionHandler = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]

EARTH_RADIUS_KM = 6371

# Delivery pricing
BASE_FEE = 500
PER_KM_RATE = 100
FREE_DELIVERY_THRESHOLD = 5000
PEAK_HOURS = range(17, 21)

def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points in kilometres."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2 +
        math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) *
        math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

def delivery_fee_quote(
    merchant_location: Dict[str, float],
    delivery_location: Dict[str, float],
    order_value: float,
    now: Optional[datetime] = None
) -> Dict[str, Any]:
    """Quote a delivery fee from distance, time of day and order value.

    Args:
        merchant_location: Dict with latitude and longitude
        delivery_location: Dict with latitude and longitude
        order_value: Order subtotal
        now: Current local time, used for peak hour pricing

    Returns:
        Dict with distance, fee components, total and estimated minutes
    """
    distance = haversine_km(
        float(merchant_location['latitude']),
        float(merchant_location['longitude']),
        float(delivery_location['latitude']),
        float(delivery_location['longitude'])
    )

    is_peak = (now or datetime.now()).hour in PEAK_HOURS
    distance_fee = math.ceil(distance * PER_KM_RATE)
    surge_fee = math.ceil(distance_fee * 0.5) if is_peak else 0
    total = math.ceil((BASE_FEE + distance_fee + surge_fee) * (1.5 if is_peak else 1.0))

    free_delivery = order_value >= FREE_DELIVERY_THRESHOLD
    if free_delivery:
        total = 0

    return {
        'distance': f"{distance:.2f}",
        'baseFee': BASE_FEE,
        'distanceFee': distance_fee,
        'surgeFee': surge_fee,
        'total': total,
        'isFreeDelivery': free_delivery,
        'estimatedTime': math.ceil(distance * 3)
    }

async def calculate_delivery_fee(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Function handler for 'calculate-delivery-fee'."""
    try:
        return delivery_fee_quote(
            payload['merchantLocation'],
            payload['deliveryLocation'],
            float(payload.get('orderValue') or 0)
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ValueError(f"Invalid delivery fee request: {e}")

class FunctionRegistry:
    """Registry of named async functions."""

    def __init__(self) -> None:
        self._functions: Dict[str, FunctionHandler] = {}

    def register(self, name: str, handler: FunctionHandler) -> None:
        """Register (or replace) a function under a name."""
        self._functions[name] = handler
        logger.debug(f"Registered function {name}")

    def names(self):
        return sorted(self._functions)

    async def invoke(self, name: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Invoke a registered function.

        Raises:
            FunctionNotFoundError: If no function is registered under the name
        """
        handler = self._functions.get(name)
        if handler is None:
            raise FunctionNotFoundError(f"Function {name} not found")
        logger.debug(f"Invoking function {name}")
        return await handler(payload or {})

def default_registry() -> FunctionRegistry:
    """Create a registry holding the built-in functions."""
    registry = FunctionRegistry()
    registry.register('calculate-delivery-fee', calculate_delivery_fee)
    return registry

__all__ = [
    'FunctionRegistry',
    'default_registry',
    'calculate_delivery_fee',
    'delivery_fee_quote',
    'haversine_km'
]
