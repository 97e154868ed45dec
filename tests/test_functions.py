"""Tests for the named server-side functions."""

from datetime import datetime

import pytest

from database.functions import FunctionRegistry, default_registry, delivery_fee_quote, haversine_km

MERCHANT = {'latitude': 0.0, 'longitude': 0.0}
# Roughly 10 km east of the merchant
CUSTOMER = {'latitude': 0.0, 'longitude': 0.09}

def test_haversine_zero_distance():
    assert haversine_km(6.5, 3.3, 6.5, 3.3) == 0

def test_off_peak_quote():
    quote = delivery_fee_quote(MERCHANT, CUSTOMER, 1000, now=datetime(2024, 1, 1, 10, 0))

    assert quote == {
        'distance': '10.01',
        'baseFee': 500,
        'distanceFee': 1001,
        'surgeFee': 0,
        'total': 1501,
        'isFreeDelivery': False,
        'estimatedTime': 31
    }

def test_peak_hour_adds_surge_and_multiplier():
    quote = delivery_fee_quote(MERCHANT, CUSTOMER, 1000, now=datetime(2024, 1, 1, 18, 30))

    assert quote['surgeFee'] == 501
    assert quote['total'] == 3003

def test_large_orders_deliver_free():
    quote = delivery_fee_quote(MERCHANT, CUSTOMER, 5000, now=datetime(2024, 1, 1, 18, 30))

    assert quote['isFreeDelivery'] is True
    assert quote['total'] == 0
    assert quote['distanceFee'] == 1001

@pytest.mark.asyncio
async def test_registry_invokes_delivery_fee():
    result = await default_registry().invoke('calculate-delivery-fee', {
        'merchantLocation': MERCHANT,
        'deliveryLocation': MERCHANT,
        'orderValue': 0
    })

    assert result['distance'] == '0.00'
    assert result['distanceFee'] == 0

@pytest.mark.asyncio
async def test_invalid_payload_raises_value_error():
    with pytest.raises(ValueError):
        await default_registry().invoke('calculate-delivery-fee', {'merchantLocation': MERCHANT})

@pytest.mark.asyncio
async def test_registered_handlers_can_be_replaced():
    registry = FunctionRegistry()

    async def echo(payload):
        return payload

    registry.register('echo', echo)
    assert await registry.invoke('echo', {'a': 1}) == {'a': 1}
    assert registry.names() == ['echo']
