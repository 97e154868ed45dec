"""Health and function endpoints."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, status

from database.exceptions import FunctionNotFoundError
from database.store import DataStore, get_data_store
from realtime import get_registry

from ..responses import success

logger = logging.getLogger(__name__)

router = APIRouter(tags=["System"])

def _health() -> Dict[str, Any]:
    return {
        'status': 'ok',
        'message': 'Server is running',
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'realtime': get_registry().connection_status()
    }

@router.get("/health")
async def health():
    """Liveness check."""
    return _health()

@router.get("/api/health")
async def api_health():
    return _health()

@router.post("/api/functions/{name}")
async def invoke_function(
    name: str,
    payload: Optional[Dict[str, Any]] = Body(None),
    data: DataStore = Depends(get_data_store)
):
    """Invoke a named server function such as calculate-delivery-fee."""
    try:
        return success(await data.invoke(name, payload))
    except FunctionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
