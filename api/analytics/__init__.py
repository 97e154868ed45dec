"""Analytics ingestion endpoint."""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from analytics import AnalyticsManager, get_analytics_manager
from auth import optional_auth

from ..responses import success

router = APIRouter(
    prefix="/api/analytics",
    tags=["Analytics"]
)

class AnalyticsEvent(BaseModel):
    """A client event."""
    name: str
    properties: Optional[Dict[str, Any]] = None
    timestamp: Optional[int] = None

class AnalyticsBatch(BaseModel):
    """Request model for a batch of client events."""
    events: List[AnalyticsEvent]

@router.post("/events")
async def record_events(
    batch: AnalyticsBatch,
    user: Optional[dict] = Depends(optional_auth),
    analytics: AnalyticsManager = Depends(get_analytics_manager)
):
    recorded = await analytics.record_events(
        user['id'] if user else None,
        [event.model_dump() for event in batch.events]
    )
    return success({'recorded': recorded})
