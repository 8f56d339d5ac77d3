"""
Tracking endpoints: GPS ingestion from the driver app and trajectory reads.
"""

from typing import List

from fastapi import APIRouter, Depends, Path, Body
from sqlalchemy.ext.asyncio import AsyncSession

from icap.app.db.session import get_db
from icap.app.schemas.tracking import (
    LocationPush, LocationAckResponse, TrackingPointResponse
)
from icap.app.services.order_gateway import OrderGateway, utc_now
from icap.app.services.tracking_query import TrackingQueryService

router = APIRouter(prefix="/api", tags=["Tracking"])


@router.post("/tracking/location", response_model=LocationAckResponse)
async def record_location(
    location: LocationPush = Body(...),
    db: AsyncSession = Depends(get_db)
):
    """
    Record a GPS sample for an order.
    
    Safe to retry: redelivered samples are acknowledged with `duplicate: true`.
    """
    result = await OrderGateway.record_location(db, location)
    
    return LocationAckResponse(
        success=True,
        timestamp=utc_now(),
        message="Localização já registrada" if result.duplicate else "Localização salva com sucesso",
        duplicate=result.duplicate,
        point_id=result.point_id
    )


@router.get("/tracking-points/{order_id}", response_model=List[TrackingPointResponse])
async def get_tracking_points(
    order_id: str = Path(..., description="External order code"),
    db: AsyncSession = Depends(get_db)
):
    """
    Trajectory of an order, oldest point first.
    """
    points = await TrackingQueryService.get_trajectory(db, order_id.strip())
    return [TrackingPointResponse.model_validate(point) for point in points]
