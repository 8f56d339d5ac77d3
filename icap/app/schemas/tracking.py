"""
Tracking schemas: location pushes and trajectory points.
"""

from pydantic import Field
from datetime import datetime
from typing import Optional

from icap.app.schemas.base import CamelModel


class LocationPush(CamelModel):
    """GPS sample pushed by the driver app."""
    order_id: str = Field(..., min_length=1, max_length=50)
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    accuracy: Optional[float] = Field(None, ge=0)
    speed: Optional[float] = None
    timestamp: datetime
    sample_id: Optional[str] = Field(None, min_length=1, max_length=64)


class LocationAckResponse(CamelModel):
    """Response after a location push."""
    success: bool
    timestamp: datetime
    message: str
    duplicate: bool = False
    point_id: Optional[int] = None


class TrackingPointResponse(CamelModel):
    """One point of an order trajectory."""
    id: int
    order_id: int
    status: str
    comment: Optional[str]
    user_id: int
    latitude: Optional[float]
    longitude: Optional[float]
    accuracy: Optional[float] = None
    speed: Optional[float] = None
    created_at: datetime
    
    class Config:
        from_attributes = True
