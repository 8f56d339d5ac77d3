"""
Order validation and status update schemas.
"""

from pydantic import Field
from datetime import date, datetime
from typing import Optional

from icap.app.schemas.base import CamelModel


class OrderDetails(CamelModel):
    """Display context returned with a valid order."""
    id: int
    work_location: Optional[str] = None
    delivery_date: Optional[date] = None
    quantity: Optional[int] = None
    product_name: Optional[str] = None
    supplier_name: Optional[str] = None
    user_name: Optional[str] = None
    
    class Config:
        from_attributes = True


class OrderValidationResponse(CamelModel):
    """Result of validating an order code. `details` only when valid."""
    valid: bool
    order_id: str
    status: Optional[str] = None
    message: str
    details: Optional[OrderDetails] = None


class StatusUpdateRequest(CamelModel):
    """Schema for changing an order status."""
    status: str = Field(..., min_length=1, max_length=50)


class StatusUpdateResponse(CamelModel):
    """Response after a status update."""
    success: bool
    order_id: str
    new_status: str
    timestamp: datetime
    message: str
    audit_recorded: bool  # False when the audit point could not be written
