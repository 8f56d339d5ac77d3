"""
Order endpoints consumed by the driver app.

Unauthenticated: possession of the order code is the capability.
"""

from fastapi import APIRouter, Depends, Path, Body
from sqlalchemy.ext.asyncio import AsyncSession

from icap.app.db.session import get_db
from icap.app.schemas.order import (
    OrderValidationResponse, StatusUpdateRequest, StatusUpdateResponse
)
from icap.app.services.order_gateway import OrderGateway

router = APIRouter(prefix="/api/orders", tags=["Orders"])


@router.get(
    "/validate/{order_id}",
    response_model=OrderValidationResponse,
    response_model_exclude_none=True,
)
async def validate_order(
    order_id: str = Path(..., description="External order code"),
    db: AsyncSession = Depends(get_db)
):
    """
    Validate an order code scanned or typed by the driver.
    
    Unknown codes answer `valid: false`.
    """
    return await OrderGateway.validate_order(db, order_id.strip())


@router.put("/{order_id}/status", response_model=StatusUpdateResponse)
async def update_order_status(
    order_id: str = Path(..., description="External order code"),
    payload: StatusUpdateRequest = Body(...),
    db: AsyncSession = Depends(get_db)
):
    """
    Overwrite the order status and append an audit point.
    
    The audit point is best-effort, see `auditRecorded`.
    """
    change = await OrderGateway.update_status(db, order_id.strip(), payload.status)
    
    return StatusUpdateResponse(
        success=True,
        order_id=change.order_code,
        new_status=change.new_status,
        timestamp=change.changed_at,
        message="Status atualizado com sucesso",
        audit_recorded=change.audit_recorded
    )
