"""
Health check endpoint used by the driver app connectivity indicator.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from icap.app.core.config import settings
from icap.app.db.session import get_db, ping

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Health"])


@router.get("/health")
async def health_check(db: AsyncSession = Depends(get_db)):
    """
    Liveness plus database connectivity.
    
    Always answers 200; `status` is "error" when the database is unreachable.
    """
    payload = {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "server": settings.app_name,
        "version": settings.api_version,
        "database": "connected",
    }
    
    try:
        await ping(db)
    except (SQLAlchemyError, OSError) as exc:
        logger.error("Database health check failed", extra={"error": str(exc)})
        payload["status"] = "error"
        payload["database"] = "disconnected"
        payload["error"] = str(exc)
    
    return payload
