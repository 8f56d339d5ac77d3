"""
API Router.

Aggregates the tracking API endpoints.
"""

from fastapi import APIRouter
from icap.app.api.routes import health, orders, tracking

router = APIRouter()

router.include_router(health.router)
router.include_router(orders.router)
router.include_router(tracking.router)
