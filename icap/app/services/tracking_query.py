"""
Trajectory queries for map-rendering clients.
"""

from typing import List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from icap.app.models.order import Order
from icap.app.models.tracking_point import TrackingPoint


class TrackingQueryService:

    @staticmethod
    async def get_trajectory(db: AsyncSession, order_code: str) -> List[TrackingPoint]:
        """
        Return the tracking points of an order, oldest first.

        Points sharing a timestamp keep insertion order. An order without
        points, or an unknown code, yields an empty list.
        """
        result = await db.execute(
            select(TrackingPoint)
            .join(Order, TrackingPoint.order_id == Order.id)
            .where(Order.order_id == order_code)
            .order_by(TrackingPoint.created_at.asc(), TrackingPoint.id.asc())
        )
        return list(result.scalars().all())
