"""
Order gateway: order validation, status transitions and location ingestion.

Each operation touches a single row and commits on its own. The audit point
written after a status change is a best-effort side effect: its failure is
logged as a structured warning and reported in the result, never raised.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, and_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from icap.app.core.config import settings
from icap.app.core.exceptions import OrderNotFoundError, InvalidStatusError
from icap.app.models.order import Order
from icap.app.models.order_enums import OrderStatus, TrackingSource
from icap.app.models.tracking_point import TrackingPoint
from icap.app.schemas.order import OrderDetails, OrderValidationResponse
from icap.app.schemas.tracking import LocationPush

logger = logging.getLogger(__name__)


@dataclass
class StatusChange:
    """Outcome of an applied status update."""
    order_code: str
    new_status: str
    changed_at: datetime
    audit_recorded: bool


@dataclass
class LocationRecordResult:
    """Outcome of a location push."""
    point_id: Optional[int]
    recorded_at: datetime
    duplicate: bool


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Normalise a client timestamp; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_location_comment(latitude: float, longitude: float, accuracy: Optional[float]) -> str:
    comment = f"GPS: Lat {latitude:.6f}, Lng {longitude:.6f}"
    if accuracy is not None:
        comment += f", Precisão: ±{round(accuracy)}m"
    return comment


class OrderGateway:

    @staticmethod
    async def get_order(db: AsyncSession, order_code: str) -> Optional[Order]:
        result = await db.execute(
            select(Order).where(Order.order_id == order_code)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def validate_order(db: AsyncSession, order_code: str) -> OrderValidationResponse:
        """
        Look an order up by its external code.

        An unknown code is a normal outcome (`valid=False`), never an error.
        """
        order = await OrderGateway.get_order(db, order_code)

        if not order:
            return OrderValidationResponse(
                valid=False,
                order_id=order_code,
                message="Pedido não encontrado no sistema"
            )

        return OrderValidationResponse(
            valid=True,
            order_id=order.order_id,
            status=order.status,
            message="Pedido encontrado e válido",
            details=OrderDetails.model_validate(order)
        )

    @staticmethod
    async def update_status(db: AsyncSession, order_code: str, new_status: str) -> StatusChange:
        """
        Overwrite the status of an order (last writer wins).

        Raises:
            InvalidStatusError: status is not part of the lifecycle
            OrderNotFoundError: order code is unknown
        """
        parsed = OrderStatus.parse(new_status)
        if parsed is None:
            raise InvalidStatusError(new_status, [s.value for s in OrderStatus])

        order = await OrderGateway.get_order(db, order_code)
        if not order:
            raise OrderNotFoundError(order_code)

        previous_status = order.status
        order.status = parsed.value
        await db.commit()

        changed_at = utc_now()
        logger.info(
            "Order status updated",
            extra={
                "order_code": order_code,
                "previous_status": previous_status,
                "new_status": parsed.value
            }
        )

        audit_recorded = await OrderGateway._append_status_point(db, order.id, order_code, parsed.value, changed_at)

        return StatusChange(
            order_code=order_code,
            new_status=parsed.value,
            changed_at=changed_at,
            audit_recorded=audit_recorded
        )

    @staticmethod
    async def _append_status_point(
        db: AsyncSession,
        order_pk: int,
        order_code: str,
        status_value: str,
        changed_at: datetime
    ) -> bool:
        """Best-effort audit point for a status transition."""
        try:
            db.add(TrackingPoint(
                order_id=order_pk,
                status=status_value,
                comment=f"Status alterado via PWA para: {status_value}",
                user_id=settings.tracking_actor_user_id,
                source=TrackingSource.STATUS.value,
                created_at=changed_at
            ))
            await db.commit()
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.warning(
                "Status audit point not recorded",
                extra={
                    "order_code": order_code,
                    "new_status": status_value,
                    "error_type": type(exc).__name__,
                    "error": str(exc)
                }
            )
            return False
        return True

    @staticmethod
    async def record_location(db: AsyncSession, location: LocationPush) -> LocationRecordResult:
        """
        Append a GPS point to the order trajectory.

        Redelivered samples (same sample id, or the same order, timestamp and
        coordinates when no id is sent) are acknowledged without a new row.

        Raises:
            OrderNotFoundError: order code is unknown
        """
        order = await OrderGateway.get_order(db, location.order_id)
        if not order:
            raise OrderNotFoundError(location.order_id)

        # rollback below expires `order`; keep its key for the retry lookup
        order_pk = order.id
        recorded_at = as_utc(location.timestamp)

        existing = await OrderGateway._find_duplicate(db, order_pk, location, recorded_at)
        if existing is not None:
            logger.info(
                "Duplicate location ignored",
                extra={"order_code": location.order_id, "point_id": existing.id}
            )
            return LocationRecordResult(point_id=existing.id, recorded_at=recorded_at, duplicate=True)

        point = TrackingPoint(
            order_id=order_pk,
            status=order.status,
            comment=format_location_comment(location.latitude, location.longitude, location.accuracy),
            user_id=settings.tracking_actor_user_id,
            source=TrackingSource.LOCATION.value,
            latitude=location.latitude,
            longitude=location.longitude,
            accuracy=location.accuracy,
            speed=location.speed,
            sample_id=location.sample_id,
            created_at=recorded_at
        )
        db.add(point)

        try:
            await db.commit()
        except IntegrityError:
            # Concurrent redelivery of the same sample won the insert
            await db.rollback()
            existing = await OrderGateway._find_duplicate(db, order_pk, location, recorded_at)
            if existing is None:
                raise
            return LocationRecordResult(point_id=existing.id, recorded_at=recorded_at, duplicate=True)

        await db.refresh(point)

        logger.info(
            "Location recorded",
            extra={
                "order_code": location.order_id,
                "point_id": point.id,
                "lat": round(location.latitude, 6),
                "lng": round(location.longitude, 6)
            }
        )

        return LocationRecordResult(point_id=point.id, recorded_at=recorded_at, duplicate=False)

    @staticmethod
    async def _find_duplicate(
        db: AsyncSession,
        order_pk: int,
        location: LocationPush,
        recorded_at: datetime
    ) -> Optional[TrackingPoint]:
        if location.sample_id:
            condition = TrackingPoint.sample_id == location.sample_id
        else:
            condition = and_(
                TrackingPoint.order_id == order_pk,
                TrackingPoint.source == TrackingSource.LOCATION.value,
                TrackingPoint.created_at == recorded_at,
                TrackingPoint.latitude == location.latitude,
                TrackingPoint.longitude == location.longitude
            )

        result = await db.execute(
            select(TrackingPoint).where(condition).limit(1)
        )
        return result.scalar_one_or_none()
