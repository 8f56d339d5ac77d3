"""
Tracking Point database model.

Append-only audit trail of an order: GPS breadcrumbs pushed by the driver
app and status transitions. Rows are never updated or deleted.
"""

from sqlalchemy import Column, Integer, Float, String, Text, ForeignKey, DateTime, Index
from sqlalchemy.sql import func
from icap.app.db.session import Base
from icap.app.models.order_enums import TrackingSource


class TrackingPoint(Base):
    """
    Tracking Point model.
    
    The trajectory of an order is its points ordered by `created_at`.
    For GPS points `created_at` is the device timestamp of the fix.
    Status points are stamped with the server clock instead, so a device
    clock running ahead can sort a status point before the last GPS points.
    """
    __tablename__ = "tracking_points"
    
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    
    # References
    order_id = Column(Integer, ForeignKey('orders.id'), nullable=False, index=True)
    user_id = Column(Integer, nullable=False)  # Attribution (users table lives in the admin app)
    
    # Order status at the time of the point
    status = Column(String(50), nullable=False)
    comment = Column(Text, nullable=True)
    source = Column(String(20), nullable=False, default=TrackingSource.LOCATION.value)
    
    # GPS coordinates (absent on status transitions)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    accuracy = Column(Float, nullable=True)  # meters
    speed = Column(Float, nullable=True)  # m/s
    
    # Client idempotency key, lets redelivered samples be recognised
    sample_id = Column(String(64), unique=True, nullable=True)
    
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    
    __table_args__ = (
        Index("ix_tracking_points_order_created", "order_id", "created_at"),
    )
    
    def __repr__(self):
        return f"<TrackingPoint(order_id={self.order_id}, status='{self.status}', lat={self.latitude}, lng={self.longitude})>"
