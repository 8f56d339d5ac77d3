"""
Order database model.

Only the columns the tracking pipeline reads or writes are mapped here;
the rest of the order record is owned by the admin application.
"""

from sqlalchemy import Column, Integer, String, DateTime, Date
from sqlalchemy.sql import func
from icap.app.db.session import Base
from icap.app.models.order_enums import OrderStatus


class Order(Base):
    """
    Order model.
    
    `order_id` is the external code printed on the QR label; `id` is the
    internal key tracking points reference.
    """
    __tablename__ = "orders"
    
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_id = Column(String(50), unique=True, nullable=False, index=True)
    
    # Stored as text, admin flows may write values this service does not drive
    status = Column(String(50), nullable=False, default=OrderStatus.REGISTRADO.value)
    
    # Read-only context returned on validation
    work_location = Column(String(255), nullable=True)
    delivery_date = Column(Date, nullable=True)
    quantity = Column(Integer, nullable=True)
    product_name = Column(String(255), nullable=True)
    supplier_name = Column(String(255), nullable=True)
    user_name = Column(String(255), nullable=True)
    
    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    
    def __repr__(self):
        return f"<Order(id={self.id}, order_id='{self.order_id}', status='{self.status}')>"
