from sqlalchemy import Column, String, ForeignKey, Uuid
from sqlalchemy.orm import relationship
import uuid

from app.database import Base
from app.models.base import TimestampMixin


class OrderStatus:
    BOOKING_CONFIRMED = "BOOKING_CONFIRMED"
    PICKUP_SCHEDULED = "PICKUP_SCHEDULED"
    PICKED_UP = "PICKED_UP"
    IN_PROCESSING = "IN_PROCESSING"
    READY = "READY"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class OrderPaymentStatus:
    PENDING = "PENDING"
    CAPTURED = "CAPTURED"
    FAILED = "FAILED"


class Order(Base, TimestampMixin):
    """Order row as seen by billing. Owned by the orders component; billing only writes payment_status and subscription_id."""

    __tablename__ = "orders"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    order_number = Column(String(50), unique=True)
    user_id = Column(Uuid, nullable=False)
    branch_id = Column(Uuid)
    pincode = Column(String(10))
    order_type = Column(String(30), nullable=False, default="INDIVIDUAL")  # INDIVIDUAL, SUBSCRIPTION, BOTH
    order_source = Column(String(20), nullable=False, default="ONLINE")  # ONLINE, WALK_IN
    status = Column(String(30), nullable=False, default=OrderStatus.BOOKING_CONFIRMED)
    payment_status = Column(String(20), nullable=False, default=OrderPaymentStatus.PENDING)
    subscription_id = Column(Uuid, ForeignKey("subscriptions.id"))

    # Relationships
    subscription = relationship("Subscription")
    invoices = relationship("Invoice", back_populates="order")
