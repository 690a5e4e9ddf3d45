from sqlalchemy import Column, String, ForeignKey, Integer, Uuid
import uuid

from app.database import Base
from app.models.base import TimestampMixin


class PaymentProvider:
    CASH = "CASH"
    UPI = "UPI"
    CARD = "CARD"
    RAZORPAY = "RAZORPAY"


class PaymentStatus:
    CREATED = "CREATED"
    PENDING = "PENDING"
    CAPTURED = "CAPTURED"
    FAILED = "FAILED"


class Payment(Base, TimestampMixin):
    __tablename__ = "payments"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id = Column(Uuid, ForeignKey("orders.id"), unique=True)
    subscription_id = Column(Uuid, ForeignKey("subscriptions.id"), unique=True)
    provider = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default=PaymentStatus.CREATED)
    amount = Column(Integer, nullable=False, default=0)
    failure_reason = Column(String)
