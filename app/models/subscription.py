from sqlalchemy import (
    Column, String, Boolean, ForeignKey, DateTime, Numeric, Integer, Uuid,
    UniqueConstraint, CheckConstraint, func,
)
from sqlalchemy.orm import relationship
import uuid

from app.database import Base
from app.models.base import TimestampMixin, utcnow


class RedemptionMode:
    MULTI_USE = "MULTI_USE"
    SINGLE_USE = "SINGLE_USE"


class SubscriptionPlan(Base, TimestampMixin):
    __tablename__ = "subscription_plans"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(100), nullable=False)
    price_paise = Column(Integer, nullable=False, default=0)
    validity_days = Column(Integer, nullable=False)
    max_pickups = Column(Integer, nullable=False)
    kg_limit = Column(Numeric(10, 3))
    items_limit = Column(Integer)
    redemption_mode = Column(String(20), nullable=False, default=RedemptionMode.MULTI_USE)
    active = Column(Boolean, nullable=False, default=True)

    subscriptions = relationship("Subscription", back_populates="plan")


class Subscription(Base, TimestampMixin):
    __tablename__ = "subscriptions"
    __table_args__ = (
        CheckConstraint("remaining_pickups >= 0", name="ck_subscriptions_remaining_pickups"),
        CheckConstraint("used_kg >= 0", name="ck_subscriptions_used_kg"),
        CheckConstraint("used_items_count >= 0", name="ck_subscriptions_used_items"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, nullable=False)
    plan_id = Column(Uuid, ForeignKey("subscription_plans.id"), nullable=False)
    branch_id = Column(Uuid)
    address_id = Column(Uuid)
    validity_start_date = Column(DateTime(timezone=True), nullable=False)
    expiry_date = Column(DateTime(timezone=True), nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    inactivated_at = Column(DateTime(timezone=True))

    # Running balances
    remaining_pickups = Column(Integer, nullable=False, default=0)
    used_kg = Column(Numeric(10, 3), nullable=False, default=0)
    used_items_count = Column(Integer, nullable=False, default=0)

    # Limits captured at creation so plan edits do not rewrite history
    total_max_pickups = Column(Integer)
    total_kg_limit = Column(Numeric(10, 3))
    total_items_limit = Column(Integer)

    # Relationships
    plan = relationship("SubscriptionPlan", back_populates="subscriptions", lazy="selectin")
    usages = relationship("SubscriptionUsage", back_populates="subscription", order_by="SubscriptionUsage.created_at")


class SubscriptionUsage(Base):
    """Ledger row: one order's deduction from one subscription."""

    __tablename__ = "subscription_usages"
    __table_args__ = (
        UniqueConstraint("order_id", "subscription_id", name="uq_subscription_usages_order_subscription"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    subscription_id = Column(Uuid, ForeignKey("subscriptions.id", ondelete="CASCADE"), nullable=False)
    order_id = Column(Uuid, ForeignKey("orders.id"), nullable=False)
    invoice_id = Column(Uuid, ForeignKey("invoices.id"))
    deducted_pickups = Column(Integer, nullable=False, default=0)
    deducted_kg = Column(Numeric(10, 3), nullable=False, default=0)
    deducted_items_count = Column(Integer, nullable=False, default=0)
    corrected_at = Column(DateTime(timezone=True))
    reversed_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

    subscription = relationship("Subscription", back_populates="usages")
