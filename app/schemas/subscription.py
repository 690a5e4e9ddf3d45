from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from uuid import UUID
from decimal import Decimal

from app.schemas import BaseSchema


class UsageAmounts(BaseModel):
    """What one order takes out of one subscription"""
    pickups: int = Field(1, ge=0)
    kg: Decimal = Field(Decimal("0"), ge=0)
    items: int = Field(0, ge=0)


class SubscriptionUsageResponse(BaseSchema):
    id: UUID
    subscription_id: UUID
    order_id: UUID
    invoice_id: Optional[UUID] = None
    deducted_pickups: int
    deducted_kg: Decimal
    deducted_items_count: int
    corrected_at: Optional[datetime] = None
    reversed_at: Optional[datetime] = None
    created_at: datetime


class SubscriptionResponse(BaseSchema):
    id: UUID
    user_id: UUID
    plan_id: UUID
    branch_id: Optional[UUID] = None
    address_id: Optional[UUID] = None
    validity_start_date: datetime
    expiry_date: datetime
    active: bool
    remaining_pickups: int
    used_kg: Decimal
    used_items_count: int
    total_max_pickups: Optional[int] = None
    total_kg_limit: Optional[Decimal] = None
    total_items_limit: Optional[int] = None

    # Derived
    remaining_kg: Optional[Decimal] = None
    remaining_items: Optional[int] = None


class SubscriptionOverride(BaseModel):
    remaining_pickups: Optional[int] = None
    used_kg: Optional[Decimal] = None
    used_items_count: Optional[int] = None
    expiry_date: Optional[datetime] = None
    active: Optional[bool] = None
    reason: Optional[str] = None


class PurchaseSubscriptionRequest(BaseModel):
    user_id: UUID
    plan_id: UUID
    branch_id: Optional[UUID] = None
    address_id: Optional[UUID] = None
    branding_snapshot: Optional[dict] = None


class PurchaseSubscriptionResponse(BaseModel):
    subscription_id: UUID
    invoice_id: UUID
    invoice_code: str
    plan_name: str
    validity_start_date: datetime
    valid_till: datetime
    remaining_pickups: int


class SubscriptionUsageList(BaseModel):
    subscription_id: UUID
    usages: List[SubscriptionUsageResponse] = []
