from fastapi import APIRouter, Depends, status
from typing import List, Optional
from uuid import UUID

from app.dependencies import get_subscription_service
from app.schemas.subscription import (
    PurchaseSubscriptionRequest,
    PurchaseSubscriptionResponse,
    SubscriptionOverride,
    SubscriptionResponse,
    SubscriptionUsageList,
    SubscriptionUsageResponse,
)
from app.services.subscriptions import SubscriptionService

router = APIRouter()


@router.post("/purchase", response_model=PurchaseSubscriptionResponse, status_code=status.HTTP_201_CREATED)
def purchase_subscription(
    request: PurchaseSubscriptionRequest,
    service: SubscriptionService = Depends(get_subscription_service)
):
    """Buy a plan; returns the new subscription and its issued invoice"""
    return service.purchase(request)


@router.get("/", response_model=List[SubscriptionResponse])
def list_active_subscriptions(
    user_id: UUID,
    branch_id: Optional[UUID] = None,
    service: SubscriptionService = Depends(get_subscription_service)
):
    """Active subscriptions for a customer, optionally scoped to a branch"""
    return service.list_active_for_user(user_id, branch_id)


@router.get("/{subscription_id}", response_model=SubscriptionResponse)
def get_subscription(
    subscription_id: UUID,
    service: SubscriptionService = Depends(get_subscription_service)
):
    return service.get_subscription(subscription_id)


@router.get("/{subscription_id}/usage", response_model=SubscriptionUsageList)
def list_subscription_usage(
    subscription_id: UUID,
    service: SubscriptionService = Depends(get_subscription_service)
):
    usages = service.list_usage(subscription_id)
    return SubscriptionUsageList(
        subscription_id=subscription_id,
        usages=[SubscriptionUsageResponse.model_validate(u) for u in usages],
    )


@router.post("/{subscription_id}/override", response_model=SubscriptionResponse)
def override_subscription(
    subscription_id: UUID,
    changes: SubscriptionOverride,
    service: SubscriptionService = Depends(get_subscription_service)
):
    """Admin correction of balances or validity"""
    return service.override(subscription_id, changes)


@router.post("/{subscription_id}/usage/{order_id}/reverse", response_model=SubscriptionUsageResponse)
def reverse_subscription_usage(
    subscription_id: UUID,
    order_id: UUID,
    service: SubscriptionService = Depends(get_subscription_service)
):
    """Give an order's usage back to the subscription"""
    return service.reverse_usage(subscription_id, order_id)
