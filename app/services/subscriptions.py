from typing import List, Optional
from uuid import UUID

from app.models.subscription import Subscription, SubscriptionUsage
from app.schemas.subscription import (
    PurchaseSubscriptionRequest,
    PurchaseSubscriptionResponse,
    SubscriptionOverride,
    SubscriptionResponse,
    UsageAmounts,
)
from app.services.subscription_ledger import SubscriptionLedger, remaining_items, remaining_kg
from app.services.subscription_purchase import purchase_subscription
from app.unit_of_work import UnitOfWork
from app.utils.errors import NotFoundError
from app.utils.timezone import Clock


def to_subscription_response(subscription: Subscription) -> SubscriptionResponse:
    """Subscription row plus what is left of its kg/items allowance"""
    response = SubscriptionResponse.model_validate(subscription)
    return response.model_copy(
        update={"remaining_kg": remaining_kg(subscription), "remaining_items": remaining_items(subscription)}
    )


class SubscriptionService:
    def __init__(self, uow: UnitOfWork, clock: Optional[Clock] = None):
        self.uow = uow
        self.clock = clock or Clock()

    def purchase(self, request: PurchaseSubscriptionRequest) -> PurchaseSubscriptionResponse:
        return self.uow.run_in_transaction(lambda repos: purchase_subscription(repos, self.clock, request))

    def get_subscription(self, subscription_id: UUID) -> SubscriptionResponse:
        def _get(repos):
            subscription = repos.subscriptions.get(subscription_id)
            if subscription is None:
                raise NotFoundError("Subscription not found", {"subscription_id": str(subscription_id)})
            return to_subscription_response(subscription)

        return self.uow.run_in_transaction(_get)

    def list_active_for_user(self, user_id: UUID, branch_id: Optional[UUID] = None) -> List[SubscriptionResponse]:
        return self.uow.run_in_transaction(
            lambda repos: [
                to_subscription_response(s) for s in repos.subscriptions.list_active_for_user(user_id, branch_id)
            ]
        )

    def deduct(self, subscription_id: UUID, order_id: UUID, amounts: UsageAmounts) -> SubscriptionUsage:
        return self.uow.run_in_transaction(
            lambda repos: SubscriptionLedger(repos, self.clock).deduct(subscription_id, order_id, amounts)
        )

    def list_usage(self, subscription_id: UUID) -> List[SubscriptionUsage]:
        return self.uow.run_in_transaction(
            lambda repos: SubscriptionLedger(repos, self.clock).list_usage_for_subscription(subscription_id)
        )

    def override(self, subscription_id: UUID, changes: SubscriptionOverride) -> SubscriptionResponse:
        return self.uow.run_in_transaction(
            lambda repos: to_subscription_response(
                SubscriptionLedger(repos, self.clock).override(subscription_id, changes)
            )
        )

    def reverse_usage(self, subscription_id: UUID, order_id: UUID) -> SubscriptionUsage:
        return self.uow.run_in_transaction(
            lambda repos: SubscriptionLedger(repos, self.clock).reverse_usage(order_id, subscription_id)
        )
