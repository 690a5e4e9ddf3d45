from typing import List, Optional
from uuid import UUID

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from app.models.subscription import Subscription, SubscriptionPlan


class SubscriptionPlansRepo:
    def __init__(self, db: Session):
        self.db = db

    def get(self, plan_id: UUID) -> Optional[SubscriptionPlan]:
        return self.db.get(SubscriptionPlan, plan_id)


class SubscriptionsRepo:
    def __init__(self, db: Session):
        self.db = db

    def get(self, subscription_id: UUID, for_update: bool = False) -> Optional[Subscription]:
        """Load a subscription; for_update takes the row lock used by the ledger."""
        stmt = select(Subscription).where(Subscription.id == subscription_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def add(self, subscription: Subscription) -> Subscription:
        self.db.add(subscription)
        self.db.flush()
        return subscription

    def save(self, subscription: Subscription) -> Subscription:
        self.db.flush()
        return subscription

    def find_active_for_plan(self, user_id: UUID, plan_id: UUID) -> Optional[Subscription]:
        stmt = (
            select(Subscription)
            .where(
                Subscription.user_id == user_id,
                Subscription.plan_id == plan_id,
                Subscription.active.is_(True),
            )
            .order_by(Subscription.created_at.desc())
            .limit(1)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def has_ever_redeemed_plan(self, user_id: UUID, plan_id: UUID) -> bool:
        count = self.db.execute(
            select(func.count())
            .select_from(Subscription)
            .where(Subscription.user_id == user_id, Subscription.plan_id == plan_id)
        ).scalar_one()
        return count > 0

    def list_active_for_user(self, user_id: UUID, branch_id: Optional[UUID] = None) -> List[Subscription]:
        stmt = select(Subscription).where(Subscription.user_id == user_id, Subscription.active.is_(True))
        if branch_id is not None:
            stmt = stmt.where(Subscription.branch_id == branch_id)
        stmt = stmt.order_by(Subscription.validity_start_date)
        return list(self.db.execute(stmt).scalars().all())
