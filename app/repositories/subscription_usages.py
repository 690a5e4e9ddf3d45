from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.subscription import SubscriptionUsage


class SubscriptionUsageRepo:
    def __init__(self, db: Session):
        self.db = db

    def get(self, order_id: UUID, subscription_id: UUID, for_update: bool = False) -> Optional[SubscriptionUsage]:
        stmt = select(SubscriptionUsage).where(
            SubscriptionUsage.order_id == order_id,
            SubscriptionUsage.subscription_id == subscription_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def list_for_subscription(self, subscription_id: UUID) -> List[SubscriptionUsage]:
        stmt = (
            select(SubscriptionUsage)
            .where(SubscriptionUsage.subscription_id == subscription_id)
            .order_by(SubscriptionUsage.created_at, SubscriptionUsage.id)
        )
        return list(self.db.execute(stmt).scalars().all())

    def insert_once(self, usage: SubscriptionUsage) -> Tuple[SubscriptionUsage, bool]:
        """
        Insert a usage row unless one exists for (order_id, subscription_id).

        Returns (row, created). The insert runs in a SAVEPOINT so losing a
        unique-constraint race does not poison the outer transaction.
        """
        try:
            with self.db.begin_nested():
                self.db.add(usage)
                self.db.flush()
        except IntegrityError:
            existing = self.get(usage.order_id, usage.subscription_id)
            if existing is None:
                raise
            return existing, False
        return usage, True

    def save(self, usage: SubscriptionUsage) -> SubscriptionUsage:
        self.db.flush()
        return usage
