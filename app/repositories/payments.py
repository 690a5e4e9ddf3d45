from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.payment import Payment


class PaymentsRepo:
    def __init__(self, db: Session):
        self.db = db

    def get_for_order(self, order_id: UUID) -> Optional[Payment]:
        return self.db.execute(select(Payment).where(Payment.order_id == order_id)).scalar_one_or_none()

    def get_for_subscription(self, subscription_id: UUID) -> Optional[Payment]:
        return self.db.execute(
            select(Payment).where(Payment.subscription_id == subscription_id)
        ).scalar_one_or_none()

    def upsert_for_order(
        self,
        order_id: UUID,
        provider: str,
        status: str,
        amount: int,
        failure_reason: Optional[str] = None,
    ) -> Payment:
        payment = self.get_for_order(order_id)
        if payment is None:
            payment = Payment(order_id=order_id)
            self.db.add(payment)
        payment.provider = provider
        payment.status = status
        payment.amount = amount
        payment.failure_reason = failure_reason
        self.db.flush()
        return payment

    def upsert_for_subscription(self, subscription_id: UUID, provider: str, status: str, amount: int) -> Payment:
        payment = self.get_for_subscription(subscription_id)
        if payment is None:
            payment = Payment(subscription_id=subscription_id)
            self.db.add(payment)
        payment.provider = provider
        payment.status = status
        payment.amount = amount
        self.db.flush()
        return payment
