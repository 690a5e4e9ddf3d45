from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.order import Order


class OrdersRepo:
    def __init__(self, db: Session):
        self.db = db

    def get(self, order_id: UUID, for_update: bool = False) -> Optional[Order]:
        stmt = select(Order).where(Order.id == order_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def update_payment_status(self, order: Order, payment_status: str) -> Order:
        order.payment_status = payment_status
        self.db.flush()
        return order

    def set_subscription(self, order: Order, subscription_id: UUID) -> Order:
        order.subscription_id = subscription_id
        self.db.flush()
        return order
