from pydantic import BaseModel
from typing import Optional
from uuid import UUID

from app.schemas import BaseSchema


class OrderPaymentRequest(BaseModel):
    provider: str
    status: str  # CREATED, PENDING, CAPTURED, FAILED
    amount_paise: int
    note: Optional[str] = None


class PaymentResponse(BaseSchema):
    id: UUID
    order_id: Optional[UUID] = None
    subscription_id: Optional[UUID] = None
    provider: str
    status: str
    amount: int
    failure_reason: Optional[str] = None
