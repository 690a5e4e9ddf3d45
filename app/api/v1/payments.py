from fastapi import APIRouter, Depends
from uuid import UUID

from app.dependencies import get_billing_service
from app.schemas.payment import OrderPaymentRequest, PaymentResponse
from app.services.billing import BillingService

router = APIRouter()


@router.post("/orders/{order_id}/payment", response_model=PaymentResponse)
def record_order_payment(
    order_id: UUID,
    request: OrderPaymentRequest,
    billing: BillingService = Depends(get_billing_service)
):
    """Record a payment update for an order"""
    return billing.record_order_payment(order_id, request)
