import uuid
from datetime import timedelta
from decimal import Decimal

from loguru import logger

from app.models.invoice import (
    Invoice,
    InvoiceItem,
    InvoiceOrderMode,
    InvoicePaymentStatus,
    InvoiceStatus,
    InvoiceType,
)
from app.models.payment import PaymentProvider, PaymentStatus
from app.models.subscription import RedemptionMode, Subscription
from app.schemas.invoice import SubscriptionPurchaseSnapshot
from app.schemas.subscription import PurchaseSubscriptionRequest, PurchaseSubscriptionResponse
from app.services.invoice_numbering import mint_invoice_code
from app.services.pdf import default_pdf_url
from app.unit_of_work import TransactionRepos
from app.utils.errors import ActiveSubscriptionSamePlanError, NotFoundError, PlanAlreadyRedeemedError
from app.utils.timezone import Clock, to_business_tz


def purchase_subscription(
    repos: TransactionRepos, clock: Clock, request: PurchaseSubscriptionRequest
) -> PurchaseSubscriptionResponse:
    """
    Sell a plan outside any order.

    The subscription and its SUBSCRIPTION invoice are created together; the
    invoice skips drafting and is born ISSUED with a frozen purchase snapshot.
    """
    plan = repos.plans.get(request.plan_id)
    if plan is None or not plan.active:
        raise NotFoundError("Subscription plan not found or inactive", {"plan_id": str(request.plan_id)})

    if repos.subscriptions.find_active_for_plan(request.user_id, plan.id) is not None:
        raise ActiveSubscriptionSamePlanError(
            "Customer already has an active subscription on this plan", {"plan_id": str(plan.id)}
        )
    if plan.redemption_mode == RedemptionMode.SINGLE_USE and repos.subscriptions.has_ever_redeemed_plan(
        request.user_id, plan.id
    ):
        raise PlanAlreadyRedeemedError("Single-use plan already redeemed by this customer", {"plan_id": str(plan.id)})

    now = clock.now()
    expiry = now + timedelta(days=plan.validity_days)
    subscription = repos.subscriptions.add(
        Subscription(
            user_id=request.user_id,
            plan_id=plan.id,
            branch_id=request.branch_id,
            address_id=request.address_id,
            validity_start_date=now,
            expiry_date=expiry,
            active=True,
            remaining_pickups=plan.max_pickups,
            used_kg=Decimal("0"),
            used_items_count=0,
            total_max_pickups=plan.max_pickups,
            total_kg_limit=plan.kg_limit,
            total_items_limit=plan.items_limit,
        )
    )

    snapshot = SubscriptionPurchaseSnapshot(
        valid_till=to_business_tz(expiry).date().isoformat(),
        max_pickups=plan.max_pickups,
        kg_limit=float(plan.kg_limit) if plan.kg_limit is not None else None,
        items_limit=plan.items_limit,
    )
    is_free = plan.price_paise == 0
    invoice_id = uuid.uuid4()
    invoice = Invoice(
        id=invoice_id,
        subscription_id=subscription.id,
        type=InvoiceType.SUBSCRIPTION,
        status=InvoiceStatus.ISSUED,
        code=mint_invoice_code(repos.invoices, InvoiceType.SUBSCRIPTION, now),
        subtotal=plan.price_paise,
        tax=0,
        discount=0,
        total=plan.price_paise,
        order_mode=InvoiceOrderMode.SUBSCRIPTION_ONLY,
        subscription_utilized=False,
        payment_status=InvoicePaymentStatus.PAID if is_free else InvoicePaymentStatus.DUE,
        branding_snapshot=request.branding_snapshot,
        subscription_purchase_snapshot=snapshot.model_dump(),
        issued_at=now,
        pdf_url=default_pdf_url(invoice_id),
        items=[
            InvoiceItem(
                position=0,
                type="SUBSCRIPTION",
                name=f"Subscription - {plan.name}",
                quantity=Decimal("1"),
                unit_price=plan.price_paise,
                amount=plan.price_paise,
            )
        ],
    )
    repos.invoices.add(invoice)

    if is_free:
        repos.payments.upsert_for_subscription(subscription.id, PaymentProvider.CASH, PaymentStatus.CAPTURED, 0)

    logger.info(f"Sold plan {plan.name} to user {request.user_id}: subscription {subscription.id}, invoice {invoice.code}")
    return PurchaseSubscriptionResponse(
        subscription_id=subscription.id,
        invoice_id=invoice.id,
        invoice_code=invoice.code,
        plan_name=plan.name,
        validity_start_date=now,
        valid_till=expiry,
        remaining_pickups=subscription.remaining_pickups,
    )
