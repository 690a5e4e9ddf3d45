from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from app.models.invoice import Invoice, InvoiceOrderMode, InvoicePaymentStatus, InvoiceStatus
from app.models.order import Order, OrderPaymentStatus, OrderStatus
from app.models.payment import Payment, PaymentStatus
from app.models.subscription import RedemptionMode, Subscription
from app.schemas.invoice import (
    InvoiceDraftBody,
    InvoiceItemInput,
    InvoicePaymentUpdate,
    NewSubscriptionRequest,
)
from app.schemas.payment import OrderPaymentRequest
from app.services.billing import BillingService
from app.utils.errors import (
    DraftValidationError,
    InvalidStatusTransitionError,
    InvoiceNotDraftError,
    PlanAlreadyRedeemedError,
)
from app.utils.timezone import to_utc


@pytest.fixture
def billing(uow, clock):
    return BillingService(uow, clock)


def service_line():
    return InvoiceItemInput(type="SERVICE", name="Dry Clean", quantity=Decimal("2"), unit_price=25000)


def captured(amount=50000):
    return OrderPaymentRequest(provider="UPI", status=PaymentStatus.CAPTURED, amount_paise=amount)


def subscriptions_for(factory, user_id):
    return factory.query(lambda db: list(db.execute(select(Subscription).where(Subscription.user_id == user_id)).scalars()))


def order_with_new_subscription(factory, billing, clock, plan, quantity=1):
    order = factory.order()
    billing.save_ack_draft(
        order.id,
        InvoiceDraftBody(
            order_mode=InvoiceOrderMode.BOTH,
            items=[service_line()],
            new_subscriptions=[
                NewSubscriptionRequest(plan_id=plan.id, validity_start_date=clock.now(), quantity_months=quantity)
            ],
        ),
    )
    ack = billing.issue_ack(order.id)
    factory.set_order_status(order.id, OrderStatus.DELIVERED)
    billing.save_final_draft(order.id, InvoiceDraftBody(items=[service_line()]))
    return order, ack


def test_payment_after_final_creates_pending_subscription(factory, billing, clock):
    plan = factory.plan(name="Gold", price_paise=40000, max_pickups=4, validity_days=30)
    order, ack = order_with_new_subscription(factory, billing, clock, plan, quantity=2)
    final = billing.issue_final(order.id)
    assert final.payment_status == InvoicePaymentStatus.DUE
    assert subscriptions_for(factory, order.user_id) == []

    billing.record_order_payment(order.id, captured())

    subs = subscriptions_for(factory, order.user_id)
    assert len(subs) == 1
    sub = subs[0]
    assert sub.remaining_pickups == 8
    assert sub.total_max_pickups == 8
    assert sub.total_kg_limit == Decimal("100")
    assert to_utc(sub.expiry_date) == clock.now() + timedelta(days=60)
    assert factory.get(Invoice, ack.id).new_subscription_fulfilled_at is not None
    assert factory.get(Invoice, final.id).payment_status == InvoicePaymentStatus.PAID
    fresh_order = factory.get(Order, order.id)
    assert fresh_order.payment_status == OrderPaymentStatus.CAPTURED
    assert fresh_order.subscription_id == sub.id
    payment = factory.query(lambda db: db.execute(select(Payment).where(Payment.subscription_id == sub.id)).scalar_one())
    assert payment.status == PaymentStatus.CAPTURED
    assert payment.amount == 80000


def test_payment_before_final_defers_fulfillment_to_issuance(factory, billing, clock):
    plan = factory.plan()
    order, _ = order_with_new_subscription(factory, billing, clock, plan)

    billing.record_order_payment(order.id, captured())
    assert subscriptions_for(factory, order.user_id) == []

    final = billing.issue_final(order.id)

    assert final.status == InvoiceStatus.ISSUED
    assert len(subscriptions_for(factory, order.user_id)) == 1


def test_fulfillment_runs_once(factory, billing, clock):
    plan = factory.plan()
    order, _ = order_with_new_subscription(factory, billing, clock, plan)
    billing.issue_final(order.id)

    billing.record_order_payment(order.id, captured())
    billing.record_order_payment(order.id, captured())

    assert len(subscriptions_for(factory, order.user_id)) == 1


def test_active_subscription_on_same_plan_is_extended(factory, billing, clock):
    plan = factory.plan(max_pickups=4, validity_days=30)
    order, _ = order_with_new_subscription(factory, billing, clock, plan)
    existing = factory.subscription(plan, user_id=order.user_id, remaining_pickups=1)
    billing.issue_final(order.id)

    billing.record_order_payment(order.id, captured())

    subs = subscriptions_for(factory, order.user_id)
    assert [s.id for s in subs] == [existing.id]
    assert subs[0].remaining_pickups == 5
    assert subs[0].total_max_pickups == 8
    assert to_utc(subs[0].expiry_date) == to_utc(existing.expiry_date) + timedelta(days=30)


def test_single_use_plan_cannot_be_redeemed_twice(factory, billing, clock):
    plan = factory.plan(redemption_mode=RedemptionMode.SINGLE_USE)
    order, _ = order_with_new_subscription(factory, billing, clock, plan)
    factory.subscription(plan, user_id=order.user_id, active=False)
    billing.issue_final(order.id)

    with pytest.raises(PlanAlreadyRedeemedError):
        billing.record_order_payment(order.id, captured())

    assert factory.get(Order, order.id).payment_status == OrderPaymentStatus.PENDING


def test_failed_payment_marks_order_failed(factory, billing):
    order = factory.order()

    payment = billing.record_order_payment(
        order.id, OrderPaymentRequest(provider="CARD", status=PaymentStatus.FAILED, amount_paise=1000, note="declined")
    )

    assert payment.failure_reason == "declined"
    assert factory.get(Order, order.id).payment_status == OrderPaymentStatus.FAILED


def test_unknown_payment_status_is_rejected(factory, billing):
    order = factory.order()
    with pytest.raises(DraftValidationError):
        billing.record_order_payment(order.id, OrderPaymentRequest(provider="UPI", status="SETTLED", amount_paise=1))


def test_marking_final_paid_captures_order_payment(factory, billing, clock):
    plan = factory.plan()
    order, _ = order_with_new_subscription(factory, billing, clock, plan)
    final = billing.issue_final(order.id)

    updated = billing.update_subscription_and_payment(final.id, InvoicePaymentUpdate(payment_status="PAID", provider="CASH"))

    assert updated.payment_status == InvoicePaymentStatus.PAID
    assert factory.get(Order, order.id).payment_status == OrderPaymentStatus.CAPTURED
    assert len(subscriptions_for(factory, order.user_id)) == 1


def test_subscription_fields_only_change_on_drafts(factory, billing):
    order = factory.order()
    draft = billing.save_ack_draft(order.id, InvoiceDraftBody(items=[service_line()]))

    patched = billing.update_subscription_and_payment(draft.id, InvoicePaymentUpdate(subscription_usage_kg=Decimal("3")))
    assert patched.subscription_usage_kg == Decimal("3")
    assert patched.payment_status == InvoicePaymentStatus.DUE

    issued = billing.issue_ack(order.id)
    with pytest.raises(InvoiceNotDraftError):
        billing.update_subscription_and_payment(issued.id, InvoicePaymentUpdate(subscription_usage_items=2))


def test_override_needs_a_reason(factory, billing):
    order = factory.order()
    draft = billing.save_ack_draft(order.id, InvoiceDraftBody(items=[service_line()]))

    with pytest.raises(DraftValidationError):
        billing.update_subscription_and_payment(draft.id, InvoicePaymentUpdate(payment_status="OVERRIDDEN"))

    updated = billing.update_subscription_and_payment(
        draft.id, InvoicePaymentUpdate(payment_status="OVERRIDDEN", payment_override_reason="staff order")
    )
    assert updated.payment_status == InvoicePaymentStatus.OVERRIDDEN


def test_final_issued_after_payment_is_already_paid(factory, billing, clock):
    plan = factory.plan()
    order, _ = order_with_new_subscription(factory, billing, clock, plan)
    billing.record_order_payment(order.id, captured())

    final = billing.issue_final(order.id)

    assert final.payment_status == InvoicePaymentStatus.PAID


def test_void_invoice_cannot_be_marked_paid(factory, billing):
    order = factory.order()
    billing.save_ack_draft(order.id, InvoiceDraftBody(items=[service_line()]))
    ack = billing.issue_ack(order.id)
    billing.void_invoice(ack.id, "duplicate")

    with pytest.raises(InvalidStatusTransitionError):
        billing.update_subscription_and_payment(ack.id, InvoicePaymentUpdate(payment_status="PAID", provider="CASH"))

    assert factory.get(Invoice, ack.id).payment_status == InvoicePaymentStatus.DUE
    assert factory.get(Order, order.id).payment_status != OrderPaymentStatus.CAPTURED
    assert factory.query(lambda db: db.execute(select(Payment).where(Payment.order_id == order.id)).first()) is None
