from datetime import timedelta
from typing import List

from loguru import logger

from app.models.invoice import InvoiceStatus, InvoiceType
from app.models.order import Order
from app.models.payment import PaymentProvider, PaymentStatus
from app.models.subscription import RedemptionMode, Subscription
from app.schemas.invoice import load_new_subscription_entries
from app.unit_of_work import TransactionRepos
from app.utils.errors import NotFoundError, PlanAlreadyRedeemedError
from app.utils.timezone import Clock, to_utc


def fulfill_new_subscriptions(repos: TransactionRepos, clock: Clock, order: Order) -> List[Subscription]:
    """
    Turn the subscriptions bought on an order's ACK into real subscriptions.

    Runs once per ACK: new_subscription_fulfilled_at marks it done. An active
    subscription on the same plan is extended instead of duplicated.
    """
    ack = repos.invoices.get_current(order.id, InvoiceType.ACKNOWLEDGEMENT, for_update=True)
    if ack is None or ack.status != InvoiceStatus.ISSUED or not ack.new_subscription_snapshot:
        return []
    if ack.new_subscription_fulfilled_at is not None:
        logger.debug(f"New subscriptions for order {order.id} already fulfilled")
        return []

    payment = repos.payments.get_for_order(order.id)
    provider = payment.provider if payment is not None else PaymentProvider.CASH
    now = clock.now()

    fulfilled = []
    for entry in load_new_subscription_entries(ack.new_subscription_snapshot):
        plan = repos.plans.get(entry.plan_id)
        if plan is None:
            raise NotFoundError("Subscription plan not found", {"plan_id": str(entry.plan_id)})

        quantity = entry.quantity_months
        existing = repos.subscriptions.find_active_for_plan(order.user_id, plan.id)

        if plan.redemption_mode == RedemptionMode.SINGLE_USE and (
            existing is not None or repos.subscriptions.has_ever_redeemed_plan(order.user_id, plan.id)
        ):
            raise PlanAlreadyRedeemedError(
                "Single-use plan already redeemed by this customer", {"plan_id": str(plan.id)}
            )

        if existing is not None and to_utc(existing.expiry_date) > now:
            existing.expiry_date = to_utc(existing.expiry_date) + timedelta(days=plan.validity_days * quantity)
            existing.remaining_pickups += plan.max_pickups * quantity
            existing.total_max_pickups = (existing.total_max_pickups or 0) + plan.max_pickups * quantity
            if plan.kg_limit is not None:
                existing.total_kg_limit = (existing.total_kg_limit or 0) + plan.kg_limit * quantity
            if plan.items_limit is not None:
                existing.total_items_limit = (existing.total_items_limit or 0) + plan.items_limit * quantity
            subscription = repos.subscriptions.save(existing)
            logger.info(f"Extended subscription {subscription.id} by {quantity} x plan {plan.name}")
        else:
            if existing is not None:
                existing.active = False
                existing.inactivated_at = now
                repos.subscriptions.save(existing)
            start = to_utc(entry.validity_start_date)
            subscription = repos.subscriptions.add(
                Subscription(
                    user_id=order.user_id,
                    plan_id=plan.id,
                    branch_id=order.branch_id,
                    validity_start_date=start,
                    expiry_date=start + timedelta(days=plan.validity_days * quantity),
                    active=True,
                    remaining_pickups=plan.max_pickups * quantity,
                    used_kg=0,
                    used_items_count=0,
                    total_max_pickups=plan.max_pickups * quantity,
                    total_kg_limit=plan.kg_limit * quantity if plan.kg_limit is not None else None,
                    total_items_limit=plan.items_limit * quantity if plan.items_limit is not None else None,
                )
            )
            logger.info(f"Created subscription {subscription.id} on plan {plan.name} for order {order.id}")

        repos.payments.upsert_for_subscription(subscription.id, provider, PaymentStatus.CAPTURED, entry.price_paise)
        fulfilled.append(subscription)

    ack.new_subscription_fulfilled_at = now
    repos.invoices.save(ack)
    if fulfilled and order.subscription_id is None:
        repos.orders.set_subscription(order, fulfilled[0].id)
    return fulfilled
