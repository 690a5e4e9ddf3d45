from decimal import Decimal
from typing import List, Optional, Tuple
from uuid import UUID

from loguru import logger

from app.models.subscription import Subscription, SubscriptionUsage
from app.schemas.subscription import SubscriptionOverride, UsageAmounts
from app.unit_of_work import TransactionRepos
from app.utils.errors import (
    DraftValidationError,
    InsufficientBalanceError,
    InvalidStatusTransitionError,
    NotFoundError,
    SubscriptionInactiveError,
    UsageAlreadyCorrectedError,
)
from app.utils.timezone import Clock, to_utc

ZERO_KG = Decimal("0")


def as_kg(value) -> Decimal:
    if value is None:
        return ZERO_KG
    return Decimal(str(value))


def effective_limits(subscription: Subscription) -> Tuple[Optional[int], Optional[Decimal], Optional[int]]:
    """(max_pickups, kg_limit, items_limit): captured totals first, plan as fallback"""
    plan = subscription.plan
    max_pickups = subscription.total_max_pickups
    if max_pickups is None and plan is not None:
        max_pickups = plan.max_pickups

    kg_limit = subscription.total_kg_limit
    if kg_limit is None and plan is not None:
        kg_limit = plan.kg_limit

    items_limit = subscription.total_items_limit
    if items_limit is None and plan is not None:
        items_limit = plan.items_limit

    return max_pickups, (as_kg(kg_limit) if kg_limit is not None else None), items_limit


def remaining_kg(subscription: Subscription) -> Optional[Decimal]:
    _, kg_limit, _ = effective_limits(subscription)
    if kg_limit is None:
        return None
    return max(ZERO_KG, kg_limit - as_kg(subscription.used_kg))


def remaining_items(subscription: Subscription) -> Optional[int]:
    _, _, items_limit = effective_limits(subscription)
    if items_limit is None:
        return None
    return max(0, items_limit - (subscription.used_items_count or 0))


def is_expired(subscription: Subscription, now) -> bool:
    return to_utc(subscription.expiry_date) <= now


def is_exhausted(subscription: Subscription, now) -> bool:
    """No pickups left, a kg/items limit fully used, or past expiry"""
    if subscription.remaining_pickups <= 0:
        return True
    kg_left = remaining_kg(subscription)
    if kg_left is not None and kg_left <= 0:
        return True
    items_left = remaining_items(subscription)
    if items_left is not None and items_left <= 0:
        return True
    return is_expired(subscription, now)


class SubscriptionLedger:
    def __init__(self, repos: TransactionRepos, clock: Clock):
        self.repos = repos
        self.clock = clock

    def _lock(self, subscription_id: UUID) -> Subscription:
        subscription = self.repos.subscriptions.get(subscription_id, for_update=True)
        if subscription is None:
            raise NotFoundError("Subscription not found", {"subscription_id": str(subscription_id)})
        return subscription

    def _check_balance(self, subscription: Subscription, pickups: int, kg: Decimal, items: int) -> None:
        _, kg_limit, items_limit = effective_limits(subscription)
        details = {"subscription_id": str(subscription.id)}

        if subscription.remaining_pickups - pickups < 0:
            raise InsufficientBalanceError(
                "Not enough pickups left on subscription",
                {**details, "remaining_pickups": subscription.remaining_pickups, "requested": pickups},
            )
        if kg_limit is not None and as_kg(subscription.used_kg) + kg > kg_limit:
            raise InsufficientBalanceError(
                "Weight exceeds subscription kg limit",
                {**details, "used_kg": str(subscription.used_kg), "kg_limit": str(kg_limit), "requested": str(kg)},
            )
        if items_limit is not None and subscription.used_items_count + items > items_limit:
            raise InsufficientBalanceError(
                "Items exceed subscription items limit",
                {
                    **details,
                    "used_items_count": subscription.used_items_count,
                    "items_limit": items_limit,
                    "requested": items,
                },
            )

    def _deactivate_if_exhausted(self, subscription: Subscription) -> None:
        now = self.clock.now()
        if subscription.active and is_exhausted(subscription, now):
            subscription.active = False
            subscription.inactivated_at = now
            logger.info(f"Subscription {subscription.id} exhausted; marked inactive")

    def _apply(self, subscription: Subscription, pickups: int, kg: Decimal, items: int) -> None:
        subscription.remaining_pickups -= pickups
        subscription.used_kg = as_kg(subscription.used_kg) + kg
        subscription.used_items_count += items
        self._deactivate_if_exhausted(subscription)
        self.repos.subscriptions.save(subscription)

    def deduct(
        self,
        subscription_id: UUID,
        order_id: UUID,
        amounts: UsageAmounts,
        invoice_id: Optional[UUID] = None,
    ) -> SubscriptionUsage:
        """
        Take one order's usage out of a subscription.

        Idempotent per (order_id, subscription_id): when a usage row already
        exists it is returned and balances are left alone. A reversed row is
        charged again.
        """
        if self.repos.orders.get(order_id) is None:
            raise NotFoundError("Order not found", {"order_id": str(order_id)})

        subscription = self._lock(subscription_id)

        existing = self.repos.usages.get(order_id, subscription_id, for_update=True)
        if existing is not None and existing.reversed_at is None:
            logger.debug(f"Usage for order {order_id} on subscription {subscription_id} already recorded")
            return existing

        pickups = amounts.pickups
        kg = as_kg(amounts.kg)
        items = amounts.items

        self._check_balance(subscription, pickups, kg, items)

        now = self.clock.now()
        if not subscription.active or is_expired(subscription, now):
            logger.warning(f"Deduction refused: subscription {subscription_id} is inactive or expired")
            raise SubscriptionInactiveError(
                "Subscription is inactive or expired", {"subscription_id": str(subscription_id)}
            )

        if existing is not None:
            # Reversed row: charge it again
            existing.invoice_id = invoice_id
            existing.deducted_pickups = pickups
            existing.deducted_kg = kg
            existing.deducted_items_count = items
            existing.reversed_at = None
            existing.corrected_at = None
            self.repos.usages.save(existing)
            self._apply(subscription, pickups, kg, items)
            logger.info(f"Reinstated reversed usage for order {order_id} on subscription {subscription_id}")
            return existing

        usage, created = self.repos.usages.insert_once(
            SubscriptionUsage(
                subscription_id=subscription_id,
                order_id=order_id,
                invoice_id=invoice_id,
                deducted_pickups=pickups,
                deducted_kg=kg,
                deducted_items_count=items,
                created_at=now,
            )
        )
        if not created:
            logger.debug(f"Concurrent deduction for order {order_id} won the race; returning its row")
            return usage

        self._apply(subscription, pickups, kg, items)
        logger.info(
            f"Deducted {pickups} pickup(s), {kg} kg, {items} item(s) from subscription {subscription_id} "
            f"for order {order_id}"
        )
        return usage

    def correct_usage(
        self,
        order_id: UUID,
        subscription_id: UUID,
        new_kg: Optional[Decimal] = None,
        new_items: Optional[int] = None,
    ) -> SubscriptionUsage:
        """
        Replace a usage row's kg/items with the actual figures.

        Only the difference moves the subscription balance. None keeps the
        recorded value. A row can be corrected once.
        """
        subscription = self._lock(subscription_id)
        usage = self.repos.usages.get(order_id, subscription_id, for_update=True)
        if usage is None:
            raise NotFoundError(
                "No usage recorded for this order and subscription",
                {"order_id": str(order_id), "subscription_id": str(subscription_id)},
            )
        if usage.reversed_at is not None:
            raise InvalidStatusTransitionError("Usage has been reversed", {"usage_id": str(usage.id)})
        if usage.corrected_at is not None:
            raise UsageAlreadyCorrectedError("Usage already corrected", {"usage_id": str(usage.id)})

        target_kg = as_kg(usage.deducted_kg) if new_kg is None else as_kg(new_kg)
        target_items = usage.deducted_items_count if new_items is None else new_items
        if target_kg < 0 or target_items < 0:
            raise DraftValidationError("Corrected usage must be non-negative")

        delta_kg = target_kg - as_kg(usage.deducted_kg)
        delta_items = target_items - usage.deducted_items_count
        if delta_kg == 0 and delta_items == 0:
            logger.debug(f"Usage for order {order_id} unchanged; nothing to correct")
            return usage

        self._check_balance(subscription, 0, delta_kg, delta_items)
        if as_kg(subscription.used_kg) + delta_kg < 0 or subscription.used_items_count + delta_items < 0:
            raise DraftValidationError("Correction would make subscription usage negative")

        subscription.used_kg = as_kg(subscription.used_kg) + delta_kg
        subscription.used_items_count += delta_items
        usage.deducted_kg = target_kg
        usage.deducted_items_count = target_items
        usage.corrected_at = self.clock.now()

        # A smaller actual never brings an inactive subscription back
        if delta_kg > 0 or delta_items > 0:
            self._deactivate_if_exhausted(subscription)

        self.repos.subscriptions.save(subscription)
        self.repos.usages.save(usage)
        logger.info(
            f"Corrected usage for order {order_id} on subscription {subscription_id}: "
            f"kg {delta_kg:+}, items {delta_items:+}"
        )
        return usage

    def reverse_usage(self, order_id: UUID, subscription_id: UUID) -> SubscriptionUsage:
        """Credit a usage row back to its subscription. Running it twice changes nothing."""
        subscription = self._lock(subscription_id)
        usage = self.repos.usages.get(order_id, subscription_id, for_update=True)
        if usage is None:
            raise NotFoundError(
                "No usage recorded for this order and subscription",
                {"order_id": str(order_id), "subscription_id": str(subscription_id)},
            )
        if usage.reversed_at is not None:
            logger.debug(f"Usage {usage.id} already reversed")
            return usage

        subscription.remaining_pickups += usage.deducted_pickups
        subscription.used_kg = max(ZERO_KG, as_kg(subscription.used_kg) - as_kg(usage.deducted_kg))
        subscription.used_items_count = max(0, subscription.used_items_count - usage.deducted_items_count)
        usage.reversed_at = self.clock.now()

        self.repos.subscriptions.save(subscription)
        self.repos.usages.save(usage)
        logger.info(f"Reversed usage for order {order_id} on subscription {subscription_id}")
        return usage

    def list_usage_for_subscription(self, subscription_id: UUID) -> List[SubscriptionUsage]:
        if self.repos.subscriptions.get(subscription_id) is None:
            raise NotFoundError("Subscription not found", {"subscription_id": str(subscription_id)})
        return self.repos.usages.list_for_subscription(subscription_id)

    def override(self, subscription_id: UUID, changes: SubscriptionOverride) -> Subscription:
        """Admin correction of balances, expiry or the active flag"""
        subscription = self._lock(subscription_id)
        max_pickups, kg_limit, items_limit = effective_limits(subscription)

        if changes.remaining_pickups is not None:
            if changes.remaining_pickups < 0:
                raise DraftValidationError("remaining_pickups must be >= 0")
            if max_pickups is not None and changes.remaining_pickups > max_pickups:
                raise DraftValidationError(
                    "remaining_pickups exceeds the subscription's pickup total", {"max_pickups": max_pickups}
                )
        if changes.used_kg is not None:
            if changes.used_kg < 0:
                raise DraftValidationError("used_kg must be >= 0")
            if kg_limit is not None and changes.used_kg > kg_limit:
                raise DraftValidationError("used_kg exceeds the kg limit", {"kg_limit": str(kg_limit)})
        if changes.used_items_count is not None:
            if changes.used_items_count < 0:
                raise DraftValidationError("used_items_count must be >= 0")
            if items_limit is not None and changes.used_items_count > items_limit:
                raise DraftValidationError("used_items_count exceeds the items limit", {"items_limit": items_limit})

        if changes.remaining_pickups is not None:
            subscription.remaining_pickups = changes.remaining_pickups
        if changes.used_kg is not None:
            subscription.used_kg = as_kg(changes.used_kg)
        if changes.used_items_count is not None:
            subscription.used_items_count = changes.used_items_count
        if changes.expiry_date is not None:
            subscription.expiry_date = to_utc(changes.expiry_date)
        if changes.active is not None:
            subscription.active = changes.active
            subscription.inactivated_at = None if changes.active else self.clock.now()

        self.repos.subscriptions.save(subscription)
        logger.warning(
            f"Admin override on subscription {subscription_id}: "
            f"{changes.model_dump(exclude_none=True, mode='json')}"
        )
        return subscription