from decimal import Decimal

import pytest

from app.models.order import Order, OrderPaymentStatus
from app.models.subscription import Subscription
from app.schemas.subscription import UsageAmounts
from app.services.subscription_ledger import SubscriptionLedger


def test_commits_every_write(factory, uow):
    order = factory.order()

    def work(repos):
        repos.orders.update_payment_status(repos.orders.get(order.id), OrderPaymentStatus.CAPTURED)

    uow.run_in_transaction(work)

    assert factory.get(Order, order.id).payment_status == OrderPaymentStatus.CAPTURED


def test_failure_discards_every_write(factory, uow, clock):
    plan = factory.plan()
    sub = factory.subscription(plan)
    order = factory.order(user_id=sub.user_id)

    def work(repos):
        SubscriptionLedger(repos, clock).deduct(sub.id, order.id, UsageAmounts(pickups=1, kg=Decimal("2")))
        repos.orders.update_payment_status(repos.orders.get(order.id), OrderPaymentStatus.FAILED)
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        uow.run_in_transaction(work)

    assert factory.get(Subscription, sub.id).remaining_pickups == 4
    assert factory.get(Order, order.id).payment_status == OrderPaymentStatus.PENDING


def test_nested_call_joins_the_outer_transaction(factory, uow):
    order = factory.order()
    seen = []

    def inner(repos):
        seen.append(repos)
        repos.orders.update_payment_status(repos.orders.get(order.id), OrderPaymentStatus.CAPTURED)

    def outer(repos):
        seen.append(repos)
        uow.run_in_transaction(inner)
        raise RuntimeError("outer fails after inner wrote")

    with pytest.raises(RuntimeError):
        uow.run_in_transaction(outer)

    assert seen[0] is seen[1]
    assert factory.get(Order, order.id).payment_status == OrderPaymentStatus.PENDING


def test_separate_calls_get_separate_sessions(uow):
    first = uow.run_in_transaction(lambda repos: repos.session)
    second = uow.run_in_transaction(lambda repos: repos.session)
    assert first is not second
