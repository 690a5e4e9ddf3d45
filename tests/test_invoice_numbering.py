from datetime import datetime, timedelta

import pytest
import pytz

from app.models.invoice import InvoiceStatus, InvoiceType
from app.services.invoice_numbering import mint_invoice_code
from app.utils.timezone import business_date_key, business_day_utc_range


def mint(uow, invoice_type, now):
    return uow.run_in_transaction(lambda repos: mint_invoice_code(repos.invoices, invoice_type, now))


def test_business_date_follows_india_time():
    # 19:00 UTC is already the next day in India
    assert business_date_key(datetime(2026, 3, 10, 19, 0, tzinfo=pytz.utc)) == "2026-03-11"
    assert business_date_key(datetime(2026, 3, 10, 18, 29, tzinfo=pytz.utc)) == "2026-03-10"


def test_business_day_range_is_india_midnight_to_midnight():
    start, end = business_day_utc_range("2026-03-10")
    assert start == datetime(2026, 3, 9, 18, 30, tzinfo=pytz.utc)
    assert end - start == timedelta(days=1)


def test_first_code_of_the_day(uow, clock):
    assert mint(uow, InvoiceType.ACKNOWLEDGEMENT, clock.now()) == "ACK-20260310-0001"
    assert mint(uow, InvoiceType.FINAL, clock.now()) == "INV-20260310-0001"
    assert mint(uow, InvoiceType.SUBSCRIPTION, clock.now()) == "SUB-20260310-0001"


def test_sequence_counts_only_same_type_same_day(factory, uow, clock):
    order = factory.order()
    now = clock.now()
    factory.invoice(order_id=order.id, type=InvoiceType.ACKNOWLEDGEMENT, status=InvoiceStatus.ISSUED, code="ACK-20260310-0001", issued_at=now)
    factory.invoice(order_id=order.id, type=InvoiceType.ACKNOWLEDGEMENT, status=InvoiceStatus.VOID, code="ACK-20260310-0002", issued_at=now)
    factory.invoice(order_id=order.id, type=InvoiceType.FINAL, status=InvoiceStatus.ISSUED, code="INV-20260310-0001", issued_at=now)
    factory.invoice(order_id=order.id, type=InvoiceType.ACKNOWLEDGEMENT, status=InvoiceStatus.ISSUED, code="ACK-20260309-0001", issued_at=now - timedelta(days=1))
    factory.invoice(order_id=order.id, type=InvoiceType.ACKNOWLEDGEMENT, status=InvoiceStatus.DRAFT)

    assert mint(uow, InvoiceType.ACKNOWLEDGEMENT, now) == "ACK-20260310-0003"
    assert mint(uow, InvoiceType.FINAL, now) == "INV-20260310-0002"


def test_counters_by_date(factory, uow, clock):
    now = clock.now()
    factory.invoice(type=InvoiceType.SUBSCRIPTION, status=InvoiceStatus.ISSUED, code="SUB-20260310-0001", issued_at=now)

    def counts(repos):
        return (
            repos.invoices.count_subscription_invoices_issued_on_date("2026-03-10"),
            repos.invoices.count_order_invoices_issued_on_date("2026-03-10", InvoiceType.ACKNOWLEDGEMENT),
        )

    assert uow.run_in_transaction(counts) == (1, 0)


def test_order_counter_refuses_subscription_type(uow):
    with pytest.raises(ValueError):
        uow.run_in_transaction(
            lambda repos: repos.invoices.count_order_invoices_issued_on_date("2026-03-10", InvoiceType.SUBSCRIPTION)
        )
