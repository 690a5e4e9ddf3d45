from fastapi import Depends

from app.services.billing import BillingService
from app.services.pdf import DefaultPdfRenderer, PdfRenderer
from app.services.subscriptions import SubscriptionService
from app.unit_of_work import UnitOfWork
from app.utils.timezone import Clock

_unit_of_work = UnitOfWork()


def get_unit_of_work() -> UnitOfWork:
    """Process-wide unit of work over the configured database"""
    return _unit_of_work


def get_clock() -> Clock:
    return Clock()


def get_pdf_renderer() -> PdfRenderer:
    return DefaultPdfRenderer()


def get_billing_service(
    uow: UnitOfWork = Depends(get_unit_of_work),
    clock: Clock = Depends(get_clock),
    pdf_renderer: PdfRenderer = Depends(get_pdf_renderer),
) -> BillingService:
    return BillingService(uow, clock, pdf_renderer)


def get_subscription_service(
    uow: UnitOfWork = Depends(get_unit_of_work),
    clock: Clock = Depends(get_clock),
) -> SubscriptionService:
    return SubscriptionService(uow, clock)
