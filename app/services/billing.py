from typing import List, Optional
from uuid import UUID

from app.models.invoice import Invoice, InvoiceType
from app.models.payment import Payment
from app.schemas.invoice import InvoiceDraftBody, InvoicePaymentUpdate, IssueAckRequest, IssueFinalRequest
from app.schemas.payment import OrderPaymentRequest
from app.services.invoice_drafting import InvoiceDraftingEngine
from app.services.invoice_issuance import InvoiceIssuer
from app.services.payments import PaymentRecorder
from app.services.pdf import DefaultPdfRenderer, PdfRenderer
from app.unit_of_work import UnitOfWork
from app.utils.errors import NotFoundError
from app.utils.timezone import Clock


class BillingService:
    def __init__(self, uow: UnitOfWork, clock: Optional[Clock] = None, pdf_renderer: Optional[PdfRenderer] = None):
        self.uow = uow
        self.clock = clock or Clock()
        self.pdf_renderer = pdf_renderer or DefaultPdfRenderer()

    # Drafting

    def save_ack_draft(self, order_id: UUID, body: InvoiceDraftBody) -> Invoice:
        return self.uow.run_in_transaction(
            lambda repos: InvoiceDraftingEngine(repos, self.clock).create_or_replace_draft(
                order_id, InvoiceType.ACKNOWLEDGEMENT, body
            )
        )

    def save_final_draft(self, order_id: UUID, body: InvoiceDraftBody) -> Invoice:
        return self.uow.run_in_transaction(
            lambda repos: InvoiceDraftingEngine(repos, self.clock).create_or_replace_draft(
                order_id, InvoiceType.FINAL, body
            )
        )

    # Issuance

    def issue_ack(self, order_id: UUID, options: Optional[IssueAckRequest] = None) -> Invoice:
        return self.uow.run_in_transaction(lambda repos: InvoiceIssuer(repos, self.clock).issue_ack(order_id, options))

    def issue_final(self, order_id: UUID, options: Optional[IssueFinalRequest] = None) -> Invoice:
        return self.uow.run_in_transaction(
            lambda repos: InvoiceIssuer(repos, self.clock).issue_final(order_id, options)
        )

    def void_invoice(self, invoice_id: UUID, reason: Optional[str] = None) -> Invoice:
        return self.uow.run_in_transaction(lambda repos: InvoiceIssuer(repos, self.clock).void(invoice_id, reason))

    def regenerate_pdf(self, invoice_id: UUID) -> Invoice:
        return self.uow.run_in_transaction(
            lambda repos: InvoiceIssuer(repos, self.clock).regenerate_pdf(invoice_id, self.pdf_renderer)
        )

    # Payments

    def record_order_payment(self, order_id: UUID, request: OrderPaymentRequest) -> Payment:
        return self.uow.run_in_transaction(
            lambda repos: PaymentRecorder(repos, self.clock).record_order_payment(order_id, request)
        )

    def update_subscription_and_payment(self, invoice_id: UUID, patch: InvoicePaymentUpdate) -> Invoice:
        return self.uow.run_in_transaction(
            lambda repos: PaymentRecorder(repos, self.clock).update_subscription_and_payment(invoice_id, patch)
        )

    # Reads

    def get_invoice(self, invoice_id: UUID) -> Invoice:
        def _get(repos):
            invoice = repos.invoices.get(invoice_id)
            if invoice is None:
                raise NotFoundError("Invoice not found", {"invoice_id": str(invoice_id)})
            return invoice

        return self.uow.run_in_transaction(_get)

    def list_invoices_for_order(self, order_id: UUID) -> List[Invoice]:
        def _list(repos):
            if repos.orders.get(order_id) is None:
                raise NotFoundError("Order not found", {"order_id": str(order_id)})
            return repos.invoices.list_for_order(order_id)

        return self.uow.run_in_transaction(_list)
