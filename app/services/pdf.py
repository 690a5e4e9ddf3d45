from typing import Protocol
from uuid import UUID

from app.models.invoice import Invoice


def default_pdf_url(invoice_id: UUID) -> str:
    return f"/api/invoices/{invoice_id}/pdf"


class PdfRenderer(Protocol):
    """Turns an issued invoice into a document and returns where it lives"""

    def render(self, invoice: Invoice) -> str:
        ...


class DefaultPdfRenderer:
    """Points at the on-demand PDF endpoint; nothing is rendered ahead of time"""

    def render(self, invoice: Invoice) -> str:
        return default_pdf_url(invoice.id)
