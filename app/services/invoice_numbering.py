from datetime import datetime

from app.config import settings
from app.models.invoice import InvoiceType
from app.repositories.invoices import InvoicesRepo
from app.utils.timezone import business_date_key, compact_date

CODE_PREFIXES = {
    InvoiceType.ACKNOWLEDGEMENT: settings.ACK_CODE_PREFIX,
    InvoiceType.FINAL: settings.FINAL_CODE_PREFIX,
    InvoiceType.SUBSCRIPTION: settings.SUBSCRIPTION_CODE_PREFIX,
}


def mint_invoice_code(invoices: InvoicesRepo, invoice_type: str, now: datetime) -> str:
    """
    Next code for an invoice type on the current India business date:
    <PREFIX>-<YYYYMMDD>-<NNNN>. Voided invoices still hold their number.
    """
    date_key = business_date_key(now)
    if invoice_type == InvoiceType.SUBSCRIPTION:
        count = invoices.count_subscription_invoices_issued_on_date(date_key)
    else:
        count = invoices.count_order_invoices_issued_on_date(date_key, invoice_type)

    return f"{CODE_PREFIXES[invoice_type]}-{compact_date(date_key)}-{count + 1:04d}"
