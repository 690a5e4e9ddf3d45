from fastapi import APIRouter, Depends, status
from typing import List, Optional
from uuid import UUID

from app.dependencies import get_billing_service
from app.schemas.invoice import (
    InvoiceDraftBody,
    InvoicePaymentUpdate,
    InvoiceResponse,
    IssueAckRequest,
    IssueFinalRequest,
    PdfResponse,
    VoidInvoiceRequest,
)
from app.services.billing import BillingService

router = APIRouter()


@router.put("/orders/{order_id}/invoices/ack/draft", response_model=InvoiceResponse)
def save_ack_draft(
    order_id: UUID,
    body: InvoiceDraftBody,
    billing: BillingService = Depends(get_billing_service)
):
    """Create or replace the acknowledgement draft"""
    return billing.save_ack_draft(order_id, body)


@router.put("/orders/{order_id}/invoices/final/draft", response_model=InvoiceResponse)
def save_final_draft(
    order_id: UUID,
    body: InvoiceDraftBody,
    billing: BillingService = Depends(get_billing_service)
):
    """Create or replace the final draft"""
    return billing.save_final_draft(order_id, body)


@router.post("/orders/{order_id}/invoices/ack/issue", response_model=InvoiceResponse)
def issue_ack_invoice(
    order_id: UUID,
    options: Optional[IssueAckRequest] = None,
    billing: BillingService = Depends(get_billing_service)
):
    """Issue the acknowledgement invoice, deducting subscription usage when asked"""
    return billing.issue_ack(order_id, options)


@router.post("/orders/{order_id}/invoices/final/issue", response_model=InvoiceResponse)
def issue_final_invoice(
    order_id: UUID,
    options: Optional[IssueFinalRequest] = None,
    billing: BillingService = Depends(get_billing_service)
):
    """Issue the final invoice"""
    return billing.issue_final(order_id, options)


@router.get("/orders/{order_id}/invoices", response_model=List[InvoiceResponse])
def list_order_invoices(
    order_id: UUID,
    billing: BillingService = Depends(get_billing_service)
):
    return billing.list_invoices_for_order(order_id)


@router.get("/invoices/{invoice_id}", response_model=InvoiceResponse)
def get_invoice(
    invoice_id: UUID,
    billing: BillingService = Depends(get_billing_service)
):
    return billing.get_invoice(invoice_id)


@router.post("/invoices/{invoice_id}/void", response_model=InvoiceResponse)
def void_invoice(
    invoice_id: UUID,
    body: Optional[VoidInvoiceRequest] = None,
    billing: BillingService = Depends(get_billing_service)
):
    """Void a draft or issued invoice. Subscription usage is not given back."""
    return billing.void_invoice(invoice_id, body.reason if body else None)


@router.post("/invoices/{invoice_id}/pdf", response_model=PdfResponse, status_code=status.HTTP_200_OK)
def regenerate_invoice_pdf(
    invoice_id: UUID,
    billing: BillingService = Depends(get_billing_service)
):
    invoice = billing.regenerate_pdf(invoice_id)
    return PdfResponse(invoice_id=invoice.id, pdf_url=invoice.pdf_url)


@router.patch("/invoices/{invoice_id}/payment", response_model=InvoiceResponse)
def update_invoice_payment(
    invoice_id: UUID,
    patch: InvoicePaymentUpdate,
    billing: BillingService = Depends(get_billing_service)
):
    """Update subscription/payment fields; only the fields sent are changed"""
    return billing.update_subscription_and_payment(invoice_id, patch)
