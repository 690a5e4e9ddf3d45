from typing import Optional
from uuid import UUID

from loguru import logger

from app.models.invoice import Invoice, InvoicePaymentStatus, InvoiceStatus, InvoiceType
from app.models.order import Order, OrderPaymentStatus
from app.schemas.invoice import IssueAckRequest, IssueFinalRequest
from app.schemas.subscription import UsageAmounts
from app.services.invoice_drafting import dump_selections, ensure_order_status_allows, load_selections
from app.services.invoice_numbering import mint_invoice_code
from app.services.pdf import PdfRenderer, default_pdf_url
from app.services.subscription_fulfillment import fulfill_new_subscriptions
from app.services.subscription_ledger import SubscriptionLedger
from app.unit_of_work import TransactionRepos
from app.utils.errors import (
    AckNotIssuedError,
    InvalidStatusTransitionError,
    InvoiceAlreadyIssuedError,
    InvoiceNotDraftError,
    NotFoundError,
    SubscriptionNotPaidError,
)
from app.utils.timezone import Clock

SETTLED_PAYMENT_STATUSES = (InvoicePaymentStatus.PAID, InvoicePaymentStatus.OVERRIDDEN)


class InvoiceIssuer:
    def __init__(self, repos: TransactionRepos, clock: Clock, ledger: Optional[SubscriptionLedger] = None):
        self.repos = repos
        self.clock = clock
        self.ledger = ledger or SubscriptionLedger(repos, clock)

    def _load_order(self, order_id: UUID) -> Order:
        order = self.repos.orders.get(order_id, for_update=True)
        if order is None:
            raise NotFoundError("Order not found", {"order_id": str(order_id)})
        return order

    def _load_draft(self, order_id: UUID, invoice_type: str) -> Invoice:
        invoice = self.repos.invoices.get_current(order_id, invoice_type, for_update=True)
        if invoice is None or invoice.status != InvoiceStatus.DRAFT:
            raise InvoiceNotDraftError(
                f"No {invoice_type} draft to issue for this order",
                {
                    "order_id": str(order_id),
                    "status": invoice.status if invoice is not None else None,
                },
            )
        return invoice

    def _ensure_subscriptions_paid(self, order: Order, subscription_ids) -> None:
        ids = list(subscription_ids)
        if order.subscription_id is not None and order.subscription_id not in ids:
            ids.append(order.subscription_id)

        for subscription_id in ids:
            purchase_invoice = self.repos.invoices.get_for_subscription(subscription_id, InvoiceType.SUBSCRIPTION)
            if purchase_invoice is not None and purchase_invoice.payment_status not in SETTLED_PAYMENT_STATUSES:
                logger.warning(f"ACK for order {order.id} blocked: subscription {subscription_id} not paid")
                raise SubscriptionNotPaidError(
                    "Subscription payment must be confirmed before issuing the acknowledgement invoice",
                    {"subscription_id": str(subscription_id), "invoice_id": str(purchase_invoice.id)},
                )

    def _issue(self, invoice: Invoice) -> Invoice:
        now = self.clock.now()
        code = mint_invoice_code(self.repos.invoices, invoice.type, now)
        if not self.repos.invoices.mark_issued(invoice, code, now, default_pdf_url(invoice.id)):
            raise InvoiceAlreadyIssuedError(
                f"{invoice.type} invoice was issued concurrently", {"invoice_id": str(invoice.id)}
            )
        logger.info(f"Issued {invoice.type} invoice {code} for order {invoice.order_id}")
        return invoice

    def issue_ack(self, order_id: UUID, options: Optional[IssueAckRequest] = None) -> Invoice:
        options = options or IssueAckRequest()
        order = self._load_order(order_id)
        ensure_order_status_allows(order, InvoiceType.ACKNOWLEDGEMENT)
        invoice = self._load_draft(order_id, InvoiceType.ACKNOWLEDGEMENT)

        selections = load_selections(invoice.subscription_usages)
        self._ensure_subscriptions_paid(order, [s.subscription_id for s in selections])

        if options.apply_subscription and selections:
            # Invoice-level usage goes to the first subscription; extra ones carry their own figures
            kg = options.weight_kg if options.weight_kg is not None else invoice.subscription_usage_kg
            items = options.items_count if options.items_count is not None else invoice.subscription_usage_items

            applied = []
            for index, selection in enumerate(selections):
                sel_kg = kg if index == 0 else selection.kg
                sel_items = items if index == 0 else selection.items
                self.ledger.deduct(
                    selection.subscription_id,
                    order.id,
                    UsageAmounts(pickups=1, kg=sel_kg or 0, items=sel_items or 0),
                    invoice_id=invoice.id,
                )
                applied.append(selection.model_copy(update={"kg": sel_kg, "items": sel_items}))

            invoice.subscription_utilized = True
            invoice.subscription_id = selections[0].subscription_id
            invoice.subscription_usage_kg = kg
            invoice.subscription_usage_items = items
            invoice.subscription_usages = dump_selections(applied)
        else:
            # Only an actual deduction marks the invoice as using a subscription
            invoice.subscription_utilized = False
            invoice.subscription_id = selections[0].subscription_id if selections else None

        if options.branding_snapshot is not None:
            invoice.branding_snapshot = options.branding_snapshot
        if invoice.new_subscription_snapshot:
            logger.info(f"ACK for order {order_id} carries new subscriptions pending payment")

        return self._issue(invoice)

    def issue_final(self, order_id: UUID, options: Optional[IssueFinalRequest] = None) -> Invoice:
        options = options or IssueFinalRequest()
        order = self._load_order(order_id)
        ensure_order_status_allows(order, InvoiceType.FINAL)
        invoice = self._load_draft(order_id, InvoiceType.FINAL)

        ack = self.repos.invoices.get_current(order_id, InvoiceType.ACKNOWLEDGEMENT)
        if ack is None or ack.status != InvoiceStatus.ISSUED:
            raise AckNotIssuedError(
                "Acknowledgement invoice must be issued before the final invoice", {"order_id": str(order_id)}
            )

        # Only the primary subscription is trued up; extra selections keep their ACK figures
        if ack.subscription_utilized and ack.subscription_id is not None:
            usage = self.repos.usages.get(order_id, ack.subscription_id)
            if usage is not None and usage.reversed_at is None:
                self.ledger.correct_usage(
                    order_id,
                    ack.subscription_id,
                    new_kg=invoice.subscription_usage_kg,
                    new_items=invoice.subscription_usage_items,
                )
            invoice.subscription_utilized = True
            invoice.subscription_id = ack.subscription_id
        else:
            invoice.subscription_utilized = False

        if options.branding_snapshot is not None:
            invoice.branding_snapshot = options.branding_snapshot

        if invoice.total == 0:
            invoice.payment_status = InvoicePaymentStatus.PAID
            self.repos.orders.update_payment_status(order, OrderPaymentStatus.CAPTURED)
            logger.info(f"Final invoice for order {order_id} totals zero; marked paid")
        elif order.payment_status == OrderPaymentStatus.CAPTURED:
            invoice.payment_status = InvoicePaymentStatus.PAID

        self._issue(invoice)

        if order.payment_status == OrderPaymentStatus.CAPTURED:
            fulfill_new_subscriptions(self.repos, self.clock, order)
        else:
            logger.debug(f"Order {order_id} payment not captured; new subscriptions wait for payment")
        return invoice

    def void(self, invoice_id: UUID, reason: Optional[str] = None) -> Invoice:
        invoice = self.repos.invoices.get(invoice_id, for_update=True)
        if invoice is None:
            raise NotFoundError("Invoice not found", {"invoice_id": str(invoice_id)})
        if invoice.status == InvoiceStatus.VOID:
            raise InvalidStatusTransitionError("Invoice is already void", {"invoice_id": str(invoice_id)})

        was_issued = invoice.status == InvoiceStatus.ISSUED
        if not self.repos.invoices.mark_void(invoice, self.clock.now(), reason):
            raise InvalidStatusTransitionError("Invoice changed while voiding", {"invoice_id": str(invoice_id)})

        if was_issued and invoice.subscription_utilized:
            logger.warning(
                f"Voided invoice {invoice.code} used subscription {invoice.subscription_id}; "
                f"ledger usage left in place"
            )
        logger.info(f"Voided invoice {invoice_id}")
        return invoice

    def regenerate_pdf(self, invoice_id: UUID, renderer: PdfRenderer) -> Invoice:
        invoice = self.repos.invoices.get(invoice_id, for_update=True)
        if invoice is None:
            raise NotFoundError("Invoice not found", {"invoice_id": str(invoice_id)})
        invoice.pdf_url = renderer.render(invoice)
        self.repos.invoices.save(invoice)
        logger.info(f"Regenerated PDF for invoice {invoice_id}")
        return invoice
