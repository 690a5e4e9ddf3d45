from decimal import Decimal
from uuid import UUID

from loguru import logger

from app.models.invoice import Invoice, InvoicePaymentStatus, InvoiceStatus, InvoiceType
from app.models.order import Order, OrderPaymentStatus
from app.models.payment import Payment, PaymentProvider, PaymentStatus
from app.schemas.invoice import InvoicePaymentUpdate
from app.schemas.payment import OrderPaymentRequest
from app.services.subscription_fulfillment import fulfill_new_subscriptions
from app.unit_of_work import TransactionRepos
from app.utils.errors import DraftValidationError, InvalidStatusTransitionError, InvoiceNotDraftError, NotFoundError
from app.utils.timezone import Clock

PAYMENT_STATUSES = (PaymentStatus.CREATED, PaymentStatus.PENDING, PaymentStatus.CAPTURED, PaymentStatus.FAILED)
PAYMENT_PROVIDERS = (PaymentProvider.CASH, PaymentProvider.UPI, PaymentProvider.CARD, PaymentProvider.RAZORPAY)
INVOICE_PAYMENT_STATUSES = (InvoicePaymentStatus.DUE, InvoicePaymentStatus.PAID, InvoicePaymentStatus.OVERRIDDEN)

SUBSCRIPTION_FIELDS = ("subscription_utilized", "subscription_id", "subscription_usage_kg", "subscription_usage_items")


def order_payment_status_for(payment_status: str) -> str:
    if payment_status == PaymentStatus.CAPTURED:
        return OrderPaymentStatus.CAPTURED
    if payment_status == PaymentStatus.FAILED:
        return OrderPaymentStatus.FAILED
    return OrderPaymentStatus.PENDING


class PaymentRecorder:
    def __init__(self, repos: TransactionRepos, clock: Clock):
        self.repos = repos
        self.clock = clock

    def _settle_order(self, order: Order) -> None:
        """Payment captured: the issued FINAL is paid and pending subscriptions go live"""
        final = self.repos.invoices.get_current(order.id, InvoiceType.FINAL, for_update=True)
        if final is None or final.status != InvoiceStatus.ISSUED:
            logger.debug(f"Order {order.id} paid before final invoice; fulfillment waits for issuance")
            return
        if final.payment_status != InvoicePaymentStatus.PAID:
            final.payment_status = InvoicePaymentStatus.PAID
            self.repos.invoices.save(final)
        fulfill_new_subscriptions(self.repos, self.clock, order)

    def record_order_payment(self, order_id: UUID, request: OrderPaymentRequest) -> Payment:
        if request.status not in PAYMENT_STATUSES:
            raise DraftValidationError(f"Unknown payment status {request.status}")
        if request.provider not in PAYMENT_PROVIDERS:
            raise DraftValidationError(f"Unknown payment provider {request.provider}")
        if request.amount_paise < 0:
            raise DraftValidationError("amount_paise must be >= 0")

        order = self.repos.orders.get(order_id, for_update=True)
        if order is None:
            raise NotFoundError("Order not found", {"order_id": str(order_id)})

        payment = self.repos.payments.upsert_for_order(
            order.id,
            request.provider,
            request.status,
            request.amount_paise,
            failure_reason=request.note if request.status == PaymentStatus.FAILED else None,
        )
        self.repos.orders.update_payment_status(order, order_payment_status_for(request.status))
        logger.info(f"Recorded {request.status} {request.provider} payment of {request.amount_paise} for order {order_id}")

        if request.status == PaymentStatus.CAPTURED:
            self._settle_order(order)
        return payment

    def update_subscription_and_payment(self, invoice_id: UUID, patch: InvoicePaymentUpdate) -> Invoice:
        """Apply only the fields present in the patch"""
        invoice = self.repos.invoices.get(invoice_id, for_update=True)
        if invoice is None:
            raise NotFoundError("Invoice not found", {"invoice_id": str(invoice_id)})
        if invoice.status == InvoiceStatus.VOID:
            raise InvalidStatusTransitionError("Void invoices cannot be updated", {"invoice_id": str(invoice_id)})

        fields = patch.model_fields_set
        if any(name in fields for name in SUBSCRIPTION_FIELDS) and invoice.status != InvoiceStatus.DRAFT:
            raise InvoiceNotDraftError(
                "Subscription details can only change while the invoice is a draft", {"invoice_id": str(invoice_id)}
            )
        if "payment_status" in fields and patch.payment_status not in INVOICE_PAYMENT_STATUSES:
            raise DraftValidationError(f"Unknown invoice payment status {patch.payment_status}")
        if patch.payment_status == InvoicePaymentStatus.OVERRIDDEN and not (
            patch.payment_override_reason or invoice.payment_override_reason
        ):
            raise DraftValidationError("An override reason is required")
        if patch.provider not in PAYMENT_PROVIDERS:
            raise DraftValidationError(f"Unknown payment provider {patch.provider}")
        if patch.subscription_usage_kg is not None and patch.subscription_usage_kg < 0:
            raise DraftValidationError("subscription_usage_kg must be >= 0")
        if patch.subscription_usage_items is not None and patch.subscription_usage_items < 0:
            raise DraftValidationError("subscription_usage_items must be >= 0")

        becoming_paid = (
            "payment_status" in fields
            and patch.payment_status == InvoicePaymentStatus.PAID
            and invoice.payment_status != InvoicePaymentStatus.PAID
        )

        for name in SUBSCRIPTION_FIELDS + ("payment_status", "payment_override_reason"):
            if name in fields:
                value = getattr(patch, name)
                if name == "subscription_usage_kg" and value is not None:
                    value = Decimal(str(value))
                setattr(invoice, name, value)
        self.repos.invoices.save(invoice)

        if becoming_paid:
            self._capture_invoice_payment(invoice, patch.provider)
        return invoice

    def _capture_invoice_payment(self, invoice: Invoice, provider: str) -> None:
        if invoice.type == InvoiceType.SUBSCRIPTION:
            self.repos.payments.upsert_for_subscription(
                invoice.subscription_id, provider, PaymentStatus.CAPTURED, invoice.total
            )
            logger.info(f"Subscription invoice {invoice.code} paid; payment captured")
            return

        order = self.repos.orders.get(invoice.order_id, for_update=True)
        if order is None:
            raise NotFoundError("Order not found", {"order_id": str(invoice.order_id)})
        self.repos.payments.upsert_for_order(order.id, provider, PaymentStatus.CAPTURED, invoice.total)
        self.repos.orders.update_payment_status(order, OrderPaymentStatus.CAPTURED)
        logger.info(f"Invoice {invoice.id} paid; order {order.id} payment captured")
        self._settle_order(order)
