from app.models.base import TimestampMixin
from app.models.order import Order
from app.models.subscription import SubscriptionPlan, Subscription, SubscriptionUsage
from app.models.invoice import Invoice, InvoiceItem
from app.models.payment import Payment

__all__ = [
    "TimestampMixin",
    "Order",
    "SubscriptionPlan",
    "Subscription",
    "SubscriptionUsage",
    "Invoice",
    "InvoiceItem",
    "Payment",
]
