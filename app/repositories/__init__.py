from app.repositories.orders import OrdersRepo
from app.repositories.subscriptions import SubscriptionPlansRepo, SubscriptionsRepo
from app.repositories.subscription_usages import SubscriptionUsageRepo
from app.repositories.invoices import InvoicesRepo
from app.repositories.payments import PaymentsRepo

__all__ = [
    "OrdersRepo",
    "SubscriptionPlansRepo",
    "SubscriptionsRepo",
    "SubscriptionUsageRepo",
    "InvoicesRepo",
    "PaymentsRepo",
]
