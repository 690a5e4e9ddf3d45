from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Tuple
from uuid import UUID

from loguru import logger

from app.config import settings
from app.models.invoice import (
    Invoice,
    InvoiceItem,
    InvoiceOrderMode,
    InvoiceStatus,
    InvoiceType,
)
from app.models.order import Order, OrderStatus
from app.schemas.invoice import (
    InvoiceDraftBody,
    InvoiceItemInput,
    NewSubscriptionEntry,
    SubscriptionSelection,
    dump_new_subscription_snapshot,
)
from app.unit_of_work import TransactionRepos
from app.utils.errors import (
    DraftValidationError,
    InvoiceAlreadyIssuedError,
    NotFoundError,
    OrderStatusNotAllowedError,
)
from app.utils.timezone import Clock

ORDER_MODES = (InvoiceOrderMode.INDIVIDUAL, InvoiceOrderMode.SUBSCRIPTION_ONLY, InvoiceOrderMode.BOTH)

# Order lifecycle in progress order; CANCELLED is outside it
ORDER_STATUS_SEQUENCE = [
    OrderStatus.BOOKING_CONFIRMED,
    OrderStatus.PICKUP_SCHEDULED,
    OrderStatus.PICKED_UP,
    OrderStatus.IN_PROCESSING,
    OrderStatus.READY,
    OrderStatus.OUT_FOR_DELIVERY,
    OrderStatus.DELIVERED,
]

FEE_ITEM_TYPE = "FEE"


def ack_allowed(order: Order) -> bool:
    return order.status in ORDER_STATUS_SEQUENCE


def final_allowed(order: Order) -> bool:
    if order.status in (OrderStatus.OUT_FOR_DELIVERY, OrderStatus.DELIVERED):
        return True
    return order.order_source == "WALK_IN" and order.status == OrderStatus.READY


def ensure_order_status_allows(order: Order, invoice_type: str) -> None:
    allowed = ack_allowed(order) if invoice_type == InvoiceType.ACKNOWLEDGEMENT else final_allowed(order)
    if not allowed:
        raise OrderStatusNotAllowedError(
            f"{invoice_type} invoice not allowed while order is {order.status}",
            {"order_id": str(order.id), "order_status": order.status},
        )


def line_amount(item: InvoiceItemInput) -> int:
    """Explicit amount wins; otherwise quantity x unit price rounded half up"""
    if item.amount is not None:
        return item.amount
    return int((Decimal(str(item.quantity)) * item.unit_price).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def calculate_invoice_totals(amounts: List[int], tax: int, discount: int) -> Tuple[int, int]:
    """(subtotal, total); total never drops below zero"""
    subtotal = sum(amounts)
    return subtotal, max(0, subtotal + tax - discount)


def dump_selections(
    selections: List[SubscriptionSelection],
) -> Optional[list]:
    if not selections:
        return None
    return [
        {
            "subscription_id": str(s.subscription_id),
            "kg": str(s.kg) if s.kg is not None else None,
            "items": s.items,
        }
        for s in selections
    ]


def load_selections(raw: Optional[list]) -> List[SubscriptionSelection]:
    return [SubscriptionSelection.model_validate(entry) for entry in (raw or [])]


class InvoiceDraftingEngine:
    def __init__(self, repos: TransactionRepos, clock: Clock):
        self.repos = repos
        self.clock = clock

    def create_or_replace_draft(self, order_id: UUID, invoice_type: str, body: InvoiceDraftBody) -> Invoice:
        """Create the DRAFT for (order, type) or replace the one that exists"""
        if invoice_type not in (InvoiceType.ACKNOWLEDGEMENT, InvoiceType.FINAL):
            raise DraftValidationError(f"Cannot draft a {invoice_type} invoice")

        order = self.repos.orders.get(order_id, for_update=True)
        if order is None:
            raise NotFoundError("Order not found", {"order_id": str(order_id)})
        ensure_order_status_allows(order, invoice_type)

        invoice = self.repos.invoices.get_current(order_id, invoice_type, for_update=True)
        if invoice is not None and invoice.status == InvoiceStatus.ISSUED:
            raise InvoiceAlreadyIssuedError(
                f"{invoice_type} invoice already issued for this order",
                {"invoice_id": str(invoice.id), "code": invoice.code},
            )

        self._validate_amounts(body)

        if invoice_type == InvoiceType.ACKNOWLEDGEMENT:
            fields, items = self._build_ack(order, body)
        else:
            fields, items = self._build_final(order, body)

        if invoice is None:
            invoice = self.repos.invoices.add(
                Invoice(order_id=order.id, type=invoice_type, status=InvoiceStatus.DRAFT)
            )
            logger.info(f"Created {invoice_type} draft {invoice.id} for order {order_id}")
        else:
            logger.info(f"Replaced {invoice_type} draft {invoice.id} for order {order_id}")

        for name, value in fields.items():
            setattr(invoice, name, value)
        invoice.comments = body.comments
        invoice.branding_snapshot = body.branding_snapshot
        self.repos.invoices.replace_items(invoice, items)
        return invoice

    def _validate_amounts(self, body: InvoiceDraftBody) -> None:
        for index, item in enumerate(body.items):
            if item.quantity < 0 or item.unit_price < 0 or (item.amount is not None and item.amount < 0):
                raise DraftValidationError(
                    "Line item quantity, unit price and amount must be non-negative", {"item_index": index}
                )
        if body.tax < 0 or body.discount < 0:
            raise DraftValidationError("tax and discount must be non-negative")
        if body.subscription_usage_kg is not None and body.subscription_usage_kg < 0:
            raise DraftValidationError("subscription_usage_kg must be >= 0")
        if body.subscription_usage_items is not None and body.subscription_usage_items < 0:
            raise DraftValidationError("subscription_usage_items must be >= 0")
        for selection in body.subscription_selections:
            if (selection.kg is not None and selection.kg < 0) or (selection.items is not None and selection.items < 0):
                raise DraftValidationError(
                    "Selected subscription usage must be non-negative",
                    {"subscription_id": str(selection.subscription_id)},
                )

    def _validate_selections(self, order: Order, selections: List[SubscriptionSelection]) -> None:
        seen = set()
        for selection in selections:
            if selection.subscription_id in seen:
                raise DraftValidationError(
                    "Subscription selected more than once", {"subscription_id": str(selection.subscription_id)}
                )
            seen.add(selection.subscription_id)

            subscription = self.repos.subscriptions.get(selection.subscription_id)
            if subscription is None:
                raise NotFoundError("Subscription not found", {"subscription_id": str(selection.subscription_id)})
            if subscription.user_id != order.user_id:
                raise DraftValidationError(
                    "Subscription belongs to a different customer",
                    {"subscription_id": str(selection.subscription_id)},
                )

    def _validate_mode(
        self,
        mode: str,
        selections: List[SubscriptionSelection],
        has_items: bool,
        has_new_subscriptions: bool,
    ) -> None:
        if mode not in ORDER_MODES:
            raise DraftValidationError(f"Unknown order mode {mode}")
        if mode == InvoiceOrderMode.INDIVIDUAL and (selections or has_new_subscriptions):
            raise DraftValidationError("INDIVIDUAL order mode must not include subscriptions")
        if mode in (InvoiceOrderMode.SUBSCRIPTION_ONLY, InvoiceOrderMode.BOTH):
            if not selections and not has_new_subscriptions:
                raise DraftValidationError(f"{mode} requires at least one subscription")
        if mode == InvoiceOrderMode.SUBSCRIPTION_ONLY and has_items:
            raise DraftValidationError("SUBSCRIPTION_ONLY must not have manual line items")

    def _resolve_new_subscriptions(self, body: InvoiceDraftBody) -> List[NewSubscriptionEntry]:
        entries = []
        for request in body.new_subscriptions:
            plan = self.repos.plans.get(request.plan_id)
            if plan is None or not plan.active:
                raise NotFoundError("Subscription plan not found or inactive", {"plan_id": str(request.plan_id)})
            quantity = min(settings.MAX_SUBSCRIPTION_QUANTITY, max(1, request.quantity_months))
            entries.append(
                NewSubscriptionEntry(
                    plan_id=plan.id,
                    plan_name=plan.name,
                    validity_start_date=request.validity_start_date,
                    quantity_months=quantity,
                    price_paise=plan.price_paise * quantity,
                )
            )
        return entries

    def _line_items(self, body: InvoiceDraftBody, entries: List[NewSubscriptionEntry]) -> List[InvoiceItem]:
        items = [
            InvoiceItem(
                type=item.type,
                name=item.name,
                quantity=item.quantity,
                unit_price=item.unit_price,
                amount=line_amount(item),
                catalog_item_id=item.catalog_item_id,
                segment_category_id=item.segment_category_id,
                service_category_id=item.service_category_id,
            )
            for item in body.items
        ]
        for entry in entries:
            items.append(
                InvoiceItem(
                    type=FEE_ITEM_TYPE,
                    name=f"Subscription - {entry.plan_name}",
                    quantity=Decimal("1"),
                    unit_price=entry.price_paise,
                    amount=entry.price_paise,
                )
            )
        return items

    def _totals(self, mode: str, items: List[InvoiceItem], body: InvoiceDraftBody, buying: bool) -> dict:
        if mode == InvoiceOrderMode.SUBSCRIPTION_ONLY and not buying:
            return {"subtotal": 0, "tax": 0, "discount": 0, "total": 0}
        subtotal, total = calculate_invoice_totals([i.amount for i in items], body.tax, body.discount)
        return {"subtotal": subtotal, "tax": body.tax, "discount": body.discount, "total": total}

    def _build_ack(self, order: Order, body: InvoiceDraftBody) -> Tuple[dict, List[InvoiceItem]]:
        mode = body.order_mode or InvoiceOrderMode.INDIVIDUAL
        selections = body.subscription_selections
        self._validate_mode(mode, selections, bool(body.items), bool(body.new_subscriptions))
        self._validate_selections(order, selections)

        entries = self._resolve_new_subscriptions(body)
        items = self._line_items(body, entries)

        fields = {
            "order_mode": mode,
            "subscription_usages": dump_selections(selections),
            "subscription_id": selections[0].subscription_id if selections else None,
            "subscription_utilized": False,
            "subscription_usage_kg": body.subscription_usage_kg,
            "subscription_usage_items": body.subscription_usage_items,
            "new_subscription_snapshot": dump_new_subscription_snapshot(entries),
            **self._totals(mode, items, body, bool(entries)),
        }
        return fields, items

    def _build_final(self, order: Order, body: InvoiceDraftBody) -> Tuple[dict, List[InvoiceItem]]:
        if body.new_subscriptions:
            raise DraftValidationError("New subscriptions can only be added on the acknowledgement invoice")

        ack = self.repos.invoices.get_current(order.id, InvoiceType.ACKNOWLEDGEMENT)

        selections = body.subscription_selections
        mode = body.order_mode
        usage_kg = body.subscription_usage_kg
        usage_items = body.subscription_usage_items
        if ack is not None:
            if not selections:
                selections = load_selections(ack.subscription_usages)
            if mode is None:
                mode = ack.order_mode
            if usage_kg is None:
                usage_kg = ack.subscription_usage_kg
            if usage_items is None:
                usage_items = ack.subscription_usage_items
        mode = mode or InvoiceOrderMode.INDIVIDUAL

        # A subscription bought on the ACK satisfies the subscription modes here too
        bought_on_ack = (
            mode != InvoiceOrderMode.INDIVIDUAL and ack is not None and bool(ack.new_subscription_snapshot)
        )
        self._validate_mode(mode, selections, bool(body.items), bought_on_ack)
        self._validate_selections(order, selections)

        items = self._line_items(body, [])
        fields = {
            "order_mode": mode,
            "subscription_usages": dump_selections(selections),
            "subscription_id": selections[0].subscription_id if selections else None,
            "subscription_utilized": bool(ack is not None and ack.subscription_utilized),
            "subscription_usage_kg": usage_kg,
            "subscription_usage_items": usage_items,
            "new_subscription_snapshot": None,
            **self._totals(mode, items, body, False),
        }
        return fields, items
