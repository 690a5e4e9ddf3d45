from pydantic import BaseModel, Field, TypeAdapter
from typing import Annotated, List, Literal, Optional, Union
from datetime import datetime
from uuid import UUID
from decimal import Decimal

from app.schemas import BaseSchema


class InvoiceItemInput(BaseModel):
    type: str
    name: str
    quantity: Decimal = Decimal("1")
    unit_price: int
    amount: Optional[int] = None  # defaults to quantity * unit_price
    catalog_item_id: Optional[str] = None
    segment_category_id: Optional[str] = None
    service_category_id: Optional[str] = None


class SubscriptionSelection(BaseModel):
    """One subscription chosen to cover this pickup. Amounts left unset fall back to the invoice-level usage."""
    subscription_id: UUID
    kg: Optional[Decimal] = None
    items: Optional[int] = None


class NewSubscriptionRequest(BaseModel):
    plan_id: UUID
    validity_start_date: datetime
    quantity_months: int = 1


class InvoiceDraftBody(BaseModel):
    items: List[InvoiceItemInput] = []
    tax: int = 0
    discount: int = 0
    comments: Optional[str] = None

    # ACK only
    order_mode: Optional[str] = None
    subscription_selections: List[SubscriptionSelection] = []
    new_subscriptions: List[NewSubscriptionRequest] = []

    # Declared subscription usage (estimate on ACK, actual on FINAL)
    subscription_usage_kg: Optional[Decimal] = None
    subscription_usage_items: Optional[int] = None

    branding_snapshot: Optional[dict] = None


class IssueAckRequest(BaseModel):
    apply_subscription: bool = False
    weight_kg: Optional[Decimal] = None
    items_count: Optional[int] = None
    branding_snapshot: Optional[dict] = None


class IssueFinalRequest(BaseModel):
    branding_snapshot: Optional[dict] = None


class VoidInvoiceRequest(BaseModel):
    reason: Optional[str] = None


class InvoicePaymentUpdate(BaseModel):
    """Partial update; only fields that are sent are applied."""
    payment_status: Optional[str] = None
    payment_override_reason: Optional[str] = None
    provider: str = "UPI"
    subscription_utilized: Optional[bool] = None
    subscription_id: Optional[UUID] = None
    subscription_usage_kg: Optional[Decimal] = None
    subscription_usage_items: Optional[int] = None


# New-subscription snapshot stored on an ACK invoice. Tagged so a single
# purchase and a basket of purchases never get confused when read back.

class NewSubscriptionEntry(BaseModel):
    plan_id: UUID
    plan_name: str
    validity_start_date: datetime
    quantity_months: int = 1
    price_paise: int


class SingleNewSubscription(BaseModel):
    kind: Literal["single"] = "single"
    entry: NewSubscriptionEntry


class NewSubscriptionList(BaseModel):
    kind: Literal["list"] = "list"
    entries: List[NewSubscriptionEntry]


NewSubscriptionSnapshot = Annotated[
    Union[SingleNewSubscription, NewSubscriptionList],
    Field(discriminator="kind"),
]

_snapshot_adapter = TypeAdapter(NewSubscriptionSnapshot)


def dump_new_subscription_snapshot(entries: List[NewSubscriptionEntry]) -> Optional[dict]:
    if not entries:
        return None
    if len(entries) == 1:
        return SingleNewSubscription(entry=entries[0]).model_dump(mode="json")
    return NewSubscriptionList(entries=entries).model_dump(mode="json")


def load_new_subscription_entries(raw) -> List[NewSubscriptionEntry]:
    if not raw:
        return []
    snapshot = _snapshot_adapter.validate_python(raw)
    if isinstance(snapshot, SingleNewSubscription):
        return [snapshot.entry]
    return list(snapshot.entries)


class SubscriptionPurchaseSnapshot(BaseModel):
    valid_till: str  # ISO date
    max_pickups: int
    kg_limit: Optional[float] = None
    items_limit: Optional[int] = None


class InvoiceItemResponse(BaseSchema):
    id: UUID
    position: int
    type: str
    name: str
    quantity: Decimal
    unit_price: int
    amount: int
    catalog_item_id: Optional[str] = None
    segment_category_id: Optional[str] = None
    service_category_id: Optional[str] = None


class InvoiceResponse(BaseSchema):
    id: UUID
    order_id: Optional[UUID] = None
    subscription_id: Optional[UUID] = None
    type: str
    status: str
    code: Optional[str] = None
    subtotal: int
    tax: int
    discount: int
    total: int
    order_mode: str
    subscription_utilized: bool
    subscription_usages: Optional[list] = None
    subscription_usage_kg: Optional[Decimal] = None
    subscription_usage_items: Optional[int] = None
    payment_status: str
    payment_override_reason: Optional[str] = None
    comments: Optional[str] = None
    branding_snapshot: Optional[dict] = None
    new_subscription_snapshot: Optional[dict] = None
    new_subscription_fulfilled_at: Optional[datetime] = None
    subscription_purchase_snapshot: Optional[dict] = None
    issued_at: Optional[datetime] = None
    voided_at: Optional[datetime] = None
    void_reason: Optional[str] = None
    pdf_url: Optional[str] = None
    items: List[InvoiceItemResponse] = []


class PdfResponse(BaseModel):
    invoice_id: UUID
    pdf_url: str
