from sqlalchemy import Column, String, Boolean, ForeignKey, DateTime, Numeric, Integer, Uuid
from sqlalchemy.orm import relationship
import uuid

from app.database import Base
from app.models.base import TimestampMixin, JSONType


class InvoiceType:
    ACKNOWLEDGEMENT = "ACKNOWLEDGEMENT"
    FINAL = "FINAL"
    SUBSCRIPTION = "SUBSCRIPTION"


class InvoiceStatus:
    DRAFT = "DRAFT"
    ISSUED = "ISSUED"
    VOID = "VOID"


class InvoiceOrderMode:
    INDIVIDUAL = "INDIVIDUAL"
    SUBSCRIPTION_ONLY = "SUBSCRIPTION_ONLY"
    BOTH = "BOTH"


class InvoicePaymentStatus:
    DUE = "DUE"
    PAID = "PAID"
    OVERRIDDEN = "OVERRIDDEN"


class Invoice(Base, TimestampMixin):
    __tablename__ = "invoices"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id = Column(Uuid, ForeignKey("orders.id"))
    subscription_id = Column(Uuid, ForeignKey("subscriptions.id"))
    type = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default=InvoiceStatus.DRAFT)
    code = Column(String(50), unique=True)

    # Amounts in paise
    subtotal = Column(Integer, nullable=False, default=0)
    tax = Column(Integer, nullable=False, default=0)
    discount = Column(Integer, nullable=False, default=0)
    total = Column(Integer, nullable=False, default=0)

    # Subscription utilization
    order_mode = Column(String(20), nullable=False, default=InvoiceOrderMode.INDIVIDUAL)
    subscription_utilized = Column(Boolean, nullable=False, default=False)
    subscription_usages = Column(JSONType)  # [{"subscription_id", "kg", "items"}]
    subscription_usage_kg = Column(Numeric(10, 3))
    subscription_usage_items = Column(Integer)

    payment_status = Column(String(20), nullable=False, default=InvoicePaymentStatus.DUE)
    payment_override_reason = Column(String)
    comments = Column(String)

    # Frozen copies
    branding_snapshot = Column(JSONType)
    new_subscription_snapshot = Column(JSONType)
    new_subscription_fulfilled_at = Column(DateTime(timezone=True))
    subscription_purchase_snapshot = Column(JSONType)

    issued_at = Column(DateTime(timezone=True))
    voided_at = Column(DateTime(timezone=True))
    void_reason = Column(String)
    pdf_url = Column(String)

    # Relationships
    order = relationship("Order", back_populates="invoices")
    items = relationship(
        "InvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceItem.position",
        lazy="selectin",
    )


class InvoiceItem(Base):
    __tablename__ = "invoice_items"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    invoice_id = Column(Uuid, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False)
    position = Column(Integer, nullable=False)
    type = Column(String(30), nullable=False)  # SERVICE, FEE, ADDON, DRYCLEAN_ITEM, ...
    name = Column(String(255), nullable=False)
    quantity = Column(Numeric(10, 3), nullable=False)
    unit_price = Column(Integer, nullable=False)
    amount = Column(Integer, nullable=False)
    catalog_item_id = Column(String(64))
    segment_category_id = Column(String(64))
    service_category_id = Column(String(64))

    invoice = relationship("Invoice", back_populates="items")
