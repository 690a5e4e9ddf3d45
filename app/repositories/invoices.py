from datetime import datetime
from typing import Iterable, List, Optional
from uuid import UUID

from sqlalchemy import select, update, func
from sqlalchemy.orm import Session

from app.models.invoice import Invoice, InvoiceItem, InvoiceStatus, InvoiceType
from app.utils.timezone import business_day_utc_range


class InvoicesRepo:
    def __init__(self, db: Session):
        self.db = db

    def get(self, invoice_id: UUID, for_update: bool = False) -> Optional[Invoice]:
        stmt = select(Invoice).where(Invoice.id == invoice_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def get_current(self, order_id: UUID, invoice_type: str, for_update: bool = False) -> Optional[Invoice]:
        """Latest non-VOID invoice of a type for an order."""
        stmt = (
            select(Invoice)
            .where(
                Invoice.order_id == order_id,
                Invoice.type == invoice_type,
                Invoice.status != InvoiceStatus.VOID,
            )
            .order_by(Invoice.created_at.desc())
            .limit(1)
        )
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def get_for_subscription(self, subscription_id: UUID, invoice_type: str) -> Optional[Invoice]:
        stmt = (
            select(Invoice)
            .where(
                Invoice.subscription_id == subscription_id,
                Invoice.type == invoice_type,
                Invoice.status != InvoiceStatus.VOID,
            )
            .order_by(Invoice.created_at.desc())
            .limit(1)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def list_for_order(self, order_id: UUID) -> List[Invoice]:
        stmt = select(Invoice).where(Invoice.order_id == order_id).order_by(Invoice.created_at)
        return list(self.db.execute(stmt).scalars().all())

    def add(self, invoice: Invoice) -> Invoice:
        self.db.add(invoice)
        self.db.flush()
        return invoice

    def save(self, invoice: Invoice) -> Invoice:
        self.db.flush()
        return invoice

    def replace_items(self, invoice: Invoice, items: Iterable[InvoiceItem]) -> Invoice:
        """Drop every existing line and attach the new ones in order."""
        invoice.items.clear()
        self.db.flush()
        for position, item in enumerate(items):
            item.position = position
            invoice.items.append(item)
        self.db.flush()
        return invoice

    def mark_issued(self, invoice: Invoice, code: str, issued_at: datetime, pdf_url: str) -> bool:
        """Compare-and-set DRAFT -> ISSUED. False when another caller won."""
        self.db.flush()
        result = self.db.execute(
            update(Invoice)
            .where(Invoice.id == invoice.id, Invoice.status == InvoiceStatus.DRAFT)
            .values(
                status=InvoiceStatus.ISSUED,
                code=code,
                issued_at=issued_at,
                pdf_url=pdf_url,
                updated_at=issued_at,
            )
            .execution_options(synchronize_session="evaluate")
        )
        return result.rowcount == 1

    def mark_void(self, invoice: Invoice, voided_at: datetime, reason: Optional[str]) -> bool:
        """Compare-and-set DRAFT/ISSUED -> VOID. False when the invoice moved underneath us."""
        self.db.flush()
        result = self.db.execute(
            update(Invoice)
            .where(Invoice.id == invoice.id, Invoice.status == invoice.status)
            .values(
                status=InvoiceStatus.VOID,
                voided_at=voided_at,
                void_reason=reason,
                updated_at=voided_at,
            )
            .execution_options(synchronize_session="evaluate")
        )
        return result.rowcount == 1

    def count_issued_on_date(self, invoice_type: str, date_key: str) -> int:
        """Invoices of a type issued during one business day, VOID included so codes never repeat."""
        start, end = business_day_utc_range(date_key)
        return self.db.execute(
            select(func.count())
            .select_from(Invoice)
            .where(
                Invoice.type == invoice_type,
                Invoice.issued_at.is_not(None),
                Invoice.issued_at >= start,
                Invoice.issued_at < end,
            )
        ).scalar_one()

    def count_subscription_invoices_issued_on_date(self, date_key: str) -> int:
        return self.count_issued_on_date(InvoiceType.SUBSCRIPTION, date_key)

    def count_order_invoices_issued_on_date(self, date_key: str, invoice_type: str) -> int:
        if invoice_type == InvoiceType.SUBSCRIPTION:
            raise ValueError("use count_subscription_invoices_issued_on_date for subscription invoices")
        return self.count_issued_on_date(invoice_type, date_key)
