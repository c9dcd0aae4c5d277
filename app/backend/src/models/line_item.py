"""Invoice line item model."""

from __future__ import annotations

from sqlalchemy import ForeignKey, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.backend.src.db.base import Base


class InvoiceLineItem(Base):
    """Links an invoice to one billable order."""

    __tablename__ = "billing_invoice_items"
    __table_args__ = (
        UniqueConstraint(
            "billing_invoice_id", "medical_order_id", name="uq_invoice_items_order"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    billing_invoice_id: Mapped[int] = mapped_column(
        ForeignKey("billing_invoices.id"), nullable=False, index=True
    )
    medical_order_id: Mapped[int] = mapped_column(
        ForeignKey("medical_orders.id"), nullable=False, index=True
    )

    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="line_items")
    order: Mapped["BillableOrder"] = relationship("BillableOrder")


__all__ = ["InvoiceLineItem"]
