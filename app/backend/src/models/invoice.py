"""Billing invoice model."""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Date, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.backend.src.db.base import Base

INVOICE_ACTIVE = "active"
INVOICE_CANCELLED = "cancelled"

PACKAGE_PENDING = "pending"
PACKAGE_READY = "ready"
PACKAGE_ERROR = "error"
PACKAGE_SENT = "sent"


class Invoice(Base):
    """One billing submission to one payer for one period."""

    __tablename__ = "billing_invoices"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    payer_id: Mapped[int] = mapped_column(ForeignKey("payers.id"), nullable=False, index=True)
    invoice_number: Mapped[str] = mapped_column(
        String(128), unique=True, nullable=False, index=True
    )
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    total_presentations: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=INVOICE_ACTIVE)
    package_status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=PACKAGE_PENDING
    )
    package_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    package_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    package_generated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    regeneration_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_regenerated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_regenerated_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancelled_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now(), nullable=True
    )

    payer: Mapped["Payer"] = relationship("Payer", back_populates="invoices")
    line_items: Mapped[list["InvoiceLineItem"]] = relationship(
        "InvoiceLineItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceLineItem.id",
    )
    package_documents: Mapped[list["PackageDocument"]] = relationship(
        "PackageDocument",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="PackageDocument.id",
    )

    @property
    def is_cancelled(self) -> bool:
        return self.status == INVOICE_CANCELLED


__all__ = [
    "INVOICE_ACTIVE",
    "INVOICE_CANCELLED",
    "Invoice",
    "PACKAGE_ERROR",
    "PACKAGE_PENDING",
    "PACKAGE_READY",
    "PACKAGE_SENT",
]
