"""Consolidated package document model."""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Date, DateTime, ForeignKey, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.backend.src.db.base import Base


class PackageDocument(Base):
    """One merged per-patient PDF produced for an invoice package."""

    __tablename__ = "billing_package_documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    billing_invoice_id: Mapped[int] = mapped_column(
        ForeignKey("billing_invoices.id"), nullable=False, index=True
    )
    medical_order_id: Mapped[int] = mapped_column(
        ForeignKey("medical_orders.id"), nullable=False, index=True
    )
    patient_name: Mapped[str] = mapped_column(String(255), nullable=False)
    order_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    consolidated_pdf_url: Mapped[str] = mapped_column(String(1024), nullable=False)
    consolidated_pdf_name: Mapped[str] = mapped_column(String(255), nullable=False)
    page_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="package_documents")


__all__ = ["PackageDocument"]
