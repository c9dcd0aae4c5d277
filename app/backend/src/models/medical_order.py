"""Billable medical order model."""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.backend.src.db.base import Base


class BillableOrder(Base):
    """A completed course of sessions that can be billed to a payer.

    Owned by the clinical side of the application; billing only writes
    ``sent_to_payer``.
    """

    __tablename__ = "medical_orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    patient_id: Mapped[int] = mapped_column(
        ForeignKey("patients.id"), nullable=False, index=True
    )
    doctor_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    order_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    order_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    total_sessions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sessions_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    attachment_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    sent_to_payer: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, index=True
    )

    patient: Mapped["Patient"] = relationship("Patient", back_populates="orders")
    documents: Mapped[list["PresentationDocument"]] = relationship(
        "PresentationDocument", back_populates="order"
    )


__all__ = ["BillableOrder"]
