"""Presentation document model."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.backend.src.db.base import Base


class PresentationDocument(Base):
    """A supporting document uploaded for a billable order."""

    __tablename__ = "presentation_documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    medical_order_id: Mapped[int] = mapped_column(
        ForeignKey("medical_orders.id"), nullable=False, index=True
    )
    document_type: Mapped[str] = mapped_column(String(64), nullable=False)
    file_url: Mapped[str] = mapped_column(String(1024), nullable=False)
    file_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    order: Mapped["BillableOrder"] = relationship(
        "BillableOrder", back_populates="documents"
    )


__all__ = ["PresentationDocument"]
