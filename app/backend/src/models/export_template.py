"""Spreadsheet export template model."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.backend.src.db.base import Base


class ExportTemplate(Base):
    """Column layout a payer expects in the billing spreadsheet."""

    __tablename__ = "billing_export_templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    payer_id: Mapped[int] = mapped_column(
        ForeignKey("payers.id"), nullable=False, index=True
    )
    template_name: Mapped[str] = mapped_column(String(255), nullable=False)
    # [{"field": "patient_name", "label": "Paciente", "order": 0}, ...]
    column_config: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    payer: Mapped["Payer"] = relationship("Payer", back_populates="export_templates")


__all__ = ["ExportTemplate"]
