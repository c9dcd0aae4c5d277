"""Payer model."""

from __future__ import annotations

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.backend.src.db.base import Base


class Payer(Base):
    """An obra social or ART billed through invoice packages."""

    __tablename__ = "payers"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    kind: Mapped[str] = mapped_column(String(32), nullable=False, default="obra_social")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    patients: Mapped[list["Patient"]] = relationship("Patient", back_populates="payer")
    invoices: Mapped[list["Invoice"]] = relationship("Invoice", back_populates="payer")
    export_templates: Mapped[list["ExportTemplate"]] = relationship(
        "ExportTemplate", back_populates="payer"
    )


__all__ = ["Payer"]
