"""Patient model."""

from __future__ import annotations

from sqlalchemy import ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.backend.src.db.base import Base


class Patient(Base):
    """Patient identity as needed for billing exports."""

    __tablename__ = "patients"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    first_name: Mapped[str] = mapped_column(String(128), nullable=False)
    last_name: Mapped[str] = mapped_column(String(128), nullable=False)
    dni: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    payer_id: Mapped[int | None] = mapped_column(
        ForeignKey("payers.id"), nullable=True, index=True
    )

    payer: Mapped["Payer | None"] = relationship("Payer", back_populates="patients")
    orders: Mapped[list["BillableOrder"]] = relationship(
        "BillableOrder", back_populates="patient"
    )

    @property
    def full_name(self) -> str:
        """Surname-first display name used on exports."""

        return " ".join(part for part in (self.last_name, self.first_name) if part).strip()


__all__ = ["Patient"]
