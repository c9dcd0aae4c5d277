"""Mandatory document kinds and per-order reference lookup."""

from __future__ import annotations

import enum
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models import BillableOrder, PresentationDocument


class DocumentKind(str, enum.Enum):
    """The four documents every billed order must carry, in merge order."""

    MEDICAL_ORDER = "medical_order"
    CLINICAL_EVOLUTION = "clinical_evolution"
    ATTENDANCE_RECORD = "attendance_record"
    PAYER_AUTHORIZATION = "social_work_authorization"

    @property
    def label(self) -> str:
        return _LABELS[self]

    @property
    def uses_order_attachment(self) -> bool:
        return self is DocumentKind.MEDICAL_ORDER


_LABELS = {
    DocumentKind.MEDICAL_ORDER: "Orden Médica",
    DocumentKind.CLINICAL_EVOLUTION: "Evolución Clínica",
    DocumentKind.ATTENDANCE_RECORD: "Planilla de Asistencia",
    DocumentKind.PAYER_AUTHORIZATION: "Autorización Obra Social",
}

# Merge order of the consolidated PDF. Do not reorder.
DOCUMENT_SEQUENCE: tuple[DocumentKind, ...] = (
    DocumentKind.MEDICAL_ORDER,
    DocumentKind.CLINICAL_EVOLUTION,
    DocumentKind.ATTENDANCE_RECORD,
    DocumentKind.PAYER_AUTHORIZATION,
)


@dataclass(frozen=True, slots=True)
class OrderSources:
    """Everything needed to validate or merge one order without a DB session."""

    order_id: int
    patient_first_name: str
    patient_last_name: str
    order_date: date | None
    references: tuple[tuple[DocumentKind, str | None], ...]

    @property
    def patient_label(self) -> str:
        return f"{self.patient_last_name} {self.patient_first_name}".strip()

    def reference_for(self, kind: DocumentKind) -> str | None:
        for candidate, reference in self.references:
            if candidate is kind:
                return reference
        return None


def load_presentation_documents(
    session: Session, order_ids: Iterable[int]
) -> dict[int, dict[str, PresentationDocument]]:
    """Return the latest registered document per (order, kind)."""

    ids = list(order_ids)
    if not ids:
        return {}

    rows = session.scalars(
        select(PresentationDocument)
        .where(PresentationDocument.medical_order_id.in_(ids))
        .order_by(PresentationDocument.uploaded_at, PresentationDocument.id)
    ).all()

    documents: dict[int, dict[str, PresentationDocument]] = {}
    for row in rows:
        # later rows overwrite earlier ones, so the newest upload wins
        documents.setdefault(row.medical_order_id, {})[row.document_type] = row
    return documents


def resolve_order_sources(
    order: BillableOrder,
    documents: dict[str, PresentationDocument],
) -> OrderSources:
    """Collect the stored reference for each mandatory kind of ``order``."""

    references: list[tuple[DocumentKind, str | None]] = []
    for kind in DOCUMENT_SEQUENCE:
        if kind.uses_order_attachment:
            reference = order.attachment_url
        else:
            document = documents.get(kind.value)
            reference = document.file_url if document is not None else None
        references.append((kind, (reference or "").strip() or None))

    patient = order.patient
    return OrderSources(
        order_id=order.id,
        patient_first_name=(patient.first_name if patient else "") or "",
        patient_last_name=(patient.last_name if patient else "") or "",
        order_date=order.order_date,
        references=tuple(references),
    )


def load_order_sources(session: Session, orders: list[BillableOrder]) -> list[OrderSources]:
    """Resolve sources for ``orders``, preserving their order."""

    documents = load_presentation_documents(session, [order.id for order in orders])
    return [resolve_order_sources(order, documents.get(order.id, {})) for order in orders]


__all__ = [
    "DOCUMENT_SEQUENCE",
    "DocumentKind",
    "OrderSources",
    "load_order_sources",
    "load_presentation_documents",
    "resolve_order_sources",
]
