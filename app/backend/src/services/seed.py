"""Utilities for seeding development data."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from io import BytesIO

from reportlab.pdfgen import canvas
from sqlalchemy.orm import Session

from app.backend.src.core.config import get_settings
from app.backend.src.core.storage import ObjectStore
from app.backend.src.models import BillableOrder, Patient, Payer, PresentationDocument

from .documents import DocumentKind
from .pdf_consolidation import PDF_CONTENT_TYPE

DEFAULT_PAYER_NAME = "OSDE"
DEFAULT_PATIENT = ("Ana", "García", "30111222")


@dataclass
class SeedResult:
    """Information about the seeded billing records."""

    payer: Payer
    patient: Patient
    order: BillableOrder
    payer_created: bool
    order_created: bool


def render_placeholder_pdf(title: str, *, pages: int = 1) -> bytes:
    """Render a minimal PDF with ``title`` printed on every page."""

    buffer = BytesIO()
    pdf = canvas.Canvas(buffer)
    for page in range(1, pages + 1):
        pdf.drawString(72, 750, title)
        pdf.drawString(72, 720, f"Página {page} de {pages}")
        pdf.showPage()
    pdf.save()
    return buffer.getvalue()


def _upload_document(store: ObjectStore, key: str, title: str) -> str:
    store.upload(
        get_settings().documents_bucket,
        key,
        render_placeholder_pdf(title),
        content_type=PDF_CONTENT_TYPE,
        upsert=True,
    )
    return key


def seed_demo_billing(
    session: Session,
    store: ObjectStore,
    *,
    payer_name: str = DEFAULT_PAYER_NAME,
) -> SeedResult:
    """Ensure a payer with one fully documented, billable order exists.

    Source documents are written to the documents bucket so the order
    passes validation and can be packaged end to end.
    """

    payer = session.query(Payer).filter(Payer.name == payer_name).one_or_none()
    payer_created = False
    if payer is None:
        payer = Payer(name=payer_name, kind="obra_social", is_active=True)
        session.add(payer)
        session.flush()
        payer_created = True

    first_name, last_name, dni = DEFAULT_PATIENT
    patient = session.query(Patient).filter(Patient.dni == dni).one_or_none()
    if patient is None:
        patient = Patient(first_name=first_name, last_name=last_name, dni=dni, payer_id=payer.id)
        session.add(patient)
        session.flush()

    order = (
        session.query(BillableOrder)
        .filter(BillableOrder.patient_id == patient.id)
        .filter(BillableOrder.sent_to_payer.is_(False))
        .first()
    )
    order_created = False
    if order is None:
        order = BillableOrder(
            patient_id=patient.id,
            doctor_name="Dr. Pérez",
            order_type="kinesiologia",
            order_date=date.today().replace(day=1),
            total_sessions=10,
            sessions_used=10,
            completed=True,
            completed_at=datetime.now(timezone.utc),
        )
        session.add(order)
        session.flush()
        order_created = True

    prefix = f"orders/{order.id}"
    order.attachment_url = _upload_document(
        store, f"{prefix}/orden.pdf", f"{DocumentKind.MEDICAL_ORDER.label} - {patient.full_name}"
    )
    for kind in (
        DocumentKind.CLINICAL_EVOLUTION,
        DocumentKind.ATTENDANCE_RECORD,
        DocumentKind.PAYER_AUTHORIZATION,
    ):
        existing = (
            session.query(PresentationDocument)
            .filter(PresentationDocument.medical_order_id == order.id)
            .filter(PresentationDocument.document_type == kind.value)
            .first()
        )
        key = _upload_document(
            store, f"{prefix}/{kind.value}.pdf", f"{kind.label} - {patient.full_name}"
        )
        if existing is None:
            session.add(
                PresentationDocument(
                    medical_order_id=order.id,
                    document_type=kind.value,
                    file_url=key,
                    file_name=f"{kind.value}.pdf",
                )
            )

    return SeedResult(
        payer=payer,
        patient=patient,
        order=order,
        payer_created=payer_created,
        order_created=order_created,
    )


__all__ = ["SeedResult", "render_placeholder_pdf", "seed_demo_billing"]
