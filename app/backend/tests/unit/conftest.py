"""Shared fixtures for the billing package unit tests."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from datetime import date, datetime, timezone
from io import BytesIO
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[4]))

# Configure environment before application imports
os.environ.setdefault("DATABASE_URL", "sqlite:///./test_billing.db")
os.environ.setdefault("STORAGE_BACKEND", "local")
os.environ.setdefault("LOCAL_STORAGE_PATH", "/tmp/billing-packages-tests")
os.environ["REDIS_ENABLED"] = "false"

import pytest
from reportlab.pdfgen import canvas

from app.backend.src.core.config import get_settings
from app.backend.src.core.storage import InMemoryObjectStore
from app.backend.src.db import Base, get_engine, session_scope
from app.backend.src.models import (
    BillableOrder,
    Invoice,
    InvoiceLineItem,
    Patient,
    Payer,
    PresentationDocument,
)

DOCUMENT_KINDS = ("clinical_evolution", "attendance_record", "social_work_authorization")


def make_pdf(*page_texts: str) -> bytes:
    """Render one PDF page per entry of ``page_texts``."""

    buffer = BytesIO()
    pdf = canvas.Canvas(buffer)
    for text in page_texts or ("blank",):
        pdf.drawString(72, 750, text)
        pdf.showPage()
    pdf.save()
    return buffer.getvalue()


@dataclass
class SeededOrder:
    order_id: int
    patient_id: int
    first_name: str
    last_name: str
    attachment_key: str
    document_keys: dict[str, str]


@pytest.fixture(autouse=True)
def setup_database():  # type: ignore[no-untyped-def]
    engine = get_engine()
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def store() -> InMemoryObjectStore:
    return InMemoryObjectStore()


@pytest.fixture()
def payer_id() -> int:
    with session_scope() as session:
        payer = Payer(name="OSDE Ñandú", kind="obra_social", is_active=True)
        session.add(payer)
        session.flush()
        return payer.id


@pytest.fixture()
def make_order(store: InMemoryObjectStore, payer_id: int):  # type: ignore[no-untyped-def]
    """Factory creating a completed order with its four documents in ``store``."""

    documents_bucket = get_settings().documents_bucket
    counter = {"value": 0}

    def factory(
        *,
        first_name: str = "Ana",
        last_name: str = "García",
        dni: str | None = None,
        order_date: date = date(2024, 5, 1),
        completed_at: datetime = datetime(2024, 5, 20, 12, 0, tzinfo=timezone.utc),
        payer: int | None = None,
        pages: int = 1,
        skip_upload: tuple[str, ...] = (),
        skip_register: tuple[str, ...] = (),
    ) -> SeededOrder:
        counter["value"] += 1
        with session_scope() as session:
            patient = Patient(
                first_name=first_name,
                last_name=last_name,
                dni=dni or f"3000000{counter['value']}",
                payer_id=payer if payer is not None else payer_id,
            )
            session.add(patient)
            session.flush()
            order = BillableOrder(
                patient_id=patient.id,
                doctor_name="Dr. Pérez",
                order_type="kinesiologia",
                order_date=order_date,
                total_sessions=10,
                sessions_used=10,
                completed=True,
                completed_at=completed_at,
            )
            session.add(order)
            session.flush()

            prefix = f"orders/{order.id}"
            attachment_key = f"{prefix}/medical_order.pdf"
            if "medical_order" not in skip_register:
                order.attachment_url = attachment_key
            if "medical_order" not in skip_upload:
                store.upload(
                    documents_bucket,
                    attachment_key,
                    make_pdf(*[f"order {order.id} medical_order {page}" for page in range(pages)]),
                    content_type="application/pdf",
                )

            document_keys: dict[str, str] = {}
            for kind in DOCUMENT_KINDS:
                key = f"{prefix}/{kind}.pdf"
                document_keys[kind] = key
                if kind not in skip_register:
                    session.add(
                        PresentationDocument(
                            medical_order_id=order.id,
                            document_type=kind,
                            file_url=key,
                            file_name=f"{kind}.pdf",
                        )
                    )
                if kind not in skip_upload:
                    store.upload(
                        documents_bucket,
                        key,
                        make_pdf(*[f"order {order.id} {kind} {page}" for page in range(pages)]),
                        content_type="application/pdf",
                    )
            return SeededOrder(
                order_id=order.id,
                patient_id=patient.id,
                first_name=first_name,
                last_name=last_name,
                attachment_key=attachment_key,
                document_keys=document_keys,
            )

    return factory


@pytest.fixture()
def make_invoice(payer_id: int):  # type: ignore[no-untyped-def]
    """Factory inserting an active invoice with line items for ``order_ids``."""

    counter = {"value": 0}

    def factory(order_ids: list[int], *, payer: int | None = None) -> int:
        counter["value"] += 1
        with session_scope() as session:
            invoice = Invoice(
                payer_id=payer if payer is not None else payer_id,
                invoice_number=f"FAC-TEST-{counter['value']:04d}",
                period_start=date(2024, 5, 1),
                period_end=date(2024, 5, 31),
                total_presentations=len(order_ids),
            )
            invoice.line_items = [InvoiceLineItem(medical_order_id=oid) for oid in order_ids]
            session.add(invoice)
            session.flush()
            return invoice.id

    return factory
