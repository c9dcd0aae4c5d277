"""End-to-end tests for billing package generation."""

from __future__ import annotations

from io import BytesIO
from zipfile import ZipFile

import pytest

from app.backend.src.agents.package_agent import generate_package
from app.backend.src.core.config import get_settings
from app.backend.src.core.errors import InvoiceNotFoundError
from app.backend.src.core.locks import invoice_lock
from app.backend.src.db import session_scope
from app.backend.src.models import BillableOrder, Invoice, PackageDocument
from app.backend.src.services import invoices as invoice_service


def _sent_flags(order_ids: list[int]) -> list[bool]:
    with session_scope() as session:
        return [session.get(BillableOrder, order_id).sent_to_payer for order_id in order_ids]


def _invoice(invoice_id: int) -> Invoice:
    with session_scope() as session:
        return session.get(Invoice, invoice_id)


def _package_documents(invoice_id: int) -> list[PackageDocument]:
    with session_scope() as session:
        return (
            session.query(PackageDocument)
            .filter(PackageDocument.billing_invoice_id == invoice_id)
            .order_by(PackageDocument.id)
            .all()
        )


def test_successful_generation(store, make_order, make_invoice) -> None:  # type: ignore[no-untyped-def]
    first = make_order(first_name="Luis", last_name="Zárate", pages=2)
    second = make_order(first_name="Ana", last_name="Abal")
    order_ids = [first.order_id, second.order_id]
    invoice_id = make_invoice(order_ids)

    result = generate_package(invoice_id, operator_id="op-1", store=store)

    expected_key = f"packages/{invoice_id}/paquete_OSDE_Nandu_2024-05-31.zip"
    assert result == {
        "success": True,
        "invoice_id": invoice_id,
        "package_url": expected_key,
        "pdf_count": 2,
        "excel_generated": True,
        "is_regeneration": False,
    }
    assert _sent_flags(order_ids) == [True, True]

    invoice = _invoice(invoice_id)
    assert invoice.package_status == "ready"
    assert invoice.package_url == expected_key
    assert invoice.package_error is None
    assert invoice.package_generated_at is not None
    assert invoice.regeneration_count == 0

    documents = _package_documents(invoice_id)
    assert [document.medical_order_id for document in documents] == order_ids
    assert [document.page_count for document in documents] == [8, 4]
    assert documents[0].consolidated_pdf_name == "Zarate_Luis_2024-05-01.pdf"
    assert documents[0].patient_name == "Zárate Luis"

    data = store.download(get_settings().packages_bucket, expected_key)
    with ZipFile(BytesIO(data)) as bundle:
        assert sorted(bundle.namelist()) == [
            "facturacion_OSDE_Nandu_2024-05-31.xlsx",
            "pdfs/Abal_Ana_2024-05-01.pdf",
            "pdfs/Zarate_Luis_2024-05-01.pdf",
        ]


def test_incomplete_documents_leave_orders_untouched(store, make_order, make_invoice) -> None:  # type: ignore[no-untyped-def]
    complete = make_order(last_name="Completo")
    incomplete = make_order(last_name="Incompleto", skip_upload=("attendance_record",))
    order_ids = [complete.order_id, incomplete.order_id]
    invoice_id = make_invoice(order_ids)

    result = generate_package(invoice_id, store=store)

    assert result["success"] is False
    assert "Incompleto Ana" in result["error"]
    assert "Planilla de Asistencia (archivo no encontrado en Storage)" in result["error"]
    assert "Completo Ana" not in result["error"]
    assert _sent_flags(order_ids) == [False, False]

    invoice = _invoice(invoice_id)
    assert invoice.package_status == "error"
    assert invoice.package_error == result["error"]
    assert invoice.package_url is None
    assert _package_documents(invoice_id) == []
    assert store.list(get_settings().packages_bucket, f"packages/{invoice_id}/") == []


def test_corrupt_source_fails_the_whole_package(store, make_order, make_invoice) -> None:  # type: ignore[no-untyped-def]
    good = make_order(last_name="Bueno")
    broken = make_order(last_name="Roto")
    store.upload(
        get_settings().documents_bucket,
        broken.document_keys["clinical_evolution"],
        b"this is not a pdf",
        content_type="application/pdf",
    )
    order_ids = [good.order_id, broken.order_id]
    invoice_id = make_invoice(order_ids)

    result = generate_package(invoice_id, store=store)

    assert result["success"] is False
    assert str(broken.order_id) in result["error"]
    assert _sent_flags(order_ids) == [False, False]
    assert _invoice(invoice_id).package_status == "error"
    assert _package_documents(invoice_id) == []


def test_regeneration_replaces_documents_at_the_same_path(store, make_order, make_invoice) -> None:  # type: ignore[no-untyped-def]
    first = make_order(last_name="Uno")
    second = make_order(last_name="Dos")
    invoice_id = make_invoice([first.order_id, second.order_id])

    initial = generate_package(invoice_id, operator_id="op-1", store=store)
    regenerated = generate_package(
        invoice_id, is_regeneration=True, operator_id="op-2", store=store
    )

    assert regenerated["success"] is True
    assert regenerated["is_regeneration"] is True
    assert regenerated["package_url"] == initial["package_url"]

    documents = _package_documents(invoice_id)
    assert sorted(document.medical_order_id for document in documents) == sorted(
        [first.order_id, second.order_id]
    )

    invoice = _invoice(invoice_id)
    assert invoice.package_status == "ready"
    assert invoice.regeneration_count == 1
    assert invoice.last_regenerated_by == "op-2"
    assert invoice.last_regenerated_at is not None

    archives = [
        entry.key
        for entry in store.list(get_settings().packages_bucket, f"packages/{invoice_id}/")
        if entry.key.endswith(".zip")
    ]
    assert archives == [initial["package_url"]]


def test_regeneration_after_failure_recovers(store, make_order, make_invoice) -> None:  # type: ignore[no-untyped-def]
    seeded = make_order(skip_upload=("social_work_authorization",))
    invoice_id = make_invoice([seeded.order_id])

    assert generate_package(invoice_id, store=store)["success"] is False

    store.upload(
        get_settings().documents_bucket,
        seeded.document_keys["social_work_authorization"],
        _valid_pdf(store, seeded.attachment_key),
        content_type="application/pdf",
    )
    result = generate_package(invoice_id, is_regeneration=True, store=store)

    assert result["success"] is True
    invoice = _invoice(invoice_id)
    assert invoice.package_status == "ready"
    assert invoice.package_error is None
    assert _sent_flags([seeded.order_id]) == [True]


def _valid_pdf(store, key: str) -> bytes:  # type: ignore[no-untyped-def]
    data = store.download(get_settings().documents_bucket, key)
    assert data is not None
    return data


def test_cancelled_invoice_is_refused(store, make_order, make_invoice) -> None:  # type: ignore[no-untyped-def]
    seeded = make_order()
    invoice_id = make_invoice([seeded.order_id])
    with session_scope() as session:
        invoice_service.cancel_invoice(session, invoice_id, operator_id="op-1")

    result = generate_package(invoice_id, store=store)

    assert result["success"] is False
    assert "cancelled" in result["error"]
    invoice = _invoice(invoice_id)
    assert invoice.status == "cancelled"
    assert invoice.package_error is None
    assert _sent_flags([seeded.order_id]) == [False]


def test_invoice_without_line_items_is_an_error(store, make_invoice) -> None:  # type: ignore[no-untyped-def]
    invoice_id = make_invoice([])

    result = generate_package(invoice_id, store=store)

    assert result["success"] is False
    assert _invoice(invoice_id).package_status == "error"


def test_unknown_invoice_raises(store) -> None:  # type: ignore[no-untyped-def]
    with pytest.raises(InvoiceNotFoundError):
        generate_package(424242, store=store)


def test_concurrent_generation_is_refused(store, make_order, make_invoice) -> None:  # type: ignore[no-untyped-def]
    seeded = make_order()
    invoice_id = make_invoice([seeded.order_id])

    with invoice_lock(invoice_id):
        result = generate_package(invoice_id, store=store)

    assert result["success"] is False
    assert "already in progress" in result["error"]
    invoice = _invoice(invoice_id)
    assert invoice.package_status == "pending"
    assert _sent_flags([seeded.order_id]) == [False]

    assert generate_package(invoice_id, store=store)["success"] is True


def test_delivered_package_is_not_regenerated(store, make_order, make_invoice) -> None:  # type: ignore[no-untyped-def]
    seeded = make_order()
    invoice_id = make_invoice([seeded.order_id])
    initial = generate_package(invoice_id, store=store)
    with session_scope() as session:
        invoice_service.mark_sent(session, invoice_id, operator_id="op-1")

    result = generate_package(invoice_id, is_regeneration=True, store=store)

    assert result["success"] is False
    assert "sent" in result["error"]
    invoice = _invoice(invoice_id)
    assert invoice.package_status == "sent"
    assert invoice.package_error is None
    assert invoice.package_url == initial["package_url"]
    assert invoice.regeneration_count == 0
    assert _sent_flags([seeded.order_id]) == [True]
