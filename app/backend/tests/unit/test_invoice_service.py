"""Unit tests for the invoice lifecycle service layer."""

from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from app.backend.src.agents.package_agent import generate_package
from app.backend.src.core.errors import (
    BillingError,
    EligibilityError,
    InvoiceNotFoundError,
    InvoiceStateError,
)
from app.backend.src.db import session_scope
from app.backend.src.models import BillableOrder, Invoice, Payer
from app.backend.src.services import invoices as invoice_service

MAY_START = date(2024, 5, 1)
MAY_END = date(2024, 5, 31)


@pytest.fixture()
def other_payer_id() -> int:
    with session_scope() as session:
        payer = Payer(name="Swiss Medical", kind="obra_social")
        session.add(payer)
        session.flush()
        return payer.id


def _create(payer_id: int, order_ids: list[int], number: str = "FAC-0001") -> int:
    with session_scope() as session:
        invoice = invoice_service.create_invoice(
            session,
            payer_id=payer_id,
            invoice_number=number,
            period_start=MAY_START,
            period_end=MAY_END,
            order_ids=order_ids,
            created_by="op-1",
        )
        return invoice.id


def test_list_eligible_orders_filters_by_payer_period_and_state(  # type: ignore[no-untyped-def]
    payer_id, other_payer_id, make_order
) -> None:
    eligible = make_order(last_name="Elegible")
    make_order(last_name="Otra", payer=other_payer_id)
    make_order(last_name="Junio", completed_at=datetime(2024, 6, 2, tzinfo=timezone.utc))
    sent = make_order(last_name="Enviada")
    open_order = make_order(last_name="Abierta")
    with session_scope() as session:
        session.get(BillableOrder, sent.order_id).sent_to_payer = True
        session.get(BillableOrder, open_order.order_id).completed = False

    with session_scope() as session:
        orders = invoice_service.list_eligible_orders(
            session, payer_id=payer_id, period_start=MAY_START, period_end=MAY_END
        )
        assert [order.id for order in orders] == [eligible.order_id]


def test_period_end_day_is_inclusive(payer_id, make_order) -> None:  # type: ignore[no-untyped-def]
    last_day = make_order(completed_at=datetime(2024, 5, 31, 23, 30, tzinfo=timezone.utc))

    with session_scope() as session:
        orders = invoice_service.list_eligible_orders(
            session, payer_id=payer_id, period_start=MAY_START, period_end=MAY_END
        )
        assert [order.id for order in orders] == [last_day.order_id]


def test_create_invoice_does_not_touch_sent_flags(payer_id, make_order) -> None:  # type: ignore[no-untyped-def]
    first = make_order(last_name="Uno")
    second = make_order(last_name="Dos")

    invoice_id = _create(payer_id, [first.order_id, second.order_id, first.order_id])

    with session_scope() as session:
        invoice = invoice_service.get_invoice(session, invoice_id)
        assert invoice.status == "active"
        assert invoice.package_status == "pending"
        assert invoice.total_presentations == 2
        assert invoice.created_by == "op-1"
        assert [item.medical_order_id for item in invoice.line_items] == [
            first.order_id,
            second.order_id,
        ]
        assert all(item.order.sent_to_payer is False for item in invoice.line_items)


def test_create_invoice_rejects_ineligible_orders(  # type: ignore[no-untyped-def]
    payer_id, other_payer_id, make_order
) -> None:
    good = make_order(last_name="Bien")
    foreign = make_order(last_name="Ajena", payer=other_payer_id)

    with pytest.raises(EligibilityError) as excinfo:
        _create(payer_id, [good.order_id, foreign.order_id, 987654])

    assert excinfo.value.details["order_ids"] == [foreign.order_id, 987654]
    with session_scope() as session:
        assert session.query(Invoice).count() == 0


def test_orders_on_an_active_invoice_cannot_be_billed_twice(payer_id, make_order) -> None:  # type: ignore[no-untyped-def]
    seeded = make_order()
    _create(payer_id, [seeded.order_id], number="FAC-0001")

    with pytest.raises(EligibilityError):
        _create(payer_id, [seeded.order_id], number="FAC-0002")


def test_duplicate_invoice_number_is_rejected(payer_id, make_order) -> None:  # type: ignore[no-untyped-def]
    first = make_order(last_name="Uno")
    second = make_order(last_name="Dos")
    _create(payer_id, [first.order_id], number="FAC-0001")

    with pytest.raises(BillingError) as excinfo:
        _create(payer_id, [second.order_id], number="FAC-0001")

    assert excinfo.value.error_code == "DUPLICATE_INVOICE_NUMBER"


def test_cancel_reverts_sent_flags(store, payer_id, make_order) -> None:  # type: ignore[no-untyped-def]
    first = make_order(last_name="Uno")
    second = make_order(last_name="Dos")
    invoice_id = _create(payer_id, [first.order_id, second.order_id])
    assert generate_package(invoice_id, store=store)["success"] is True

    with session_scope() as session:
        invoice_service.cancel_invoice(session, invoice_id, operator_id="op-9")

    with session_scope() as session:
        invoice = session.get(Invoice, invoice_id)
        assert invoice.status == "cancelled"
        assert invoice.package_status == "error"
        assert invoice.cancelled_by == "op-9"
        assert invoice.cancelled_at is not None
        assert session.get(BillableOrder, first.order_id).sent_to_payer is False
        assert session.get(BillableOrder, second.order_id).sent_to_payer is False

    # released orders can be billed again
    _create(payer_id, [first.order_id, second.order_id], number="FAC-0002")


def test_cancel_is_idempotent(payer_id, make_order) -> None:  # type: ignore[no-untyped-def]
    seeded = make_order()
    invoice_id = _create(payer_id, [seeded.order_id])

    with session_scope() as session:
        invoice_service.cancel_invoice(session, invoice_id, operator_id="op-1")
    with session_scope() as session:
        first_cancelled_at = session.get(Invoice, invoice_id).cancelled_at

    with session_scope() as session:
        invoice = invoice_service.cancel_invoice(session, invoice_id, operator_id="op-2")
        assert invoice.cancelled_by == "op-1"
        assert invoice.cancelled_at == first_cancelled_at


def test_cancel_unknown_invoice_raises() -> None:
    with pytest.raises(InvoiceNotFoundError):
        with session_scope() as session:
            invoice_service.cancel_invoice(session, 31337)


def test_mark_sent_requires_ready_package(store, payer_id, make_order) -> None:  # type: ignore[no-untyped-def]
    seeded = make_order()
    invoice_id = _create(payer_id, [seeded.order_id])

    with pytest.raises(InvoiceStateError):
        with session_scope() as session:
            invoice_service.mark_sent(session, invoice_id)

    assert generate_package(invoice_id, store=store)["success"] is True
    with session_scope() as session:
        invoice = invoice_service.mark_sent(session, invoice_id, operator_id="op-1")
        assert invoice.package_status == "sent"
