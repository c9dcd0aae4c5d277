"""Invoice lifecycle operations outside package generation."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date, datetime, time, timedelta, timezone

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from app.backend.src.core.errors import (
    BillingError,
    EligibilityError,
    InvoiceNotFoundError,
    InvoiceStateError,
)

from ..models import (
    INVOICE_ACTIVE,
    INVOICE_CANCELLED,
    PACKAGE_ERROR,
    PACKAGE_PENDING,
    PACKAGE_READY,
    PACKAGE_SENT,
    BillableOrder,
    Invoice,
    InvoiceLineItem,
    Patient,
    Payer,
)

LOGGER = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _period_bounds(period_start: date, period_end: date) -> tuple[datetime, datetime]:
    """Return ``[start, end)`` datetimes covering both dates in full."""

    if period_end < period_start:
        raise EligibilityError(
            f"Period end {period_end.isoformat()} is before period start {period_start.isoformat()}"
        )
    start = datetime.combine(period_start, time.min)
    end = datetime.combine(period_end + timedelta(days=1), time.min)
    return start, end


def _as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def get_invoice(session: Session, invoice_id: int) -> Invoice:
    invoice = session.get(
        Invoice,
        invoice_id,
        options=[
            selectinload(Invoice.line_items)
            .selectinload(InvoiceLineItem.order)
            .selectinload(BillableOrder.patient),
            selectinload(Invoice.package_documents),
        ],
    )
    if invoice is None:
        raise InvoiceNotFoundError(invoice_id)
    return invoice


def _billed_order_ids(session: Session, order_ids: Sequence[int] | None = None) -> set[int]:
    """Ids of orders already on an active invoice."""

    stmt = (
        select(InvoiceLineItem.medical_order_id)
        .join(Invoice, Invoice.id == InvoiceLineItem.billing_invoice_id)
        .where(Invoice.status == INVOICE_ACTIVE)
    )
    if order_ids is not None:
        stmt = stmt.where(InvoiceLineItem.medical_order_id.in_(list(order_ids)))
    return set(session.scalars(stmt))


def _is_eligible(
    order: BillableOrder, *, payer_id: int, start: datetime, end: datetime
) -> bool:
    if not order.completed or order.sent_to_payer or order.completed_at is None:
        return False
    if order.patient is None or order.patient.payer_id != payer_id:
        return False
    completed_at = _as_naive_utc(order.completed_at)
    return start <= completed_at < end


def list_eligible_orders(
    session: Session, *, payer_id: int, period_start: date, period_end: date
) -> list[BillableOrder]:
    """Completed, unsent orders of the payer's patients finished within the period."""

    start, end = _period_bounds(period_start, period_end)
    candidates = session.scalars(
        select(BillableOrder)
        .join(Patient, Patient.id == BillableOrder.patient_id)
        .options(selectinload(BillableOrder.patient))
        .where(Patient.payer_id == payer_id)
        .where(BillableOrder.completed.is_(True))
        .where(BillableOrder.sent_to_payer.is_(False))
        .order_by(Patient.last_name, Patient.first_name, BillableOrder.order_date, BillableOrder.id)
    ).all()
    billed = _billed_order_ids(session, [order.id for order in candidates])
    return [
        order
        for order in candidates
        if order.id not in billed and _is_eligible(order, payer_id=payer_id, start=start, end=end)
    ]


def create_invoice(
    session: Session,
    *,
    payer_id: int,
    invoice_number: str,
    period_start: date,
    period_end: date,
    order_ids: Sequence[int],
    created_by: str | None = None,
) -> Invoice:
    """Create an invoice and its line items. Sent flags are not touched."""

    payer = session.get(Payer, payer_id)
    if payer is None:
        raise EligibilityError(f"Payer {payer_id} not found")

    unique_ids = list(dict.fromkeys(order_ids))
    if not unique_ids:
        raise EligibilityError("Select at least one order to bill")

    invoice_number = (invoice_number or "").strip()
    if not invoice_number:
        raise EligibilityError("Invoice number is required")
    existing = session.scalar(select(Invoice.id).where(Invoice.invoice_number == invoice_number))
    if existing is not None:
        raise BillingError(
            f"Invoice number {invoice_number} is already in use",
            "DUPLICATE_INVOICE_NUMBER",
            {"invoice_number": invoice_number, "invoice_id": existing},
        )

    start, end = _period_bounds(period_start, period_end)
    orders = {
        order.id: order
        for order in session.scalars(
            select(BillableOrder)
            .options(selectinload(BillableOrder.patient))
            .where(BillableOrder.id.in_(unique_ids))
        )
    }
    billed = _billed_order_ids(session, unique_ids)
    rejected = [
        order_id
        for order_id in unique_ids
        if order_id not in orders
        or order_id in billed
        or not _is_eligible(orders[order_id], payer_id=payer_id, start=start, end=end)
    ]
    if rejected:
        raise EligibilityError(
            "Orders not eligible for billing: " + ", ".join(str(order_id) for order_id in rejected),
            rejected,
        )

    invoice = Invoice(
        payer_id=payer_id,
        invoice_number=invoice_number,
        period_start=period_start,
        period_end=period_end,
        total_presentations=len(unique_ids),
        status=INVOICE_ACTIVE,
        package_status=PACKAGE_PENDING,
        regeneration_count=0,
        created_by=created_by,
    )
    invoice.line_items = [InvoiceLineItem(medical_order_id=order_id) for order_id in unique_ids]
    session.add(invoice)
    session.flush()
    LOGGER.info(
        "invoice_created",
        invoice_id=invoice.id,
        payer_id=payer_id,
        invoice_number=invoice_number,
        orders=len(unique_ids),
    )
    return invoice


def cancel_invoice(session: Session, invoice_id: int, *, operator_id: str | None = None) -> Invoice:
    """Cancel the invoice and release its orders for future billing.

    Cancelling an already cancelled invoice changes nothing.
    """

    invoice = get_invoice(session, invoice_id)
    if invoice.is_cancelled:
        LOGGER.info("invoice_already_cancelled", invoice_id=invoice_id)
        return invoice

    released = 0
    for item in invoice.line_items:
        if item.order is not None and item.order.sent_to_payer:
            item.order.sent_to_payer = False
            released += 1

    invoice.status = INVOICE_CANCELLED
    invoice.package_status = PACKAGE_ERROR
    invoice.cancelled_at = _utcnow()
    invoice.cancelled_by = operator_id
    session.flush()
    LOGGER.info(
        "invoice_cancelled",
        invoice_id=invoice_id,
        operator_id=operator_id,
        released_orders=released,
    )
    return invoice


def mark_sent(session: Session, invoice_id: int, *, operator_id: str | None = None) -> Invoice:
    """Record that a ready package was delivered to the payer."""

    invoice = get_invoice(session, invoice_id)
    if invoice.is_cancelled:
        raise InvoiceStateError(invoice_id, INVOICE_CANCELLED, "mark as sent")
    if invoice.package_status == PACKAGE_SENT:
        return invoice
    if invoice.package_status != PACKAGE_READY:
        raise InvoiceStateError(invoice_id, invoice.package_status, "mark as sent")

    invoice.package_status = PACKAGE_SENT
    session.flush()
    LOGGER.info("invoice_marked_sent", invoice_id=invoice_id, operator_id=operator_id)
    return invoice


__all__ = [
    "cancel_invoice",
    "create_invoice",
    "get_invoice",
    "list_eligible_orders",
    "mark_sent",
]
