"""Document completeness validation for billable orders."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from app.backend.src.core.config import get_settings
from app.backend.src.core.storage import ObjectStore

from ..models import BillableOrder
from .documents import OrderSources, load_order_sources
from .storage_reference import document_exists

LOGGER = structlog.get_logger(__name__)

NOT_REGISTERED = "no registrada"
NOT_IN_STORAGE = "archivo no encontrado en Storage"
UNKNOWN_ORDER = "Orden inexistente"


@dataclass(slots=True)
class ValidationResult:
    """Completeness report for one order."""

    order_id: int
    patient_name: str
    is_complete: bool
    missing_documents: list[str] = field(default_factory=list)


def validate_sources(
    store: ObjectStore,
    sources: OrderSources,
    *,
    default_bucket: str,
) -> ValidationResult:
    """Check that every mandatory document is registered and readable."""

    missing: list[str] = []
    for kind, reference in sources.references:
        if not reference:
            missing.append(f"{kind.label} ({NOT_REGISTERED})")
        elif not document_exists(store, reference, default_bucket=default_bucket):
            missing.append(f"{kind.label} ({NOT_IN_STORAGE})")

    result = ValidationResult(
        order_id=sources.order_id,
        patient_name=sources.patient_label,
        is_complete=not missing,
        missing_documents=missing,
    )
    if missing:
        LOGGER.info(
            "order_documents_incomplete",
            order_id=sources.order_id,
            missing=missing,
        )
    return result


def validate_orders(
    session: Session,
    store: ObjectStore,
    orders: Sequence[BillableOrder],
) -> list[ValidationResult]:
    """Return one :class:`ValidationResult` per order, in input order."""

    bucket = get_settings().documents_bucket
    return [
        validate_sources(store, sources, default_bucket=bucket)
        for sources in load_order_sources(session, list(orders))
    ]


def validate_order_ids(
    session: Session,
    store: ObjectStore,
    order_ids: Sequence[int],
) -> list[ValidationResult]:
    """Validate orders by id, e.g. before an invoice is created.

    Unknown ids are reported as incomplete rather than raising.
    """

    unique_ids = list(dict.fromkeys(order_ids))
    found = {
        order.id: order
        for order in session.scalars(
            select(BillableOrder)
            .options(selectinload(BillableOrder.patient))
            .where(BillableOrder.id.in_(unique_ids))
        )
    }
    known = [found[order_id] for order_id in unique_ids if order_id in found]
    by_id = {result.order_id: result for result in validate_orders(session, store, known)}

    results: list[ValidationResult] = []
    for order_id in unique_ids:
        result = by_id.get(order_id)
        if result is None:
            result = ValidationResult(
                order_id=order_id,
                patient_name="",
                is_complete=False,
                missing_documents=[UNKNOWN_ORDER],
            )
        results.append(result)
    return results


__all__ = [
    "NOT_IN_STORAGE",
    "NOT_REGISTERED",
    "UNKNOWN_ORDER",
    "ValidationResult",
    "validate_order_ids",
    "validate_orders",
    "validate_sources",
]
