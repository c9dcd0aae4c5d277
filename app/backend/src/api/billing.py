"""Insurer billing package endpoints."""

from __future__ import annotations

from datetime import date

import structlog
from celery.result import AsyncResult
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from app.backend.src.agents.package_agent import generate_package
from app.backend.src.core.config import get_settings
from app.backend.src.core.errors import (
    BillingError,
    EligibilityError,
    GenerationInProgressError,
    IncompleteDocumentsError,
    InvoiceNotFoundError,
    InvoiceStateError,
    StorageError,
)
from app.backend.src.core.security import Operator, require_billing_operator
from app.backend.src.core.storage import ObjectStore
from app.backend.src.models import PACKAGE_SENT, BillableOrder, Invoice
from app.backend.src.schemas.billing import (
    EligibleOrderRead,
    InvoiceCreate,
    InvoiceLineItemRead,
    InvoiceRead,
    PackageDownload,
    PackageFileRead,
    PackageJobRead,
    PackageRequest,
    PackageResult,
    ValidateRequest,
    ValidationReport,
    ValidationResultRead,
)
from app.backend.src.services import invoices as invoice_service
from app.backend.src.services.completeness import validate_order_ids
from app.backend.src.services.package_paths import package_prefix
from app.backend.src.services.s3 import get_object_store
from tasks.billing_tasks import generate_billing_package
from tasks.worker import BILLING_QUEUE, celery

from ..db import get_session_dependency

LOGGER = structlog.get_logger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])


def get_store() -> ObjectStore:
    """Object store dependency, overridable in tests."""

    return get_object_store()


def _status_for(exc: BillingError) -> int:
    if isinstance(exc, InvoiceNotFoundError):
        return 404
    if isinstance(exc, (InvoiceStateError, GenerationInProgressError)):
        return 409
    if exc.error_code == "DUPLICATE_INVOICE_NUMBER":
        return 409
    if isinstance(exc, (EligibilityError, IncompleteDocumentsError)):
        return 422
    if isinstance(exc, StorageError):
        return 502
    return 400


def _http_error(exc: BillingError) -> HTTPException:
    return HTTPException(
        status_code=_status_for(exc),
        detail={"error": exc.message, "code": exc.error_code, **exc.details},
    )


def _serialize_order(order: BillableOrder) -> EligibleOrderRead:
    patient = order.patient
    return EligibleOrderRead(
        id=order.id,
        patient_id=order.patient_id,
        patient_name=patient.full_name if patient else "",
        patient_dni=patient.dni if patient else None,
        order_date=order.order_date,
        order_type=order.order_type,
        total_sessions=order.total_sessions,
        sessions_used=order.sessions_used,
        completed_at=order.completed_at,
    )


def _serialize_invoice(invoice: Invoice) -> InvoiceRead:
    line_items = [
        InvoiceLineItemRead(
            id=item.id,
            medical_order_id=item.medical_order_id,
            patient_name=item.order.patient.full_name
            if item.order is not None and item.order.patient is not None
            else None,
            sent_to_payer=bool(item.order.sent_to_payer) if item.order is not None else False,
        )
        for item in invoice.line_items
    ]
    return InvoiceRead.model_validate(invoice).model_copy(update={"line_items": line_items})


@router.get("/eligible-orders", response_model=list[EligibleOrderRead])
def eligible_orders(
    payer_id: int = Query(...),
    period_start: date = Query(...),
    period_end: date = Query(...),
    session: Session = Depends(get_session_dependency),
    _operator: Operator = Depends(require_billing_operator),
) -> list[EligibleOrderRead]:
    """List orders that can be put on a new invoice for the payer and period."""

    try:
        orders = invoice_service.list_eligible_orders(
            session, payer_id=payer_id, period_start=period_start, period_end=period_end
        )
    except BillingError as exc:
        raise _http_error(exc) from exc
    return [_serialize_order(order) for order in orders]


@router.post("/invoices", response_model=InvoiceRead, status_code=201)
def create_invoice(
    payload: InvoiceCreate,
    session: Session = Depends(get_session_dependency),
    operator: Operator = Depends(require_billing_operator),
) -> InvoiceRead:
    try:
        invoice = invoice_service.create_invoice(
            session,
            payer_id=payload.payer_id,
            invoice_number=payload.invoice_number,
            period_start=payload.period_start,
            period_end=payload.period_end,
            order_ids=payload.order_ids,
            created_by=operator.id,
        )
        session.commit()
    except BillingError as exc:
        session.rollback()
        raise _http_error(exc) from exc
    return _serialize_invoice(invoice_service.get_invoice(session, invoice.id))


@router.get("/invoices/{invoice_id}", response_model=InvoiceRead)
def read_invoice(
    invoice_id: int,
    session: Session = Depends(get_session_dependency),
    _operator: Operator = Depends(require_billing_operator),
) -> InvoiceRead:
    try:
        invoice = invoice_service.get_invoice(session, invoice_id)
    except BillingError as exc:
        raise _http_error(exc) from exc
    return _serialize_invoice(invoice)


@router.post("/invoices/{invoice_id}/package", response_model=PackageResult)
async def generate_invoice_package(
    invoice_id: int,
    payload: PackageRequest | None = None,
    store: ObjectStore = Depends(get_store),
    operator: Operator = Depends(require_billing_operator),
) -> PackageResult:
    """Generate or regenerate the package synchronously.

    Pipeline failures are reported in the envelope with a 200 response.
    """

    is_regeneration = payload.is_regeneration if payload else False
    try:
        result = await run_in_threadpool(
            generate_package,
            invoice_id,
            is_regeneration=is_regeneration,
            operator_id=operator.id,
            store=store,
        )
    except InvoiceNotFoundError as exc:
        raise _http_error(exc) from exc
    return PackageResult(**result)


@router.post("/invoices/{invoice_id}/package/enqueue", response_model=PackageJobRead, status_code=202)
def enqueue_invoice_package(
    invoice_id: int,
    payload: PackageRequest | None = None,
    session: Session = Depends(get_session_dependency),
    operator: Operator = Depends(require_billing_operator),
) -> PackageJobRead:
    try:
        invoice = invoice_service.get_invoice(session, invoice_id)
    except BillingError as exc:
        raise _http_error(exc) from exc
    if invoice.is_cancelled:
        raise _http_error(InvoiceStateError(invoice_id, invoice.status, "generate a package"))
    if invoice.package_status == PACKAGE_SENT:
        raise _http_error(
            InvoiceStateError(invoice_id, PACKAGE_SENT, "regenerate a delivered package")
        )

    is_regeneration = payload.is_regeneration if payload else False
    task = generate_billing_package.apply_async(
        args=[invoice_id, is_regeneration, operator.id],
        queue=BILLING_QUEUE,
    )
    LOGGER.info(
        "package_generation_enqueued",
        invoice_id=invoice_id,
        task_id=task.id,
        is_regeneration=is_regeneration,
    )
    return PackageJobRead(task_id=task.id, invoice_id=invoice_id, status="queued")


@router.get("/jobs/{task_id}", response_model=PackageJobRead)
def package_job_status(
    task_id: str,
    _operator: Operator = Depends(require_billing_operator),
) -> PackageJobRead:
    """Return the state of an enqueued package generation."""

    result = AsyncResult(task_id, app=celery)
    if result.successful():
        envelope = result.result if isinstance(result.result, dict) else {}
        return PackageJobRead(
            task_id=task_id,
            invoice_id=envelope.get("invoice_id"),
            status="completed" if envelope.get("success") else "error",
            result=PackageResult(**envelope) if envelope else None,
        )
    if result.failed():
        return PackageJobRead(
            task_id=task_id,
            status="error",
            result=PackageResult(success=False, error=str(result.result)),
        )
    state = result.state.lower()
    status = "queued" if state == "pending" else "running" if state in {"started", "received"} else state
    return PackageJobRead(task_id=task_id, status=status)


@router.get("/invoices/{invoice_id}/package/download", response_model=PackageDownload)
async def download_invoice_package(
    invoice_id: int,
    session: Session = Depends(get_session_dependency),
    store: ObjectStore = Depends(get_store),
    _operator: Operator = Depends(require_billing_operator),
) -> PackageDownload:
    """Return a short-lived download link for the package archive."""

    try:
        invoice = invoice_service.get_invoice(session, invoice_id)
    except BillingError as exc:
        raise _http_error(exc) from exc
    if not invoice.package_url:
        raise HTTPException(status_code=404, detail="Package not available")

    settings = get_settings()
    try:
        url = await run_in_threadpool(
            store.presigned_url,
            settings.packages_bucket,
            invoice.package_url,
            expires_in=settings.presigned_url_ttl_seconds,
        )
    except StorageError as exc:
        LOGGER.error("package_download_link_failed", invoice_id=invoice_id, error=exc.message)
        raise HTTPException(status_code=502, detail="Unable to generate download link") from exc

    return PackageDownload(
        invoice_id=invoice_id,
        key=invoice.package_url,
        download_url=url,
        expires_in=settings.presigned_url_ttl_seconds,
    )


@router.get("/invoices/{invoice_id}/package/files", response_model=list[PackageFileRead])
async def list_invoice_package_files(
    invoice_id: int,
    session: Session = Depends(get_session_dependency),
    store: ObjectStore = Depends(get_store),
    _operator: Operator = Depends(require_billing_operator),
) -> list[PackageFileRead]:
    """List every object stored under the invoice's package prefix."""

    try:
        invoice_service.get_invoice(session, invoice_id)
    except BillingError as exc:
        raise _http_error(exc) from exc

    try:
        entries = await run_in_threadpool(
            store.list, get_settings().packages_bucket, package_prefix(invoice_id)
        )
    except StorageError as exc:
        raise _http_error(exc) from exc
    return [
        PackageFileRead(key=entry.key, size=entry.size, last_modified=entry.last_modified)
        for entry in entries
    ]


@router.post("/invoices/{invoice_id}/cancel", response_model=InvoiceRead)
def cancel_invoice(
    invoice_id: int,
    session: Session = Depends(get_session_dependency),
    operator: Operator = Depends(require_billing_operator),
) -> InvoiceRead:
    try:
        invoice = invoice_service.cancel_invoice(session, invoice_id, operator_id=operator.id)
        session.commit()
    except BillingError as exc:
        session.rollback()
        raise _http_error(exc) from exc
    return _serialize_invoice(invoice)


@router.post("/invoices/{invoice_id}/mark-sent", response_model=InvoiceRead)
def mark_invoice_sent(
    invoice_id: int,
    session: Session = Depends(get_session_dependency),
    operator: Operator = Depends(require_billing_operator),
) -> InvoiceRead:
    try:
        invoice = invoice_service.mark_sent(session, invoice_id, operator_id=operator.id)
        session.commit()
    except BillingError as exc:
        session.rollback()
        raise _http_error(exc) from exc
    return _serialize_invoice(invoice)


@router.post("/validate", response_model=ValidationReport)
def validate_orders(
    payload: ValidateRequest,
    session: Session = Depends(get_session_dependency),
    store: ObjectStore = Depends(get_store),
    _operator: Operator = Depends(require_billing_operator),
) -> ValidationReport:
    """Check document completeness for a selection of orders."""

    results = validate_order_ids(session, store, payload.order_ids)
    return ValidationReport(
        is_complete=all(result.is_complete for result in results),
        results=[ValidationResultRead.model_validate(result) for result in results],
    )
