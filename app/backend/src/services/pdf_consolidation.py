"""Per-patient PDF consolidation.

Each billed order gets one merged PDF built from its four mandatory
documents in :data:`DOCUMENT_SEQUENCE` order. A merge either completes
with every page of every source or uploads nothing.
"""

from __future__ import annotations

from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import date
from io import BytesIO
from time import perf_counter

import structlog
from pypdf import PdfReader, PdfWriter

from app.backend.src.core.config import get_settings
from app.backend.src.core.errors import (
    ConsolidationError,
    StorageError,
    StorageReferenceError,
)
from app.backend.src.core.storage import ObjectStore

from .documents import DOCUMENT_SEQUENCE, DocumentKind, OrderSources
from .metrics import pdf_consolidation_seconds
from .package_paths import consolidated_pdf_key, consolidated_pdf_name
from .storage_reference import parse_reference

LOGGER = structlog.get_logger(__name__)

PDF_CONTENT_TYPE = "application/pdf"
PRODUCER = "clinic-billing-packages"


@dataclass(frozen=True, slots=True)
class ConsolidatedDocument:
    """A merged PDF stored in the package namespace."""

    order_id: int
    patient_name: str
    order_date: date | None
    key: str
    filename: str
    page_count: int


def _fetch_source(
    store: ObjectStore,
    sources: OrderSources,
    kind: DocumentKind,
    *,
    default_bucket: str,
) -> bytes:
    reference = sources.reference_for(kind)
    if not reference:
        raise ConsolidationError(
            f"Order {sources.order_id}: {kind.label} is not registered",
            order_id=sources.order_id,
            document_kind=kind.value,
        )

    try:
        parsed = parse_reference(reference)
    except StorageReferenceError as exc:
        raise ConsolidationError(
            f"Order {sources.order_id}: {kind.label} has an invalid reference ({exc.message})",
            order_id=sources.order_id,
            document_kind=kind.value,
        ) from exc

    bucket = parsed.resolve_bucket(default_bucket)
    try:
        data = store.download(bucket, parsed.key)
    except StorageError as exc:
        raise ConsolidationError(
            f"Order {sources.order_id}: failed to download {kind.label} "
            f"from {bucket}/{parsed.key}: {exc.message}",
            order_id=sources.order_id,
            document_kind=kind.value,
            key=parsed.key,
        ) from exc

    if data is None:
        raise ConsolidationError(
            f"Order {sources.order_id}: {kind.label} not found at {bucket}/{parsed.key}",
            order_id=sources.order_id,
            document_kind=kind.value,
            key=parsed.key,
        )
    return data


def _append_pages(
    writer: PdfWriter, data: bytes, *, sources: OrderSources, kind: DocumentKind
) -> int:
    try:
        reader = PdfReader(BytesIO(data))
        if reader.is_encrypted:
            reader.decrypt("")
        pages = list(reader.pages)
        for page in pages:
            writer.add_page(page)
    except Exception as exc:  # pypdf raises a wide range of parse errors
        raise ConsolidationError(
            f"Order {sources.order_id}: {kind.label} is not a readable PDF: {exc}",
            order_id=sources.order_id,
            document_kind=kind.value,
        ) from exc
    if not pages:
        raise ConsolidationError(
            f"Order {sources.order_id}: {kind.label} has no pages",
            order_id=sources.order_id,
            document_kind=kind.value,
        )
    return len(pages)


def merge_order_documents(
    store: ObjectStore,
    sources: OrderSources,
    *,
    default_bucket: str,
) -> tuple[bytes, int]:
    """Return the merged PDF bytes and page count for one order."""

    writer = PdfWriter()
    page_counts: dict[str, int] = {}
    for kind in DOCUMENT_SEQUENCE:
        data = _fetch_source(store, sources, kind, default_bucket=default_bucket)
        page_counts[kind.value] = _append_pages(writer, data, sources=sources, kind=kind)

    total_pages = len(writer.pages)
    if total_pages == 0:
        raise ConsolidationError(
            f"Order {sources.order_id}: merged document has no pages",
            order_id=sources.order_id,
        )

    writer.add_metadata(
        {
            "/Producer": PRODUCER,
            "/Title": f"{sources.patient_label} - orden {sources.order_id}",
        }
    )
    buffer = BytesIO()
    writer.write(buffer)
    LOGGER.info(
        "order_documents_merged",
        order_id=sources.order_id,
        pages=total_pages,
        page_counts=page_counts,
    )
    return buffer.getvalue(), total_pages


def consolidate_order(
    store: ObjectStore,
    sources: OrderSources,
    *,
    invoice_id: int,
    filename: str | None = None,
) -> ConsolidatedDocument:
    """Merge and upload the consolidated PDF of one order."""

    settings = get_settings()
    start = perf_counter()
    payload, page_count = merge_order_documents(
        store, sources, default_bucket=settings.documents_bucket
    )
    filename = filename or consolidated_pdf_name(
        sources.patient_last_name, sources.patient_first_name, sources.order_date
    )
    key = consolidated_pdf_key(invoice_id, filename)
    store.upload(
        settings.packages_bucket,
        key,
        payload,
        content_type=PDF_CONTENT_TYPE,
        upsert=True,
    )
    pdf_consolidation_seconds.observe(perf_counter() - start)
    LOGGER.info(
        "consolidated_pdf_uploaded",
        invoice_id=invoice_id,
        order_id=sources.order_id,
        key=key,
    )
    return ConsolidatedDocument(
        order_id=sources.order_id,
        patient_name=sources.patient_label,
        order_date=sources.order_date,
        key=key,
        filename=filename,
        page_count=page_count,
    )


def unique_filenames(sources: Sequence[OrderSources]) -> list[str]:
    """Return one archive filename per order.

    Two orders of the same patient on the same date would collide, so
    every clashing name gets the order id appended.
    """

    names = [
        consolidated_pdf_name(item.patient_last_name, item.patient_first_name, item.order_date)
        for item in sources
    ]
    counts: dict[str, int] = {}
    for name in names:
        counts[name] = counts.get(name, 0) + 1
    return [
        name if counts[name] == 1 else f"{name[:-len('.pdf')]}_{item.order_id}.pdf"
        for name, item in zip(names, sources)
    ]


def consolidate_orders(
    store: ObjectStore,
    sources: Sequence[OrderSources],
    *,
    invoice_id: int,
    max_workers: int | None = None,
) -> list[ConsolidatedDocument]:
    """Consolidate every order, fanning out across a bounded thread pool.

    Results follow the order of ``sources``. The first failure (in that
    order) is raised and pending merges are cancelled.
    """

    if not sources:
        return []

    filenames = unique_filenames(sources)
    workers = max(1, min(max_workers or get_settings().consolidation_workers, len(sources)))
    if workers == 1:
        return [
            consolidate_order(store, item, invoice_id=invoice_id, filename=filename)
            for item, filename in zip(sources, filenames)
        ]

    results: list[ConsolidatedDocument] = []
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="consolidate") as executor:
        futures: list[Future[ConsolidatedDocument]] = [
            executor.submit(
                consolidate_order, store, item, invoice_id=invoice_id, filename=filename
            )
            for item, filename in zip(sources, filenames)
        ]
        try:
            for future in futures:
                results.append(future.result())
        except Exception:
            for future in futures:
                future.cancel()
            raise
    return results


__all__ = [
    "ConsolidatedDocument",
    "PDF_CONTENT_TYPE",
    "consolidate_order",
    "consolidate_orders",
    "merge_order_documents",
    "unique_filenames",
]
