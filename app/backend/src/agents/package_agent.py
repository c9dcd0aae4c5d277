"""Billing package generation agent."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from time import perf_counter
from typing import Any

import structlog
from sqlalchemy.orm import selectinload

from ..core.errors import (
    EligibilityError,
    GenerationInProgressError,
    IncompleteDocumentsError,
    InvoiceNotFoundError,
    InvoiceStateError,
)
from ..core.locks import invoice_lock
from ..core.storage import ObjectStore
from ..db import get_session, session_scope
from ..models import (
    INVOICE_CANCELLED,
    PACKAGE_ERROR,
    PACKAGE_READY,
    PACKAGE_SENT,
    Invoice,
    InvoiceLineItem,
    PackageDocument,
)
from ..services.completeness import validate_orders
from ..services.documents import OrderSources, load_order_sources
from ..services.invoices import get_invoice
from ..services.metrics import billing_packages_total, package_generation_seconds
from ..services.package_bundler import PackageArchive, bundle_package
from ..services.package_paths import archive_key
from ..services.pdf_consolidation import ConsolidatedDocument, consolidate_orders
from ..services.s3 import get_object_store
from ..services.spreadsheet import SpreadsheetArtifact, generate_spreadsheet

LOGGER = structlog.get_logger(__name__)


@dataclass(slots=True)
class _PreparedPackage:
    payer_name: str
    reference_date: date
    spreadsheet: SpreadsheetArtifact
    sources: list[OrderSources]


class PackageAgent:
    """Builds the deliverable package of one invoice.

    The order set always comes from the invoice's persisted line items.
    Orders are flagged as sent in the same transaction that marks the
    invoice ready, so a failure at any earlier step leaves them untouched.
    """

    def __init__(
        self,
        invoice_id: int,
        *,
        is_regeneration: bool = False,
        operator_id: str | None = None,
        store: ObjectStore | None = None,
    ) -> None:
        self.invoice_id = invoice_id
        self.is_regeneration = is_regeneration
        self.operator_id = operator_id
        self.store = store or get_object_store()
        self.logger = LOGGER.bind(
            invoice_id=invoice_id,
            is_regeneration=is_regeneration,
            operator_id=operator_id,
        )

    def run(self) -> dict[str, Any]:
        """Generate the package and return the result envelope.

        Raises :class:`InvoiceNotFoundError` for unknown invoices; every
        other failure is reported in the envelope.
        """

        start = perf_counter()
        self.logger.info("package_generation_start")
        try:
            with invoice_lock(self.invoice_id):
                return self._run_locked()
        except GenerationInProgressError as exc:
            billing_packages_total.labels(status="busy").inc()
            self.logger.warning("package_generation_busy")
            return self._failure(exc.message)
        finally:
            package_generation_seconds.observe(perf_counter() - start)

    def _run_locked(self) -> dict[str, Any]:
        try:
            prepared = self._prepare()
            documents = consolidate_orders(
                self.store, prepared.sources, invoice_id=self.invoice_id
            )
            archive = bundle_package(
                self.store,
                invoice_id=self.invoice_id,
                spreadsheet_key=prepared.spreadsheet.key,
                pdf_keys=[document.key for document in documents],
                archive_key=archive_key(
                    self.invoice_id, prepared.payer_name, prepared.reference_date
                ),
            )
            self._commit(documents, archive)
        except InvoiceNotFoundError:
            billing_packages_total.labels(status="failed").inc()
            raise
        except Exception as exc:
            billing_packages_total.labels(status="failed").inc()
            message = getattr(exc, "message", None) or str(exc) or exc.__class__.__name__
            self.logger.error(
                "package_generation_failed",
                error=message,
                error_type=exc.__class__.__name__,
            )
            self._record_failure(message)
            return self._failure(message)

        billing_packages_total.labels(status="success").inc()
        self.logger.info(
            "package_generation_complete",
            package_url=archive.key,
            pdf_count=len(documents),
            skipped=len(archive.skipped),
        )
        return {
            "success": True,
            "invoice_id": self.invoice_id,
            "package_url": archive.key,
            "pdf_count": len(documents),
            "excel_generated": True,
            "is_regeneration": self.is_regeneration,
        }

    def _prepare(self) -> _PreparedPackage:
        """Validate the line items and write the spreadsheet."""

        with get_session() as session:
            invoice = get_invoice(session, self.invoice_id)
            if invoice.is_cancelled:
                raise InvoiceStateError(self.invoice_id, INVOICE_CANCELLED, "generate a package")
            if invoice.package_status == PACKAGE_SENT:
                raise InvoiceStateError(
                    self.invoice_id, PACKAGE_SENT, "regenerate a delivered package"
                )

            orders = [item.order for item in invoice.line_items if item.order is not None]
            if not orders:
                raise EligibilityError(f"Invoice {self.invoice_id} has no line items")

            results = validate_orders(session, self.store, orders)
            if any(not result.is_complete for result in results):
                raise IncompleteDocumentsError(results)
            self.logger.info("package_documents_validated", orders=len(orders))

            reference_date = invoice.period_end
            spreadsheet = generate_spreadsheet(
                session,
                self.store,
                payer=invoice.payer,
                invoice_id=self.invoice_id,
                orders=orders,
                reference_date=reference_date,
            )
            return _PreparedPackage(
                payer_name=invoice.payer.name,
                reference_date=reference_date,
                spreadsheet=spreadsheet,
                sources=load_order_sources(session, orders),
            )

    def _commit(self, documents: list[ConsolidatedDocument], archive: PackageArchive) -> None:
        """Register documents, flag orders and mark the invoice ready atomically."""

        now = datetime.now(timezone.utc)
        with session_scope() as session:
            invoice = session.get(
                Invoice,
                self.invoice_id,
                options=[
                    selectinload(Invoice.line_items).selectinload(InvoiceLineItem.order),
                    selectinload(Invoice.package_documents),
                ],
            )
            if invoice is None:
                raise InvoiceNotFoundError(self.invoice_id)
            if invoice.is_cancelled:
                raise InvoiceStateError(self.invoice_id, INVOICE_CANCELLED, "generate a package")
            if invoice.package_status == PACKAGE_SENT:
                raise InvoiceStateError(
                    self.invoice_id, PACKAGE_SENT, "regenerate a delivered package"
                )

            invoice.package_documents.clear()
            session.flush()
            invoice.package_documents.extend(
                PackageDocument(
                    medical_order_id=document.order_id,
                    patient_name=document.patient_name,
                    order_date=document.order_date,
                    consolidated_pdf_url=document.key,
                    consolidated_pdf_name=document.filename,
                    page_count=document.page_count,
                )
                for document in documents
            )

            for item in invoice.line_items:
                item.order.sent_to_payer = True

            invoice.package_status = PACKAGE_READY
            invoice.package_url = archive.key
            invoice.package_error = None
            invoice.package_generated_at = now
            if self.is_regeneration:
                invoice.regeneration_count = (invoice.regeneration_count or 0) + 1
                invoice.last_regenerated_at = now
                invoice.last_regenerated_by = self.operator_id

    def _record_failure(self, message: str) -> None:
        try:
            with session_scope() as session:
                invoice = session.get(Invoice, self.invoice_id)
                if invoice is None or invoice.is_cancelled or invoice.package_status == PACKAGE_SENT:
                    return
                invoice.package_status = PACKAGE_ERROR
                invoice.package_error = message
        except Exception as exc:
            self.logger.error("package_failure_not_recorded", error=str(exc))

    @staticmethod
    def _failure(message: str) -> dict[str, Any]:
        return {"success": False, "error": message}


def generate_package(
    invoice_id: int,
    *,
    is_regeneration: bool = False,
    operator_id: str | None = None,
    store: ObjectStore | None = None,
) -> dict[str, Any]:
    """Run :class:`PackageAgent` for ``invoice_id``."""

    agent = PackageAgent(
        invoice_id,
        is_regeneration=is_regeneration,
        operator_id=operator_id,
        store=store,
    )
    return agent.run()


__all__ = ["PackageAgent", "generate_package"]
