"""Error types raised by the billing-package pipeline."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from app.backend.src.services.completeness import ValidationResult


class BillingError(Exception):
    """Base error for billing operations."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class InvoiceNotFoundError(BillingError):
    """Invoice does not exist."""

    def __init__(self, invoice_id: int) -> None:
        super().__init__(
            f"Invoice {invoice_id} not found",
            "INVOICE_NOT_FOUND",
            {"invoice_id": invoice_id},
        )


class InvoiceStateError(BillingError):
    """The invoice is in a state that does not allow the operation."""

    def __init__(self, invoice_id: int, state: str, operation: str) -> None:
        super().__init__(
            f"Invoice {invoice_id} is {state}; cannot {operation}",
            "INVALID_INVOICE_STATE",
            {"invoice_id": invoice_id, "state": state, "operation": operation},
        )


class EligibilityError(BillingError):
    """The selected orders cannot be billed."""

    def __init__(self, message: str, order_ids: list[int] | None = None) -> None:
        super().__init__(message, "INELIGIBLE_ORDERS", {"order_ids": order_ids or []})


class IncompleteDocumentsError(BillingError):
    """At least one order is missing mandatory documents."""

    def __init__(self, results: list["ValidationResult"]) -> None:
        self.results = [result for result in results if not result.is_complete]
        summary = "; ".join(
            f"{result.patient_name} (orden {result.order_id}): "
            + ", ".join(result.missing_documents)
            for result in self.results
        )
        super().__init__(
            f"Missing documents for {len(self.results)} presentation(s): {summary}",
            "INCOMPLETE_DOCUMENTS",
            {"orders": [result.order_id for result in self.results]},
        )


class StorageError(BillingError):
    """Object store read or write failure."""

    def __init__(self, message: str, *, bucket: str, key: str) -> None:
        super().__init__(message, "STORAGE_ERROR", {"bucket": bucket, "key": key})


class StorageReferenceError(BillingError, ValueError):
    """A stored document reference cannot be turned into a storage key."""

    def __init__(self, raw: str | None, reason: str) -> None:
        super().__init__(
            f"Invalid storage reference {raw!r}: {reason}",
            "INVALID_STORAGE_REFERENCE",
            {"reference": raw},
        )


class ConsolidationError(BillingError):
    """A per-order PDF merge could not be completed."""

    def __init__(
        self,
        message: str,
        *,
        order_id: int,
        document_kind: str | None = None,
        key: str | None = None,
    ) -> None:
        super().__init__(
            message,
            "CONSOLIDATION_FAILED",
            {"order_id": order_id, "document_kind": document_kind, "key": key},
        )


class BundlingError(BillingError):
    """The package archive could not be assembled or stored."""

    def __init__(self, message: str, *, key: str | None = None) -> None:
        super().__init__(message, "BUNDLING_FAILED", {"key": key})


class GenerationInProgressError(BillingError):
    """Another generation for the same invoice holds the lock."""

    def __init__(self, invoice_id: int) -> None:
        super().__init__(
            f"Package generation already in progress for invoice {invoice_id}",
            "GENERATION_IN_PROGRESS",
            {"invoice_id": invoice_id},
        )


__all__ = [
    "BillingError",
    "BundlingError",
    "ConsolidationError",
    "EligibilityError",
    "GenerationInProgressError",
    "IncompleteDocumentsError",
    "InvoiceNotFoundError",
    "InvoiceStateError",
    "StorageError",
    "StorageReferenceError",
]
