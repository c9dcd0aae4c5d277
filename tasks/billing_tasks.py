"""Celery tasks for billing package generation."""

from __future__ import annotations

from typing import Any

import structlog

from app.backend.src.agents.package_agent import generate_package
from app.backend.src.core.errors import InvoiceNotFoundError

from .worker import celery

LOGGER = structlog.get_logger(__name__)


@celery.task(name="tasks.generate_billing_package")
def generate_billing_package(
    invoice_id: int,
    is_regeneration: bool = False,
    operator_id: str | None = None,
) -> dict[str, Any]:
    """Generate (or regenerate) the package of ``invoice_id`` in the background.

    Pipeline failures come back in the result envelope; there is no
    automatic retry.
    """

    try:
        result = generate_package(
            invoice_id,
            is_regeneration=is_regeneration,
            operator_id=operator_id,
        )
    except InvoiceNotFoundError as exc:
        LOGGER.warning("celery_package_invoice_missing", invoice_id=invoice_id)
        return {"success": False, "error": exc.message}

    if result.get("success"):
        LOGGER.info("celery_package_success", invoice_id=invoice_id)
    else:
        LOGGER.warning("celery_package_failure", invoice_id=invoice_id, error=result.get("error"))
    return result


__all__ = ["generate_billing_package"]
