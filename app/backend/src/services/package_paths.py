"""Deterministic object keys inside an invoice's package namespace."""

from __future__ import annotations

from datetime import date

from .s3 import sanitize_file_name

PDF_FOLDER = "pdfs"


def package_prefix(invoice_id: int) -> str:
    return f"packages/{invoice_id}/"


def spreadsheet_key(invoice_id: int, payer_name: str, reference_date: date) -> str:
    filename = sanitize_file_name(f"facturacion_{payer_name}_{reference_date.isoformat()}.xlsx")
    return f"{package_prefix(invoice_id)}excel/{filename}"


def consolidated_pdf_name(last_name: str, first_name: str, order_date: date | None) -> str:
    date_token = order_date.isoformat() if order_date else "sin_fecha"
    return sanitize_file_name(f"{last_name}_{first_name}_{date_token}.pdf")


def consolidated_pdf_key(invoice_id: int, filename: str) -> str:
    return f"{package_prefix(invoice_id)}{PDF_FOLDER}/{filename}"


def archive_key(invoice_id: int, payer_name: str, reference_date: date) -> str:
    filename = sanitize_file_name(f"paquete_{payer_name}_{reference_date.isoformat()}.zip")
    return f"{package_prefix(invoice_id)}{filename}"


__all__ = [
    "PDF_FOLDER",
    "archive_key",
    "consolidated_pdf_key",
    "consolidated_pdf_name",
    "package_prefix",
    "spreadsheet_key",
]
