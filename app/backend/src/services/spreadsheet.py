"""Billing spreadsheet generation."""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import date
from io import BytesIO
from typing import Any

import pandas as pd
import structlog
from openpyxl.utils import get_column_letter
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.backend.src.core.config import get_settings
from app.backend.src.core.storage import ObjectStore

from ..models import BillableOrder, ExportTemplate, Payer
from .package_paths import spreadsheet_key

LOGGER = structlog.get_logger(__name__)

XLSX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
COLUMN_WIDTH = 20

DEFAULT_COLUMNS: list[dict[str, Any]] = [
    {"field": "patient_name", "label": "Paciente", "order": 0},
    {"field": "patient_dni", "label": "DNI", "order": 1},
    {"field": "order_date", "label": "Fecha Orden", "order": 2},
    {"field": "sessions_total", "label": "Sesiones Totales", "order": 3},
    {"field": "sessions_used", "label": "Sesiones Realizadas", "order": 4},
]


def _patient_name(order: BillableOrder) -> str:
    patient = order.patient
    if patient is None:
        return ""
    return patient.full_name


def _iso(value: date | None) -> str:
    return value.isoformat() if value else ""


FIELD_EXTRACTORS: dict[str, Callable[[BillableOrder], Any]] = {
    "patient_name": _patient_name,
    "patient_dni": lambda order: (order.patient.dni if order.patient else None) or "",
    "order_date": lambda order: _iso(order.order_date),
    "sessions_total": lambda order: order.total_sessions or 0,
    "sessions_used": lambda order: order.sessions_used or 0,
    "doctor_name": lambda order: order.doctor_name or "",
    "order_number": lambda order: str(order.id),
    "order_type": lambda order: order.order_type or "",
    "completion_date": lambda order: _iso(order.completed_at.date() if order.completed_at else None),
}


@dataclass(frozen=True, slots=True)
class SpreadsheetColumn:
    field: str
    label: str
    order: float


@dataclass(frozen=True, slots=True)
class SpreadsheetArtifact:
    """The uploaded spreadsheet of an invoice package."""

    key: str
    filename: str
    row_count: int
    columns: tuple[str, ...]


def load_active_template(session: Session, payer_id: int) -> ExportTemplate | None:
    """Return the payer's active template, newest first."""

    return session.scalars(
        select(ExportTemplate)
        .where(ExportTemplate.payer_id == payer_id)
        .where(ExportTemplate.is_active.is_(True))
        .order_by(ExportTemplate.created_at.desc(), ExportTemplate.id.desc())
        .limit(1)
    ).first()


def resolve_columns(column_config: Sequence[dict[str, Any]] | None) -> list[SpreadsheetColumn]:
    """Return renderable columns sorted by their display order.

    Entries mapping to unknown fields are dropped so that a template
    referencing a retired field still renders.
    """

    config = list(column_config or []) or DEFAULT_COLUMNS
    columns: list[SpreadsheetColumn] = []
    for position, entry in enumerate(config):
        if not isinstance(entry, dict):
            continue
        field_name = str(entry.get("field") or "").strip()
        if field_name not in FIELD_EXTRACTORS:
            LOGGER.info("spreadsheet_field_skipped", field=field_name or None)
            continue
        try:
            order = float(entry.get("order", position))
        except (TypeError, ValueError):
            order = float(position)
        label = str(entry.get("label") or field_name)
        columns.append(SpreadsheetColumn(field=field_name, label=label, order=order))

    # sorted() is stable, so ties keep their stored order
    return sorted(columns, key=lambda column: column.order)


def sheet_title(payer_name: str) -> str:
    """Excel sheet titles are capped at 31 chars and reject ``[]:*?/\\``."""

    title = re.sub(r"[\[\]:*?/\\]", "", payer_name or "").strip().strip("'")
    return (title or "Facturacion")[:31]


def build_frame(orders: Sequence[BillableOrder], columns: Sequence[SpreadsheetColumn]) -> pd.DataFrame:
    rows = [[FIELD_EXTRACTORS[column.field](order) for column in columns] for order in orders]
    return pd.DataFrame(rows, columns=[column.label for column in columns])


def render_workbook(frame: pd.DataFrame, title: str) -> bytes:
    buffer = BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        frame.to_excel(writer, sheet_name=title, index=False)
        worksheet = writer.sheets[title]
        for index in range(1, len(frame.columns) + 1):
            worksheet.column_dimensions[get_column_letter(index)].width = COLUMN_WIDTH
    return buffer.getvalue()


def generate_spreadsheet(
    session: Session,
    store: ObjectStore,
    *,
    payer: Payer,
    invoice_id: int,
    orders: Sequence[BillableOrder],
    reference_date: date,
) -> SpreadsheetArtifact:
    """Render one row per order and upload the workbook to the package namespace."""

    template = load_active_template(session, payer.id)
    columns = resolve_columns(template.column_config if template else None)
    LOGGER.info(
        "spreadsheet_columns_resolved",
        invoice_id=invoice_id,
        template_id=template.id if template else None,
        columns=[column.label for column in columns],
    )

    frame = build_frame(orders, columns)
    payload = render_workbook(frame, sheet_title(payer.name))
    key = spreadsheet_key(invoice_id, payer.name, reference_date)
    store.upload(
        get_settings().packages_bucket,
        key,
        payload,
        content_type=XLSX_CONTENT_TYPE,
        upsert=True,
    )
    LOGGER.info("spreadsheet_uploaded", invoice_id=invoice_id, key=key, rows=len(frame))
    return SpreadsheetArtifact(
        key=key,
        filename=key.rsplit("/", 1)[-1],
        row_count=len(frame),
        columns=tuple(column.label for column in columns),
    )


__all__ = [
    "DEFAULT_COLUMNS",
    "FIELD_EXTRACTORS",
    "SpreadsheetArtifact",
    "SpreadsheetColumn",
    "XLSX_CONTENT_TYPE",
    "build_frame",
    "generate_spreadsheet",
    "load_active_template",
    "resolve_columns",
    "sheet_title",
]
