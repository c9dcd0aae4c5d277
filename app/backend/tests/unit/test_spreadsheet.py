from __future__ import annotations

from datetime import date, datetime, timezone
from io import BytesIO

import pandas as pd
from sqlalchemy import select

from app.backend.src.core.config import get_settings
from app.backend.src.db import session_scope
from app.backend.src.models import BillableOrder, ExportTemplate, Payer
from app.backend.src.services.spreadsheet import (
    XLSX_CONTENT_TYPE,
    generate_spreadsheet,
    resolve_columns,
    sheet_title,
)


def _generate(store, payer_id: int, order_ids: list[int], invoice_id: int = 1):  # type: ignore[no-untyped-def]
    with session_scope() as session:
        payer = session.get(Payer, payer_id)
        by_id = {
            order.id: order
            for order in session.scalars(select(BillableOrder).where(BillableOrder.id.in_(order_ids)))
        }
        artifact = generate_spreadsheet(
            session,
            store,
            payer=payer,
            invoice_id=invoice_id,
            orders=[by_id[order_id] for order_id in order_ids],
            reference_date=date(2024, 5, 31),
        )
    data = store.download(get_settings().packages_bucket, artifact.key)
    return artifact, pd.read_excel(BytesIO(data), sheet_name=None, dtype=str)


def test_default_columns_one_row_per_order(store, payer_id, make_order) -> None:  # type: ignore[no-untyped-def]
    first = make_order(first_name="Ana", last_name="García", dni="30111222")
    second = make_order(first_name="Luis", last_name="Zárate", dni="28999000")

    artifact, sheets = _generate(store, payer_id, [first.order_id, second.order_id])

    assert artifact.key == "packages/1/excel/facturacion_OSDE_Nandu_2024-05-31.xlsx"
    assert artifact.row_count == 2
    assert store.content_type(get_settings().packages_bucket, artifact.key) == XLSX_CONTENT_TYPE

    assert list(sheets) == ["OSDE Ñandú"]
    frame = sheets["OSDE Ñandú"]
    assert list(frame.columns) == [
        "Paciente",
        "DNI",
        "Fecha Orden",
        "Sesiones Totales",
        "Sesiones Realizadas",
    ]
    assert frame["Paciente"].tolist() == ["García Ana", "Zárate Luis"]
    assert frame["DNI"].tolist() == ["30111222", "28999000"]
    assert frame["Fecha Orden"].tolist() == ["2024-05-01", "2024-05-01"]


def test_template_columns_render_by_order_value(store, payer_id, make_order) -> None:  # type: ignore[no-untyped-def]
    seeded = make_order(dni="30111222")
    with session_scope() as session:
        session.add(
            ExportTemplate(
                payer_id=payer_id,
                template_name="OSDE mensual",
                is_active=True,
                column_config=[
                    {"field": "sessions_used", "label": "Realizadas", "order": 3},
                    {"field": "patient_dni", "label": "Documento", "order": 1},
                    {"field": "unknown_field", "label": "Ignorada", "order": 0},
                    {"field": "order_number", "label": "Nro Orden", "order": 2},
                ],
            )
        )

    _, sheets = _generate(store, payer_id, [seeded.order_id])
    frame = next(iter(sheets.values()))

    assert list(frame.columns) == ["Documento", "Nro Orden", "Realizadas"]
    assert frame.iloc[0].tolist() == ["30111222", str(seeded.order_id), "10"]


def test_newest_active_template_wins(store, payer_id, make_order) -> None:  # type: ignore[no-untyped-def]
    seeded = make_order()
    with session_scope() as session:
        session.add_all(
            [
                ExportTemplate(
                    payer_id=payer_id,
                    template_name="viejo",
                    is_active=True,
                    created_at=datetime(2023, 1, 1, tzinfo=timezone.utc),
                    column_config=[{"field": "patient_name", "label": "Viejo", "order": 0}],
                ),
                ExportTemplate(
                    payer_id=payer_id,
                    template_name="nuevo",
                    is_active=True,
                    created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
                    column_config=[{"field": "patient_name", "label": "Nuevo", "order": 0}],
                ),
                ExportTemplate(
                    payer_id=payer_id,
                    template_name="inactivo",
                    is_active=False,
                    created_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
                    column_config=[{"field": "patient_name", "label": "Inactivo", "order": 0}],
                ),
            ]
        )

    _, sheets = _generate(store, payer_id, [seeded.order_id])

    assert list(next(iter(sheets.values())).columns) == ["Nuevo"]


def test_resolve_columns_keeps_stored_order_on_ties() -> None:
    columns = resolve_columns(
        [
            {"field": "doctor_name", "label": "Médico", "order": 1},
            {"field": "patient_name", "label": "Paciente", "order": 1},
            {"field": "order_date", "label": "Fecha", "order": 0},
        ]
    )

    assert [column.label for column in columns] == ["Fecha", "Médico", "Paciente"]


def test_resolve_columns_falls_back_to_defaults() -> None:
    assert [column.field for column in resolve_columns(None)] == [
        "patient_name",
        "patient_dni",
        "order_date",
        "sessions_total",
        "sessions_used",
    ]


def test_sheet_title_strips_invalid_characters_and_truncates() -> None:
    assert sheet_title("IOMA [Prov/Bs.As.]: *ambulatorio*?") == "IOMA ProvBs.As. ambulatorio"
    assert len(sheet_title("x" * 50)) == 31
    assert sheet_title("") == "Facturacion"
