"""Billing package API schemas."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field


class EligibleOrderRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    patient_id: int
    patient_name: str
    patient_dni: str | None
    order_date: date | None
    order_type: str | None
    total_sessions: int
    sessions_used: int
    completed_at: datetime | None


class InvoiceCreate(BaseModel):
    """Payload for creating an invoice from a selection of orders."""

    payer_id: int
    invoice_number: str = Field(min_length=1, max_length=128)
    period_start: date
    period_end: date
    order_ids: list[int] = Field(min_length=1)


class InvoiceLineItemRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    medical_order_id: int
    patient_name: str | None = None
    sent_to_payer: bool = False


class PackageDocumentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    medical_order_id: int
    patient_name: str
    order_date: date | None
    consolidated_pdf_url: str
    consolidated_pdf_name: str
    page_count: int
    created_at: datetime | None = None


class InvoiceRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    payer_id: int
    invoice_number: str
    period_start: date
    period_end: date
    total_presentations: int
    status: str
    package_status: str
    package_url: str | None
    package_error: str | None
    package_generated_at: datetime | None
    regeneration_count: int
    last_regenerated_at: datetime | None
    last_regenerated_by: str | None
    created_by: str | None
    cancelled_at: datetime | None
    cancelled_by: str | None
    line_items: list[InvoiceLineItemRead] = []
    package_documents: list[PackageDocumentRead] = []


class PackageRequest(BaseModel):
    is_regeneration: bool = False


class PackageResult(BaseModel):
    """Envelope returned by package generation."""

    success: bool
    invoice_id: int | None = None
    package_url: str | None = None
    pdf_count: int | None = None
    excel_generated: bool | None = None
    is_regeneration: bool | None = None
    error: str | None = None


class PackageJobRead(BaseModel):
    task_id: str
    invoice_id: int | None = None
    status: str
    result: PackageResult | None = None


class PackageDownload(BaseModel):
    invoice_id: int
    key: str
    download_url: str
    expires_in: int


class PackageFileRead(BaseModel):
    key: str
    size: int
    last_modified: datetime | None = None


class ValidateRequest(BaseModel):
    order_ids: list[int] = Field(min_length=1)


class ValidationResultRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    order_id: int
    patient_name: str
    is_complete: bool
    missing_documents: list[str]


class ValidationReport(BaseModel):
    is_complete: bool
    results: list[ValidationResultRead]
