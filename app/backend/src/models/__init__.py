"""ORM models exposed for easy imports."""

from .export_template import ExportTemplate
from .invoice import (
    INVOICE_ACTIVE,
    INVOICE_CANCELLED,
    PACKAGE_ERROR,
    PACKAGE_PENDING,
    PACKAGE_READY,
    PACKAGE_SENT,
    Invoice,
)
from .line_item import InvoiceLineItem
from .medical_order import BillableOrder
from .package_document import PackageDocument
from .patient import Patient
from .payer import Payer
from .presentation_document import PresentationDocument

__all__ = [
    "BillableOrder",
    "ExportTemplate",
    "INVOICE_ACTIVE",
    "INVOICE_CANCELLED",
    "Invoice",
    "InvoiceLineItem",
    "PACKAGE_ERROR",
    "PACKAGE_PENDING",
    "PACKAGE_READY",
    "PACKAGE_SENT",
    "PackageDocument",
    "Patient",
    "Payer",
    "PresentationDocument",
]
