"""ZIP archive assembly for invoice packages."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from io import BytesIO
from zipfile import ZIP_DEFLATED, ZipFile

import structlog

from app.backend.src.core.config import get_settings
from app.backend.src.core.errors import BundlingError, StorageError
from app.backend.src.core.storage import ObjectStore

from .metrics import bundle_skipped_files_total
from .package_paths import PDF_FOLDER

LOGGER = structlog.get_logger(__name__)

ZIP_CONTENT_TYPE = "application/zip"


@dataclass(slots=True)
class PackageArchive:
    """The uploaded archive and what went into it."""

    key: str
    members: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


def _basename(key: str) -> str:
    return key.rsplit("/", 1)[-1]


def bundle_package(
    store: ObjectStore,
    *,
    invoice_id: int,
    spreadsheet_key: str,
    pdf_keys: Sequence[str],
    archive_key: str,
) -> PackageArchive:
    """Write the spreadsheet and consolidated PDFs into one ZIP and upload it.

    The spreadsheet is mandatory. A consolidated PDF that cannot be read
    back is logged and left out; consolidation already proved it was
    produced, so a miss here is a storage problem rather than a data gap.
    """

    bucket = get_settings().packages_bucket
    logger = LOGGER.bind(invoice_id=invoice_id, archive_key=archive_key)

    try:
        spreadsheet = store.download(bucket, spreadsheet_key)
    except StorageError as exc:
        raise BundlingError(
            f"Unable to read spreadsheet {spreadsheet_key}: {exc.message}",
            key=spreadsheet_key,
        ) from exc
    if spreadsheet is None:
        raise BundlingError(
            f"Spreadsheet {spreadsheet_key} not found in {bucket}", key=spreadsheet_key
        )

    archive = PackageArchive(key=archive_key)
    buffer = BytesIO()
    with ZipFile(buffer, "w", ZIP_DEFLATED) as bundle:
        spreadsheet_name = _basename(spreadsheet_key)
        bundle.writestr(spreadsheet_name, spreadsheet)
        archive.members.append(spreadsheet_name)

        for pdf_key in pdf_keys:
            try:
                payload = store.download(bucket, pdf_key)
            except StorageError as exc:
                logger.warning("bundle_pdf_fetch_failed", key=pdf_key, error=exc.message)
                payload = None
            else:
                if payload is None:
                    logger.warning("bundle_pdf_missing", key=pdf_key)

            if payload is None:
                archive.skipped.append(pdf_key)
                bundle_skipped_files_total.inc()
                continue

            arcname = f"{PDF_FOLDER}/{_basename(pdf_key)}"
            bundle.writestr(arcname, payload)
            archive.members.append(arcname)

    try:
        store.upload(
            bucket,
            archive_key,
            buffer.getvalue(),
            content_type=ZIP_CONTENT_TYPE,
            upsert=True,
        )
    except StorageError as exc:
        logger.error("bundle_upload_failed", error=exc.message)
        raise BundlingError(
            f"Unable to store package archive {archive_key}: {exc.message}",
            key=archive_key,
        ) from exc

    logger.info(
        "bundle_uploaded",
        members=len(archive.members),
        skipped=len(archive.skipped),
    )
    return archive


__all__ = ["PackageArchive", "ZIP_CONTENT_TYPE", "bundle_package"]
