"""Typed document references and the object existence check.

Document rows store references in several shapes: a bucket-relative key
(``orders/12/orden.pdf``), a public URL
(``https://x.supabase.co/storage/v1/object/public/documents/orders/12/orden.pdf``)
or a signed URL (``.../object/sign/documents/orders/12/orden.pdf?token=...``).
:func:`parse_reference` turns any of them into a :class:`StorageReference`
whose ``key`` can be read directly from the object store.
"""

from __future__ import annotations

import enum
import re
import urllib.parse
from dataclasses import dataclass

import structlog

from app.backend.src.core.errors import StorageError, StorageReferenceError
from app.backend.src.core.storage import ObjectStore

LOGGER = structlog.get_logger(__name__)

_OBJECT_PATH = re.compile(
    r"(?:^|/)object/(?:(?P<mode>public|sign|authenticated)/)?(?P<bucket>[^/]+)/(?P<key>.+)$"
)
_SIGNATURE_PARAMS = {"token", "x-amz-signature", "signature"}


class ReferenceKind(str, enum.Enum):
    RELATIVE_KEY = "relative_key"
    PUBLIC_URL = "public_url"
    SIGNED_URL = "signed_url"


@dataclass(frozen=True, slots=True)
class StorageReference:
    """A normalized pointer to one object in the store."""

    kind: ReferenceKind
    key: str
    bucket: str | None = None
    raw: str = ""

    def resolve_bucket(self, default_bucket: str) -> str:
        return self.bucket or default_bucket


def _clean_key(value: str) -> str:
    key = urllib.parse.unquote(value)
    key = re.sub(r"/+", "/", key).lstrip("/")
    return key


def _is_signed(query: str) -> bool:
    params = {name.lower() for name in urllib.parse.parse_qs(query)}
    return bool(params & _SIGNATURE_PARAMS)


def parse_reference(raw: str | None) -> StorageReference:
    """Normalize a stored reference into a bucket-relative key.

    Raises :class:`StorageReferenceError` when nothing usable remains.
    """

    value = (raw or "").strip().strip('"').strip("'")
    if not value:
        raise StorageReferenceError(raw, "empty reference")

    parsed = urllib.parse.urlsplit(value)
    is_url = parsed.scheme in {"http", "https"} and bool(parsed.netloc)
    path = parsed.path if is_url else value.split("?", 1)[0]
    query = parsed.query if is_url else (value.split("?", 1)[1] if "?" in value else "")

    match = _OBJECT_PATH.search(path)
    if match and not is_url and not (match.group("mode") or "storage/v1/" in path):
        # A bare key that merely contains an ``object/`` segment.
        match = None
    if match:
        key = _clean_key(match.group("key"))
        mode = match.group("mode")
        if mode == "sign" or (mode != "public" and _is_signed(query)):
            kind = ReferenceKind.SIGNED_URL
        else:
            kind = ReferenceKind.PUBLIC_URL if (is_url or mode) else ReferenceKind.RELATIVE_KEY
        bucket = urllib.parse.unquote(match.group("bucket"))
    elif is_url:
        if not _is_signed(query):
            raise StorageReferenceError(raw, "URL does not point at an object path")
        key = _clean_key(path)
        kind = ReferenceKind.SIGNED_URL
        bucket = None
    else:
        key = _clean_key(path)
        kind = ReferenceKind.RELATIVE_KEY
        bucket = None

    if not key or key.endswith("/"):
        raise StorageReferenceError(raw, "reference does not name an object")
    if any(part == ".." for part in key.split("/")):
        raise StorageReferenceError(raw, "reference escapes its bucket")

    return StorageReference(kind=kind, key=key, bucket=bucket, raw=value)


def document_exists(store: ObjectStore, reference: str | None, *, default_bucket: str) -> bool:
    """Return ``True`` only when the referenced binary can actually be read."""

    try:
        parsed = parse_reference(reference)
    except StorageReferenceError as exc:
        LOGGER.warning("document_reference_invalid", reference=reference, error=exc.message)
        return False

    bucket = parsed.resolve_bucket(default_bucket)
    try:
        data = store.download(bucket, parsed.key)
    except StorageError as exc:
        LOGGER.warning(
            "document_existence_check_failed",
            bucket=bucket,
            key=parsed.key,
            error=exc.message,
        )
        return False
    except Exception as exc:  # pragma: no cover - unexpected backend failure
        LOGGER.warning(
            "document_existence_check_failed",
            bucket=bucket,
            key=parsed.key,
            error=str(exc),
        )
        return False

    if data is None:
        LOGGER.info("document_missing_from_storage", bucket=bucket, key=parsed.key)
        return False
    return True


__all__ = [
    "ReferenceKind",
    "StorageReference",
    "document_exists",
    "parse_reference",
]
