"""S3 object store and key helpers."""

from __future__ import annotations

import mimetypes
import re
import unicodedata
import urllib.parse
from functools import lru_cache
from io import BytesIO

import boto3
from botocore.client import BaseClient
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError
import structlog

from app.backend.src.core.config import get_settings
from app.backend.src.core.errors import StorageError
from app.backend.src.core.storage import LocalObjectStore, ObjectStore, StorageEntry

LOGGER = structlog.get_logger(__name__)

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


def _client() -> BaseClient:
    settings = get_settings()
    client_kwargs: dict[str, object] = {
        "config": Config(
            signature_version="s3v4",
            s3={"addressing_style": "virtual"},
        ),
        "region_name": settings.aws_region or "us-east-1",
    }

    if settings.aws_endpoint_url:
        client_kwargs["endpoint_url"] = settings.aws_endpoint_url

    if settings.aws_access_key_id and settings.aws_secret_access_key:
        client_kwargs["aws_access_key_id"] = settings.aws_access_key_id
        client_kwargs["aws_secret_access_key"] = settings.aws_secret_access_key

    return boto3.client("s3", **client_kwargs)


def sanitize_file_name(name: str | None) -> str:
    """Return an ASCII-only file name limited to ``[A-Za-z0-9._-]``."""

    decomposed = unicodedata.normalize("NFD", name or "")
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    folded = stripped.replace("ñ", "n").replace("Ñ", "N")
    sanitized = re.sub(r"[^A-Za-z0-9._-]+", "_", folded)
    sanitized = re.sub(r"_+", "_", sanitized).strip("_")
    return sanitized or "file"


def sanitize_object_key(key: str) -> str:
    """Minimal, safe normalization that preserves exact S3 key semantics."""

    if not key:
        return ""

    sanitized = str(key).strip().strip('"').strip("'")
    sanitized = urllib.parse.unquote(sanitized)
    sanitized = re.sub(r"/+", "/", sanitized)
    if sanitized.startswith("/"):
        sanitized = sanitized[1:]
    return sanitized


def determine_content_type(filename: str, content_type: str | None = None) -> str:
    """Infer a best-effort content type for uploads."""
    return (
        content_type
        or mimetypes.guess_type(filename)[0]
        or "application/octet-stream"
    )


class S3ObjectStore:
    """Object store backed by S3 (or any S3-compatible endpoint)."""

    def __init__(self, client: BaseClient | None = None) -> None:
        self._client = client

    @property
    def client(self) -> BaseClient:
        if self._client is None:
            self._client = _client()
        return self._client

    def download(self, bucket: str, key: str) -> bytes | None:
        try:
            response = self.client.get_object(Bucket=bucket, Key=key)
            return response["Body"].read()
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in _NOT_FOUND_CODES:
                LOGGER.info("s3_object_missing", bucket=bucket, key=key)
                return None
            LOGGER.error("s3_download_failed", bucket=bucket, key=key, error=str(exc))
            raise StorageError(
                f"Unable to read {bucket}/{key}: {exc}", bucket=bucket, key=key
            ) from exc
        except (BotoCoreError, NoCredentialsError) as exc:
            LOGGER.error("s3_download_failed", bucket=bucket, key=key, error=str(exc))
            raise StorageError(
                f"Unable to read {bucket}/{key}: {exc}", bucket=bucket, key=key
            ) from exc

    def _exists(self, bucket: str, key: str) -> bool:
        try:
            self.client.head_object(Bucket=bucket, Key=key)
            return True
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in _NOT_FOUND_CODES:
                return False
            raise StorageError(
                f"Unable to inspect {bucket}/{key}: {exc}", bucket=bucket, key=key
            ) from exc

    def upload(
        self,
        bucket: str,
        key: str,
        data: bytes,
        *,
        content_type: str,
        upsert: bool = True,
    ) -> str:
        if not upsert and self._exists(bucket, key):
            raise StorageError(
                f"Object {bucket}/{key} already exists", bucket=bucket, key=key
            )
        try:
            self.client.upload_fileobj(
                Fileobj=BytesIO(data),
                Bucket=bucket,
                Key=key,
                ExtraArgs={"ContentType": determine_content_type(key, content_type)},
            )
        except (BotoCoreError, NoCredentialsError, ClientError) as exc:
            LOGGER.error("s3_upload_failed", bucket=bucket, key=key, error=str(exc))
            raise StorageError(
                f"Unable to write {bucket}/{key}: {exc}", bucket=bucket, key=key
            ) from exc
        LOGGER.info("uploaded_s3", bucket=bucket, key=key)
        return key

    def list(self, bucket: str, prefix: str = "") -> list[StorageEntry]:
        entries: list[StorageEntry] = []
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
                for item in page.get("Contents", []) or []:
                    entries.append(
                        StorageEntry(
                            key=item["Key"],
                            size=int(item.get("Size", 0)),
                            last_modified=item.get("LastModified"),
                        )
                    )
        except (BotoCoreError, ClientError) as exc:
            LOGGER.error("s3_list_failed", bucket=bucket, prefix=prefix, error=str(exc))
            raise StorageError(
                f"Unable to list {bucket}/{prefix}: {exc}", bucket=bucket, key=prefix
            ) from exc
        return entries

    def presigned_url(self, bucket: str, key: str, *, expires_in: int = 3600) -> str:
        sanitized_key = sanitize_object_key(key)
        download_name = sanitize_file_name(sanitized_key.rsplit("/", 1)[-1])
        params = {
            "Bucket": bucket,
            "Key": sanitized_key,
            "ResponseContentDisposition": f'attachment; filename="{download_name}"',
            "ResponseContentType": determine_content_type(sanitized_key),
        }
        try:
            return self.client.generate_presigned_url(
                "get_object", Params=params, ExpiresIn=expires_in
            )
        except (BotoCoreError, ClientError) as exc:
            LOGGER.error("s3_presign_failed", bucket=bucket, key=key, error=str(exc))
            raise StorageError(
                f"Unable to sign {bucket}/{key}: {exc}", bucket=bucket, key=key
            ) from exc


@lru_cache()
def get_object_store() -> ObjectStore:
    """Return the configured object store instance."""

    settings = get_settings()
    if settings.is_local_storage:
        LOGGER.info("object_store_local", root=settings.local_storage_path)
        return LocalObjectStore(settings.local_storage_path)
    LOGGER.info("object_store_s3", region=settings.aws_region)
    return S3ObjectStore()


__all__ = [
    "S3ObjectStore",
    "determine_content_type",
    "get_object_store",
    "sanitize_file_name",
    "sanitize_object_key",
]
