from __future__ import annotations

import hashlib
import logging
import os
from uuid import UUID

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone

from .models import IngestionJob, Upload

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = (".csv",)


class UploadRejectedError(ValueError):
    """The submitted file cannot be accepted for processing."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class UploadNotFoundError(LookupError):
    """No upload matches the given id and access token."""


def create_upload(
    original_filename: str,
    raw_bytes: bytes,
    *,
    content_type: str = "",
) -> Upload:
    """Persist a new upload and its queued ingestion job atomically.

    Workers only ever see an upload together with its job: both rows are
    written in the same transaction.
    """
    _, ext = os.path.splitext(original_filename or "")
    if ext.lower() not in ALLOWED_EXTENSIONS:
        raise UploadRejectedError(
            "FILE_EXTENSION_NOT_ALLOWED",
            f"Only CSV files are accepted (got {ext or 'no extension'!r}).",
        )

    size = len(raw_bytes)
    if size == 0:
        raise UploadRejectedError("FILE_EMPTY", "The uploaded file is empty.")

    max_bytes = getattr(settings, "PAYMENTS_MAX_UPLOAD_BYTES", None)
    if max_bytes and size > max_bytes:
        raise UploadRejectedError(
            "FILE_TOO_LARGE",
            f"File is {size} bytes; the maximum is {max_bytes} bytes.",
        )

    digest = hashlib.sha256(raw_bytes).hexdigest()

    with transaction.atomic():
        upload = Upload.objects.create(
            original_filename=os.path.basename(original_filename),
            content_type=content_type or "",
            size_bytes=size,
            content_sha256=digest,
            raw_bytes=raw_bytes,
        )
        IngestionJob.objects.create(upload=upload, next_run_at=timezone.now())

    logger.info(
        "Upload accepted",
        extra={
            "event": "upload_accepted",
            "upload_id": str(upload.id),
            "size_bytes": size,
            "sha256": digest,
        },
    )
    return upload


def get_upload_for_token(upload_id: UUID | str, token: str | None) -> Upload:
    """Return the upload only when ``token`` is its access token."""
    if not token:
        raise UploadNotFoundError(str(upload_id))
    try:
        return Upload.objects.get(pk=upload_id, token=token)
    except (Upload.DoesNotExist, ValidationError, ValueError):
        # Malformed tokens are indistinguishable from wrong ones.
        raise UploadNotFoundError(str(upload_id))
