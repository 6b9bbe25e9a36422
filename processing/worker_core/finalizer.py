"""
Upload finalization once every chunk has reached a terminal state.

Several workers can finish the last chunks of an upload at nearly the same
moment and all see "nothing left to run". The terminal status is therefore
written through :func:`uploads.status.advance_upload_status`; only the
caller whose conditional update actually changed the row sends the
completion notification.
"""

from __future__ import annotations

import logging
from typing import Optional
from uuid import UUID

from django.db.models import Count, Q, Sum

from uploads.models import Chunk, Upload
from uploads.notifications import UploadNotifier
from uploads.status import advance_upload_status

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_MESSAGE = "One or more chunks failed"

OPEN_CHUNK_STATUSES = (Chunk.Status.QUEUED, Chunk.Status.RUNNING)


def try_finalize_upload(upload_id: UUID | str, notifier: UploadNotifier) -> Optional[str]:
    """Aggregate chunk counters and move the upload to completed or failed.

    Returns the terminal status this call applied, or None when chunks are
    still open, the upload is already terminal, or another worker won.
    """
    chunks = Chunk.objects.filter(upload_id=upload_id)
    if chunks.filter(status__in=OPEN_CHUNK_STATUSES).exists():
        return None

    sums = chunks.aggregate(
        total=Count("id"),
        failed_chunks=Count("id", filter=Q(status=Chunk.Status.FAILED)),
        processed=Sum("processed_rows"),
        succeeded=Sum("succeeded_rows"),
        failed=Sum("failed_rows"),
    )
    if not sums["total"]:
        return None

    upload = Upload.objects.only("id", "token", "status", "total_rows", "last_error").filter(
        pk=upload_id
    ).first()
    if upload is None or upload.is_terminal:
        return None

    counters = {
        "processed_rows": sums["processed"] or 0,
        "succeeded_rows": sums["succeeded"] or 0,
        "failed_rows": sums["failed"] or 0,
    }

    if sums["failed_chunks"]:
        error = upload.last_error or DEFAULT_FAILURE_MESSAGE
        if not advance_upload_status(upload.id, Upload.Status.FAILED, last_error=error, **counters):
            return None
        logger.warning(
            "Upload %s failed: %d of %d chunks failed",
            upload.id,
            sums["failed_chunks"],
            sums["total"],
            extra={"event": "upload_failed", "upload_id": str(upload.id)},
        )
        notifier.upload_failed(upload.id, upload.token, error=error)
        return Upload.Status.FAILED

    if not advance_upload_status(upload.id, Upload.Status.COMPLETED, **counters):
        return None
    logger.info(
        "Upload %s completed: processed=%d succeeded=%d failed=%d",
        upload.id,
        counters["processed_rows"],
        counters["succeeded_rows"],
        counters["failed_rows"],
        extra={"event": "upload_completed", "upload_id": str(upload.id)},
    )
    notifier.upload_completed(
        upload.id,
        upload.token,
        total_rows=upload.total_rows,
        processed=counters["processed_rows"],
        succeeded=counters["succeeded_rows"],
        failed=counters["failed_rows"],
    )
    return Upload.Status.COMPLETED
