"""
Ingestion job: parse an upload's CSV into rows and plan its chunks.
"""

from __future__ import annotations

import logging
import time
from typing import List

from django.db import transaction
from django.utils import timezone

from uploads.csv_reader import read_payment_csv
from uploads.models import Chunk, IngestionJob, Upload, UploadRow
from uploads.status import advance_upload_status

from .context import WorkerContext
from .lease import LeaseLostError, truncate_error
from .planner import create_chunks

logger = logging.getLogger(__name__)


class IngestionStateError(RuntimeError):
    """The upload was moved out of the parsing state by someone else."""


# ---------------------------------------------------------------------------
# Core helpers
# ---------------------------------------------------------------------------


def _write_rows(job: IngestionJob, upload: Upload, parsed, ctx: WorkerContext) -> None:
    batch_size = ctx.options.ingest_batch_size
    batch: List[UploadRow] = []
    for row_number, fields in parsed.iter_rows():
        batch.append(UploadRow(upload=upload, row_number=row_number, fields=fields))
        if len(batch) >= batch_size:
            UploadRow.objects.bulk_create(batch)
            batch = []
            ctx.job_leases.heartbeat(job)
    if batch:
        UploadRow.objects.bulk_create(batch)
        ctx.job_leases.heartbeat(job)


# ---------------------------------------------------------------------------
# Core job runner
# ---------------------------------------------------------------------------


def run_ingestion_job(job: IngestionJob, ctx: WorkerContext) -> None:
    """Run one leased ingestion job end-to-end.

    Safe to re-run after a crash: if chunks already exist the job simply
    succeeds, and rows left behind by an attempt that died before planning
    are deleted before parsing again.
    """
    started = time.monotonic()
    upload = Upload.objects.get(pk=job.upload_id)

    if advance_upload_status(upload.id, Upload.Status.PARSING):
        upload.status = Upload.Status.PARSING
    if upload.status == Upload.Status.PARSING:
        ctx.notifier.upload_status_changed(upload.id, upload.token, Upload.Status.PARSING)

    if Chunk.objects.filter(upload=upload).exists():
        logger.info("Upload %s already has chunks; nothing to ingest", upload.id)
        ctx.job_leases.release_success(job)
        return

    deleted, _ = UploadRow.objects.filter(upload=upload).delete()
    if deleted:
        logger.warning(
            "Deleted %d rows left by an earlier ingestion attempt for upload %s",
            deleted,
            upload.id,
        )

    parsed = read_payment_csv(bytes(upload.raw_bytes))
    _write_rows(job, upload, parsed, ctx)

    with transaction.atomic():
        moved = advance_upload_status(
            upload.id,
            Upload.Status.VALIDATING,
            total_rows=parsed.total_rows,
            headers=parsed.headers,
        )
        if not moved:
            raise IngestionStateError(
                f"Upload {upload.id} is no longer parsing; refusing to plan chunks."
            )
        chunks = create_chunks(
            upload,
            parsed.total_rows,
            ctx.options.chunk_size_rows,
            timezone.now(),
        )

    ctx.notifier.upload_status_changed(
        upload.id,
        upload.token,
        Upload.Status.VALIDATING,
        total_rows=parsed.total_rows,
        total_chunks=len(chunks),
    )
    ctx.job_leases.release_success(job)

    logger.info(
        "Ingested upload %s: %d rows in %d chunks (%.1f ms)",
        upload.id,
        parsed.total_rows,
        len(chunks),
        (time.monotonic() - started) * 1000,
        extra={
            "event": "upload_ingested",
            "upload_id": str(upload.id),
            "total_rows": parsed.total_rows,
            "chunk_count": len(chunks),
        },
    )


def handle_ingestion_failure(job: IngestionJob, exc: BaseException, ctx: WorkerContext) -> None:
    """Record a failed attempt; on the last attempt fail the upload too."""
    try:
        outcome = ctx.job_leases.release_failure(job, exc)
    except LeaseLostError:
        logger.warning("Lease on ingestion job %s was lost; not recording failure", job.pk)
        return

    if not outcome.terminal:
        return

    error = truncate_error(exc)
    if advance_upload_status(job.upload_id, Upload.Status.FAILED, last_error=error):
        token = Upload.objects.filter(pk=job.upload_id).values_list("token", flat=True).first()
        ctx.notifier.upload_failed(job.upload_id, token, error=error)
