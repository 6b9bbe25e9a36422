"""
Chunk runner: validate one leased row range against the enabled rules.
"""

from __future__ import annotations

import logging
import time
from typing import Dict, List

from django.db import transaction
from django.db.models import Sum
from django.utils import timezone

from rules.engine import load_enabled_rules, validate_fields
from uploads.models import Chunk, RowError, Upload, UploadRow

from .context import WorkerContext
from .finalizer import try_finalize_upload
from .lease import LeaseLostError

logger = logging.getLogger(__name__)

ROW_UPDATE_FIELDS = ["validation_status", "error_count", "updated_at"]


# ---------------------------------------------------------------------------
# Core helpers
# ---------------------------------------------------------------------------


def succeeded_chunk_totals(upload_id) -> Dict[str, int]:
    """Row counters summed over the upload's succeeded chunks."""
    sums = Chunk.objects.filter(upload_id=upload_id, status=Chunk.Status.SUCCEEDED).aggregate(
        processed=Sum("processed_rows"),
        succeeded=Sum("succeeded_rows"),
        failed=Sum("failed_rows"),
    )
    return {key: value or 0 for key, value in sums.items()}


def _flush_rows(rows: List[UploadRow]) -> None:
    if rows:
        UploadRow.objects.bulk_update(rows, ROW_UPDATE_FIELDS, batch_size=500)
        rows.clear()


def _flush_errors(errors: List[RowError]) -> None:
    if errors:
        RowError.objects.bulk_create(errors, batch_size=1000)
        errors.clear()


def _commit_progress(
    chunk: Chunk,
    ctx: WorkerContext,
    rows: List[UploadRow],
    errors: List[RowError],
    **counters: int,
) -> None:
    """Heartbeat with ``counters`` and flush pending writes in one transaction.

    The owned heartbeat goes first, so a worker that lost its lease raises
    LeaseLostError before any row or error write lands.
    """
    with transaction.atomic():
        ctx.chunk_leases.heartbeat(chunk, **counters)
        _flush_rows(rows)
        _flush_errors(errors)


# ---------------------------------------------------------------------------
# Core chunk runner
# ---------------------------------------------------------------------------


def run_chunk(chunk: Chunk, ctx: WorkerContext) -> None:
    """Validate every row in ``chunk`` and release it as succeeded.

    Progress is committed every ``progress_commit_rows`` rows (or sooner once
    ``error_flush_rows`` errors are pending), and each commit doubles as the
    lease heartbeat. Every write is made in the same transaction as an owned
    lease update, so a worker whose lease was reclaimed writes nothing more.
    A rerun after a crash first drops the row errors a previous attempt
    recorded for this range.
    """
    started = time.monotonic()
    options = ctx.options
    upload = Upload.objects.only("id", "token", "total_rows").get(pk=chunk.upload_id)

    rules = load_enabled_rules()

    with transaction.atomic():
        ctx.chunk_leases.heartbeat(chunk)
        RowError.objects.filter(
            upload_id=chunk.upload_id,
            row_number__gte=chunk.row_start,
            row_number__lte=chunk.row_end,
        ).delete()

    rows = list(
        UploadRow.objects.filter(
            upload_id=chunk.upload_id,
            row_number__gte=chunk.row_start,
            row_number__lte=chunk.row_end,
        ).order_by("row_number")
    )

    processed = succeeded = failed = 0
    pending_rows: List[UploadRow] = []
    pending_errors: List[RowError] = []

    for row in rows:
        outcome = validate_fields(rules, row.fields or {})

        row.error_count = outcome.error_count
        row.validation_status = outcome.validation_status
        row.updated_at = timezone.now()
        pending_rows.append(row)

        for failure in outcome.failures:
            pending_errors.append(
                RowError(
                    upload_id=row.upload_id,
                    row_number=row.row_number,
                    field_name=failure.field_name,
                    code=failure.code,
                    message=failure.message[:2048],
                    severity=failure.severity,
                    is_error=failure.is_error,
                    rule_id=failure.rule_id,
                )
            )

        processed += 1
        if outcome.is_valid:
            succeeded += 1
        else:
            failed += 1

        if (
            len(pending_errors) >= options.error_flush_rows
            or processed % options.progress_commit_rows == 0
        ):
            _commit_progress(
                chunk,
                ctx,
                pending_rows,
                pending_errors,
                processed_rows=processed,
                succeeded_rows=succeeded,
                failed_rows=failed,
            )

        if processed % options.progress_notify_rows == 0:
            totals = succeeded_chunk_totals(chunk.upload_id)
            ctx.notifier.row_progress(
                upload.id,
                upload.token,
                chunk_index=chunk.chunk_index,
                processed=totals["processed"] + processed,
                succeeded=totals["succeeded"] + succeeded,
                failed=totals["failed"] + failed,
                total_rows=upload.total_rows,
            )

    with transaction.atomic():
        ctx.chunk_leases.release_success(
            chunk,
            processed_rows=processed,
            succeeded_rows=succeeded,
            failed_rows=failed,
        )
        _flush_rows(pending_rows)
        _flush_errors(pending_errors)

    totals = succeeded_chunk_totals(chunk.upload_id)
    chunk_qs = Chunk.objects.filter(upload_id=chunk.upload_id)
    ctx.notifier.chunk_completed(
        upload.id,
        upload.token,
        chunk_index=chunk.chunk_index,
        processed=totals["processed"],
        succeeded=totals["succeeded"],
        failed=totals["failed"],
        total_chunks=chunk_qs.count(),
        completed_chunks=chunk_qs.filter(status=Chunk.Status.SUCCEEDED).count(),
    )

    try_finalize_upload(chunk.upload_id, ctx.notifier)

    logger.info(
        "Chunk %s upload=%s rows %d-%d processed=%d succeeded=%d failed=%d in %.1f ms",
        chunk.pk,
        chunk.upload_id,
        chunk.row_start,
        chunk.row_end,
        processed,
        succeeded,
        failed,
        (time.monotonic() - started) * 1000,
    )


def handle_chunk_failure(chunk: Chunk, exc: BaseException, ctx: WorkerContext) -> None:
    """Record a failed attempt; a permanently failed chunk may finalize the upload."""
    try:
        outcome = ctx.chunk_leases.release_failure(chunk, exc)
    except LeaseLostError:
        logger.warning("Lease on chunk %s was lost; not recording failure", chunk.pk)
        return

    token = Upload.objects.filter(pk=chunk.upload_id).values_list("token", flat=True).first()
    ctx.notifier.chunk_failed(
        chunk.upload_id,
        token,
        chunk_index=chunk.chunk_index,
        error=chunk.last_error or "",
        attempt_count=outcome.attempt_count,
        max_attempts=ctx.chunk_leases.max_attempts,
    )

    if outcome.terminal:
        try_finalize_upload(chunk.upload_id, ctx.notifier)
