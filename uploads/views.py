import csv
import io
import logging
from typing import Any, Dict, Optional

from django.db.models import Count, Q, Sum
from django.http import HttpResponse, JsonResponse
from django.urls import reverse
from rest_framework import status
from rest_framework.decorators import api_view, parser_classes
from rest_framework.parsers import MultiPartParser

from .intake import UploadNotFoundError, UploadRejectedError, create_upload, get_upload_for_token
from .models import Chunk, RowError, UploadRow
from .notifications import build_notifier

logger = logging.getLogger(__name__)

DANGEROUS_CSV_PREFIXES = ("=", "+", "-", "@")

DEFAULT_PAGE_LIMIT = 200
MAX_PAGE_LIMIT = 2000


def _safe_csv_value(value: Any) -> str:
    """Defend against CSV formula injection by prefixing dangerous cells."""
    if value is None:
        return ""
    if not isinstance(value, str):
        value = str(value)
    if value.startswith(DANGEROUS_CSV_PREFIXES):
        return "'" + value
    return value


def _not_found() -> JsonResponse:
    return JsonResponse({"detail": "Not found."}, status=status.HTTP_404_NOT_FOUND)


def _bad_request(message: str, code: Optional[str] = None) -> JsonResponse:
    body: Dict[str, Any] = {"detail": message}
    if code is not None:
        body["error_code"] = code
    return JsonResponse(body, status=status.HTTP_400_BAD_REQUEST)


def _parse_page_params(request):
    """Return ``(cursor_row, limit)`` or raise ValueError with a user message."""
    raw_cursor = request.query_params.get("cursor_row")
    raw_limit = request.query_params.get("limit")
    try:
        cursor_row = int(raw_cursor) if raw_cursor not in (None, "") else 0
        limit = int(raw_limit) if raw_limit not in (None, "") else DEFAULT_PAGE_LIMIT
    except (TypeError, ValueError):
        raise ValueError("cursor_row and limit must be integers.")
    if limit < 1 or limit > MAX_PAGE_LIMIT:
        raise ValueError(f"limit must be between 1 and {MAX_PAGE_LIMIT}.")
    return cursor_row, limit


def _token_url(request, name: str, upload) -> str:
    path = reverse(name, kwargs={"upload_id": upload.id})
    return request.build_absolute_uri(f"{path}?token={upload.token}")


# ---------------------------------------------------------------------------
# Intake
# ---------------------------------------------------------------------------


@api_view(["POST"])
@parser_classes([MultiPartParser])
def upload_payment_file(request):
    """Accept a CSV of payment instructions: POST /api/payment-uploads/

    The file is stored as-is together with a queued ingestion job; parsing
    and validation happen asynchronously in the workers.
    """
    upload_file = request.FILES.get("file")
    if upload_file is None:
        return _bad_request(
            "Expected multipart/form-data with a file field named 'file'.",
            "PAYLOAD_MISSING_FILE",
        )

    raw_bytes = upload_file.read()
    try:
        upload = create_upload(
            upload_file.name,
            raw_bytes,
            content_type=getattr(upload_file, "content_type", "") or "",
        )
    except UploadRejectedError as exc:
        logger.info(
            "Upload rejected",
            extra={
                "event": "upload_rejected",
                "error_code": exc.code,
                "upload_filename": upload_file.name,
            },
        )
        return _bad_request(exc.message, exc.code)

    return JsonResponse(
        {
            "upload_id": str(upload.id),
            "token": str(upload.token),
            "status": upload.status,
            "status_url": _token_url(request, "payment-upload-status", upload),
            "errors_url": _token_url(request, "payment-upload-errors", upload),
        },
        status=status.HTTP_202_ACCEPTED,
    )


# ---------------------------------------------------------------------------
# Status and queries
# ---------------------------------------------------------------------------


@api_view(["GET"])
def get_upload_status(request, upload_id):
    """Status, counters and per-status chunk counts for one upload.

    While chunks are running the row counters are summed live from the
    chunks; the upload's own counters only become final at finalization.
    """
    try:
        upload = get_upload_for_token(upload_id, request.query_params.get("token"))
    except UploadNotFoundError:
        return _not_found()

    chunk_stats = Chunk.objects.filter(upload=upload).aggregate(
        total=Count("id"),
        succeeded=Count("id", filter=Q(status=Chunk.Status.SUCCEEDED)),
        failed=Count("id", filter=Q(status=Chunk.Status.FAILED)),
        running=Count("id", filter=Q(status=Chunk.Status.RUNNING)),
        queued=Count("id", filter=Q(status=Chunk.Status.QUEUED)),
        processed_rows=Sum("processed_rows"),
        succeeded_rows=Sum("succeeded_rows"),
        failed_rows=Sum("failed_rows"),
    )
    has_chunks = bool(chunk_stats["total"])

    payload: Dict[str, Any] = {
        "upload_id": str(upload.id),
        "original_filename": upload.original_filename,
        "status": upload.status,
        "created_at": upload.created_at.isoformat(),
        "updated_at": upload.updated_at.isoformat(),
        "total_rows": upload.total_rows,
        "processed_rows": chunk_stats["processed_rows"] if has_chunks else upload.processed_rows,
        "succeeded_rows": chunk_stats["succeeded_rows"] if has_chunks else upload.succeeded_rows,
        "failed_rows": chunk_stats["failed_rows"] if has_chunks else upload.failed_rows,
        "chunks": {
            "total": chunk_stats["total"],
            "succeeded": chunk_stats["succeeded"],
            "failed": chunk_stats["failed"],
            "running": chunk_stats["running"],
            "queued": chunk_stats["queued"],
        },
        "last_error": upload.last_error,
    }
    return JsonResponse(payload)


@api_view(["GET"])
def list_upload_errors(request, upload_id):
    """Error-severity row errors, keyset-paginated by row number."""
    try:
        cursor_row, limit = _parse_page_params(request)
    except ValueError as exc:
        return _bad_request(str(exc))
    try:
        upload = get_upload_for_token(upload_id, request.query_params.get("token"))
    except UploadNotFoundError:
        return _not_found()

    errors = list(
        RowError.objects.filter(upload=upload, is_error=True, row_number__gt=cursor_row)
        .order_by("row_number", "code")
        .values("row_number", "field_name", "code", "message", "severity")[:limit]
    )
    next_cursor = errors[-1]["row_number"] if len(errors) == limit else None

    return JsonResponse(
        {
            "upload_id": str(upload.id),
            "total_rows": upload.total_rows,
            "count": len(errors),
            "next_cursor_row": next_cursor,
            "results": errors,
        }
    )


@api_view(["GET"])
def list_upload_rows(request, upload_id):
    """Parsed rows with their validation status, keyset-paginated."""
    try:
        cursor_row, limit = _parse_page_params(request)
    except ValueError as exc:
        return _bad_request(str(exc))
    try:
        upload = get_upload_for_token(upload_id, request.query_params.get("token"))
    except UploadNotFoundError:
        return _not_found()

    rows = list(
        UploadRow.objects.filter(upload=upload, row_number__gt=cursor_row)
        .order_by("row_number")
        .values("row_number", "fields", "validation_status", "error_count")[:limit]
    )
    next_cursor = rows[-1]["row_number"] if len(rows) == limit else None

    return JsonResponse(
        {
            "upload_id": str(upload.id),
            "total_rows": upload.total_rows,
            "headers": upload.headers or [],
            "count": len(rows),
            "next_cursor_row": next_cursor,
            "results": rows,
        }
    )


@api_view(["GET"])
def export_errors_csv(request, upload_id):
    """Export every recorded row error (warnings included) as CSV."""
    try:
        upload = get_upload_for_token(upload_id, request.query_params.get("token"))
    except UploadNotFoundError:
        return _not_found()

    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(["row_number", "field_name", "code", "severity", "message"])

    errors = (
        RowError.objects.filter(upload=upload)
        .order_by("row_number", "code")
        .values_list("row_number", "field_name", "code", "severity", "message")
    )
    for row_number, field_name, code, severity, message in errors.iterator():
        writer.writerow(
            [
                row_number,
                _safe_csv_value(field_name),
                _safe_csv_value(code),
                _safe_csv_value(severity),
                _safe_csv_value(message),
            ]
        )

    response = HttpResponse(buffer.getvalue().encode("utf-8"), content_type="text/csv")
    response["Content-Disposition"] = f'attachment; filename="upload_{upload.id}_errors.csv"'
    return response


@api_view(["DELETE"])
def delete_upload(request, upload_id):
    """Delete an upload with its job, chunks, rows and errors."""
    try:
        upload = get_upload_for_token(upload_id, request.query_params.get("token"))
    except UploadNotFoundError:
        return _not_found()

    token = upload.token
    upload.delete()
    logger.info(
        "Upload deleted",
        extra={"event": "upload_deleted", "upload_id": str(upload_id)},
    )
    build_notifier().upload_deleted(upload_id, token)
    return HttpResponse(status=status.HTTP_204_NO_CONTENT)
