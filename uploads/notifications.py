"""
Best-effort lifecycle notifications for uploads.

Workers call an :class:`UploadNotifier` at every interesting transition.
Delivery is fire-and-forget: the push service being down must never fail
a job or chunk, so every implementation swallows and logs its own errors.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from uuid import UUID

import httpx
from django.conf import settings

logger = logging.getLogger(__name__)

EVENT_UPLOAD_STATUS_CHANGED = "upload-status-changed"
EVENT_CHUNK_COMPLETED = "chunk-completed"
EVENT_UPLOAD_COMPLETED = "upload-completed"
EVENT_UPLOAD_FAILED = "upload-failed"
EVENT_CHUNK_FAILED = "chunk-failed"
EVENT_ROW_PROGRESS = "row-progress"
EVENT_UPLOAD_DELETED = "upload-deleted"


class UploadNotifier:
    """Builds event payloads; subclasses decide how to deliver them."""

    # -------------------------------------------------------
    # Public API
    # -------------------------------------------------------

    def upload_status_changed(
        self,
        upload_id: UUID | str,
        token: UUID | str,
        status: str,
        *,
        total_rows: Optional[int] = None,
        total_chunks: Optional[int] = None,
    ) -> None:
        payload = self._base(upload_id, token)
        payload["status"] = status
        if total_rows is not None:
            payload["totalRows"] = total_rows
        if total_chunks is not None:
            payload["totalChunks"] = total_chunks
        self.send(EVENT_UPLOAD_STATUS_CHANGED, payload)

    def chunk_completed(
        self,
        upload_id: UUID | str,
        token: UUID | str,
        *,
        chunk_index: int,
        processed: int,
        succeeded: int,
        failed: int,
        total_chunks: int,
        completed_chunks: int,
    ) -> None:
        """Counters are cumulative across every succeeded chunk of the upload."""
        payload = self._base(upload_id, token)
        payload.update(
            {
                "chunkIndex": chunk_index,
                "processed": processed,
                "succeeded": succeeded,
                "failed": failed,
                "totalChunks": total_chunks,
                "completedChunks": completed_chunks,
            }
        )
        self.send(EVENT_CHUNK_COMPLETED, payload)

    def upload_completed(
        self,
        upload_id: UUID | str,
        token: UUID | str,
        *,
        total_rows: Optional[int],
        processed: int,
        succeeded: int,
        failed: int,
    ) -> None:
        payload = self._base(upload_id, token)
        payload.update(
            {
                "status": "completed",
                "totalRows": total_rows,
                "processed": processed,
                "succeeded": succeeded,
                "failed": failed,
            }
        )
        self.send(EVENT_UPLOAD_COMPLETED, payload)

    def upload_failed(self, upload_id: UUID | str, token: UUID | str, *, error: str) -> None:
        payload = self._base(upload_id, token)
        payload.update({"status": "failed", "error": error})
        self.send(EVENT_UPLOAD_FAILED, payload)

    def chunk_failed(
        self,
        upload_id: UUID | str,
        token: UUID | str,
        *,
        chunk_index: int,
        error: str,
        attempt_count: int,
        max_attempts: int,
    ) -> None:
        payload = self._base(upload_id, token)
        payload.update(
            {
                "chunkIndex": chunk_index,
                "error": error,
                "attemptCount": attempt_count,
                "maxAttempts": max_attempts,
            }
        )
        self.send(EVENT_CHUNK_FAILED, payload)

    def row_progress(
        self,
        upload_id: UUID | str,
        token: UUID | str,
        *,
        chunk_index: int,
        processed: int,
        succeeded: int,
        failed: int,
        total_rows: Optional[int],
    ) -> None:
        payload = self._base(upload_id, token)
        payload.update(
            {
                "chunkIndex": chunk_index,
                "processed": processed,
                "succeeded": succeeded,
                "failed": failed,
                "totalRows": total_rows,
            }
        )
        self.send(EVENT_ROW_PROGRESS, payload)

    def upload_deleted(self, upload_id: UUID | str, token: UUID | str) -> None:
        self.send(EVENT_UPLOAD_DELETED, self._base(upload_id, token))

    # -------------------------------------------------------
    # Internal
    # -------------------------------------------------------

    @staticmethod
    def _base(upload_id: UUID | str, token: UUID | str) -> Dict[str, Any]:
        return {"uploadId": str(upload_id), "token": str(token)}

    def send(self, event: str, payload: Dict[str, Any]) -> None:
        raise NotImplementedError


class LoggingUploadNotifier(UploadNotifier):
    """Used when no push service is configured."""

    def send(self, event: str, payload: Dict[str, Any]) -> None:
        logger.debug("Notification %s: %s", event, payload)


class HttpUploadNotifier(UploadNotifier):
    """
    Posts each event as JSON to ``<base_url>/api/notifications/<event>``.

    All errors are non-fatal: they are logged at WARNING and dropped.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 2.0,
        client: Optional[httpx.Client] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client or httpx.Client(timeout=timeout)

    def url_for(self, event: str) -> str:
        return f"{self.base_url}/api/notifications/{event}"

    def send(self, event: str, payload: Dict[str, Any]) -> None:
        try:
            resp = self._client.post(self.url_for(event), json=payload)
        except httpx.TimeoutException:
            logger.warning(
                "Notification %s for upload %s timed out (%ss)",
                event,
                payload.get("uploadId"),
                self.timeout,
            )
            return
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Notification %s for upload %s failed: %s",
                event,
                payload.get("uploadId"),
                exc,
            )
            return

        if resp.status_code >= 400:
            logger.warning(
                "Notification %s returned %s: %s",
                event,
                resp.status_code,
                resp.text[:200],
            )

    def close(self) -> None:
        self._client.close()


def build_notifier() -> UploadNotifier:
    base_url = getattr(settings, "PAYMENTS_NOTIFY_BASE_URL", "") or ""
    if not base_url.startswith("http"):
        if base_url:
            logger.warning("Ignoring PAYMENTS_NOTIFY_BASE_URL=%r (not an http URL)", base_url)
        return LoggingUploadNotifier()
    timeout = float(getattr(settings, "PAYMENTS_NOTIFY_TIMEOUT_SECONDS", 2.0))
    return HttpUploadNotifier(base_url, timeout=timeout)
