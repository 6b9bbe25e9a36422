from __future__ import annotations

import json
import uuid

import httpx
from django.test import SimpleTestCase, override_settings

from uploads.notifications import (
    EVENT_CHUNK_COMPLETED,
    EVENT_UPLOAD_FAILED,
    HttpUploadNotifier,
    LoggingUploadNotifier,
    build_notifier,
)


class HttpUploadNotifierTests(SimpleTestCase):
    def setUp(self) -> None:
        self.upload_id = uuid.uuid4()
        self.token = uuid.uuid4()
        self.requests = []

    def _notifier(self, handler) -> HttpUploadNotifier:
        client = httpx.Client(transport=httpx.MockTransport(handler))
        notifier = HttpUploadNotifier("http://push.local/", client=client)
        self.addCleanup(notifier.close)
        return notifier

    def _record(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(204)

    def test_posts_camel_case_payload_to_event_url(self):
        notifier = self._notifier(self._record)

        notifier.chunk_completed(
            self.upload_id,
            self.token,
            chunk_index=2,
            processed=30,
            succeeded=25,
            failed=5,
            total_chunks=4,
            completed_chunks=3,
        )

        self.assertEqual(len(self.requests), 1)
        request = self.requests[0]
        self.assertEqual(
            str(request.url), f"http://push.local/api/notifications/{EVENT_CHUNK_COMPLETED}"
        )
        self.assertEqual(
            json.loads(request.content),
            {
                "uploadId": str(self.upload_id),
                "token": str(self.token),
                "chunkIndex": 2,
                "processed": 30,
                "succeeded": 25,
                "failed": 5,
                "totalChunks": 4,
                "completedChunks": 3,
            },
        )

    def test_status_changed_omits_unknown_totals(self):
        notifier = self._notifier(self._record)

        notifier.upload_status_changed(self.upload_id, self.token, "parsing")

        body = json.loads(self.requests[0].content)
        self.assertEqual(body["status"], "parsing")
        self.assertNotIn("totalRows", body)
        self.assertNotIn("totalChunks", body)

    def test_transport_errors_are_logged_not_raised(self):
        def boom(request):
            raise httpx.ConnectError("connection refused", request=request)

        notifier = self._notifier(boom)
        with self.assertLogs("uploads.notifications", level="WARNING") as logs:
            notifier.upload_failed(self.upload_id, self.token, error="bad file")

        self.assertIn(EVENT_UPLOAD_FAILED, logs.output[0])

    def test_timeouts_are_logged_not_raised(self):
        def slow(request):
            raise httpx.ReadTimeout("timed out", request=request)

        notifier = self._notifier(slow)
        with self.assertLogs("uploads.notifications", level="WARNING") as logs:
            notifier.upload_deleted(self.upload_id, self.token)

        self.assertIn("timed out", logs.output[0])

    def test_error_status_is_logged(self):
        notifier = self._notifier(lambda request: httpx.Response(503, text="down"))
        with self.assertLogs("uploads.notifications", level="WARNING") as logs:
            notifier.upload_deleted(self.upload_id, self.token)

        self.assertIn("503", logs.output[0])


class BuildNotifierTests(SimpleTestCase):
    @override_settings(PAYMENTS_NOTIFY_BASE_URL="")
    def test_without_base_url_logs_only(self):
        self.assertIsInstance(build_notifier(), LoggingUploadNotifier)

    @override_settings(PAYMENTS_NOTIFY_BASE_URL="push.local")
    def test_non_http_base_url_is_ignored(self):
        with self.assertLogs("uploads.notifications", level="WARNING"):
            notifier = build_notifier()
        self.assertIsInstance(notifier, LoggingUploadNotifier)

    @override_settings(PAYMENTS_NOTIFY_BASE_URL="https://push.local", PAYMENTS_NOTIFY_TIMEOUT_SECONDS=5)
    def test_http_base_url(self):
        notifier = build_notifier()
        self.addCleanup(notifier.close)
        self.assertIsInstance(notifier, HttpUploadNotifier)
        self.assertEqual(notifier.timeout, 5.0)
        self.assertEqual(notifier.url_for("row-progress"), "https://push.local/api/notifications/row-progress")
