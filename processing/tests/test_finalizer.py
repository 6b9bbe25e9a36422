from __future__ import annotations

from unittest import mock

from django.test import TestCase
from django.utils import timezone

from processing.worker_core.finalizer import DEFAULT_FAILURE_MESSAGE, try_finalize_upload
from uploads.models import Chunk, Upload
from uploads.notifications import UploadNotifier

from .factories import make_upload


class TryFinalizeUploadTests(TestCase):
    def setUp(self) -> None:
        self.notifier = mock.Mock(spec=UploadNotifier)
        self.upload = make_upload(status=Upload.Status.VALIDATING, total_rows=30)

    def _chunk(self, index: int, status: str, processed=10, succeeded=8, failed=2) -> Chunk:
        return Chunk.objects.create(
            upload=self.upload,
            chunk_index=index,
            row_start=index * 10 + 1,
            row_end=index * 10 + 10,
            status=status,
            next_run_at=timezone.now(),
            processed_rows=processed,
            succeeded_rows=succeeded,
            failed_rows=failed,
        )

    def test_waits_while_chunks_are_open(self):
        self._chunk(0, Chunk.Status.SUCCEEDED)
        self._chunk(1, Chunk.Status.RUNNING)
        self._chunk(2, Chunk.Status.QUEUED)

        self.assertIsNone(try_finalize_upload(self.upload.id, self.notifier))
        self.upload.refresh_from_db()
        self.assertEqual(self.upload.status, Upload.Status.VALIDATING)
        self.assertEqual(self.notifier.method_calls, [])

    def test_upload_without_chunks_is_left_alone(self):
        self.assertIsNone(try_finalize_upload(self.upload.id, self.notifier))

    def test_all_chunks_succeeded_completes_with_summed_counters(self):
        for index in range(3):
            self._chunk(index, Chunk.Status.SUCCEEDED)

        applied = try_finalize_upload(self.upload.id, self.notifier)

        self.assertEqual(applied, Upload.Status.COMPLETED)
        self.upload.refresh_from_db()
        self.assertEqual(self.upload.status, Upload.Status.COMPLETED)
        self.assertEqual(
            (self.upload.processed_rows, self.upload.succeeded_rows, self.upload.failed_rows),
            (30, 24, 6),
        )
        self.notifier.upload_completed.assert_called_once_with(
            self.upload.id,
            self.upload.token,
            total_rows=30,
            processed=30,
            succeeded=24,
            failed=6,
        )

    def test_any_failed_chunk_fails_the_upload_once(self):
        self._chunk(0, Chunk.Status.SUCCEEDED)
        self._chunk(1, Chunk.Status.SUCCEEDED)
        self._chunk(2, Chunk.Status.FAILED, processed=0, succeeded=0, failed=0)

        applied = try_finalize_upload(self.upload.id, self.notifier)
        again = try_finalize_upload(self.upload.id, self.notifier)

        self.assertEqual(applied, Upload.Status.FAILED)
        self.assertIsNone(again)
        self.upload.refresh_from_db()
        self.assertEqual(self.upload.status, Upload.Status.FAILED)
        self.assertEqual(self.upload.last_error, DEFAULT_FAILURE_MESSAGE)
        self.assertEqual(self.upload.processed_rows, 20)
        self.notifier.upload_failed.assert_called_once_with(
            self.upload.id, self.upload.token, error=DEFAULT_FAILURE_MESSAGE
        )
        self.notifier.upload_completed.assert_not_called()

    def test_second_finalizer_is_a_no_op(self):
        self._chunk(0, Chunk.Status.SUCCEEDED)

        self.assertEqual(
            try_finalize_upload(self.upload.id, self.notifier), Upload.Status.COMPLETED
        )
        self.assertIsNone(try_finalize_upload(self.upload.id, self.notifier))
        self.assertEqual(self.notifier.upload_completed.call_count, 1)

    def test_lost_race_sends_nothing(self):
        self._chunk(0, Chunk.Status.SUCCEEDED)

        with mock.patch(
            "processing.worker_core.finalizer.advance_upload_status", return_value=False
        ):
            self.assertIsNone(try_finalize_upload(self.upload.id, self.notifier))
        self.notifier.upload_completed.assert_not_called()
