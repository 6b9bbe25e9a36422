from __future__ import annotations

import threading
from io import StringIO
from unittest import mock

from django.core.management import call_command
from django.test import TestCase

from processing.worker_core.lease import LeaseLostError
from processing.worker_core.worker import UploadWorker
from uploads.intake import create_upload
from uploads.models import Chunk, IngestionJob, RowError, Upload

from .factories import create_default_rules, make_context, payments_csv


class UploadWorkerTests(TestCase):
    def setUp(self) -> None:
        create_default_rules()
        self.upload = create_upload(
            "payments.csv",
            payments_csv(
                "Jane Doe,REF-1,EUR,10.00,05.01.2025",
                ",REF-2,EUR,0.00,05.01.2025",
                "Ann Poe,REF-3,GBP,30.00,07.01.2025",
            ),
        )

    def test_upload_runs_end_to_end(self):
        ctx = make_context(chunk_size_rows=2)
        worker = UploadWorker(ctx)

        self.assertTrue(worker.run_once())
        self.upload.refresh_from_db()
        self.assertEqual(self.upload.status, Upload.Status.VALIDATING)

        self.assertTrue(worker.run_once())
        self.assertFalse(worker.run_once())

        self.upload.refresh_from_db()
        self.assertEqual(self.upload.status, Upload.Status.COMPLETED)
        self.assertEqual(
            (self.upload.processed_rows, self.upload.succeeded_rows, self.upload.failed_rows),
            (3, 2, 1),
        )
        self.assertEqual(RowError.objects.filter(upload=self.upload, is_error=True).count(), 2)
        self.assertFalse(
            Chunk.objects.filter(upload=self.upload).exclude(status=Chunk.Status.SUCCEEDED).exists()
        )
        ctx.notifier.upload_completed.assert_called_once()

    def test_two_workers_share_the_chunks(self):
        first = UploadWorker(make_context("worker-a", chunk_size_rows=1))
        second = UploadWorker(make_context("worker-b", chunk_size_rows=1))

        self.assertTrue(first.process_next_job())
        self.assertFalse(second.process_next_job())

        while first.process_next_chunk() | second.process_next_chunk():
            pass

        statuses = set(Chunk.objects.values_list("status", flat=True))
        self.assertEqual(statuses, {Chunk.Status.SUCCEEDED})
        self.upload.refresh_from_db()
        self.assertEqual(self.upload.status, Upload.Status.COMPLETED)

    def test_job_exception_is_recorded_as_failed_attempt(self):
        ctx = make_context(max_attempts=3)
        worker = UploadWorker(ctx)

        with mock.patch(
            "processing.worker_core.worker.run_ingestion_job",
            side_effect=RuntimeError("disk full"),
        ):
            self.assertTrue(worker.process_next_job())

        job = IngestionJob.objects.get(upload=self.upload)
        self.assertEqual(job.status, IngestionJob.Status.QUEUED)
        self.assertEqual(job.attempt_count, 1)
        self.assertEqual(job.last_error, "disk full")

    def test_lost_lease_is_abandoned_quietly(self):
        ctx = make_context()
        worker = UploadWorker(ctx)

        with mock.patch(
            "processing.worker_core.worker.run_ingestion_job",
            side_effect=LeaseLostError(IngestionJob.objects.get(upload=self.upload), "worker-1"),
        ), mock.patch("processing.worker_core.worker.handle_ingestion_failure") as handler:
            with self.assertLogs("processing.worker_core.worker", level="WARNING"):
                self.assertTrue(worker.process_next_job())

        handler.assert_not_called()

    def test_run_forever_stops_when_event_is_set(self):
        worker = UploadWorker(make_context())
        stop_event = threading.Event()

        def run_once():
            stop_event.set()
            return False

        with mock.patch.object(worker, "run_once", side_effect=run_once) as patched, mock.patch(
            "processing.worker_core.worker.close_old_connections"
        ):
            worker.run_forever(stop_event)

        patched.assert_called_once()

    def test_run_forever_survives_loop_errors(self):
        worker = UploadWorker(make_context(error_cooldown_seconds=0))
        stop_event = threading.Event()
        calls = []

        def run_once():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("database unavailable")
            stop_event.set()
            return True

        with mock.patch.object(worker, "run_once", side_effect=run_once), mock.patch(
            "processing.worker_core.worker.close_old_connections"
        ):
            with self.assertLogs("processing.worker_core.worker", level="ERROR"):
                worker.run_forever(stop_event)

        self.assertEqual(len(calls), 2)


class RunUploadWorkerCommandTests(TestCase):
    def test_once_with_no_work(self):
        out = StringIO()
        call_command("run_upload_worker", "--once", "--worker-id", "cli-worker", stdout=out)
        self.assertIn("No queued ingestion jobs or chunks", out.getvalue())

    def test_once_processes_pending_job(self):
        create_upload("payments.csv", payments_csv("Jane Doe,REF-1,EUR,10.00,05.01.2025"))
        out = StringIO()

        call_command("run_upload_worker", "--once", stdout=out)

        self.assertIn("Processed pending upload work", out.getvalue())
        self.assertEqual(Upload.objects.get().status, Upload.Status.COMPLETED)
