from __future__ import annotations

import logging
import signal
import threading
from typing import Any

from django.core.management.base import BaseCommand

from processing.worker_core.context import WorkerContext
from processing.worker_core.options import WorkerOptions
from processing.worker_core.worker import UploadWorker

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = (
        "Run an upload validation worker. Workers claim ingestion jobs and "
        "chunks through database leases, so any number of them can run "
        "side by side. Use --once to process at most one job and one chunk."
    )

    def add_arguments(self, parser) -> None:
        parser.add_argument(
            "--once",
            action="store_true",
            help="Run a single iteration (one job and one chunk at most) and exit.",
        )
        parser.add_argument(
            "--poll-delay-ms",
            type=int,
            default=None,
            help="Milliseconds to sleep when no work is available "
            "(default: PAYMENTS_WORKER_POLL_DELAY_MS).",
        )
        parser.add_argument(
            "--worker-id",
            default=None,
            help="Identity recorded on claimed leases (default: <hostname>:<random hex>).",
        )

    def handle(self, *args: Any, **options: Any) -> None:
        overrides = {}
        if options["poll_delay_ms"] is not None:
            overrides["poll_delay_ms"] = options["poll_delay_ms"]
        worker_options = WorkerOptions.from_settings(worker_id=options["worker_id"], **overrides)
        worker = UploadWorker(WorkerContext.build(worker_options))

        if options["once"]:
            if worker.run_once():
                self.stdout.write(self.style.SUCCESS("Processed pending upload work."))
            else:
                self.stdout.write("No queued ingestion jobs or chunks to process.")
            return

        stop_event = threading.Event()

        def _request_stop(signum, _frame):
            logger.info("Received signal %s; stopping after the current iteration", signum)
            stop_event.set()

        signal.signal(signal.SIGINT, _request_stop)
        signal.signal(signal.SIGTERM, _request_stop)

        self.stdout.write(
            self.style.WARNING(
                f"Worker {worker_options.worker_id} polling "
                f"(delay={worker_options.poll_delay_ms}ms). Press Ctrl+C to stop."
            )
        )
        worker.run_forever(stop_event)
        self.stdout.write(self.style.WARNING("Stopping run_upload_worker loop."))
