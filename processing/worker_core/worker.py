"""
Upload validation worker loop.

Each iteration reclaims stale leases, then tries to run one ingestion job
and one chunk. When neither was available the loop sleeps for the poll
delay. Any number of worker processes can run this loop against the same
database; all coordination goes through the leases.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

from django.db import close_old_connections

from .chunks import handle_chunk_failure, run_chunk
from .context import WorkerContext
from .ingest import handle_ingestion_failure, run_ingestion_job
from .lease import LeaseLostError

logger = logging.getLogger(__name__)


class UploadWorker:
    def __init__(self, ctx: WorkerContext):
        self.ctx = ctx

    @property
    def worker_id(self) -> str:
        return self.ctx.options.worker_id

    # -------------------------------------------------------
    # Single units of work
    # -------------------------------------------------------

    def process_next_job(self) -> bool:
        """Claim and run one ingestion job. Returns True if one was claimed."""
        leases = self.ctx.job_leases
        leases.reclaim_stale()
        job = leases.claim_next()
        if job is None:
            return False

        try:
            run_ingestion_job(job, self.ctx)
        except LeaseLostError:
            logger.warning("Abandoning ingestion job %s: lease lost", job.pk)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Ingestion job %s failed for upload %s", job.pk, job.upload_id)
            handle_ingestion_failure(job, exc, self.ctx)
        return True

    def process_next_chunk(self) -> bool:
        """Claim and run one chunk. Returns True if one was claimed."""
        leases = self.ctx.chunk_leases
        leases.reclaim_stale()
        chunk = leases.claim_next()
        if chunk is None:
            return False

        try:
            run_chunk(chunk, self.ctx)
        except LeaseLostError:
            logger.warning("Abandoning chunk %s: lease lost", chunk.pk)
        except Exception as exc:  # noqa: BLE001
            logger.exception(
                "Chunk %s failed for upload %s (rows %d-%d)",
                chunk.pk,
                chunk.upload_id,
                chunk.row_start,
                chunk.row_end,
            )
            handle_chunk_failure(chunk, exc, self.ctx)
        return True

    def run_once(self) -> bool:
        """One loop iteration. Returns True if any work was done."""
        did_work = self.process_next_job()
        did_work = self.process_next_chunk() or did_work
        return did_work

    # -------------------------------------------------------
    # Loop
    # -------------------------------------------------------

    def run_forever(self, stop_event: Optional[threading.Event] = None) -> None:
        """Poll until ``stop_event`` is set.

        The event is only checked between iterations, so a shutdown never
        interrupts a job or chunk mid-transaction. Work left running by a
        killed process is picked up again through stale-lease reclamation.
        """
        stop_event = stop_event or threading.Event()
        options = self.ctx.options
        logger.info("Upload worker %s started", self.worker_id)

        while not stop_event.is_set():
            close_old_connections()
            try:
                did_work = self.run_once()
            except Exception:  # noqa: BLE001
                logger.exception("Upload worker %s loop error", self.worker_id)
                stop_event.wait(options.error_cooldown_seconds)
                continue

            if not did_work:
                stop_event.wait(options.poll_delay_seconds)

        logger.info("Upload worker %s stopped", self.worker_id)
