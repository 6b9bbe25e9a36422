from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from uploads.notifications import UploadNotifier, build_notifier

from .lease import LeaseCoordinator
from .options import WorkerOptions


@dataclass
class WorkerContext:
    """Everything one worker process needs to run jobs and chunks."""

    options: WorkerOptions
    notifier: UploadNotifier
    job_leases: LeaseCoordinator
    chunk_leases: LeaseCoordinator

    @classmethod
    def build(
        cls,
        options: WorkerOptions,
        *,
        notifier: Optional[UploadNotifier] = None,
        clock=None,
    ) -> "WorkerContext":
        return cls(
            options=options,
            notifier=notifier or build_notifier(),
            job_leases=LeaseCoordinator.for_jobs(options, clock=clock),
            chunk_leases=LeaseCoordinator.for_chunks(options, clock=clock),
        )
