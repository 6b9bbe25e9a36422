from __future__ import annotations

import socket
import uuid
from dataclasses import dataclass, replace
from typing import Optional

from django.conf import settings

MIN_STALE_LOCK_SECONDS = 5


def default_worker_id() -> str:
    """``<hostname>:<random hex>``, unique per worker process."""
    return f"{socket.gethostname()}:{uuid.uuid4().hex}"


@dataclass(frozen=True)
class WorkerOptions:
    worker_id: str
    poll_delay_ms: int = 500
    chunk_size_rows: int = 1000
    stale_lock_seconds: int = 60
    max_attempts: int = 5
    backoff_base_seconds: float = 2.0
    ingest_batch_size: int = 500
    progress_commit_rows: int = 200
    progress_notify_rows: int = 100
    error_flush_rows: int = 1000
    error_cooldown_seconds: float = 1.0

    def __post_init__(self):
        # frozen, so clamp through object.__setattr__
        object.__setattr__(
            self, "stale_lock_seconds", max(MIN_STALE_LOCK_SECONDS, int(self.stale_lock_seconds))
        )
        object.__setattr__(self, "chunk_size_rows", max(1, int(self.chunk_size_rows)))
        object.__setattr__(self, "max_attempts", max(1, int(self.max_attempts)))
        object.__setattr__(self, "ingest_batch_size", max(1, int(self.ingest_batch_size)))
        object.__setattr__(self, "progress_commit_rows", max(1, int(self.progress_commit_rows)))
        object.__setattr__(self, "progress_notify_rows", max(1, int(self.progress_notify_rows)))
        object.__setattr__(self, "error_flush_rows", max(1, int(self.error_flush_rows)))

    @property
    def poll_delay_seconds(self) -> float:
        return max(0, self.poll_delay_ms) / 1000.0

    @classmethod
    def from_settings(cls, worker_id: Optional[str] = None, **overrides) -> "WorkerOptions":
        options = cls(
            worker_id=worker_id or default_worker_id(),
            poll_delay_ms=getattr(settings, "PAYMENTS_WORKER_POLL_DELAY_MS", 500),
            chunk_size_rows=getattr(settings, "PAYMENTS_CHUNK_SIZE_ROWS", 1000),
            stale_lock_seconds=getattr(settings, "PAYMENTS_STALE_LOCK_SECONDS", 60),
            max_attempts=getattr(settings, "PAYMENTS_MAX_ATTEMPTS", 5),
            backoff_base_seconds=getattr(settings, "PAYMENTS_BACKOFF_BASE_SECONDS", 2.0),
            ingest_batch_size=getattr(settings, "PAYMENTS_INGEST_BATCH_SIZE", 500),
            progress_commit_rows=getattr(settings, "PAYMENTS_PROGRESS_COMMIT_ROWS", 200),
            progress_notify_rows=getattr(settings, "PAYMENTS_PROGRESS_NOTIFY_ROWS", 100),
            error_flush_rows=getattr(settings, "PAYMENTS_ERROR_FLUSH_ROWS", 1000),
        )
        if overrides:
            options = replace(options, **overrides)
        return options
