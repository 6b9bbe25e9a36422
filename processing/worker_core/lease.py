"""
Durable leases over ingestion jobs and chunks.

Mutual exclusion between competing worker processes lives entirely in the
database. A claim is a locking read that skips rows other transactions hold
(``SELECT ... FOR UPDATE SKIP LOCKED`` on PostgreSQL) followed by a
conditional ``queued -> running`` update that must change exactly one row.
On engines that ignore the locking read (SQLite) the conditional update
alone still guarantees a single winner.

Every later write by the lease holder (heartbeat, release) is conditioned on
``locked_by`` so a worker whose lease was reclaimed can never overwrite the
state of the worker that took over.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Optional, Sequence, Type

from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from uploads.models import Chunk, IngestionJob, LeasedWorkItem, WorkStatus

from .options import MIN_STALE_LOCK_SECONDS, WorkerOptions

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 2048

JOB_ORDERING = ("next_run_at", "created_at")
CHUNK_ORDERING = ("upload_id", "chunk_index")


class LeaseLostError(RuntimeError):
    """The calling worker no longer owns the lease on a work item."""

    def __init__(self, item: LeasedWorkItem, worker_id: str):
        super().__init__(
            f"{type(item).__name__} {item.pk} is no longer leased by {worker_id}"
        )
        self.item_id = item.pk
        self.worker_id = worker_id


@dataclass(frozen=True)
class ReleaseOutcome:
    attempt_count: int
    terminal: bool
    next_run_at: Optional[datetime]


def truncate_error(error: Any) -> str:
    text = str(error) if error is not None else ""
    if not text and isinstance(error, BaseException):
        text = type(error).__name__
    return text[:MAX_ERROR_LENGTH]


def backoff_delay(attempt_count: int, base_seconds: float) -> timedelta:
    """``base * 2**attempt_count`` seconds, uncapped and without jitter."""
    return timedelta(seconds=base_seconds * (2 ** attempt_count))


class LeaseCoordinator:
    """Claim, heartbeat and release one kind of leased work item."""

    def __init__(
        self,
        model: Type[LeasedWorkItem],
        *,
        worker_id: str,
        stale_lock_seconds: int,
        max_attempts: int,
        backoff_base_seconds: float,
        ordering: Sequence[str],
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.model = model
        self.worker_id = worker_id
        self.stale_lock_seconds = max(MIN_STALE_LOCK_SECONDS, stale_lock_seconds)
        self.max_attempts = max_attempts
        self.backoff_base_seconds = backoff_base_seconds
        self.ordering = tuple(ordering)
        self.clock = clock or timezone.now

    @classmethod
    def for_options(cls, model, options: WorkerOptions, *, ordering, clock=None) -> "LeaseCoordinator":
        return cls(
            model,
            worker_id=options.worker_id,
            stale_lock_seconds=options.stale_lock_seconds,
            max_attempts=options.max_attempts,
            backoff_base_seconds=options.backoff_base_seconds,
            ordering=ordering,
            clock=clock,
        )

    @classmethod
    def for_jobs(cls, options: WorkerOptions, clock=None) -> "LeaseCoordinator":
        return cls.for_options(IngestionJob, options, ordering=JOB_ORDERING, clock=clock)

    @classmethod
    def for_chunks(cls, options: WorkerOptions, clock=None) -> "LeaseCoordinator":
        return cls.for_options(Chunk, options, ordering=CHUNK_ORDERING, clock=clock)

    @property
    def kind(self) -> str:
        return self.model.__name__

    def _owned(self, item: LeasedWorkItem):
        return self.model.objects.filter(
            pk=item.pk,
            status=WorkStatus.RUNNING,
            locked_by=self.worker_id,
        )

    # -------------------------------------------------------
    # Claiming
    # -------------------------------------------------------

    def reclaim_stale(self) -> int:
        """Requeue running items whose heartbeat is older than the stale window."""
        now = self.clock()
        cutoff = now - timedelta(seconds=self.stale_lock_seconds)
        reclaimed = self.model.objects.filter(
            Q(heartbeat_at__lt=cutoff) | Q(heartbeat_at__isnull=True),
            status=WorkStatus.RUNNING,
        ).update(
            status=WorkStatus.QUEUED,
            locked_by=None,
            locked_at=None,
            heartbeat_at=None,
            next_run_at=now,
            updated_at=now,
        )
        if reclaimed:
            logger.warning(
                "Reclaimed %d stale %s lease(s) (heartbeat older than %ss)",
                reclaimed,
                self.kind,
                self.stale_lock_seconds,
                extra={"event": "lease_reclaimed", "kind": self.kind, "count": reclaimed},
            )
        return reclaimed

    def try_claim(self, pk, now: datetime) -> bool:
        """Conditional queued -> running update; True only if this call won."""
        claimed = self.model.objects.filter(pk=pk, status=WorkStatus.QUEUED).update(
            status=WorkStatus.RUNNING,
            locked_by=self.worker_id,
            locked_at=now,
            heartbeat_at=now,
            updated_at=now,
        )
        return claimed == 1

    def claim_next(self) -> Optional[LeasedWorkItem]:
        """Lease the next eligible item, or return None if there is none."""
        now = self.clock()
        with transaction.atomic():
            candidate = (
                self.model.objects.select_for_update(skip_locked=True)
                .filter(status=WorkStatus.QUEUED, next_run_at__lte=now)
                .order_by(*self.ordering)
                .first()
            )
            if candidate is None:
                return None

            claimed = self.try_claim(candidate.pk, now)

        if not claimed:
            logger.debug("Lost claim race for %s %s", self.kind, candidate.pk)
            return None

        candidate.status = WorkStatus.RUNNING
        candidate.locked_by = self.worker_id
        candidate.locked_at = now
        candidate.heartbeat_at = now
        logger.info(
            "Claimed %s %s (attempt %d)",
            self.kind,
            candidate.pk,
            candidate.attempt_count + 1,
            extra={"event": "lease_claimed", "kind": self.kind, "worker_id": self.worker_id},
        )
        return candidate

    # -------------------------------------------------------
    # While holding a lease
    # -------------------------------------------------------

    def heartbeat(self, item: LeasedWorkItem, **fields: Any) -> None:
        """Refresh ``heartbeat_at``, optionally writing progress ``fields`` too.

        Raises LeaseLostError if the item is no longer leased by this worker.
        """
        now = self.clock()
        updated = self._owned(item).update(heartbeat_at=now, updated_at=now, **fields)
        if updated != 1:
            raise LeaseLostError(item, self.worker_id)
        item.heartbeat_at = now
        for name, value in fields.items():
            setattr(item, name, value)

    # -------------------------------------------------------
    # Releasing
    # -------------------------------------------------------

    def release_success(self, item: LeasedWorkItem, **fields: Any) -> None:
        now = self.clock()
        updated = self._owned(item).update(
            status=WorkStatus.SUCCEEDED,
            locked_by=None,
            locked_at=None,
            heartbeat_at=None,
            updated_at=now,
            **fields,
        )
        if updated != 1:
            raise LeaseLostError(item, self.worker_id)

        item.status = WorkStatus.SUCCEEDED
        item.locked_by = item.locked_at = item.heartbeat_at = None
        for name, value in fields.items():
            setattr(item, name, value)

    def release_failure(self, item: LeasedWorkItem, error: Any) -> ReleaseOutcome:
        """Record a failed attempt and either schedule a retry or fail for good."""
        now = self.clock()
        attempt_count = item.attempt_count + 1
        last_error = truncate_error(error)
        terminal = attempt_count >= self.max_attempts

        changes = {
            "attempt_count": attempt_count,
            "last_error": last_error,
            "locked_by": None,
            "locked_at": None,
            "heartbeat_at": None,
            "updated_at": now,
        }
        if terminal:
            changes["status"] = WorkStatus.FAILED
            next_run_at = None
        else:
            next_run_at = now + backoff_delay(attempt_count, self.backoff_base_seconds)
            changes["status"] = WorkStatus.QUEUED
            changes["next_run_at"] = next_run_at

        updated = self._owned(item).update(**changes)
        if updated != 1:
            raise LeaseLostError(item, self.worker_id)

        for name, value in changes.items():
            setattr(item, name, value)

        logger.warning(
            "%s %s failed (attempt %d/%d)%s: %s",
            self.kind,
            item.pk,
            attempt_count,
            self.max_attempts,
            "; giving up" if terminal else f"; retry at {next_run_at.isoformat()}",
            last_error,
            extra={"event": "lease_failed", "kind": self.kind, "terminal": terminal},
        )
        return ReleaseOutcome(
            attempt_count=attempt_count,
            terminal=terminal,
            next_run_at=next_run_at,
        )
