"""
Forward-only upload status transitions.

Every status change goes through :func:`advance_upload_status`, which issues
a single conditional ``UPDATE ... WHERE status IN (...)``. Concurrent
callers racing for the same transition therefore resolve to exactly one
winner, and terminal uploads are never rewritten.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Tuple
from uuid import UUID

from django.utils import timezone

from .models import Upload

logger = logging.getLogger(__name__)

Status = Upload.Status

# target status -> statuses it may be entered from
ALLOWED_PREDECESSORS: Dict[str, Tuple[str, ...]] = {
    Status.PARSING: (Status.QUEUED,),
    Status.VALIDATING: (Status.QUEUED, Status.PARSING),
    Status.COMPLETED: (Status.VALIDATING,),
    Status.FAILED: (Status.QUEUED, Status.PARSING, Status.VALIDATING),
}

TERMINAL_STATUSES = (Status.COMPLETED, Status.FAILED)


def can_transition(current: str, target: str) -> bool:
    return current in ALLOWED_PREDECESSORS.get(target, ())


def advance_upload_status(upload_id: UUID | str, target: str, **fields: Any) -> bool:
    """Move an upload to ``target`` if its current status allows it.

    Extra ``fields`` (counters, ``last_error``, ``total_rows`` ...) are
    written in the same statement. Returns True only when this call changed
    the row; False means another writer got there first or the transition
    is not allowed from the stored status.
    """
    predecessors = ALLOWED_PREDECESSORS.get(target)
    if predecessors is None:
        raise ValueError(f"Unknown or non-advanceable upload status '{target}'.")

    updated = Upload.objects.filter(pk=upload_id, status__in=predecessors).update(
        status=target,
        updated_at=timezone.now(),
        **fields,
    )
    if updated:
        logger.info("Upload %s moved to %s", upload_id, target)
    else:
        logger.debug("Upload %s not moved to %s (status precondition failed)", upload_id, target)
    return updated == 1
