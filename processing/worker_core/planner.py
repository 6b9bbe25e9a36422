"""Deterministic partitioning of an upload's rows into chunks."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import List

from uploads.models import Chunk, Upload


@dataclass(frozen=True)
class ChunkRange:
    chunk_index: int
    row_start: int
    row_end: int

    @property
    def row_count(self) -> int:
        return self.row_end - self.row_start + 1


def plan_chunk_ranges(total_rows: int, chunk_size_rows: int) -> List[ChunkRange]:
    """Split ``[1, total_rows]`` into consecutive windows of ``chunk_size_rows``.

    The last window may be shorter. Indices start at 0. ``chunk_size_rows``
    below 1 is treated as 1, and ``total_rows`` of 0 yields no chunks.
    """
    size = max(1, chunk_size_rows)
    ranges: List[ChunkRange] = []
    start = 1
    index = 0
    while start <= total_rows:
        end = min(start + size - 1, total_rows)
        ranges.append(ChunkRange(chunk_index=index, row_start=start, row_end=end))
        start = end + 1
        index += 1
    return ranges


def create_chunks(
    upload: Upload,
    total_rows: int,
    chunk_size_rows: int,
    now: datetime,
) -> List[Chunk]:
    chunks = [
        Chunk(
            upload=upload,
            chunk_index=window.chunk_index,
            row_start=window.row_start,
            row_end=window.row_end,
            status=Chunk.Status.QUEUED,
            next_run_at=now,
        )
        for window in plan_chunk_ranges(total_rows, chunk_size_rows)
    ]
    return Chunk.objects.bulk_create(chunks)
