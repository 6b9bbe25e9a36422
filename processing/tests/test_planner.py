from __future__ import annotations

from django.test import SimpleTestCase, TestCase
from django.utils import timezone

from processing.worker_core.planner import ChunkRange, create_chunks, plan_chunk_ranges
from uploads.models import Chunk

from .factories import make_upload


class PlanChunkRangesTests(SimpleTestCase):
    def test_last_window_is_shorter(self):
        self.assertEqual(
            plan_chunk_ranges(5, 2),
            [ChunkRange(0, 1, 2), ChunkRange(1, 3, 4), ChunkRange(2, 5, 5)],
        )

    def test_exact_multiple(self):
        ranges = plan_chunk_ranges(2000, 1000)
        self.assertEqual([(r.row_start, r.row_end) for r in ranges], [(1, 1000), (1001, 2000)])
        self.assertTrue(all(r.row_count == 1000 for r in ranges))

    def test_windows_cover_every_row_once(self):
        ranges = plan_chunk_ranges(1234, 100)
        covered = [n for r in ranges for n in range(r.row_start, r.row_end + 1)]
        self.assertEqual(covered, list(range(1, 1235)))
        self.assertEqual([r.chunk_index for r in ranges], list(range(len(ranges))))

    def test_no_rows_no_chunks(self):
        self.assertEqual(plan_chunk_ranges(0, 1000), [])

    def test_chunk_size_below_one_is_clamped(self):
        self.assertEqual(len(plan_chunk_ranges(3, 0)), 3)


class CreateChunksTests(TestCase):
    def test_chunks_are_queued_and_due_now(self):
        upload = make_upload()
        now = timezone.now()

        create_chunks(upload, 3, 2, now)

        chunks = list(Chunk.objects.filter(upload=upload).order_by("chunk_index"))
        self.assertEqual([(c.row_start, c.row_end) for c in chunks], [(1, 2), (3, 3)])
        for chunk in chunks:
            self.assertEqual(chunk.status, Chunk.Status.QUEUED)
            self.assertEqual(chunk.attempt_count, 0)
            self.assertEqual(chunk.next_run_at, now)
            self.assertIsNone(chunk.locked_by)
