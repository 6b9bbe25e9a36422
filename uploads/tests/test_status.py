from __future__ import annotations

from django.test import TestCase

from uploads.models import Upload
from uploads.status import advance_upload_status, can_transition


def make_upload(**fields) -> Upload:
    raw = fields.pop("raw_bytes", b"Amount\n1\n")
    return Upload.objects.create(
        original_filename="payments.csv",
        size_bytes=len(raw),
        content_sha256="0" * 64,
        raw_bytes=raw,
        **fields,
    )


class AdvanceUploadStatusTests(TestCase):
    def test_forward_transition_writes_extra_fields(self):
        upload = make_upload(status=Upload.Status.PARSING)

        moved = advance_upload_status(
            upload.id, Upload.Status.VALIDATING, total_rows=3, headers=["Amount"]
        )

        self.assertTrue(moved)
        upload.refresh_from_db()
        self.assertEqual(upload.status, Upload.Status.VALIDATING)
        self.assertEqual(upload.total_rows, 3)
        self.assertEqual(upload.headers, ["Amount"])

    def test_second_caller_loses(self):
        upload = make_upload(status=Upload.Status.VALIDATING)

        self.assertTrue(advance_upload_status(upload.id, Upload.Status.COMPLETED))
        self.assertFalse(advance_upload_status(upload.id, Upload.Status.COMPLETED))
        self.assertFalse(
            advance_upload_status(upload.id, Upload.Status.FAILED, last_error="late")
        )

        upload.refresh_from_db()
        self.assertEqual(upload.status, Upload.Status.COMPLETED)
        self.assertIsNone(upload.last_error)

    def test_backwards_transition_is_refused(self):
        upload = make_upload(status=Upload.Status.VALIDATING)
        self.assertFalse(advance_upload_status(upload.id, Upload.Status.PARSING))
        upload.refresh_from_db()
        self.assertEqual(upload.status, Upload.Status.VALIDATING)

    def test_queued_can_be_failed_directly(self):
        upload = make_upload()
        self.assertTrue(advance_upload_status(upload.id, Upload.Status.FAILED, last_error="x"))

    def test_unknown_target_raises(self):
        upload = make_upload()
        with self.assertRaises(ValueError):
            advance_upload_status(upload.id, Upload.Status.QUEUED)

    def test_can_transition(self):
        self.assertTrue(can_transition(Upload.Status.QUEUED, Upload.Status.PARSING))
        self.assertFalse(can_transition(Upload.Status.COMPLETED, Upload.Status.FAILED))
        self.assertFalse(can_transition(Upload.Status.FAILED, Upload.Status.VALIDATING))
