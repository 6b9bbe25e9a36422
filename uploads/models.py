import uuid

from django.db import models


class Upload(models.Model):
    """One submitted CSV file of payment instructions and its lifecycle.

    The raw bytes are persisted at intake time so workers never depend on
    the original request. Status only ever moves forward; see
    :mod:`uploads.status` for the transition rules.
    """

    class Status(models.TextChoices):
        QUEUED = "queued", "Queued"
        PARSING = "parsing", "Parsing"
        VALIDATING = "validating", "Validating"
        COMPLETED = "completed", "Completed"
        FAILED = "failed", "Failed"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    token = models.UUIDField(default=uuid.uuid4, editable=False, db_index=True)
    original_filename = models.CharField(max_length=512)
    content_type = models.CharField(max_length=256, blank=True)
    size_bytes = models.BigIntegerField()
    content_sha256 = models.CharField(max_length=64)
    raw_bytes = models.BinaryField()
    # Normalised header names, recorded by ingestion.
    headers = models.JSONField(blank=True, null=True)
    status = models.CharField(
        max_length=16,
        choices=Status.choices,
        default=Status.QUEUED,
    )
    total_rows = models.IntegerField(null=True, blank=True)
    processed_rows = models.IntegerField(default=0)
    succeeded_rows = models.IntegerField(default=0)
    failed_rows = models.IntegerField(default=0)
    last_error = models.CharField(max_length=2048, blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status"], name="uploads_upl_status_6a1f0c_idx"),
            models.Index(fields=["created_at"], name="uploads_upl_created_3b9e2d_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.original_filename} ({self.id})"

    @property
    def is_terminal(self) -> bool:
        return self.status in (self.Status.COMPLETED, self.Status.FAILED)


class WorkStatus(models.TextChoices):
    QUEUED = "queued", "Queued"
    RUNNING = "running", "Running"
    SUCCEEDED = "succeeded", "Succeeded"
    FAILED = "failed", "Failed"


class LeasedWorkItem(models.Model):
    """Status and lease bookkeeping shared by ingestion jobs and chunks.

    ``locked_by``, ``locked_at`` and ``heartbeat_at`` are all set while a
    worker holds the lease and all null otherwise.
    """

    Status = WorkStatus

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    status = models.CharField(
        max_length=16,
        choices=WorkStatus.choices,
        default=WorkStatus.QUEUED,
    )
    attempt_count = models.IntegerField(default=0)
    next_run_at = models.DateTimeField()
    locked_at = models.DateTimeField(null=True, blank=True)
    locked_by = models.CharField(max_length=128, null=True, blank=True)
    heartbeat_at = models.DateTimeField(null=True, blank=True)
    last_error = models.CharField(max_length=2048, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class IngestionJob(LeasedWorkItem):
    """Parse one upload's CSV into rows and plan its chunks."""

    upload = models.OneToOneField(
        Upload,
        on_delete=models.CASCADE,
        related_name="ingestion_job",
    )

    class Meta:
        indexes = [
            models.Index(fields=["status", "next_run_at"], name="uploads_ing_status_1c7d4e_idx"),
        ]

    def __str__(self) -> str:
        return f"IngestionJob {self.id} for {self.upload_id} ({self.status})"


class Chunk(LeasedWorkItem):
    """A contiguous, 1-based inclusive row range validated as one unit."""

    upload = models.ForeignKey(
        Upload,
        on_delete=models.CASCADE,
        related_name="chunks",
    )
    chunk_index = models.IntegerField()
    row_start = models.IntegerField()
    row_end = models.IntegerField()
    processed_rows = models.IntegerField(default=0)
    succeeded_rows = models.IntegerField(default=0)
    failed_rows = models.IntegerField(default=0)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["upload", "chunk_index"],
                name="uniq_chunk_index_per_upload",
            ),
        ]
        indexes = [
            models.Index(fields=["status", "next_run_at"], name="uploads_chu_status_8e2a5b_idx"),
            models.Index(fields=["upload", "status"], name="uploads_chu_upload__4f6c1a_idx"),
        ]

    def __str__(self) -> str:
        return (
            f"Chunk {self.chunk_index} of {self.upload_id} "
            f"rows {self.row_start}-{self.row_end} ({self.status})"
        )

    @property
    def row_count(self) -> int:
        return self.row_end - self.row_start + 1


class UploadRow(models.Model):
    """One parsed CSV data line with its verbatim field map."""

    class ValidationStatus(models.TextChoices):
        PENDING = "pending", "Pending"
        VALID = "valid", "Valid"
        INVALID = "invalid", "Invalid"

    upload = models.ForeignKey(
        Upload,
        on_delete=models.CASCADE,
        related_name="rows",
    )
    row_number = models.IntegerField()
    fields = models.JSONField(default=dict)
    validation_status = models.CharField(
        max_length=16,
        choices=ValidationStatus.choices,
        default=ValidationStatus.PENDING,
    )
    # Error-severity failures only; warnings never count.
    error_count = models.IntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["upload", "row_number"],
                name="uniq_row_number_per_upload",
            ),
        ]

    def __str__(self) -> str:
        return f"Row {self.row_number} of {self.upload_id} ({self.validation_status})"


class RowError(models.Model):
    """A single rule failure recorded against a row."""

    class Severity(models.TextChoices):
        WARNING = "warning", "Warning"
        ERROR = "error", "Error"

    upload = models.ForeignKey(
        Upload,
        on_delete=models.CASCADE,
        related_name="row_errors",
    )
    row_number = models.IntegerField()
    field_name = models.CharField(max_length=128, null=True, blank=True)
    code = models.CharField(max_length=64)
    message = models.CharField(max_length=2048)
    severity = models.CharField(max_length=16, choices=Severity.choices)
    is_error = models.BooleanField(default=False)
    # Plain id rather than a foreign key: rules can be deleted without
    # rewriting output that was already recorded.
    rule_id = models.UUIDField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["upload", "row_number"], name="uploads_row_upload__2d8b7f_idx"),
            models.Index(
                fields=["upload", "is_error", "row_number"],
                name="uploads_row_upload__9a3e6c_idx",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.code} on row {self.row_number} of {self.upload_id}"
