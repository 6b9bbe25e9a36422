import uuid

import django.db.models.deletion
from django.db import migrations, models


WORK_STATUS_CHOICES = [
    ("queued", "Queued"),
    ("running", "Running"),
    ("succeeded", "Succeeded"),
    ("failed", "Failed"),
]


def _lease_fields():
    return [
        ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
        ("status", models.CharField(choices=WORK_STATUS_CHOICES, default="queued", max_length=16)),
        ("attempt_count", models.IntegerField(default=0)),
        ("next_run_at", models.DateTimeField()),
        ("locked_at", models.DateTimeField(blank=True, null=True)),
        ("locked_by", models.CharField(blank=True, max_length=128, null=True)),
        ("heartbeat_at", models.DateTimeField(blank=True, null=True)),
        ("last_error", models.CharField(blank=True, max_length=2048, null=True)),
        ("created_at", models.DateTimeField(auto_now_add=True)),
        ("updated_at", models.DateTimeField(auto_now=True)),
    ]


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Upload",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("token", models.UUIDField(db_index=True, default=uuid.uuid4, editable=False)),
                ("original_filename", models.CharField(max_length=512)),
                ("content_type", models.CharField(blank=True, max_length=256)),
                ("size_bytes", models.BigIntegerField()),
                ("content_sha256", models.CharField(max_length=64)),
                ("raw_bytes", models.BinaryField()),
                ("headers", models.JSONField(blank=True, null=True)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("queued", "Queued"),
                            ("parsing", "Parsing"),
                            ("validating", "Validating"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                        ],
                        default="queued",
                        max_length=16,
                    ),
                ),
                ("total_rows", models.IntegerField(blank=True, null=True)),
                ("processed_rows", models.IntegerField(default=0)),
                ("succeeded_rows", models.IntegerField(default=0)),
                ("failed_rows", models.IntegerField(default=0)),
                ("last_error", models.CharField(blank=True, max_length=2048, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status"], name="uploads_upl_status_6a1f0c_idx"),
                    models.Index(fields=["created_at"], name="uploads_upl_created_3b9e2d_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="IngestionJob",
            fields=_lease_fields()
            + [
                (
                    "upload",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="ingestion_job",
                        to="uploads.upload",
                    ),
                ),
            ],
            options={
                "indexes": [
                    models.Index(fields=["status", "next_run_at"], name="uploads_ing_status_1c7d4e_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Chunk",
            fields=_lease_fields()
            + [
                ("chunk_index", models.IntegerField()),
                ("row_start", models.IntegerField()),
                ("row_end", models.IntegerField()),
                ("processed_rows", models.IntegerField(default=0)),
                ("succeeded_rows", models.IntegerField(default=0)),
                ("failed_rows", models.IntegerField(default=0)),
                (
                    "upload",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="chunks",
                        to="uploads.upload",
                    ),
                ),
            ],
            options={
                "indexes": [
                    models.Index(fields=["status", "next_run_at"], name="uploads_chu_status_8e2a5b_idx"),
                    models.Index(fields=["upload", "status"], name="uploads_chu_upload__4f6c1a_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("upload", "chunk_index"),
                        name="uniq_chunk_index_per_upload",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="UploadRow",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("row_number", models.IntegerField()),
                ("fields", models.JSONField(default=dict)),
                (
                    "validation_status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("valid", "Valid"),
                            ("invalid", "Invalid"),
                        ],
                        default="pending",
                        max_length=16,
                    ),
                ),
                ("error_count", models.IntegerField(default=0)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "upload",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="rows",
                        to="uploads.upload",
                    ),
                ),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(
                        fields=("upload", "row_number"),
                        name="uniq_row_number_per_upload",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="RowError",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("row_number", models.IntegerField()),
                ("field_name", models.CharField(blank=True, max_length=128, null=True)),
                ("code", models.CharField(max_length=64)),
                ("message", models.CharField(max_length=2048)),
                (
                    "severity",
                    models.CharField(
                        choices=[("warning", "Warning"), ("error", "Error")],
                        max_length=16,
                    ),
                ),
                ("is_error", models.BooleanField(default=False)),
                ("rule_id", models.UUIDField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "upload",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="row_errors",
                        to="uploads.upload",
                    ),
                ),
            ],
            options={
                "indexes": [
                    models.Index(fields=["upload", "row_number"], name="uploads_row_upload__2d8b7f_idx"),
                    models.Index(fields=["upload", "is_error", "row_number"], name="uploads_row_upload__9a3e6c_idx"),
                ],
            },
        ),
    ]
