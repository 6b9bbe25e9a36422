import uuid

from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="ValidationRule",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("enabled", models.BooleanField(default=True)),
                (
                    "scope",
                    models.CharField(
                        choices=[("row", "Row"), ("field", "Field")],
                        default="field",
                        max_length=16,
                    ),
                ),
                ("field_name", models.CharField(blank=True, max_length=128, null=True)),
                (
                    "rule_type",
                    models.CharField(
                        choices=[
                            ("required", "Required"),
                            ("regex", "Regex"),
                            ("allowed_values", "Allowed values"),
                            ("decimal_range", "Decimal range"),
                            ("date_format", "Date format"),
                        ],
                        max_length=32,
                    ),
                ),
                ("parameters", models.JSONField(blank=True, default=dict)),
                (
                    "severity",
                    models.CharField(
                        choices=[("warning", "Warning"), ("error", "Error")],
                        default="error",
                        max_length=16,
                    ),
                ),
                ("code", models.CharField(max_length=64)),
                ("message_template", models.CharField(blank=True, max_length=1024)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["created_at"],
                "indexes": [
                    models.Index(fields=["enabled"], name="rules_valid_enabled_5c2e81_idx"),
                ],
            },
        ),
    ]
