import uuid

from django.core.exceptions import ValidationError
from django.db import models

from .parameters import RuleParameterError, parse_parameters


class ValidationRule(models.Model):
    """A configured, toggleable check applied to every parsed upload row."""

    class Scope(models.TextChoices):
        ROW = "row", "Row"
        FIELD = "field", "Field"

    class RuleType(models.TextChoices):
        REQUIRED = "required", "Required"
        REGEX = "regex", "Regex"
        ALLOWED_VALUES = "allowed_values", "Allowed values"
        DECIMAL_RANGE = "decimal_range", "Decimal range"
        DATE_FORMAT = "date_format", "Date format"

    class Severity(models.TextChoices):
        WARNING = "warning", "Warning"
        ERROR = "error", "Error"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    enabled = models.BooleanField(default=True)
    scope = models.CharField(max_length=16, choices=Scope.choices, default=Scope.FIELD)
    field_name = models.CharField(max_length=128, null=True, blank=True)
    rule_type = models.CharField(max_length=32, choices=RuleType.choices)
    parameters = models.JSONField(default=dict, blank=True)
    severity = models.CharField(
        max_length=16,
        choices=Severity.choices,
        default=Severity.ERROR,
    )
    code = models.CharField(max_length=64)
    # "{FieldName}" is replaced with the field being validated.
    message_template = models.CharField(max_length=1024, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["created_at"]
        indexes = [
            models.Index(fields=["enabled"], name="rules_valid_enabled_5c2e81_idx"),
        ]

    def __str__(self) -> str:
        target = self.field_name or "row"
        return f"{self.code} ({self.rule_type} on {target})"

    def clean(self):
        super().clean()
        errors = {}
        if self.scope == self.Scope.FIELD and not (self.field_name or "").strip():
            errors["field_name"] = "Field name is required when scope is 'field'."
        if self.rule_type in self.RuleType.values:
            try:
                parse_parameters(self.rule_type, self.parameters)
            except RuleParameterError as exc:
                errors["parameters"] = str(exc)
        if errors:
            raise ValidationError(errors)
