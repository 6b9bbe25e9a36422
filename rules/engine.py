"""
Rule evaluation for parsed upload rows.

The worker loads enabled rules once per chunk with :func:`load_enabled_rules`
and then calls :func:`validate_fields` for every row. Evaluation itself is
pure: it never touches the database and never raises for bad data. Rule
violations are returned as :class:`RuleFailure` values.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, List, Mapping, Optional
from uuid import UUID

from .models import ValidationRule
from .parameters import (
    AllowedValuesParams,
    DateFormatParams,
    DecimalRangeParams,
    RegexParams,
    RequiredParams,
    RuleParameterError,
    RuleParams,
    parse_parameters,
)

logger = logging.getLogger(__name__)

# Fields whose values commonly arrive with grouping spaces ("GB29 NWBK ...").
SPACE_INSENSITIVE_MARKERS = ("iban", "swift", "unique", "accountnumber")

FIELD_NAME_TOKEN = re.compile(re.escape("{FieldName}"), re.IGNORECASE)

# Optional sign, digits with optional thousands separators, optional
# fraction. At least one digit somewhere; no exponent.
_DECIMAL_RE = re.compile(r"[+-]?(?=[\d,.]*\d)(?:\d[\d,]*)?(?:\.\d*)?")

Scope = ValidationRule.Scope
Severity = ValidationRule.Severity


@dataclass(frozen=True)
class CompiledRule:
    id: Optional[UUID]
    scope: str
    field_name: Optional[str]
    rule_type: str
    params: RuleParams
    severity: str
    code: str
    message_template: str = ""
    enabled: bool = True


@dataclass(frozen=True)
class RuleFailure:
    rule_id: Optional[UUID]
    field_name: Optional[str]
    code: str
    message: str
    severity: str

    @property
    def is_error(self) -> bool:
        return self.severity == Severity.ERROR


@dataclass
class RowOutcome:
    failures: List[RuleFailure] = field(default_factory=list)

    @property
    def error_count(self) -> int:
        return sum(1 for failure in self.failures if failure.is_error)

    @property
    def is_valid(self) -> bool:
        return self.error_count == 0

    @property
    def validation_status(self) -> str:
        return "valid" if self.is_valid else "invalid"


# ---------------------------------------------------------------------------
# Rule loading
# ---------------------------------------------------------------------------


def compile_rule(rule: ValidationRule) -> CompiledRule:
    """Raises RuleParameterError if the stored parameters no longer parse."""
    return CompiledRule(
        id=rule.id,
        scope=rule.scope,
        field_name=rule.field_name,
        rule_type=rule.rule_type,
        params=parse_parameters(rule.rule_type, rule.parameters),
        severity=rule.severity,
        code=rule.code,
        message_template=rule.message_template or "",
        enabled=rule.enabled,
    )


def compile_rules(rules: Iterable[ValidationRule]) -> List[CompiledRule]:
    compiled: List[CompiledRule] = []
    for rule in rules:
        if not rule.enabled:
            continue
        try:
            compiled.append(compile_rule(rule))
        except RuleParameterError as exc:
            logger.warning(
                "Skipping validation rule %s (%s): invalid parameters: %s",
                rule.id,
                rule.code,
                exc,
            )
    return compiled


def load_enabled_rules() -> List[CompiledRule]:
    rules = ValidationRule.objects.filter(enabled=True).order_by("created_at", "id")
    return compile_rules(rules)


# ---------------------------------------------------------------------------
# Evaluation helpers
# ---------------------------------------------------------------------------


def field_key(name: str) -> str:
    return name.strip().lstrip("\ufeff").strip().lower()


def normalize_value(field_name: Optional[str], raw_value: Optional[str]) -> str:
    if raw_value is None:
        return ""
    value = raw_value.strip()
    if not field_name or not field_name.strip():
        return value
    lowered = field_name.lower()
    if any(marker in lowered for marker in SPACE_INSENSITIVE_MARKERS):
        value = value.replace(" ", "")
    return value


def resolve_message(rule: CompiledRule, field_name: Optional[str], fallback: str) -> str:
    if rule.message_template and rule.message_template.strip():
        return FIELD_NAME_TOKEN.sub(lambda _m: field_name or "", rule.message_template)
    if not field_name or not field_name.strip():
        return fallback
    return f"{field_name} {fallback}"


def parse_decimal(value: str) -> Optional[Decimal]:
    if not _DECIMAL_RE.fullmatch(value):
        return None
    try:
        return Decimal(value.replace(",", ""))
    except InvalidOperation:
        return None


def _fail(rule: CompiledRule, field_name: Optional[str], fallback: str) -> RuleFailure:
    return RuleFailure(
        rule_id=rule.id,
        field_name=field_name,
        code=rule.code,
        message=resolve_message(rule, field_name, fallback),
        severity=rule.severity,
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def evaluate_rule(
    rule: CompiledRule,
    field_name: Optional[str],
    raw_value: Optional[str],
) -> List[RuleFailure]:
    value = normalize_value(field_name, raw_value)
    params = rule.params

    if isinstance(params, RequiredParams):
        if not value:
            return [_fail(rule, field_name, "is required")]
        return []

    # Every other rule type treats an empty value as "nothing to check".
    if not value:
        return []

    if isinstance(params, RegexParams):
        if not params.compiled.fullmatch(value):
            return [_fail(rule, field_name, "has invalid format")]
        return []

    if isinstance(params, AllowedValuesParams):
        candidate = value.upper() if params.ignore_case else value
        if candidate not in params.values:
            return [_fail(rule, field_name, "is not an allowed value")]
        return []

    if isinstance(params, DecimalRangeParams):
        amount = parse_decimal(value)
        if amount is None:
            return [_fail(rule, field_name, "is not a valid decimal")]
        failures = []
        if params.min is not None and amount < params.min:
            failures.append(_fail(rule, field_name, f"must be >= {params.min}"))
        if params.max is not None and amount > params.max:
            failures.append(_fail(rule, field_name, f"must be <= {params.max}"))
        return failures

    if isinstance(params, DateFormatParams):
        if not params.date_format.matches(value):
            return [_fail(rule, field_name, f"must match format {params.format}")]
        return []

    raise TypeError(f"Unsupported rule parameters {type(params).__name__}")


def validate_fields(rules: Iterable[CompiledRule], fields: Mapping[str, str]) -> RowOutcome:
    """Apply every enabled rule to one row's field map.

    Field-scoped rules look their value up by header name, ignoring case and
    surrounding whitespace; when several headers fold to the same key the
    first one wins. Row-scoped rules are evaluated without a field lookup.
    """
    lookup: Dict[str, str] = {}
    for name, value in fields.items():
        lookup.setdefault(field_key(name), value)

    outcome = RowOutcome()
    for rule in rules:
        if not rule.enabled:
            continue
        field_name = rule.field_name
        raw_value: Optional[str] = None
        if rule.scope == Scope.FIELD:
            if not field_name or not field_name.strip():
                continue
            raw_value = lookup.get(field_key(field_name))
        outcome.failures.extend(evaluate_rule(rule, field_name, raw_value))
    return outcome
