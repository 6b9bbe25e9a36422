"""
Load validation rules from the externalized YAML rule set.

The YAML file lets non-developers maintain the default rules without
touching Python code. Every entry is validated with the model's
``full_clean()`` before anything is written.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Tuple

import yaml
from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import transaction

from .models import ValidationRule

logger = logging.getLogger(__name__)

RULE_FIELDS = (
    "enabled",
    "scope",
    "field_name",
    "rule_type",
    "parameters",
    "severity",
    "message_template",
)


class RuleConfigError(Exception):
    """The rule configuration file is missing or invalid."""


def get_rules_config_path() -> Path:
    configured = getattr(settings, "PAYMENTS_RULES_CONFIG_PATH", None)
    if configured:
        return Path(configured)
    return Path(__file__).resolve().parent / "config" / "default_rules.yml"


def read_rules_config(path: Path) -> List[Dict[str, Any]]:
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        raise RuleConfigError(f"Rule configuration file not found: {path}")
    except yaml.YAMLError as exc:
        raise RuleConfigError(f"Rule configuration file is not valid YAML: {exc}")

    entries = data.get("rules") if isinstance(data, dict) else None
    if not isinstance(entries, list):
        raise RuleConfigError("Rule configuration must contain a 'rules' list.")
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict) or not entry.get("code"):
            raise RuleConfigError(f"Rule #{index + 1} must be a mapping with a 'code'.")
    return entries


def _build_rule(entry: Dict[str, Any]) -> ValidationRule:
    field_name = entry.get("field_name") or None
    rule = (
        ValidationRule.objects.filter(code=entry["code"], field_name=field_name).first()
        or ValidationRule(code=entry["code"], field_name=field_name)
    )
    rule.enabled = bool(entry.get("enabled", True))
    rule.scope = entry.get("scope") or (
        ValidationRule.Scope.FIELD if field_name else ValidationRule.Scope.ROW
    )
    rule.rule_type = entry.get("rule_type", "")
    rule.parameters = entry.get("parameters") or {}
    rule.severity = entry.get("severity") or ValidationRule.Severity.ERROR
    rule.message_template = entry.get("message_template") or ""
    return rule


def load_rules_from_yaml(path: Path | None = None, *, replace: bool = False) -> Tuple[int, int]:
    """Upsert rules by ``code`` + ``field_name``.

    With ``replace=True`` every existing rule is deleted first. Returns
    ``(created, updated)``. Nothing is written if any entry is invalid.
    """
    path = path or get_rules_config_path()
    entries = read_rules_config(path)

    created = updated = 0
    with transaction.atomic():
        if replace:
            deleted, _ = ValidationRule.objects.all().delete()
            logger.info("Deleted %d existing validation rules before reload", deleted)

        for index, entry in enumerate(entries):
            rule = _build_rule(entry)
            is_new = rule._state.adding
            try:
                rule.full_clean()
            except ValidationError as exc:
                raise RuleConfigError(
                    f"Rule #{index + 1} ({entry['code']}) is invalid: {exc.message_dict}"
                )
            rule.save()
            if is_new:
                created += 1
            else:
                updated += 1

    logger.info(
        "Loaded validation rules from %s",
        path,
        extra={"event": "rules_loaded", "created": created, "updated": updated},
    )
    return created, updated
