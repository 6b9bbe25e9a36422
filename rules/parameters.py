"""
Typed parameter variants for validation rules.

Rule parameters are stored as an opaque JSON object. They are parsed once
per rule load into one of the frozen dataclasses below, so evaluation never
re-reads JSON per row. :func:`parse_parameters` is also the grammar that
``ValidationRule.clean()`` enforces when rules are created or edited, which
keeps the admin, the YAML loader and the workers in agreement.

Key lookup is case-insensitive and unknown keys are ignored.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, FrozenSet, List, Optional, Pattern, Tuple, Union


class RuleParameterError(ValueError):
    """Raised when a rule's parameters do not satisfy its rule type."""


# ---------------------------------------------------------------------------
# Date format translation
# ---------------------------------------------------------------------------

# Runs of one of these letters are format tokens, not literals.
_DATE_LETTERS = frozenset("yMdHhmsfFtzKg")

_DATE_TOKENS: Dict[str, Tuple[str, str]] = {
    "yyyy": (r"\d{4}", "%Y"),
    "fff": (r"\d{3}", "%f"),
    "yy": (r"\d{2}", "%y"),
    "MM": (r"\d{2}", "%m"),
    "dd": (r"\d{2}", "%d"),
    "HH": (r"\d{2}", "%H"),
    "mm": (r"\d{2}", "%M"),
    "ss": (r"\d{2}", "%S"),
    "M": (r"\d{1,2}", "%m"),
    "d": (r"\d{1,2}", "%d"),
    "H": (r"\d{1,2}", "%H"),
}


@dataclass(frozen=True)
class DateFormat:
    """An exact date pattern.

    Accepts either strptime directives (``%Y-%m-%d``) or the custom tokens
    commonly used by operators (``yyyy-MM-dd``, ``dd/MM/yyyy HH:mm:ss``).
    Custom tokens are checked for digit width as well as calendar validity.
    Any other run of a pattern letter (``MMM``, ``hh``, ``tt``) is rejected
    rather than treated as a literal.
    """

    source: str
    strptime_format: str
    shape: Optional[Pattern[str]]

    @classmethod
    def compile(cls, source: str) -> "DateFormat":
        if "%" in source:
            return cls(source=source, strptime_format=source, shape=None)

        regex_parts: List[str] = []
        strptime_parts: List[str] = []
        i = 0
        while i < len(source):
            char = source[i]
            if char == "'":
                end = source.find("'", i + 1)
                if end == -1:
                    raise RuleParameterError(f"Unterminated literal in date format {source!r}")
                literal = source[i + 1:end]
                regex_parts.append(re.escape(literal))
                strptime_parts.append(literal.replace("%", "%%"))
                i = end + 1
                continue
            if char in _DATE_LETTERS:
                end = i
                while end < len(source) and source[end] == char:
                    end += 1
                token = source[i:end]
                if token not in _DATE_TOKENS:
                    raise RuleParameterError(
                        f"Unsupported date format token {token!r} in {source!r}"
                    )
                pattern, directive = _DATE_TOKENS[token]
                regex_parts.append(pattern)
                strptime_parts.append(directive)
                i = end
                continue
            regex_parts.append(re.escape(char))
            strptime_parts.append(char)
            i += 1

        return cls(
            source=source,
            strptime_format="".join(strptime_parts),
            shape=re.compile("".join(regex_parts)),
        )

    def matches(self, value: str) -> bool:
        if self.shape is not None and not self.shape.fullmatch(value):
            return False
        try:
            datetime.strptime(value, self.strptime_format)
        except ValueError:
            return False
        return True


# ---------------------------------------------------------------------------
# Parameter variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RequiredParams:
    pass


@dataclass(frozen=True)
class RegexParams:
    pattern: str
    ignore_case: bool
    compiled: Pattern[str]


@dataclass(frozen=True)
class AllowedValuesParams:
    values: FrozenSet[str]
    ignore_case: bool


@dataclass(frozen=True)
class DecimalRangeParams:
    min: Optional[Decimal]
    max: Optional[Decimal]


@dataclass(frozen=True)
class DateFormatParams:
    format: str
    date_format: DateFormat


RuleParams = Union[
    RequiredParams,
    RegexParams,
    AllowedValuesParams,
    DecimalRangeParams,
    DateFormatParams,
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _as_mapping(raw: Any) -> Dict[str, Any]:
    if raw is None or raw == "":
        return {}
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as exc:
            raise RuleParameterError("Parameters must be valid JSON") from exc
    if not isinstance(raw, dict):
        raise RuleParameterError("Parameters must be a JSON object")
    return {str(key).lower(): value for key, value in raw.items()}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _flag(params: Dict[str, Any], key: str) -> bool:
    return params.get(key.lower()) is True


def _parse_regex(params: Dict[str, Any]) -> RegexParams:
    pattern = params.get("pattern")
    if not isinstance(pattern, str) or not pattern.strip():
        raise RuleParameterError("Regex rule requires 'pattern' string parameter")
    ignore_case = _flag(params, "ignoreCase")
    try:
        compiled = re.compile(pattern, re.IGNORECASE if ignore_case else 0)
    except re.error as exc:
        raise RuleParameterError(f"Invalid regex pattern: {exc}") from exc
    return RegexParams(pattern=pattern, ignore_case=ignore_case, compiled=compiled)


def _parse_allowed_values(params: Dict[str, Any]) -> AllowedValuesParams:
    values = params.get("values")
    if not isinstance(values, list):
        raise RuleParameterError("AllowedValues rule requires 'values' array parameter")
    if not values:
        raise RuleParameterError("AllowedValues 'values' array cannot be empty")
    ignore_case = _flag(params, "ignoreCase")
    allowed = set()
    for value in values:
        if value is None or isinstance(value, (dict, list)):
            continue
        text = str(value).strip()
        if not text:
            continue
        allowed.add(text.upper() if ignore_case else text)
    return AllowedValuesParams(values=frozenset(allowed), ignore_case=ignore_case)


def _parse_decimal_range(params: Dict[str, Any]) -> DecimalRangeParams:
    bounds: Dict[str, Optional[Decimal]] = {"min": None, "max": None}
    for key in bounds:
        value = params.get(key)
        if value is None:
            continue
        if not _is_number(value):
            raise RuleParameterError(f"DecimalRange '{key}' must be a number")
        try:
            bounds[key] = Decimal(str(value))
        except InvalidOperation as exc:
            raise RuleParameterError(f"DecimalRange '{key}' must be a number") from exc
    if bounds["min"] is None and bounds["max"] is None:
        raise RuleParameterError(
            "DecimalRange rule requires at least 'min' or 'max' number parameter"
        )
    return DecimalRangeParams(min=bounds["min"], max=bounds["max"])


def _parse_date_format(params: Dict[str, Any]) -> DateFormatParams:
    fmt = params.get("format")
    if not isinstance(fmt, str) or not fmt.strip():
        raise RuleParameterError("DateFormat rule requires 'format' string parameter")
    return DateFormatParams(format=fmt, date_format=DateFormat.compile(fmt))


_PARSERS = {
    "required": lambda params: RequiredParams(),
    "regex": _parse_regex,
    "allowed_values": _parse_allowed_values,
    "decimal_range": _parse_decimal_range,
    "date_format": _parse_date_format,
}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def parse_parameters(rule_type: str, raw: Any) -> RuleParams:
    """Parse ``raw`` (a dict or JSON text) into the variant for ``rule_type``."""
    try:
        parser = _PARSERS[rule_type]
    except KeyError:
        raise RuleParameterError(f"Unknown rule type {rule_type!r}")
    return parser(_as_mapping(raw))
