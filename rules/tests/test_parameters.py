from __future__ import annotations

from decimal import Decimal

from django.core.exceptions import ValidationError
from django.test import SimpleTestCase

from rules.models import ValidationRule
from rules.parameters import (
    AllowedValuesParams,
    DateFormat,
    DateFormatParams,
    DecimalRangeParams,
    RegexParams,
    RequiredParams,
    RuleParameterError,
    parse_parameters,
)


class ParseParametersTests(SimpleTestCase):
    def test_required_ignores_parameters(self):
        self.assertIsInstance(parse_parameters("required", {"anything": 1}), RequiredParams)
        self.assertIsInstance(parse_parameters("required", None), RequiredParams)

    def test_accepts_json_text(self):
        params = parse_parameters("regex", '{"pattern": "^[0-9]+$"}')
        self.assertIsInstance(params, RegexParams)
        self.assertFalse(params.ignore_case)

    def test_invalid_json_text_is_rejected(self):
        with self.assertRaisesMessage(RuleParameterError, "valid JSON"):
            parse_parameters("regex", "{not json")

    def test_non_object_is_rejected(self):
        with self.assertRaises(RuleParameterError):
            parse_parameters("regex", ["^a$"])

    def test_keys_are_case_insensitive(self):
        params = parse_parameters("regex", {"Pattern": "^a$", "IGNORECASE": True})
        self.assertTrue(params.ignore_case)
        self.assertTrue(params.compiled.fullmatch("A"))

    def test_regex_requires_compilable_pattern(self):
        with self.assertRaisesMessage(RuleParameterError, "'pattern'"):
            parse_parameters("regex", {})
        with self.assertRaisesMessage(RuleParameterError, "Invalid regex"):
            parse_parameters("regex", {"pattern": "(["})

    def test_allowed_values_trims_and_drops_blanks(self):
        params = parse_parameters(
            "allowed_values",
            {"values": [" eur ", "usd", "", None], "ignoreCase": True},
        )
        self.assertIsInstance(params, AllowedValuesParams)
        self.assertEqual(params.values, frozenset({"EUR", "USD"}))

    def test_allowed_values_requires_non_empty_list(self):
        with self.assertRaisesMessage(RuleParameterError, "'values' array parameter"):
            parse_parameters("allowed_values", {"values": "EUR"})
        with self.assertRaisesMessage(RuleParameterError, "cannot be empty"):
            parse_parameters("allowed_values", {"values": []})

    def test_decimal_range_needs_a_numeric_bound(self):
        params = parse_parameters("decimal_range", {"min": 0.01})
        self.assertIsInstance(params, DecimalRangeParams)
        self.assertEqual(params.min, Decimal("0.01"))
        self.assertIsNone(params.max)

        with self.assertRaises(RuleParameterError):
            parse_parameters("decimal_range", {})
        with self.assertRaises(RuleParameterError):
            parse_parameters("decimal_range", {"max": "100"})
        with self.assertRaises(RuleParameterError):
            parse_parameters("decimal_range", {"min": True})

    def test_date_format_requires_format_string(self):
        params = parse_parameters("date_format", {"format": "dd.MM.yyyy"})
        self.assertIsInstance(params, DateFormatParams)
        with self.assertRaises(RuleParameterError):
            parse_parameters("date_format", {"format": 12})

    def test_unknown_rule_type(self):
        with self.assertRaises(RuleParameterError):
            parse_parameters("checksum", {})


class DateFormatTests(SimpleTestCase):
    def test_custom_tokens_match_exactly(self):
        fmt = DateFormat.compile("dd.MM.yyyy")
        self.assertTrue(fmt.matches("31.12.2024"))
        self.assertFalse(fmt.matches("1.12.2024"))
        self.assertFalse(fmt.matches("2024-12-31"))
        self.assertFalse(fmt.matches("31.02.2024"))

    def test_single_letter_tokens_allow_one_digit(self):
        fmt = DateFormat.compile("d/M/yyyy")
        self.assertTrue(fmt.matches("1/2/2024"))
        self.assertTrue(fmt.matches("01/02/2024"))

    def test_time_and_quoted_literals(self):
        fmt = DateFormat.compile("yyyy-MM-dd'T'HH:mm:ss.fff")
        self.assertTrue(fmt.matches("2024-05-06T07:08:09.123"))
        self.assertFalse(fmt.matches("2024-05-06T07:08:09.12"))

    def test_strptime_directives_pass_through(self):
        fmt = DateFormat.compile("%Y-%m-%d")
        self.assertTrue(fmt.matches("2024-05-06"))
        self.assertFalse(fmt.matches("06.05.2024"))

    def test_unsupported_tokens_are_rejected(self):
        for source in ("d MMM yyyy", "dd/MM/yyyy hh:mm tt", "yyy-MM-dd", "dd.MM.yyyy zzz"):
            with self.assertRaisesMessage(RuleParameterError, "Unsupported date format token"):
                DateFormat.compile(source)

    def test_quoted_letters_are_literals(self):
        fmt = DateFormat.compile("dd 'of' MM yyyy")
        self.assertTrue(fmt.matches("06 of 05 2024"))

    def test_unsupported_token_fails_parameter_parsing(self):
        with self.assertRaises(RuleParameterError):
            parse_parameters("date_format", {"format": "dd/MM/yyyy hh:mm tt"})


class ValidationRuleCleanTests(SimpleTestCase):
    def test_field_scope_requires_field_name(self):
        rule = ValidationRule(
            scope=ValidationRule.Scope.FIELD,
            rule_type=ValidationRule.RuleType.REQUIRED,
            code="X",
        )
        with self.assertRaises(ValidationError) as ctx:
            rule.clean()
        self.assertIn("field_name", ctx.exception.message_dict)

    def test_bad_parameters_are_reported_on_parameters(self):
        rule = ValidationRule(
            scope=ValidationRule.Scope.FIELD,
            field_name="Amount",
            rule_type=ValidationRule.RuleType.DECIMAL_RANGE,
            parameters={},
            code="AMOUNT_MIN",
        )
        with self.assertRaises(ValidationError) as ctx:
            rule.clean()
        self.assertIn("parameters", ctx.exception.message_dict)

    def test_unsupported_date_token_is_reported_on_parameters(self):
        rule = ValidationRule(
            scope=ValidationRule.Scope.FIELD,
            field_name="InvoiceDate",
            rule_type=ValidationRule.RuleType.DATE_FORMAT,
            parameters={"format": "d MMM yyyy"},
            code="INVOICE_DATE_FORMAT",
        )
        with self.assertRaises(ValidationError) as ctx:
            rule.clean()
        self.assertIn("MMM", ctx.exception.message_dict["parameters"][0])

    def test_valid_rule_passes(self):
        rule = ValidationRule(
            scope=ValidationRule.Scope.FIELD,
            field_name="Amount",
            rule_type=ValidationRule.RuleType.DECIMAL_RANGE,
            parameters={"min": 0.01},
            code="AMOUNT_MIN",
        )
        rule.clean()
