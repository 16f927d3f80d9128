"""
Tests for the condition evaluator.

Tests cover:
- resolve_field: exact keys, dotted paths, explicit None vs. missing
- Built-in operators: strict equality, numeric comparison, list membership,
  case-insensitive text matching, BETWEEN bounds
- Fail-closed behaviour: unknown and failing operators
- Left-fold combination of condition lists
"""

from decimal import Decimal

import pytest

from approval_engines.conditions import (
    ConditionEvaluator,
    evaluate_condition,
    evaluate_conditions,
    resolve_field,
    strict_equals,
    to_decimal,
)
from approval_kernel.domain.approval import LogicalOperator, QueryCondition


def cond(field, operator, value=None, logical=LogicalOperator.AND) -> QueryCondition:
    return QueryCondition(field=field, operator=operator, value=value, logical_operator=logical)


# =========================================================================
# 1. Field resolution
# =========================================================================


class TestResolveField:

    def test_exact_key_wins_over_dotted_path(self):
        data = {"a.b": 1, "a": {"b": 2}}
        assert resolve_field(data, "a.b") == (True, 1)

    def test_dotted_path_traverses_nested_mappings(self):
        data = {"customer": {"address": {"country": "DE"}}}
        assert resolve_field(data, "customer.address.country") == (True, "DE")

    def test_missing_segment_is_absent(self):
        assert resolve_field({"customer": {}}, "customer.tier") == (False, None)

    def test_traversal_through_scalar_is_absent(self):
        assert resolve_field({"customer": "acme"}, "customer.tier") == (False, None)

    def test_explicit_none_is_present(self):
        assert resolve_field({"owner": None}, "owner") == (True, None)


# =========================================================================
# 2. Value helpers
# =========================================================================


class TestValueHelpers:

    def test_numbers_compare_across_types(self):
        assert strict_equals(1, 1.0)
        assert strict_equals(Decimal("2.50"), 2.5)

    def test_booleans_never_equal_numbers(self):
        assert not strict_equals(True, 1)
        assert not strict_equals(0, False)

    def test_strings_never_equal_numbers(self):
        assert not strict_equals("5", 5)

    @pytest.mark.parametrize("raw,expected", [
        ("12.5", Decimal("12.5")),
        (" 3 ", Decimal("3")),
        (7, Decimal("7")),
        (True, Decimal("1")),
        ("abc", None),
        (float("nan"), None),
        (float("inf"), None),
        (None, None),
        ([1], None),
    ])
    def test_to_decimal(self, raw, expected):
        assert to_decimal(raw) == expected


# =========================================================================
# 3. Built-in operators
# =========================================================================


class TestBuiltinOperators:

    def test_eq_is_strict(self):
        assert evaluate_condition(cond("status", "EQ", "open"), {"status": "open"})
        assert not evaluate_condition(cond("flag", "EQ", 1), {"flag": True})

    def test_eq_missing_field_is_false(self):
        assert not evaluate_condition(cond("status", "EQ", "open"), {})

    def test_neq_missing_field_is_true(self):
        assert evaluate_condition(cond("status", "NEQ", "open"), {})

    def test_operator_name_is_case_insensitive(self):
        assert evaluate_condition(cond("amount", "gte", 100), {"amount": 100})

    @pytest.mark.parametrize("operator,value,expected", [
        ("GT", 1000, True),
        ("GT", 1500, False),
        ("GTE", 1500, True),
        ("LT", 2000, True),
        ("LTE", 1499.99, False),
    ])
    def test_numeric_comparisons(self, operator, value, expected):
        assert evaluate_condition(cond("amount", operator, value), {"amount": 1500}) is expected

    def test_numeric_comparison_parses_strings(self):
        assert evaluate_condition(cond("amount", "GT", "10"), {"amount": "10.5"})

    def test_numeric_comparison_with_garbage_is_false(self):
        assert not evaluate_condition(cond("amount", "GT", 10), {"amount": "lots"})

    def test_in_and_not_in(self):
        data = {"priority": "high"}
        assert evaluate_condition(cond("priority", "IN", ["high", "urgent"]), data)
        assert not evaluate_condition(cond("priority", "NOT_IN", ["high", "urgent"]), data)

    def test_in_requires_list_value(self):
        assert not evaluate_condition(cond("priority", "IN", "high"), {"priority": "high"})

    def test_not_in_missing_field_is_true(self):
        assert evaluate_condition(cond("priority", "NOT_IN", ["low"]), {})

    def test_contains_is_case_insensitive_substring(self):
        assert evaluate_condition(cond("title", "CONTAINS", "SERVER"), {"title": "Replace server rack"})

    def test_starts_with(self):
        assert evaluate_condition(cond("code", "STARTS_WITH", "po-"), {"code": "PO-1234"})
        assert not evaluate_condition(cond("code", "STARTS_WITH", "1234"), {"code": "PO-1234"})

    def test_exists(self):
        assert evaluate_condition(cond("owner", "EXISTS"), {"owner": "u1"})
        assert not evaluate_condition(cond("owner", "EXISTS"), {"owner": None})
        assert not evaluate_condition(cond("owner", "EXISTS"), {})

    def test_between_is_inclusive(self):
        assert evaluate_condition(cond("amount", "BETWEEN", [100, 200]), {"amount": 100})
        assert evaluate_condition(cond("amount", "BETWEEN", [100, 200]), {"amount": 200})
        assert not evaluate_condition(cond("amount", "BETWEEN", [100, 200]), {"amount": 200.01})

    def test_between_with_malformed_bounds_is_false(self):
        assert not evaluate_condition(cond("amount", "BETWEEN", [100]), {"amount": 150})


# =========================================================================
# 4. Fail-closed behaviour and custom operators
# =========================================================================


class TestFailClosed:

    def test_unknown_operator_is_false(self):
        assert not evaluate_condition(cond("amount", "REGEX", ".*"), {"amount": 1})

    def test_custom_operator_is_used(self):
        evaluator = ConditionEvaluator({"is_even": lambda present, actual, _: present and actual % 2 == 0})
        assert evaluator.supports("IS_EVEN")
        assert evaluator.evaluate(cond("n", "IS_EVEN"), {"n": 4})

    def test_failing_custom_operator_is_false_and_logged(self, captured_logs):
        evaluator = ConditionEvaluator()
        evaluator.register_operator("boom", lambda *_: 1 / 0)

        assert evaluator.evaluate(cond("n", "BOOM"), {"n": 4}) is False
        assert any(r["message"] == "condition_operator_failed" for r in captured_logs())

    def test_register_empty_name_rejected(self):
        with pytest.raises(ValueError):
            ConditionEvaluator().register_operator("  ", lambda *_: True)


# =========================================================================
# 5. Left fold
# =========================================================================


class TestLeftFold:

    def test_empty_list_is_false(self):
        assert evaluate_conditions((), {"amount": 1}) is False

    def test_first_condition_logical_operator_is_ignored(self):
        conditions = (cond("amount", "GT", 100, LogicalOperator.OR),)
        assert not evaluate_conditions(conditions, {"amount": 50})

    def test_or_then_and_folds_left_to_right(self):
        # (a OR b) AND c
        conditions = (
            cond("a", "EQ", 1),
            cond("b", "EQ", 1, LogicalOperator.OR),
            cond("c", "EQ", 1, LogicalOperator.AND),
        )
        assert evaluate_conditions(conditions, {"a": 0, "b": 1, "c": 1})
        assert not evaluate_conditions(conditions, {"a": 1, "b": 1, "c": 0})

    def test_and_then_or_folds_left_to_right(self):
        # (a AND b) OR c
        conditions = (
            cond("a", "EQ", 1),
            cond("b", "EQ", 1),
            cond("c", "EQ", 1, LogicalOperator.OR),
        )
        assert evaluate_conditions(conditions, {"a": 0, "b": 0, "c": 1})
