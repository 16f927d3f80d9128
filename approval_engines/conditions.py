"""
approval_engines.conditions -- Typed condition evaluation over entity data.

Responsibility:
    Evaluate a single ``QueryCondition`` against an entity-data mapping and
    fold a sequence of conditions left to right with each condition's own
    ``logical_operator``.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import approval_kernel/domain types and logging.

Invariants enforced:
    - Fail closed: unknown operators, malformed values and custom operators
      that raise all evaluate to False.  ``evaluate`` never raises.
    - Strict equality: booleans never equal numbers, strings never equal
      numbers, numbers compare numerically across int/float/Decimal.
    - Left fold: the first condition seeds the accumulator; its own
      ``logical_operator`` is never consulted.  An empty list is False.

Failure modes:
    - None raised.  A custom operator exception is logged as
      ``condition_operator_failed`` and the condition counts as False.

Usage:
    from approval_engines.conditions import ConditionEvaluator

    evaluator = ConditionEvaluator()
    evaluator.evaluate_all(rule.query_conditions, {"amount": 1500})
"""

from __future__ import annotations

import math
from collections.abc import Callable, Mapping, Sequence
from decimal import Decimal, InvalidOperation
from typing import Any

from approval_kernel.domain.approval import (
    ConditionOperator,
    LogicalOperator,
    QueryCondition,
)
from approval_kernel.logging_config import get_logger

logger = get_logger("engines.conditions")

# (field_present, field_value, condition_value) -> bool
OperatorFn = Callable[[bool, Any, Any], bool]

_MISSING = object()


# =========================================================================
# Field lookup
# =========================================================================


def resolve_field(data: Mapping[str, Any], field_path: str) -> tuple[bool, Any]:
    """Look up ``field_path``: exact key first, then dotted traversal.

    Returns ``(present, value)`` so that an explicit ``None`` can be told
    apart from an absent key.
    """
    if field_path in data:
        return True, data[field_path]
    if "." not in field_path:
        return False, None
    current: Any = data
    for part in field_path.split("."):
        if not isinstance(current, Mapping):
            return False, None
        current = current.get(part, _MISSING)
        if current is _MISSING:
            return False, None
    return True, current


# =========================================================================
# Value helpers
# =========================================================================


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def strict_equals(left: Any, right: Any) -> bool:
    """Equality without cross-type coercion (numbers excepted)."""
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left is right
    if _is_number(left) and _is_number(right):
        left_dec, right_dec = to_decimal(left), to_decimal(right)
        if left_dec is None or right_dec is None:
            return False
        return left_dec == right_dec
    if _is_number(left) or _is_number(right):
        return False
    return left == right


def to_decimal(value: Any) -> Decimal | None:
    """Coerce to a finite Decimal, or None when that is impossible."""
    if value is None:
        return None
    if isinstance(value, bool):
        return Decimal(int(value))
    try:
        if isinstance(value, float):
            if not math.isfinite(value):
                return None
            result = Decimal(str(value))
        elif isinstance(value, (int, Decimal)):
            result = Decimal(value)
        elif isinstance(value, str):
            result = Decimal(value.strip())
        else:
            return None
    except (InvalidOperation, ValueError):
        return None
    if not result.is_finite():
        return None
    return result


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _compare(present: bool, actual: Any, expected: Any, op: Callable[[Decimal, Decimal], bool]) -> bool:
    if not present:
        return False
    left, right = to_decimal(actual), to_decimal(expected)
    if left is None or right is None:
        return False
    return op(left, right)


# =========================================================================
# Built-in operators
# =========================================================================


def _op_eq(present: bool, actual: Any, expected: Any) -> bool:
    return present and strict_equals(actual, expected)


def _op_neq(present: bool, actual: Any, expected: Any) -> bool:
    return not _op_eq(present, actual, expected)


def _op_in(present: bool, actual: Any, expected: Any) -> bool:
    if not present or not isinstance(expected, (list, tuple)):
        return False
    return any(strict_equals(actual, candidate) for candidate in expected)


def _op_not_in(present: bool, actual: Any, expected: Any) -> bool:
    if not isinstance(expected, (list, tuple)):
        return False
    if not present:
        return True
    return not any(strict_equals(actual, candidate) for candidate in expected)


def _op_contains(present: bool, actual: Any, expected: Any) -> bool:
    if not present or actual is None or expected is None:
        return False
    return _stringify(expected).lower() in _stringify(actual).lower()


def _op_starts_with(present: bool, actual: Any, expected: Any) -> bool:
    if not present or actual is None or expected is None:
        return False
    return _stringify(actual).lower().startswith(_stringify(expected).lower())


def _op_exists(present: bool, actual: Any, expected: Any) -> bool:
    return present and actual is not None


def _op_between(present: bool, actual: Any, expected: Any) -> bool:
    if not present or not isinstance(expected, (list, tuple)) or len(expected) != 2:
        return False
    value, low, high = to_decimal(actual), to_decimal(expected[0]), to_decimal(expected[1])
    if value is None or low is None or high is None:
        return False
    return low <= value <= high


BUILTIN_OPERATORS: dict[str, OperatorFn] = {
    ConditionOperator.EQ.value: _op_eq,
    ConditionOperator.NEQ.value: _op_neq,
    ConditionOperator.IN.value: _op_in,
    ConditionOperator.NOT_IN.value: _op_not_in,
    ConditionOperator.GT.value: lambda p, a, e: _compare(p, a, e, lambda x, y: x > y),
    ConditionOperator.GTE.value: lambda p, a, e: _compare(p, a, e, lambda x, y: x >= y),
    ConditionOperator.LT.value: lambda p, a, e: _compare(p, a, e, lambda x, y: x < y),
    ConditionOperator.LTE.value: lambda p, a, e: _compare(p, a, e, lambda x, y: x <= y),
    ConditionOperator.CONTAINS.value: _op_contains,
    ConditionOperator.STARTS_WITH.value: _op_starts_with,
    ConditionOperator.EXISTS.value: _op_exists,
    ConditionOperator.BETWEEN.value: _op_between,
}


# =========================================================================
# Evaluator
# =========================================================================


class ConditionEvaluator:
    """Shared, stateless-by-default condition evaluator.

    Holds an operator registry seeded with the built-in operators.  Custom
    operators can be registered per evaluator (typically one per tenant).
    """

    def __init__(self, extra_operators: Mapping[str, OperatorFn] | None = None) -> None:
        self._operators: dict[str, OperatorFn] = dict(BUILTIN_OPERATORS)
        for name, fn in (extra_operators or {}).items():
            self.register_operator(name, fn)

    def register_operator(self, name: str, fn: OperatorFn) -> None:
        key = name.strip().upper()
        if not key:
            raise ValueError("operator name must not be empty")
        self._operators[key] = fn

    def supports(self, name: str) -> bool:
        return isinstance(name, str) and name.strip().upper() in self._operators

    def evaluate(self, condition: QueryCondition, data: Mapping[str, Any]) -> bool:
        """Evaluate one condition.  Never raises."""
        if not isinstance(condition.operator, str):
            return False
        key = condition.operator.strip().upper()
        fn = self._operators.get(key)
        if fn is None:
            logger.debug(
                "condition_unknown_operator",
                extra={"operator": condition.operator, "field": condition.field},
            )
            return False
        present, actual = resolve_field(data, condition.field)
        try:
            return bool(fn(present, actual, condition.value))
        except Exception as exc:  # custom operators are untrusted
            logger.warning(
                "condition_operator_failed",
                extra={
                    "operator": key,
                    "field": condition.field,
                    "error": repr(exc),
                },
            )
            return False

    def evaluate_all(self, conditions: Sequence[QueryCondition], data: Mapping[str, Any]) -> bool:
        """Left fold of ``conditions``; False for an empty sequence."""
        if not conditions:
            return False
        result = self.evaluate(conditions[0], data)
        for condition in conditions[1:]:
            current = self.evaluate(condition, data)
            if condition.logical_operator is LogicalOperator.OR:
                result = result or current
            else:
                result = result and current
        return result


_default_evaluator = ConditionEvaluator()


def evaluate_condition(condition: QueryCondition, data: Mapping[str, Any]) -> bool:
    """Evaluate with the built-in operator set."""
    return _default_evaluator.evaluate(condition, data)


def evaluate_conditions(conditions: Sequence[QueryCondition], data: Mapping[str, Any]) -> bool:
    """Fold with the built-in operator set."""
    return _default_evaluator.evaluate_all(conditions, data)
