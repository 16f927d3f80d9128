"""
Rule validator (``approval_config.validator``).

Responsibility
--------------
Field-level validation of an ``ApprovalRule`` before it is stored, whether
it comes from the administrative RuleService or from YAML seeding.

Architecture position
---------------------
**Config layer** -- administrative validation.  Uses the engine's
``ConditionEvaluator`` registry to decide which operators are known.

Invariants enforced
-------------------
* At least one query condition and one step; every step has approvers.
* ``sla_hours > 0`` and ``priority`` in 1..999.
* QUORUM bounds: ``0 < quorum_count <= len(approvers)``.
* Operator arity: IN/NOT_IN take a list, BETWEEN a two-element list,
  GT/GTE/LT/LTE a numeric value.
* Escalation levels have non-negative, non-decreasing ``after_hours``.

Failure modes
-------------
* ``validate_rule`` never raises; it returns ``FieldError`` records.
* ``ensure_valid_rule`` raises ``ValidationError`` carrying all of them.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal

from approval_engines.conditions import ConditionEvaluator, to_decimal
from approval_kernel.domain.approval import (
    ApprovalRule,
    ConditionOperator,
    DecisionMode,
    QueryCondition,
)
from approval_kernel.exceptions import FieldError, ValidationError

MIN_PRIORITY = 1
MAX_PRIORITY = 999
MAX_NAME_LENGTH = 200

_LIST_OPERATORS = {ConditionOperator.IN.value, ConditionOperator.NOT_IN.value}
_NUMERIC_OPERATORS = {
    ConditionOperator.GT.value,
    ConditionOperator.GTE.value,
    ConditionOperator.LT.value,
    ConditionOperator.LTE.value,
}

_default_evaluator = ConditionEvaluator()


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def validate_conditions(
    conditions: Sequence[QueryCondition],
    path: str,
    evaluator: ConditionEvaluator | None = None,
) -> list[FieldError]:
    evaluator = evaluator or _default_evaluator
    errors: list[FieldError] = []
    for i, condition in enumerate(conditions):
        where = f"{path}[{i}]"
        if not condition.field or not condition.field.strip():
            errors.append(FieldError(f"{where}.field", "must not be empty"))
        if not evaluator.supports(condition.operator):
            errors.append(FieldError(f"{where}.operator", f"unknown operator {condition.operator!r}"))
            continue
        op = condition.operator.strip().upper()
        if op in _LIST_OPERATORS and not isinstance(condition.value, (list, tuple)):
            errors.append(FieldError(f"{where}.value", f"{op} requires a list value"))
        elif op == ConditionOperator.BETWEEN.value:
            value = condition.value
            if not isinstance(value, (list, tuple)) or len(value) != 2:
                errors.append(FieldError(f"{where}.value", "BETWEEN requires a two-element list"))
            elif to_decimal(value[0]) is None or to_decimal(value[1]) is None:
                errors.append(FieldError(f"{where}.value", "BETWEEN bounds must be numeric"))
        elif op in _NUMERIC_OPERATORS and to_decimal(condition.value) is None:
            errors.append(FieldError(f"{where}.value", f"{op} requires a numeric value"))
    return errors


def validate_rule(rule: ApprovalRule, evaluator: ConditionEvaluator | None = None) -> list[FieldError]:
    """Return every field error of ``rule`` (empty when valid)."""
    errors: list[FieldError] = []

    if not rule.tenant_id:
        errors.append(FieldError("tenant_id", "must not be empty"))
    if not isinstance(rule.name, str) or not rule.name.strip():
        errors.append(FieldError("name", "must not be empty"))
    elif len(rule.name) > MAX_NAME_LENGTH:
        errors.append(FieldError("name", f"must be at most {MAX_NAME_LENGTH} characters"))
    if not isinstance(rule.priority, int) or isinstance(rule.priority, bool):
        errors.append(FieldError("priority", "must be an integer"))
    elif not MIN_PRIORITY <= rule.priority <= MAX_PRIORITY:
        errors.append(FieldError("priority", f"must be in {MIN_PRIORITY}..{MAX_PRIORITY}"))
    if not _is_number(rule.sla_hours):
        errors.append(FieldError("sla_hours", "must be a number"))
    elif rule.sla_hours <= 0:
        errors.append(FieldError("sla_hours", "must be positive"))

    if not rule.query_conditions:
        errors.append(FieldError("query_conditions", "at least one condition is required"))
    errors.extend(validate_conditions(rule.query_conditions, "query_conditions", evaluator))

    if not rule.steps:
        errors.append(FieldError("steps", "at least one step is required"))
    for i, step in enumerate(rule.steps):
        where = f"steps[{i}]"
        if not step.name or not step.name.strip():
            errors.append(FieldError(f"{where}.name", "must not be empty"))
        if not step.approvers:
            errors.append(FieldError(f"{where}.approvers", "at least one approver is required"))
        for j, approver in enumerate(step.approvers):
            if not approver.identifier:
                errors.append(FieldError(f"{where}.approvers[{j}].identifier", "must not be empty"))
        if step.approver_mode is DecisionMode.QUORUM and step.quorum_count is not None:
            if (
                not isinstance(step.quorum_count, int)
                or isinstance(step.quorum_count, bool)
                or not 0 < step.quorum_count <= len(step.approvers)
            ):
                errors.append(FieldError(
                    f"{where}.quorum_count",
                    f"must be in 1..{len(step.approvers)}",
                ))
        if step.sla_hours is not None:
            if not _is_number(step.sla_hours):
                errors.append(FieldError(f"{where}.sla_hours", "must be a number"))
            elif step.sla_hours <= 0:
                errors.append(FieldError(f"{where}.sla_hours", "must be positive"))

    previous = 0.0
    for i, level in enumerate(rule.escalation_settings.levels):
        where = f"escalation_settings.levels[{i}].after_hours"
        if not _is_number(level.after_hours):
            errors.append(FieldError(where, "must be a number"))
            continue
        if level.after_hours < 0:
            errors.append(FieldError(where, "must not be negative"))
        elif level.after_hours < previous:
            errors.append(FieldError(where, "levels must be ordered by after_hours"))
        previous = max(previous, level.after_hours)

    auto = rule.auto_approval_conditions
    if auto.enabled and not auto.conditions:
        errors.append(FieldError(
            "auto_approval_conditions.conditions",
            "at least one condition is required when enabled",
        ))
    errors.extend(validate_conditions(auto.conditions, "auto_approval_conditions.conditions", evaluator))

    return errors


def ensure_valid_rule(rule: ApprovalRule, evaluator: ConditionEvaluator | None = None) -> ApprovalRule:
    errors = validate_rule(rule, evaluator)
    if errors:
        raise ValidationError(errors, message=f"Approval rule {rule.name!r} is invalid")
    return rule
