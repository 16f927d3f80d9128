"""
Plain-data codec for rule configuration.

Converts rule configuration value objects to and from JSON/YAML-friendly
dicts.  Used by the ORM models (JSON columns) and by the YAML rule loader.
Decoding raises KeyError, TypeError or ValueError on malformed input;
callers translate those into their own error types.
"""

from __future__ import annotations

from typing import Any, Mapping

from approval_kernel.domain.approval import (
    ApprovalStepConfig,
    ApproverConfig,
    ApproverType,
    AutoApprovalConditions,
    DecisionMode,
    EscalationLevel,
    EscalationSettings,
    LogicalOperator,
    QueryCondition,
)


def condition_to_dict(condition: QueryCondition) -> dict[str, Any]:
    value = condition.value
    if isinstance(value, tuple):
        value = list(value)
    return {
        "field": condition.field,
        "operator": condition.operator,
        "value": value,
        "logical_operator": condition.logical_operator.value,
    }


def condition_from_dict(data: Mapping[str, Any]) -> QueryCondition:
    logical = data.get("logical_operator") or LogicalOperator.AND.value
    return QueryCondition(
        field=str(data["field"]),
        operator=str(data["operator"]),
        value=data.get("value"),
        logical_operator=LogicalOperator(str(logical).upper()),
    )


def approver_to_dict(approver: ApproverConfig) -> dict[str, Any]:
    result: dict[str, Any] = {"type": approver.type.value, "identifier": approver.identifier}
    if approver.level is not None:
        result["level"] = approver.level
    if approver.name is not None:
        result["name"] = approver.name
    return result


def approver_from_dict(data: Mapping[str, Any]) -> ApproverConfig:
    level = data.get("level")
    return ApproverConfig(
        type=ApproverType(data["type"]),
        identifier=str(data["identifier"]),
        level=int(level) if level is not None else None,
        name=data.get("name"),
    )


def step_to_dict(step: ApprovalStepConfig) -> dict[str, Any]:
    return {
        "name": step.name,
        "approver_mode": step.approver_mode.value,
        "approvers": [approver_to_dict(a) for a in step.approvers],
        "quorum_count": step.quorum_count,
        "sla_hours": step.sla_hours,
    }


def step_from_dict(data: Mapping[str, Any]) -> ApprovalStepConfig:
    quorum = data.get("quorum_count")
    sla_hours = data.get("sla_hours")
    return ApprovalStepConfig(
        name=str(data["name"]),
        approver_mode=DecisionMode(str(data.get("approver_mode", DecisionMode.ALL.value)).upper()),
        approvers=tuple(approver_from_dict(a) for a in data["approvers"]),
        quorum_count=int(quorum) if quorum is not None else None,
        sla_hours=float(sla_hours) if sla_hours is not None else None,
    )


def escalation_to_dict(settings: EscalationSettings) -> dict[str, Any]:
    return {
        "enabled": settings.enabled,
        "levels": [
            {"after_hours": level.after_hours, "target": approver_to_dict(level.target)}
            for level in settings.levels
        ],
    }


def escalation_from_dict(data: Mapping[str, Any] | None) -> EscalationSettings:
    if not data:
        return EscalationSettings()
    return EscalationSettings(
        enabled=bool(data.get("enabled", False)),
        levels=tuple(
            EscalationLevel(
                after_hours=float(level["after_hours"]),
                target=approver_from_dict(level["target"]),
            )
            for level in data.get("levels") or ()
        ),
    )


def auto_approval_to_dict(auto: AutoApprovalConditions) -> dict[str, Any]:
    return {
        "enabled": auto.enabled,
        "conditions": [condition_to_dict(c) for c in auto.conditions],
    }


def auto_approval_from_dict(data: Mapping[str, Any] | None) -> AutoApprovalConditions:
    if not data:
        return AutoApprovalConditions()
    return AutoApprovalConditions(
        enabled=bool(data.get("enabled", False)),
        conditions=tuple(condition_from_dict(c) for c in data.get("conditions") or ()),
    )
