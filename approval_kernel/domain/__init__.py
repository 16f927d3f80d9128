"""
Pure domain layer.

Data records and state machines for approval rules, instances, steps and
decisions, plus the collaborator ports the engine consumes.  NO
dependencies on:
- ORM (SQLAlchemy)
- Database
- System time (time is always passed in)
"""

from approval_kernel.domain.approval import (
    APPROVAL_TRANSITIONS,
    TERMINAL_APPROVAL_STATUSES,
    ActionPriority,
    ApprovalDecisionRecord,
    ApprovalRule,
    ApprovalStatus,
    ApprovalStepConfig,
    ApproverConfig,
    ApproverType,
    AutoApprovalConditions,
    ConditionOperator,
    DecisionApproverType,
    DecisionKind,
    DecisionMode,
    EscalationAction,
    EscalationActionType,
    EscalationLevel,
    EscalationSettings,
    LogicalOperator,
    ModuleType,
    QueryCondition,
    SlaStatus,
)
from approval_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from approval_kernel.domain.instance import (
    DEFAULT_REMINDER_THRESHOLDS,
    DEFAULT_WARNING_PERCENTAGE,
    ApprovalInstance,
)
from approval_kernel.domain.step import ApprovalStep

__all__ = [
    "APPROVAL_TRANSITIONS",
    "TERMINAL_APPROVAL_STATUSES",
    "DEFAULT_REMINDER_THRESHOLDS",
    "DEFAULT_WARNING_PERCENTAGE",
    "ActionPriority",
    "ApprovalDecisionRecord",
    "ApprovalInstance",
    "ApprovalRule",
    "ApprovalStatus",
    "ApprovalStep",
    "ApprovalStepConfig",
    "ApproverConfig",
    "ApproverType",
    "AutoApprovalConditions",
    "Clock",
    "ConditionOperator",
    "DecisionApproverType",
    "DecisionKind",
    "DecisionMode",
    "DeterministicClock",
    "EscalationAction",
    "EscalationActionType",
    "EscalationLevel",
    "EscalationSettings",
    "LogicalOperator",
    "ModuleType",
    "QueryCondition",
    "SlaStatus",
    "SystemClock",
]
