"""
Approval domain types (``approval_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for the approval workflow engine: lifecycle enums,
rule configuration (conditions, steps, escalation, auto-approval), the
append-only decision record and the transient escalation action.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``models/``, ``services/``, ``stores/`` or outer layers.

Invariants enforced
-------------------
* Lifecycle state machine -- ``APPROVAL_TRANSITIONS`` defines the only
  valid status transitions for instances and steps.  Terminal states
  have no outgoing edges.
* Deterministic rule ordering -- rules are ranked by ``priority``
  (1-999, lower wins).
* Decision invariants -- ``delegated`` requires a delegation target,
  ``rejected`` requires non-empty comments.  Decision records are frozen.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from approval_kernel.exceptions import FieldError, InvalidDecisionError


# =========================================================================
# Lifecycle
# =========================================================================


class ModuleType(str, Enum):
    """Entity kinds that can require approval."""

    TICKETS = "tickets"
    MATERIALS = "materials"
    KNOWLEDGE_BASE = "knowledge_base"
    TIMECARD = "timecard"
    CONTRACTS = "contracts"


class ApprovalStatus(str, Enum):
    """Lifecycle states shared by instances and steps."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


TERMINAL_APPROVAL_STATUSES: frozenset[ApprovalStatus] = frozenset({
    ApprovalStatus.APPROVED,
    ApprovalStatus.REJECTED,
    ApprovalStatus.EXPIRED,
    ApprovalStatus.CANCELLED,
})

APPROVAL_TRANSITIONS: dict[ApprovalStatus, frozenset[ApprovalStatus]] = {
    ApprovalStatus.PENDING: TERMINAL_APPROVAL_STATUSES,
    ApprovalStatus.APPROVED: frozenset(),
    ApprovalStatus.REJECTED: frozenset(),
    ApprovalStatus.EXPIRED: frozenset(),
    ApprovalStatus.CANCELLED: frozenset(),
}


def can_transition(from_status: ApprovalStatus, to_status: ApprovalStatus) -> bool:
    return to_status in APPROVAL_TRANSITIONS.get(from_status, frozenset())


class SlaStatus(str, Enum):
    ACTIVE = "active"
    WARNING = "warning"
    BREACHED = "breached"


class DecisionMode(str, Enum):
    """Per-step aggregation policy."""

    ALL = "ALL"
    ANY = "ANY"
    QUORUM = "QUORUM"


class DecisionKind(str, Enum):
    """What an approver did."""

    APPROVED = "approved"
    REJECTED = "rejected"
    DELEGATED = "delegated"
    ESCALATED = "escalated"


class DecisionApproverType(str, Enum):
    """Who produced a decision record."""

    USER = "user"
    GROUP = "group"
    EXTERNAL = "external"
    AUTOMATED = "automated"


class ApproverType(str, Enum):
    """How a configured approver is identified."""

    USER = "user"
    USER_GROUP = "user_group"
    CUSTOMER_CONTACT = "customer_contact"
    SUPPLIER = "supplier"
    MANAGER_CHAIN = "manager_chain"


# =========================================================================
# Conditions
# =========================================================================


class ConditionOperator(str, Enum):
    """Built-in comparison operators."""

    EQ = "EQ"
    NEQ = "NEQ"
    IN = "IN"
    NOT_IN = "NOT_IN"
    GT = "GT"
    GTE = "GTE"
    LT = "LT"
    LTE = "LTE"
    CONTAINS = "CONTAINS"
    STARTS_WITH = "STARTS_WITH"
    EXISTS = "EXISTS"
    BETWEEN = "BETWEEN"


class LogicalOperator(str, Enum):
    AND = "AND"
    OR = "OR"


@dataclass(frozen=True)
class QueryCondition:
    """A single typed comparison against entity data.

    ``operator`` is kept as the raw string so that unknown operators can be
    represented (and evaluated as false) instead of failing at load time.
    ``logical_operator`` joins this condition to everything before it.
    """

    field: str
    operator: str
    value: Any = None
    logical_operator: LogicalOperator = LogicalOperator.AND


# =========================================================================
# Rule configuration
# =========================================================================


@dataclass(frozen=True)
class ApproverConfig:
    """One configured approver of a step."""

    type: ApproverType
    identifier: str
    level: int | None = None
    name: str | None = None


@dataclass(frozen=True)
class ApprovalStepConfig:
    """Configuration of one step in a rule's approval sequence."""

    name: str
    approver_mode: DecisionMode
    approvers: tuple[ApproverConfig, ...]
    quorum_count: int | None = None
    sla_hours: float | None = None

    @property
    def total_approvers(self) -> int:
        return len(self.approvers)

    def effective_quorum(self) -> int | None:
        """Quorum size for QUORUM steps; a simple majority when unset."""
        if self.approver_mode is not DecisionMode.QUORUM:
            return None
        if self.quorum_count is not None:
            return self.quorum_count
        return self.total_approvers // 2 + 1


@dataclass(frozen=True)
class EscalationLevel:
    """Escalate to ``target`` once ``after_hours`` have passed the deadline."""

    after_hours: float
    target: ApproverConfig


@dataclass(frozen=True)
class EscalationSettings:
    enabled: bool = False
    levels: tuple[EscalationLevel, ...] = ()


@dataclass(frozen=True)
class AutoApprovalConditions:
    enabled: bool = False
    conditions: tuple[QueryCondition, ...] = ()


@dataclass(frozen=True)
class ApprovalRule:
    """A named, prioritized approval policy.

    Selects which entities need approval (``query_conditions``) and defines
    the step sequence for approving them.  Lower ``priority`` wins.
    """

    tenant_id: str
    name: str
    module_type: ModuleType
    query_conditions: tuple[QueryCondition, ...]
    steps: tuple[ApprovalStepConfig, ...]
    sla_hours: float = 24
    business_hours_only: bool = False
    escalation_settings: EscalationSettings = field(default_factory=EscalationSettings)
    auto_approval_conditions: AutoApprovalConditions = field(default_factory=AutoApprovalConditions)
    priority: int = 100
    is_active: bool = True
    id: UUID = field(default_factory=uuid4)
    entity_type: str | None = None
    description: str = ""
    created_by_id: str | None = None
    updated_by_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def step_config(self, index: int) -> ApprovalStepConfig | None:
        if 0 <= index < len(self.steps):
            return self.steps[index]
        return None

    @property
    def step_count(self) -> int:
        return len(self.steps)


# =========================================================================
# Decision record
# =========================================================================


@dataclass(frozen=True)
class ApprovalDecisionRecord:
    """Immutable audit record of one approver action."""

    tenant_id: str
    instance_id: UUID
    step_id: UUID
    approver_id: str
    decision: DecisionKind
    approver_type: DecisionApproverType = DecisionApproverType.USER
    comments: str = ""
    reason_code: str | None = None
    delegated_to_id: str | None = None
    delegation_reason: str | None = None
    response_time_minutes: int = 0
    ip_address: str | None = None
    user_agent: str | None = None
    created_at: datetime | None = None
    id: UUID = field(default_factory=uuid4)

    def __post_init__(self) -> None:
        errors = []
        if self.decision is DecisionKind.DELEGATED:
            if not self.delegated_to_id:
                errors.append(FieldError("delegated_to_id", "required for delegated decisions"))
        if self.decision is DecisionKind.REJECTED:
            if not self.comments or not self.comments.strip():
                errors.append(FieldError("comments", "required for rejected decisions"))
        if self.response_time_minutes < 0:
            errors.append(FieldError("response_time_minutes", "must not be negative"))
        if errors:
            raise InvalidDecisionError(errors)


# =========================================================================
# Escalation actions (transient)
# =========================================================================


class EscalationActionType(str, Enum):
    REMINDER = "reminder"
    ESCALATION = "escalation"
    AUTO_APPROVE = "auto_approve"
    EXPIRE = "expire"


class ActionPriority(str, Enum):
    URGENT = "urgent"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Sort key: urgent first."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    ActionPriority.URGENT: 0,
    ActionPriority.HIGH: 1,
    ActionPriority.MEDIUM: 2,
    ActionPriority.LOW: 3,
}


@dataclass(frozen=True)
class EscalationAction:
    """An action produced by the escalation sweep for an external notifier."""

    type: EscalationActionType
    instance_id: UUID
    tenant_id: str
    priority: ActionPriority
    due_at: datetime
    description: str
    step_id: UUID | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
