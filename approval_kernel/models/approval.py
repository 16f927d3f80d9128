"""
Module: approval_kernel.models.approval
Responsibility: ORM persistence for approval rules, instances, steps and
    decisions.

Architecture position: Kernel > Models.  May import from db/base.py, the
    domain types and the domain codec.

Invariants enforced:
    - Rule names are unique per tenant (uq_approval_rules_tenant_name).
    - At most one pending instance per (tenant, entity_type, entity_id):
      partial unique index on PostgreSQL and SQLite.
    - Instance status values limited by a check constraint.
    - Decisions are append-only: ORM listeners reject UPDATE and DELETE.

Failure modes:
    - IntegrityError on duplicate rule name or duplicate pending instance.
    - ImmutabilityViolationError on decision UPDATE/DELETE.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    event,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base, UUIDString
from approval_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from approval_kernel.domain.approval import ApprovalDecisionRecord, ApprovalRule
    from approval_kernel.domain.instance import ApprovalInstance
    from approval_kernel.domain.step import ApprovalStep

_STATUS_CHECK = "status IN ('pending', 'approved', 'rejected', 'expired', 'cancelled')"


class ApprovalRuleModel(Base):
    """Persistent approval rule; nested configuration stored as JSON."""

    __tablename__ = "approval_rules"

    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_approval_rules_tenant_name"),
        Index("ix_approval_rules_scope", "tenant_id", "module_type", "is_active", "priority"),
        CheckConstraint("priority BETWEEN 1 AND 999", name="ck_approval_rules_priority"),
    )

    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    module_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    query_conditions: Mapped[list[Any]] = mapped_column(JSON, nullable=False)
    steps: Mapped[list[Any]] = mapped_column(JSON, nullable=False)
    escalation_settings: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    auto_approval_conditions: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    sla_hours: Mapped[float] = mapped_column(nullable=False, default=24)
    business_hours_only: Mapped[bool] = mapped_column(nullable=False, default=False)
    priority: Mapped[int] = mapped_column(nullable=False, default=100)
    is_active: Mapped[bool] = mapped_column(nullable=False, default=True)
    created_by_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    updated_by_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<ApprovalRule {self.id} {self.name!r} priority={self.priority}>"

    def to_dto(self) -> ApprovalRule:
        from approval_kernel.domain import codec
        from approval_kernel.domain.approval import ApprovalRule, ModuleType

        return ApprovalRule(
            id=self.id,
            tenant_id=self.tenant_id,
            name=self.name,
            description=self.description,
            module_type=ModuleType(self.module_type),
            entity_type=self.entity_type,
            query_conditions=tuple(codec.condition_from_dict(c) for c in self.query_conditions),
            steps=tuple(codec.step_from_dict(s) for s in self.steps),
            escalation_settings=codec.escalation_from_dict(self.escalation_settings),
            auto_approval_conditions=codec.auto_approval_from_dict(self.auto_approval_conditions),
            sla_hours=self.sla_hours,
            business_hours_only=self.business_hours_only,
            priority=self.priority,
            is_active=self.is_active,
            created_by_id=self.created_by_id,
            updated_by_id=self.updated_by_id,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    def apply_dto(self, dto: ApprovalRule) -> None:
        from approval_kernel.domain import codec

        self.tenant_id = dto.tenant_id
        self.name = dto.name
        self.description = dto.description
        self.module_type = dto.module_type.value
        self.entity_type = dto.entity_type
        self.query_conditions = [codec.condition_to_dict(c) for c in dto.query_conditions]
        self.steps = [codec.step_to_dict(s) for s in dto.steps]
        self.escalation_settings = codec.escalation_to_dict(dto.escalation_settings)
        self.auto_approval_conditions = codec.auto_approval_to_dict(dto.auto_approval_conditions)
        self.sla_hours = dto.sla_hours
        self.business_hours_only = dto.business_hours_only
        self.priority = dto.priority
        self.is_active = dto.is_active
        self.created_by_id = dto.created_by_id
        self.updated_by_id = dto.updated_by_id
        self.created_at = dto.created_at
        self.updated_at = dto.updated_at

    @classmethod
    def from_dto(cls, dto: ApprovalRule) -> ApprovalRuleModel:
        model = cls(id=dto.id)
        model.apply_dto(dto)
        return model


class ApprovalInstanceModel(Base):
    """Persistent approval instance with optimistic ``version``."""

    __tablename__ = "approval_instances"

    __table_args__ = (
        CheckConstraint(_STATUS_CHECK, name="ck_approval_instances_status"),
        CheckConstraint("urgency_level BETWEEN 1 AND 5", name="ck_approval_instances_urgency"),
        Index(
            "ix_approval_instances_pending_entity",
            "tenant_id", "entity_type", "entity_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
        Index("ix_approval_instances_tenant_status", "tenant_id", "status", "sla_deadline"),
    )

    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    rule_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("approval_rules.id"), nullable=False,
    )
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    requested_by_id: Mapped[str] = mapped_column(String(100), nullable=False)
    request_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    urgency_level: Mapped[int] = mapped_column(nullable=False, default=3)
    current_step_index: Mapped[int] = mapped_column(nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    sla_deadline: Mapped[datetime | None] = mapped_column(nullable=True)
    sla_started: Mapped[datetime | None] = mapped_column(nullable=True)
    sla_elapsed_minutes: Mapped[int] = mapped_column(nullable=False, default=0)
    sla_status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    reminders_sent: Mapped[int] = mapped_column(nullable=False, default=0)
    first_reminder_sent_at: Mapped[datetime | None] = mapped_column(nullable=True)
    second_reminder_sent_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_escalation_at: Mapped[datetime | None] = mapped_column(nullable=True)
    escalation_level: Mapped[int] = mapped_column(nullable=False, default=0)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_by_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    completion_reason: Mapped[str | None] = mapped_column(String(100), nullable=True)
    total_response_time_minutes: Mapped[int | None] = mapped_column(nullable=True)
    sla_violated: Mapped[bool] = mapped_column(nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    version: Mapped[int] = mapped_column(nullable=False, default=1)

    def __repr__(self) -> str:
        return (
            f"<ApprovalInstance {self.id} {self.entity_type}/{self.entity_id} "
            f"status={self.status} v{self.version}>"
        )

    def to_dto(self) -> ApprovalInstance:
        from approval_kernel.domain.approval import ApprovalStatus, ModuleType, SlaStatus
        from approval_kernel.domain.instance import ApprovalInstance

        return ApprovalInstance(
            id=self.id,
            tenant_id=self.tenant_id,
            rule_id=self.rule_id,
            entity_type=ModuleType(self.entity_type),
            entity_id=self.entity_id,
            entity_data=dict(self.entity_data or {}),
            requested_by_id=self.requested_by_id,
            request_reason=self.request_reason,
            urgency_level=self.urgency_level,
            current_step_index=self.current_step_index,
            status=ApprovalStatus(self.status),
            sla_deadline=self.sla_deadline,
            sla_started=self.sla_started,
            sla_elapsed_minutes=self.sla_elapsed_minutes,
            sla_status=SlaStatus(self.sla_status),
            reminders_sent=self.reminders_sent,
            first_reminder_sent_at=self.first_reminder_sent_at,
            second_reminder_sent_at=self.second_reminder_sent_at,
            last_escalation_at=self.last_escalation_at,
            escalation_level=self.escalation_level,
            completed_at=self.completed_at,
            completed_by_id=self.completed_by_id,
            completion_reason=self.completion_reason,
            total_response_time_minutes=self.total_response_time_minutes,
            sla_violated=self.sla_violated,
            created_at=self.created_at,
            updated_at=self.updated_at,
            version=self.version,
        )

    @classmethod
    def from_dto(cls, dto: ApprovalInstance) -> ApprovalInstanceModel:
        values = {name: column_value(value) for name, value in dto.snapshot().items()}
        return cls(**values)


class ApprovalStepModel(Base):
    """Persistent approval step."""

    __tablename__ = "approval_steps"

    __table_args__ = (
        UniqueConstraint("instance_id", "step_index", name="uq_approval_steps_instance_index"),
        CheckConstraint(_STATUS_CHECK, name="ck_approval_steps_status"),
        CheckConstraint(
            "approved_count + rejected_count <= total_approvers",
            name="ck_approval_steps_counts",
        ),
    )

    instance_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("approval_instances.id"), nullable=False,
    )
    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    step_index: Mapped[int] = mapped_column(nullable=False)
    step_name: Mapped[str] = mapped_column(String(200), nullable=False)
    decision_mode: Mapped[str] = mapped_column(String(10), nullable=False)
    total_approvers: Mapped[int] = mapped_column(nullable=False)
    approvers: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)
    quorum_count: Mapped[int | None] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    step_deadline: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    approved_count: Mapped[int] = mapped_column(nullable=False, default=0)
    rejected_count: Mapped[int] = mapped_column(nullable=False, default=0)
    step_sla_hours: Mapped[float | None] = mapped_column(nullable=True)

    def to_dto(self) -> ApprovalStep:
        from approval_kernel.domain import codec
        from approval_kernel.domain.approval import ApprovalStatus, DecisionMode
        from approval_kernel.domain.step import ApprovalStep

        return ApprovalStep(
            id=self.id,
            instance_id=self.instance_id,
            tenant_id=self.tenant_id,
            step_index=self.step_index,
            step_name=self.step_name,
            decision_mode=DecisionMode(self.decision_mode),
            total_approvers=self.total_approvers,
            approvers=tuple(codec.approver_from_dict(a) for a in self.approvers or ()),
            quorum_count=self.quorum_count,
            status=ApprovalStatus(self.status),
            started_at=self.started_at,
            step_deadline=self.step_deadline,
            completed_at=self.completed_at,
            approved_count=self.approved_count,
            rejected_count=self.rejected_count,
            step_sla_hours=self.step_sla_hours,
        )

    def apply_dto(self, dto: ApprovalStep) -> None:
        from approval_kernel.domain import codec

        self.instance_id = dto.instance_id
        self.tenant_id = dto.tenant_id
        self.step_index = dto.step_index
        self.step_name = dto.step_name
        self.decision_mode = dto.decision_mode.value
        self.total_approvers = dto.total_approvers
        self.approvers = [codec.approver_to_dict(a) for a in dto.approvers]
        self.quorum_count = dto.quorum_count
        self.status = dto.status.value
        self.started_at = dto.started_at
        self.step_deadline = dto.step_deadline
        self.completed_at = dto.completed_at
        self.approved_count = dto.approved_count
        self.rejected_count = dto.rejected_count
        self.step_sla_hours = dto.step_sla_hours

    @classmethod
    def from_dto(cls, dto: ApprovalStep) -> ApprovalStepModel:
        model = cls(id=dto.id)
        model.apply_dto(dto)
        return model


class ApprovalDecisionModel(Base):
    """Persistent approval decision record.  Append-only."""

    __tablename__ = "approval_decisions"

    __table_args__ = (
        Index("ix_approval_decisions_instance", "tenant_id", "instance_id", "created_at"),
        Index("ix_approval_decisions_step_approver", "step_id", "approver_id"),
    )

    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    instance_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("approval_instances.id"), nullable=False,
    )
    step_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("approval_steps.id"), nullable=False,
    )
    approver_id: Mapped[str] = mapped_column(String(100), nullable=False)
    approver_type: Mapped[str] = mapped_column(String(20), nullable=False)
    decision: Mapped[str] = mapped_column(String(20), nullable=False)
    comments: Mapped[str] = mapped_column(Text, default="", nullable=False)
    reason_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    delegated_to_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    delegation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    response_time_minutes: Mapped[int] = mapped_column(nullable=False, default=0)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<ApprovalDecision {self.id} step={self.step_id} decision={self.decision}>"

    def to_dto(self) -> ApprovalDecisionRecord:
        from approval_kernel.domain.approval import (
            ApprovalDecisionRecord,
            DecisionApproverType,
            DecisionKind,
        )

        return ApprovalDecisionRecord(
            id=self.id,
            tenant_id=self.tenant_id,
            instance_id=self.instance_id,
            step_id=self.step_id,
            approver_id=self.approver_id,
            approver_type=DecisionApproverType(self.approver_type),
            decision=DecisionKind(self.decision),
            comments=self.comments,
            reason_code=self.reason_code,
            delegated_to_id=self.delegated_to_id,
            delegation_reason=self.delegation_reason,
            response_time_minutes=self.response_time_minutes,
            ip_address=self.ip_address,
            user_agent=self.user_agent,
            created_at=self.created_at,
        )

    @classmethod
    def from_dto(cls, dto: ApprovalDecisionRecord) -> ApprovalDecisionModel:
        return cls(
            id=dto.id,
            tenant_id=dto.tenant_id,
            instance_id=dto.instance_id,
            step_id=dto.step_id,
            approver_id=dto.approver_id,
            approver_type=dto.approver_type.value,
            decision=dto.decision.value,
            comments=dto.comments,
            reason_code=dto.reason_code,
            delegated_to_id=dto.delegated_to_id,
            delegation_reason=dto.delegation_reason,
            response_time_minutes=dto.response_time_minutes,
            ip_address=dto.ip_address,
            user_agent=dto.user_agent,
            created_at=dto.created_at,
        )


def column_value(value: Any) -> Any:
    """Enum members are stored by value."""
    if isinstance(value, Enum):
        return value.value
    return value


# =============================================================================
# ORM-Level Immutability for Decisions (Append-Only)
# =============================================================================


@event.listens_for(ApprovalDecisionModel, "before_update")
def prevent_decision_update(mapper, connection, target):
    """Prevent updates to approval decision records."""
    raise ImmutabilityViolationError(
        entity_type="ApprovalDecision",
        entity_id=str(target.id),
        reason="Approval decisions are immutable -- cannot modify",
    )


@event.listens_for(ApprovalDecisionModel, "before_delete")
def prevent_decision_delete(mapper, connection, target):
    """Prevent deletion of approval decision records."""
    raise ImmutabilityViolationError(
        entity_type="ApprovalDecision",
        entity_id=str(target.id),
        reason="Approval decisions are immutable -- cannot delete",
    )
