"""
ApprovalStep -- per-step decision aggregation state machine.

Responsibility:
    Aggregates individual approver decisions for one step of one instance
    under the step's decision mode and decides when the step is finished.

Architecture position:
    Kernel > Domain.  Pure, mutable record.  Mutated only by the decision
    processor and the escalation applier; persisted by an InstanceStore.

Invariants enforced:
    - ``approved_count + rejected_count <= total_approvers``.
    - QUORUM mode requires ``0 < quorum_count <= total_approvers``.
    - ``pending -> {approved, rejected, expired, cancelled}``; terminal
      states accept no further transitions.

Completion policy:

    | mode   | approve-completes      | reject-completes               |
    |--------|------------------------|--------------------------------|
    | ALL    | approved == total      | rejected > 0                   |
    | ANY    | approved > 0           | rejected == total              |
    | QUORUM | approved >= quorum     | rejected > total - quorum      |
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from uuid import UUID, uuid4

from approval_kernel.domain.approval import (
    TERMINAL_APPROVAL_STATUSES,
    ApprovalStatus,
    ApprovalStepConfig,
    ApproverConfig,
    DecisionMode,
    can_transition,
)
from approval_kernel.exceptions import InvalidApprovalTransitionError


@dataclass
class ApprovalStep:
    """One stage of an instance's approval sequence."""

    instance_id: UUID
    tenant_id: str
    step_index: int
    step_name: str
    decision_mode: DecisionMode
    total_approvers: int
    approvers: tuple[ApproverConfig, ...] = ()
    quorum_count: int | None = None
    status: ApprovalStatus = ApprovalStatus.PENDING
    started_at: datetime | None = None
    step_deadline: datetime | None = None
    completed_at: datetime | None = None
    approved_count: int = 0
    rejected_count: int = 0
    step_sla_hours: float | None = None
    id: UUID = field(default_factory=uuid4)

    def __post_init__(self) -> None:
        if self.step_index < 0:
            raise ValueError("step_index cannot be negative")
        if self.total_approvers < 1:
            raise ValueError("a step needs at least one approver")
        if self.approved_count < 0 or self.rejected_count < 0:
            raise ValueError("decision counters cannot be negative")
        if self.approved_count + self.rejected_count > self.total_approvers:
            raise ValueError("more decisions recorded than approvers")
        if self.decision_mode is DecisionMode.QUORUM:
            if self.quorum_count is None or not 0 < self.quorum_count <= self.total_approvers:
                raise ValueError(
                    f"quorum_count must be in 1..{self.total_approvers}, got {self.quorum_count}"
                )

    @classmethod
    def from_config(
        cls,
        config: ApprovalStepConfig,
        *,
        instance_id: UUID,
        tenant_id: str,
        step_index: int,
    ) -> ApprovalStep:
        return cls(
            instance_id=instance_id,
            tenant_id=tenant_id,
            step_index=step_index,
            step_name=config.name,
            decision_mode=config.approver_mode,
            total_approvers=config.total_approvers,
            approvers=config.approvers,
            quorum_count=config.effective_quorum(),
            step_sla_hours=config.sla_hours,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_APPROVAL_STATUSES

    @property
    def is_pending(self) -> bool:
        return self.status is ApprovalStatus.PENDING

    def get_required_approvals(self) -> int:
        if self.decision_mode is DecisionMode.ALL:
            return self.total_approvers
        if self.decision_mode is DecisionMode.ANY:
            return 1
        return self.quorum_count or self.total_approvers

    def _approve_completes(self) -> bool:
        if self.decision_mode is DecisionMode.ALL:
            return self.approved_count == self.total_approvers
        if self.decision_mode is DecisionMode.ANY:
            return self.approved_count > 0
        return self.approved_count >= (self.quorum_count or self.total_approvers)

    def _reject_completes(self) -> bool:
        if self.decision_mode is DecisionMode.ALL:
            return self.rejected_count > 0
        if self.decision_mode is DecisionMode.ANY:
            return self.rejected_count == self.total_approvers
        quorum = self.quorum_count or self.total_approvers
        return self.rejected_count > self.total_approvers - quorum

    def completion_outcome(self) -> ApprovalStatus | None:
        """Terminal status the current counts imply, if any."""
        if self._approve_completes():
            return ApprovalStatus.APPROVED
        if self._reject_completes():
            return ApprovalStatus.REJECTED
        return None

    def should_complete(self) -> bool:
        return self.completion_outcome() is not None

    @property
    def completion_percentage(self) -> float:
        required = self.get_required_approvals()
        return min(100.0, self.approved_count / required * 100)

    @property
    def participation_percentage(self) -> float:
        return (self.approved_count + self.rejected_count) / self.total_approvers * 100

    def sla_usage_percentage(self, now: datetime) -> float:
        if self.started_at is None or self.step_deadline is None:
            return 0.0
        window = (self.step_deadline - self.started_at).total_seconds()
        if window <= 0:
            return 100.0
        elapsed = (now - self.started_at).total_seconds()
        return max(0.0, min(100.0, elapsed / window * 100))

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def start(self, now: datetime, fallback_deadline: datetime | None = None) -> None:
        """Open the step: stamp ``started_at`` and compute the deadline."""
        if not self.is_pending:
            raise InvalidApprovalTransitionError(self.status.value, ApprovalStatus.PENDING.value, "step")
        self.started_at = now
        if self.step_sla_hours is not None:
            self.step_deadline = now + timedelta(hours=self.step_sla_hours)
        else:
            self.step_deadline = fallback_deadline

    def record_approval(self, now: datetime) -> ApprovalStatus:
        self._require_open(ApprovalStatus.APPROVED)
        self.approved_count += 1
        if self._approve_completes():
            self._finish(ApprovalStatus.APPROVED, now)
        return self.status

    def record_rejection(self, now: datetime) -> ApprovalStatus:
        self._require_open(ApprovalStatus.REJECTED)
        self.rejected_count += 1
        # A single rejection is terminal under ALL.
        if self.decision_mode is DecisionMode.ALL or self._reject_completes():
            self._finish(ApprovalStatus.REJECTED, now)
        return self.status

    def expire(self, now: datetime) -> None:
        self._finish(ApprovalStatus.EXPIRED, now)

    def cancel(self, now: datetime) -> None:
        self._finish(ApprovalStatus.CANCELLED, now)

    def force_approve(self, now: datetime) -> None:
        """Close the step as approved regardless of counts (timeout auto-approval)."""
        self._finish(ApprovalStatus.APPROVED, now)

    def _require_open(self, target: ApprovalStatus) -> None:
        if self.is_terminal:
            raise InvalidApprovalTransitionError(self.status.value, target.value, "step")
        if self.approved_count + self.rejected_count >= self.total_approvers:
            raise InvalidApprovalTransitionError(self.status.value, target.value, "step")

    def _finish(self, status: ApprovalStatus, now: datetime) -> None:
        if not can_transition(self.status, status):
            raise InvalidApprovalTransitionError(self.status.value, status.value, "step")
        self.status = status
        self.completed_at = now
