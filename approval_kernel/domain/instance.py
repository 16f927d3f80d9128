"""
ApprovalInstance -- per-request lifecycle record and state machine.

Responsibility:
    Tracks one concrete approval process for one entity change: the
    governing rule, the current step index, status, SLA bookkeeping,
    reminder/escalation counters and completion metadata.

Architecture position:
    Kernel > Domain.  Pure, mutable record.  Mutated by the decision
    processor and the escalation applier; persisted by an InstanceStore
    using optimistic concurrency on ``version``.

Invariants enforced:
    - Counters (step index, elapsed minutes, reminders, escalation level)
      are never negative.
    - A completed instance always carries ``completed_at``.
    - ``pending -> {approved, rejected, expired, cancelled}``; terminal
      states accept no further transitions.
    - Reminder monotonicity: ``should_send_reminder`` is indexed by
      ``reminders_sent`` so a threshold can fire at most once.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any, Sequence
from uuid import UUID, uuid4

from approval_kernel.domain.approval import (
    TERMINAL_APPROVAL_STATUSES,
    ApprovalStatus,
    ModuleType,
    SlaStatus,
    can_transition,
)
from approval_kernel.exceptions import InvalidApprovalTransitionError

DEFAULT_REMINDER_THRESHOLDS: tuple[float, ...] = (25, 50, 75, 90, 95)
DEFAULT_WARNING_PERCENTAGE: float = 75


@dataclass
class ApprovalInstance:
    """One approval attempt for one entity, governed by one rule."""

    tenant_id: str
    rule_id: UUID
    entity_type: ModuleType
    entity_id: str
    requested_by_id: str
    created_at: datetime
    entity_data: dict[str, Any] = field(default_factory=dict)
    request_reason: str | None = None
    urgency_level: int = 3
    current_step_index: int = 0
    status: ApprovalStatus = ApprovalStatus.PENDING
    sla_deadline: datetime | None = None
    sla_started: datetime | None = None
    sla_elapsed_minutes: int = 0
    sla_status: SlaStatus = SlaStatus.ACTIVE
    reminders_sent: int = 0
    first_reminder_sent_at: datetime | None = None
    second_reminder_sent_at: datetime | None = None
    last_escalation_at: datetime | None = None
    escalation_level: int = 0
    completed_at: datetime | None = None
    completed_by_id: str | None = None
    completion_reason: str | None = None
    total_response_time_minutes: int | None = None
    sla_violated: bool = False
    updated_at: datetime | None = None
    version: int = 1
    id: UUID = field(default_factory=uuid4)

    def __post_init__(self) -> None:
        for name in ("current_step_index", "sla_elapsed_minutes", "reminders_sent", "escalation_level"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} cannot be negative")
        if not 1 <= self.urgency_level <= 5:
            raise ValueError(f"urgency_level must be in 1..5, got {self.urgency_level}")
        if self.is_completed() and self.completed_at is None:
            raise ValueError("a completed instance must carry completed_at")

    # ------------------------------------------------------------------
    # Status queries
    # ------------------------------------------------------------------

    def is_completed(self) -> bool:
        return self.status in TERMINAL_APPROVAL_STATUSES

    @property
    def is_pending(self) -> bool:
        return self.status is ApprovalStatus.PENDING

    def can_be_cancelled(self) -> bool:
        return self.is_pending

    # ------------------------------------------------------------------
    # SLA
    # ------------------------------------------------------------------

    def is_sla_breached(self) -> bool:
        return self.sla_status is SlaStatus.BREACHED

    def is_sla_warning(self) -> bool:
        return self.sla_status is SlaStatus.WARNING

    def is_overdue(self, now: datetime) -> bool:
        return self.sla_deadline is not None and now > self.sla_deadline

    def calculate_sla_elapsed(self, now: datetime) -> float:
        """Elapsed time as a percentage of the SLA window, clamped to [0, 100]."""
        if self.sla_deadline is None:
            return 0.0
        started = self.sla_started or self.created_at
        window = (self.sla_deadline - started).total_seconds()
        if window <= 0:
            return 100.0
        elapsed = (now - started).total_seconds()
        return max(0.0, min(100.0, elapsed / window * 100))

    def projected_sla_status(
        self,
        now: datetime,
        warning_percentage: float = DEFAULT_WARNING_PERCENTAGE,
    ) -> SlaStatus:
        """SLA status as of ``now`` without touching the stored value."""
        if self.is_completed() or self.sla_deadline is None:
            return self.sla_status
        if self.is_overdue(now):
            return SlaStatus.BREACHED
        if self.calculate_sla_elapsed(now) >= warning_percentage:
            return SlaStatus.WARNING
        return SlaStatus.ACTIVE

    def refresh_sla(
        self,
        now: datetime,
        warning_percentage: float = DEFAULT_WARNING_PERCENTAGE,
    ) -> SlaStatus:
        """Store elapsed minutes and SLA status as of ``now``."""
        if self.is_completed():
            return self.sla_status
        started = self.sla_started or self.created_at
        self.sla_elapsed_minutes = max(0, int((now - started).total_seconds() // 60))
        self.sla_status = self.projected_sla_status(now, warning_percentage)
        return self.sla_status

    # ------------------------------------------------------------------
    # Reminders and escalation
    # ------------------------------------------------------------------

    def next_reminder_threshold(
        self,
        thresholds: Sequence[float] = DEFAULT_REMINDER_THRESHOLDS,
    ) -> float | None:
        if self.reminders_sent >= len(thresholds):
            return None
        return thresholds[self.reminders_sent]

    def should_send_reminder(
        self,
        now: datetime,
        thresholds: Sequence[float] = DEFAULT_REMINDER_THRESHOLDS,
    ) -> bool:
        if self.is_completed():
            return False
        threshold = self.next_reminder_threshold(thresholds)
        if threshold is None:
            return False
        return self.calculate_sla_elapsed(now) >= threshold

    def record_reminder(self, now: datetime) -> None:
        self.reminders_sent += 1
        if self.reminders_sent == 1:
            self.first_reminder_sent_at = now
        elif self.reminders_sent == 2:
            self.second_reminder_sent_at = now

    def should_escalate(self) -> bool:
        return not self.is_completed() and self.sla_status is SlaStatus.BREACHED

    def mark_escalated(self, now: datetime, *, advance_level: bool = True) -> None:
        self.last_escalation_at = now
        if advance_level:
            self.escalation_level += 1

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def advance_to(self, step_index: int) -> None:
        if not self.is_pending:
            raise InvalidApprovalTransitionError(self.status.value, self.status.value)
        if step_index <= self.current_step_index:
            raise ValueError(
                f"cannot move from step {self.current_step_index} to step {step_index}"
            )
        self.current_step_index = step_index

    def complete(
        self,
        status: ApprovalStatus,
        now: datetime,
        *,
        completed_by_id: str | None = None,
        reason: str | None = None,
    ) -> None:
        """Move to a terminal status and stamp completion metadata."""
        if not can_transition(self.status, status):
            raise InvalidApprovalTransitionError(self.status.value, status.value)
        self.status = status
        self.completed_at = now
        self.completed_by_id = completed_by_id
        self.completion_reason = reason
        self.total_response_time_minutes = max(
            0, int((now - self.created_at).total_seconds() // 60)
        )
        self.sla_violated = self.is_overdue(now)

    def cancel(self, now: datetime, *, cancelled_by_id: str | None = None, reason: str | None = None) -> None:
        if not self.can_be_cancelled():
            raise InvalidApprovalTransitionError(self.status.value, ApprovalStatus.CANCELLED.value)
        self.complete(ApprovalStatus.CANCELLED, now, completed_by_id=cancelled_by_id, reason=reason)

    def expire(self, now: datetime, reason: str = "sla_expired") -> None:
        self.complete(ApprovalStatus.EXPIRED, now, reason=reason)

    # ------------------------------------------------------------------
    # Change tracking for store patches
    # ------------------------------------------------------------------

    def snapshot(self) -> dict[str, Any]:
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        values["entity_data"] = dict(self.entity_data)
        return values

    def changes_since(self, snapshot: dict[str, Any]) -> dict[str, Any]:
        """Fields whose value differs from ``snapshot`` (``version`` excluded)."""
        current = self.snapshot()
        return {
            name: value
            for name, value in current.items()
            if name != "version" and snapshot.get(name) != value
        }
