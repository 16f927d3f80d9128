"""
approval_engines.decision_processor -- Apply one approver decision.

Responsibility:
    Validate a decision against the instance, its current step and prior
    decisions, build the immutable decision record and drive the step and
    instance state machines (advance to the next step, or complete the
    instance).

Architecture position:
    Engines -- calculation layer, zero I/O.  The permission resolver is an
    injected collaborator; persistence of the outcome is the caller's job.
    Inputs are never mutated: the outcome carries updated copies.

Invariants enforced:
    - Decisions only on pending instances, on the instance's current step.
    - One approve/reject per approver per step.
    - Rejection requires comments; delegation requires target and reason.
    - Delegated and escalated decisions never change step counts.
    - An approved last step completes the instance ``approved``; any
      rejected step completes it ``rejected`` immediately.

Failure modes:
    - InstanceAlreadyProcessedError: instance not pending.
    - InvalidApprovalTransitionError: step is not the current open step.
    - UnauthorizedApproverError: permission resolver denied (no details).
    - DuplicateDecisionError: approver already approved/rejected this step.
    - InvalidDecisionError: malformed decision fields.
"""

from __future__ import annotations

import copy
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

from approval_engines.tracer import traced_engine
from approval_kernel.domain.approval import (
    ApprovalDecisionRecord,
    ApprovalRule,
    ApprovalStatus,
    DecisionApproverType,
    DecisionKind,
)
from approval_kernel.domain.instance import ApprovalInstance
from approval_kernel.domain.ports import PermissionResolver
from approval_kernel.domain.step import ApprovalStep
from approval_kernel.exceptions import (
    DuplicateDecisionError,
    FieldError,
    InstanceAlreadyProcessedError,
    InvalidApprovalTransitionError,
    InvalidDecisionError,
    UnauthorizedApproverError,
)
from approval_kernel.logging_config import get_logger

logger = get_logger("engines.decision_processor")

_VOTING_KINDS = frozenset({DecisionKind.APPROVED, DecisionKind.REJECTED})


@dataclass(frozen=True)
class DecisionCommand:
    """What an approver submitted."""

    decision: DecisionKind
    approver_id: str
    comments: str = ""
    approver_type: DecisionApproverType = DecisionApproverType.USER
    reason_code: str | None = None
    delegated_to_id: str | None = None
    delegation_reason: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class DecisionOutcome:
    decision: ApprovalDecisionRecord
    instance: ApprovalInstance
    step: ApprovalStep
    next_step: ApprovalStep | None = None
    instance_completed: bool = False


class DecisionProcessor:
    """Applies decisions using an injected permission resolver."""

    def __init__(self, permission_resolver: PermissionResolver) -> None:
        self._permissions = permission_resolver

    @traced_engine("decision_processor", "1.0")
    def process(
        self,
        *,
        instance: ApprovalInstance,
        step: ApprovalStep,
        rule: ApprovalRule,
        command: DecisionCommand,
        prior_decisions: Sequence[ApprovalDecisionRecord],
        now: datetime,
    ) -> DecisionOutcome:
        self._check_preconditions(instance, step, command, prior_decisions)

        record = self._build_record(instance, step, command, now)

        instance = copy.deepcopy(instance)
        step = copy.deepcopy(step)
        instance.updated_at = now
        next_step: ApprovalStep | None = None

        if command.decision is DecisionKind.APPROVED:
            if step.record_approval(now) is ApprovalStatus.APPROVED:
                next_step = self._advance_or_complete(instance, step, rule, command, now)
        elif command.decision is DecisionKind.REJECTED:
            if step.record_rejection(now) is ApprovalStatus.REJECTED:
                instance.complete(
                    ApprovalStatus.REJECTED,
                    now,
                    completed_by_id=command.approver_id,
                    reason=command.reason_code or "rejected",
                )
        elif command.decision is DecisionKind.ESCALATED:
            instance.mark_escalated(now, advance_level=False)
        # DELEGATED: recorded only; counts unchanged.

        completed = instance.is_completed()
        logger.info(
            "approval_decision_processed",
            extra={
                "instance_id": str(instance.id),
                "step_id": str(step.id),
                "decision": command.decision.value,
                "approver_id": command.approver_id,
                "step_status": step.status.value,
                "instance_status": instance.status.value,
                "instance_completed": completed,
            },
        )
        return DecisionOutcome(
            decision=record,
            instance=instance,
            step=step,
            next_step=next_step,
            instance_completed=completed,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check_preconditions(
        self,
        instance: ApprovalInstance,
        step: ApprovalStep,
        command: DecisionCommand,
        prior_decisions: Sequence[ApprovalDecisionRecord],
    ) -> None:
        if not instance.is_pending:
            raise InstanceAlreadyProcessedError(str(instance.id), instance.status.value)

        if step.instance_id != instance.id or step.step_index != instance.current_step_index:
            raise InvalidApprovalTransitionError(step.status.value, command.decision.value, "step")
        if step.is_terminal:
            raise InvalidApprovalTransitionError(step.status.value, command.decision.value, "step")

        if not self._permissions.can_approve(instance, step, command.approver_id):
            logger.warning(
                "approval_decision_unauthorized",
                extra={"instance_id": str(instance.id), "step_id": str(step.id)},
            )
            raise UnauthorizedApproverError()

        if command.decision in _VOTING_KINDS:
            for prior in prior_decisions:
                if (
                    prior.step_id == step.id
                    and prior.approver_id == command.approver_id
                    and prior.decision in _VOTING_KINDS
                ):
                    raise DuplicateDecisionError(str(step.id), command.approver_id)

        if command.decision is DecisionKind.DELEGATED:
            errors = []
            if not command.delegated_to_id:
                errors.append(FieldError("delegated_to_id", "required for delegated decisions"))
            if not command.delegation_reason or not command.delegation_reason.strip():
                errors.append(FieldError("delegation_reason", "required for delegated decisions"))
            if errors:
                raise InvalidDecisionError(errors)

    def _build_record(
        self,
        instance: ApprovalInstance,
        step: ApprovalStep,
        command: DecisionCommand,
        now: datetime,
    ) -> ApprovalDecisionRecord:
        started = step.started_at or instance.created_at
        response_minutes = max(0, int((now - started).total_seconds() // 60))
        return ApprovalDecisionRecord(
            tenant_id=instance.tenant_id,
            instance_id=instance.id,
            step_id=step.id,
            approver_id=command.approver_id,
            decision=command.decision,
            approver_type=command.approver_type,
            comments=command.comments or "",
            reason_code=command.reason_code,
            delegated_to_id=command.delegated_to_id,
            delegation_reason=command.delegation_reason,
            response_time_minutes=response_minutes,
            ip_address=command.ip_address,
            user_agent=command.user_agent,
            created_at=now,
        )

    def _advance_or_complete(
        self,
        instance: ApprovalInstance,
        step: ApprovalStep,
        rule: ApprovalRule,
        command: DecisionCommand,
        now: datetime,
    ) -> ApprovalStep | None:
        next_index = step.step_index + 1
        next_config = rule.step_config(next_index)
        if next_config is None:
            instance.complete(
                ApprovalStatus.APPROVED,
                now,
                completed_by_id=command.approver_id,
                reason="approved",
            )
            return None

        next_step = ApprovalStep.from_config(
            next_config,
            instance_id=instance.id,
            tenant_id=instance.tenant_id,
            step_index=next_index,
        )
        next_step.start(now, fallback_deadline=instance.sla_deadline)
        instance.advance_to(next_index)
        logger.info(
            "approval_step_advanced",
            extra={
                "instance_id": str(instance.id),
                "from_step": step.step_index,
                "to_step": next_index,
            },
        )
        return next_step
