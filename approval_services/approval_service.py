"""
approval_services.approval_service -- Approval request and decision lifecycle.

Responsibility:
    Orchestrates the lifecycle of approval instances: requirement checks,
    instance creation (including the auto-approval path), decision
    processing, cancellation and read models.  Delegates rule matching,
    SLA arithmetic and decision aggregation to the pure engines.

Architecture position:
    Services layer.  May import from approval_engines/, approval_config/
    and approval_kernel/.  The only layer that touches stores and the
    clock.

Invariants enforced:
    - At most one pending instance per (tenant, entity_type, entity_id).
    - Every instance write goes through ``InstanceStore.update`` with the
      version read at the start of the operation (optimistic locking).
    - The instance update is written before the step and decision, so a
      lost race leaves no partial decision behind.

Failure modes:
    - NoApplicableRuleError when no rule matches the entity.
    - DuplicateApprovalInstanceError when a pending instance exists.
    - RuleNotFoundError / InstanceNotFoundError / StepNotFoundError.
    - Everything DecisionProcessor raises.
    - OptimisticLockError on a concurrent instance write.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Mapping, Sequence
from uuid import UUID

from approval_config.schema import EngineConfig
from approval_engines.conditions import ConditionEvaluator
from approval_engines.decision_processor import (
    DecisionCommand,
    DecisionOutcome,
    DecisionProcessor,
)
from approval_engines.metrics import DashboardMetrics, compute_dashboard
from approval_engines.rule_matcher import RuleMatcher, RuleMatchResult
from approval_engines.sla import SlaCalculator, effective_sla_hours
from approval_kernel.domain.approval import (
    ApprovalDecisionRecord,
    ApprovalRule,
    ApprovalStatus,
    DecisionApproverType,
    DecisionKind,
    ModuleType,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.instance import ApprovalInstance
from approval_kernel.domain.ports import (
    AllowAllPermissionResolver,
    DecisionStore,
    InstanceStore,
    PermissionResolver,
    RuleSource,
)
from approval_kernel.domain.step import ApprovalStep
from approval_kernel.exceptions import (
    DuplicateApprovalInstanceError,
    InstanceNotFoundError,
    InvalidApprovalTransitionError,
    RuleNotFoundError,
    StepNotFoundError,
    ValidationError,
)
from approval_kernel.logging_config import LogContext, get_logger

logger = get_logger("services.approval_service")

AUTO_APPROVED = "auto_approved"


@dataclass(frozen=True)
class ApprovalRequestResult:
    instance: ApprovalInstance
    rule: ApprovalRule
    match: RuleMatchResult
    first_step: ApprovalStep | None = None

    @property
    def auto_approved(self) -> bool:
        return self.instance.completion_reason == AUTO_APPROVED


@dataclass(frozen=True)
class InstanceDetails:
    """Read model of one instance with its steps and decision log."""

    instance: ApprovalInstance
    rule: ApprovalRule | None
    steps: tuple[ApprovalStep, ...]
    decisions: tuple[ApprovalDecisionRecord, ...]
    sla_elapsed_percentage: float

    @property
    def current_step(self) -> ApprovalStep | None:
        for step in self.steps:
            if step.step_index == self.instance.current_step_index:
                return step
        return None


class ApprovalService:
    """Creates approval instances and applies decisions to them."""

    def __init__(
        self,
        *,
        rule_source: RuleSource,
        instance_store: InstanceStore,
        decision_store: DecisionStore,
        permission_resolver: PermissionResolver | None = None,
        clock: Clock | None = None,
        config: EngineConfig | None = None,
        evaluator: ConditionEvaluator | None = None,
    ) -> None:
        self._rules = rule_source
        self._instances = instance_store
        self._decisions = decision_store
        self._clock = clock or SystemClock()
        self._config = config or EngineConfig()
        self._matcher = RuleMatcher(evaluator)
        self._sla = SlaCalculator(self._config.calendar())
        self._processor = DecisionProcessor(permission_resolver or AllowAllPermissionResolver())

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def check_requirement(
        self,
        tenant_id: str,
        module_type: ModuleType,
        entity_data: Mapping[str, Any],
    ) -> RuleMatchResult:
        """Which rules would govern this entity (no side effects)."""
        rules = self._rules.find_applicable_rules(tenant_id, module_type, entity_data)
        return self._matcher.match(
            rules=rules,
            entity_data=entity_data,
            tenant_id=tenant_id,
            module_type=module_type,
        )

    def request_approval(
        self,
        *,
        tenant_id: str,
        module_type: ModuleType,
        entity_id: str,
        entity_data: Mapping[str, Any],
        requested_by_id: str,
        urgency_level: int = 3,
        request_reason: str | None = None,
        rule_id: UUID | None = None,
    ) -> ApprovalRequestResult:
        """Select the governing rule and open (or auto-approve) an instance."""
        with LogContext.bind(tenant_id=tenant_id, actor_id=requested_by_id):
            if isinstance(urgency_level, bool) or urgency_level not in range(1, 6):
                raise ValidationError.single("urgency_level", f"must be in 1..5, got {urgency_level!r}")

            existing = self._instances.find_pending_for_entity(tenant_id, module_type, entity_id)
            if existing:
                raise DuplicateApprovalInstanceError(module_type.value, entity_id, str(existing[0].id))

            result = self.check_requirement(tenant_id, module_type, entity_data)
            if rule_id is not None:
                override = self._rules.find_by_id(rule_id, tenant_id)
                if override is None:
                    raise RuleNotFoundError(str(rule_id))
                if override.module_type is not module_type:
                    raise ValidationError.single(
                        "rule_id", f"rule applies to {override.module_type.value}, not {module_type.value}",
                    )
                result = self._matcher.with_override(result, override, entity_data)

            match = result.require_governing(entity_id)
            rule = match.rule
            now = self._clock.now()

            instance = ApprovalInstance(
                tenant_id=tenant_id,
                rule_id=rule.id,
                entity_type=module_type,
                entity_id=entity_id,
                entity_data=dict(entity_data),
                requested_by_id=requested_by_id,
                request_reason=request_reason,
                urgency_level=urgency_level,
                created_at=now,
                updated_at=now,
            )

            if match.should_auto_approve:
                instance.complete(ApprovalStatus.APPROVED, now, reason=AUTO_APPROVED)
                created = self._instances.create(instance)
                logger.info(
                    "approval_auto_approved",
                    extra={
                        "instance_id": str(created.id),
                        "rule_id": str(rule.id),
                        "entity_type": module_type.value,
                        "entity_id": entity_id,
                    },
                )
                return ApprovalRequestResult(instance=created, rule=rule, match=result)

            deadline = self._sla.deadline(
                now,
                rule.sla_hours,
                urgency_level=urgency_level,
                business_hours_only=rule.business_hours_only,
            )
            instance.sla_started = now
            instance.sla_deadline = deadline
            created = self._instances.create(instance)

            step = ApprovalStep.from_config(
                rule.steps[0],
                instance_id=created.id,
                tenant_id=tenant_id,
                step_index=0,
            )
            step.start(now, fallback_deadline=deadline)
            first_step = self._instances.create_step(step)

            logger.info(
                "approval_requested",
                extra={
                    "instance_id": str(created.id),
                    "rule_id": str(rule.id),
                    "entity_type": module_type.value,
                    "entity_id": entity_id,
                    "urgency_level": urgency_level,
                    "effective_sla_hours": effective_sla_hours(rule.sla_hours, urgency_level),
                    "sla_deadline": deadline.isoformat(),
                    "match_count": len(result.matches),
                },
            )
            return ApprovalRequestResult(
                instance=created, rule=rule, match=result, first_step=first_step,
            )

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def process_decision(
        self,
        *,
        tenant_id: str,
        instance_id: UUID,
        approver_id: str,
        decision: DecisionKind,
        comments: str = "",
        step_id: UUID | None = None,
        approver_type: DecisionApproverType = DecisionApproverType.USER,
        reason_code: str | None = None,
        delegated_to_id: str | None = None,
        delegation_reason: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> DecisionOutcome:
        with LogContext.bind(tenant_id=tenant_id, instance_id=instance_id, actor_id=approver_id):
            instance = self._require_instance(instance_id, tenant_id)
            rule = self._rules.find_by_id(instance.rule_id, tenant_id)
            if rule is None:
                raise RuleNotFoundError(str(instance.rule_id))

            steps = self._instances.find_steps(instance_id, tenant_id)
            step = self._select_step(instance, steps, step_id)
            prior = self._decisions.find_by_instance(instance_id, tenant_id)

            outcome = self._processor.process(
                instance=instance,
                step=step,
                rule=rule,
                command=DecisionCommand(
                    decision=decision,
                    approver_id=approver_id,
                    comments=comments,
                    approver_type=approver_type,
                    reason_code=reason_code,
                    delegated_to_id=delegated_to_id,
                    delegation_reason=delegation_reason,
                    ip_address=ip_address,
                    user_agent=user_agent,
                ),
                prior_decisions=prior,
                now=self._clock.now(),
            )

            patch = outcome.instance.changes_since(instance.snapshot())
            updated = self._instances.update(
                instance_id, tenant_id, patch, expected_version=instance.version,
            )
            saved_step = self._instances.update_step(outcome.step)
            next_step = None
            if outcome.next_step is not None:
                next_step = self._instances.create_step(outcome.next_step)
            self._decisions.create_decision(outcome.decision)

            if outcome.instance_completed:
                logger.info(
                    "approval_completed",
                    extra={
                        "instance_id": str(instance_id),
                        "status": updated.status.value,
                        "response_minutes": updated.total_response_time_minutes,
                        "sla_violated": updated.sla_violated,
                    },
                )
            return replace(outcome, instance=updated, step=saved_step, next_step=next_step)

    def cancel_instance(
        self,
        *,
        tenant_id: str,
        instance_id: UUID,
        cancelled_by_id: str,
        reason: str | None = None,
    ) -> ApprovalInstance:
        with LogContext.bind(tenant_id=tenant_id, instance_id=instance_id, actor_id=cancelled_by_id):
            instance = self._require_instance(instance_id, tenant_id)
            if not instance.can_be_cancelled():
                raise InvalidApprovalTransitionError(
                    instance.status.value, ApprovalStatus.CANCELLED.value,
                )
            now = self._clock.now()
            before = instance.snapshot()
            instance.cancel(now, cancelled_by_id=cancelled_by_id, reason=reason or "cancelled")
            instance.updated_at = now
            updated = self._instances.update(
                instance_id, tenant_id, instance.changes_since(before), expected_version=instance.version,
            )
            for step in self._instances.find_steps(instance_id, tenant_id):
                if step.is_pending:
                    step.cancel(now)
                    self._instances.update_step(step)

            logger.info(
                "approval_cancelled",
                extra={"instance_id": str(instance_id), "reason": updated.completion_reason},
            )
            return updated

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_instance_details(self, tenant_id: str, instance_id: UUID) -> InstanceDetails:
        instance = self._require_instance(instance_id, tenant_id)
        return InstanceDetails(
            instance=instance,
            rule=self._rules.find_by_id(instance.rule_id, tenant_id),
            steps=tuple(self._instances.find_steps(instance_id, tenant_id)),
            decisions=tuple(self._decisions.find_by_instance(instance_id, tenant_id)),
            sla_elapsed_percentage=instance.calculate_sla_elapsed(self._clock.now()),
        )

    def list_pending_for_user(self, tenant_id: str, user_id: str) -> list[ApprovalInstance]:
        return self._instances.find_pending_by_user(tenant_id, user_id)

    def list_needing_reminder(self, tenant_id: str) -> list[ApprovalInstance]:
        return self._instances.find_needing_reminder(
            tenant_id, self._clock.now(), self._config.escalation.reminder_thresholds,
        )

    def dashboard(self, tenant_id: str) -> DashboardMetrics:
        return compute_dashboard(self._instances.find_by_tenant(tenant_id), self._clock.now())

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_instance(self, instance_id: UUID, tenant_id: str) -> ApprovalInstance:
        instance = self._instances.find_by_id(instance_id, tenant_id)
        if instance is None:
            raise InstanceNotFoundError(str(instance_id))
        return instance

    @staticmethod
    def _select_step(
        instance: ApprovalInstance,
        steps: Sequence[ApprovalStep],
        step_id: UUID | None,
    ) -> ApprovalStep:
        for step in steps:
            if step_id is not None and step.id == step_id:
                return step
            if step_id is None and step.step_index == instance.current_step_index:
                return step
        raise StepNotFoundError(
            str(instance.id),
            str(step_id) if step_id is not None else f"index {instance.current_step_index}",
        )
