"""
approval_services.escalation_service -- Periodic SLA sweep.

Responsibility:
    Refreshes the stored SLA status of every pending instance of a
    tenant, asks the EscalationScheduler what is due, applies each action
    to a freshly loaded instance, and hands the applied actions to the
    notifier.

Architecture position:
    Services layer.  Intended to be driven by a scheduler (cron, worker
    beat); one ``run_sweep`` call per tenant per tick.

Invariants enforced:
    - Each action is applied through ``apply_action`` on the latest
      stored version, so an action made stale by a concurrent decision or
      an earlier sweep is skipped instead of double-fired.
    - Instance writes carry ``expected_version``; a lost race skips the
      action and is logged, never retried in the same sweep.
    - Auto-approval on timeout appends an ``automated`` decision to the
      decision log.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from approval_engines.escalation import (
    AUTO_APPROVED_ON_TIMEOUT,
    EscalationConfig,
    EscalationScheduler,
    SweepItem,
    apply_action,
)
from approval_kernel.domain.approval import (
    ApprovalDecisionRecord,
    DecisionApproverType,
    DecisionKind,
    EscalationAction,
    EscalationActionType,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.instance import ApprovalInstance
from approval_kernel.domain.ports import (
    DecisionStore,
    InstanceStore,
    LoggingNotifier,
    Notifier,
    RuleSource,
)
from approval_kernel.domain.step import ApprovalStep
from approval_kernel.exceptions import OptimisticLockError
from approval_kernel.logging_config import LogContext, get_logger

logger = get_logger("services.escalation_service")

SYSTEM_APPROVER_ID = "system"


@dataclass(frozen=True)
class SweepReport:
    planned: tuple[EscalationAction, ...] = ()
    applied: tuple[EscalationAction, ...] = ()
    skipped: tuple[EscalationAction, ...] = ()
    refreshed: int = 0
    errors: tuple[str, ...] = ()


class EscalationService:
    def __init__(
        self,
        *,
        instance_store: InstanceStore,
        rule_source: RuleSource,
        decision_store: DecisionStore,
        notifier: Notifier | None = None,
        clock: Clock | None = None,
        config: EscalationConfig | None = None,
        scheduler: EscalationScheduler | None = None,
    ) -> None:
        self._instances = instance_store
        self._rules = rule_source
        self._decisions = decision_store
        self._notifier = notifier or LoggingNotifier()
        self._clock = clock or SystemClock()
        self._config = config or EscalationConfig()
        self._scheduler = scheduler or EscalationScheduler()

    def run_sweep(self, tenant_id: str) -> SweepReport:
        with LogContext.bind(tenant_id=tenant_id):
            now = self._clock.now()
            pending = self._instances.find_pending(tenant_id)
            refreshed = 0
            errors: list[str] = []

            items: list[SweepItem] = []
            for instance in pending:
                try:
                    instance, changed = self._refresh_sla(instance, now)
                except OptimisticLockError as exc:
                    errors.append(str(exc))
                    continue
                refreshed += int(changed)
                rule = self._rules.find_by_id(instance.rule_id, tenant_id)
                if rule is None:
                    logger.warning(
                        "escalation_rule_missing",
                        extra={"instance_id": str(instance.id), "rule_id": str(instance.rule_id)},
                    )
                    continue
                items.append(SweepItem(
                    instance=instance,
                    rule=rule,
                    step=self._current_step(instance),
                ))

            planned = self._scheduler.plan(items=items, config=self._config, now=now)

            applied: list[EscalationAction] = []
            skipped: list[EscalationAction] = []
            for action in planned:
                try:
                    done = self._apply(action, now)
                except OptimisticLockError as exc:
                    logger.warning(
                        "escalation_action_conflict",
                        extra={"instance_id": str(action.instance_id), "action_type": action.type.value},
                    )
                    errors.append(str(exc))
                    done = False
                (applied if done else skipped).append(action)

            if applied:
                self._notifier.notify(applied)

            logger.info(
                "escalation_sweep_completed",
                extra={
                    "pending_count": len(pending),
                    "planned": len(planned),
                    "applied": len(applied),
                    "skipped": len(skipped),
                    "refreshed": refreshed,
                },
            )
            return SweepReport(
                planned=tuple(planned),
                applied=tuple(applied),
                skipped=tuple(skipped),
                refreshed=refreshed,
                errors=tuple(errors),
            )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _refresh_sla(self, instance: ApprovalInstance, now: datetime) -> tuple[ApprovalInstance, bool]:
        before = instance.snapshot()
        instance.refresh_sla(now, self._config.warning_percentage)
        patch = instance.changes_since(before)
        if not patch:
            return instance, False
        updated = self._instances.update(
            instance.id, instance.tenant_id, patch, expected_version=instance.version,
        )
        return updated, True

    def _current_step(self, instance: ApprovalInstance) -> ApprovalStep | None:
        for step in self._instances.find_steps(instance.id, instance.tenant_id):
            if step.step_index == instance.current_step_index:
                return step
        return None

    def _apply(self, action: EscalationAction, now: datetime) -> bool:
        instance = self._instances.find_by_id(action.instance_id, action.tenant_id)
        if instance is None:
            return False
        step = self._current_step(instance)
        before = instance.snapshot()
        if not apply_action(action, instance, step, now):
            return False

        self._instances.update(
            instance.id,
            instance.tenant_id,
            instance.changes_since(before),
            expected_version=instance.version,
        )
        if step is not None and action.type in (
            EscalationActionType.AUTO_APPROVE,
            EscalationActionType.EXPIRE,
        ):
            self._instances.update_step(step)
        if action.type is EscalationActionType.AUTO_APPROVE and step is not None:
            self._record_auto_approval(instance, step.id, now)

        logger.info(
            "escalation_action_applied",
            extra={
                "instance_id": str(instance.id),
                "action_type": action.type.value,
                "priority": action.priority.value,
                "status": instance.status.value,
            },
        )
        return True

    def _record_auto_approval(self, instance: ApprovalInstance, step_id: UUID, now: datetime) -> None:
        started = instance.sla_started or instance.created_at
        self._decisions.create_decision(ApprovalDecisionRecord(
            tenant_id=instance.tenant_id,
            instance_id=instance.id,
            step_id=step_id,
            approver_id=SYSTEM_APPROVER_ID,
            decision=DecisionKind.APPROVED,
            approver_type=DecisionApproverType.AUTOMATED,
            comments="Auto-approved after the SLA grace period elapsed",
            reason_code=AUTO_APPROVED_ON_TIMEOUT,
            response_time_minutes=max(0, int((now - started).total_seconds() // 60)),
            created_at=now,
        ))
