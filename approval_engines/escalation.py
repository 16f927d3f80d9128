"""
approval_engines.escalation -- Reminder / escalation / timeout sweep.

Responsibility:
    Inspect pending instances as of ``now`` and produce the
    ``EscalationAction`` list a notifier should deliver: reminders at
    configured SLA thresholds, escalations once the SLA is breached, and a
    terminal auto-approve or expire after the grace period.  Also provides
    ``apply_action`` which performs the state change for one action after
    re-checking that it is still due.

Architecture position:
    Engines -- calculation layer, zero I/O, no clock access.
    ``plan`` has no side effects.  ``apply_action`` mutates the instance
    and step it is handed; callers pass working copies and persist them.

Invariants enforced:
    - No double-firing: reminder actions carry ``reminder_index`` and
      escalation actions carry ``escalation_level``; ``apply_action``
      skips an action whose index no longer matches the instance.
    - An overdue instance (``now > deadline + grace``) yields only its
      terminal action.
    - Output order: priority (urgent first), then ``due_at``, then
      instance id.

Failure modes:
    - ValueError from EscalationConfig for thresholds outside (0, 100],
      unsorted thresholds or a negative grace period.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta

from approval_engines.tracer import traced_engine
from approval_kernel.domain.approval import (
    ActionPriority,
    ApprovalRule,
    ApprovalStatus,
    EscalationAction,
    EscalationActionType,
    SlaStatus,
)
from approval_kernel.domain.instance import ApprovalInstance
from approval_kernel.domain.step import ApprovalStep
from approval_kernel.logging_config import get_logger

logger = get_logger("engines.escalation")

AUTO_APPROVED_ON_TIMEOUT = "auto_approved_on_timeout"
SLA_EXPIRED = "sla_expired"


@dataclass(frozen=True)
class EscalationConfig:
    """Per-tenant sweep policy, passed by value."""

    reminder_thresholds: tuple[float, ...] = (75, 90)
    warning_percentage: float = 75
    auto_escalation_enabled: bool = True
    auto_approve_on_timeout: bool = False
    expiration_grace_hours: float = 24

    def __post_init__(self) -> None:
        for threshold in self.reminder_thresholds:
            if not 0 < threshold <= 100:
                raise ValueError(f"reminder threshold {threshold} outside (0, 100]")
        if list(self.reminder_thresholds) != sorted(self.reminder_thresholds):
            raise ValueError("reminder_thresholds must be ascending")
        if not 0 < self.warning_percentage <= 100:
            raise ValueError("warning_percentage must be in (0, 100]")
        if self.expiration_grace_hours < 0:
            raise ValueError("expiration_grace_hours cannot be negative")


DEFAULT_ESCALATION_CONFIG = EscalationConfig()


@dataclass(frozen=True)
class SweepItem:
    """One pending instance with its governing rule and current step."""

    instance: ApprovalInstance
    rule: ApprovalRule
    step: ApprovalStep | None = None


def action_priority(instance: ApprovalInstance, sla_elapsed: float) -> ActionPriority:
    if sla_elapsed >= 100 or instance.urgency_level == 1:
        return ActionPriority.URGENT
    if instance.urgency_level == 2 or sla_elapsed >= 90:
        return ActionPriority.HIGH
    if instance.urgency_level == 3 or sla_elapsed >= 75:
        return ActionPriority.MEDIUM
    return ActionPriority.LOW


def _threshold_instant(instance: ApprovalInstance, threshold: float) -> datetime:
    started = instance.sla_started or instance.created_at
    return started + (instance.sla_deadline - started) * (threshold / 100)


class EscalationScheduler:
    """Plans escalation actions for a batch of pending instances."""

    @traced_engine("escalation", "1.0")
    def plan(
        self,
        *,
        items: Iterable[SweepItem],
        config: EscalationConfig = DEFAULT_ESCALATION_CONFIG,
        now: datetime,
    ) -> list[EscalationAction]:
        actions: list[EscalationAction] = []
        for item in items:
            actions.extend(self._plan_one(item, config, now))
        actions.sort(key=lambda a: (a.priority.rank, a.due_at, str(a.instance_id)))
        logger.info(
            "escalation_sweep_planned",
            extra={
                "action_count": len(actions),
                "reminders": sum(1 for a in actions if a.type is EscalationActionType.REMINDER),
                "escalations": sum(1 for a in actions if a.type is EscalationActionType.ESCALATION),
                "terminal": sum(
                    1 for a in actions
                    if a.type in (EscalationActionType.AUTO_APPROVE, EscalationActionType.EXPIRE)
                ),
            },
        )
        return actions

    def _plan_one(self, item: SweepItem, config: EscalationConfig, now: datetime) -> list[EscalationAction]:
        instance = item.instance
        if not instance.is_pending or instance.sla_deadline is None:
            return []

        deadline = instance.sla_deadline
        elapsed = instance.calculate_sla_elapsed(now)
        priority = action_priority(instance, elapsed)
        step_id = item.step.id if item.step is not None else None

        def make(kind: EscalationActionType, due_at: datetime, description: str, **metadata) -> EscalationAction:
            return EscalationAction(
                type=kind,
                instance_id=instance.id,
                tenant_id=instance.tenant_id,
                priority=priority,
                due_at=due_at,
                description=description,
                step_id=step_id,
                metadata=metadata,
            )

        grace_end = deadline + timedelta(hours=config.expiration_grace_hours)
        if now > grace_end:
            if config.auto_approve_on_timeout:
                return [make(
                    EscalationActionType.AUTO_APPROVE,
                    grace_end,
                    f"Auto-approve {instance.entity_type.value} {instance.entity_id}: SLA timed out",
                )]
            return [make(
                EscalationActionType.EXPIRE,
                grace_end,
                f"Expire approval for {instance.entity_type.value} {instance.entity_id}: SLA timed out",
            )]

        planned: list[EscalationAction] = []

        if instance.should_send_reminder(now, config.reminder_thresholds):
            threshold = instance.next_reminder_threshold(config.reminder_thresholds)
            planned.append(make(
                EscalationActionType.REMINDER,
                _threshold_instant(instance, threshold),
                f"Reminder: approval for {instance.entity_type.value} {instance.entity_id} "
                f"has used {threshold:g}% of its SLA",
                reminder_index=instance.reminders_sent,
                threshold=threshold,
            ))

        escalation = self._plan_escalation(item, config, now)
        if escalation is not None:
            level, due_at, target = escalation
            metadata = {"escalation_level": level}
            if target is not None:
                metadata["target_type"] = target.type.value
                metadata["target_identifier"] = target.identifier
            planned.append(make(
                EscalationActionType.ESCALATION,
                due_at,
                f"Escalate approval for {instance.entity_type.value} {instance.entity_id} "
                f"to level {level}",
                **metadata,
            ))
        return planned

    def _plan_escalation(self, item: SweepItem, config: EscalationConfig, now: datetime):
        instance, rule = item.instance, item.rule
        settings = rule.escalation_settings
        if not (config.auto_escalation_enabled and settings.enabled):
            return None
        breached = (
            instance.is_sla_breached()
            or instance.projected_sla_status(now, config.warning_percentage) is SlaStatus.BREACHED
        )
        if not breached:
            return None

        done = instance.escalation_level
        if not settings.levels:
            # A rule without levels escalates once, at the deadline.
            if done > 0:
                return None
            return 1, instance.sla_deadline, None
        if done >= len(settings.levels):
            return None
        level = settings.levels[done]
        due_at = instance.sla_deadline + timedelta(hours=level.after_hours)
        if now < due_at:
            return None
        return done + 1, due_at, level.target


def apply_action(
    action: EscalationAction,
    instance: ApprovalInstance,
    step: ApprovalStep | None,
    now: datetime,
) -> bool:
    """Perform the state change for ``action`` if it is still due.

    Returns False (and changes nothing) when the action is stale: the
    instance is no longer pending, or the reminder/escalation it carries
    was already applied.
    """
    if not instance.is_pending:
        return False

    if action.type is EscalationActionType.REMINDER:
        if action.metadata.get("reminder_index") != instance.reminders_sent:
            return False
        instance.record_reminder(now)
    elif action.type is EscalationActionType.ESCALATION:
        if action.metadata.get("escalation_level") != instance.escalation_level + 1:
            return False
        instance.mark_escalated(now)
    elif action.type is EscalationActionType.AUTO_APPROVE:
        if step is not None and step.is_pending:
            step.force_approve(now)
        instance.complete(ApprovalStatus.APPROVED, now, reason=AUTO_APPROVED_ON_TIMEOUT)
    elif action.type is EscalationActionType.EXPIRE:
        if step is not None and step.is_pending:
            step.expire(now)
        instance.expire(now, reason=SLA_EXPIRED)
    else:
        return False

    instance.updated_at = now
    return True
