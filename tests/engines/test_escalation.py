"""
Tests for the escalation sweep planner and action applier.

Tests cover:
- Reminder thresholds fire once each
- Escalation levels fire in order after the SLA is breached
- Overdue instances yield only the terminal action
- Ordering of the planned actions
- Staleness checks in apply_action
"""

from datetime import datetime, timedelta, timezone

import pytest

from approval_engines.escalation import (
    AUTO_APPROVED_ON_TIMEOUT,
    EscalationConfig,
    EscalationScheduler,
    SweepItem,
    action_priority,
    apply_action,
)
from approval_kernel.domain.approval import (
    ActionPriority,
    ApprovalRule,
    ApprovalStatus,
    ApprovalStepConfig,
    ApproverConfig,
    ApproverType,
    DecisionMode,
    EscalationActionType,
    EscalationLevel,
    EscalationSettings,
    ModuleType,
    QueryCondition,
)
from approval_kernel.domain.instance import ApprovalInstance
from approval_kernel.domain.step import ApprovalStep

NOW = datetime(2024, 1, 1, 0, 0, tzinfo=timezone.utc)


# =========================================================================
# Factory helpers
# =========================================================================


def make_rule(levels=(), enabled=True) -> ApprovalRule:
    return ApprovalRule(
        tenant_id="tenant-a",
        name="rule",
        module_type=ModuleType.TICKETS,
        query_conditions=(QueryCondition("priority", "EXISTS"),),
        steps=(
            ApprovalStepConfig(
                "lead", DecisionMode.ALL, (ApproverConfig(ApproverType.USER, "lead"),),
            ),
        ),
        escalation_settings=EscalationSettings(enabled=enabled, levels=tuple(levels)),
    )


def make_item(rule: ApprovalRule, entity_id: str = "T-1", urgency: int = 3, sla_hours: float = 10):
    instance = ApprovalInstance(
        tenant_id="tenant-a",
        rule_id=rule.id,
        entity_type=ModuleType.TICKETS,
        entity_id=entity_id,
        requested_by_id="alice",
        created_at=NOW,
        urgency_level=urgency,
        sla_started=NOW,
        sla_deadline=NOW + timedelta(hours=sla_hours),
    )
    step = ApprovalStep.from_config(
        rule.steps[0], instance_id=instance.id, tenant_id="tenant-a", step_index=0,
    )
    step.start(NOW, fallback_deadline=instance.sla_deadline)
    return SweepItem(instance=instance, rule=rule, step=step)


def level(after_hours: float, who: str = "director") -> EscalationLevel:
    return EscalationLevel(after_hours=after_hours, target=ApproverConfig(ApproverType.USER, who))


def plan(items, config=EscalationConfig(), hours: float = 0):
    return EscalationScheduler().plan(items=items, config=config, now=NOW + timedelta(hours=hours))


# =========================================================================
# 1. Config validation
# =========================================================================


class TestEscalationConfig:

    @pytest.mark.parametrize("kwargs", [
        {"reminder_thresholds": (0,)},
        {"reminder_thresholds": (90, 75)},
        {"reminder_thresholds": (101,)},
        {"warning_percentage": 0},
        {"expiration_grace_hours": -1},
    ])
    def test_invalid_config_rejected(self, kwargs):
        with pytest.raises(ValueError):
            EscalationConfig(**kwargs)


# =========================================================================
# 2. Reminders
# =========================================================================


class TestReminders:

    def test_nothing_before_first_threshold(self):
        assert plan([make_item(make_rule())], hours=5) == []

    def test_reminder_at_threshold(self):
        actions = plan([make_item(make_rule(enabled=False))], hours=7.5)

        assert [a.type for a in actions] == [EscalationActionType.REMINDER]
        assert actions[0].metadata == {"reminder_index": 0, "threshold": 75}
        assert actions[0].due_at == NOW + timedelta(hours=7.5)

    def test_reminder_fires_once_per_threshold(self):
        item = make_item(make_rule(enabled=False))
        first = plan([item], hours=8)[0]
        assert apply_action(first, item.instance, item.step, NOW + timedelta(hours=8))

        assert plan([item], hours=8.5) == []
        assert plan([item], hours=9)[0].metadata["reminder_index"] == 1

    def test_applying_same_reminder_twice_is_stale(self):
        item = make_item(make_rule(enabled=False))
        action = plan([item], hours=8)[0]
        assert apply_action(action, item.instance, item.step, NOW)
        assert not apply_action(action, item.instance, item.step, NOW)
        assert item.instance.reminders_sent == 1


# =========================================================================
# 3. Escalation
# =========================================================================


class TestEscalation:

    def test_rule_without_levels_escalates_once_at_deadline(self):
        item = make_item(make_rule())
        actions = [a for a in plan([item], hours=11) if a.type is EscalationActionType.ESCALATION]

        assert len(actions) == 1
        assert actions[0].due_at == item.instance.sla_deadline
        apply_action(actions[0], item.instance, item.step, NOW + timedelta(hours=11))
        assert not [a for a in plan([item], hours=12) if a.type is EscalationActionType.ESCALATION]

    def test_levels_fire_in_order(self):
        item = make_item(make_rule(levels=[level(0, "manager"), level(4, "director")]))

        first = [a for a in plan([item], hours=11) if a.type is EscalationActionType.ESCALATION]
        assert first[0].metadata["escalation_level"] == 1
        assert first[0].metadata["target_identifier"] == "manager"
        apply_action(first[0], item.instance, item.step, NOW + timedelta(hours=11))

        assert not [a for a in plan([item], hours=13) if a.type is EscalationActionType.ESCALATION]

        second = [a for a in plan([item], hours=14) if a.type is EscalationActionType.ESCALATION]
        assert second[0].metadata["escalation_level"] == 2
        assert second[0].metadata["target_identifier"] == "director"

    def test_disabled_by_config(self):
        item = make_item(make_rule())
        config = EscalationConfig(auto_escalation_enabled=False)
        assert not [a for a in plan([item], config, hours=11) if a.type is EscalationActionType.ESCALATION]

    def test_stale_escalation_level_not_applied(self):
        item = make_item(make_rule(levels=[level(0)]))
        action = [a for a in plan([item], hours=11) if a.type is EscalationActionType.ESCALATION][0]
        item.instance.escalation_level = 1
        assert not apply_action(action, item.instance, item.step, NOW)


# =========================================================================
# 4. Terminal actions
# =========================================================================


class TestTerminalActions:

    def test_overdue_instance_expires_only(self):
        item = make_item(make_rule())
        actions = plan([item], EscalationConfig(expiration_grace_hours=2), hours=13)

        assert [a.type for a in actions] == [EscalationActionType.EXPIRE]
        assert actions[0].due_at == NOW + timedelta(hours=12)

        assert apply_action(actions[0], item.instance, item.step, NOW + timedelta(hours=13))
        assert item.instance.status is ApprovalStatus.EXPIRED
        assert item.step.status is ApprovalStatus.EXPIRED

    def test_auto_approve_on_timeout(self):
        item = make_item(make_rule())
        config = EscalationConfig(auto_approve_on_timeout=True, expiration_grace_hours=0)
        actions = plan([item], config, hours=10.5)

        assert [a.type for a in actions] == [EscalationActionType.AUTO_APPROVE]
        apply_action(actions[0], item.instance, item.step, NOW + timedelta(hours=10.5))
        assert item.instance.status is ApprovalStatus.APPROVED
        assert item.instance.completion_reason == AUTO_APPROVED_ON_TIMEOUT
        assert item.step.status is ApprovalStatus.APPROVED

    def test_completed_instance_plans_nothing(self):
        item = make_item(make_rule())
        item.instance.cancel(NOW)
        assert plan([item], hours=100) == []


# =========================================================================
# 5. Ordering and priority
# =========================================================================


class TestOrdering:

    @pytest.mark.parametrize("urgency,elapsed,expected", [
        (3, 100, ActionPriority.URGENT),
        (1, 10, ActionPriority.URGENT),
        (2, 10, ActionPriority.HIGH),
        (4, 95, ActionPriority.HIGH),
        (3, 10, ActionPriority.MEDIUM),
        (4, 80, ActionPriority.MEDIUM),
        (5, 10, ActionPriority.LOW),
    ])
    def test_action_priority(self, urgency, elapsed, expected):
        item = make_item(make_rule(), urgency=urgency)
        assert action_priority(item.instance, elapsed) is expected

    def test_actions_sorted_by_priority(self):
        calm = make_item(make_rule(enabled=False), "T-calm", urgency=5)
        urgent = make_item(make_rule(enabled=False), "T-urgent", urgency=1)
        early = make_item(make_rule(enabled=False), "T-early", urgency=5, sla_hours=8)

        actions = plan([calm, early, urgent], hours=7.9)

        assert [a.instance_id for a in actions] == [
            urgent.instance.id, early.instance.id, calm.instance.id,
        ]
