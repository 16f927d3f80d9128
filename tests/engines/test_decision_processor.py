"""
Tests for DecisionProcessor: preconditions, step aggregation, advancing
between steps and instance completion.
"""

from datetime import datetime, timedelta, timezone

import pytest

from approval_engines.decision_processor import DecisionCommand, DecisionProcessor
from approval_kernel.domain.approval import (
    ApprovalRule,
    ApprovalStatus,
    ApprovalStepConfig,
    ApproverConfig,
    ApproverType,
    DecisionKind,
    DecisionMode,
    ModuleType,
    QueryCondition,
)
from approval_kernel.domain.instance import ApprovalInstance
from approval_kernel.domain.ports import (
    AllowAllPermissionResolver,
    StepApproverPermissionResolver,
)
from approval_kernel.domain.step import ApprovalStep
from approval_kernel.exceptions import (
    DuplicateDecisionError,
    InstanceAlreadyProcessedError,
    InvalidApprovalTransitionError,
    InvalidDecisionError,
    UnauthorizedApproverError,
)

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


# =========================================================================
# Factory helpers
# =========================================================================


def users(*ids: str) -> tuple[ApproverConfig, ...]:
    return tuple(ApproverConfig(ApproverType.USER, i) for i in ids)


def make_rule(*steps: ApprovalStepConfig) -> ApprovalRule:
    return ApprovalRule(
        tenant_id="tenant-a",
        name="rule",
        module_type=ModuleType.MATERIALS,
        query_conditions=(QueryCondition("amount", "GT", 0),),
        steps=steps or (ApprovalStepConfig("only", DecisionMode.ALL, users("u1")),),
    )


def open_instance(rule: ApprovalRule) -> tuple[ApprovalInstance, ApprovalStep]:
    instance = ApprovalInstance(
        tenant_id="tenant-a",
        rule_id=rule.id,
        entity_type=rule.module_type,
        entity_id="M-1",
        requested_by_id="alice",
        created_at=NOW,
        sla_started=NOW,
        sla_deadline=NOW + timedelta(hours=24),
    )
    step = ApprovalStep.from_config(
        rule.steps[0], instance_id=instance.id, tenant_id="tenant-a", step_index=0,
    )
    step.start(NOW, fallback_deadline=instance.sla_deadline)
    return instance, step


def decide(processor, instance, step, rule, kind, approver, prior=(), **kwargs):
    return processor.process(
        instance=instance,
        step=step,
        rule=rule,
        command=DecisionCommand(decision=kind, approver_id=approver, **kwargs),
        prior_decisions=list(prior),
        now=NOW + timedelta(hours=1),
    )


@pytest.fixture
def processor():
    return DecisionProcessor(AllowAllPermissionResolver())


# =========================================================================
# 1. Outcomes
# =========================================================================


class TestOutcomes:

    def test_single_step_approval_completes_instance(self, processor):
        rule = make_rule()
        instance, step = open_instance(rule)

        outcome = decide(processor, instance, step, rule, DecisionKind.APPROVED, "u1")

        assert outcome.instance_completed
        assert outcome.instance.status is ApprovalStatus.APPROVED
        assert outcome.instance.completion_reason == "approved"
        assert outcome.decision.response_time_minutes == 60
        assert instance.is_pending, "inputs are not mutated"

    def test_approval_advances_to_next_step(self, processor):
        rule = make_rule(
            ApprovalStepConfig("manager", DecisionMode.ANY, users("m1", "m2")),
            ApprovalStepConfig("director", DecisionMode.ALL, users("d1"), sla_hours=4),
        )
        instance, step = open_instance(rule)

        outcome = decide(processor, instance, step, rule, DecisionKind.APPROVED, "m1")

        assert not outcome.instance_completed
        assert outcome.instance.current_step_index == 1
        assert outcome.next_step.step_name == "director"
        assert outcome.next_step.step_deadline == NOW + timedelta(hours=5)

    def test_rejection_completes_instance(self, processor):
        rule = make_rule()
        instance, step = open_instance(rule)

        outcome = decide(
            processor, instance, step, rule, DecisionKind.REJECTED, "u1",
            comments="over budget", reason_code="budget",
        )

        assert outcome.instance.status is ApprovalStatus.REJECTED
        assert outcome.instance.completion_reason == "budget"
        assert outcome.instance.completed_by_id == "u1"

    def test_rejection_without_comments_is_invalid(self, processor):
        rule = make_rule()
        instance, step = open_instance(rule)
        with pytest.raises(InvalidDecisionError):
            decide(processor, instance, step, rule, DecisionKind.REJECTED, "u1")

    def test_delegation_leaves_counts_unchanged(self, processor):
        rule = make_rule()
        instance, step = open_instance(rule)

        outcome = decide(
            processor, instance, step, rule, DecisionKind.DELEGATED, "u1",
            delegated_to_id="u9", delegation_reason="vacation",
        )

        assert outcome.step.approved_count == 0
        assert outcome.instance.is_pending
        assert outcome.decision.delegated_to_id == "u9"

    def test_delegation_requires_reason(self, processor):
        rule = make_rule()
        instance, step = open_instance(rule)
        with pytest.raises(InvalidDecisionError):
            decide(processor, instance, step, rule, DecisionKind.DELEGATED, "u1", delegated_to_id="u9")

    def test_escalated_decision_stamps_escalation_time(self, processor):
        rule = make_rule()
        instance, step = open_instance(rule)

        outcome = decide(processor, instance, step, rule, DecisionKind.ESCALATED, "u1")

        assert outcome.instance.last_escalation_at == NOW + timedelta(hours=1)
        assert outcome.instance.escalation_level == 0
        assert outcome.step.status is ApprovalStatus.PENDING


# =========================================================================
# 2. Preconditions
# =========================================================================


class TestPreconditions:

    def test_completed_instance_refuses_decisions(self, processor):
        rule = make_rule()
        instance, step = open_instance(rule)
        instance.cancel(NOW)
        with pytest.raises(InstanceAlreadyProcessedError):
            decide(processor, instance, step, rule, DecisionKind.APPROVED, "u1")

    def test_only_current_step_accepts_decisions(self, processor):
        rule = make_rule(
            ApprovalStepConfig("a", DecisionMode.ALL, users("u1")),
            ApprovalStepConfig("b", DecisionMode.ALL, users("u2")),
        )
        instance, _ = open_instance(rule)
        later = ApprovalStep.from_config(
            rule.steps[1], instance_id=instance.id, tenant_id="tenant-a", step_index=1,
        )
        with pytest.raises(InvalidApprovalTransitionError):
            decide(processor, instance, later, rule, DecisionKind.APPROVED, "u2")

    def test_same_approver_cannot_vote_twice(self, processor):
        rule = make_rule(ApprovalStepConfig("pair", DecisionMode.ALL, users("u1", "u2")))
        instance, step = open_instance(rule)
        first = decide(processor, instance, step, rule, DecisionKind.APPROVED, "u1")

        with pytest.raises(DuplicateDecisionError):
            decide(
                processor, first.instance, first.step, rule, DecisionKind.APPROVED, "u1",
                prior=[first.decision],
            )

    def test_permission_resolver_is_consulted(self):
        processor = DecisionProcessor(StepApproverPermissionResolver())
        rule = make_rule()
        instance, step = open_instance(rule)

        with pytest.raises(UnauthorizedApproverError):
            decide(processor, instance, step, rule, DecisionKind.APPROVED, "mallory")

    def test_extra_grants_expand_group_approvers(self):
        rule = make_rule(
            ApprovalStepConfig(
                "finance",
                DecisionMode.ANY,
                (ApproverConfig(ApproverType.USER_GROUP, "finance-team"),),
            ),
        )
        processor = DecisionProcessor(StepApproverPermissionResolver({"finance-team": ["carol"]}))
        instance, step = open_instance(rule)

        outcome = decide(processor, instance, step, rule, DecisionKind.APPROVED, "carol")

        assert outcome.instance.status is ApprovalStatus.APPROVED
