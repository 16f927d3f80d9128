"""
Hypothesis-based property tests for the approval engines.

Properties checked here:
- Condition evaluation is total: arbitrary operators, values and entity
  payloads never raise
- RuleMatcher output is ordered by non-decreasing priority and contains
  exactly the active rules whose conditions hold
- Disabled auto-approval never yields should_auto_approve
- QUORUM steps complete exactly when the policy table says so
- A reminder threshold never fires twice without record_reminder
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

from hypothesis import given, settings
from hypothesis import strategies as st

from approval_engines.conditions import ConditionEvaluator
from approval_engines.rule_matcher import RuleMatcher
from approval_kernel.domain.approval import (
    ApprovalRule,
    ApprovalStatus,
    ApprovalStepConfig,
    ApproverConfig,
    ApproverType,
    AutoApprovalConditions,
    DecisionMode,
    LogicalOperator,
    ModuleType,
    QueryCondition,
)
from approval_kernel.domain.instance import ApprovalInstance
from approval_kernel.domain.step import ApprovalStep

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

# =========================================================================
# Strategies
# =========================================================================

scalars = st.one_of(
    st.none(),
    st.booleans(),
    st.integers(),
    st.floats(allow_nan=True, allow_infinity=True),
    st.decimals(allow_nan=True, allow_infinity=True),
    st.text(max_size=8),
)

json_values = st.recursive(
    scalars,
    lambda children: st.one_of(
        st.lists(children, max_size=4),
        st.dictionaries(st.text(max_size=4), children, max_size=4),
    ),
    max_leaves=12,
)

operators = st.one_of(
    st.sampled_from([
        "EQ", "NEQ", "IN", "NOT_IN", "GT", "GTE", "LT", "LTE",
        "CONTAINS", "STARTS_WITH", "EXISTS", "BETWEEN", "between", " gt ",
    ]),
    st.text(max_size=6),
)

conditions = st.builds(
    QueryCondition,
    field=st.sampled_from(["a", "b", "a.b", "missing", ""]),
    operator=operators,
    value=json_values,
    logical_operator=st.sampled_from(list(LogicalOperator)),
)


def one_step() -> tuple[ApprovalStepConfig, ...]:
    return (ApprovalStepConfig("s", DecisionMode.ALL, (ApproverConfig(ApproverType.USER, "u"),)),)


@st.composite
def rule_sets(draw):
    specs = draw(st.lists(
        st.tuples(st.integers(1, 999), st.integers(0, 100), st.booleans()),
        max_size=12,
    ))
    return [
        ApprovalRule(
            tenant_id="tenant-a",
            name=f"r{i}",
            module_type=ModuleType.MATERIALS,
            query_conditions=(QueryCondition("amount", "GT", threshold),),
            steps=one_step(),
            priority=priority,
            is_active=active,
        )
        for i, (priority, threshold, active) in enumerate(specs)
    ]


# =========================================================================
# Properties
# =========================================================================


class TestConditionTotality:

    @given(st.lists(conditions, max_size=5), st.dictionaries(st.sampled_from(["a", "b"]), json_values))
    @settings(max_examples=300)
    def test_evaluation_never_raises(self, conds, data):
        assert isinstance(ConditionEvaluator().evaluate_all(conds, data), bool)


class TestMatcherOrdering:

    @given(rule_sets(), st.integers(0, 100))
    def test_matches_sorted_and_complete(self, rules, amount):
        result = RuleMatcher().match(
            rules=rules, entity_data={"amount": amount}, module_type=ModuleType.MATERIALS,
        )

        priorities = [m.priority for m in result.matches]
        assert priorities == sorted(priorities)
        expected = {
            r.id for r in rules
            if r.is_active and amount > r.query_conditions[0].value
        }
        assert {m.rule_id for m in result.matches} == expected

    @given(rule_sets(), st.integers(0, 100))
    def test_disabled_auto_approval_never_fires(self, rules, amount):
        result = RuleMatcher().match(rules=rules, entity_data={"amount": amount})
        assert not any(m.should_auto_approve for m in result.matches)

    @given(st.integers(0, 100))
    def test_enabled_auto_approval_follows_its_conditions(self, amount):
        rule = ApprovalRule(
            tenant_id="tenant-a",
            name="auto",
            module_type=ModuleType.MATERIALS,
            query_conditions=(QueryCondition("amount", "GTE", 0),),
            steps=one_step(),
            auto_approval_conditions=AutoApprovalConditions(
                enabled=True, conditions=(QueryCondition("amount", "LT", 50),),
            ),
        )
        result = RuleMatcher().match(rules=[rule], entity_data={"amount": amount})
        assert result.should_auto_approve is (amount < 50)


class TestQuorumPolicy:

    @given(st.data())
    def test_quorum_step_follows_policy_table(self, data):
        total = data.draw(st.integers(1, 7))
        quorum = data.draw(st.integers(1, total))
        votes = data.draw(st.lists(st.booleans(), max_size=total))
        config = ApprovalStepConfig(
            "q",
            DecisionMode.QUORUM,
            tuple(ApproverConfig(ApproverType.USER, f"u{i}") for i in range(total)),
            quorum_count=quorum,
        )
        step = ApprovalStep.from_config(config, instance_id=uuid4(), tenant_id="tenant-a", step_index=0)

        approved = rejected = 0
        expected = ApprovalStatus.PENDING
        for vote in votes:
            if step.is_terminal:
                break
            if vote:
                approved += 1
                step.record_approval(NOW)
                if approved >= quorum:
                    expected = ApprovalStatus.APPROVED
            else:
                rejected += 1
                step.record_rejection(NOW)
                if rejected > total - quorum:
                    expected = ApprovalStatus.REJECTED

        assert step.status is expected


class TestReminderMonotonicity:

    @given(st.lists(st.integers(0, 48 * 60), min_size=1, max_size=20))
    def test_each_threshold_fires_once(self, offsets):
        instance = ApprovalInstance(
            tenant_id="tenant-a",
            rule_id=uuid4(),
            entity_type=ModuleType.TICKETS,
            entity_id="T-1",
            requested_by_id="alice",
            created_at=NOW,
            sla_started=NOW,
            sla_deadline=NOW + timedelta(hours=24),
        )
        fired: list[int] = []
        for minute in sorted(offsets):
            now = NOW + timedelta(minutes=minute)
            if instance.should_send_reminder(now):
                fired.append(instance.reminders_sent)
                instance.record_reminder(now)

        assert fired == list(range(len(fired)))
