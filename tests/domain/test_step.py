"""
Tests for the ApprovalStep aggregation state machine.

Completion policy per mode:
    ALL    approve when every approver approved; reject on first rejection
    ANY    approve on first approval; reject when every approver rejected
    QUORUM approve at quorum; reject once quorum is unreachable
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from approval_kernel.domain.approval import (
    ApprovalStatus,
    ApprovalStepConfig,
    ApproverConfig,
    ApproverType,
    DecisionMode,
)
from approval_kernel.domain.step import ApprovalStep
from approval_kernel.exceptions import InvalidApprovalTransitionError

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def make_step(mode: DecisionMode, total: int = 3, quorum: int | None = None) -> ApprovalStep:
    return ApprovalStep(
        instance_id=uuid4(),
        tenant_id="tenant-a",
        step_index=0,
        step_name="review",
        decision_mode=mode,
        total_approvers=total,
        quorum_count=quorum,
    )


# =========================================================================
# 1. Construction
# =========================================================================


class TestConstruction:

    def test_quorum_requires_valid_count(self):
        with pytest.raises(ValueError):
            make_step(DecisionMode.QUORUM, total=3, quorum=4)
        with pytest.raises(ValueError):
            make_step(DecisionMode.QUORUM, total=3, quorum=None)

    def test_needs_an_approver(self):
        with pytest.raises(ValueError):
            make_step(DecisionMode.ALL, total=0)

    def test_from_config_defaults_quorum_to_majority(self):
        config = ApprovalStepConfig(
            name="board",
            approver_mode=DecisionMode.QUORUM,
            approvers=tuple(ApproverConfig(ApproverType.USER, f"u{i}") for i in range(4)),
        )
        step = ApprovalStep.from_config(config, instance_id=uuid4(), tenant_id="t", step_index=0)

        assert step.quorum_count == 3
        assert step.total_approvers == 4
        assert step.get_required_approvals() == 3


# =========================================================================
# 2. Aggregation by mode
# =========================================================================


class TestAllMode:

    def test_completes_after_every_approval(self):
        step = make_step(DecisionMode.ALL, total=2)
        assert step.record_approval(NOW) is ApprovalStatus.PENDING
        assert step.record_approval(NOW) is ApprovalStatus.APPROVED
        assert step.completed_at == NOW

    def test_single_rejection_rejects(self):
        step = make_step(DecisionMode.ALL, total=3)
        step.record_approval(NOW)
        assert step.record_rejection(NOW) is ApprovalStatus.REJECTED


class TestAnyMode:

    def test_first_approval_approves(self):
        step = make_step(DecisionMode.ANY, total=3)
        assert step.record_approval(NOW) is ApprovalStatus.APPROVED

    def test_rejection_alone_does_not_reject(self):
        step = make_step(DecisionMode.ANY, total=2)
        assert step.record_rejection(NOW) is ApprovalStatus.PENDING

    def test_all_rejections_reject(self):
        step = make_step(DecisionMode.ANY, total=2)
        step.record_rejection(NOW)
        assert step.record_rejection(NOW) is ApprovalStatus.REJECTED


class TestQuorumMode:

    def test_quorum_reached_approves(self):
        step = make_step(DecisionMode.QUORUM, total=3, quorum=2)
        step.record_approval(NOW)
        assert step.record_approval(NOW) is ApprovalStatus.APPROVED

    def test_quorum_unreachable_rejects(self):
        step = make_step(DecisionMode.QUORUM, total=3, quorum=2)
        assert step.record_rejection(NOW) is ApprovalStatus.PENDING
        assert step.record_rejection(NOW) is ApprovalStatus.REJECTED

    def test_completion_percentage(self):
        step = make_step(DecisionMode.QUORUM, total=4, quorum=2)
        step.record_approval(NOW)
        assert step.completion_percentage == 50.0
        assert step.participation_percentage == 25.0


# =========================================================================
# 3. Transitions
# =========================================================================


class TestTransitions:

    def test_terminal_step_refuses_decisions(self):
        step = make_step(DecisionMode.ANY)
        step.record_approval(NOW)
        with pytest.raises(InvalidApprovalTransitionError):
            step.record_approval(NOW)

    def test_start_uses_step_sla_then_fallback(self):
        step = make_step(DecisionMode.ALL)
        step.step_sla_hours = 4
        step.start(NOW, fallback_deadline=NOW + timedelta(hours=24))
        assert step.step_deadline == NOW + timedelta(hours=4)

        other = make_step(DecisionMode.ALL)
        other.start(NOW, fallback_deadline=NOW + timedelta(hours=24))
        assert other.step_deadline == NOW + timedelta(hours=24)

    def test_sla_usage_percentage(self):
        step = make_step(DecisionMode.ALL)
        step.start(NOW, fallback_deadline=NOW + timedelta(hours=10))
        assert step.sla_usage_percentage(NOW + timedelta(hours=5)) == 50.0
        assert step.sla_usage_percentage(NOW + timedelta(hours=50)) == 100.0

    def test_force_approve_ignores_counts(self):
        step = make_step(DecisionMode.ALL, total=3)
        step.force_approve(NOW)
        assert step.status is ApprovalStatus.APPROVED
        assert step.approved_count == 0

    def test_cancelled_step_cannot_expire(self):
        step = make_step(DecisionMode.ALL)
        step.cancel(NOW)
        with pytest.raises(InvalidApprovalTransitionError):
            step.expire(NOW)
