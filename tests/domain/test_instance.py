"""
Tests for the ApprovalInstance lifecycle record.
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from approval_kernel.domain.approval import ApprovalStatus, ModuleType, SlaStatus
from approval_kernel.domain.instance import ApprovalInstance
from approval_kernel.exceptions import InvalidApprovalTransitionError

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def make_instance(sla_hours: float | None = 10, **overrides) -> ApprovalInstance:
    values = dict(
        tenant_id="tenant-a",
        rule_id=uuid4(),
        entity_type=ModuleType.TICKETS,
        entity_id="T-1",
        requested_by_id="alice",
        created_at=NOW,
        sla_started=NOW,
        sla_deadline=NOW + timedelta(hours=sla_hours) if sla_hours is not None else None,
    )
    values.update(overrides)
    return ApprovalInstance(**values)


class TestConstruction:

    def test_negative_counters_rejected(self):
        with pytest.raises(ValueError):
            make_instance(reminders_sent=-1)

    def test_urgency_out_of_range_rejected(self):
        with pytest.raises(ValueError):
            make_instance(urgency_level=0)

    def test_completed_requires_completed_at(self):
        with pytest.raises(ValueError):
            make_instance(status=ApprovalStatus.APPROVED)


class TestSla:

    def test_elapsed_percentage_is_clamped(self):
        instance = make_instance()
        assert instance.calculate_sla_elapsed(NOW - timedelta(hours=1)) == 0.0
        assert instance.calculate_sla_elapsed(NOW + timedelta(hours=5)) == 50.0
        assert instance.calculate_sla_elapsed(NOW + timedelta(hours=50)) == 100.0

    def test_no_deadline_means_zero_elapsed(self):
        assert make_instance(sla_hours=None).calculate_sla_elapsed(NOW) == 0.0

    def test_refresh_sla_stores_status_and_minutes(self):
        instance = make_instance()

        assert instance.refresh_sla(NOW + timedelta(hours=8)) is SlaStatus.WARNING
        assert instance.sla_elapsed_minutes == 480
        assert instance.refresh_sla(NOW + timedelta(hours=11)) is SlaStatus.BREACHED
        assert instance.should_escalate()

    def test_refresh_is_noop_when_completed(self):
        instance = make_instance()
        instance.complete(ApprovalStatus.APPROVED, NOW + timedelta(hours=1))
        assert instance.refresh_sla(NOW + timedelta(hours=20)) is SlaStatus.ACTIVE


class TestReminders:

    def test_each_threshold_fires_once(self):
        instance = make_instance()
        thresholds = (50, 90)
        later = NOW + timedelta(hours=6)

        assert instance.should_send_reminder(later, thresholds)
        instance.record_reminder(later)
        assert not instance.should_send_reminder(later, thresholds)
        assert instance.first_reminder_sent_at == later

        final = NOW + timedelta(hours=9, minutes=30)
        assert instance.should_send_reminder(final, thresholds)
        instance.record_reminder(final)
        assert instance.second_reminder_sent_at == final
        assert instance.next_reminder_threshold(thresholds) is None


class TestTransitions:

    def test_complete_stamps_metadata(self):
        instance = make_instance()
        done = NOW + timedelta(hours=12)

        instance.complete(ApprovalStatus.APPROVED, done, completed_by_id="bob", reason="approved")

        assert instance.completed_at == done
        assert instance.total_response_time_minutes == 720
        assert instance.sla_violated is True

    def test_terminal_states_are_final(self):
        instance = make_instance()
        instance.complete(ApprovalStatus.REJECTED, NOW)
        with pytest.raises(InvalidApprovalTransitionError):
            instance.complete(ApprovalStatus.APPROVED, NOW)
        with pytest.raises(InvalidApprovalTransitionError):
            instance.cancel(NOW)

    def test_advance_only_moves_forward(self):
        instance = make_instance()
        instance.advance_to(1)
        with pytest.raises(ValueError):
            instance.advance_to(1)

    def test_changes_since_reports_only_modified_fields(self):
        instance = make_instance()
        before = instance.snapshot()

        instance.record_reminder(NOW)

        assert set(instance.changes_since(before)) == {"reminders_sent", "first_reminder_sent_at"}
