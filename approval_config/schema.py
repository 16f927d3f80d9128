"""
Approval engine configuration schema.

Defines the human-authored, reviewable configuration of the approval
engine: the business-hours calendar and the per-tenant escalation policy.
YAML files are parsed into these types by the loader.  ``EngineConfig``
is one record per tenant, passed by value to the services.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, time

from approval_engines.escalation import EscalationConfig
from approval_engines.sla import BusinessCalendar

__all__ = ["EngineConfig", "EscalationConfig", "WorkingHours"]


@dataclass(frozen=True)
class WorkingHours:
    """Daily working window and non-working days (Monday == 0)."""

    start: time = time(9, 0)
    end: time = time(17, 0)
    weekend_days: tuple[int, ...] = (5, 6)
    holidays: tuple[date, ...] = ()

    def to_calendar(self) -> BusinessCalendar:
        return BusinessCalendar(
            start=self.start,
            end=self.end,
            weekend_days=frozenset(self.weekend_days),
            holidays=frozenset(self.holidays),
        )


@dataclass(frozen=True)
class EngineConfig:
    """Complete per-tenant engine configuration."""

    escalation: EscalationConfig = field(default_factory=EscalationConfig)
    working_hours: WorkingHours = field(default_factory=WorkingHours)
    tenant_id: str | None = None
    checksum: str | None = None

    def calendar(self) -> BusinessCalendar:
        return self.working_hours.to_calendar()
