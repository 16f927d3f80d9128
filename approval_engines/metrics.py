"""
approval_engines.metrics -- Dashboard aggregates over approval instances.

Pure aggregation: counts by status, overdue pending instances, average
response time of completed instances and the SLA compliance rate
(share of instances that did not violate their SLA; 100 when empty).
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from approval_engines.tracer import traced_engine
from approval_kernel.domain.approval import ApprovalStatus
from approval_kernel.domain.instance import ApprovalInstance

_TWO_PLACES = Decimal("0.01")


@dataclass(frozen=True)
class DashboardMetrics:
    total: int
    counts_by_status: dict[str, int] = field(default_factory=dict)
    overdue: int = 0
    average_response_minutes: Decimal = Decimal("0")
    sla_compliance_rate: Decimal = Decimal("100")

    @property
    def pending(self) -> int:
        return self.counts_by_status.get(ApprovalStatus.PENDING.value, 0)

    @property
    def approved(self) -> int:
        return self.counts_by_status.get(ApprovalStatus.APPROVED.value, 0)

    @property
    def rejected(self) -> int:
        return self.counts_by_status.get(ApprovalStatus.REJECTED.value, 0)

    def as_dict(self) -> dict:
        return {
            "total": self.total,
            "pending": self.pending,
            "approved": self.approved,
            "rejected": self.rejected,
            "counts_by_status": dict(self.counts_by_status),
            "overdue": self.overdue,
            "average_response_minutes": str(self.average_response_minutes),
            "sla_compliance_rate": str(self.sla_compliance_rate),
        }


@traced_engine("metrics", "1.0")
def compute_dashboard(instances: Iterable[ApprovalInstance], now: datetime) -> DashboardMetrics:
    counts = {status.value: 0 for status in ApprovalStatus}
    total = 0
    overdue = 0
    violated = 0
    response_total = 0
    response_count = 0

    for instance in instances:
        total += 1
        counts[instance.status.value] += 1
        if instance.is_pending and instance.is_overdue(now):
            overdue += 1
        if instance.sla_violated:
            violated += 1
        if instance.is_completed() and instance.total_response_time_minutes is not None:
            response_total += instance.total_response_time_minutes
            response_count += 1

    average = Decimal("0")
    if response_count:
        average = (Decimal(response_total) / response_count).quantize(_TWO_PLACES, ROUND_HALF_UP)
    compliance = Decimal("100")
    if total:
        compliance = (Decimal(total - violated) * 100 / total).quantize(_TWO_PLACES, ROUND_HALF_UP)

    return DashboardMetrics(
        total=total,
        counts_by_status=counts,
        overdue=overdue,
        average_response_minutes=average,
        sla_compliance_rate=compliance,
    )
