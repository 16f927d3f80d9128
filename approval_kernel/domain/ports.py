"""
Collaborator ports for the approval engine.

Responsibility:
    Declares the contracts the engine consumes but does not own: rule
    source, instance/step store, decision store, permission resolver and
    notifier.  Services depend only on these protocols; reference
    adapters live in ``approval_kernel.stores``.

Architecture position:
    Kernel > Domain.  Protocol definitions plus two trivial, pure
    permission resolvers and a logging notifier.  No I/O beyond logging.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Mapping, Protocol, Sequence
from uuid import UUID

from approval_kernel.domain.approval import (
    ApprovalDecisionRecord,
    ApprovalRule,
    ApproverType,
    EscalationAction,
    ModuleType,
)
from approval_kernel.domain.instance import ApprovalInstance
from approval_kernel.domain.step import ApprovalStep
from approval_kernel.logging_config import get_logger

logger = get_logger("notifier")


class RuleSource(Protocol):
    """Read side of the rule repository."""

    def find_applicable_rules(
        self,
        tenant_id: str,
        module_type: ModuleType,
        entity_data: Mapping[str, Any],
    ) -> list[ApprovalRule]:
        """Active rules of the tenant for the module (pre-filter only)."""
        ...

    def find_by_id(self, rule_id: UUID, tenant_id: str) -> ApprovalRule | None:
        ...


class RuleStore(RuleSource, Protocol):
    """Administrative side of the rule repository."""

    def create(self, rule: ApprovalRule) -> ApprovalRule:
        ...

    def update(self, rule: ApprovalRule) -> ApprovalRule:
        ...

    def find_by_name(self, name: str, tenant_id: str) -> ApprovalRule | None:
        ...

    def find_by_tenant(self, tenant_id: str, module_type: ModuleType | None = None) -> list[ApprovalRule]:
        ...

    def delete(self, rule_id: UUID, tenant_id: str) -> None:
        ...

    def has_pending_instances(self, rule_id: UUID, tenant_id: str) -> bool:
        ...


class InstanceStore(Protocol):
    """Persistence of instances and their steps."""

    def create(self, instance: ApprovalInstance) -> ApprovalInstance:
        ...

    def update(
        self,
        instance_id: UUID,
        tenant_id: str,
        patch: Mapping[str, Any],
        expected_version: int | None = None,
    ) -> ApprovalInstance:
        """Apply ``patch``; bump ``version``; raise OptimisticLockError on mismatch."""
        ...

    def find_by_id(self, instance_id: UUID, tenant_id: str) -> ApprovalInstance | None:
        ...

    def find_by_tenant(self, tenant_id: str) -> list[ApprovalInstance]:
        ...

    def find_pending(self, tenant_id: str) -> list[ApprovalInstance]:
        ...

    def find_pending_for_entity(
        self, tenant_id: str, entity_type: ModuleType, entity_id: str,
    ) -> list[ApprovalInstance]:
        ...

    def find_pending_by_user(self, tenant_id: str, user_id: str) -> list[ApprovalInstance]:
        """Pending instances whose current step lists ``user_id`` as a user approver."""
        ...

    def find_expired(self, tenant_id: str, as_of: datetime, grace_hours: float = 0) -> list[ApprovalInstance]:
        ...

    def find_needing_reminder(
        self, tenant_id: str, as_of: datetime, thresholds: Sequence[float],
    ) -> list[ApprovalInstance]:
        ...

    def create_step(self, step: ApprovalStep) -> ApprovalStep:
        ...

    def update_step(self, step: ApprovalStep) -> ApprovalStep:
        ...

    def find_steps(self, instance_id: UUID, tenant_id: str) -> list[ApprovalStep]:
        ...


class DecisionStore(Protocol):
    """Append-only decision log."""

    def create_decision(self, decision: ApprovalDecisionRecord) -> ApprovalDecisionRecord:
        ...

    def find_by_instance(self, instance_id: UUID, tenant_id: str) -> list[ApprovalDecisionRecord]:
        ...


class PermissionResolver(Protocol):
    """Decides whether an approver may act on the current step."""

    def can_approve(self, instance: ApprovalInstance, step: ApprovalStep, approver_id: str) -> bool:
        ...


class Notifier(Protocol):
    """Delivers escalation actions out of band."""

    def notify(self, actions: Sequence[EscalationAction]) -> None:
        ...


# ---------------------------------------------------------------------------
# Shipped implementations
# ---------------------------------------------------------------------------


class AllowAllPermissionResolver:
    """Grants every approver.  Matches the historical behaviour; wire a real
    policy in production."""

    def can_approve(self, instance: ApprovalInstance, step: ApprovalStep, approver_id: str) -> bool:
        return True


class StepApproverPermissionResolver:
    """Grants approvers listed on the step as ``user`` approvers.

    Group, contact, supplier and manager-chain approvers need an identity
    service to expand; they are granted only through ``extra_grants``.
    """

    def __init__(self, extra_grants: Mapping[str, Iterable[str]] | None = None) -> None:
        # identifier of a non-user approver -> user ids it expands to
        self._extra_grants = {k: frozenset(v) for k, v in (extra_grants or {}).items()}

    def can_approve(self, instance: ApprovalInstance, step: ApprovalStep, approver_id: str) -> bool:
        for approver in step.approvers:
            if approver.type is ApproverType.USER and approver.identifier == approver_id:
                return True
            if approver_id in self._extra_grants.get(approver.identifier, frozenset()):
                return True
        return False


class LoggingNotifier:
    """Notifier that only emits one structured log record per action."""

    def notify(self, actions: Sequence[EscalationAction]) -> None:
        for action in actions:
            logger.info(
                "escalation_action_dispatched",
                extra={
                    "action_type": action.type.value,
                    "instance_id": str(action.instance_id),
                    "tenant_id": action.tenant_id,
                    "priority": action.priority.value,
                    "due_at": action.due_at.isoformat(),
                },
            )
