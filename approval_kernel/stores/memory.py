"""
In-memory reference stores.

Responsibility:
    Thread-safe dict-backed implementations of RuleStore, InstanceStore and
    DecisionStore.  Used by tests and by single-process deployments that do
    not need durability.

Invariants enforced:
    - Every read returns a copy; callers never alias stored records.
    - Every query is scoped by ``tenant_id``.
    - ``InstanceStore.update`` bumps ``version`` and rejects a stale
      ``expected_version`` with OptimisticLockError.
    - At most one pending instance per (tenant, entity_type, entity_id).
    - Decisions are append-only.
"""

from __future__ import annotations

import copy
import threading
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Mapping, Sequence
from uuid import UUID

from approval_kernel.domain.approval import (
    ApprovalDecisionRecord,
    ApprovalRule,
    ApproverType,
    ModuleType,
)
from approval_kernel.domain.instance import ApprovalInstance
from approval_kernel.domain.step import ApprovalStep
from approval_kernel.exceptions import (
    DuplicateApprovalInstanceError,
    ImmutabilityViolationError,
    InstanceNotFoundError,
    OptimisticLockError,
    RuleNameConflictError,
    RuleNotFoundError,
    StepNotFoundError,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.stores.base import validate_instance_patch

logger = get_logger("stores.memory")


class InMemoryInstanceStore:
    """Instances and their steps, keyed by id."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._instances: dict[UUID, ApprovalInstance] = {}
        self._steps: dict[UUID, ApprovalStep] = {}

    # -- instances -------------------------------------------------------

    def create(self, instance: ApprovalInstance) -> ApprovalInstance:
        with self._lock:
            if instance.id in self._instances:
                raise DuplicateApprovalInstanceError(
                    instance.entity_type.value, instance.entity_id, str(instance.id),
                )
            if instance.is_pending:
                existing = self._pending_for_entity(
                    instance.tenant_id, instance.entity_type, instance.entity_id,
                )
                if existing:
                    raise DuplicateApprovalInstanceError(
                        instance.entity_type.value, instance.entity_id, str(existing[0].id),
                    )
            self._instances[instance.id] = copy.deepcopy(instance)
            return copy.deepcopy(instance)

    def update(
        self,
        instance_id: UUID,
        tenant_id: str,
        patch: Mapping[str, Any],
        expected_version: int | None = None,
    ) -> ApprovalInstance:
        validate_instance_patch(patch)
        with self._lock:
            current = self._get(instance_id, tenant_id)
            if expected_version is not None and current.version != expected_version:
                logger.warning(
                    "optimistic_lock_conflict",
                    extra={
                        "instance_id": str(instance_id),
                        "expected_version": expected_version,
                        "actual_version": current.version,
                    },
                )
                raise OptimisticLockError("ApprovalInstance", str(instance_id))
            updated = copy.deepcopy(current)
            for name, value in patch.items():
                setattr(updated, name, copy.deepcopy(value))
            updated.version = current.version + 1
            self._instances[instance_id] = updated
            return copy.deepcopy(updated)

    def find_by_id(self, instance_id: UUID, tenant_id: str) -> ApprovalInstance | None:
        with self._lock:
            instance = self._instances.get(instance_id)
            if instance is None or instance.tenant_id != tenant_id:
                return None
            return copy.deepcopy(instance)

    def find_by_tenant(self, tenant_id: str) -> list[ApprovalInstance]:
        with self._lock:
            return self._select(lambda i: i.tenant_id == tenant_id)

    def find_pending(self, tenant_id: str) -> list[ApprovalInstance]:
        with self._lock:
            return self._select(lambda i: i.tenant_id == tenant_id and i.is_pending)

    def find_pending_for_entity(
        self, tenant_id: str, entity_type: ModuleType, entity_id: str,
    ) -> list[ApprovalInstance]:
        with self._lock:
            return [copy.deepcopy(i) for i in self._pending_for_entity(tenant_id, entity_type, entity_id)]

    def find_pending_by_user(self, tenant_id: str, user_id: str) -> list[ApprovalInstance]:
        with self._lock:
            result = []
            for instance in self._instances.values():
                if instance.tenant_id != tenant_id or not instance.is_pending:
                    continue
                step = self._current_step(instance)
                if step is None or not step.is_pending:
                    continue
                if any(
                    a.type is ApproverType.USER and a.identifier == user_id
                    for a in step.approvers
                ):
                    result.append(copy.deepcopy(instance))
            return sorted(result, key=lambda i: (i.created_at, str(i.id)))

    def find_expired(self, tenant_id: str, as_of: datetime, grace_hours: float = 0) -> list[ApprovalInstance]:
        grace = timedelta(hours=grace_hours)
        with self._lock:
            return self._select(
                lambda i: i.tenant_id == tenant_id
                and i.is_pending
                and i.sla_deadline is not None
                and i.sla_deadline + grace < as_of
            )

    def find_needing_reminder(
        self, tenant_id: str, as_of: datetime, thresholds: Sequence[float],
    ) -> list[ApprovalInstance]:
        with self._lock:
            return self._select(
                lambda i: i.tenant_id == tenant_id and i.should_send_reminder(as_of, thresholds)
            )

    # -- steps -----------------------------------------------------------

    def create_step(self, step: ApprovalStep) -> ApprovalStep:
        with self._lock:
            if step.instance_id not in self._instances:
                raise InstanceNotFoundError(str(step.instance_id))
            self._steps[step.id] = copy.deepcopy(step)
            return copy.deepcopy(step)

    def update_step(self, step: ApprovalStep) -> ApprovalStep:
        with self._lock:
            existing = self._steps.get(step.id)
            if existing is None or existing.tenant_id != step.tenant_id:
                raise StepNotFoundError(str(step.instance_id), str(step.id))
            self._steps[step.id] = copy.deepcopy(step)
            return copy.deepcopy(step)

    def find_steps(self, instance_id: UUID, tenant_id: str) -> list[ApprovalStep]:
        with self._lock:
            steps = [
                copy.deepcopy(s) for s in self._steps.values()
                if s.instance_id == instance_id and s.tenant_id == tenant_id
            ]
        return sorted(steps, key=lambda s: s.step_index)

    def has_pending_for_rule(self, rule_id: UUID, tenant_id: str) -> bool:
        with self._lock:
            return any(
                i.rule_id == rule_id and i.tenant_id == tenant_id and i.is_pending
                for i in self._instances.values()
            )

    # -- internals -------------------------------------------------------

    def _get(self, instance_id: UUID, tenant_id: str) -> ApprovalInstance:
        instance = self._instances.get(instance_id)
        if instance is None or instance.tenant_id != tenant_id:
            raise InstanceNotFoundError(str(instance_id))
        return instance

    def _select(self, predicate) -> list[ApprovalInstance]:
        selected = [copy.deepcopy(i) for i in self._instances.values() if predicate(i)]
        return sorted(selected, key=lambda i: (i.created_at, str(i.id)))

    def _pending_for_entity(self, tenant_id: str, entity_type: ModuleType, entity_id: str):
        return [
            i for i in self._instances.values()
            if i.tenant_id == tenant_id
            and i.entity_type is entity_type
            and i.entity_id == entity_id
            and i.is_pending
        ]

    def _current_step(self, instance: ApprovalInstance) -> ApprovalStep | None:
        for step in self._steps.values():
            if step.instance_id == instance.id and step.step_index == instance.current_step_index:
                return step
        return None


class InMemoryRuleStore:
    """Rules keyed by id; names unique per tenant.

    ``instance_store`` answers ``has_pending_instances``; without one no
    rule is ever considered in use.
    """

    def __init__(self, instance_store: InMemoryInstanceStore | None = None) -> None:
        self._lock = threading.RLock()
        self._rules: dict[UUID, ApprovalRule] = {}
        self._instance_store = instance_store

    def create(self, rule: ApprovalRule) -> ApprovalRule:
        with self._lock:
            self._check_name(rule)
            self._rules[rule.id] = rule
            return rule

    def update(self, rule: ApprovalRule) -> ApprovalRule:
        with self._lock:
            existing = self._rules.get(rule.id)
            if existing is None or existing.tenant_id != rule.tenant_id:
                raise RuleNotFoundError(str(rule.id))
            self._check_name(rule)
            self._rules[rule.id] = rule
            return rule

    def find_by_id(self, rule_id: UUID, tenant_id: str) -> ApprovalRule | None:
        with self._lock:
            rule = self._rules.get(rule_id)
        if rule is None or rule.tenant_id != tenant_id:
            return None
        return rule

    def find_by_name(self, name: str, tenant_id: str) -> ApprovalRule | None:
        with self._lock:
            for rule in self._rules.values():
                if rule.tenant_id == tenant_id and rule.name == name:
                    return rule
        return None

    def find_by_tenant(self, tenant_id: str, module_type: ModuleType | None = None) -> list[ApprovalRule]:
        with self._lock:
            rules = [
                r for r in self._rules.values()
                if r.tenant_id == tenant_id and (module_type is None or r.module_type is module_type)
            ]
        return sorted(rules, key=lambda r: (r.priority, r.name))

    def find_applicable_rules(
        self,
        tenant_id: str,
        module_type: ModuleType,
        entity_data: Mapping[str, Any],
    ) -> list[ApprovalRule]:
        return [r for r in self.find_by_tenant(tenant_id, module_type) if r.is_active]

    def delete(self, rule_id: UUID, tenant_id: str) -> None:
        with self._lock:
            rule = self._rules.get(rule_id)
            if rule is None or rule.tenant_id != tenant_id:
                raise RuleNotFoundError(str(rule_id))
            del self._rules[rule_id]

    def has_pending_instances(self, rule_id: UUID, tenant_id: str) -> bool:
        if self._instance_store is None:
            return False
        return self._instance_store.has_pending_for_rule(rule_id, tenant_id)

    def deactivate(self, rule_id: UUID, tenant_id: str) -> ApprovalRule:
        with self._lock:
            rule = self.find_by_id(rule_id, tenant_id)
            if rule is None:
                raise RuleNotFoundError(str(rule_id))
            return self.update(replace(rule, is_active=False))

    def _check_name(self, rule: ApprovalRule) -> None:
        for other in self._rules.values():
            if other.tenant_id == rule.tenant_id and other.name == rule.name and other.id != rule.id:
                raise RuleNameConflictError(rule.name)


class InMemoryDecisionStore:
    """Append-only decision log."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._decisions: list[ApprovalDecisionRecord] = []
        self._ids: set[UUID] = set()

    def create_decision(self, decision: ApprovalDecisionRecord) -> ApprovalDecisionRecord:
        with self._lock:
            if decision.id in self._ids:
                raise ImmutabilityViolationError(
                    "ApprovalDecision", str(decision.id), "decisions are append-only",
                )
            self._ids.add(decision.id)
            self._decisions.append(decision)
        return decision

    def find_by_instance(self, instance_id: UUID, tenant_id: str) -> list[ApprovalDecisionRecord]:
        with self._lock:
            return [
                d for d in self._decisions
                if d.instance_id == instance_id and d.tenant_id == tenant_id
            ]
