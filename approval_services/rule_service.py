"""
approval_services.rule_service -- Administrative rule management.

Responsibility:
    Create, update, deactivate and delete approval rules, and seed rules
    from configuration.  Every write is validated by
    ``approval_config.validator`` before it reaches the store.

Architecture position:
    Services layer.  Owns the clock for ``created_at`` / ``updated_at``.

Invariants enforced:
    - Rule names are unique per tenant.
    - ``id``, ``tenant_id`` and creation metadata never change on update.
    - A rule referenced by a pending instance is never hard-deleted.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Iterable, Mapping
from uuid import UUID

from approval_config.validator import ensure_valid_rule
from approval_engines.conditions import ConditionEvaluator
from approval_kernel.domain.approval import ApprovalRule, ModuleType
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.ports import RuleStore
from approval_kernel.exceptions import (
    RuleInUseError,
    RuleNameConflictError,
    RuleNotFoundError,
    ValidationError,
)
from approval_kernel.logging_config import LogContext, get_logger

logger = get_logger("services.rule_service")

_FROZEN_RULE_FIELDS = frozenset({"id", "tenant_id", "created_at", "created_by_id"})


class RuleService:
    def __init__(
        self,
        rule_store: RuleStore,
        clock: Clock | None = None,
        evaluator: ConditionEvaluator | None = None,
    ) -> None:
        self._store = rule_store
        self._clock = clock or SystemClock()
        self._evaluator = evaluator

    def create_rule(self, rule: ApprovalRule, created_by_id: str | None = None) -> ApprovalRule:
        with LogContext.bind(tenant_id=rule.tenant_id, actor_id=created_by_id):
            now = self._clock.now()
            rule = replace(
                rule,
                created_by_id=created_by_id or rule.created_by_id,
                created_at=now,
                updated_at=now,
            )
            ensure_valid_rule(rule, self._evaluator)
            if self._store.find_by_name(rule.name, rule.tenant_id) is not None:
                raise RuleNameConflictError(rule.name)
            created = self._store.create(rule)
            logger.info(
                "approval_rule_created",
                extra={
                    "rule_id": str(created.id),
                    "rule_name": created.name,
                    "module_type": created.module_type.value,
                    "priority": created.priority,
                },
            )
            return created

    def update_rule(
        self,
        tenant_id: str,
        rule_id: UUID,
        changes: Mapping[str, Any],
        updated_by_id: str | None = None,
    ) -> ApprovalRule:
        """Apply ``changes`` (field name -> new value) to a stored rule."""
        frozen = sorted(set(changes) & _FROZEN_RULE_FIELDS)
        if frozen:
            raise ValidationError.single("changes", f"fields cannot be changed: {', '.join(frozen)}")

        with LogContext.bind(tenant_id=tenant_id, actor_id=updated_by_id):
            current = self.get_rule(tenant_id, rule_id)
            try:
                updated = replace(
                    current,
                    **changes,
                    updated_by_id=updated_by_id,
                    updated_at=self._clock.now(),
                )
            except TypeError as exc:
                raise ValidationError.single("changes", str(exc)) from exc
            ensure_valid_rule(updated, self._evaluator)
            saved = self._store.update(updated)
            logger.info(
                "approval_rule_updated",
                extra={"rule_id": str(rule_id), "changed_fields": sorted(changes)},
            )
            return saved

    def delete_rule(self, tenant_id: str, rule_id: UUID, force: bool = False) -> ApprovalRule | None:
        """Deactivate a rule, or remove it when ``force`` is set.

        Deactivation keeps the rule readable for instances that reference
        it.  A forced delete is refused while pending instances remain.
        """
        current = self.get_rule(tenant_id, rule_id)
        if not force:
            saved = self._store.update(
                replace(current, is_active=False, updated_at=self._clock.now()),
            )
            logger.info("approval_rule_deactivated", extra={"rule_id": str(rule_id)})
            return saved

        if self._store.has_pending_instances(rule_id, tenant_id):
            raise RuleInUseError(str(rule_id))
        self._store.delete(rule_id, tenant_id)
        logger.info("approval_rule_deleted", extra={"rule_id": str(rule_id)})
        return None

    def get_rule(self, tenant_id: str, rule_id: UUID) -> ApprovalRule:
        rule = self._store.find_by_id(rule_id, tenant_id)
        if rule is None:
            raise RuleNotFoundError(str(rule_id))
        return rule

    def list_rules(
        self,
        tenant_id: str,
        module_type: ModuleType | None = None,
        include_inactive: bool = True,
    ) -> list[ApprovalRule]:
        rules = self._store.find_by_tenant(tenant_id, module_type)
        if include_inactive:
            return rules
        return [r for r in rules if r.is_active]

    def seed_rules(self, rules: Iterable[ApprovalRule]) -> list[ApprovalRule]:
        """Create each rule, or update the existing rule of the same name."""
        seeded: list[ApprovalRule] = []
        for rule in rules:
            existing = self._store.find_by_name(rule.name, rule.tenant_id)
            if existing is None:
                seeded.append(self.create_rule(rule, rule.created_by_id))
                continue
            now = self._clock.now()
            updated = replace(
                rule,
                id=existing.id,
                created_at=existing.created_at,
                created_by_id=existing.created_by_id,
                updated_at=now,
            )
            ensure_valid_rule(updated, self._evaluator)
            seeded.append(self._store.update(updated))
        logger.info("approval_rules_seeded", extra={"rule_count": len(seeded)})
        return seeded
