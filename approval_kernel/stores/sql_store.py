"""
SQLAlchemy reference stores.

Responsibility:
    RuleStore, InstanceStore and DecisionStore over the ORM models in
    ``approval_kernel.models.approval``.  Each store works inside a Session
    owned by the caller (see ``approval_kernel.db.engine.session_scope``);
    stores flush but never commit.

Invariants enforced:
    - Every query is scoped by the ``tenant_id`` column.
    - ``SqlInstanceStore.update`` is a single conditional UPDATE on
      ``version``; zero affected rows with an existing row means a
      concurrent writer won (OptimisticLockError).
    - Duplicate rule names and duplicate pending instances are reported as
      domain conflicts before the database constraint fires.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Mapping, Sequence
from uuid import UUID

from sqlalchemy import and_, select, update
from sqlalchemy.orm import Session

from approval_kernel.domain.approval import (
    ApprovalDecisionRecord,
    ApprovalRule,
    ApprovalStatus,
    ApproverType,
    ModuleType,
)
from approval_kernel.domain.instance import ApprovalInstance
from approval_kernel.domain.step import ApprovalStep
from approval_kernel.exceptions import (
    DuplicateApprovalInstanceError,
    InstanceNotFoundError,
    OptimisticLockError,
    RuleNameConflictError,
    RuleNotFoundError,
    StepNotFoundError,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.models.approval import (
    ApprovalDecisionModel,
    ApprovalInstanceModel,
    ApprovalRuleModel,
    ApprovalStepModel,
    column_value,
)
from approval_kernel.stores.base import validate_instance_patch

logger = get_logger("stores.sql")

_PENDING = ApprovalStatus.PENDING.value


class SqlRuleStore:
    def __init__(self, session: Session) -> None:
        self._session = session

    def create(self, rule: ApprovalRule) -> ApprovalRule:
        self._check_name(rule)
        self._session.add(ApprovalRuleModel.from_dto(rule))
        self._session.flush()
        return rule

    def update(self, rule: ApprovalRule) -> ApprovalRule:
        model = self._get(rule.id, rule.tenant_id)
        self._check_name(rule)
        model.apply_dto(rule)
        self._session.flush()
        return model.to_dto()

    def find_by_id(self, rule_id: UUID, tenant_id: str) -> ApprovalRule | None:
        model = self._session.execute(
            select(ApprovalRuleModel).where(
                ApprovalRuleModel.id == rule_id,
                ApprovalRuleModel.tenant_id == tenant_id,
            )
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def find_by_name(self, name: str, tenant_id: str) -> ApprovalRule | None:
        model = self._session.execute(
            select(ApprovalRuleModel).where(
                ApprovalRuleModel.name == name,
                ApprovalRuleModel.tenant_id == tenant_id,
            )
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def find_by_tenant(self, tenant_id: str, module_type: ModuleType | None = None) -> list[ApprovalRule]:
        stmt = select(ApprovalRuleModel).where(ApprovalRuleModel.tenant_id == tenant_id)
        if module_type is not None:
            stmt = stmt.where(ApprovalRuleModel.module_type == module_type.value)
        stmt = stmt.order_by(ApprovalRuleModel.priority, ApprovalRuleModel.name)
        return [m.to_dto() for m in self._session.execute(stmt).scalars()]

    def find_applicable_rules(
        self,
        tenant_id: str,
        module_type: ModuleType,
        entity_data: Mapping[str, Any],
    ) -> list[ApprovalRule]:
        stmt = (
            select(ApprovalRuleModel)
            .where(
                ApprovalRuleModel.tenant_id == tenant_id,
                ApprovalRuleModel.module_type == module_type.value,
                ApprovalRuleModel.is_active.is_(True),
            )
            .order_by(ApprovalRuleModel.priority, ApprovalRuleModel.name)
        )
        return [m.to_dto() for m in self._session.execute(stmt).scalars()]

    def delete(self, rule_id: UUID, tenant_id: str) -> None:
        self._session.delete(self._get(rule_id, tenant_id))
        self._session.flush()

    def has_pending_instances(self, rule_id: UUID, tenant_id: str) -> bool:
        found = self._session.execute(
            select(ApprovalInstanceModel.id).where(
                ApprovalInstanceModel.rule_id == rule_id,
                ApprovalInstanceModel.tenant_id == tenant_id,
                ApprovalInstanceModel.status == _PENDING,
            ).limit(1)
        ).first()
        return found is not None

    def _get(self, rule_id: UUID, tenant_id: str) -> ApprovalRuleModel:
        model = self._session.execute(
            select(ApprovalRuleModel).where(
                ApprovalRuleModel.id == rule_id,
                ApprovalRuleModel.tenant_id == tenant_id,
            )
        ).scalar_one_or_none()
        if model is None:
            raise RuleNotFoundError(str(rule_id))
        return model

    def _check_name(self, rule: ApprovalRule) -> None:
        clash = self._session.execute(
            select(ApprovalRuleModel.id).where(
                ApprovalRuleModel.tenant_id == rule.tenant_id,
                ApprovalRuleModel.name == rule.name,
                ApprovalRuleModel.id != rule.id,
            )
        ).first()
        if clash is not None:
            raise RuleNameConflictError(rule.name)


class SqlInstanceStore:
    def __init__(self, session: Session) -> None:
        self._session = session

    # -- instances -------------------------------------------------------

    def create(self, instance: ApprovalInstance) -> ApprovalInstance:
        if instance.is_pending:
            existing = self.find_pending_for_entity(
                instance.tenant_id, instance.entity_type, instance.entity_id,
            )
            if existing:
                raise DuplicateApprovalInstanceError(
                    instance.entity_type.value, instance.entity_id, str(existing[0].id),
                )
        model = ApprovalInstanceModel.from_dto(instance)
        self._session.add(model)
        self._session.flush()
        return model.to_dto()

    def update(
        self,
        instance_id: UUID,
        tenant_id: str,
        patch: Mapping[str, Any],
        expected_version: int | None = None,
    ) -> ApprovalInstance:
        validate_instance_patch(patch)
        conditions = [
            ApprovalInstanceModel.id == instance_id,
            ApprovalInstanceModel.tenant_id == tenant_id,
        ]
        if expected_version is not None:
            conditions.append(ApprovalInstanceModel.version == expected_version)

        values = {name: column_value(value) for name, value in patch.items()}
        values["version"] = ApprovalInstanceModel.version + 1
        result = self._session.execute(
            update(ApprovalInstanceModel)
            .where(and_(*conditions))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            if self._load(instance_id, tenant_id) is None:
                raise InstanceNotFoundError(str(instance_id))
            logger.warning(
                "optimistic_lock_conflict",
                extra={"instance_id": str(instance_id), "expected_version": expected_version},
            )
            raise OptimisticLockError("ApprovalInstance", str(instance_id))

        model = self._load(instance_id, tenant_id, refresh=True)
        return model.to_dto()

    def find_by_id(self, instance_id: UUID, tenant_id: str) -> ApprovalInstance | None:
        model = self._load(instance_id, tenant_id)
        return model.to_dto() if model is not None else None

    def find_by_tenant(self, tenant_id: str) -> list[ApprovalInstance]:
        return self._select(ApprovalInstanceModel.tenant_id == tenant_id)

    def find_pending(self, tenant_id: str) -> list[ApprovalInstance]:
        return self._select(
            ApprovalInstanceModel.tenant_id == tenant_id,
            ApprovalInstanceModel.status == _PENDING,
        )

    def find_pending_for_entity(
        self, tenant_id: str, entity_type: ModuleType, entity_id: str,
    ) -> list[ApprovalInstance]:
        return self._select(
            ApprovalInstanceModel.tenant_id == tenant_id,
            ApprovalInstanceModel.entity_type == entity_type.value,
            ApprovalInstanceModel.entity_id == entity_id,
            ApprovalInstanceModel.status == _PENDING,
        )

    def find_pending_by_user(self, tenant_id: str, user_id: str) -> list[ApprovalInstance]:
        rows = self._session.execute(
            select(ApprovalInstanceModel, ApprovalStepModel)
            .join(
                ApprovalStepModel,
                and_(
                    ApprovalStepModel.instance_id == ApprovalInstanceModel.id,
                    ApprovalStepModel.step_index == ApprovalInstanceModel.current_step_index,
                ),
            )
            .where(
                ApprovalInstanceModel.tenant_id == tenant_id,
                ApprovalInstanceModel.status == _PENDING,
                ApprovalStepModel.status == _PENDING,
            )
            .order_by(ApprovalInstanceModel.created_at, ApprovalInstanceModel.id)
        ).all()
        # Approver lists are JSON; filter in Python for portability.
        return [
            instance.to_dto()
            for instance, step in rows
            if any(
                a.get("type") == ApproverType.USER.value and a.get("identifier") == user_id
                for a in step.approvers or ()
            )
        ]

    def find_expired(self, tenant_id: str, as_of: datetime, grace_hours: float = 0) -> list[ApprovalInstance]:
        cutoff = as_of - timedelta(hours=grace_hours)
        return self._select(
            ApprovalInstanceModel.tenant_id == tenant_id,
            ApprovalInstanceModel.status == _PENDING,
            ApprovalInstanceModel.sla_deadline.is_not(None),
            ApprovalInstanceModel.sla_deadline < cutoff,
        )

    def find_needing_reminder(
        self, tenant_id: str, as_of: datetime, thresholds: Sequence[float],
    ) -> list[ApprovalInstance]:
        return [
            i for i in self.find_pending(tenant_id)
            if i.should_send_reminder(as_of, thresholds)
        ]

    # -- steps -----------------------------------------------------------

    def create_step(self, step: ApprovalStep) -> ApprovalStep:
        model = ApprovalStepModel.from_dto(step)
        self._session.add(model)
        self._session.flush()
        return model.to_dto()

    def update_step(self, step: ApprovalStep) -> ApprovalStep:
        model = self._session.execute(
            select(ApprovalStepModel).where(
                ApprovalStepModel.id == step.id,
                ApprovalStepModel.tenant_id == step.tenant_id,
            )
        ).scalar_one_or_none()
        if model is None:
            raise StepNotFoundError(str(step.instance_id), str(step.id))
        model.apply_dto(step)
        self._session.flush()
        return model.to_dto()

    def find_steps(self, instance_id: UUID, tenant_id: str) -> list[ApprovalStep]:
        models = self._session.execute(
            select(ApprovalStepModel)
            .where(
                ApprovalStepModel.instance_id == instance_id,
                ApprovalStepModel.tenant_id == tenant_id,
            )
            .order_by(ApprovalStepModel.step_index)
        ).scalars()
        return [m.to_dto() for m in models]

    # -- internals -------------------------------------------------------

    def _load(self, instance_id: UUID, tenant_id: str, refresh: bool = False) -> ApprovalInstanceModel | None:
        stmt = select(ApprovalInstanceModel).where(
            ApprovalInstanceModel.id == instance_id,
            ApprovalInstanceModel.tenant_id == tenant_id,
        )
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        return self._session.execute(stmt).scalar_one_or_none()

    def _select(self, *criteria) -> list[ApprovalInstance]:
        models = self._session.execute(
            select(ApprovalInstanceModel)
            .where(*criteria)
            .order_by(ApprovalInstanceModel.created_at, ApprovalInstanceModel.id)
        ).scalars()
        return [m.to_dto() for m in models]


class SqlDecisionStore:
    def __init__(self, session: Session) -> None:
        self._session = session

    def create_decision(self, decision: ApprovalDecisionRecord) -> ApprovalDecisionRecord:
        self._session.add(ApprovalDecisionModel.from_dto(decision))
        self._session.flush()
        return decision

    def find_by_instance(self, instance_id: UUID, tenant_id: str) -> list[ApprovalDecisionRecord]:
        models = self._session.execute(
            select(ApprovalDecisionModel)
            .where(
                ApprovalDecisionModel.instance_id == instance_id,
                ApprovalDecisionModel.tenant_id == tenant_id,
            )
            .order_by(ApprovalDecisionModel.created_at)
        ).scalars()
        return [m.to_dto() for m in models]
