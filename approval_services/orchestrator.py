"""
approval_services.orchestrator -- Central DI container for approval services.

Responsibility:
    Creates the stores and the three services exactly once and wires them
    together around one clock and one engine configuration.

Architecture position:
    Services -- top of the service layer; the only place where stores and
    services are constructed and composed.

Invariants enforced:
    - Single-instance lifecycle: every service within one orchestrator
      shares the same stores, clock and configuration.
    - DI transparency: all wiring is visible in ``__init__``.

Usage:
    from approval_services.orchestrator import ApprovalOrchestrator

    with session_scope() as session:
        orchestrator = ApprovalOrchestrator.for_session(session, config=get_engine_config())
        orchestrator.approvals.request_approval(...)

    # Tests and single-process tooling:
    orchestrator = ApprovalOrchestrator.in_memory(clock=DeterministicClock())
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from approval_config.schema import EngineConfig
from approval_engines.conditions import ConditionEvaluator
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.ports import (
    DecisionStore,
    InstanceStore,
    Notifier,
    PermissionResolver,
    RuleStore,
)
from approval_kernel.stores.memory import (
    InMemoryDecisionStore,
    InMemoryInstanceStore,
    InMemoryRuleStore,
)
from approval_kernel.stores.sql_store import SqlDecisionStore, SqlInstanceStore, SqlRuleStore
from approval_services.approval_service import ApprovalService
from approval_services.escalation_service import EscalationService
from approval_services.rule_service import RuleService


class ApprovalOrchestrator:
    """Central factory for approval services.

    Does NOT manage transaction boundaries; callers commit or roll back
    the session they pass to ``for_session``.
    """

    def __init__(
        self,
        *,
        rule_store: RuleStore,
        instance_store: InstanceStore,
        decision_store: DecisionStore,
        config: EngineConfig | None = None,
        clock: Clock | None = None,
        permission_resolver: PermissionResolver | None = None,
        notifier: Notifier | None = None,
        evaluator: ConditionEvaluator | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.clock = clock or SystemClock()
        self.evaluator = evaluator or ConditionEvaluator()

        self.rule_store = rule_store
        self.instance_store = instance_store
        self.decision_store = decision_store

        self.rules = RuleService(rule_store, clock=self.clock, evaluator=self.evaluator)
        self.approvals = ApprovalService(
            rule_source=rule_store,
            instance_store=instance_store,
            decision_store=decision_store,
            permission_resolver=permission_resolver,
            clock=self.clock,
            config=self.config,
            evaluator=self.evaluator,
        )
        self.escalations = EscalationService(
            instance_store=instance_store,
            rule_source=rule_store,
            decision_store=decision_store,
            notifier=notifier,
            clock=self.clock,
            config=self.config.escalation,
        )

    @classmethod
    def for_session(cls, session: Session, **kwargs) -> ApprovalOrchestrator:
        return cls(
            rule_store=SqlRuleStore(session),
            instance_store=SqlInstanceStore(session),
            decision_store=SqlDecisionStore(session),
            **kwargs,
        )

    @classmethod
    def in_memory(cls, **kwargs) -> ApprovalOrchestrator:
        instances = InMemoryInstanceStore()
        return cls(
            rule_store=InMemoryRuleStore(instances),
            instance_store=instances,
            decision_store=InMemoryDecisionStore(),
            **kwargs,
        )
