"""
Module: approval_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the approval
    calculation engines.  This is the canonical import surface for the
    service layer (approval_services) and approval_config.

Architecture position:
    Engines -- calculation layer, zero I/O.
    May only import approval_kernel domain types, exceptions and logging.
    MUST NOT import approval_services, approval_config, stores, models or db.

Invariants enforced:
    - Purity: engines NEVER call ``datetime.now()``.  ``now`` is always an
      explicit parameter; services supply it from a Clock.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Engine entry points are wrapped by ``@traced_engine`` (see
    ``approval_engines.tracer``), emitting APPROVAL_ENGINE_TRACE records.
"""

from approval_engines.conditions import (
    BUILTIN_OPERATORS,
    ConditionEvaluator,
    evaluate_condition,
    evaluate_conditions,
    resolve_field,
)
from approval_engines.decision_processor import (
    DecisionCommand,
    DecisionOutcome,
    DecisionProcessor,
)
from approval_engines.escalation import (
    DEFAULT_ESCALATION_CONFIG,
    EscalationConfig,
    EscalationScheduler,
    SweepItem,
    action_priority,
    apply_action,
)
from approval_engines.metrics import DashboardMetrics, compute_dashboard
from approval_engines.rule_matcher import RuleMatch, RuleMatcher, RuleMatchResult
from approval_engines.sla import (
    DEFAULT_CALENDAR,
    BusinessCalendar,
    SlaCalculator,
    add_business_hours,
    calculate_deadline,
    effective_sla_hours,
)

__all__ = [
    "BUILTIN_OPERATORS",
    "BusinessCalendar",
    "ConditionEvaluator",
    "DEFAULT_CALENDAR",
    "DEFAULT_ESCALATION_CONFIG",
    "DashboardMetrics",
    "DecisionCommand",
    "DecisionOutcome",
    "DecisionProcessor",
    "EscalationConfig",
    "EscalationScheduler",
    "RuleMatch",
    "RuleMatchResult",
    "RuleMatcher",
    "SlaCalculator",
    "SweepItem",
    "action_priority",
    "add_business_hours",
    "apply_action",
    "calculate_deadline",
    "compute_dashboard",
    "effective_sla_hours",
    "evaluate_condition",
    "evaluate_conditions",
    "resolve_field",
]
