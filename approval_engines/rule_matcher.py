"""
approval_engines.rule_matcher -- Select the governing approval rule.

Responsibility:
    Given candidate rules and entity data, drop inactive and out-of-scope
    rules, rank the rest by priority, evaluate their query conditions and
    return every match in priority order together with its auto-approval
    verdict.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Consumes the shared ``ConditionEvaluator``; never owns one of its own
    beyond the default.

Invariants enforced:
    - Deterministic rule ordering: stable sort by ascending ``priority``,
      so equal priorities keep the rule source's order.
    - Auto-approval conditions are evaluated only when enabled; a disabled
      block always yields ``should_auto_approve=False``.

Failure modes:
    - ``RuleMatchResult.require_governing()`` raises NoApplicableRuleError
      when nothing matched.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from approval_engines.conditions import ConditionEvaluator
from approval_engines.tracer import traced_engine
from approval_kernel.domain.approval import ApprovalRule, ModuleType
from approval_kernel.exceptions import NoApplicableRuleError, RuleNotFoundError
from approval_kernel.logging_config import get_logger

logger = get_logger("engines.rule_matcher")


@dataclass(frozen=True)
class RuleMatch:
    """One rule whose query conditions held for the entity."""

    rule: ApprovalRule
    should_auto_approve: bool = False

    @property
    def rule_id(self) -> UUID:
        return self.rule.id

    @property
    def priority(self) -> int:
        return self.rule.priority


@dataclass(frozen=True)
class RuleMatchResult:
    """Ranked matches; ``governing`` is the first unless overridden."""

    matches: tuple[RuleMatch, ...]
    module_type: ModuleType | None = None
    evaluated_count: int = 0
    governing_override: RuleMatch | None = None

    @property
    def matched(self) -> bool:
        return self.governing is not None

    @property
    def governing(self) -> RuleMatch | None:
        if self.governing_override is not None:
            return self.governing_override
        return self.matches[0] if self.matches else None

    @property
    def should_auto_approve(self) -> bool:
        governing = self.governing
        return governing is not None and governing.should_auto_approve

    def require_governing(self, entity_id: str | None = None) -> RuleMatch:
        governing = self.governing
        if governing is None:
            module = self.module_type.value if self.module_type else "unknown"
            raise NoApplicableRuleError(module, entity_id)
        return governing


class RuleMatcher:
    """Rank and evaluate candidate rules against entity data."""

    def __init__(self, evaluator: ConditionEvaluator | None = None) -> None:
        self._evaluator = evaluator or ConditionEvaluator()

    @property
    def evaluator(self) -> ConditionEvaluator:
        return self._evaluator

    def in_scope(
        self,
        rule: ApprovalRule,
        tenant_id: str | None,
        module_type: ModuleType | None,
    ) -> bool:
        if not rule.is_active:
            return False
        if tenant_id is not None and rule.tenant_id != tenant_id:
            return False
        if module_type is not None and rule.module_type is not module_type:
            return False
        return True

    def evaluate_auto_approval(self, rule: ApprovalRule, entity_data: Mapping[str, Any]) -> bool:
        auto = rule.auto_approval_conditions
        if not auto.enabled:
            return False
        return self._evaluator.evaluate_all(auto.conditions, entity_data)

    @traced_engine("rule_matcher", "1.0", fingerprint_fields=("tenant_id", "module_type", "entity_data"))
    def match(
        self,
        *,
        rules: Sequence[ApprovalRule],
        entity_data: Mapping[str, Any],
        tenant_id: str | None = None,
        module_type: ModuleType | None = None,
    ) -> RuleMatchResult:
        candidates = [r for r in rules if self.in_scope(r, tenant_id, module_type)]
        candidates.sort(key=lambda r: r.priority)

        matches: list[RuleMatch] = []
        for rule in candidates:
            if not self._evaluator.evaluate_all(rule.query_conditions, entity_data):
                continue
            matches.append(
                RuleMatch(
                    rule=rule,
                    should_auto_approve=self.evaluate_auto_approval(rule, entity_data),
                )
            )

        logger.info(
            "rule_match_completed",
            extra={
                "module_type": module_type.value if module_type else None,
                "candidate_count": len(candidates),
                "match_count": len(matches),
                "governing_rule_id": str(matches[0].rule_id) if matches else None,
            },
        )
        return RuleMatchResult(
            matches=tuple(matches),
            module_type=module_type,
            evaluated_count=len(candidates),
        )

    def with_override(
        self,
        result: RuleMatchResult,
        rule: ApprovalRule,
        entity_data: Mapping[str, Any],
    ) -> RuleMatchResult:
        """Pin ``rule`` as governing regardless of its conditions.

        Raises RuleNotFoundError for an inactive override rule.
        """
        if not rule.is_active:
            raise RuleNotFoundError(str(rule.id))
        override = RuleMatch(
            rule=rule,
            should_auto_approve=self.evaluate_auto_approval(rule, entity_data),
        )
        return RuleMatchResult(
            matches=result.matches,
            module_type=result.module_type,
            evaluated_count=result.evaluated_count,
            governing_override=override,
        )
