"""
approval_services -- Package init and public API.

Responsibility:
    Stateful orchestration services that compose the pure approval
    engines (approval_engines/) with stores, the clock and configuration.
    This is the **only** layer that may hold stores or sessions and read
    wall-clock time.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction (enforced by tests/architecture/test_layer_boundary.py):
        approval_services/ -> approval_config/   (allowed)
        approval_services/ -> approval_engines/  (allowed)
        approval_services/ -> approval_kernel/   (allowed)
        approval_engines/  -> approval_services/ (FORBIDDEN)
        approval_kernel/   -> approval_services/ (FORBIDDEN)

Invariants enforced:
    - Layer isolation: approval_kernel and approval_engines must never
      import from this package.
    - DI transparency: service wiring is centralised in
      ApprovalOrchestrator; no service self-constructs its stores.

Failure modes:
    - ImportError at startup if a service's dependency graph is broken.
"""

from approval_kernel.logging_config import get_logger

logger = get_logger("services")

from approval_services.approval_service import (
    ApprovalRequestResult,
    ApprovalService,
    InstanceDetails,
)
from approval_services.escalation_service import EscalationService, SweepReport
from approval_services.orchestrator import ApprovalOrchestrator
from approval_services.rule_service import RuleService

__all__ = [
    "ApprovalOrchestrator",
    "ApprovalRequestResult",
    "ApprovalService",
    "EscalationService",
    "InstanceDetails",
    "RuleService",
    "SweepReport",
]
