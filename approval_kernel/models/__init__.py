"""SQLAlchemy ORM models for the reference SQL stores."""

from approval_kernel.models.approval import (
    ApprovalDecisionModel,
    ApprovalInstanceModel,
    ApprovalRuleModel,
    ApprovalStepModel,
)

__all__ = [
    "ApprovalDecisionModel",
    "ApprovalInstanceModel",
    "ApprovalRuleModel",
    "ApprovalStepModel",
]
