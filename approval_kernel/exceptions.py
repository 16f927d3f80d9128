"""
Typed Exception Hierarchy for the Approval Kernel.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from ApprovalKernelError:

    ApprovalKernelError (base)
    |
    +-- ValidationError
    |   +-- InvalidDecisionError
    |
    +-- NotFoundError
    |   +-- RuleNotFoundError
    |   +-- InstanceNotFoundError
    |   +-- StepNotFoundError
    |
    +-- ConflictError
    |   +-- InstanceAlreadyProcessedError
    |   +-- InvalidApprovalTransitionError
    |   +-- DuplicateDecisionError
    |   +-- DuplicateApprovalInstanceError
    |   +-- RuleNameConflictError
    |   +-- RuleInUseError
    |   +-- OptimisticLockError
    |   +-- ImmutabilityViolationError
    |
    +-- AuthorizationError
    |   +-- UnauthorizedApproverError
    |
    +-- NoApplicableRuleError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                          | When Raised
----------------|-------------------------------|---------------------------------------
Validation      | VALIDATION_ERROR              | Missing/malformed field, out of range
                | INVALID_DECISION              | Decision payload incomplete
----------------|-------------------------------|---------------------------------------
Not found       | RULE_NOT_FOUND                | Rule absent for tenant
                | INSTANCE_NOT_FOUND            | Instance absent for tenant
                | STEP_NOT_FOUND                | Step absent for instance
----------------|-------------------------------|---------------------------------------
Conflict        | INSTANCE_ALREADY_PROCESSED    | Decision on a non-pending instance
                | INVALID_APPROVAL_TRANSITION   | Illegal step/instance status change
                | DUPLICATE_DECISION            | Same approver decided twice on a step
                | DUPLICATE_APPROVAL_INSTANCE   | Entity already has a pending instance
                | RULE_NAME_CONFLICT            | Rule name already used by tenant
                | RULE_IN_USE                   | Hard delete of a referenced rule
                | OPTIMISTIC_LOCK_CONFLICT      | Concurrent modification detected
                | IMMUTABILITY_VIOLATION        | Mutating an append-only decision
----------------|-------------------------------|---------------------------------------
Authorization   | UNAUTHORIZED_APPROVER         | Approver not entitled to the step
----------------|-------------------------------|---------------------------------------
Business        | NO_APPLICABLE_RULE            | No active rule matched the entity

===============================================================================
HANDLING PATTERNS
===============================================================================

    try:
        service.process_decision(...)
    except InstanceAlreadyProcessedError:
        refresh_and_show_current_state()
    except ValidationError as e:
        return {"error": e.code, "fields": [f.as_dict() for f in e.field_errors]}

NoApplicableRuleError is a legitimate business outcome (the entity needs
no approval), never a transient failure.  UnauthorizedApproverError
carries no step or approver details by construction.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class FieldError:
    """One field-level validation failure."""

    field: str
    message: str

    def as_dict(self) -> dict[str, str]:
        return {"field": self.field, "message": self.message}


class ApprovalKernelError(Exception):
    """
    Base exception for all approval kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "APPROVAL_KERNEL_ERROR"


# Validation


class ValidationError(ApprovalKernelError):
    """One or more fields are missing, malformed or out of range."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field_errors: list[FieldError] | tuple[FieldError, ...], message: str | None = None):
        self.field_errors = tuple(field_errors)
        summary = "; ".join(f"{e.field}: {e.message}" for e in self.field_errors)
        super().__init__(message or f"Validation failed: {summary}")

    @classmethod
    def single(cls, field: str, message: str) -> "ValidationError":
        return cls([FieldError(field, message)])


class InvalidDecisionError(ValidationError):
    """Decision payload is incomplete for its decision kind."""

    code: str = "INVALID_DECISION"


# Not found


class NotFoundError(ApprovalKernelError):
    """Base exception for entities absent for the given tenant."""

    code: str = "NOT_FOUND"


class RuleNotFoundError(NotFoundError):
    code: str = "RULE_NOT_FOUND"

    def __init__(self, rule_id: str):
        self.rule_id = rule_id
        super().__init__(f"Approval rule not found: {rule_id}")


class InstanceNotFoundError(NotFoundError):
    code: str = "INSTANCE_NOT_FOUND"

    def __init__(self, instance_id: str):
        self.instance_id = instance_id
        super().__init__(f"Approval instance not found: {instance_id}")


class StepNotFoundError(NotFoundError):
    code: str = "STEP_NOT_FOUND"

    def __init__(self, instance_id: str, step_ref: str):
        self.instance_id = instance_id
        self.step_ref = step_ref
        super().__init__(f"Approval step {step_ref} not found for instance {instance_id}")


# Conflict


class ConflictError(ApprovalKernelError):
    """Base exception for requests that conflict with current state."""

    code: str = "CONFLICT"


class InstanceAlreadyProcessedError(ConflictError):
    """A decision arrived for an instance that is no longer pending."""

    code: str = "INSTANCE_ALREADY_PROCESSED"

    def __init__(self, instance_id: str, status: str):
        self.instance_id = instance_id
        self.status = status
        super().__init__(f"Approval instance {instance_id} already processed (status={status})")


class InvalidApprovalTransitionError(ConflictError):
    code: str = "INVALID_APPROVAL_TRANSITION"

    def __init__(self, from_status: str, to_status: str, entity: str = "instance"):
        self.from_status = from_status
        self.to_status = to_status
        self.entity = entity
        super().__init__(f"Invalid {entity} transition: {from_status} -> {to_status}")


class DuplicateDecisionError(ConflictError):
    code: str = "DUPLICATE_DECISION"

    def __init__(self, step_id: str, approver_id: str):
        self.step_id = step_id
        self.approver_id = approver_id
        super().__init__(f"Approver {approver_id} already decided on step {step_id}")


class DuplicateApprovalInstanceError(ConflictError):
    code: str = "DUPLICATE_APPROVAL_INSTANCE"

    def __init__(self, entity_type: str, entity_id: str, existing_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.existing_id = existing_id
        super().__init__(
            f"Pending approval {existing_id} already exists for {entity_type}/{entity_id}"
        )


class RuleNameConflictError(ConflictError):
    code: str = "RULE_NAME_CONFLICT"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Approval rule name already in use: {name}")


class RuleInUseError(ConflictError):
    code: str = "RULE_IN_USE"

    def __init__(self, rule_id: str):
        self.rule_id = rule_id
        super().__init__(f"Approval rule {rule_id} is referenced by pending instances")


class OptimisticLockError(ConflictError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


class ImmutabilityViolationError(ConflictError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Authorization


class AuthorizationError(ApprovalKernelError):
    code: str = "AUTHORIZATION_ERROR"


class UnauthorizedApproverError(AuthorizationError):
    """Approver is not entitled to act.  Deliberately detail-free."""

    code: str = "UNAUTHORIZED_APPROVER"

    def __init__(self) -> None:
        super().__init__("Not authorized to decide on this approval")


# Business outcome


class NoApplicableRuleError(ApprovalKernelError):
    """No active rule applies to the entity."""

    code: str = "NO_APPLICABLE_RULE"

    def __init__(self, module_type: str, entity_id: str | None = None):
        self.module_type = module_type
        self.entity_id = entity_id
        super().__init__(f"No applicable approval rule for {module_type}")
