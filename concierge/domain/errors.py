"""
Typed workflow errors.

Every rejection carries a machine-readable ``code``, a human-readable
``detail`` naming the failed precondition, and whether the caller may retry.
The API layer maps each class to an HTTP status in one place.
"""

from __future__ import annotations


class WorkflowError(Exception):
    code = "workflow_error"
    retryable = False

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationFailed(WorkflowError):
    """Malformed input, rejected before any state is read."""

    code = "validation_failed"


class NotFound(WorkflowError):
    code = "not_found"


class IllegalTransition(WorkflowError):
    """Well-formed request, but wrong current state or wrong actor."""

    code = "illegal_transition"


class TerminalStateViolation(IllegalTransition):
    code = "terminal_state"


class PreconditionFailed(WorkflowError):
    code = "precondition_failed"


class ConcurrentModification(WorkflowError):
    """Another writer changed the booking between read and write."""

    code = "concurrent_modification"
    retryable = True


class ExternalDependencyFailure(WorkflowError):
    """Payment processor or storage unreachable / timed out."""

    code = "external_dependency_failure"
    retryable = True


class PaymentDeclined(WorkflowError):
    """The processor answered and said no. Terminal for this attempt."""

    code = "payment_declined"
