"""Custom exceptions for the agent and workflow engines."""

from __future__ import annotations


class LLMFlowError(Exception):
    """Base exception for all llmflow errors."""


class ExecutionError(LLMFlowError):
    """Error related to an agent or workflow execution."""

    def __init__(self, execution_id: str, message: str) -> None:
        self.execution_id = execution_id
        super().__init__(f"Execution {execution_id}: {message}")


class ExecutionNotFoundError(ExecutionError):
    """Raised when an execution cannot be found in the state store."""

    def __init__(self, execution_id: str) -> None:
        super().__init__(execution_id, "not found")


class ExecutionStateError(ExecutionError):
    """Raised on an invalid execution state transition."""

    def __init__(self, execution_id: str, current: str, target: str) -> None:
        self.current_status = current
        self.target_status = target
        super().__init__(
            execution_id,
            f"cannot transition from '{current}' to '{target}'",
        )


class ValidationError(LLMFlowError):
    """Raised when agent or workflow definitions fail validation."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        super().__init__(f"Validation failed: {'; '.join(errors)}")


class InterpolationError(LLMFlowError):
    """Raised by strict interpolation when a placeholder cannot be resolved."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Unresolved template variable '{{{{{path}}}}}'")


class ApprovalError(LLMFlowError):
    """Error related to an approval request or decision."""


class ApprovalNotFoundError(ApprovalError):
    """Raised when an approval request does not exist."""

    def __init__(self, request_id: str) -> None:
        self.request_id = request_id
        super().__init__(f"Approval request {request_id}: not found")


class ApprovalPendingError(ApprovalError):
    """Raised when resuming a run whose approval request is still undecided."""

    def __init__(self, request_id: str) -> None:
        self.request_id = request_id
        super().__init__(f"Approval request {request_id}: still awaiting a decision")


class ApprovalClosedError(ApprovalError):
    """Raised when deciding on a request that is no longer pending."""

    def __init__(self, request_id: str, status: str) -> None:
        self.request_id = request_id
        self.status = status
        super().__init__(f"Approval request {request_id}: already {status}")


class DefinitionNotFoundError(LLMFlowError):
    """Raised when no agent or workflow is registered under a name."""

    def __init__(self, kind: str, name: str) -> None:
        self.kind = kind
        self.name = name
        super().__init__(f"No {kind} registered under '{name}'")
