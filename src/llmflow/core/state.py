"""Agent and workflow execution state management."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Union
from uuid import uuid4

from llmflow.core.context import ExecutionContext
from llmflow.core.exceptions import ExecutionStateError
from llmflow.core.messages import Message, ToolCall
from llmflow.core.serialization import dumps, to_jsonable


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class Status(str, enum.Enum):
    """Unified status enum for agent and workflow executions."""

    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (Status.COMPLETED, Status.FAILED, Status.CANCELLED)


# Valid state transitions for executions
_TRANSITIONS: dict[Status, set[Status]] = {
    Status.RUNNING: {Status.PAUSED, Status.COMPLETED, Status.FAILED, Status.CANCELLED},
    Status.PAUSED: {Status.RUNNING, Status.CANCELLED},
}


def can_transition(current: Status, target: Status) -> bool:
    """Check whether a state transition is valid."""
    return target in _TRANSITIONS.get(current, set())


class ApprovalKind(str, enum.Enum):
    """Decision points at which a run may be gated."""

    TOOL_EXECUTION = "tool_execution"
    TOOL_RESULT = "tool_result"
    FINAL_RESPONSE = "final_response"
    STEP_EXECUTION = "step_execution"
    STEP_RESULT = "step_result"

    @property
    def reviews_output(self) -> bool:
        """Output-review gates treat a rejection as "keep the original"."""
        return self in (ApprovalKind.TOOL_RESULT, ApprovalKind.FINAL_RESPONSE, ApprovalKind.STEP_RESULT)


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Usage:
    """Token and cost accounting for one or more provider calls."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    cost: float = 0.0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def __add__(self, other: Usage | None) -> Usage:
        if other is None:
            return self
        return Usage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            cost=self.cost + other.cost,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
            "cost": self.cost,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Usage:
        data = data or {}
        return cls(
            prompt_tokens=int(data.get("prompt_tokens", data.get("promptTokens", 0)) or 0),
            completion_tokens=int(data.get("completion_tokens", data.get("completionTokens", 0)) or 0),
            cost=float(data.get("cost", 0.0) or 0.0),
        )


@dataclass(frozen=True)
class ToolExecution:
    """Outcome of a single tool call, successful or not."""

    tool_call_id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    result: Any = None
    error: str | None = None
    error_detail: str | None = None
    started_at: datetime = field(default_factory=_utcnow)
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @classmethod
    def rejected(cls, call: ToolCall, arguments: dict[str, Any] | None = None) -> ToolExecution:
        return cls(
            tool_call_id=call.id,
            name=call.name,
            arguments=arguments or {},
            error="rejected_by_approval",
            error_detail="Tool execution was rejected by the approval gate",
        )

    def with_review(self, replacement: Any) -> ToolExecution:
        """Return the copy a review gate asked for.

        A ``ToolExecution`` replaces this one wholesale, keeping the call id
        the tool reply is keyed by; any other value becomes the new result.
        """
        if isinstance(replacement, ToolExecution):
            return replace(replacement, tool_call_id=self.tool_call_id)
        return replace(self, result=replacement, error=None, error_detail=None)

    def to_message_content(self) -> str:
        """Render the content of the tool-role reply sent back to the model."""
        if self.error is not None:
            payload: dict[str, Any] = {"error": self.error, "detail": self.error_detail}
            if self.error == "rejected_by_approval":
                payload["skipped"] = True
            return dumps(payload)
        if isinstance(self.result, str):
            return self.result
        return dumps(self.result)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tool_call_id": self.tool_call_id,
            "name": self.name,
            "arguments": to_jsonable(self.arguments),
            "result": to_jsonable(self.result),
            "error": self.error,
            "error_detail": self.error_detail,
            "started_at": self.started_at.isoformat(),
            "duration_seconds": self.duration_seconds,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolExecution:
        return cls(
            tool_call_id=data["tool_call_id"],
            name=data["name"],
            arguments=data.get("arguments") or {},
            result=data.get("result"),
            error=data.get("error"),
            error_detail=data.get("error_detail"),
            started_at=_parse(data.get("started_at")) or _utcnow(),
            duration_seconds=float(data.get("duration_seconds", 0.0)),
        )


@dataclass(frozen=True)
class StepResult:
    """Result of executing a single workflow step."""

    step_name: str
    output: Any = None
    usage: Usage = field(default_factory=Usage)
    duration_seconds: float = 0.0

    def with_review(self, replacement: Any) -> StepResult:
        if isinstance(replacement, StepResult):
            return replace(replacement, step_name=self.step_name)
        return replace(self, output=replacement)

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_name": self.step_name,
            "output": to_jsonable(self.output),
            "usage": self.usage.to_dict(),
            "duration_seconds": self.duration_seconds,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StepResult:
        return cls(
            step_name=data["step_name"],
            output=data.get("output"),
            usage=Usage.from_dict(data.get("usage")),
            duration_seconds=float(data.get("duration_seconds", 0.0)),
        )


@dataclass(frozen=True)
class PendingApproval:
    """The gate a paused run is waiting on."""

    kind: ApprovalKind
    data: dict[str, Any] = field(default_factory=dict)
    request_id: str | None = None
    requested_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "data": to_jsonable(self.data),
            "request_id": self.request_id,
            "requested_at": self.requested_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> PendingApproval | None:
        if not data:
            return None
        return cls(
            kind=ApprovalKind(data["kind"]),
            data=data.get("data") or {},
            request_id=data.get("request_id"),
            requested_at=_parse(data.get("requested_at")) or _utcnow(),
        )


# ---------------------------------------------------------------------------
# Execution states
# ---------------------------------------------------------------------------

@dataclass
class _ExecutionState:
    """Lifecycle bookkeeping shared by agent and workflow executions."""

    id: str = field(default_factory=lambda: str(uuid4()))
    status: Status = Status.RUNNING
    usage: Usage = field(default_factory=Usage)
    pending_approval: PendingApproval | None = None
    error: str | None = None
    started_at: datetime = field(default_factory=_utcnow)
    paused_at: datetime | None = None
    resumed_at: datetime | None = None
    completed_at: datetime | None = None

    # ---- state transitions ----

    def _enter(self, target: Status) -> None:
        if not can_transition(self.status, target):
            raise ExecutionStateError(self.id, self.status.value, target.value)
        self.status = target

    def fold_usage(self, usage: Usage | None) -> None:
        self.usage = self.usage + usage

    def mark_paused(self, pending: PendingApproval) -> None:
        self._enter(Status.PAUSED)
        self.pending_approval = pending
        self.paused_at = _utcnow()

    def mark_resumed(self) -> PendingApproval:
        """Return to RUNNING and hand back the approval that was pending."""
        pending = self.pending_approval
        if pending is None:
            raise ExecutionStateError(self.id, self.status.value, Status.RUNNING.value)
        self._enter(Status.RUNNING)
        self.pending_approval = None
        self.resumed_at = _utcnow()
        return pending

    def mark_cancelled(self) -> None:
        self._enter(Status.CANCELLED)
        self.pending_approval = None
        self.completed_at = _utcnow()

    def _finish(self, target: Status) -> None:
        self._enter(target)
        self.completed_at = _utcnow()

    # ---- serialisation ----

    def _base_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "usage": self.usage.to_dict(),
            "pending_approval": self.pending_approval.to_dict() if self.pending_approval else None,
            "error": self.error,
            "started_at": _iso(self.started_at),
            "paused_at": _iso(self.paused_at),
            "resumed_at": _iso(self.resumed_at),
            "completed_at": _iso(self.completed_at),
        }

    @staticmethod
    def _base_kwargs(data: dict[str, Any]) -> dict[str, Any]:
        return {
            "id": data["id"],
            "status": Status(data["status"]),
            "usage": Usage.from_dict(data.get("usage")),
            "pending_approval": PendingApproval.from_dict(data.get("pending_approval")),
            "error": data.get("error"),
            "started_at": _parse(data.get("started_at")) or _utcnow(),
            "paused_at": _parse(data.get("paused_at")),
            "resumed_at": _parse(data.get("resumed_at")),
            "completed_at": _parse(data.get("completed_at")),
        }


@dataclass
class AgentExecutionState(_ExecutionState):
    """Runtime state of a single agent run."""

    agent_name: str = "agent"
    model: str = ""
    current_iteration: int = 0
    max_iterations: int = 10
    messages: list[Message] = field(default_factory=list)
    tool_executions: list[ToolExecution] = field(default_factory=list)
    final_content: str | None = None
    failure_reason: str | None = None

    execution_type = "agent"

    @property
    def iterations_remaining(self) -> int:
        return self.max_iterations - self.current_iteration

    def mark_completed(self, content: str | None) -> None:
        self._finish(Status.COMPLETED)
        self.final_content = content

    def mark_failed(self, reason: str, error: str | None = None) -> None:
        self._finish(Status.FAILED)
        self.failure_reason = reason
        self.error = error

    def to_dict(self) -> dict[str, Any]:
        return {
            "execution_type": self.execution_type,
            **self._base_dict(),
            "agent_name": self.agent_name,
            "model": self.model,
            "current_iteration": self.current_iteration,
            "max_iterations": self.max_iterations,
            "messages": [m.to_dict() for m in self.messages],
            "tool_executions": [t.to_dict() for t in self.tool_executions],
            "final_content": self.final_content,
            "failure_reason": self.failure_reason,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AgentExecutionState:
        """Restore state from a persisted dict."""
        return cls(
            **cls._base_kwargs(data),
            agent_name=data.get("agent_name", "agent"),
            model=data.get("model", ""),
            current_iteration=int(data.get("current_iteration", 0)),
            max_iterations=int(data.get("max_iterations", 10)),
            messages=[Message.from_dict(m) for m in data.get("messages", [])],
            tool_executions=[ToolExecution.from_dict(t) for t in data.get("tool_executions", [])],
            final_content=data.get("final_content"),
            failure_reason=data.get("failure_reason"),
        )


@dataclass
class WorkflowExecutionState(_ExecutionState):
    """Runtime state of a single workflow run."""

    workflow_name: str = "workflow"
    current_step: str | None = None
    step_index: int = 0
    total_steps: int = 0
    step_results: dict[str, StepResult] = field(default_factory=dict)
    skipped_steps: list[str] = field(default_factory=list)
    context: ExecutionContext = field(default_factory=ExecutionContext)
    failed_step: str | None = None

    execution_type = "workflow"

    @property
    def completed_steps(self) -> int:
        return len(self.step_results)

    @property
    def progress_pct(self) -> float:
        if not self.total_steps:
            return 0.0
        return round(self.step_index / self.total_steps * 100, 1)

    @property
    def final_output(self) -> Any:
        if not self.step_results:
            return None
        return next(reversed(self.step_results.values())).output

    def record_step(self, result: StepResult) -> None:
        self.step_results[result.step_name] = result
        self.context.set(result.step_name, result.output)
        self.step_index += 1

    def skip_step(self, step_name: str) -> None:
        self.skipped_steps.append(step_name)
        self.step_index += 1

    def mark_completed(self) -> None:
        self._finish(Status.COMPLETED)
        self.current_step = None

    def mark_failed(self, step_name: str | None, error: str) -> None:
        self._finish(Status.FAILED)
        self.failed_step = step_name
        self.error = error

    def to_dict(self) -> dict[str, Any]:
        return {
            "execution_type": self.execution_type,
            **self._base_dict(),
            "workflow_name": self.workflow_name,
            "current_step": self.current_step,
            "step_index": self.step_index,
            "completed_steps": self.completed_steps,
            "total_steps": self.total_steps,
            "step_results": {name: r.to_dict() for name, r in self.step_results.items()},
            "skipped_steps": list(self.skipped_steps),
            "context_variables": to_jsonable(self.context.all()),
            "failed_step": self.failed_step,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkflowExecutionState:
        """Restore state from a persisted dict."""
        return cls(
            **cls._base_kwargs(data),
            workflow_name=data.get("workflow_name", "workflow"),
            current_step=data.get("current_step"),
            step_index=int(data.get("step_index", 0)),
            total_steps=int(data.get("total_steps", 0)),
            step_results={
                name: StepResult.from_dict(r) for name, r in (data.get("step_results") or {}).items()
            },
            skipped_steps=list(data.get("skipped_steps", [])),
            context=ExecutionContext(data.get("context_variables") or {}),
            failed_step=data.get("failed_step"),
        )


ExecutionState = Union[AgentExecutionState, WorkflowExecutionState]


def load_state(data: dict[str, Any]) -> ExecutionState:
    """Restore an agent or workflow state from its persisted dict."""
    if data.get("execution_type") == WorkflowExecutionState.execution_type:
        return WorkflowExecutionState.from_dict(data)
    return AgentExecutionState.from_dict(data)
