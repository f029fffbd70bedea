"""Pydantic schemas for API request and response models."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from llmflow.core.approval import ApprovalAction, ApprovalDecision, ApprovalRequest
from llmflow.core.state import AgentExecutionState, ExecutionState


# ---------------------------------------------------------------------------
# Approval schemas
# ---------------------------------------------------------------------------

class DecisionRequest(BaseModel):
    """A human decision on a suspended gate."""

    action: Literal["approve", "reject", "modify"] = Field(
        ...,
        description="Approve, reject, or approve with replacement data.",
        json_schema_extra={"examples": ["approve"]},
    )
    data: Any = Field(
        default=None,
        description="Replacement arguments, prompt or output when action is 'modify'.",
    )
    decided_by: str | None = Field(default=None, max_length=255)
    reason: str | None = Field(default=None, max_length=2000)

    def to_decision(self, request_id: str | None = None) -> ApprovalDecision:
        return ApprovalDecision(
            action=ApprovalAction(self.action),
            data=self.data,
            request_id=request_id,
            decided_by=self.decided_by,
            reason=self.reason,
        )


class ResumeRequest(BaseModel):
    """Request body for resuming a paused execution.

    Without a decision the decision already recorded on the pending
    approval request is used.
    """

    decision: DecisionRequest | None = None


class ApprovalResponse(BaseModel):
    """Response representation of an approval request."""

    id: str
    execution_id: str
    kind: str
    key: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    status: str
    timeout_minutes: int | None = None
    created_at: datetime
    expires_at: datetime | None = None
    decided_at: datetime | None = None
    decision: dict[str, Any] | None = None

    @classmethod
    def from_request(cls, request: ApprovalRequest) -> ApprovalResponse:
        return cls.model_validate(request.to_dict())


# ---------------------------------------------------------------------------
# Execution schemas
# ---------------------------------------------------------------------------

class UsageResponse(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cost: float = 0.0


class ExecutionResponse(BaseModel):
    """Summary of an agent or workflow execution."""

    execution_id: str
    execution_type: Literal["agent", "workflow"]
    name: str
    status: str
    usage: UsageResponse
    pending_approval: dict[str, Any] | None = None
    error: str | None = None

    # Agent runs
    current_iteration: int | None = None
    max_iterations: int | None = None
    final_content: str | None = None
    failure_reason: str | None = None

    # Workflow runs
    current_step: str | None = None
    completed_steps: int | None = None
    total_steps: int | None = None
    progress_pct: float | None = None
    skipped_steps: list[str] | None = None
    failed_step: str | None = None
    final_output: Any = None

    @classmethod
    def from_state(cls, state: ExecutionState) -> ExecutionResponse:
        data = state.to_dict()
        common = {
            "execution_id": state.id,
            "execution_type": data["execution_type"],
            "status": state.status.value,
            "usage": UsageResponse(**data["usage"]),
            "pending_approval": data["pending_approval"],
            "error": state.error,
        }
        if isinstance(state, AgentExecutionState):
            return cls(
                **common,
                name=state.agent_name,
                current_iteration=state.current_iteration,
                max_iterations=state.max_iterations,
                final_content=state.final_content,
                failure_reason=state.failure_reason,
            )
        results = data["step_results"]
        return cls(
            **common,
            name=state.workflow_name,
            current_step=state.current_step,
            completed_steps=state.completed_steps,
            total_steps=state.total_steps,
            progress_pct=state.progress_pct,
            skipped_steps=list(state.skipped_steps),
            failed_step=state.failed_step,
            final_output=results[next(reversed(results))]["output"] if results else None,
        )


# ---------------------------------------------------------------------------
# Health schemas
# ---------------------------------------------------------------------------

class HealthResponse(BaseModel):
    """Response for the health check endpoint."""

    status: str = Field(..., json_schema_extra={"examples": ["healthy"]})
    version: str = Field(..., json_schema_extra={"examples": ["0.1.0"]})
    environment: str = Field(..., json_schema_extra={"examples": ["production"]})
    agents: list[str] = Field(default_factory=list)
    workflows: list[str] = Field(default_factory=list)
