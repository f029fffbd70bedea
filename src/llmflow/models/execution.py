"""Agent and workflow execution database models."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Enum, Float, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from llmflow.core.state import AgentExecutionState, Status, WorkflowExecutionState
from llmflow.models.base import Base, JSONType


class _ExecutionColumns:
    """Columns shared by both execution tables."""

    status: Mapped[Status] = mapped_column(
        Enum(Status, name="execution_status", native_enum=False),
        default=Status.RUNNING,
        index=True,
    )

    # Usage tracking
    prompt_tokens: Mapped[int] = mapped_column(Integer, default=0)
    completion_tokens: Mapped[int] = mapped_column(Integer, default=0)
    total_tokens: Mapped[int] = mapped_column(Integer, default=0)
    cost: Mapped[float] = mapped_column(Float, default=0.0)

    # Pending approvals
    has_pending_approval: Mapped[bool] = mapped_column(default=False, index=True)
    pending_approval_type: Mapped[str | None] = mapped_column(String(50), default=None)
    pending_approval_data: Mapped[dict[str, Any] | None] = mapped_column(JSONType, default=None)

    error: Mapped[str | None] = mapped_column(Text, default=None)

    # Full resumable snapshot
    snapshot: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)

    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    paused_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    resumed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)

    def _apply_common(self, state: AgentExecutionState | WorkflowExecutionState) -> None:
        self.status = state.status
        self.prompt_tokens = state.usage.prompt_tokens
        self.completion_tokens = state.usage.completion_tokens
        self.total_tokens = state.usage.total_tokens
        self.cost = state.usage.cost
        pending = state.pending_approval
        self.has_pending_approval = pending is not None
        self.pending_approval_type = pending.kind.value if pending else None
        self.pending_approval_data = pending.to_dict() if pending else None
        self.error = state.error
        self.snapshot = state.to_dict()
        self.started_at = state.started_at
        self.paused_at = state.paused_at
        self.resumed_at = state.resumed_at
        self.completed_at = state.completed_at


class AgentExecutionRecord(_ExecutionColumns, Base):
    """One row per agent run."""

    __tablename__ = "llm_agent_execution"
    __table_args__ = (
        Index("ix_llm_agent_execution_status_pending", "status", "has_pending_approval"),
    )

    agent_name: Mapped[str] = mapped_column(String(255), index=True)
    model: Mapped[str] = mapped_column(String(255), index=True)
    current_iteration: Mapped[int] = mapped_column(Integer, default=0)
    max_iterations: Mapped[int] = mapped_column(Integer, default=10)
    final_content: Mapped[str | None] = mapped_column(Text, default=None)
    failure_reason: Mapped[str | None] = mapped_column(String(100), default=None)

    def apply(self, state: AgentExecutionState) -> None:
        """Copy the latest snapshot of *state* onto this row."""
        self._apply_common(state)
        self.agent_name = state.agent_name
        self.model = state.model
        self.current_iteration = state.current_iteration
        self.max_iterations = state.max_iterations
        self.final_content = state.final_content
        self.failure_reason = state.failure_reason


class WorkflowExecutionRecord(_ExecutionColumns, Base):
    """One row per workflow run."""

    __tablename__ = "llm_workflow_execution"
    __table_args__ = (
        Index("ix_llm_workflow_execution_status_pending", "status", "has_pending_approval"),
    )

    workflow_name: Mapped[str] = mapped_column(String(255), index=True)
    current_step: Mapped[str | None] = mapped_column(String(255), default=None, index=True)
    step_index: Mapped[int] = mapped_column(Integer, default=0)
    completed_steps: Mapped[int] = mapped_column(Integer, default=0)
    total_steps: Mapped[int] = mapped_column(Integer, default=0)
    failed_step: Mapped[str | None] = mapped_column(String(255), default=None)

    def apply(self, state: WorkflowExecutionState) -> None:
        """Copy the latest snapshot of *state* onto this row."""
        self._apply_common(state)
        self.workflow_name = state.workflow_name
        self.current_step = state.current_step
        self.step_index = state.step_index
        self.completed_steps = state.completed_steps
        self.total_steps = state.total_steps
        self.failed_step = state.failed_step
