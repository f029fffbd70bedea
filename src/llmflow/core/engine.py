"""Lifecycle plumbing shared by the agent and workflow engines."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any, Generic, TypeVar

import structlog

from llmflow.core.approval import (
    ApprovalDecision,
    ApprovalGate,
    ApprovalStatus,
    pending_from_suspend,
    resolve_resume_decision,
)
from llmflow.core.exceptions import ExecutionNotFoundError, ExecutionStateError, ValidationError
from llmflow.core.state import (
    AgentExecutionState,
    ApprovalKind,
    PendingApproval,
    Status,
    WorkflowExecutionState,
)
from llmflow.core.store import ExecutionStateStore, InMemoryExecutionStore

logger = structlog.get_logger()

StateT = TypeVar("StateT", AgentExecutionState, WorkflowExecutionState)
ResultT = TypeVar("ResultT")


class ExecutionEngine(ABC, Generic[StateT, ResultT]):
    """Base class for engines that drive one kind of execution.

    Holds the state store, the approval gate and the set of cooperative
    cancellation requests, and implements the parts of the lifecycle that
    do not depend on what is being executed: loading, pausing, resuming
    bookkeeping and cancelling.
    """

    state_type: type[StateT]
    label: str = "Execution"

    def __init__(
        self,
        store: ExecutionStateStore | None = None,
        approval_gate: ApprovalGate | None = None,
    ) -> None:
        self._store: ExecutionStateStore = store or InMemoryExecutionStore()
        self._gate = approval_gate or self._default_gate()
        self._cancel_requested: set[str] = set()

    @property
    def store(self) -> ExecutionStateStore:
        return self._store

    @property
    def approval_gate(self) -> ApprovalGate:
        return self._gate

    @abstractmethod
    def _default_gate(self) -> ApprovalGate:
        """Build the gate used when none is passed to the constructor."""

    @abstractmethod
    def _result(self, state: StateT) -> ResultT:
        """Project *state* onto the caller-facing result type."""

    @abstractmethod
    def _log_context(self, state: StateT) -> dict[str, Any]:
        ...

    # ---- Queries ----

    async def get_state(self, execution_id: str) -> StateT:
        """Load the latest persisted snapshot of an execution.

        Raises:
            ExecutionNotFoundError: If the store has no such execution of
                this engine's kind.
        """
        state = await self._store.load(execution_id)
        if state is None or not isinstance(state, self.state_type):
            raise ExecutionNotFoundError(execution_id)
        return state

    async def get_result(self, execution_id: str) -> ResultT:
        return self._result(await self.get_state(execution_id))

    # ---- Cancellation ----

    async def cancel(self, execution_id: str) -> ResultT:
        """Cancel a paused or running execution.

        A paused execution is cancelled immediately and its open approval
        request is closed. A running one is flagged and stops at its next
        iteration or step checkpoint.

        Raises:
            ExecutionNotFoundError: If not found.
            ExecutionStateError: If the execution already finished.
        """
        state = await self.get_state(execution_id)
        if state.status.is_terminal:
            raise ExecutionStateError(execution_id, state.status.value, Status.CANCELLED.value)

        if state.status == Status.PAUSED:
            await self._cancel_paused(state)
        else:
            self._cancel_requested.add(execution_id)
            await logger.ainfo(f"{self.label} cancellation requested", **self._log_context(state))
        return self._result(state)

    async def _cancel_if_requested(self, state: StateT) -> bool:
        """Checkpoint: honour a pending cancellation request."""
        if state.id not in self._cancel_requested:
            return False
        await self._mark_cancelled(state)
        return True

    async def _cancel_paused(self, state: StateT) -> None:
        pending = state.pending_approval
        if pending is not None:
            await self._close_request(pending.request_id)
        await self._mark_cancelled(state)

    async def _mark_cancelled(self, state: StateT) -> None:
        self._cancel_requested.discard(state.id)
        state.mark_cancelled()
        await self._store.save(state.id, state)
        await logger.ainfo(f"{self.label} cancelled", **self._log_context(state))

    async def _close_request(self, request_id: str | None) -> None:
        if request_id is None:
            return
        request = await self._store.get_approval_request(request_id)
        if request is not None and request.is_pending:
            await self._store.update_approval_status(request_id, ApprovalStatus.CANCELLED)

    # ---- Lifecycle helpers ----

    def _finish(self, state: StateT) -> ResultT:
        """Drop the cancellation flag of a finished run and build its result."""
        if state.status.is_terminal:
            self._cancel_requested.discard(state.id)
        return self._result(state)

    @abstractmethod
    def _mark_gate_failed(self, state: StateT, exc: Exception) -> None:
        """Move *state* to FAILED after its approval gate raised *exc*."""

    async def _decide(self, state: StateT, kind: ApprovalKind, payload: Mapping[str, Any]) -> ApprovalDecision:
        """Ask the approval gate about *kind*.

        A gate that raises fails the run, so the persisted snapshot never
        stays RUNNING without anything left to drive it. The exception is
        re-raised to the caller.
        """
        try:
            return await self._gate.decide(kind, payload, state)
        except Exception as exc:
            self._cancel_requested.discard(state.id)
            self._mark_gate_failed(state, exc)
            await self._store.save(state.id, state)
            await logger.aexception(
                f"{self.label} failed",
                kind=kind.value,
                error=str(exc),
                **self._log_context(state),
            )
            raise

    async def _claim_execution_id(self, state: StateT, execution_id: str | None) -> None:
        if execution_id is None:
            return
        if await self._store.load(execution_id) is not None:
            raise ValidationError([f"Execution id '{execution_id}' is already in use"])
        state.id = execution_id

    async def _pause(
        self,
        state: StateT,
        kind: ApprovalKind,
        data: Mapping[str, Any],
        decision: ApprovalDecision,
    ) -> None:
        """Halt *state* at the *kind* gate, or cancel it if that was requested."""
        if state.id in self._cancel_requested:
            await self._close_request(decision.request_id)
            await self._mark_cancelled(state)
            return
        state.mark_paused(pending_from_suspend(kind, data, decision))
        await self._store.save(state.id, state)
        await logger.ainfo(
            f"{self.label} paused",
            kind=kind.value,
            request_id=decision.request_id,
            **self._log_context(state),
        )

    async def _begin_resume(
        self,
        execution_id: str,
        decision: ApprovalDecision | None,
    ) -> tuple[StateT, PendingApproval, ApprovalDecision]:
        """Load a paused execution and settle the decision it resumes with.

        Raises:
            ExecutionNotFoundError: If not found.
            ExecutionStateError: If the execution is not paused.
            ApprovalPendingError: If the approval request is still undecided.
        """
        state = await self.get_state(execution_id)
        if state.status != Status.PAUSED or state.pending_approval is None:
            raise ExecutionStateError(execution_id, state.status.value, Status.RUNNING.value)
        if state.id in self._cancel_requested:
            await self._cancel_paused(state)
            raise ExecutionStateError(execution_id, state.status.value, Status.RUNNING.value)

        decision = await resolve_resume_decision(self._store, state.pending_approval, decision)
        pending = state.mark_resumed()
        await self._store.save(state.id, state)
        await logger.ainfo(
            f"{self.label} resumed",
            kind=pending.kind.value,
            action=decision.action.value,
            **self._log_context(state),
        )
        return state, pending, decision
