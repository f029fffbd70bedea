"""Tool-calling agent definition and the engine that drives it."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

from llmflow.config import EngineConfig
from llmflow.core.approval import (
    ApprovalDecision,
    ApprovalGate,
    CallbackApprovalGate,
    GateCallback,
    PersistedApprovalGate,
)
from llmflow.core.engine import ExecutionEngine
from llmflow.core.exceptions import ApprovalError, ValidationError
from llmflow.core.messages import Message, ToolCall, unanswered_tool_calls
from llmflow.core.serialization import dumps
from llmflow.core.state import (
    AgentExecutionState,
    ApprovalKind,
    PendingApproval,
    Status,
    ToolExecution,
    Usage,
)
from llmflow.core.store import ExecutionStateStore
from llmflow.core.tools import Tool, ToolInvoker

if TYPE_CHECKING:
    from llmflow.providers.base import Provider

logger = structlog.get_logger()


# ---------------------------------------------------------------------------
# Agent definition (input)
# ---------------------------------------------------------------------------

class Agent:
    """Declarative definition of a tool-calling agent.

    Builder methods return ``self`` so a definition reads as one chain::

        agent = (
            Agent(provider, "gpt-4o-mini", "Answer using the tools.")
            .with_tools(search_tool)
            .with_max_iterations(5)
            .with_before_tool_execution(confirm)
        )
    """

    def __init__(
        self,
        provider: Provider,
        model: str,
        system_prompt: str | None = None,
        *,
        name: str = "agent",
        config: EngineConfig | None = None,
    ) -> None:
        self.provider = provider
        self.model = model
        self.system_prompt = system_prompt
        self.name = name
        self.config = config or EngineConfig()
        self.max_iterations = self.config.max_iterations
        self.tools: list[Tool] = []
        self.callbacks: dict[ApprovalKind, GateCallback] = {}
        self.persisted_kinds: frozenset[ApprovalKind] | None = None
        self.approval_timeout_minutes = self.config.approval_timeout_minutes
        self.persist_approvals = False

    def with_tools(self, *tools: Tool) -> Agent:
        self.tools.extend(tools)
        return self

    def with_max_iterations(self, max_iterations: int) -> Agent:
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self.max_iterations = max_iterations
        return self

    def with_before_tool_execution(self, callback: GateCallback) -> Agent:
        """``callback(name, arguments)``; may return replacement arguments."""
        self.callbacks[ApprovalKind.TOOL_EXECUTION] = callback
        return self

    def with_after_tool_execution(self, callback: GateCallback) -> Agent:
        """``callback(execution)``; may return a replacement execution or result."""
        self.callbacks[ApprovalKind.TOOL_RESULT] = callback
        return self

    def with_before_final_response(self, callback: GateCallback) -> Agent:
        """``callback(content, messages, tool_executions)``; may return replacement content."""
        self.callbacks[ApprovalKind.FINAL_RESPONSE] = callback
        return self

    def with_out_of_process_approval(
        self,
        *kinds: ApprovalKind,
        timeout_minutes: int | None = None,
    ) -> Agent:
        """Suspend at *kinds* (tool execution by default) until decided elsewhere."""
        self.persist_approvals = True
        self.persisted_kinds = frozenset(kinds) if kinds else frozenset({ApprovalKind.TOOL_EXECUTION})
        if timeout_minutes is not None:
            self.approval_timeout_minutes = timeout_minutes
        return self

    def validate(self) -> list[str]:
        """Return a list of validation error messages. Empty if valid."""
        errors: list[str] = []
        if not self.name:
            errors.append("Agent name is required")
        if not self.model:
            errors.append("Agent model is required")
        seen: set[str] = set()
        for tool in self.tools:
            if tool.name in seen:
                errors.append(f"Duplicate tool name '{tool.name}'")
            seen.add(tool.name)
        return errors

    async def run(self, input: str | Message, *, store: ExecutionStateStore | None = None) -> AgentResult:
        """Run the agent on a fresh engine."""
        return await AgentEngine(self, store=store).run(input)


# ---------------------------------------------------------------------------
# Agent result (output)
# ---------------------------------------------------------------------------

@dataclass
class AgentResult:
    """Caller-facing outcome of an agent run at its current stopping point."""

    execution_id: str
    status: Status
    content: str | None = None
    messages: list[Message] = field(default_factory=list)
    tool_executions: list[ToolExecution] = field(default_factory=list)
    iterations: int = 0
    usage: Usage = field(default_factory=Usage)
    pending_approval: PendingApproval | None = None
    failure_reason: str | None = None
    error: str | None = None

    @property
    def is_paused(self) -> bool:
        return self.status == Status.PAUSED

    @property
    def succeeded(self) -> bool:
        return self.status == Status.COMPLETED

    @classmethod
    def from_state(cls, state: AgentExecutionState) -> AgentResult:
        return cls(
            execution_id=state.id,
            status=state.status,
            content=state.final_content,
            messages=list(state.messages),
            tool_executions=list(state.tool_executions),
            iterations=state.current_iteration,
            usage=state.usage,
            pending_approval=state.pending_approval,
            failure_reason=state.failure_reason,
            error=state.error,
        )


def _preview_arguments(call: ToolCall) -> dict[str, Any] | str:
    """Best-effort parse of a call's arguments for gate callbacks."""
    try:
        arguments = json.loads(call.raw_arguments or "{}")
    except json.JSONDecodeError:
        return call.raw_arguments
    return arguments if isinstance(arguments, dict) else call.raw_arguments


# ---------------------------------------------------------------------------
# Agent Engine
# ---------------------------------------------------------------------------

class AgentEngine(ExecutionEngine[AgentExecutionState, AgentResult]):
    """Drive an :class:`Agent` through its reasoning iterations.

    Each iteration calls the provider with the full transcript. A reply
    without tool calls is the final answer; otherwise every requested call
    passes the ``tool_execution`` gate, runs, passes the ``tool_result``
    gate and is answered with a tool-role message before the next
    iteration. A gate that suspends pauses the run; the position inside a
    tool-call batch is recovered from the transcript on resume.
    """

    state_type = AgentExecutionState
    label = "Agent run"

    def __init__(
        self,
        agent: Agent,
        store: ExecutionStateStore | None = None,
        approval_gate: ApprovalGate | None = None,
    ) -> None:
        errors = agent.validate()
        if errors:
            raise ValidationError(errors)
        self.agent = agent
        self._invoker = ToolInvoker(agent.tools)
        super().__init__(store, approval_gate)

    def _default_gate(self) -> ApprovalGate:
        agent = self.agent
        if agent.persist_approvals:
            return PersistedApprovalGate(
                self._store,
                kinds=agent.persisted_kinds,
                timeout_minutes=agent.approval_timeout_minutes,
                callbacks=agent.callbacks,
            )
        return CallbackApprovalGate(agent.callbacks)

    def _result(self, state: AgentExecutionState) -> AgentResult:
        return AgentResult.from_state(state)

    def _log_context(self, state: AgentExecutionState) -> dict[str, Any]:
        return {
            "execution_id": state.id,
            "agent": state.agent_name,
            "iteration": state.current_iteration,
        }

    def _mark_gate_failed(self, state: AgentExecutionState, exc: Exception) -> None:
        state.mark_failed("approval_error", str(exc))

    # ---- Execution ----

    async def run(self, input: str | Message, execution_id: str | None = None) -> AgentResult:
        """Start a new run seeded with *input*.

        A string becomes the user message; a prebuilt :class:`Message` is
        appended as is.

        Returns once the run completes, fails, is cancelled or pauses.

        Raises:
            ValidationError: If *execution_id* is already in use.
        """
        agent = self.agent
        state = AgentExecutionState(
            agent_name=agent.name,
            model=agent.model,
            max_iterations=agent.max_iterations,
        )
        await self._claim_execution_id(state, execution_id)
        if agent.system_prompt:
            state.messages.append(Message.system(agent.system_prompt))
        state.messages.append(input if isinstance(input, Message) else Message.user(input))
        await self._store.save(state.id, state)

        await logger.ainfo(
            "Agent run started",
            model=agent.model,
            max_iterations=state.max_iterations,
            tools=self._invoker.names,
            **self._log_context(state),
        )
        await self._drive(state)
        return self._finish(state)

    async def resume(
        self,
        execution_id: str,
        decision: ApprovalDecision | None = None,
    ) -> AgentResult:
        """Continue a paused run from its persisted snapshot.

        The suspended gate is re-entered with *decision* (or the decision
        recorded on its approval request), the rest of the tool-call batch
        is finished and the iteration loop continues.

        Raises:
            ExecutionNotFoundError: If not found.
            ExecutionStateError: If the run is not paused.
            ApprovalPendingError: If the approval request is still undecided.
        """
        state, pending, decision = await self._begin_resume(execution_id, decision)
        data = pending.data

        if pending.kind == ApprovalKind.FINAL_RESPONSE:
            await self._complete(state, data.get("content"), decision)
            return self._finish(state)

        if pending.kind == ApprovalKind.TOOL_EXECUTION:
            call = ToolCall.from_dict(data["tool_call"])
            if not await self._execute_tool_call(state, call, decision):
                return self._finish(state)
        elif pending.kind == ApprovalKind.TOOL_RESULT:
            self._record_tool_result(state, ToolExecution.from_dict(data["execution"]), decision)
        else:
            raise ApprovalError(f"Agent runs cannot resume from a '{pending.kind.value}' gate")

        await self._drive(state)
        return self._finish(state)

    # ---- Iteration loop ----

    async def _drive(self, state: AgentExecutionState) -> None:
        """Run iterations until the run leaves RUNNING."""
        leftover = unanswered_tool_calls(state.messages)
        if leftover and not await self._run_tool_calls(state, leftover):
            return

        tools = [tool.to_schema() for tool in self.agent.tools] or None
        while True:
            if await self._cancel_if_requested(state):
                return
            if state.current_iteration >= state.max_iterations:
                state.mark_failed(
                    "max_iterations_exceeded",
                    f"Agent did not finish within {state.max_iterations} iterations",
                )
                await self._store.save(state.id, state)
                await logger.awarning("Agent run failed", reason=state.failure_reason, **self._log_context(state))
                return

            state.current_iteration += 1
            await self._store.save(state.id, state)

            try:
                response = await self.agent.provider.chat(
                    list(state.messages),
                    model=state.model,
                    tools=tools,
                )
            except Exception as exc:
                state.mark_failed("provider_error", str(exc))
                await self._store.save(state.id, state)
                await logger.aerror(
                    "Agent run failed",
                    reason=state.failure_reason,
                    error=str(exc),
                    **self._log_context(state),
                )
                return

            state.fold_usage(response.usage)
            state.messages.append(Message.assistant(response.content, response.tool_calls))
            await logger.adebug(
                "Agent iteration",
                tool_calls=[c.name for c in response.tool_calls],
                total_tokens=state.usage.total_tokens,
                **self._log_context(state),
            )

            if not response.tool_calls:
                await self._complete(state, response.content)
                return
            if not await self._run_tool_calls(state, list(response.tool_calls)):
                return

    async def _complete(
        self,
        state: AgentExecutionState,
        content: str | None,
        decision: ApprovalDecision | None = None,
    ) -> None:
        if decision is None:
            decision = await self._decide(
                state,
                ApprovalKind.FINAL_RESPONSE,
                {
                    "content": content,
                    "messages": list(state.messages),
                    "tool_executions": list(state.tool_executions),
                },
            )
            if decision.is_suspend:
                await self._pause(state, ApprovalKind.FINAL_RESPONSE, {"content": content}, decision)
                return

        if decision.is_modify:
            content = decision.data if isinstance(decision.data, str) else dumps(decision.data)

        state.mark_completed(content)
        await self._store.save(state.id, state)
        await logger.ainfo(
            "Agent run completed",
            tool_executions=len(state.tool_executions),
            total_tokens=state.usage.total_tokens,
            **self._log_context(state),
        )

    # ---- Tool calls ----

    async def _run_tool_calls(self, state: AgentExecutionState, calls: list[ToolCall]) -> bool:
        """Process *calls* in order. Returns False once the run pauses."""
        for call in calls:
            decision = await self._decide(
                state,
                ApprovalKind.TOOL_EXECUTION,
                {"name": call.name, "arguments": _preview_arguments(call), "tool_call": call},
            )
            if decision.is_suspend:
                await self._pause(
                    state,
                    ApprovalKind.TOOL_EXECUTION,
                    {"tool_call": call.to_dict(), "name": call.name, "arguments": _preview_arguments(call)},
                    decision,
                )
                return False
            if not await self._execute_tool_call(state, call, decision):
                return False
        return True

    async def _execute_tool_call(
        self,
        state: AgentExecutionState,
        call: ToolCall,
        decision: ApprovalDecision,
    ) -> bool:
        """Act on a ``tool_execution`` decision. Returns False if the run pauses."""
        if decision.is_reject:
            arguments = _preview_arguments(call)
            execution = ToolExecution.rejected(call, arguments if isinstance(arguments, dict) else None)
            await logger.ainfo("Tool call rejected", tool=call.name, **self._log_context(state))
            self._append_execution(state, execution)
            return True

        if decision.is_modify and isinstance(decision.data, Mapping):
            call = call.with_arguments(dict(decision.data))

        execution = await self._invoker.invoke(call)
        review = await self._decide(
            state,
            ApprovalKind.TOOL_RESULT,
            {"name": call.name, "execution": execution},
        )
        if review.is_suspend:
            await self._pause(
                state,
                ApprovalKind.TOOL_RESULT,
                {"tool_call": call.to_dict(), "name": call.name, "execution": execution.to_dict()},
                review,
            )
            return False
        self._record_tool_result(state, execution, review)
        return True

    def _record_tool_result(
        self,
        state: AgentExecutionState,
        execution: ToolExecution,
        review: ApprovalDecision,
    ) -> None:
        if review.is_modify:
            execution = execution.with_review(review.data)
        self._append_execution(state, execution)

    @staticmethod
    def _append_execution(state: AgentExecutionState, execution: ToolExecution) -> None:
        state.tool_executions.append(execution)
        state.messages.append(Message.tool(execution.to_message_content(), execution.tool_call_id))
