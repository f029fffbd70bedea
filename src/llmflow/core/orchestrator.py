"""High-level interface for running, resuming and cancelling executions by id."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import structlog

from llmflow.core.agent import Agent, AgentEngine, AgentResult
from llmflow.core.approval import ApprovalDecision, ApprovalRequest, expire_if_due
from llmflow.core.exceptions import (
    ApprovalClosedError,
    ApprovalNotFoundError,
    DefinitionNotFoundError,
    ExecutionNotFoundError,
    ValidationError,
)
from llmflow.core.state import AgentExecutionState, ExecutionState
from llmflow.core.store import ExecutionStateStore, InMemoryExecutionStore
from llmflow.core.workflow import Workflow, WorkflowEngine, WorkflowResult

logger = structlog.get_logger()


class Orchestrator:
    """Registry of named agents and workflows sharing one state store.

    Wraps one engine per definition so callers, such as the HTTP API, can
    act on an execution knowing only its id: the persisted snapshot names
    the agent or workflow that owns it.
    """

    def __init__(self, store: ExecutionStateStore | None = None) -> None:
        self._store: ExecutionStateStore = store or InMemoryExecutionStore()
        self._agents: dict[str, AgentEngine] = {}
        self._workflows: dict[str, WorkflowEngine] = {}

    @property
    def store(self) -> ExecutionStateStore:
        return self._store

    # ---- Registration ----

    def register_agent(self, agent: Agent) -> AgentEngine:
        """Register *agent* under its name and return its engine."""
        if agent.name in self._agents:
            raise ValidationError([f"Agent '{agent.name}' is already registered"])
        engine = AgentEngine(agent, store=self._store)
        self._agents[agent.name] = engine
        return engine

    def register_workflow(self, workflow: Workflow) -> WorkflowEngine:
        """Register *workflow* under its name and return its engine."""
        if workflow.name in self._workflows:
            raise ValidationError([f"Workflow '{workflow.name}' is already registered"])
        engine = WorkflowEngine(workflow, store=self._store)
        self._workflows[workflow.name] = engine
        return engine

    @property
    def agent_names(self) -> list[str]:
        return list(self._agents)

    @property
    def workflow_names(self) -> list[str]:
        return list(self._workflows)

    # ---- Submission ----

    async def run_agent(
        self,
        name: str,
        input: str,
        execution_id: str | None = None,
    ) -> AgentResult:
        """Start a run of the agent registered as *name*.

        Raises:
            DefinitionNotFoundError: If no such agent is registered.
        """
        return await self._agent_engine(name).run(input, execution_id=execution_id)

    async def run_workflow(
        self,
        name: str,
        input: Mapping[str, Any] | None = None,
        execution_id: str | None = None,
    ) -> WorkflowResult:
        """Start a run of the workflow registered as *name*.

        Raises:
            DefinitionNotFoundError: If no such workflow is registered.
        """
        return await self._workflow_engine(name).run(input, execution_id=execution_id)

    # ---- Control ----

    async def resume(
        self,
        execution_id: str,
        decision: ApprovalDecision | None = None,
    ) -> AgentResult | WorkflowResult:
        """Resume a paused execution with the engine that owns it."""
        engine = await self._engine_for(execution_id)
        return await engine.resume(execution_id, decision)

    async def cancel(self, execution_id: str) -> AgentResult | WorkflowResult:
        engine = await self._engine_for(execution_id)
        return await engine.cancel(execution_id)

    async def decide(self, request_id: str, decision: ApprovalDecision) -> ApprovalRequest:
        """Record a decision on a pending approval request without resuming.

        A later :meth:`resume` without an explicit decision picks it up.

        Raises:
            ApprovalNotFoundError: If the request does not exist.
            ApprovalClosedError: If the request is no longer pending
                or its deadline has passed.
        """
        request = await self._store.get_approval_request(request_id)
        if request is None:
            raise ApprovalNotFoundError(request_id)
        await expire_if_due(self._store, request)
        if not request.is_pending:
            raise ApprovalClosedError(request_id, request.status.value)
        await self._store.record_approval_decision(request_id, decision)
        await logger.ainfo(
            "Approval decided",
            request_id=request_id,
            execution_id=request.execution_id,
            action=decision.action.value,
            decided_by=decision.decided_by,
        )
        updated = await self._store.get_approval_request(request_id)
        return updated if updated is not None else request

    # ---- Monitoring ----

    async def get_state(self, execution_id: str) -> ExecutionState:
        """Raises ExecutionNotFoundError if the store has no such execution."""
        state = await self._store.load(execution_id)
        if state is None:
            raise ExecutionNotFoundError(execution_id)
        return state

    async def pending_approvals(self, execution_id: str | None = None) -> list[ApprovalRequest]:
        return await self._store.list_pending_approvals(execution_id)

    # ---- Internal helpers ----

    def _agent_engine(self, name: str) -> AgentEngine:
        engine = self._agents.get(name)
        if engine is None:
            raise DefinitionNotFoundError("agent", name)
        return engine

    def _workflow_engine(self, name: str) -> WorkflowEngine:
        engine = self._workflows.get(name)
        if engine is None:
            raise DefinitionNotFoundError("workflow", name)
        return engine

    async def _engine_for(self, execution_id: str) -> AgentEngine | WorkflowEngine:
        state = await self.get_state(execution_id)
        if isinstance(state, AgentExecutionState):
            return self._agent_engine(state.agent_name)
        return self._workflow_engine(state.workflow_name)
