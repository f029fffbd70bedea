"""Declarative prompt workflows and the engine that executes them."""

from __future__ import annotations

import time
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
from llmflow.core.context import ExecutionContext
from llmflow.core.engine import ExecutionEngine
from llmflow.core.exceptions import ApprovalError, InterpolationError, ValidationError
from llmflow.core.interpolation import InterpolationEngine
from llmflow.core.messages import Message
from llmflow.core.state import (
    ApprovalKind,
    PendingApproval,
    Status,
    StepResult,
    Usage,
    WorkflowExecutionState,
)
from llmflow.core.store import ExecutionStateStore

if TYPE_CHECKING:
    from llmflow.providers.base import Provider

logger = structlog.get_logger()


# ---------------------------------------------------------------------------
# Workflow definition (input)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class WorkflowStep:
    """A single prompt step.

    ``prompt`` is a template rendered against the run's context.
    ``output_schema`` switches the step to structured output; the provider
    returns a value of that type instead of text.
    """

    name: str
    prompt: str
    model: str | None = None
    output_schema: Any = None


class Workflow:
    """Declarative definition of an ordered list of prompt steps.

    Every step's output is stored in the run context under the step name,
    so later prompts can reference it as ``{{step_name}}`` or
    ``{{step_name.field}}``.
    """

    def __init__(
        self,
        provider: Provider,
        default_model: str,
        *,
        name: str = "workflow",
        config: EngineConfig | None = None,
    ) -> None:
        self.provider = provider
        self.default_model = default_model
        self.name = name
        self.config = config or EngineConfig()
        self.steps: list[WorkflowStep] = []
        self.variables: dict[str, Any] = {}
        self.callbacks: dict[ApprovalKind, GateCallback] = {}
        self.persisted_kinds: frozenset[ApprovalKind] | None = None
        self.approval_timeout_minutes = self.config.approval_timeout_minutes
        self.persist_approvals = False

    def add_step(
        self,
        name: str,
        prompt: str,
        model: str | None = None,
        output_schema: Any = None,
    ) -> Workflow:
        """Append a step.

        Raises:
            ValidationError: If a step with the same name already exists.
        """
        if any(step.name == name for step in self.steps):
            raise ValidationError([f"Duplicate step name '{name}'"])
        self.steps.append(WorkflowStep(name=name, prompt=prompt, model=model, output_schema=output_schema))
        return self

    def with_variable(self, name: str, value: Any) -> Workflow:
        self.variables[name] = value
        return self

    def with_before_step(self, callback: GateCallback) -> Workflow:
        """``callback(step_name, prompt, context)``; may return a replacement prompt."""
        self.callbacks[ApprovalKind.STEP_EXECUTION] = callback
        return self

    def with_after_step(self, callback: GateCallback) -> Workflow:
        """``callback(step_name, result, context)``; may return a replacement result or output."""
        self.callbacks[ApprovalKind.STEP_RESULT] = callback
        return self

    def with_out_of_process_approval(
        self,
        *kinds: ApprovalKind,
        timeout_minutes: int | None = None,
    ) -> Workflow:
        """Suspend at *kinds* (step execution by default) until decided elsewhere."""
        self.persist_approvals = True
        self.persisted_kinds = frozenset(kinds) if kinds else frozenset({ApprovalKind.STEP_EXECUTION})
        if timeout_minutes is not None:
            self.approval_timeout_minutes = timeout_minutes
        return self

    def validate(self) -> list[str]:
        """Return a list of validation error messages. Empty if valid."""
        errors: list[str] = []
        if not self.name:
            errors.append("Workflow name is required")
        if not self.default_model:
            errors.append("Workflow default model is required")
        if not self.steps:
            errors.append("Workflow must have at least one step")
        for i, step in enumerate(self.steps):
            if not step.name:
                errors.append(f"Step {i} is missing a name")
        return errors

    async def run(
        self,
        input: Mapping[str, Any] | None = None,
        *,
        store: ExecutionStateStore | None = None,
    ) -> WorkflowResult:
        """Run the workflow on a fresh engine."""
        return await WorkflowEngine(self, store=store).run(input)


# ---------------------------------------------------------------------------
# Workflow result (output)
# ---------------------------------------------------------------------------

@dataclass
class WorkflowResult:
    """Caller-facing outcome of a workflow run at its current stopping point."""

    execution_id: str
    status: Status
    step_results: dict[str, StepResult] = field(default_factory=dict)
    skipped_steps: list[str] = field(default_factory=list)
    context: dict[str, Any] = field(default_factory=dict)
    usage: Usage = field(default_factory=Usage)
    pending_approval: PendingApproval | None = None
    failed_step: str | None = None
    error: str | None = None

    @property
    def completed_steps(self) -> int:
        return len(self.step_results)

    @property
    def final_output(self) -> Any:
        if not self.step_results:
            return None
        return next(reversed(self.step_results.values())).output

    @property
    def is_paused(self) -> bool:
        return self.status == Status.PAUSED

    @property
    def succeeded(self) -> bool:
        return self.status == Status.COMPLETED

    @classmethod
    def from_state(cls, state: WorkflowExecutionState) -> WorkflowResult:
        return cls(
            execution_id=state.id,
            status=state.status,
            step_results=dict(state.step_results),
            skipped_steps=list(state.skipped_steps),
            context=state.context.all(),
            usage=state.usage,
            pending_approval=state.pending_approval,
            failed_step=state.failed_step,
            error=state.error,
        )


# ---------------------------------------------------------------------------
# Workflow Engine
# ---------------------------------------------------------------------------

class WorkflowEngine(ExecutionEngine[WorkflowExecutionState, WorkflowResult]):
    """Execute a :class:`Workflow` step by step.

    Per step: render the prompt, pass the ``step_execution`` gate, call the
    provider, pass the ``step_result`` gate, then record the result and
    publish its output into the context. A provider failure fails the run
    and keeps the results gathered so far.
    """

    state_type = WorkflowExecutionState
    label = "Workflow run"

    def __init__(
        self,
        workflow: Workflow,
        store: ExecutionStateStore | None = None,
        approval_gate: ApprovalGate | None = None,
    ) -> None:
        errors = workflow.validate()
        if errors:
            raise ValidationError(errors)
        self.workflow = workflow
        self._renderer = InterpolationEngine(strict=workflow.config.strict_interpolation)
        super().__init__(store, approval_gate)

    def _default_gate(self) -> ApprovalGate:
        workflow = self.workflow
        if workflow.persist_approvals:
            return PersistedApprovalGate(
                self._store,
                kinds=workflow.persisted_kinds,
                timeout_minutes=workflow.approval_timeout_minutes,
                callbacks=workflow.callbacks,
            )
        return CallbackApprovalGate(workflow.callbacks)

    def _result(self, state: WorkflowExecutionState) -> WorkflowResult:
        return WorkflowResult.from_state(state)

    def _log_context(self, state: WorkflowExecutionState) -> dict[str, Any]:
        return {
            "execution_id": state.id,
            "workflow": state.workflow_name,
            "step": state.current_step,
        }

    def _mark_gate_failed(self, state: WorkflowExecutionState, exc: Exception) -> None:
        state.mark_failed(state.current_step, str(exc))

    # ---- Execution ----

    async def run(
        self,
        input: Mapping[str, Any] | None = None,
        execution_id: str | None = None,
    ) -> WorkflowResult:
        """Start a new run.

        The context is seeded with the workflow's variables, then *input*
        (input wins on name clashes).

        Raises:
            ValidationError: If *execution_id* is already in use.
        """
        workflow = self.workflow
        state = WorkflowExecutionState(
            workflow_name=workflow.name,
            total_steps=len(workflow.steps),
            context=ExecutionContext({**workflow.variables, **(input or {})}),
        )
        await self._claim_execution_id(state, execution_id)
        await self._store.save(state.id, state)

        await logger.ainfo(
            "Workflow run started",
            total_steps=state.total_steps,
            **self._log_context(state),
        )
        await self._drive(state)
        return self._finish(state)

    async def resume(
        self,
        execution_id: str,
        decision: ApprovalDecision | None = None,
    ) -> WorkflowResult:
        """Continue a paused run from its persisted snapshot.

        Raises:
            ExecutionNotFoundError: If not found.
            ExecutionStateError: If the run is not paused.
            ApprovalPendingError: If the approval request is still undecided.
        """
        state, pending, decision = await self._begin_resume(execution_id, decision)
        data = pending.data
        step = self.workflow.steps[state.step_index]

        if pending.kind == ApprovalKind.STEP_EXECUTION:
            proceed = await self._execute_step(state, step, data.get("prompt", ""), decision)
        elif pending.kind == ApprovalKind.STEP_RESULT:
            proceed = await self._review_step(state, StepResult.from_dict(data["result"]), decision)
        else:
            raise ApprovalError(f"Workflow runs cannot resume from a '{pending.kind.value}' gate")

        if proceed:
            await self._drive(state)
        return self._finish(state)

    # ---- Step loop ----

    async def _drive(self, state: WorkflowExecutionState) -> None:
        steps = self.workflow.steps
        while state.step_index < len(steps):
            if await self._cancel_if_requested(state):
                return

            step = steps[state.step_index]
            state.current_step = step.name
            await self._store.save(state.id, state)

            try:
                prompt = self._renderer.render(step.prompt, state.context)
            except InterpolationError as exc:
                await self._fail(state, step, exc)
                return

            decision = await self._decide(
                state,
                ApprovalKind.STEP_EXECUTION,
                {"step_name": step.name, "prompt": prompt, "context": state.context},
            )
            if decision.is_suspend:
                await self._pause(
                    state,
                    ApprovalKind.STEP_EXECUTION,
                    {"step_name": step.name, "prompt": prompt},
                    decision,
                )
                return
            if not await self._execute_step(state, step, prompt, decision):
                return

        state.mark_completed()
        await self._store.save(state.id, state)
        await logger.ainfo(
            "Workflow run completed",
            completed_steps=state.completed_steps,
            skipped_steps=state.skipped_steps,
            total_tokens=state.usage.total_tokens,
            **self._log_context(state),
        )

    async def _execute_step(
        self,
        state: WorkflowExecutionState,
        step: WorkflowStep,
        prompt: str,
        decision: ApprovalDecision,
    ) -> bool:
        """Act on a ``step_execution`` decision. Returns False if the run stops."""
        if decision.is_reject:
            state.skip_step(step.name)
            await logger.ainfo("Step skipped", **self._log_context(state))
            return True
        if decision.is_modify and isinstance(decision.data, str):
            prompt = decision.data

        model = step.model or self.workflow.default_model
        start = time.perf_counter()
        try:
            output, usage = await self._call_provider(step, prompt, model)
        except Exception as exc:
            await self._fail(state, step, exc)
            return False

        state.fold_usage(usage)
        result = StepResult(
            step_name=step.name,
            output=output,
            usage=usage or Usage(),
            duration_seconds=time.perf_counter() - start,
        )
        return await self._review_step(state, result)

    async def _call_provider(self, step: WorkflowStep, prompt: str, model: str) -> tuple[Any, Usage | None]:
        messages = [Message.user(prompt)]
        provider = self.workflow.provider
        if step.output_schema is None:
            response = await provider.chat(messages, model=model)
            return response.content, response.usage
        structured = await provider.structured_chat(messages, step.output_schema, model=model)
        return structured.value, structured.usage

    async def _review_step(
        self,
        state: WorkflowExecutionState,
        result: StepResult,
        decision: ApprovalDecision | None = None,
    ) -> bool:
        """Pass *result* through the ``step_result`` gate and record it."""
        if decision is None:
            decision = await self._decide(
                state,
                ApprovalKind.STEP_RESULT,
                {"step_name": result.step_name, "result": result, "context": state.context},
            )
            if decision.is_suspend:
                await self._pause(
                    state,
                    ApprovalKind.STEP_RESULT,
                    {"step_name": result.step_name, "result": result.to_dict()},
                    decision,
                )
                return False

        if decision.is_modify:
            result = result.with_review(decision.data)
        state.record_step(result)
        await logger.ainfo(
            "Step completed",
            duration_seconds=round(result.duration_seconds, 4),
            progress_pct=state.progress_pct,
            **self._log_context(state),
        )
        return True

    async def _fail(self, state: WorkflowExecutionState, step: WorkflowStep, exc: Exception) -> None:
        state.mark_failed(step.name, str(exc))
        await self._store.save(state.id, state)
        await logger.aerror(
            "Workflow run failed",
            failed_step=step.name,
            error=str(exc),
            **self._log_context(state),
        )
