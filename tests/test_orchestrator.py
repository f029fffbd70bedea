"""Tests for the orchestrator."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from llmflow.core.agent import Agent, AgentResult
from llmflow.core.approval import ApprovalDecision, ApprovalStatus
from llmflow.core.exceptions import (
    ApprovalClosedError,
    ApprovalNotFoundError,
    DefinitionNotFoundError,
    ExecutionNotFoundError,
    ValidationError,
)
from llmflow.core.orchestrator import Orchestrator
from llmflow.core.state import Status
from llmflow.core.workflow import Workflow, WorkflowResult


@pytest.fixture
def gated_agent(provider, echo_tool) -> Agent:
    provider.will_call_tool("echo", {"text": "hi"}).will_return("done")
    return (
        Agent(provider, "fake-model", "use the tool", name="helper")
        .with_tools(echo_tool)
        .with_out_of_process_approval()
    )


@pytest.fixture
def gated_workflow(provider) -> Workflow:
    return (
        Workflow(provider, "fake-model", name="blog")
        .add_step("draft", "Write about {{topic}}")
        .with_out_of_process_approval()
    )


def test_register_and_list(orchestrator, gated_agent, gated_workflow):
    orchestrator.register_agent(gated_agent)
    orchestrator.register_workflow(gated_workflow)

    assert orchestrator.agent_names == ["helper"]
    assert orchestrator.workflow_names == ["blog"]


def test_duplicate_registration(orchestrator, gated_agent, gated_workflow):
    orchestrator.register_agent(gated_agent)
    orchestrator.register_workflow(gated_workflow)

    with pytest.raises(ValidationError):
        orchestrator.register_agent(gated_agent)
    with pytest.raises(ValidationError):
        orchestrator.register_workflow(gated_workflow)


@pytest.mark.asyncio
async def test_unknown_definition(orchestrator):
    with pytest.raises(DefinitionNotFoundError):
        await orchestrator.run_agent("nobody", "hi")
    with pytest.raises(DefinitionNotFoundError):
        await orchestrator.run_workflow("nothing")


@pytest.mark.asyncio
async def test_unknown_execution(orchestrator):
    with pytest.raises(ExecutionNotFoundError):
        await orchestrator.get_state("missing")
    with pytest.raises(ExecutionNotFoundError):
        await orchestrator.resume("missing", ApprovalDecision.approve())


@pytest.mark.asyncio
async def test_decide_then_resume_agent(orchestrator, gated_agent, echo_handler):
    orchestrator.register_agent(gated_agent)
    paused = await orchestrator.run_agent("helper", "say hi", execution_id="agent-1")
    assert paused.execution_id == "agent-1"

    [request] = await orchestrator.pending_approvals("agent-1")
    decided = await orchestrator.decide(request.id, ApprovalDecision.approve(decided_by="ops"))
    assert decided.status == ApprovalStatus.APPROVED
    assert decided.decision.decided_by == "ops"

    result = await orchestrator.resume("agent-1")

    assert isinstance(result, AgentResult)
    assert result.status == Status.COMPLETED
    assert echo_handler.calls == [{"text": "hi"}]


@pytest.mark.asyncio
async def test_decide_twice_is_rejected(orchestrator, gated_agent):
    orchestrator.register_agent(gated_agent)
    await orchestrator.run_agent("helper", "say hi", execution_id="agent-1")
    [request] = await orchestrator.pending_approvals("agent-1")
    await orchestrator.decide(request.id, ApprovalDecision.reject())

    with pytest.raises(ApprovalClosedError):
        await orchestrator.decide(request.id, ApprovalDecision.approve())


@pytest.mark.asyncio
async def test_decide_unknown_request(orchestrator):
    with pytest.raises(ApprovalNotFoundError):
        await orchestrator.decide("missing", ApprovalDecision.approve())


@pytest.mark.asyncio
async def test_resume_and_cancel_route_to_workflow(orchestrator, gated_workflow, provider):
    provider.will_return("Owls are quiet.")
    orchestrator.register_workflow(gated_workflow)

    first = await orchestrator.run_workflow("blog", {"topic": "owls"})
    resumed = await orchestrator.resume(first.execution_id, ApprovalDecision.approve())
    assert isinstance(resumed, WorkflowResult)
    assert resumed.final_output == "Owls are quiet."

    second = await orchestrator.run_workflow("blog", {"topic": "cats"})
    cancelled = await orchestrator.cancel(second.execution_id)
    assert cancelled.status == Status.CANCELLED
    assert await orchestrator.pending_approvals(second.execution_id) == []


@pytest.mark.asyncio
async def test_resume_requires_registered_owner(store, gated_agent):
    first = Orchestrator(store=store)
    first.register_agent(gated_agent)
    paused = await first.run_agent("helper", "say hi")

    # same store, but the agent was never registered here
    second = Orchestrator(store=store)
    with pytest.raises(DefinitionNotFoundError):
        await second.resume(paused.execution_id, ApprovalDecision.approve())

    second.register_agent(gated_agent)
    result = await second.resume(paused.execution_id, ApprovalDecision.approve())
    assert result.status == Status.COMPLETED


@pytest.mark.asyncio
async def test_late_decision_is_refused(orchestrator, store, provider, echo_tool, echo_handler):
    provider.will_call_tool("echo", {"text": "hi"}).will_return("went ahead without it")
    agent = (
        Agent(provider, "fake-model", "use the tool", name="helper")
        .with_tools(echo_tool)
        .with_out_of_process_approval(timeout_minutes=1)
    )
    orchestrator.register_agent(agent)
    paused = await orchestrator.run_agent("helper", "say hi")
    [request] = await orchestrator.pending_approvals(paused.execution_id)
    store._approvals[request.id].expires_at = datetime.now(timezone.utc) - timedelta(minutes=5)

    with pytest.raises(ApprovalClosedError):
        await orchestrator.decide(request.id, ApprovalDecision.approve())

    assert (await store.get_approval_request(request.id)).status == ApprovalStatus.EXPIRED
    result = await orchestrator.resume(paused.execution_id)
    assert result.status == Status.COMPLETED
    assert echo_handler.calls == []
    assert result.tool_executions[0].error == "rejected_by_approval"
