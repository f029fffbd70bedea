"""Tests for the HTTP API."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from llmflow.config import Settings
from llmflow.core.agent import Agent
from llmflow.core.approval import ApprovalDecision
from llmflow.core.orchestrator import Orchestrator
from llmflow.core.workflow import Workflow
from llmflow.main import load_orchestrator


@pytest.fixture
def paused_agent(orchestrator, provider, echo_tool):
    """Register an agent that suspends before every tool call."""
    provider.will_call_tool("echo", {"text": "hi"}).will_return("All done.")
    agent = (
        Agent(provider, "fake-model", "use the tool", name="helper")
        .with_tools(echo_tool)
        .with_out_of_process_approval(timeout_minutes=30)
    )
    orchestrator.register_agent(agent)
    return agent


@pytest.fixture
def paused_workflow(orchestrator, provider):
    workflow = (
        Workflow(provider, "fake-model", name="blog")
        .add_step("draft", "Write about {{topic}}")
        .add_step("title", "Title for: {{draft}}")
        .with_out_of_process_approval()
    )
    orchestrator.register_workflow(workflow)
    return workflow


@pytest.mark.asyncio
async def test_health_check(client, orchestrator, paused_agent):
    response = await client.get("/api/v1/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["agents"] == ["helper"]
    assert data["workflows"] == []
    assert "version" in data


@pytest.mark.asyncio
async def test_get_unknown_execution(client):
    response = await client.get("/api/v1/executions/missing")
    assert response.status_code == 404
    assert response.json()["error"] == "ExecutionNotFoundError"


@pytest.mark.asyncio
async def test_get_paused_agent_execution(client, orchestrator, paused_agent):
    paused = await orchestrator.run_agent("helper", "say hi")

    response = await client.get(f"/api/v1/executions/{paused.execution_id}")

    assert response.status_code == 200
    data = response.json()
    assert data["execution_type"] == "agent"
    assert data["name"] == "helper"
    assert data["status"] == "paused"
    assert data["current_iteration"] == 1
    assert data["pending_approval"]["kind"] == "tool_execution"
    assert data["usage"]["total_tokens"] == 15


@pytest.mark.asyncio
async def test_decide_then_resume(client, orchestrator, paused_agent):
    paused = await orchestrator.run_agent("helper", "say hi")

    listed = await client.get("/api/v1/approvals", params={"execution_id": paused.execution_id})
    assert listed.status_code == 200
    [approval] = listed.json()
    assert approval["kind"] == "tool_execution"
    assert approval["key"] == "echo"
    assert approval["payload"]["arguments"] == {"text": "hi"}
    assert approval["expires_at"] is not None

    decided = await client.post(
        f"/api/v1/approvals/{approval['id']}/decision",
        json={"action": "modify", "data": {"text": "bye"}, "decided_by": "ops"},
    )
    assert decided.status_code == 200
    assert decided.json()["status"] == "modified"

    again = await client.post(f"/api/v1/approvals/{approval['id']}/decision", json={"action": "approve"})
    assert again.status_code == 409
    assert again.json()["error"] == "ApprovalClosedError"

    resumed = await client.post(f"/api/v1/executions/{paused.execution_id}/resume")
    assert resumed.status_code == 200
    data = resumed.json()
    assert data["status"] == "completed"
    assert data["final_content"] == "All done."
    assert data["pending_approval"] is None


@pytest.mark.asyncio
async def test_resume_with_inline_decision(client, orchestrator, paused_workflow, provider):
    provider.will_return("Owls hunt at night.").will_return("Night Owls")
    paused = await orchestrator.run_workflow("blog", {"topic": "owls"})

    first = await client.post(
        f"/api/v1/executions/{paused.execution_id}/resume",
        json={"decision": {"action": "approve"}},
    )
    assert first.status_code == 200
    assert first.json()["status"] == "paused"
    assert first.json()["current_step"] == "title"
    assert first.json()["completed_steps"] == 1
    assert first.json()["progress_pct"] == 50.0

    second = await client.post(
        f"/api/v1/executions/{paused.execution_id}/resume",
        json={"decision": {"action": "reject", "reason": "not needed"}},
    )
    data = second.json()
    assert data["status"] == "completed"
    assert data["skipped_steps"] == ["title"]
    assert data["final_output"] == "Owls hunt at night."


@pytest.mark.asyncio
async def test_resume_undecided_conflicts(client, orchestrator, paused_agent):
    paused = await orchestrator.run_agent("helper", "say hi")

    response = await client.post(f"/api/v1/executions/{paused.execution_id}/resume")

    assert response.status_code == 409
    assert response.json()["error"] == "ApprovalPendingError"


@pytest.mark.asyncio
async def test_cancel_paused_execution(client, orchestrator, paused_agent):
    paused = await orchestrator.run_agent("helper", "say hi")

    response = await client.post(f"/api/v1/executions/{paused.execution_id}/cancel")
    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"

    again = await client.post(f"/api/v1/executions/{paused.execution_id}/cancel")
    assert again.status_code == 409
    assert again.json()["error"] == "ExecutionStateError"

    resumed = await client.post(
        f"/api/v1/executions/{paused.execution_id}/resume",
        json={"decision": {"action": "approve"}},
    )
    assert resumed.status_code == 409


@pytest.mark.asyncio
async def test_decision_validation(client, orchestrator, paused_agent):
    paused = await orchestrator.run_agent("helper", "say hi")
    [request] = await orchestrator.pending_approvals(paused.execution_id)

    response = await client.post(f"/api/v1/approvals/{request.id}/decision", json={"action": "maybe"})
    assert response.status_code == 422

    missing = await client.post("/api/v1/approvals/missing/decision", json={"action": "approve"})
    assert missing.status_code == 404
    assert missing.json()["error"] == "ApprovalNotFoundError"


@pytest.mark.asyncio
async def test_resume_inline_pause_needs_a_decision(client, orchestrator, provider):
    workflow = (
        Workflow(provider, "fake-model", name="inline")
        .add_step("s1", "one")
        .with_before_step(lambda name, prompt, context: ApprovalDecision.suspend())
    )
    orchestrator.register_workflow(workflow)
    paused = await orchestrator.run_workflow("inline")

    response = await client.post(f"/api/v1/executions/{paused.execution_id}/resume")

    assert response.status_code == 422
    assert response.json()["error"] == "ApprovalError"


@pytest.mark.asyncio
async def test_late_decision_conflicts(client, orchestrator, store, paused_agent):
    paused = await orchestrator.run_agent("helper", "say hi")
    [request] = await orchestrator.pending_approvals(paused.execution_id)
    store._approvals[request.id].expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)

    response = await client.post(f"/api/v1/approvals/{request.id}/decision", json={"action": "approve"})

    assert response.status_code == 409
    assert response.json()["error"] == "ApprovalClosedError"


# ---------------------------------------------------------------------------
# Orchestrator factory
# ---------------------------------------------------------------------------

def test_load_orchestrator_from_factory():
    settings = Settings(orchestrator_factory="llmflow.core.orchestrator:Orchestrator")
    assert isinstance(load_orchestrator(settings), Orchestrator)


def test_load_orchestrator_rejects_other_objects():
    with pytest.raises(TypeError):
        load_orchestrator(Settings(orchestrator_factory="collections:OrderedDict"))


def test_load_orchestrator_without_factory():
    orchestrator = load_orchestrator(Settings(orchestrator_factory=None))
    assert orchestrator.agent_names == []
    assert orchestrator.workflow_names == []
