"""Tests for execution state transitions and serialization."""

from __future__ import annotations

import pytest

from llmflow.core.exceptions import ExecutionStateError
from llmflow.core.messages import Message, ToolCall, unanswered_tool_calls
from llmflow.core.state import (
    AgentExecutionState,
    ApprovalKind,
    PendingApproval,
    Status,
    StepResult,
    ToolExecution,
    Usage,
    WorkflowExecutionState,
    can_transition,
    load_state,
)


def _pending() -> PendingApproval:
    return PendingApproval(kind=ApprovalKind.TOOL_EXECUTION, data={"name": "echo"})


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "current,target,allowed",
    [
        (Status.RUNNING, Status.PAUSED, True),
        (Status.RUNNING, Status.COMPLETED, True),
        (Status.RUNNING, Status.FAILED, True),
        (Status.RUNNING, Status.CANCELLED, True),
        (Status.PAUSED, Status.RUNNING, True),
        (Status.PAUSED, Status.CANCELLED, True),
        (Status.PAUSED, Status.COMPLETED, False),
        (Status.COMPLETED, Status.RUNNING, False),
        (Status.FAILED, Status.RUNNING, False),
        (Status.CANCELLED, Status.PAUSED, False),
    ],
)
def test_can_transition(current, target, allowed):
    assert can_transition(current, target) is allowed


def test_terminal_statuses():
    assert {s for s in Status if s.is_terminal} == {Status.COMPLETED, Status.FAILED, Status.CANCELLED}


def test_pause_and_resume():
    state = AgentExecutionState()
    pending = _pending()

    state.mark_paused(pending)
    assert state.status == Status.PAUSED
    assert state.paused_at is not None

    returned = state.mark_resumed()
    assert returned == pending
    assert state.status == Status.RUNNING
    assert state.pending_approval is None
    assert state.resumed_at is not None


def test_terminal_state_is_final():
    state = AgentExecutionState()
    state.mark_completed("done")

    assert state.completed_at is not None
    with pytest.raises(ExecutionStateError):
        state.mark_paused(_pending())
    with pytest.raises(ExecutionStateError):
        state.mark_cancelled()


def test_resume_without_pending_approval_raises():
    state = AgentExecutionState()
    with pytest.raises(ExecutionStateError):
        state.mark_resumed()


def test_cancel_clears_pending_approval():
    state = WorkflowExecutionState()
    state.mark_paused(_pending())
    state.mark_cancelled()

    assert state.status == Status.CANCELLED
    assert state.pending_approval is None


# ---------------------------------------------------------------------------
# Usage and results
# ---------------------------------------------------------------------------

def test_usage_addition():
    total = Usage(10, 5, 0.01) + Usage(3, 2, 0.02) + None

    assert total.prompt_tokens == 13
    assert total.completion_tokens == 7
    assert total.total_tokens == 20
    assert total.cost == pytest.approx(0.03)


def test_usage_from_camel_case_dict():
    assert Usage.from_dict({"promptTokens": 4, "completionTokens": 6}).total_tokens == 10
    assert Usage.from_dict(None) == Usage()


def test_tool_execution_review_keeps_call_id():
    execution = ToolExecution(tool_call_id="c1", name="echo", error="tool_error", error_detail="boom")

    reviewed = execution.with_review("patched")
    assert reviewed.result == "patched"
    assert reviewed.succeeded

    replaced = execution.with_review(ToolExecution(tool_call_id="other", name="echo", result="x"))
    assert replaced.tool_call_id == "c1"


def test_rejected_tool_execution_message():
    execution = ToolExecution.rejected(ToolCall.create("c1", "echo"), {"text": "hi"})

    assert execution.error == "rejected_by_approval"
    assert execution.arguments == {"text": "hi"}
    assert execution.to_message_content().startswith('{"error":"rejected_by_approval"')


def test_workflow_progress_and_final_output():
    state = WorkflowExecutionState(total_steps=4)
    assert state.final_output is None
    assert state.progress_pct == 0.0

    state.record_step(StepResult(step_name="a", output="first"))
    state.skip_step("b")
    state.record_step(StepResult(step_name="c", output="third"))

    assert state.completed_steps == 2
    assert state.step_index == 3
    assert state.progress_pct == 75.0
    assert state.final_output == "third"
    assert state.context.get("c") == "third"


def test_step_result_review_keeps_name():
    result = StepResult(step_name="draft", output="x")
    assert result.with_review("y").output == "y"
    assert result.with_review(StepResult(step_name="other", output="z")).step_name == "draft"


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------

def test_agent_state_round_trip():
    state = AgentExecutionState(agent_name="helper", model="m", max_iterations=3)
    state.messages.extend(
        [
            Message.user("hi"),
            Message.assistant("calling", [ToolCall.create("c1", "echo", {"text": "hi"})]),
            Message.tool("echo: hi", "c1"),
        ]
    )
    state.tool_executions.append(ToolExecution(tool_call_id="c1", name="echo", result="echo: hi"))
    state.mark_paused(_pending())

    restored = load_state(state.to_dict())

    assert isinstance(restored, AgentExecutionState)
    assert restored.id == state.id
    assert restored.messages == state.messages
    assert restored.tool_executions[0].result == "echo: hi"
    assert restored.pending_approval.kind == ApprovalKind.TOOL_EXECUTION
    assert restored.paused_at == state.paused_at


def test_workflow_state_round_trip():
    state = WorkflowExecutionState(workflow_name="blog", total_steps=2)
    state.record_step(StepResult(step_name="draft", output="text", usage=Usage(1, 2)))
    state.mark_failed("polish", "boom")

    data = state.to_dict()
    restored = load_state(data)

    assert data["execution_type"] == "workflow"
    assert data["completed_steps"] == 1
    assert isinstance(restored, WorkflowExecutionState)
    assert restored.failed_step == "polish"
    assert restored.error == "boom"
    assert restored.step_results["draft"].usage.total_tokens == 3
    assert restored.context.get("draft") == "text"


# ---------------------------------------------------------------------------
# Transcript helpers
# ---------------------------------------------------------------------------

def test_unanswered_tool_calls():
    calls = [ToolCall.create("a", "echo"), ToolCall.create("b", "echo")]
    messages = [Message.user("hi"), Message.assistant(None, calls)]

    assert unanswered_tool_calls(messages) == calls

    messages.append(Message.tool("ok", "a"))
    assert [c.id for c in unanswered_tool_calls(messages)] == ["b"]

    messages.append(Message.tool("ok", "b"))
    assert unanswered_tool_calls(messages) == []


def test_unanswered_tool_calls_ignores_plain_reply():
    messages = [Message.user("hi"), Message.assistant("hello")]
    assert unanswered_tool_calls(messages) == []
    assert unanswered_tool_calls([]) == []
