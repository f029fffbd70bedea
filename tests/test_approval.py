"""Tests for approval gates and resume-decision resolution."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from llmflow.core.approval import (
    ApprovalAction,
    ApprovalDecision,
    ApprovalRequest,
    ApprovalStatus,
    CallbackApprovalGate,
    PersistedApprovalGate,
    approval_key,
    decision_from_callback,
    resolve_resume_decision,
)
from llmflow.core.exceptions import ApprovalError, ApprovalNotFoundError, ApprovalPendingError
from llmflow.core.state import AgentExecutionState, ApprovalKind, PendingApproval, ToolExecution

TOOL_PAYLOAD = {"name": "echo", "arguments": {"text": "hi"}}


@pytest.fixture
def state() -> AgentExecutionState:
    return AgentExecutionState(id="exec-1")


# ---------------------------------------------------------------------------
# Callback return values
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "value,action",
    [
        (None, ApprovalAction.APPROVE),
        (True, ApprovalAction.APPROVE),
        (False, ApprovalAction.REJECT),
        ({"text": "other"}, ApprovalAction.MODIFY),
        ("replacement", ApprovalAction.MODIFY),
        (ApprovalDecision.suspend("r1"), ApprovalAction.SUSPEND),
    ],
)
def test_decision_from_callback(value, action):
    assert decision_from_callback(value).action == action


def test_modify_carries_data():
    assert decision_from_callback({"text": "x"}).data == {"text": "x"}


def test_approval_key():
    assert approval_key(TOOL_PAYLOAD) == "echo"
    assert approval_key({"step_name": "draft"}) == "draft"
    assert approval_key({"execution": ToolExecution(tool_call_id="c1", name="search")}) == "search"
    assert approval_key({}) is None


def test_decision_round_trip():
    decision = ApprovalDecision.modify({"a": 1}, decided_by="ops", reason="why")
    assert ApprovalDecision.from_dict(decision.to_dict()) == decision


def test_request_expiry():
    request = ApprovalRequest(id="r1", execution_id="e1", kind=ApprovalKind.TOOL_EXECUTION, timeout_minutes=5)
    assert request.expires_at == request.created_at + timedelta(minutes=5)
    assert not request.is_expired()
    assert request.is_expired(request.created_at + timedelta(minutes=6))


# ---------------------------------------------------------------------------
# Gates
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_callback_gate_without_callback_approves(state):
    decision = await CallbackApprovalGate().decide(ApprovalKind.TOOL_EXECUTION, TOOL_PAYLOAD, state)
    assert decision.action == ApprovalAction.APPROVE


@pytest.mark.asyncio
async def test_callback_gate_sync_and_async(state):
    calls = []

    def before(name, arguments):
        calls.append((name, arguments))
        return False

    async def after(execution):
        return "patched"

    gate = CallbackApprovalGate(
        {ApprovalKind.TOOL_EXECUTION: before, ApprovalKind.TOOL_RESULT: after}
    )

    rejected = await gate.decide(ApprovalKind.TOOL_EXECUTION, TOOL_PAYLOAD, state)
    modified = await gate.decide(
        ApprovalKind.TOOL_RESULT,
        {"name": "echo", "execution": ToolExecution(tool_call_id="c1", name="echo")},
        state,
    )

    assert calls == [("echo", {"text": "hi"})]
    assert rejected.is_reject
    assert modified.is_modify
    assert modified.data == "patched"


@pytest.mark.asyncio
async def test_persisted_gate_records_request(store, state):
    gate = PersistedApprovalGate(store, timeout_minutes=15)

    decision = await gate.decide(ApprovalKind.TOOL_EXECUTION, TOOL_PAYLOAD, state)

    assert decision.is_suspend
    request = await store.get_approval_request(decision.request_id)
    assert request.execution_id == "exec-1"
    assert request.kind == ApprovalKind.TOOL_EXECUTION
    assert request.payload == TOOL_PAYLOAD
    assert request.timeout_minutes == 15


@pytest.mark.asyncio
async def test_persisted_gate_approves_other_kinds(store, state):
    gate = PersistedApprovalGate(store, kinds=[ApprovalKind.FINAL_RESPONSE])

    decision = await gate.decide(ApprovalKind.TOOL_EXECUTION, TOOL_PAYLOAD, state)

    assert decision.action == ApprovalAction.APPROVE
    assert await store.list_pending_approvals() == []


@pytest.mark.asyncio
async def test_persisted_gate_prefers_inline_callback(store, state):
    gate = PersistedApprovalGate(store, callbacks={ApprovalKind.TOOL_EXECUTION: lambda name, arguments: False})

    decision = await gate.decide(ApprovalKind.TOOL_EXECUTION, TOOL_PAYLOAD, state)

    assert decision.is_reject
    assert await store.list_pending_approvals() == []


def test_persisted_gate_default_kinds(store):
    assert PersistedApprovalGate(store).kinds == {ApprovalKind.TOOL_EXECUTION, ApprovalKind.STEP_EXECUTION}


# ---------------------------------------------------------------------------
# Resume decisions
# ---------------------------------------------------------------------------

async def _pending(store, timeout_minutes=None) -> PendingApproval:
    request_id = await store.create_approval_request(
        "exec-1", ApprovalKind.TOOL_EXECUTION, TOOL_PAYLOAD, timeout_minutes=timeout_minutes
    )
    return PendingApproval(kind=ApprovalKind.TOOL_EXECUTION, data=TOOL_PAYLOAD, request_id=request_id)


@pytest.mark.asyncio
async def test_explicit_decision_is_recorded(store):
    pending = await _pending(store)

    decision = await resolve_resume_decision(store, pending, ApprovalDecision.reject(decided_by="ops"))

    assert decision.is_reject
    request = await store.get_approval_request(pending.request_id)
    assert request.status == ApprovalStatus.REJECTED


@pytest.mark.asyncio
async def test_recorded_decision_is_used(store):
    pending = await _pending(store)
    await store.record_approval_decision(pending.request_id, ApprovalDecision.modify({"text": "bye"}))

    decision = await resolve_resume_decision(store, pending, None)

    assert decision.is_modify
    assert decision.data == {"text": "bye"}


@pytest.mark.asyncio
async def test_undecided_request_raises(store):
    pending = await _pending(store, timeout_minutes=60)
    with pytest.raises(ApprovalPendingError):
        await resolve_resume_decision(store, pending, None)


@pytest.mark.asyncio
async def test_expired_request_rejects(store):
    pending = await _pending(store, timeout_minutes=1)
    store._approvals[pending.request_id].expires_at = datetime.now(timezone.utc) - timedelta(seconds=1)

    decision = await resolve_resume_decision(store, pending, None)

    assert decision.is_reject
    assert decision.reason == "expired"
    request = await store.get_approval_request(pending.request_id)
    assert request.status == ApprovalStatus.EXPIRED


@pytest.mark.asyncio
async def test_expired_request_overrides_explicit_decision(store):
    pending = await _pending(store, timeout_minutes=1)
    store._approvals[pending.request_id].expires_at = datetime.now(timezone.utc) - timedelta(minutes=5)

    decision = await resolve_resume_decision(store, pending, ApprovalDecision.approve(decided_by="late"))

    assert decision.is_reject
    assert decision.reason == "expired"
    request = await store.get_approval_request(pending.request_id)
    assert request.status == ApprovalStatus.EXPIRED
    assert request.decision is None


@pytest.mark.asyncio
async def test_decision_recorded_before_deadline_survives_it(store):
    pending = await _pending(store, timeout_minutes=1)
    await store.record_approval_decision(pending.request_id, ApprovalDecision.approve())
    store._approvals[pending.request_id].expires_at = datetime.now(timezone.utc) - timedelta(minutes=5)

    decision = await resolve_resume_decision(store, pending, None)

    assert decision.action == ApprovalAction.APPROVE


@pytest.mark.asyncio
async def test_inline_suspend_requires_explicit_decision(store):
    pending = PendingApproval(kind=ApprovalKind.STEP_EXECUTION, data={"step_name": "a"})

    with pytest.raises(ApprovalError):
        await resolve_resume_decision(store, pending, None)
    assert (await resolve_resume_decision(store, pending, ApprovalDecision.approve())).action == ApprovalAction.APPROVE


@pytest.mark.asyncio
async def test_suspend_is_not_a_resume_decision(store):
    pending = await _pending(store)
    with pytest.raises(ApprovalError):
        await resolve_resume_decision(store, pending, ApprovalDecision.suspend())


@pytest.mark.asyncio
async def test_unknown_request_id(store):
    pending = PendingApproval(kind=ApprovalKind.TOOL_EXECUTION, request_id="missing")
    with pytest.raises(ApprovalNotFoundError):
        await resolve_resume_decision(store, pending, None)
