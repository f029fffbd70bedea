"""Execution inspection and control endpoints."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Body, Depends

from llmflow.api.dependencies import get_orchestrator
from llmflow.api.schemas import ExecutionResponse, ResumeRequest
from llmflow.core.orchestrator import Orchestrator

logger = structlog.get_logger()

router = APIRouter(tags=["executions"])


@router.get(
    "/{execution_id}",
    response_model=ExecutionResponse,
    summary="Get execution",
    description="Return the latest persisted state of an agent or workflow run.",
)
async def get_execution(
    execution_id: str,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> ExecutionResponse:
    state = await orchestrator.get_state(execution_id)
    return ExecutionResponse.from_state(state)


@router.post(
    "/{execution_id}/resume",
    response_model=ExecutionResponse,
    summary="Resume execution",
    description=(
        "Continue a paused run. An explicit decision wins; otherwise the "
        "decision recorded on the pending approval request is used."
    ),
)
async def resume_execution(
    execution_id: str,
    payload: ResumeRequest | None = Body(default=None),
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> ExecutionResponse:
    state = await orchestrator.get_state(execution_id)
    decision = None
    if payload is not None and payload.decision is not None:
        request_id = state.pending_approval.request_id if state.pending_approval else None
        decision = payload.decision.to_decision(request_id)

    await orchestrator.resume(execution_id, decision)
    await logger.ainfo("Execution resumed via API", execution_id=execution_id)
    return ExecutionResponse.from_state(await orchestrator.get_state(execution_id))


@router.post(
    "/{execution_id}/cancel",
    response_model=ExecutionResponse,
    summary="Cancel execution",
    description="Cancel a paused run immediately, or a running run at its next checkpoint.",
)
async def cancel_execution(
    execution_id: str,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> ExecutionResponse:
    await orchestrator.cancel(execution_id)
    await logger.ainfo("Execution cancelled via API", execution_id=execution_id)
    return ExecutionResponse.from_state(await orchestrator.get_state(execution_id))
