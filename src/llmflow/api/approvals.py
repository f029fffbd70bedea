"""Approval request endpoints for out-of-process decisions."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, Query

from llmflow.api.dependencies import get_orchestrator
from llmflow.api.schemas import ApprovalResponse, DecisionRequest
from llmflow.core.orchestrator import Orchestrator

logger = structlog.get_logger()

router = APIRouter(tags=["approvals"])


@router.get(
    "",
    response_model=list[ApprovalResponse],
    summary="List pending approvals",
    description="Return approval requests still awaiting a decision.",
)
async def list_approvals(
    execution_id: str | None = Query(default=None, description="Filter by execution"),
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> list[ApprovalResponse]:
    requests = await orchestrator.pending_approvals(execution_id)
    return [ApprovalResponse.from_request(r) for r in requests]


@router.post(
    "/{request_id}/decision",
    response_model=ApprovalResponse,
    summary="Decide approval",
    description=(
        "Record a decision without resuming the run. A later resume without "
        "an explicit decision continues with it."
    ),
)
async def decide_approval(
    request_id: str,
    payload: DecisionRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> ApprovalResponse:
    request = await orchestrator.decide(request_id, payload.to_decision(request_id))
    await logger.ainfo("Approval decided via API", request_id=request_id, action=payload.action)
    return ApprovalResponse.from_request(request)
