"""Health check endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from llmflow.api.dependencies import get_orchestrator
from llmflow.api.schemas import HealthResponse
from llmflow.config import get_settings
from llmflow.core.orchestrator import Orchestrator

router = APIRouter(tags=["health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Returns basic application health and the registered definitions.",
)
async def health_check(orchestrator: Orchestrator = Depends(get_orchestrator)) -> HealthResponse:
    """Return application health status."""
    settings = get_settings()
    return HealthResponse(
        status="healthy",
        version=settings.app_version,
        environment=settings.environment,
        agents=orchestrator.agent_names,
        workflows=orchestrator.workflow_names,
    )
