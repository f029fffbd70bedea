"""API route definitions."""

from fastapi import APIRouter

from llmflow.api import approvals, executions, health

router = APIRouter()
router.include_router(health.router, tags=["health"])
router.include_router(executions.router, prefix="/executions", tags=["executions"])
router.include_router(approvals.router, prefix="/approvals", tags=["approvals"])
