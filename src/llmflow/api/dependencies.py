"""FastAPI dependencies."""

from fastapi import Request

from llmflow.core.orchestrator import Orchestrator


def get_orchestrator(request: Request) -> Orchestrator:
    """Return the orchestrator attached to the running application."""
    return request.app.state.orchestrator
