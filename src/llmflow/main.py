"""llmflow HTTP application entrypoint."""

from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

import structlog
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from llmflow.config import Settings, configure_logging, get_settings
from llmflow.core.exceptions import (
    ApprovalClosedError,
    ApprovalError,
    ApprovalNotFoundError,
    ApprovalPendingError,
    DefinitionNotFoundError,
    ExecutionNotFoundError,
    ExecutionStateError,
    LLMFlowError,
    ValidationError,
)
from llmflow.core.orchestrator import Orchestrator

logger = structlog.get_logger()

_STATUS_CODES: list[tuple[type[LLMFlowError], int]] = [
    (ExecutionNotFoundError, status.HTTP_404_NOT_FOUND),
    (ApprovalNotFoundError, status.HTTP_404_NOT_FOUND),
    (DefinitionNotFoundError, status.HTTP_404_NOT_FOUND),
    (ExecutionStateError, status.HTTP_409_CONFLICT),
    (ApprovalPendingError, status.HTTP_409_CONFLICT),
    (ApprovalClosedError, status.HTTP_409_CONFLICT),
    (ValidationError, 422),
    (ApprovalError, 422),
]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Handle application startup and shutdown events."""
    settings = get_settings()
    await logger.ainfo(
        "Starting llmflow",
        version=settings.app_version,
        environment=settings.environment,
        agents=app.state.orchestrator.agent_names,
        workflows=app.state.orchestrator.workflow_names,
    )
    yield
    await logger.ainfo("Shutting down llmflow")


def create_app(orchestrator: Orchestrator | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        orchestrator: Holds the registered agents and workflows and the
            state store the endpoints act on. When omitted it is built by
            ``settings.orchestrator_factory``, or left empty if none is set.
    """
    settings = get_settings()
    configure_logging(settings)
    if orchestrator is None:
        orchestrator = load_orchestrator(settings)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Human-in-the-loop agent and workflow orchestration",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )
    app.state.orchestrator = orchestrator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_exception_handlers(app)
    _register_routes(app)

    return app


def load_orchestrator(settings: Settings) -> Orchestrator:
    """Build the orchestrator named by ``settings.orchestrator_factory``.

    Raises:
        TypeError: If the factory does not return an :class:`Orchestrator`.
    """
    from uvicorn.importer import import_from_string

    if not settings.orchestrator_factory:
        logger.warning("No orchestrator factory configured, serving an empty orchestrator")
        return Orchestrator()

    factory = import_from_string(settings.orchestrator_factory)
    orchestrator = factory()
    if not isinstance(orchestrator, Orchestrator):
        raise TypeError(
            f"{settings.orchestrator_factory} returned {type(orchestrator).__name__}, expected Orchestrator"
        )
    return orchestrator


def _register_exception_handlers(app: FastAPI) -> None:
    """Map the llmflow error hierarchy onto HTTP status codes."""

    @app.exception_handler(LLMFlowError)
    async def llmflow_error_handler(request: Request, exc: LLMFlowError) -> JSONResponse:
        code = next(
            (c for exc_type, c in _STATUS_CODES if isinstance(exc, exc_type)),
            status.HTTP_400_BAD_REQUEST,
        )
        await logger.awarning(
            "Request failed",
            path=request.url.path,
            error=type(exc).__name__,
            detail=str(exc),
        )
        body: dict[str, object] = {"detail": str(exc), "error": type(exc).__name__}
        if isinstance(exc, ValidationError):
            body["errors"] = exc.errors
        return JSONResponse(status_code=code, content=body)


def _register_routes(app: FastAPI) -> None:
    """Register API routers."""
    from llmflow.api.routes import router as api_router

    app.include_router(api_router, prefix="/api/v1")


app = create_app()


def cli() -> None:
    """Run the application via CLI."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "llmflow.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    cli()
