"""Shared test fixtures."""

from __future__ import annotations

from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient

from llmflow.core.orchestrator import Orchestrator
from llmflow.core.store import InMemoryExecutionStore
from llmflow.core.tools import Tool
from llmflow.main import create_app
from llmflow.providers.fake import FakeProvider


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


class EchoHandler:
    """Sync tool handler that echoes its input and records every call."""

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []

    def __call__(self, text: str) -> str:
        self.calls.append({"text": text})
        return f"echo: {text}"


@pytest.fixture
def echo_handler() -> EchoHandler:
    return EchoHandler()


@pytest.fixture
def echo_tool(echo_handler: EchoHandler) -> Tool:
    """``echo`` tool backed by the ``echo_handler`` fixture."""
    return Tool(
        name="echo",
        description="Echo the given text back",
        handler=echo_handler,
        parameters={
            "type": "object",
            "properties": {"text": {"type": "string"}},
            "required": ["text"],
        },
    )


# ---------------------------------------------------------------------------
# Providers and stores
# ---------------------------------------------------------------------------


@pytest.fixture
def provider() -> FakeProvider:
    """Empty FakeProvider; script it with ``will_*`` calls."""
    return FakeProvider()


@pytest.fixture
def store() -> InMemoryExecutionStore:
    return InMemoryExecutionStore()


# ---------------------------------------------------------------------------
# HTTP client fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def orchestrator(store: InMemoryExecutionStore) -> Orchestrator:
    return Orchestrator(store=store)


@pytest.fixture
def app(orchestrator: Orchestrator):
    """Create a test application instance."""
    return create_app(orchestrator)


@pytest.fixture
async def client(app):
    """Create an async HTTP test client."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
