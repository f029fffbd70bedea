"""Provider contract consumed by the agent and workflow engines."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from llmflow.core.messages import Message, ToolCall
from llmflow.core.state import Usage


@dataclass(frozen=True)
class ChatResponse:
    """A chat completion, possibly requesting tool calls."""

    content: str | None = None
    tool_calls: tuple[ToolCall, ...] = field(default_factory=tuple)
    usage: Usage | None = None
    model: str | None = None
    finish_reason: str | None = None

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


@dataclass(frozen=True)
class StructuredResponse:
    """A schema-bound completion already hydrated into a typed value."""

    value: Any
    usage: Usage | None = None
    model: str | None = None


@runtime_checkable
class Provider(Protocol):
    """Language-model backend.

    Transport, wire mapping, retries and schema generation all live behind
    this interface; the engines only call these two methods.
    """

    async def chat(
        self,
        messages: Sequence[Message],
        *,
        model: str,
        tools: Sequence[dict[str, Any]] | None = None,
    ) -> ChatResponse:
        ...

    async def structured_chat(
        self,
        messages: Sequence[Message],
        schema: Any,
        *,
        model: str,
    ) -> StructuredResponse:
        ...
