"""Scripted provider for tests and offline development."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import structlog
from pydantic import BaseModel

from llmflow.core.messages import Message, ToolCall
from llmflow.core.state import Usage
from llmflow.providers.base import ChatResponse, StructuredResponse

logger = structlog.get_logger(__name__)


class FakeProvider:
    """Provider that replays queued responses and records every call.

    Usage::

        provider = (
            FakeProvider()
            .will_call_tool("echo", {"text": "hi"})
            .will_return("done")
        )

    Queue entries are consumed in order by both ``chat`` and
    ``structured_chat``. A queued exception is raised instead of returned.
    Once the queue is empty, ``chat`` answers with ``default_content``.
    """

    def __init__(self, default_content: str = "Fake chat response") -> None:
        self.default_content = default_content
        self.calls: list[dict[str, Any]] = []
        self._responses: list[ChatResponse | StructuredResponse | Exception] = []
        self._call_counter = 0

    # ---- scripting ----

    def will_return(
        self,
        content: str,
        prompt_tokens: int = 10,
        completion_tokens: int | None = None,
        cost: float = 0.0,
    ) -> FakeProvider:
        completion = completion_tokens if completion_tokens is not None else max(len(content) // 4, 1)
        self._responses.append(
            ChatResponse(
                content=content,
                usage=Usage(prompt_tokens=prompt_tokens, completion_tokens=completion, cost=cost),
                model="fake-model",
                finish_reason="stop",
            )
        )
        return self

    def will_call_tool(
        self,
        name: str,
        arguments: dict[str, Any] | str | None = None,
        *,
        call_id: str | None = None,
        prompt_tokens: int = 10,
        completion_tokens: int = 5,
    ) -> FakeProvider:
        return self.will_call_tools(
            ToolCall.create(call_id or self._next_call_id(), name, arguments),
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
        )

    def will_call_tools(
        self,
        *calls: ToolCall,
        content: str | None = None,
        prompt_tokens: int = 10,
        completion_tokens: int = 5,
    ) -> FakeProvider:
        self._responses.append(
            ChatResponse(
                content=content,
                tool_calls=tuple(calls),
                usage=Usage(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens),
                model="fake-model",
                finish_reason="tool_calls",
            )
        )
        return self

    def will_return_object(
        self,
        value: Any,
        prompt_tokens: int = 10,
        completion_tokens: int = 20,
    ) -> FakeProvider:
        self._responses.append(
            StructuredResponse(
                value=value,
                usage=Usage(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens),
                model="fake-model",
            )
        )
        return self

    def will_raise(self, exc: Exception) -> FakeProvider:
        self._responses.append(exc)
        return self

    @property
    def remaining(self) -> int:
        return len(self._responses)

    def calls_to(self, method: str) -> list[dict[str, Any]]:
        return [c for c in self.calls if c["method"] == method]

    # ---- Provider protocol ----

    async def chat(
        self,
        messages: Sequence[Message],
        *,
        model: str,
        tools: Sequence[dict[str, Any]] | None = None,
    ) -> ChatResponse:
        self.calls.append(
            {"method": "chat", "messages": list(messages), "model": model, "tools": tools}
        )
        response = self._next()
        if response is None:
            return ChatResponse(content=self.default_content, usage=Usage(), model="fake-model")
        if isinstance(response, StructuredResponse):
            return ChatResponse(content=str(response.value), usage=response.usage, model=response.model)
        return response

    async def structured_chat(
        self,
        messages: Sequence[Message],
        schema: Any,
        *,
        model: str,
    ) -> StructuredResponse:
        self.calls.append(
            {"method": "structured_chat", "messages": list(messages), "model": model, "schema": schema}
        )
        response = self._next()
        if response is None:
            raise RuntimeError("FakeProvider has no structured response queued")
        if isinstance(response, ChatResponse):
            response = StructuredResponse(value=response.content, usage=response.usage, model=response.model)
        value = response.value
        if (
            isinstance(schema, type)
            and issubclass(schema, BaseModel)
            and isinstance(value, dict)
        ):
            value = schema.model_validate(value)
        return StructuredResponse(value=value, usage=response.usage, model=response.model)

    # ---- internals ----

    def _next(self) -> ChatResponse | StructuredResponse | None:
        if not self._responses:
            logger.debug("Fake provider script exhausted", calls=len(self.calls))
            return None
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def _next_call_id(self) -> str:
        self._call_counter += 1
        return f"call_{self._call_counter}"
