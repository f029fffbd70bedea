"""Tool definitions and the invoker that runs model-requested tool calls."""

from __future__ import annotations

import inspect
import json
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog

from llmflow.core.exceptions import ValidationError
from llmflow.core.messages import ToolCall
from llmflow.core.state import ToolExecution

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Tool:
    """A named, schema-described callable the model may request.

    ``parameters`` is a JSON-Schema object (``{"type": "object",
    "properties": {...}, "required": [...]}``). The handler receives the
    parsed arguments as keyword arguments and may be sync or async.
    """

    name: str
    description: str
    handler: Callable[..., Any]
    parameters: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}},
    )

    @property
    def required(self) -> list[str]:
        return list(self.parameters.get("required", []))

    def to_schema(self) -> dict[str, Any]:
        """Provider-neutral tool description sent alongside the transcript."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }


class ToolInvoker:
    """Resolve, validate and run tool calls.

    Tool failures are data: every outcome, including unknown tools,
    malformed arguments and exceptions raised by the handler, comes back as
    a :class:`~llmflow.core.state.ToolExecution` with ``error`` set.
    """

    def __init__(self, tools: Iterable[Tool] = ()) -> None:
        self._tools: dict[str, Tool] = {}
        errors: list[str] = []
        for tool in tools:
            if tool.name in self._tools:
                errors.append(f"Duplicate tool name '{tool.name}'")
            self._tools[tool.name] = tool
        if errors:
            raise ValidationError(errors)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    async def invoke(self, call: ToolCall) -> ToolExecution:
        started_at = datetime.now(timezone.utc)
        start = time.perf_counter()

        def _failed(error: str, detail: str, arguments: dict[str, Any] | None = None) -> ToolExecution:
            return ToolExecution(
                tool_call_id=call.id,
                name=call.name,
                arguments=arguments or {},
                error=error,
                error_detail=detail,
                started_at=started_at,
                duration_seconds=time.perf_counter() - start,
            )

        tool = self._tools.get(call.name)
        if tool is None:
            await logger.awarning("Unknown tool requested", tool=call.name, available=self.names)
            return _failed("unknown_tool", f"No tool registered under '{call.name}'")

        try:
            arguments = self._parse_arguments(tool, call.raw_arguments)
        except ValueError as exc:
            await logger.awarning("Tool arguments invalid", tool=call.name, error=str(exc))
            return _failed("invalid_arguments", str(exc))

        try:
            result = tool.handler(**arguments)
            if inspect.isawaitable(result):
                result = await result
        except Exception as exc:
            await logger.awarning("Tool call failed", tool=call.name, error=str(exc))
            return _failed("tool_error", str(exc), arguments)

        duration = time.perf_counter() - start
        await logger.adebug("Tool call finished", tool=call.name, duration_seconds=round(duration, 4))
        return ToolExecution(
            tool_call_id=call.id,
            name=call.name,
            arguments=arguments,
            result=result,
            started_at=started_at,
            duration_seconds=duration,
        )

    @staticmethod
    def _parse_arguments(tool: Tool, raw: str) -> dict[str, Any]:
        """Parse *raw* JSON and check it against the tool's required parameters.

        Raises:
            ValueError: If the payload is not a JSON object or lacks a
                required parameter.
        """
        if not raw or not raw.strip():
            arguments: Any = {}
        else:
            try:
                arguments = json.loads(raw)
            except json.JSONDecodeError as exc:
                raise ValueError(f"Arguments are not valid JSON: {exc.msg}") from exc
        if not isinstance(arguments, dict):
            raise ValueError("Arguments must be a JSON object")
        missing = [name for name in tool.required if name not in arguments]
        if missing:
            raise ValueError(f"Missing required argument(s): {', '.join(missing)}")
        return arguments
