"""Tests for tool invocation."""

from __future__ import annotations

import pytest

from llmflow.core import tools as tools_module
from llmflow.core.exceptions import ValidationError
from llmflow.core.messages import ToolCall
from llmflow.core.tools import Tool, ToolInvoker


async def _async_add(a: int, b: int) -> int:
    return a + b


def _boom() -> None:
    raise RuntimeError("disk full")


def _echo(text: str) -> str:
    return f"echo: {text}"


ECHO = Tool(
    name="echo",
    description="Echo the given text back",
    handler=_echo,
    parameters={"type": "object", "properties": {"text": {"type": "string"}}, "required": ["text"]},
)


def _invoker() -> ToolInvoker:
    return ToolInvoker(
        [
            ECHO,
            Tool(
                name="add",
                description="Add two integers",
                handler=_async_add,
                parameters={
                    "type": "object",
                    "properties": {"a": {"type": "integer"}, "b": {"type": "integer"}},
                    "required": ["a", "b"],
                },
            ),
            Tool(name="boom", description="Always fails", handler=_boom),
        ]
    )


@pytest.mark.asyncio
async def test_invoke_sync_handler():
    execution = await _invoker().invoke(ToolCall.create("c1", "echo", {"text": "hi"}))

    assert execution.succeeded
    assert execution.tool_call_id == "c1"
    assert execution.arguments == {"text": "hi"}
    assert execution.result == "echo: hi"
    assert execution.duration_seconds >= 0


@pytest.mark.asyncio
async def test_invoke_async_handler():
    execution = await _invoker().invoke(ToolCall.create("c1", "add", {"a": 2, "b": 3}))
    assert execution.result == 5
    assert execution.to_message_content() == "5"


@pytest.mark.asyncio
async def test_unknown_tool():
    execution = await _invoker().invoke(ToolCall.create("c1", "ghost", {}))

    assert execution.name == "ghost"
    assert execution.error == "unknown_tool"
    assert not execution.succeeded


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "raw",
    ["{not json", "[1, 2]", '{"a": 1}'],
    ids=["malformed", "not-an-object", "missing-required"],
)
async def test_invalid_arguments(raw):
    execution = await _invoker().invoke(ToolCall(id="c1", name="add", raw_arguments=raw))
    assert execution.error == "invalid_arguments"
    assert execution.error_detail


@pytest.mark.asyncio
async def test_empty_arguments_mean_empty_object():
    execution = await _invoker().invoke(ToolCall(id="c1", name="boom", raw_arguments=""))
    # parsed fine, so the handler ran and failed
    assert execution.error == "tool_error"


@pytest.mark.asyncio
async def test_handler_exception_is_captured():
    execution = await _invoker().invoke(ToolCall.create("c1", "boom"))

    assert execution.error == "tool_error"
    assert execution.error_detail == "disk full"
    assert '"error":"tool_error"' in execution.to_message_content()


def test_duplicate_tool_names_rejected():
    with pytest.raises(ValidationError) as exc_info:
        ToolInvoker([ECHO, ECHO])
    assert "Duplicate tool name 'echo'" in exc_info.value.errors


def test_tool_schema(echo_tool):
    tool = echo_tool
    schema = tool.to_schema()
    assert schema["name"] == "echo"
    assert schema["parameters"]["required"] == ["text"]
    assert tool.required == ["text"]


class RecordingLogger:
    """Stands in for the module logger and keeps the emitted event names."""

    def __init__(self) -> None:
        self.events: list[str] = []

    async def awarning(self, event, **kwargs):
        self.events.append(event)

    async def adebug(self, event, **kwargs):
        self.events.append(event)


@pytest.mark.asyncio
async def test_invocation_log_events(monkeypatch):
    recorder = RecordingLogger()
    monkeypatch.setattr(tools_module, "logger", recorder)
    invoker = _invoker()

    await invoker.invoke(ToolCall.create("c1", "ghost", {}))
    await invoker.invoke(ToolCall(id="c2", name="add", raw_arguments="{not json"))
    await invoker.invoke(ToolCall.create("c3", "boom"))
    await invoker.invoke(ToolCall.create("c4", "echo", {"text": "hi"}))

    assert recorder.events == [
        "Unknown tool requested",
        "Tool arguments invalid",
        "Tool call failed",
        "Tool call finished",
    ]
