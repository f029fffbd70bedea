"""Conversation messages and provider tool calls."""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass, field, replace
from typing import Any


class Role(str, enum.Enum):
    """Author of a transcript message."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass(frozen=True)
class ToolCall:
    """A tool invocation requested by the model.

    ``raw_arguments`` is kept exactly as the provider returned it; parsing
    happens in :class:`~llmflow.core.tools.ToolInvoker` so malformed JSON
    becomes data instead of an exception.
    """

    id: str
    name: str
    raw_arguments: str = "{}"

    @classmethod
    def create(cls, id: str, name: str, arguments: dict[str, Any] | str | None = None) -> ToolCall:
        if arguments is None:
            raw = "{}"
        elif isinstance(arguments, str):
            raw = arguments
        else:
            raw = json.dumps(arguments)
        return cls(id=id, name=name, raw_arguments=raw)

    def with_arguments(self, arguments: dict[str, Any]) -> ToolCall:
        return replace(self, raw_arguments=json.dumps(arguments))

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "raw_arguments": self.raw_arguments}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolCall:
        return cls(id=data["id"], name=data["name"], raw_arguments=data.get("raw_arguments", "{}"))


@dataclass(frozen=True)
class Message:
    """A single transcript entry."""

    role: Role
    content: str | None = None
    tool_calls: tuple[ToolCall, ...] = field(default_factory=tuple)
    tool_call_id: str | None = None

    @classmethod
    def system(cls, content: str) -> Message:
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> Message:
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str | None, tool_calls: list[ToolCall] | tuple[ToolCall, ...] = ()) -> Message:
        return cls(role=Role.ASSISTANT, content=content, tool_calls=tuple(tool_calls))

    @classmethod
    def tool(cls, content: str, tool_call_id: str) -> Message:
        return cls(role=Role.TOOL, content=content, tool_call_id=tool_call_id)

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"role": self.role.value, "content": self.content}
        if self.tool_calls:
            data["tool_calls"] = [c.to_dict() for c in self.tool_calls]
        if self.tool_call_id is not None:
            data["tool_call_id"] = self.tool_call_id
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        return cls(
            role=Role(data["role"]),
            content=data.get("content"),
            tool_calls=tuple(ToolCall.from_dict(c) for c in data.get("tool_calls", [])),
            tool_call_id=data.get("tool_call_id"),
        )


def unanswered_tool_calls(messages: list[Message]) -> list[ToolCall]:
    """Return the calls of the latest assistant message that have no tool reply yet.

    This is how a paused agent run finds its position inside a tool-call
    batch using nothing but the persisted transcript.
    """
    for idx in range(len(messages) - 1, -1, -1):
        message = messages[idx]
        if message.role != Role.ASSISTANT:
            continue
        answered = {
            m.tool_call_id for m in messages[idx + 1:] if m.role == Role.TOOL
        }
        return [c for c in message.tool_calls if c.id not in answered]
    return []
