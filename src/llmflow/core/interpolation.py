"""``{{variable}}`` placeholder rendering for workflow prompts."""

from __future__ import annotations

import dataclasses
import re
from collections.abc import Mapping
from typing import Any

import structlog
from pydantic import BaseModel

from llmflow.core.context import MISSING, ExecutionContext, resolve_path
from llmflow.core.exceptions import InterpolationError
from llmflow.core.serialization import dumps

logger = structlog.get_logger(__name__)

_PLACEHOLDER_RE = re.compile(r"\{\{\s*([A-Za-z_][\w-]*(?:\.[\w-]+)*)\s*\}\}")


def stringify(value: Any) -> str:
    """Render a resolved value for substitution into a prompt."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if (
        isinstance(value, (Mapping, list, tuple, BaseModel))
        or (dataclasses.is_dataclass(value) and not isinstance(value, type))
    ):
        return dumps(value)
    return str(value)


class InterpolationEngine:
    """Resolve ``{{name}}`` and ``{{name.path}}`` placeholders against a context.

    Rendering is a single pass: text produced by a substitution is never
    scanned again, so a step output containing ``{{...}}`` stays literal.

    With ``strict=False`` (the default) an unresolved path renders as the
    empty string and is logged; with ``strict=True`` it raises
    :class:`~llmflow.core.exceptions.InterpolationError`.
    """

    def __init__(self, *, strict: bool = False) -> None:
        self.strict = strict

    def render(self, template: str, context: ExecutionContext | Mapping[str, Any]) -> str:
        variables = context.all() if isinstance(context, ExecutionContext) else dict(context)
        misses: list[str] = []

        def _substitute(match: re.Match[str]) -> str:
            path = match.group(1)
            value = resolve_path(variables, path)
            if value is MISSING:
                if self.strict:
                    raise InterpolationError(path)
                misses.append(path)
                return ""
            return stringify(value)

        rendered = _PLACEHOLDER_RE.sub(_substitute, template)
        if misses:
            logger.warning("Interpolation placeholders unresolved", paths=misses)
        return rendered

    def placeholders(self, template: str) -> list[str]:
        """Return every placeholder path in *template*, in order of appearance."""
        return [m.group(1) for m in _PLACEHOLDER_RE.finditer(template)]
