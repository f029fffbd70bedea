"""Variable store shared by the steps of a workflow run."""

from __future__ import annotations

import dataclasses
from collections.abc import Iterator, Mapping, Sequence
from typing import Any

from pydantic import BaseModel

MISSING: Any = object()


def resolve_path(root: Mapping[str, Any], path: str) -> Any:
    """Walk a dot-separated *path* through *root*.

    The first segment is a key of *root*. Each later segment indexes the
    current value, which must be one of:

    * a mapping (key lookup),
    * a list or tuple (integer index),
    * a pydantic model or dataclass instance (field lookup).

    Returns :data:`MISSING` as soon as a segment cannot be resolved; never
    raises.
    """
    segments = path.split(".")
    current = root.get(segments[0], MISSING)
    for segment in segments[1:]:
        if current is MISSING:
            break
        current = _step(current, segment)
    return current


def _step(value: Any, segment: str) -> Any:
    if isinstance(value, Mapping):
        return value.get(segment, MISSING)
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
        if not segment.isdigit():
            return MISSING
        idx = int(segment)
        return value[idx] if idx < len(value) else MISSING
    if isinstance(value, BaseModel):
        fields = type(value).model_fields
        return getattr(value, segment) if segment in fields else MISSING
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        names = {f.name for f in dataclasses.fields(value)}
        return getattr(value, segment) if segment in names else MISSING
    return MISSING


class ExecutionContext:
    """Insertion-ordered mapping of variable name to value.

    A context belongs to exactly one run; only the engine driving that run
    mutates it.
    """

    def __init__(self, variables: Mapping[str, Any] | None = None) -> None:
        self._variables: dict[str, Any] = dict(variables or {})

    def get(self, path: str, default: Any = None) -> Any:
        """Look up a variable or a nested ``a.b.c`` path."""
        value = resolve_path(self._variables, path)
        return default if value is MISSING else value

    def set(self, name: str, value: Any) -> None:
        self._variables[name] = value

    def has(self, name: str) -> bool:
        return name in self._variables

    def all(self) -> dict[str, Any]:
        """Return an ordered copy of every variable."""
        return dict(self._variables)

    def to_dict(self) -> dict[str, Any]:
        return self.all()

    def __contains__(self, name: object) -> bool:
        return name in self._variables

    def __iter__(self) -> Iterator[str]:
        return iter(self._variables)

    def __len__(self) -> int:
        return len(self._variables)

    def __repr__(self) -> str:
        return f"ExecutionContext({list(self._variables)!r})"
