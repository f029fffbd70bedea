"""Execution state store contract and the in-memory implementation.

The engines depend on the :class:`ExecutionStateStore` protocol rather than
a concrete backend. Contract guidelines:

- All methods are async.
- ``save`` writes a full snapshot; ``load`` must return a state that can be
  resumed without any in-memory continuation from the original process.
- ``load`` returns ``None`` for unknown ids; approval helpers raise
  :class:`~llmflow.core.exceptions.ApprovalNotFoundError`.
"""

from __future__ import annotations

import asyncio
import copy
from datetime import datetime, timezone
from typing import Any, Protocol
from uuid import uuid4

from llmflow.core.approval import ApprovalDecision, ApprovalRequest, ApprovalStatus, approval_key
from llmflow.core.exceptions import ApprovalNotFoundError
from llmflow.core.state import ApprovalKind, ExecutionState, load_state


class ExecutionStateStore(Protocol):
    """Persist execution snapshots and approval requests."""

    async def save(self, execution_id: str, state: ExecutionState) -> None:
        """Persist the latest snapshot of an execution."""
        ...

    async def load(self, execution_id: str) -> ExecutionState | None:
        """Return the latest snapshot, or ``None`` if unknown."""
        ...

    async def create_approval_request(
        self,
        execution_id: str,
        kind: ApprovalKind,
        payload: dict[str, Any],
        *,
        timeout_minutes: int | None = None,
    ) -> str:
        """Record a pending approval request and return its id."""
        ...

    async def get_approval_request(self, request_id: str) -> ApprovalRequest | None:
        ...

    async def record_approval_decision(self, request_id: str, decision: ApprovalDecision) -> None:
        """Store the decision on the request and append it to the approval history."""
        ...

    async def update_approval_status(self, request_id: str, status: ApprovalStatus) -> None:
        """Close an undecided request as expired or cancelled."""
        ...

    async def list_pending_approvals(self, execution_id: str | None = None) -> list[ApprovalRequest]:
        ...


class InMemoryExecutionStore:
    """Process-local store keeping deep-copied dict snapshots.

    Snapshots go through ``to_dict()``/``load_state`` so a state loaded from
    this store shares nothing with the object that was saved.
    """

    def __init__(self) -> None:
        self._snapshots: dict[str, dict[str, Any]] = {}
        self._approvals: dict[str, ApprovalRequest] = {}
        self._history: list[dict[str, Any]] = []
        self._lock = asyncio.Lock()

    async def save(self, execution_id: str, state: ExecutionState) -> None:
        async with self._lock:
            self._snapshots[execution_id] = copy.deepcopy(state.to_dict())

    async def load(self, execution_id: str) -> ExecutionState | None:
        data = self._snapshots.get(execution_id)
        if data is None:
            return None
        return load_state(copy.deepcopy(data))

    async def create_approval_request(
        self,
        execution_id: str,
        kind: ApprovalKind,
        payload: dict[str, Any],
        *,
        timeout_minutes: int | None = None,
    ) -> str:
        request = ApprovalRequest(
            id=str(uuid4()),
            execution_id=execution_id,
            kind=kind,
            key=approval_key(payload),
            payload=copy.deepcopy(payload),
            timeout_minutes=timeout_minutes,
        )
        async with self._lock:
            self._approvals[request.id] = request
        return request.id

    async def get_approval_request(self, request_id: str) -> ApprovalRequest | None:
        request = self._approvals.get(request_id)
        return copy.deepcopy(request) if request is not None else None

    async def record_approval_decision(self, request_id: str, decision: ApprovalDecision) -> None:
        async with self._lock:
            request = self._require(request_id)
            request.status = ApprovalStatus.for_action(decision.action)
            request.decision = decision
            request.decided_at = datetime.now(timezone.utc)
            self._history.append(
                {
                    "approval_request_id": request_id,
                    "execution_id": request.execution_id,
                    "approval_type": request.kind.value,
                    "approval_key": request.key,
                    "action": request.status.value,
                    "decided_by": decision.decided_by,
                    "reason": decision.reason,
                }
            )

    async def update_approval_status(self, request_id: str, status: ApprovalStatus) -> None:
        async with self._lock:
            self._require(request_id).status = status

    async def list_pending_approvals(self, execution_id: str | None = None) -> list[ApprovalRequest]:
        return [
            copy.deepcopy(r)
            for r in self._approvals.values()
            if r.is_pending and (execution_id is None or r.execution_id == execution_id)
        ]

    async def approval_history(self, execution_id: str) -> list[dict[str, Any]]:
        """Return the decisions taken for *execution_id*, oldest first."""
        return [dict(entry) for entry in self._history if entry["execution_id"] == execution_id]

    def _require(self, request_id: str) -> ApprovalRequest:
        request = self._approvals.get(request_id)
        if request is None:
            raise ApprovalNotFoundError(request_id)
        return request
