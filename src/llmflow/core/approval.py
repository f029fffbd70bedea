"""Human-in-the-loop approval gates.

Engines consult an :class:`ApprovalGate` before and after sensitive
actions. A gate answers with an :class:`ApprovalDecision`:

* ``approve`` - go ahead with the original value,
* ``reject``  - on an execution gate, do not perform the action; on an
  output-review gate, keep the original value,
* ``modify``  - go ahead with ``decision.data`` in place of the original,
* ``suspend`` - halt the run now; a later ``resume()`` supplies the decision.

Two interchangeable variants exist. :class:`CallbackApprovalGate` calls
user functions in-process; :class:`PersistedApprovalGate` records an
approval request through the execution store and suspends the run so the
decision can be taken out of process.
"""

from __future__ import annotations

import enum
import inspect
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

import structlog

from llmflow.core.exceptions import ApprovalError, ApprovalNotFoundError, ApprovalPendingError
from llmflow.core.serialization import to_jsonable
from llmflow.core.state import ApprovalKind, PendingApproval

if TYPE_CHECKING:
    from llmflow.core.state import ExecutionState
    from llmflow.core.store import ExecutionStateStore

logger = structlog.get_logger(__name__)

GateCallback = Callable[..., Any]


class ApprovalAction(str, enum.Enum):
    """Outcome of a gate decision."""

    APPROVE = "approve"
    REJECT = "reject"
    MODIFY = "modify"
    SUSPEND = "suspend"


@dataclass(frozen=True)
class ApprovalDecision:
    """A gate's answer, optionally carrying replacement data."""

    action: ApprovalAction
    data: Any = None
    request_id: str | None = None
    decided_by: str | None = None
    reason: str | None = None

    @classmethod
    def approve(cls, *, decided_by: str | None = None, reason: str | None = None) -> ApprovalDecision:
        return cls(ApprovalAction.APPROVE, decided_by=decided_by, reason=reason)

    @classmethod
    def reject(cls, *, decided_by: str | None = None, reason: str | None = None) -> ApprovalDecision:
        return cls(ApprovalAction.REJECT, decided_by=decided_by, reason=reason)

    @classmethod
    def modify(cls, data: Any, *, decided_by: str | None = None, reason: str | None = None) -> ApprovalDecision:
        return cls(ApprovalAction.MODIFY, data=data, decided_by=decided_by, reason=reason)

    @classmethod
    def suspend(cls, request_id: str | None = None) -> ApprovalDecision:
        return cls(ApprovalAction.SUSPEND, request_id=request_id)

    @property
    def is_suspend(self) -> bool:
        return self.action == ApprovalAction.SUSPEND

    @property
    def is_reject(self) -> bool:
        return self.action == ApprovalAction.REJECT

    @property
    def is_modify(self) -> bool:
        return self.action == ApprovalAction.MODIFY

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action.value,
            "data": to_jsonable(self.data),
            "request_id": self.request_id,
            "decided_by": self.decided_by,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ApprovalDecision:
        return cls(
            action=ApprovalAction(data["action"]),
            data=data.get("data"),
            request_id=data.get("request_id"),
            decided_by=data.get("decided_by"),
            reason=data.get("reason"),
        )


class ApprovalStatus(str, enum.Enum):
    """Lifecycle of a persisted approval request."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    MODIFIED = "modified"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

    @classmethod
    def for_action(cls, action: ApprovalAction) -> ApprovalStatus:
        return {
            ApprovalAction.APPROVE: cls.APPROVED,
            ApprovalAction.REJECT: cls.REJECTED,
            ApprovalAction.MODIFY: cls.MODIFIED,
        }[action]


@dataclass
class ApprovalRequest:
    """A decision awaiting someone outside the running process."""

    id: str
    execution_id: str
    kind: ApprovalKind
    payload: dict[str, Any] = field(default_factory=dict)
    key: str | None = None
    status: ApprovalStatus = ApprovalStatus.PENDING
    timeout_minutes: int | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    expires_at: datetime | None = None
    decision: ApprovalDecision | None = None
    decided_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.expires_at is None and self.timeout_minutes:
            self.expires_at = self.created_at + timedelta(minutes=self.timeout_minutes)

    @property
    def is_pending(self) -> bool:
        return self.status == ApprovalStatus.PENDING

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None or not self.is_pending:
            return self.status == ApprovalStatus.EXPIRED
        now = now or datetime.now(timezone.utc)
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return now >= expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "execution_id": self.execution_id,
            "kind": self.kind.value,
            "key": self.key,
            "payload": to_jsonable(self.payload),
            "status": self.status.value,
            "timeout_minutes": self.timeout_minutes,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "decision": self.decision.to_dict() if self.decision else None,
            "decided_at": self.decided_at.isoformat() if self.decided_at else None,
        }


def approval_key(payload: Mapping[str, Any]) -> str | None:
    """Tool name or step name the decision is about."""
    key = payload.get("name") or payload.get("step_name")
    if key is None:
        execution = payload.get("execution")
        key = getattr(execution, "name", None)
    return str(key) if key is not None else None


def decision_from_callback(value: Any) -> ApprovalDecision:
    """Interpret a callback's return value.

    ``None``/``True`` approve, ``False`` rejects, an
    :class:`ApprovalDecision` is taken as is, anything else modifies.
    """
    if isinstance(value, ApprovalDecision):
        return value
    if value is None or value is True:
        return ApprovalDecision.approve()
    if value is False:
        return ApprovalDecision.reject()
    return ApprovalDecision.modify(value)


# Positional arguments each callback kind receives, built from the gate payload.
_CALLBACK_ARGS: dict[ApprovalKind, Callable[[Mapping[str, Any]], tuple[Any, ...]]] = {
    ApprovalKind.TOOL_EXECUTION: lambda p: (p["name"], p["arguments"]),
    ApprovalKind.TOOL_RESULT: lambda p: (p["execution"],),
    ApprovalKind.FINAL_RESPONSE: lambda p: (p["content"], p["messages"], p["tool_executions"]),
    ApprovalKind.STEP_EXECUTION: lambda p: (p["step_name"], p["prompt"], p["context"]),
    ApprovalKind.STEP_RESULT: lambda p: (p["step_name"], p["result"], p["context"]),
}


class ApprovalGate(ABC):
    """Synchronous decision point consulted by the engines."""

    @abstractmethod
    async def decide(
        self,
        kind: ApprovalKind,
        payload: Mapping[str, Any],
        state: ExecutionState,
    ) -> ApprovalDecision:
        """Decide on the action described by *payload*.

        Args:
            kind: Which decision point is asking.
            payload: Live data for the decision (tool name and arguments,
                rendered prompt, step result, ...).
            state: The execution state of the asking run.
        """
        ...


class CallbackApprovalGate(ApprovalGate):
    """Gate backed by in-process callbacks, one per decision kind.

    Kinds without a callback are approved.
    """

    def __init__(self, callbacks: Mapping[ApprovalKind, GateCallback] | None = None) -> None:
        self._callbacks: dict[ApprovalKind, GateCallback] = dict(callbacks or {})

    def handles(self, kind: ApprovalKind) -> bool:
        return kind in self._callbacks

    async def decide(
        self,
        kind: ApprovalKind,
        payload: Mapping[str, Any],
        state: ExecutionState,
    ) -> ApprovalDecision:
        callback = self._callbacks.get(kind)
        if callback is None:
            return ApprovalDecision.approve()
        value = callback(*_CALLBACK_ARGS[kind](payload))
        if inspect.isawaitable(value):
            value = await value
        return decision_from_callback(value)


class PersistedApprovalGate(CallbackApprovalGate):
    """Gate that defers decisions to a person outside the running process.

    For each kind in *kinds* without an inline callback the gate writes an
    approval request through *store* and returns a ``suspend`` decision
    carrying the request id. Inline callbacks still win for their kinds, and
    kinds outside *kinds* are approved.
    """

    DEFAULT_KINDS = frozenset({ApprovalKind.TOOL_EXECUTION, ApprovalKind.STEP_EXECUTION})

    def __init__(
        self,
        store: ExecutionStateStore,
        *,
        kinds: Iterable[ApprovalKind] | None = None,
        timeout_minutes: int | None = None,
        callbacks: Mapping[ApprovalKind, GateCallback] | None = None,
    ) -> None:
        super().__init__(callbacks)
        self._store = store
        self._kinds = frozenset(kinds) if kinds is not None else self.DEFAULT_KINDS
        self._timeout_minutes = timeout_minutes

    @property
    def kinds(self) -> frozenset[ApprovalKind]:
        return self._kinds

    async def decide(
        self,
        kind: ApprovalKind,
        payload: Mapping[str, Any],
        state: ExecutionState,
    ) -> ApprovalDecision:
        if self.handles(kind):
            return await super().decide(kind, payload, state)
        if kind not in self._kinds:
            return ApprovalDecision.approve()

        request_id = await self._store.create_approval_request(
            state.id,
            kind,
            to_jsonable(dict(payload)),
            timeout_minutes=self._timeout_minutes,
        )
        await logger.ainfo(
            "Approval requested",
            execution_id=state.id,
            kind=kind.value,
            request_id=request_id,
            key=approval_key(payload),
        )
        return ApprovalDecision.suspend(request_id)


def pending_from_suspend(kind: ApprovalKind, data: Mapping[str, Any], decision: ApprovalDecision) -> PendingApproval:
    """Build the ``pending_approval`` record of a run halted by *decision*."""
    return PendingApproval(kind=kind, data=to_jsonable(dict(data)), request_id=decision.request_id)


async def expire_if_due(store: ExecutionStateStore, request: ApprovalRequest) -> bool:
    """Close *request* as expired once its deadline passed without a decision.

    Returns True if the request is (now) expired.
    """
    if request.status == ApprovalStatus.EXPIRED:
        return True
    if not request.is_pending or not request.is_expired():
        return False
    await store.update_approval_status(request.id, ApprovalStatus.EXPIRED)
    request.status = ApprovalStatus.EXPIRED
    await logger.ainfo("Approval expired", request_id=request.id, execution_id=request.execution_id)
    return True


async def resolve_resume_decision(
    store: ExecutionStateStore,
    pending: PendingApproval,
    decision: ApprovalDecision | None,
) -> ApprovalDecision:
    """Work out the decision a resumed run continues with.

    * An undecided request past its ``expires_at`` counts as a rejection
      and is marked expired, whatever decision accompanies the resume.
    * An explicit *decision* wins otherwise and is recorded on the request.
    * Failing both, the decision already recorded on the request is used.

    Raises:
        ApprovalError: If no decision is given and nothing was persisted.
        ApprovalNotFoundError: If the pending request id is unknown.
        ApprovalPendingError: If the request is still awaiting a decision.
    """
    if decision is not None and decision.is_suspend:
        raise ApprovalError("A resume decision cannot be 'suspend'")

    request_id = pending.request_id
    if request_id is None:
        if decision is None:
            raise ApprovalError("Resuming requires a decision when no approval request was recorded")
        return decision

    request = await store.get_approval_request(request_id)
    if request is None:
        raise ApprovalNotFoundError(request_id)

    if await expire_if_due(store, request):
        return ApprovalDecision.reject(decided_by="system", reason="expired")

    if decision is not None:
        if request.is_pending:
            await store.record_approval_decision(request_id, decision)
        return decision

    if request.decision is not None:
        return request.decision

    raise ApprovalPendingError(request_id)
