"""SQLAlchemy async implementation of the execution state store.

Each method opens its own ``AsyncSession``, performs its operation and
commits, so every snapshot and approval decision is durable when the
method returns.

Typical wiring::

    engine = get_engine("sqlite+aiosqlite:///llmflow.db")
    await create_all(engine)
    store = SqlExecutionStore(get_session_factory(engine))
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from llmflow.core.approval import ApprovalDecision, ApprovalRequest, ApprovalStatus, approval_key
from llmflow.core.exceptions import ApprovalNotFoundError
from llmflow.core.state import (
    AgentExecutionState,
    ApprovalKind,
    ExecutionState,
    load_state,
)
from llmflow.models.approval import ApprovalHistoryRecord, ApprovalRequestRecord
from llmflow.models.execution import AgentExecutionRecord, WorkflowExecutionRecord

logger = structlog.get_logger(__name__)


class SqlExecutionStore:
    """Persist execution snapshots and approval requests in SQL tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    # ---- Executions ----

    async def save(self, execution_id: str, state: ExecutionState) -> None:
        record_type = AgentExecutionRecord if isinstance(state, AgentExecutionState) else WorkflowExecutionRecord
        async with self.session_factory() as s:
            row = await s.get(record_type, execution_id)
            if row is None:
                row = record_type(id=execution_id)
                s.add(row)
            row.apply(state)
            await s.commit()

    async def load(self, execution_id: str) -> ExecutionState | None:
        async with self.session_factory() as s:
            for record_type in (AgentExecutionRecord, WorkflowExecutionRecord):
                row = await s.get(record_type, execution_id)
                if row is not None:
                    return load_state(dict(row.snapshot))
        return None

    # ---- Approvals ----

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
            payload=payload,
            key=approval_key(payload),
            timeout_minutes=timeout_minutes,
        )
        async with self.session_factory() as s:
            s.add(ApprovalRequestRecord.from_request(request))
            await s.commit()
        await logger.adebug("Approval request stored", request_id=request.id, execution_id=execution_id)
        return request.id

    async def get_approval_request(self, request_id: str) -> ApprovalRequest | None:
        async with self.session_factory() as s:
            row = await s.get(ApprovalRequestRecord, request_id)
            return row.to_request() if row is not None else None

    async def record_approval_decision(self, request_id: str, decision: ApprovalDecision) -> None:
        async with self.session_factory() as s:
            row = await self._require(s, request_id)
            row.record_decision(decision, datetime.now(timezone.utc))
            row.history.append(
                ApprovalHistoryRecord(
                    execution_id=row.execution_id,
                    approval_type=row.approval_type.value,
                    approval_key=row.approval_key,
                    action=row.status.value,
                    original_data=row.request_data,
                    modified_data=row.decision_data if decision.is_modify else None,
                    decision_reason=decision.reason,
                    acted_by=decision.decided_by,
                )
            )
            await s.commit()

    async def update_approval_status(self, request_id: str, status: ApprovalStatus) -> None:
        async with self.session_factory() as s:
            row = await self._require(s, request_id)
            row.status = status
            await s.commit()

    async def list_pending_approvals(self, execution_id: str | None = None) -> list[ApprovalRequest]:
        stmt = select(ApprovalRequestRecord).where(ApprovalRequestRecord.status == ApprovalStatus.PENDING)
        if execution_id is not None:
            stmt = stmt.where(ApprovalRequestRecord.execution_id == execution_id)
        stmt = stmt.order_by(ApprovalRequestRecord.requested_at)
        async with self.session_factory() as s:
            rows = (await s.execute(stmt)).scalars().all()
            return [row.to_request() for row in rows]

    async def approval_history(self, execution_id: str) -> list[dict[str, Any]]:
        """Return the decisions taken for *execution_id*, oldest first."""
        stmt = (
            select(ApprovalHistoryRecord)
            .where(ApprovalHistoryRecord.execution_id == execution_id)
            .order_by(ApprovalHistoryRecord.created_at)
        )
        async with self.session_factory() as s:
            rows = (await s.execute(stmt)).scalars().all()
            return [
                {
                    "approval_request_id": row.approval_request_id,
                    "execution_id": row.execution_id,
                    "approval_type": row.approval_type,
                    "approval_key": row.approval_key,
                    "action": row.action,
                    "decided_by": row.acted_by,
                    "reason": row.decision_reason,
                }
                for row in rows
            ]

    @staticmethod
    async def _require(s: AsyncSession, request_id: str) -> ApprovalRequestRecord:
        row = await s.get(ApprovalRequestRecord, request_id)
        if row is None:
            raise ApprovalNotFoundError(request_id)
        return row
