"""Approval request and approval history database models."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from llmflow.core.approval import ApprovalAction, ApprovalDecision, ApprovalRequest, ApprovalStatus
from llmflow.core.state import ApprovalKind
from llmflow.models.base import Base, JSONType


def _aware(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo; stored datetimes are UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ApprovalRequestRecord(Base):
    """A gate decision awaiting someone outside the running process."""

    __tablename__ = "llm_approval_request"
    __table_args__ = (
        Index("ix_llm_approval_request_execution_status", "execution_id", "status"),
        Index("ix_llm_approval_request_status_expires", "status", "expires_at"),
    )

    execution_id: Mapped[str] = mapped_column(String(64), index=True)
    approval_type: Mapped[ApprovalKind] = mapped_column(
        Enum(ApprovalKind, name="approval_kind", native_enum=False),
        index=True,
    )
    approval_key: Mapped[str | None] = mapped_column(String(255), default=None, index=True)
    request_data: Mapped[dict[str, Any] | None] = mapped_column(JSONType, default=None)
    status: Mapped[ApprovalStatus] = mapped_column(
        Enum(ApprovalStatus, name="approval_status", native_enum=False),
        default=ApprovalStatus.PENDING,
        index=True,
    )

    # Decision
    decision_action: Mapped[str | None] = mapped_column(String(20), default=None)
    decision_data: Mapped[Any] = mapped_column(JSONType, nullable=True, default=None)
    decision_reason: Mapped[str | None] = mapped_column(Text, default=None)
    decided_by: Mapped[str | None] = mapped_column(String(255), default=None)
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)

    # Timeouts
    timeout_minutes: Mapped[int | None] = mapped_column(Integer, default=None)
    requested_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None, index=True)

    history: Mapped[list[ApprovalHistoryRecord]] = relationship(
        back_populates="approval_request",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @classmethod
    def from_request(cls, request: ApprovalRequest) -> ApprovalRequestRecord:
        return cls(
            id=request.id,
            execution_id=request.execution_id,
            approval_type=request.kind,
            approval_key=request.key,
            request_data=request.payload,
            status=request.status,
            timeout_minutes=request.timeout_minutes,
            requested_at=request.created_at,
            expires_at=request.expires_at,
        )

    def record_decision(self, decision: ApprovalDecision, decided_at: datetime) -> None:
        self.status = ApprovalStatus.for_action(decision.action)
        self.decision_action = decision.action.value
        self.decision_data = decision.to_dict()["data"]
        self.decision_reason = decision.reason
        self.decided_by = decision.decided_by
        self.decided_at = decided_at

    def to_request(self) -> ApprovalRequest:
        decision = None
        if self.decision_action is not None:
            decision = ApprovalDecision(
                action=ApprovalAction(self.decision_action),
                data=self.decision_data,
                request_id=self.id,
                decided_by=self.decided_by,
                reason=self.decision_reason,
            )
        return ApprovalRequest(
            id=self.id,
            execution_id=self.execution_id,
            kind=self.approval_type,
            payload=dict(self.request_data or {}),
            key=self.approval_key,
            status=self.status,
            timeout_minutes=self.timeout_minutes,
            created_at=_aware(self.requested_at) or _aware(self.created_at),
            expires_at=_aware(self.expires_at),
            decision=decision,
            decided_at=_aware(self.decided_at),
        )


class ApprovalHistoryRecord(Base):
    """Audit trail: one row per decision taken on an approval request."""

    __tablename__ = "llm_approval_history"
    __table_args__ = (
        Index("ix_llm_approval_history_execution_created", "execution_id", "created_at"),
        Index("ix_llm_approval_history_type_action", "approval_type", "action"),
    )

    approval_request_id: Mapped[str] = mapped_column(
        ForeignKey("llm_approval_request.id", ondelete="CASCADE"),
        index=True,
    )
    execution_id: Mapped[str] = mapped_column(String(64), index=True)
    approval_type: Mapped[str] = mapped_column(String(50), index=True)
    approval_key: Mapped[str | None] = mapped_column(String(255), default=None)
    action: Mapped[str] = mapped_column(String(20), index=True)
    original_data: Mapped[dict[str, Any] | None] = mapped_column(JSONType, default=None)
    modified_data: Mapped[Any] = mapped_column(JSONType, nullable=True, default=None)
    decision_reason: Mapped[str | None] = mapped_column(Text, default=None)
    acted_by: Mapped[str | None] = mapped_column(String(255), default=None, index=True)

    approval_request: Mapped[ApprovalRequestRecord] = relationship(back_populates="history")
