"""Database models and schema definitions."""

from llmflow.models.base import Base, create_all, get_engine, get_session_factory
from llmflow.models.execution import AgentExecutionRecord, WorkflowExecutionRecord
from llmflow.models.approval import ApprovalHistoryRecord, ApprovalRequestRecord

__all__ = [
    # Base
    "Base",
    "create_all",
    "get_engine",
    "get_session_factory",
    # Executions
    "AgentExecutionRecord",
    "WorkflowExecutionRecord",
    # Approvals
    "ApprovalHistoryRecord",
    "ApprovalRequestRecord",
]
