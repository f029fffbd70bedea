"""Agent and workflow engines, approval gates and execution state."""

from llmflow.core.agent import Agent, AgentEngine, AgentResult
from llmflow.core.approval import (
    ApprovalAction,
    ApprovalDecision,
    ApprovalGate,
    ApprovalRequest,
    ApprovalStatus,
    CallbackApprovalGate,
    PersistedApprovalGate,
)
from llmflow.core.context import ExecutionContext
from llmflow.core.exceptions import (
    ApprovalClosedError,
    ApprovalError,
    ApprovalNotFoundError,
    ApprovalPendingError,
    DefinitionNotFoundError,
    ExecutionError,
    ExecutionNotFoundError,
    ExecutionStateError,
    InterpolationError,
    LLMFlowError,
    ValidationError,
)
from llmflow.core.interpolation import InterpolationEngine
from llmflow.core.messages import Message, Role, ToolCall
from llmflow.core.orchestrator import Orchestrator
from llmflow.core.state import (
    AgentExecutionState,
    ApprovalKind,
    PendingApproval,
    Status,
    StepResult,
    ToolExecution,
    Usage,
    WorkflowExecutionState,
)
from llmflow.core.store import ExecutionStateStore, InMemoryExecutionStore
from llmflow.core.tools import Tool, ToolInvoker
from llmflow.core.workflow import Workflow, WorkflowEngine, WorkflowResult, WorkflowStep

__all__ = [
    # Agent
    "Agent",
    "AgentEngine",
    "AgentResult",
    # Workflow
    "Workflow",
    "WorkflowEngine",
    "WorkflowResult",
    "WorkflowStep",
    # Orchestrator
    "Orchestrator",
    # Tools and messages
    "Message",
    "Role",
    "Tool",
    "ToolCall",
    "ToolInvoker",
    # Context
    "ExecutionContext",
    "InterpolationEngine",
    # Approval
    "ApprovalAction",
    "ApprovalDecision",
    "ApprovalGate",
    "ApprovalKind",
    "ApprovalRequest",
    "ApprovalStatus",
    "CallbackApprovalGate",
    "PersistedApprovalGate",
    # State
    "AgentExecutionState",
    "PendingApproval",
    "Status",
    "StepResult",
    "ToolExecution",
    "Usage",
    "WorkflowExecutionState",
    # Store
    "ExecutionStateStore",
    "InMemoryExecutionStore",
    # Exceptions
    "LLMFlowError",
    "ApprovalClosedError",
    "ApprovalError",
    "ApprovalNotFoundError",
    "ApprovalPendingError",
    "DefinitionNotFoundError",
    "ExecutionError",
    "ExecutionNotFoundError",
    "ExecutionStateError",
    "InterpolationError",
    "ValidationError",
]
