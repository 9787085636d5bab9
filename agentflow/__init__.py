"""
AgentFlow - run multi-agent workflow graphs.

A workflow is a graph of trigger, input, action, condition and output
nodes. The executor walks it from the trigger, delegating each step to a
language-model agent, pausing at input nodes for human values, and records
every step as durable Execution/Task records.
"""

from agentflow.config import RuntimeConfig
from agentflow.errors import (
    AgentFlowError,
    DecisionParseError,
    ExecutionNotFoundError,
    GraphStructureError,
    InputValidationError,
    InvalidTransitionError,
    ModelInvocationError,
    NoPendingInputError,
    PersistenceError,
    WorkflowNotFoundError,
)
from agentflow.graph import Edge, Node, NodeType, SourcePort, Workflow, WorkflowConfiguration
from agentflow.graph.executor import ExecutionResult, RunState, WorkflowExecutor
from agentflow.llm import LiteLLMProvider, LLMProvider, LLMResponse, MockLLMProvider
from agentflow.runtime import ExecutionStatusView, WorkflowRuntime, create_workflow_runtime
from agentflow.schemas import Agent, AgentRole, Execution, ExecutionStatus, Task, TaskStatus
from agentflow.storage import ExecutionLedger, FileStorage, StorageBackend

__version__ = "0.1.0"

__all__ = [
    # Config
    "RuntimeConfig",
    # Errors
    "AgentFlowError",
    "DecisionParseError",
    "ExecutionNotFoundError",
    "GraphStructureError",
    "InputValidationError",
    "InvalidTransitionError",
    "ModelInvocationError",
    "NoPendingInputError",
    "PersistenceError",
    "WorkflowNotFoundError",
    # Graph
    "Workflow",
    "WorkflowConfiguration",
    "Node",
    "NodeType",
    "Edge",
    "SourcePort",
    # Execution
    "WorkflowExecutor",
    "ExecutionResult",
    "RunState",
    "WorkflowRuntime",
    "ExecutionStatusView",
    "create_workflow_runtime",
    # LLM
    "LLMProvider",
    "LLMResponse",
    "LiteLLMProvider",
    "MockLLMProvider",
    # Records
    "Agent",
    "AgentRole",
    "Execution",
    "ExecutionStatus",
    "Task",
    "TaskStatus",
    # Storage
    "StorageBackend",
    "FileStorage",
    "ExecutionLedger",
]
