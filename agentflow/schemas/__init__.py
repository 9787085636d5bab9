"""Persisted record schemas."""

from agentflow.schemas.agent import Agent, AgentPerformance, AgentRole, ModelConfig
from agentflow.schemas.execution import (
    Execution,
    ExecutionStatus,
    StatusTransition,
    Task,
    TaskStatus,
    TokenUsage,
)

__all__ = [
    "Agent",
    "AgentPerformance",
    "AgentRole",
    "ModelConfig",
    "Execution",
    "ExecutionStatus",
    "StatusTransition",
    "Task",
    "TaskStatus",
    "TokenUsage",
]
