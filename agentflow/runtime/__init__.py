"""Runtime facade for starting executions and providing human input."""

from agentflow.runtime.workflow_runtime import (
    ExecutionStatusView,
    WorkflowRuntime,
    create_workflow_runtime,
)

__all__ = ["WorkflowRuntime", "ExecutionStatusView", "create_workflow_runtime"]
