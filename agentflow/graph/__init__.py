"""Graph structures: Workflows, Nodes, Edges, strategies and human input."""

from agentflow.graph.hitl import (
    PendingInput,
    PendingInputField,
    PendingInputType,
    build_pending_input,
    is_input_satisfied,
    required_keys,
    resolve_input,
    task_key,
)
from agentflow.graph.layout import apply_layout, layerize, layout_positions, reachable_from
from agentflow.graph.strategies import (
    AgentInvoker,
    NodeStrategy,
    StrategyResult,
    get_strategy,
    parse_decision,
)
from agentflow.graph.templates import build_app_creator_workflow, build_review_loop_workflow
from agentflow.graph.workflow import (
    ConditionConfig,
    Edge,
    InputConfig,
    InputField,
    InputFieldType,
    Node,
    NodeType,
    OutputConfig,
    OutputType,
    SourcePort,
    TriggerConfig,
    TriggerType,
    Workflow,
    WorkflowConfiguration,
    find_trigger,
    outgoing,
    select_edge,
)

__all__ = [
    # Workflow model
    "Workflow",
    "WorkflowConfiguration",
    "Node",
    "NodeType",
    "Edge",
    "SourcePort",
    "InputConfig",
    "InputField",
    "InputFieldType",
    "ConditionConfig",
    "TriggerConfig",
    "TriggerType",
    "OutputConfig",
    "OutputType",
    "find_trigger",
    "outgoing",
    "select_edge",
    # Layout
    "layerize",
    "layout_positions",
    "apply_layout",
    "reachable_from",
    # Strategies
    "AgentInvoker",
    "NodeStrategy",
    "StrategyResult",
    "get_strategy",
    "parse_decision",
    # HITL
    "PendingInput",
    "PendingInputField",
    "PendingInputType",
    "build_pending_input",
    "is_input_satisfied",
    "required_keys",
    "resolve_input",
    "task_key",
    # Templates
    "build_app_creator_workflow",
    "build_review_loop_workflow",
]
