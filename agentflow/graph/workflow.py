"""
Workflow Protocol - nodes, edges and the workflow snapshot.

These are the serializable structures produced by the visual editor. The
wire shape keeps the editor's camelCase keys (``agentId``, ``sourcePort``,
``isMultiInput`` ...); models accept either spelling and dump with aliases.

Node types form a closed set. Each type maps to exactly one execution
strategy (see ``agentflow.graph.strategies``), and only condition nodes
branch: their outgoing edges carry a ``true``/``false`` port.
"""

import logging
import uuid
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


class NodeType(StrEnum):
    """Kind of workflow step."""

    TRIGGER = "trigger"  # Unique entry point
    INPUT = "input"  # Collects human-provided values
    ACTION = "action"  # Agent work with a reflect loop
    CONDITION = "condition"  # Structured true/false decision
    OUTPUT = "output"  # Formats the final result for a channel


class SourcePort(StrEnum):
    """Outgoing port an edge is attached to."""

    TRUE = "true"
    FALSE = "false"
    DEFAULT = "default"


class TriggerType(StrEnum):
    WEBHOOK = "webhook"
    SCHEDULE = "schedule"
    EVENT = "event"


class OutputType(StrEnum):
    EMAIL = "email"
    SLACK = "slack"
    DATABASE = "database"


class InputFieldType(StrEnum):
    TEXT = "text"
    NUMBER = "number"
    BOOLEAN = "boolean"
    SELECT = "select"
    TEXTAREA = "textarea"


_ALIASED = ConfigDict(extra="allow", populate_by_name=True)


# ---------------------------------------------------------------------------
# Typed views over Node.config
# ---------------------------------------------------------------------------


class InputField(BaseModel):
    """One field of an input node."""

    key: str
    label: str = ""
    type: InputFieldType = InputFieldType.TEXT
    options: list[str] | None = None
    default_value: Any = Field(default=None, alias="defaultValue")

    model_config = _ALIASED


class InputConfig(BaseModel):
    """
    Configuration of an input node.

    Single-value nodes may name their context key (``key``) and value type
    (``inputType``); multi-input nodes list their ``fields``.
    """

    is_multi_input: bool = Field(default=False, alias="isMultiInput")
    fields: list[InputField] = Field(default_factory=list)
    key: str | None = None
    input_type: InputFieldType | None = Field(default=None, alias="inputType")
    options: list[str] | None = None

    model_config = _ALIASED


class ConditionConfig(BaseModel):
    """Labels shown on the two outgoing ports of a condition node."""

    condition_true: str = Field(default="True", alias="conditionTrue")
    condition_false: str = Field(default="False", alias="conditionFalse")

    model_config = _ALIASED


class TriggerConfig(BaseModel):
    trigger_type: TriggerType = Field(default=TriggerType.WEBHOOK, alias="triggerType")

    model_config = _ALIASED


class OutputConfig(BaseModel):
    output_type: OutputType = Field(default=OutputType.DATABASE, alias="outputType")

    model_config = _ALIASED


# ---------------------------------------------------------------------------
# Graph elements
# ---------------------------------------------------------------------------


class Node(BaseModel):
    """
    A step in a workflow.

    ``label`` is display text; the task description handed to a strategy is
    ``description`` when set, else ``label``.
    """

    id: str
    type: NodeType
    label: str = ""
    agent_id: str | None = Field(default=None, alias="agentId")
    description: str = ""
    config: dict[str, Any] = Field(default_factory=dict)
    x: float | None = None
    y: float | None = None

    model_config = _ALIASED

    @property
    def task_description(self) -> str:
        return self.description or self.label or self.id

    @property
    def display_name(self) -> str:
        return self.label or self.id

    def input_config(self) -> InputConfig:
        return InputConfig.model_validate(self.config)

    def condition_config(self) -> ConditionConfig:
        return ConditionConfig.model_validate(self.config)

    def trigger_config(self) -> TriggerConfig:
        return TriggerConfig.model_validate(self.config)

    def output_config(self) -> OutputConfig:
        return OutputConfig.model_validate(self.config)


class Edge(BaseModel):
    """
    A directed connection between two nodes.

    ``source_port`` is ``true``/``false`` for edges leaving a condition node;
    untagged edges count as ``default``.
    """

    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:8])
    source: str
    target: str
    source_port: SourcePort | None = Field(default=None, alias="sourcePort")

    model_config = _ALIASED

    @property
    def port(self) -> SourcePort:
        return self.source_port or SourcePort.DEFAULT


class WorkflowConfiguration(BaseModel):
    """The graph the editor produces and consumes."""

    nodes: list[Node] = Field(default_factory=list)
    edges: list[Edge] = Field(default_factory=list)

    model_config = ConfigDict(extra="allow")


# ---------------------------------------------------------------------------
# Structural queries
# ---------------------------------------------------------------------------


def find_trigger(nodes: list[Node]) -> Node | None:
    """Return the first trigger node in list order, or None."""
    for node in nodes:
        if node.type == NodeType.TRIGGER:
            return node
    return None


def outgoing(node_id: str, edges: list[Edge]) -> list[Edge]:
    """All edges leaving ``node_id``, in list order."""
    return [e for e in edges if e.source == node_id]


def select_edge(edges: list[Edge], port: SourcePort | str) -> Edge | None:
    """First edge attached to ``port``, or None."""
    for edge in edges:
        if edge.port == port:
            return edge
    return None


class Workflow(BaseModel):
    """
    A complete workflow definition.

    The interpreter treats it as an immutable snapshot for one run.
    """

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    name: str = "Untitled Workflow"
    description: str = ""
    status: str = "active"
    configuration: WorkflowConfiguration = Field(default_factory=WorkflowConfiguration)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    model_config = ConfigDict(extra="allow")

    @property
    def nodes(self) -> list[Node]:
        return self.configuration.nodes

    @property
    def edges(self) -> list[Edge]:
        return self.configuration.edges

    def touch(self) -> None:
        """Update the ``updated_at`` timestamp."""
        self.updated_at = datetime.now()

    def get_node(self, node_id: str) -> Node | None:
        """Find a node by ID."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def get_edges_from(self, node_id: str) -> list[Edge]:
        return outgoing(node_id, self.edges)

    def get_edges_to(self, node_id: str) -> list[Edge]:
        return [e for e in self.edges if e.target == node_id]

    def get_trigger(self) -> Node | None:
        """Entry node; the first trigger wins when the graph has several."""
        triggers = [n for n in self.nodes if n.type == NodeType.TRIGGER]
        if len(triggers) > 1:
            logger.warning(
                f"Workflow '{self.name}' has {len(triggers)} trigger nodes, "
                f"using the first one ({triggers[0].id})"
            )
        return triggers[0] if triggers else None

    def validate_graph(self) -> list[str]:
        """
        Validate the workflow graph structure.

        Returns a list of error messages (empty = valid). The run-loop only
        refuses graphs without a trigger; the rest is reported to the editor.
        """
        errors: list[str] = []

        triggers = [n for n in self.nodes if n.type == NodeType.TRIGGER]
        if not triggers:
            errors.append("Workflow must have a trigger node (no entry point).")
        elif len(triggers) > 1:
            errors.append(
                f"Workflow should have exactly one trigger node (found {len(triggers)})."
            )

        seen: set[str] = set()
        for node in self.nodes:
            if node.id in seen:
                errors.append(f"Duplicate node id: {node.id}")
            seen.add(node.id)

        for edge in self.edges:
            source = self.get_node(edge.source)
            if source is None:
                errors.append(f"Edge {edge.id} references unknown source node: {edge.source}")
            if self.get_node(edge.target) is None:
                errors.append(f"Edge {edge.id} references unknown target node: {edge.target}")
            if source is None:
                continue

            if source.type == NodeType.CONDITION:
                if edge.port not in (SourcePort.TRUE, SourcePort.FALSE):
                    errors.append(
                        f"Edge {edge.id} leaves condition node '{source.display_name}' "
                        f"without a true/false port."
                    )
            elif edge.port != SourcePort.DEFAULT:
                errors.append(
                    f"Edge {edge.id} uses port '{edge.port}' but its source "
                    f"'{source.display_name}' is not a condition node."
                )

        return errors
