"""
Human-In-The-Loop input protocol.

Defines when an input node can complete on its own and what the engine
hands to the caller when it cannot:

1. Executor: reaches an input node whose value(s) are missing from the
   run context and returns a PendingInput instead of advancing
2. Caller: shows the request, gathers a value, calls back
3. resolve_input(): validates the value and turns it into a context delta
4. Executor: merges the delta and re-enters the input node, which now
   short-circuits without calling the model
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from agentflow.errors import InputValidationError
from agentflow.graph.workflow import InputFieldType, Node, NodeType


class PendingInputType(StrEnum):
    """Kind of value the caller must supply."""

    TEXT = "text"
    NUMBER = "number"
    BOOLEAN = "boolean"
    SELECT = "select"
    MULTI = "multi"  # Key -> value record for several fields


@dataclass
class PendingInputField:
    """One field of a multi-input request."""

    key: str
    label: str
    type: str = InputFieldType.TEXT.value
    options: list[str] | None = None
    default_value: Any = None


@dataclass
class PendingInput:
    """
    Request for human input at an input node.

    This is what the engine surfaces while an execution is parked.
    """

    node_id: str
    label: str
    type: PendingInputType = PendingInputType.TEXT
    options: list[str] | None = None
    fields: list[PendingInputField] = field(default_factory=list)
    execution_id: str = ""
    key: str = ""  # Context key for single-value requests

    def to_dict(self) -> dict[str, Any]:
        """Convert to the editor's wire shape."""
        data: dict[str, Any] = {
            "executionId": self.execution_id,
            "nodeId": self.node_id,
            "label": self.label,
            "type": self.type.value,
        }
        if self.key:
            data["key"] = self.key
        if self.options is not None:
            data["options"] = list(self.options)
        if self.fields:
            data["fields"] = [
                {
                    "key": f.key,
                    "label": f.label,
                    "type": f.type,
                    "options": f.options,
                    "defaultValue": f.default_value,
                }
                for f in self.fields
            ]
        return data


def _require_input_node(node: Node) -> None:
    if node.type != NodeType.INPUT:
        raise ValueError(f"Node '{node.id}' is a {node.type} node, not an input node")


def is_multi_input(node: Node) -> bool:
    config = node.input_config()
    return config.is_multi_input and bool(config.fields)


def task_key(node: Node) -> str:
    """Context key a single-value input node reads and writes."""
    config = node.input_config()
    if config.key:
        return config.key
    if len(config.fields) == 1:
        return config.fields[0].key
    return node.label or node.id


def required_keys(node: Node) -> list[str]:
    """All context keys that must be present for the node to complete."""
    _require_input_node(node)
    if is_multi_input(node):
        return [f.key for f in node.input_config().fields]
    return [task_key(node)]


def missing_keys(node: Node, context: Mapping[str, Any]) -> list[str]:
    return [key for key in required_keys(node) if context.get(key) is None]


def is_input_satisfied(node: Node, context: Mapping[str, Any]) -> bool:
    """True when every required key already holds a value."""
    return not missing_keys(node, context)


def _single_value_type(node: Node) -> tuple[InputFieldType, list[str] | None]:
    config = node.input_config()
    if config.input_type is not None:
        return config.input_type, config.options
    if len(config.fields) == 1:
        only = config.fields[0]
        return only.type, only.options
    return InputFieldType.TEXT, config.options


def build_pending_input(node: Node, execution_id: str = "") -> PendingInput:
    """Describe what the caller must supply for ``node``."""
    _require_input_node(node)

    if is_multi_input(node):
        return PendingInput(
            node_id=node.id,
            label=node.display_name,
            type=PendingInputType.MULTI,
            fields=[
                PendingInputField(
                    key=f.key,
                    label=f.label or f.key,
                    type=f.type.value,
                    options=f.options,
                    default_value=f.default_value,
                )
                for f in node.input_config().fields
            ],
            execution_id=execution_id,
        )

    value_type, options = _single_value_type(node)
    # A textarea is still a single text value from the caller's side
    pending_type = (
        PendingInputType.TEXT
        if value_type == InputFieldType.TEXTAREA
        else PendingInputType(value_type.value)
    )
    return PendingInput(
        node_id=node.id,
        label=node.display_name,
        type=pending_type,
        options=options,
        execution_id=execution_id,
        key=task_key(node),
    )


def resolve_input(node: Node, value: Any) -> dict[str, Any]:
    """
    Validate a caller-supplied value and return the context delta.

    Raises:
        InputValidationError: the value is rejected; the same pending request
            stays open and nothing else changes.
    """
    _require_input_node(node)

    if is_multi_input(node):
        if not isinstance(value, Mapping):
            raise InputValidationError(
                f"Input node '{node.display_name}' expects a key/value record",
                node_id=node.id,
            )
        delta: dict[str, Any] = {}
        for f in node.input_config().fields:
            supplied = value.get(f.key)
            if supplied is None:
                supplied = f.default_value
            if supplied is None:
                raise InputValidationError(
                    f"Missing value for field '{f.key}' of input node '{node.display_name}'",
                    node_id=node.id,
                    field=f.key,
                )
            delta[f.key] = supplied
        return delta

    value_type, _ = _single_value_type(node)
    key = task_key(node)
    if value is None:
        raise InputValidationError(
            f"A value is required for '{node.display_name}'", node_id=node.id, field=key
        )
    if value_type == InputFieldType.TEXT and isinstance(value, str) and not value.strip():
        raise InputValidationError("This field is required", node_id=node.id, field=key)
    return {key: value}
