"""
Built-in workflow templates.

Ready-made graphs used to seed a fresh store and for demos. Agent ids are
passed in by role; a missing role leaves the node without an agent.
"""

from collections.abc import Mapping

from agentflow.graph.layout import apply_layout
from agentflow.graph.workflow import (
    Edge,
    Node,
    NodeType,
    SourcePort,
    Workflow,
    WorkflowConfiguration,
)


def build_app_creator_workflow(agent_ids: Mapping[str, str] | None = None) -> Workflow:
    """
    Trigger -> project intake (multi input) -> core logic -> build script -> output.

    ``agent_ids`` maps role names (``developer``, ``output``) to agent ids.
    """
    agent_ids = agent_ids or {}
    nodes = [
        Node(id="n_trigger", type=NodeType.TRIGGER, label="Trigger"),
        Node(
            id="n_intake",
            type=NodeType.INPUT,
            label="Project Inputs",
            config={
                "isMultiInput": True,
                "fields": [
                    {"key": "app_name", "label": "App Name", "type": "text"},
                    {
                        "key": "requirements",
                        "label": "Requirements",
                        "type": "textarea",
                        "defaultValue": "A simple todo list",
                    },
                ],
            },
        ),
        Node(
            id="n_logic",
            type=NodeType.ACTION,
            label="Core Logic",
            description="Design and implement the core logic of the application.",
            agent_id=agent_ids.get("developer"),
        ),
        Node(
            id="n_script",
            type=NodeType.ACTION,
            label="Bash Build Script",
            description="Write a bash script that builds and runs the application.",
            agent_id=agent_ids.get("developer"),
        ),
        Node(
            id="n_output",
            type=NodeType.OUTPUT,
            label="Final Output",
            agent_id=agent_ids.get("output"),
        ),
    ]
    edges = [
        Edge(id="e1", source="n_trigger", target="n_intake"),
        Edge(id="e2", source="n_intake", target="n_logic"),
        Edge(id="e3", source="n_logic", target="n_script"),
        Edge(id="e4", source="n_script", target="n_output"),
    ]
    workflow = Workflow(
        name="App Creator",
        description="Automated application generation workflow",
        configuration=WorkflowConfiguration(nodes=nodes, edges=edges),
    )
    return apply_layout(workflow)


def build_review_loop_workflow(agent_ids: Mapping[str, str] | None = None) -> Workflow:
    """
    Build -> QA gate whose ``true`` edge loops back to the build step.

    The loop-back edge runs at most once: the executor stops on a revisit.
    """
    agent_ids = agent_ids or {}
    nodes = [
        Node(id="n_trigger", type=NodeType.TRIGGER, label="Trigger"),
        Node(
            id="n_build",
            type=NodeType.ACTION,
            label="Build Feature",
            agent_id=agent_ids.get("developer"),
        ),
        Node(
            id="n_qa",
            type=NodeType.CONDITION,
            label="Needs fixes?",
            description="Does the delivered feature still need fixes?",
            agent_id=agent_ids.get("evaluator"),
            config={"conditionTrue": "Fix", "conditionFalse": "Ship"},
        ),
        Node(
            id="n_output",
            type=NodeType.OUTPUT,
            label="Ship",
            agent_id=agent_ids.get("output"),
            config={"outputType": "slack"},
        ),
    ]
    edges = [
        Edge(id="e_start", source="n_trigger", target="n_build"),
        Edge(id="e_review", source="n_build", target="n_qa"),
        Edge(id="e_fix", source="n_qa", target="n_build", source_port=SourcePort.TRUE),
        Edge(id="e_ship", source="n_qa", target="n_output", source_port=SourcePort.FALSE),
    ]
    workflow = Workflow(
        name="Review Loop",
        description="Build, review and fix once before shipping",
        configuration=WorkflowConfiguration(nodes=nodes, edges=edges),
    )
    return apply_layout(workflow)
