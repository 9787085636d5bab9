"""Shared fixtures and builders for the test suite."""

from pathlib import Path

import pytest

from agentflow.config import RuntimeConfig
from agentflow.graph.workflow import Edge, Node, Workflow, WorkflowConfiguration
from agentflow.llm.mock import MockLLMProvider
from agentflow.observability import clear_trace_context
from agentflow.storage.backend import FileStorage

VALID_DECISION_TRUE = '{"decision": true, "reasoning": "needs another pass"}'
VALID_DECISION_FALSE = '{"decision": false, "reasoning": "looks good"}'


def make_workflow(nodes: list[dict], edges: list[dict], workflow_id: str = "wf-test") -> Workflow:
    """Build a workflow from editor-shaped dicts."""
    return Workflow(
        id=workflow_id,
        name="Test Workflow",
        configuration=WorkflowConfiguration(
            nodes=[Node.model_validate(n) for n in nodes],
            edges=[Edge.model_validate(e) for e in edges],
        ),
    )


def scripted_llm(decision: bool | None = True, reviewer: str = "APPROVED") -> MockLLMProvider:
    """
    Mock LLM answering by system prompt.

    Evaluators get a valid decision (or prose when ``decision`` is None),
    reviewers get ``reviewer``, everyone else gets a short text.
    """

    def respond(system: str, user: str) -> str:
        if "critical evaluator" in system:
            if decision is None:
                return "I believe the condition holds."
            return VALID_DECISION_TRUE if decision else VALID_DECISION_FALSE
        if "critical reviewer" in system:
            return reviewer
        return f"done: {user.splitlines()[0]}"

    return MockLLMProvider(respond)


@pytest.fixture(autouse=True)
def _reset_trace_context():
    clear_trace_context()
    yield
    clear_trace_context()


@pytest.fixture
def storage(tmp_path: Path) -> FileStorage:
    return FileStorage(tmp_path / "store")


@pytest.fixture
def runtime_config(tmp_path: Path) -> RuntimeConfig:
    return RuntimeConfig(
        model="mock-model",
        api_base=None,
        max_tokens=256,
        storage_path=tmp_path / "store",
    )
