"""
Tests for the WorkflowExecutor run-loop.

Covers the end-to-end scenarios (input suspension, loop-back edges,
condition parse failure) plus edge selection, cancellation and persistence.
"""

import pytest

from agentflow.errors import InputValidationError, PersistenceError
from agentflow.graph import executor as executor_module
from agentflow.graph.executor import WorkflowExecutor
from agentflow.graph.strategies import NodeStrategy
from agentflow.graph.templates import build_app_creator_workflow, build_review_loop_workflow
from agentflow.graph.workflow import NodeType
from agentflow.llm.mock import MockLLMProvider
from agentflow.schemas.agent import Agent, AgentRole
from agentflow.schemas.execution import ExecutionStatus, TaskStatus
from agentflow.storage.backend import FileStorage
from tests.conftest import make_workflow, scripted_llm


def _app_workflow():
    """trigger -> input(app_name) -> action(developer) -> output"""
    return make_workflow(
        [
            {"id": "t", "type": "trigger", "label": "Start"},
            {"id": "i", "type": "input", "label": "App name", "config": {"key": "app_name"}},
            {"id": "a", "type": "action", "label": "Build", "agentId": "dev"},
            {"id": "o", "type": "output", "label": "Publish"},
        ],
        [
            {"id": "e1", "source": "t", "target": "i"},
            {"id": "e2", "source": "i", "target": "a"},
            {"id": "e3", "source": "a", "target": "o"},
        ],
    )


async def _run(workflow, llm, storage, config, parameters=None):
    executor = WorkflowExecutor(workflow, llm, storage, config)
    await executor.prepare(parameters or {})
    return executor, await executor.start()


class TestInputSuspension:
    @pytest.mark.asyncio
    async def test_pending_input_then_completion(self, storage, runtime_config):
        await storage.save_agent(Agent(id="dev", name="Dev", role=AgentRole.DEVELOPER))
        executor, result = await _run(_app_workflow(), scripted_llm(), storage, runtime_config)

        assert result.status == ExecutionStatus.RUNNING
        assert result.awaiting_input
        assert result.pending_input.node_id == "i"
        assert result.pending_input.key == "app_name"
        stored = await storage.load_execution(result.execution_id)
        assert stored.status == ExecutionStatus.RUNNING

        result = await executor.resume(result.state, "MyApp")

        assert result.status == ExecutionStatus.COMPLETED
        assert result.context["app_name"] == "MyApp"
        assert result.path == ["t", "i", "a", "o"]

        tasks = await storage.list_tasks(result.execution_id)
        assert [t.node_id for t in tasks] == ["i", "a", "o"]
        assert all(t.status == TaskStatus.COMPLETED for t in tasks)

        stored = await storage.load_execution(result.execution_id)
        assert stored.status == ExecutionStatus.COMPLETED
        assert stored.completed_at is not None
        assert stored.trigger_output["status"] == "active"

    @pytest.mark.asyncio
    async def test_input_task_stays_running_while_parked(self, storage, runtime_config):
        _, result = await _run(_app_workflow(), scripted_llm(), storage, runtime_config)

        tasks = await storage.list_tasks(result.execution_id)
        assert len(tasks) == 1
        assert tasks[0].node_id == "i"
        assert tasks[0].status == TaskStatus.RUNNING
        assert result.state.active_task_id == tasks[0].id

    @pytest.mark.asyncio
    async def test_input_short_circuits_when_parameter_present(self, storage, runtime_config):
        llm = scripted_llm()
        _, result = await _run(
            _app_workflow(), llm, storage, runtime_config, {"app_name": "Preset"}
        )

        assert result.status == ExecutionStatus.COMPLETED
        tasks = await storage.list_tasks(result.execution_id)
        input_task = tasks[0]
        assert input_task.model_calls == 0
        assert input_task.output["result"] == "Preset"

    @pytest.mark.asyncio
    async def test_blank_text_keeps_request_open(self, storage, runtime_config):
        executor, result = await _run(_app_workflow(), scripted_llm(), storage, runtime_config)
        state = result.state

        with pytest.raises(InputValidationError):
            await executor.resume(state, "   ")

        assert "app_name" not in state.context
        stored = await storage.load_execution(result.execution_id)
        assert stored.status == ExecutionStatus.RUNNING

        result = await executor.resume(state, "MyApp")
        assert result.status == ExecutionStatus.COMPLETED
        # The retried input reuses the task created when the run parked
        tasks = await storage.list_tasks(result.execution_id)
        assert [t.node_id for t in tasks] == ["i", "a", "o"]

    @pytest.mark.asyncio
    async def test_multi_input_completeness(self, storage, runtime_config):
        workflow = make_workflow(
            [
                {"id": "t", "type": "trigger"},
                {
                    "id": "m",
                    "type": "input",
                    "label": "Intake",
                    "config": {
                        "isMultiInput": True,
                        "fields": [{"key": "a"}, {"key": "b"}, {"key": "c"}],
                    },
                },
            ],
            [{"id": "e", "source": "t", "target": "m"}],
        )

        _, partial = await _run(workflow, scripted_llm(), storage, runtime_config, {"a": 1, "b": 2})
        assert partial.pending_input.node_id == "m"
        assert partial.pending_input.type == "multi"

        _, full = await _run(
            workflow, scripted_llm(), storage, runtime_config, {"a": 1, "b": 2, "c": 3}
        )
        assert full.status == ExecutionStatus.COMPLETED
        assert not full.awaiting_input

    @pytest.mark.asyncio
    async def test_app_creator_template(self, storage, runtime_config):
        executor, result = await _run(
            build_app_creator_workflow(), scripted_llm(), storage, runtime_config
        )
        assert result.pending_input.node_id == "n_intake"

        result = await executor.resume(result.state, {"app_name": "Coffee"})

        assert result.status == ExecutionStatus.COMPLETED
        assert result.context["requirements"] == "A simple todo list"
        assert result.path[-1] == "n_output"


class TestLoopsAndBranches:
    @pytest.mark.asyncio
    async def test_loop_back_edge_runs_once(self, storage, runtime_config):
        workflow = build_review_loop_workflow()
        _, result = await _run(workflow, scripted_llm(decision=True), storage, runtime_config)

        assert result.status == ExecutionStatus.COMPLETED
        assert result.path == ["n_trigger", "n_build", "n_qa"]
        assert result.steps_executed <= len(workflow.nodes) + 1

        tasks = await storage.list_tasks(result.execution_id)
        assert [t.node_id for t in tasks] == ["n_build", "n_qa"]
        assert tasks[1].output["result"]["decision"] is True

    @pytest.mark.asyncio
    async def test_false_branch(self, storage, runtime_config):
        _, result = await _run(
            build_review_loop_workflow(), scripted_llm(decision=False), storage, runtime_config
        )
        assert result.path == ["n_trigger", "n_build", "n_qa", "n_output"]
        assert result.context["decision"] is False

    @pytest.mark.asyncio
    async def test_matching_port_ties_break_by_list_order(self, storage, runtime_config):
        workflow = make_workflow(
            [
                {"id": "t", "type": "trigger"},
                {"id": "c", "type": "condition"},
                {"id": "x", "type": "output"},
                {"id": "y", "type": "output"},
                {"id": "z", "type": "output"},
            ],
            [
                {"id": "e0", "source": "t", "target": "c"},
                {"id": "ef", "source": "c", "target": "z", "sourcePort": "false"},
                {"id": "et1", "source": "c", "target": "x", "sourcePort": "true"},
                {"id": "et2", "source": "c", "target": "y", "sourcePort": "true"},
            ],
        )
        for _ in range(3):
            _, result = await _run(workflow, scripted_llm(decision=True), storage, runtime_config)
            assert result.path == ["t", "c", "x"]

    @pytest.mark.asyncio
    async def test_condition_without_matching_port_follows_first_edge(
        self, storage, runtime_config
    ):
        workflow = make_workflow(
            [
                {"id": "t", "type": "trigger"},
                {"id": "c", "type": "condition"},
                {"id": "x", "type": "output"},
            ],
            [
                {"id": "e0", "source": "t", "target": "c"},
                {"id": "e1", "source": "c", "target": "x", "sourcePort": "false"},
            ],
        )
        _, result = await _run(workflow, scripted_llm(decision=True), storage, runtime_config)
        assert result.path == ["t", "c", "x"]

    @pytest.mark.asyncio
    async def test_cycle_terminates(self, storage, runtime_config):
        nodes = [{"id": "t", "type": "trigger"}] + [
            {"id": f"a{i}", "type": "action"} for i in range(4)
        ]
        edges = [
            {"source": "t", "target": "a0"},
            {"source": "a0", "target": "a1"},
            {"source": "a1", "target": "a2"},
            {"source": "a2", "target": "a3"},
            {"source": "a3", "target": "a0"},
        ]
        workflow = make_workflow(nodes, edges)

        _, result = await _run(workflow, scripted_llm(), storage, runtime_config)

        assert result.status == ExecutionStatus.COMPLETED
        assert result.steps_executed <= len(nodes) + 1
        assert result.path == ["t", "a0", "a1", "a2", "a3"]

    @pytest.mark.asyncio
    async def test_missing_target_node_ends_normally(self, storage, runtime_config, caplog):
        workflow = make_workflow(
            [{"id": "t", "type": "trigger"}],
            [{"id": "e", "source": "t", "target": "ghost"}],
        )
        _, result = await _run(workflow, scripted_llm(), storage, runtime_config)

        assert result.status == ExecutionStatus.COMPLETED
        assert "ghost not found" in caplog.text


class TestFailures:
    @pytest.mark.asyncio
    async def test_condition_parse_failure_fails_execution(self, storage, runtime_config):
        workflow = make_workflow(
            [
                {"id": "t", "type": "trigger"},
                {"id": "gate", "type": "condition", "label": "Gate"},
                {"id": "x", "type": "output"},
            ],
            [
                {"id": "e0", "source": "t", "target": "gate"},
                {"id": "e1", "source": "gate", "target": "x", "sourcePort": "true"},
            ],
        )
        _, result = await _run(workflow, scripted_llm(decision=None), storage, runtime_config)

        assert result.status == ExecutionStatus.FAILED
        assert result.failed_node_id == "gate"
        assert "(gate)" in result.error
        assert result.error.startswith("Node 'Gate' (gate) failed:")

        tasks = await storage.list_tasks(result.execution_id)
        assert len(tasks) == 1
        assert tasks[0].status == TaskStatus.FAILED
        assert tasks[0].model_calls == 2

        stored = await storage.load_execution(result.execution_id)
        assert stored.status == ExecutionStatus.FAILED
        assert stored.failed_node_id == "gate"

    @pytest.mark.asyncio
    async def test_model_error_fails_node(self, storage, runtime_config):
        workflow = make_workflow(
            [{"id": "t", "type": "trigger"}, {"id": "a", "type": "action", "label": "Build"}],
            [{"id": "e", "source": "t", "target": "a"}],
        )
        llm = MockLLMProvider(["trigger ok", RuntimeError("connection refused")])

        _, result = await _run(workflow, llm, storage, runtime_config)

        assert result.status == ExecutionStatus.FAILED
        assert "connection refused" in result.error
        assert result.failed_node_id == "a"

    @pytest.mark.asyncio
    async def test_trigger_failure_is_recorded_on_execution(self, storage, runtime_config):
        workflow = make_workflow([{"id": "t", "type": "trigger", "label": "Go"}], [])
        llm = MockLLMProvider([RuntimeError("boom")])

        _, result = await _run(workflow, llm, storage, runtime_config)

        assert result.status == ExecutionStatus.FAILED
        assert result.failed_node_id == "t"
        assert await storage.list_tasks(result.execution_id) == []

    @pytest.mark.asyncio
    async def test_no_trigger(self, storage, runtime_config):
        workflow = make_workflow([{"id": "a", "type": "action"}], [])
        llm = MockLLMProvider()

        _, result = await _run(workflow, llm, storage, runtime_config)

        assert result.status == ExecutionStatus.FAILED
        assert "no entry point" in result.error
        assert llm.call_count == 0
        stored = await storage.load_execution(result.execution_id)
        assert stored.status == ExecutionStatus.FAILED

    @pytest.mark.asyncio
    async def test_storage_failure_raises_persistence_error(self, tmp_path, runtime_config):
        class BrokenTaskStorage(FileStorage):
            async def save_task(self, task):
                raise OSError("disk full")

        storage = BrokenTaskStorage(tmp_path / "broken")
        with pytest.raises(PersistenceError, match="disk full"):
            await _run(_app_workflow(), scripted_llm(), storage, runtime_config)


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_before_first_node(self, storage, runtime_config):
        llm = scripted_llm()
        executor = WorkflowExecutor(_app_workflow(), llm, storage, runtime_config)
        await executor.prepare()
        executor.request_cancel()

        result = await executor.start()

        assert result.status == ExecutionStatus.CANCELLED
        assert llm.call_count == 0

    @pytest.mark.asyncio
    async def test_cancel_while_parked(self, storage, runtime_config):
        executor, result = await _run(_app_workflow(), scripted_llm(), storage, runtime_config)

        result = await executor.cancel_pending(result.state)

        assert result.status == ExecutionStatus.CANCELLED
        tasks = await storage.list_tasks(result.execution_id)
        assert tasks[0].status == TaskStatus.FAILED
        assert tasks[0].output == {"error": "cancelled while awaiting input"}
        stored = await storage.load_execution(result.execution_id)
        assert stored.status == ExecutionStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_requested_while_parked_fails_input_task(self, storage, runtime_config):
        llm = scripted_llm()
        executor, result = await _run(_app_workflow(), llm, storage, runtime_config)
        executor.request_cancel()

        result = await executor.resume(result.state, "MyApp")

        assert result.status == ExecutionStatus.CANCELLED
        assert llm.call_count == 1  # trigger only
        (task,) = await storage.list_tasks(result.execution_id)
        assert task.node_id == "i"
        assert task.status == TaskStatus.FAILED
        assert task.output == {"error": "cancelled"}
        stored = await storage.load_execution(result.execution_id)
        assert stored.status == ExecutionStatus.CANCELLED
        assert [t.status for t in stored.status_transitions] == [
            "pending",
            "running",
            "cancelled",
        ]

    @pytest.mark.asyncio
    async def test_abort_fails_parked_run(self, storage, runtime_config):
        executor, result = await _run(_app_workflow(), scripted_llm(), storage, runtime_config)

        await executor.abort("Execution stopped")
        await executor.abort("Execution stopped")  # already terminal

        (task,) = await storage.list_tasks(result.execution_id)
        assert task.status == TaskStatus.FAILED
        assert task.output == {"error": "Execution stopped"}
        stored = await storage.load_execution(result.execution_id)
        assert stored.status == ExecutionStatus.FAILED
        assert stored.error == "Execution stopped"


class TestAgentMemory:
    @pytest.mark.asyncio
    async def test_agent_memory_and_performance_updated(self, storage, runtime_config):
        await storage.save_agent(Agent(id="dev", name="Dev", role=AgentRole.DEVELOPER))
        llm = MockLLMProvider(
            lambda system, user: "APPROVED" if "critical reviewer" in system else '{"files": 2}'
        )
        _, result = await _run(
            _app_workflow(), llm, storage, runtime_config, {"app_name": "MyApp"}
        )
        assert result.status == ExecutionStatus.COMPLETED

        agent = await storage.load_agent("dev")
        assert agent.working_memory == '{"files": 2}'
        assert agent.facts == {"files": 2}
        assert agent.performance.tasks_completed == 1

    @pytest.mark.asyncio
    async def test_unknown_agent_runs_without_one(self, storage, runtime_config, caplog):
        _, result = await _run(
            _app_workflow(), scripted_llm(), storage, runtime_config, {"app_name": "MyApp"}
        )
        assert result.status == ExecutionStatus.COMPLETED
        assert "Agent dev" in caplog.text


class _BrokenInputStrategy(NodeStrategy):
    async def execute(self, node, context, invoker):
        raise RuntimeError("input source offline")


def _clerk_workflow():
    """trigger -> input(app_name, agent clerk) -> output"""
    return make_workflow(
        [
            {"id": "t", "type": "trigger", "label": "Start"},
            {
                "id": "i",
                "type": "input",
                "label": "App name",
                "agentId": "clerk",
                "config": {"key": "app_name"},
            },
            {"id": "o", "type": "output", "label": "Publish"},
        ],
        [
            {"id": "e1", "source": "t", "target": "i"},
            {"id": "e2", "source": "i", "target": "o"},
        ],
    )


class TestInputNodeAgent:
    @pytest.mark.asyncio
    async def test_completed_input_leaves_agent_untouched(self, storage, runtime_config):
        await storage.save_agent(Agent(id="clerk", name="Clerk"))
        _, result = await _run(
            _clerk_workflow(), scripted_llm(), storage, runtime_config, {"app_name": "MyApp"}
        )
        assert result.status == ExecutionStatus.COMPLETED

        agent = await storage.load_agent("clerk")
        assert agent.working_memory == ""
        assert agent.performance.tasks_completed == 0
        assert agent.performance.tasks_failed == 0

    @pytest.mark.asyncio
    async def test_failed_input_leaves_agent_untouched(
        self, storage, runtime_config, monkeypatch
    ):
        real_get_strategy = executor_module.get_strategy

        def get_strategy(node_type, config=None):
            if node_type == NodeType.INPUT:
                return _BrokenInputStrategy()
            return real_get_strategy(node_type, config)

        monkeypatch.setattr(executor_module, "get_strategy", get_strategy)
        await storage.save_agent(Agent(id="clerk", name="Clerk"))

        _, result = await _run(
            _clerk_workflow(), scripted_llm(), storage, runtime_config, {"app_name": "MyApp"}
        )

        assert result.status == ExecutionStatus.FAILED
        assert result.failed_node_id == "i"
        agent = await storage.load_agent("clerk")
        assert agent.performance.tasks_completed == 0
        assert agent.performance.tasks_failed == 0
