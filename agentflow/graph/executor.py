"""
Workflow Executor - walks a workflow graph from its trigger to completion.

The executor:
1. Resolves the trigger node and persists the Execution as running
2. Visits one node at a time, dispatching to the node type's strategy
3. Records a Task per visit through the ExecutionLedger
4. Follows the first matching outgoing edge (true/false port for conditions)
5. Stops when no edge remains, the next node was already visited, or a
   cancel is requested

Input nodes whose values are missing park the run: ``start()``/``resume()``
return an ExecutionResult carrying a PendingInput and the RunState needed to
continue. Nothing is running while parked; the caller resumes explicitly.
"""

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from agentflow.config import RuntimeConfig
from agentflow.errors import GraphStructureError, PersistenceError
from agentflow.graph import hitl
from agentflow.graph.hitl import PendingInput
from agentflow.graph.layout import reachable_from
from agentflow.graph.strategies import AgentInvoker, StrategyResult, get_strategy
from agentflow.graph.workflow import Node, NodeType, SourcePort, Workflow, select_edge
from agentflow.llm.provider import LLMProvider
from agentflow.observability import set_trace_context
from agentflow.schemas.agent import Agent
from agentflow.schemas.execution import (
    Execution,
    ExecutionStatus,
    Task,
    TaskStatus,
    TokenUsage,
)
from agentflow.storage.backend import StorageBackend
from agentflow.storage.ledger import ExecutionLedger

# Node types whose agent keeps advisory memory of the last message
_MEMORY_NODE_TYPES = {NodeType.TRIGGER, NodeType.ACTION, NodeType.CONDITION, NodeType.OUTPUT}


@dataclass
class RunState:
    """Everything needed to continue a parked run."""

    execution_id: str
    current_node_id: str | None
    context: dict[str, Any] = field(default_factory=dict)
    visited: set[str] = field(default_factory=set)
    messages: list[str] = field(default_factory=list)
    path: list[str] = field(default_factory=list)  # Node IDs completed, in order
    active_task_id: str | None = None  # Task of the parked input node
    steps_executed: int = 0
    total_tokens: int = 0


@dataclass
class ExecutionResult:
    """Outcome of start()/resume(): terminal, or parked on an input node."""

    execution_id: str
    status: ExecutionStatus
    context: dict[str, Any] = field(default_factory=dict)
    messages: list[str] = field(default_factory=list)
    path: list[str] = field(default_factory=list)
    error: str | None = None
    failed_node_id: str | None = None
    pending_input: PendingInput | None = None
    state: RunState | None = None  # Set only while awaiting input
    steps_executed: int = 0
    total_tokens: int = 0

    @property
    def awaiting_input(self) -> bool:
        return self.pending_input is not None

    @property
    def success(self) -> bool:
        return self.status == ExecutionStatus.COMPLETED


class WorkflowExecutor:
    """
    Runs one Execution of a workflow.

    Create one executor per execution. The LLM provider and storage are
    injected; their lifecycle belongs to the caller.
    """

    def __init__(
        self,
        workflow: Workflow,
        llm: LLMProvider,
        storage: StorageBackend,
        config: RuntimeConfig | None = None,
    ):
        self.workflow = workflow
        self.llm = llm
        self.storage = storage
        self.config = config or RuntimeConfig()
        self.ledger = ExecutionLedger(storage)
        self.logger = logging.getLogger(__name__)

        self.execution: Execution | None = None
        self._active_task: Task | None = None
        self.current_node_id: str | None = None
        self._agents: dict[str, Agent | None] = {}
        self._cancel_requested = False

    # === LIFECYCLE ===

    async def prepare(self, parameters: dict[str, Any] | None = None) -> Execution:
        """Create and persist the Execution record (status pending)."""
        self.execution = Execution(workflow_id=self.workflow.id, parameters=parameters or {})
        await self.ledger.create_execution(self.execution)
        return self.execution

    def request_cancel(self) -> None:
        """Ask the run to stop before its next node."""
        self._cancel_requested = True

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    async def start(self) -> ExecutionResult:
        """Resolve the trigger and run until completion, failure or an input request."""
        if self.execution is None:
            await self.prepare()
        execution = self.execution
        set_trace_context(execution_id=execution.id, workflow_id=self.workflow.id)

        trigger = self.workflow.get_trigger()
        if trigger is None:
            error = GraphStructureError("Workflow must have a trigger node (no entry point).")
            self.logger.error(f"❌ {error}")
            await self.ledger.mark_execution(execution, ExecutionStatus.FAILED, error=str(error))
            return ExecutionResult(
                execution_id=execution.id,
                status=ExecutionStatus.FAILED,
                context=dict(execution.parameters),
                error=str(error),
            )

        await self.ledger.mark_execution(execution, ExecutionStatus.RUNNING)
        self.logger.info(f"🚀 Starting execution: {self.workflow.name}")
        self.logger.info(f"   Entry node: {trigger.display_name} ({trigger.id})")

        unreachable = {n.id for n in self.workflow.nodes} - reachable_from(
            trigger.id, self.workflow.edges
        )
        if unreachable:
            self.logger.info(f"   Nodes unreachable from the trigger: {sorted(unreachable)}")

        state = RunState(
            execution_id=execution.id,
            current_node_id=trigger.id,
            context=dict(execution.parameters),
        )
        return await self._run(state)

    async def resume(self, state: RunState, value: Any) -> ExecutionResult:
        """
        Supply the value for the parked input node and continue the run.

        Raises:
            InputValidationError: the value is rejected; ``state`` is untouched
                and the same input request stays open.
        """
        node = self.workflow.get_node(state.current_node_id or "")
        if node is None or node.type != NodeType.INPUT:
            raise ValueError(f"Execution {state.execution_id} is not parked on an input node")

        delta = hitl.resolve_input(node, value)
        state.context.update(delta)
        set_trace_context(execution_id=state.execution_id, workflow_id=self.workflow.id)
        self.logger.info(f"🔄 Resuming from input node: {node.display_name}")
        return await self._run(state)

    async def cancel_pending(self, state: RunState) -> ExecutionResult:
        """Cancel a run that is parked on an input node."""
        execution = self.execution
        await self._fail_active_task("cancelled while awaiting input", state)
        await self.ledger.mark_execution(execution, ExecutionStatus.CANCELLED)
        self.logger.info(f"⏹ Execution {execution.id} cancelled while awaiting input")
        return self._result(state, ExecutionStatus.CANCELLED)

    async def abort(self, reason: str) -> None:
        """
        Record a run whose driving task was torn down as failed.

        Fails the open Task, if any, and then the Execution.
        """
        execution = self.execution
        if execution is None or execution.is_terminal:
            return
        await self._fail_active_task(reason)
        await self.ledger.mark_execution(execution, ExecutionStatus.FAILED, error=reason)
        self.current_node_id = None
        self.logger.warning(f"⏹ Execution {execution.id} aborted: {reason}")

    # === RUN LOOP ===

    async def _run(self, state: RunState) -> ExecutionResult:
        execution = self.execution

        while state.current_node_id is not None:
            if self._cancel_requested:
                return await self._cancel(state)

            node = self.workflow.get_node(state.current_node_id)
            if node is None:
                self.logger.warning(
                    f"Node {state.current_node_id} not found in workflow, ending run"
                )
                break

            self.current_node_id = node.id
            set_trace_context(node_id=node.id)

            if node.type == NodeType.INPUT and not hitl.is_input_satisfied(node, state.context):
                task = await self._open_task(node, state)
                state.active_task_id = task.id
                pending = hitl.build_pending_input(node, execution_id=execution.id)
                self.logger.info(f"⏸ Awaiting input at node: {node.display_name}")
                return self._result(state, ExecutionStatus.RUNNING, pending_input=pending)

            task = None
            if node.type != NodeType.TRIGGER:
                task = await self._open_task(node, state)

            state.steps_executed += 1
            self.logger.info(f"▶ Step {state.steps_executed}: {node.display_name} ({node.type})")

            invoker: AgentInvoker | None = None
            agent: Agent | None = None
            try:
                agent = await self._resolve_agent(node)
                invoker = AgentInvoker(self.llm, agent, self.config)
                strategy = get_strategy(node.type, self.config)
                snapshot = MappingProxyType(dict(state.context))
                result = await strategy.execute(node, snapshot, invoker)
            except PersistenceError:
                raise
            except Exception as e:
                return await self._fail_node(node, task, invoker, agent, e, state)

            await self._complete_node(node, task, invoker, agent, result, state)

            edges = self.workflow.get_edges_from(node.id)
            if not edges:
                self.logger.info("   → No outgoing edges, run complete")
                break

            if node.type == NodeType.CONDITION:
                port = SourcePort.TRUE if result.decision else SourcePort.FALSE
                edge = select_edge(edges, port)
                if edge is None:
                    self.logger.warning(
                        f"   No '{port}' edge on condition '{node.display_name}', "
                        f"following the first edge"
                    )
                    edge = edges[0]
            else:
                edge = edges[0]

            if edge.target in state.visited:
                self.logger.info(f"   → {edge.target} already visited, stopping")
                break

            state.current_node_id = edge.target

        state.current_node_id = None
        self.current_node_id = None
        await self.ledger.mark_execution(execution, ExecutionStatus.COMPLETED)
        self.logger.info(f"✓ Execution completed after {state.steps_executed} step(s)")
        return self._result(state, ExecutionStatus.COMPLETED)

    async def _cancel(self, state: RunState) -> ExecutionResult:
        await self._fail_active_task("cancelled", state)
        self.current_node_id = None
        await self.ledger.mark_execution(self.execution, ExecutionStatus.CANCELLED)
        self.logger.info("⏹ Execution cancelled")
        return self._result(state, ExecutionStatus.CANCELLED)

    # === NODE BOOKKEEPING ===

    async def _resolve_agent(self, node: Node) -> Agent | None:
        if not node.agent_id:
            return None
        if node.agent_id not in self._agents:
            agent = await self.storage.load_agent(node.agent_id)
            if agent is None:
                self.logger.warning(
                    f"Agent {node.agent_id} for node '{node.display_name}' not found, "
                    f"running without an agent"
                )
            self._agents[node.agent_id] = agent
        return self._agents[node.agent_id]

    async def _open_task(self, node: Node, state: RunState) -> Task:
        """Return the running Task for this visit, creating it if needed."""
        task = self._active_task
        if task is not None and task.node_id == node.id and not task.is_terminal:
            return task

        task = Task(
            execution_id=state.execution_id,
            node_id=node.id,
            agent_id=node.agent_id,
            description=node.task_description,
            input=dict(state.context),
        )
        await self.ledger.create_task(task)
        await self.ledger.mark_task(task, TaskStatus.RUNNING)
        self._active_task = task
        return task

    async def _fail_active_task(self, reason: str, state: RunState | None = None) -> None:
        task = self._active_task
        if task is not None and not task.is_terminal:
            await self.ledger.mark_task(task, TaskStatus.FAILED, output={"error": reason})
        self._active_task = None
        if state is not None:
            state.active_task_id = None

    async def _update_agent(
        self,
        node: Node,
        agent: Agent | None,
        success: bool,
        duration_ms: int,
        last_message: str | None = None,
    ) -> None:
        if agent is None or node.type not in _MEMORY_NODE_TYPES:
            return
        if last_message is not None:
            agent.remember(last_message, limit=self.config.working_memory_limit)
        agent.record_outcome(success, duration_ms)
        await self.ledger.save_agent_memory(agent)

    def _record_usage(self, task: Task, invoker: AgentInvoker | None) -> None:
        if invoker is None:
            return
        task.model_calls = invoker.model_calls
        task.model_name = invoker.model_name
        task.token_usage = TokenUsage(
            input_tokens=invoker.input_tokens, output_tokens=invoker.output_tokens
        )

    async def _complete_node(
        self,
        node: Node,
        task: Task | None,
        invoker: AgentInvoker,
        agent: Agent | None,
        result: StrategyResult,
        state: RunState,
    ) -> None:
        state.context.update(result.context_delta)
        state.messages.extend(result.messages)
        state.total_tokens += invoker.input_tokens + invoker.output_tokens
        state.visited.add(node.id)
        state.path.append(node.id)

        output = {
            "result": result.result,
            "status": result.status,
            "messages": result.messages,
        }
        duration_ms = 0
        if task is None:
            await self.ledger.record_trigger_output(self.execution, output)
        else:
            self._record_usage(task, invoker)
            await self.ledger.mark_task(task, TaskStatus.COMPLETED, output=output)
            duration_ms = task.duration_ms
            self._active_task = None
            state.active_task_id = None

        await self._update_agent(node, agent, True, duration_ms, result.last_message)

    async def _fail_node(
        self,
        node: Node,
        task: Task | None,
        invoker: AgentInvoker | None,
        agent: Agent | None,
        error: Exception,
        state: RunState,
    ) -> ExecutionResult:
        message = f"Node '{node.display_name}' ({node.id}) failed: {error}"
        self.logger.error(f"❌ {message}")

        if invoker is not None:
            state.total_tokens += invoker.input_tokens + invoker.output_tokens

        if task is not None:
            self._record_usage(task, invoker)
            await self.ledger.mark_task(task, TaskStatus.FAILED, output={"error": str(error)})
            self._active_task = None
            state.active_task_id = None
            await self._update_agent(node, agent, False, task.duration_ms)

        await self.ledger.mark_execution(
            self.execution, ExecutionStatus.FAILED, error=message, failed_node_id=node.id
        )
        return self._result(
            state, ExecutionStatus.FAILED, error=message, failed_node_id=node.id
        )

    def _result(
        self,
        state: RunState,
        status: ExecutionStatus,
        error: str | None = None,
        failed_node_id: str | None = None,
        pending_input: PendingInput | None = None,
    ) -> ExecutionResult:
        return ExecutionResult(
            execution_id=state.execution_id,
            status=status,
            context=dict(state.context),
            messages=list(state.messages),
            path=list(state.path),
            error=error,
            failed_node_id=failed_node_id,
            pending_input=pending_input,
            state=state if pending_input is not None else None,
            steps_executed=state.steps_executed,
            total_tokens=state.total_tokens,
        )
