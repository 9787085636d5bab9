"""
Workflow Runtime - starts executions and brokers human input.

Each execution gets:
- Its own WorkflowExecutor
- One asyncio driver task running the executor
- A Future the driver awaits while the run is parked on an input node

provide_input() and cancel_execution() resolve that Future; nothing polls.

Example:
    runtime = WorkflowRuntime(storage=FileStorage(path), llm=LiteLLMProvider())
    await runtime.start()

    exec_id = await runtime.start_execution(workflow.id, {"topic": "billing"})
    status = await runtime.get_execution_status(exec_id)
    if status.pending_input:
        await runtime.provide_input(exec_id, "MyApp")

    result = await runtime.wait_for_completion(exec_id)
"""

import asyncio
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any

from agentflow.config import RuntimeConfig
from agentflow.errors import (
    ExecutionNotFoundError,
    NoPendingInputError,
    WorkflowNotFoundError,
)
from agentflow.graph import hitl
from agentflow.graph.executor import ExecutionResult, RunState, WorkflowExecutor
from agentflow.graph.hitl import PendingInput
from agentflow.llm.litellm import LiteLLMProvider
from agentflow.llm.provider import LLMProvider
from agentflow.observability import set_trace_context
from agentflow.schemas.execution import Execution, ExecutionStatus, Task
from agentflow.storage.backend import FileStorage, StorageBackend

logger = logging.getLogger(__name__)

_RESUME = "resume"
_CANCEL = "cancel"
_STOPPED = "Execution stopped"


@dataclass
class ExecutionStatusView:
    """What a caller sees of an execution."""

    execution_id: str
    status: ExecutionStatus
    active_node_id: str | None = None
    pending_input: PendingInput | None = None
    error: str | None = None
    failed_node_id: str | None = None

    @property
    def awaiting_input(self) -> bool:
        return self.pending_input is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "executionId": self.execution_id,
            "status": self.status.value,
            "activeNodeId": self.active_node_id,
            "pendingInput": self.pending_input.to_dict() if self.pending_input else None,
            "error": self.error,
            "failedNodeId": self.failed_node_id,
        }


@dataclass
class _ActiveExecution:
    """In-memory bookkeeping for one in-flight execution."""

    executor: WorkflowExecutor
    done: asyncio.Event = field(default_factory=asyncio.Event)
    task: asyncio.Task | None = None
    pending_input: PendingInput | None = None
    run_state: RunState | None = None
    waiter: asyncio.Future | None = None
    result: ExecutionResult | None = None


class WorkflowRuntime:
    """
    Entry point for running workflows.

    The LLM provider and storage are injected and shared by every execution.
    Only in-flight executions are held in memory. Finished results are kept
    under the retention limits; older ids are answered from storage.
    """

    def __init__(
        self,
        storage: StorageBackend,
        llm: LLMProvider,
        config: RuntimeConfig | None = None,
        result_retention_max: int | None = 1000,
        result_retention_ttl_seconds: float | None = None,
    ):
        self.storage = storage
        self.llm = llm
        self.config = config or RuntimeConfig()
        self._result_retention_max = result_retention_max
        self._result_retention_ttl_seconds = result_retention_ttl_seconds

        self._executions: dict[str, _ActiveExecution] = {}
        self._execution_results: OrderedDict[str, ExecutionResult] = OrderedDict()
        self._execution_result_times: dict[str, float] = {}
        self._lock = asyncio.Lock()
        self._running = False

    async def start(self) -> None:
        """Start accepting executions."""
        if self._running:
            return
        self._running = True
        logger.info("WorkflowRuntime started")

    async def stop(self) -> None:
        """Cancel every in-flight execution; each is recorded as failed."""
        if not self._running:
            return
        self._running = False

        for execution_id, entry in list(self._executions.items()):
            if entry.task and not entry.task.done():
                entry.task.cancel()
                try:
                    await entry.task
                except asyncio.CancelledError:
                    pass
            if not entry.done.is_set():
                # Cancelled before the driver got to run
                entry.result = self._stopped_result(execution_id)
                await entry.executor.abort(_STOPPED)
                await self._close_entry(execution_id, entry)

        logger.info("WorkflowRuntime stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    # === EXECUTION LIFECYCLE ===

    async def start_execution(
        self, workflow_id: str, parameters: dict[str, Any] | None = None
    ) -> str:
        """
        Create an execution and run it in the background.

        The Execution record is persisted (pending) before this returns.

        Returns:
            Execution ID for tracking
        """
        if not self._running:
            raise RuntimeError("WorkflowRuntime is not running")

        workflow = await self.storage.load_workflow(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(f"Workflow {workflow_id} not found")

        executor = WorkflowExecutor(workflow, self.llm, self.storage, self.config)
        execution = await executor.prepare(parameters)

        entry = _ActiveExecution(executor=executor)
        async with self._lock:
            self._executions[execution.id] = entry
        entry.task = asyncio.create_task(self._drive(execution.id, entry))

        logger.debug(f"Queued execution {execution.id} for workflow {workflow_id}")
        return execution.id

    async def _drive(self, execution_id: str, entry: _ActiveExecution) -> None:
        """Run one execution, parking on a Future whenever input is needed."""
        executor = entry.executor
        set_trace_context(execution_id=execution_id, workflow_id=executor.workflow.id)
        loop = asyncio.get_running_loop()

        try:
            result = await executor.start()
            while result.awaiting_input:
                # A cancel that arrived while the run was heading into this park
                if executor.cancel_requested:
                    result = await executor.cancel_pending(result.state)
                    break

                entry.pending_input = result.pending_input
                entry.run_state = result.state
                entry.waiter = loop.create_future()

                action, value = await entry.waiter

                entry.waiter = None
                entry.pending_input = None
                if action == _CANCEL:
                    result = await executor.cancel_pending(entry.run_state)
                else:
                    result = await executor.resume(entry.run_state, value)

            entry.result = result
            logger.debug(f"Execution {execution_id} finished: {result.status}")

        except asyncio.CancelledError:
            entry.result = self._stopped_result(execution_id)
            try:
                await executor.abort(_STOPPED)
            except Exception as e:
                logger.error(f"Could not record stop of execution {execution_id}: {e}")
            raise

        except Exception as e:
            logger.error(f"Execution {execution_id} failed: {e}")
            entry.result = ExecutionResult(
                execution_id=execution_id,
                status=ExecutionStatus.FAILED,
                error=str(e),
            )

        finally:
            await self._close_entry(execution_id, entry)

    @staticmethod
    def _stopped_result(execution_id: str) -> ExecutionResult:
        return ExecutionResult(
            execution_id=execution_id, status=ExecutionStatus.FAILED, error=_STOPPED
        )

    async def _close_entry(self, execution_id: str, entry: _ActiveExecution) -> None:
        entry.pending_input = None
        entry.waiter = None
        entry.run_state = None
        if entry.result is not None:
            self._record_execution_result(execution_id, entry.result)

        # Remove in-flight bookkeeping
        async with self._lock:
            self._executions.pop(execution_id, None)
        entry.done.set()

    def _record_execution_result(self, execution_id: str, result: ExecutionResult) -> None:
        """Record a finished execution result with retention pruning."""
        self._execution_results[execution_id] = result
        self._execution_results.move_to_end(execution_id)
        self._execution_result_times[execution_id] = time.time()
        self._prune_execution_results()

    def _prune_execution_results(self) -> None:
        """Prune finished results based on TTL and max retention."""
        if self._result_retention_ttl_seconds is not None:
            cutoff = time.time() - self._result_retention_ttl_seconds
            for exec_id, recorded_at in list(self._execution_result_times.items()):
                if recorded_at < cutoff:
                    self._execution_result_times.pop(exec_id, None)
                    self._execution_results.pop(exec_id, None)

        if self._result_retention_max is not None:
            while len(self._execution_results) > self._result_retention_max:
                old_exec_id, _ = self._execution_results.popitem(last=False)
                self._execution_result_times.pop(old_exec_id, None)

    async def provide_input(self, execution_id: str, value: Any) -> None:
        """
        Answer the pending input request of an execution.

        Raises:
            ExecutionNotFoundError: unknown execution
            NoPendingInputError: the execution is not awaiting input
            InputValidationError: the value is rejected; the request stays open
        """
        entry = self._executions.get(execution_id)
        if entry is None:
            await self._load_finished(execution_id)
            raise NoPendingInputError(f"Execution {execution_id} is not awaiting input")

        waiter = entry.waiter
        if entry.pending_input is None or waiter is None or waiter.done():
            raise NoPendingInputError(f"Execution {execution_id} is not awaiting input")

        node = entry.executor.workflow.get_node(entry.pending_input.node_id)
        hitl.resolve_input(node, value)
        waiter.set_result((_RESUME, value))

    async def cancel_execution(self, execution_id: str) -> bool:
        """
        Request cancellation.

        A parked execution is cancelled right away; a running one stops
        before its next node or before it parks.

        Returns:
            True if a cancel was requested, False if the execution already ended
        """
        entry = self._executions.get(execution_id)
        if entry is None:
            await self._load_finished(execution_id)
            return False
        if entry.done.is_set():
            return False

        entry.executor.request_cancel()
        if entry.waiter is not None and not entry.waiter.done():
            entry.waiter.set_result((_CANCEL, None))
        logger.info(f"Cancel requested for execution {execution_id}")
        return True

    async def wait_for_completion(
        self,
        execution_id: str,
        timeout: float | None = None,
    ) -> ExecutionResult | None:
        """
        Wait for an execution to reach a terminal state.

        Returns:
            ExecutionResult, or None on timeout or when no result is retained
        """
        entry = self._executions.get(execution_id)
        if entry is None:
            self._prune_execution_results()
            return self._execution_results.get(execution_id)

        try:
            if timeout is not None:
                await asyncio.wait_for(entry.done.wait(), timeout=timeout)
            else:
                await entry.done.wait()
        except TimeoutError:
            return None
        return entry.result

    # === QUERIES ===

    async def _load_finished(self, execution_id: str) -> ExecutionResult | Execution:
        """Retained result or stored record of an execution no longer in flight."""
        self._prune_execution_results()
        result = self._execution_results.get(execution_id)
        if result is not None:
            return result
        execution = await self.storage.load_execution(execution_id)
        if execution is None:
            raise ExecutionNotFoundError(f"Execution {execution_id} not found")
        return execution

    async def get_execution_status(self, execution_id: str) -> ExecutionStatusView:
        """Current status, active node and pending input of an execution."""
        entry = self._executions.get(execution_id)
        if entry is not None:
            execution = entry.executor.execution
            active_node_id = None
            if not execution.is_terminal:
                active_node_id = (
                    entry.pending_input.node_id
                    if entry.pending_input
                    else entry.executor.current_node_id
                )
            return ExecutionStatusView(
                execution_id=execution_id,
                status=execution.status,
                active_node_id=active_node_id,
                pending_input=entry.pending_input,
                error=execution.error,
                failed_node_id=execution.failed_node_id,
            )

        finished = await self._load_finished(execution_id)
        return ExecutionStatusView(
            execution_id=execution_id,
            status=finished.status,
            error=finished.error,
            failed_node_id=finished.failed_node_id,
        )

    async def get_tasks(self, execution_id: str) -> list[Task]:
        """Persisted Task records of an execution, oldest first."""
        return await self.storage.list_tasks(execution_id)

    def get_active_count(self) -> int:
        return len([e for e in self._executions.values() if not e.done.is_set()])


def create_workflow_runtime(
    config: RuntimeConfig | None = None,
    llm: LLMProvider | None = None,
    storage: StorageBackend | None = None,
) -> WorkflowRuntime:
    """
    Build a runtime from configuration.

    Defaults to a LiteLLM provider for the configured model/endpoint and a
    FileStorage under the configured storage path.
    """
    config = config or RuntimeConfig()
    if llm is None:
        llm = LiteLLMProvider(
            model=config.model,
            api_base=config.api_base,
            temperature=config.temperature,
        )
    if storage is None:
        storage = FileStorage(config.storage_path)
    return WorkflowRuntime(storage=storage, llm=llm, config=config)
