"""
Execution ledger - write-through record of Execution/Task state changes.

The executor never changes a record's status directly. It asks the ledger,
which applies the transition and persists the record before returning, so
storage always reflects the last completed step. Any storage failure is
raised as PersistenceError and halts the run.
"""

import logging
from typing import Any

from agentflow.errors import PersistenceError
from agentflow.schemas.agent import Agent
from agentflow.schemas.execution import Execution, ExecutionStatus, Task, TaskStatus
from agentflow.storage.backend import StorageBackend

logger = logging.getLogger(__name__)


class ExecutionLedger:
    """Applies status transitions and writes them through to storage."""

    def __init__(self, storage: StorageBackend):
        self.storage = storage

    async def _save_execution(self, execution: Execution) -> None:
        try:
            await self.storage.save_execution(execution)
        except Exception as e:
            raise PersistenceError(f"Failed to persist execution {execution.id}: {e}") from e

    async def _save_task(self, task: Task) -> None:
        try:
            await self.storage.save_task(task)
        except Exception as e:
            raise PersistenceError(f"Failed to persist task {task.id}: {e}") from e

    # === EXECUTION ===

    async def create_execution(self, execution: Execution) -> Execution:
        await self._save_execution(execution)
        logger.debug(f"Execution {execution.id} created for workflow {execution.workflow_id}")
        return execution

    async def mark_execution(
        self,
        execution: Execution,
        status: ExecutionStatus,
        error: str | None = None,
        failed_node_id: str | None = None,
    ) -> None:
        execution.transition(status)
        if error is not None:
            execution.error = error
        if failed_node_id is not None:
            execution.failed_node_id = failed_node_id
        await self._save_execution(execution)

    async def record_trigger_output(self, execution: Execution, output: dict[str, Any]) -> None:
        execution.trigger_output = output
        await self._save_execution(execution)

    # === TASK ===

    async def create_task(self, task: Task) -> Task:
        await self._save_task(task)
        return task

    async def mark_task(
        self,
        task: Task,
        status: TaskStatus,
        output: dict[str, Any] | None = None,
    ) -> None:
        task.transition(status)
        if output is not None:
            task.output = output
        await self._save_task(task)

    # === AGENT MEMORY ===

    async def save_agent_memory(self, agent: Agent) -> None:
        """
        Persist an agent's advisory memory and counters.

        This record is a cache, not run state, so a failed write only logs.
        """
        try:
            await self.storage.save_agent(agent)
        except Exception as e:
            logger.warning(f"Could not persist memory for agent {agent.id}: {e}")
