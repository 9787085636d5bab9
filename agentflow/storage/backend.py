"""
File-based storage backend for workflows, agents, executions and tasks.

Uses Pydantic's built-in serialization. Every write goes through
``atomic_write`` so a crash never leaves a half-written record behind.

Directory structure:
{base_path}/
  workflows/
    {workflow_id}.json
  agents/
    {agent_id}.json
  executions/
    {execution_id}.json
  tasks/
    {execution_id}/
      {task_id}.json
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TypeVar

from pydantic import BaseModel

from agentflow.graph.workflow import Workflow
from agentflow.schemas.agent import Agent
from agentflow.schemas.execution import Execution, Task
from agentflow.utils.io import atomic_write

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class StorageBackend(ABC):
    """Durable store for the engine's records."""

    # === WORKFLOWS ===

    @abstractmethod
    async def save_workflow(self, workflow: Workflow) -> None: ...

    @abstractmethod
    async def load_workflow(self, workflow_id: str) -> Workflow | None: ...

    @abstractmethod
    async def list_workflows(self) -> list[Workflow]: ...

    @abstractmethod
    async def delete_workflow(self, workflow_id: str) -> bool: ...

    # === AGENTS ===

    @abstractmethod
    async def save_agent(self, agent: Agent) -> None: ...

    @abstractmethod
    async def load_agent(self, agent_id: str) -> Agent | None: ...

    @abstractmethod
    async def list_agents(self) -> list[Agent]: ...

    @abstractmethod
    async def delete_agent(self, agent_id: str) -> bool: ...

    # === EXECUTIONS ===

    @abstractmethod
    async def save_execution(self, execution: Execution) -> None: ...

    @abstractmethod
    async def load_execution(self, execution_id: str) -> Execution | None: ...

    @abstractmethod
    async def list_executions(self, workflow_id: str | None = None) -> list[Execution]:
        """Executions, newest first, optionally filtered by workflow."""

    # === TASKS ===

    @abstractmethod
    async def save_task(self, task: Task) -> None: ...

    @abstractmethod
    async def list_tasks(self, execution_id: str) -> list[Task]:
        """Tasks of one execution, oldest first."""


class FileStorage(StorageBackend):
    """JSON file per record under ``base_path``."""

    def __init__(self, base_path: str | Path):
        self.base_path = Path(base_path)
        self._ensure_dirs()

    def _ensure_dirs(self) -> None:
        for sub in ("workflows", "agents", "executions", "tasks"):
            (self.base_path / sub).mkdir(parents=True, exist_ok=True)

    def _validate_key(self, key: str) -> None:
        """
        Validate key to prevent path traversal attacks.

        Raises:
            ValueError: If key contains path traversal or dangerous patterns
        """
        if not key or key.strip() == "":
            raise ValueError("Key cannot be empty")

        if "/" in key or "\\" in key:
            raise ValueError(f"Invalid key format: path separators not allowed in '{key}'")

        if ".." in key or key.startswith("."):
            raise ValueError(f"Invalid key format: path traversal detected in '{key}'")

        if len(key) > 1 and key[1] == ":":
            raise ValueError(f"Invalid key format: absolute paths not allowed in '{key}'")

        if "\x00" in key:
            raise ValueError("Invalid key format: null bytes not allowed")

        dangerous_chars = {"<", ">", "|", "&", "$", "`", "'", '"'}
        if any(char in key for char in dangerous_chars):
            raise ValueError(f"Invalid key format: contains dangerous characters in '{key}'")

    def _path(self, *parts: str) -> Path:
        for part in parts:
            self._validate_key(part)
        *dirs, name = parts
        return self.base_path.joinpath(*dirs, f"{name}.json")

    # === SYNC HELPERS (run in a worker thread) ===

    def _write(self, path: Path, record: BaseModel) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with atomic_write(path) as f:
            f.write(record.model_dump_json(indent=2, by_alias=True))

    def _read(self, path: Path, model: type[ModelT]) -> ModelT | None:
        if not path.exists():
            return None
        with open(path, encoding="utf-8") as f:
            return model.model_validate_json(f.read())

    def _read_all(self, directory: Path, model: type[ModelT]) -> list[ModelT]:
        if not directory.exists():
            return []
        records = []
        for path in sorted(directory.glob("*.json")):
            record = self._read(path, model)
            if record is not None:
                records.append(record)
        return records

    def _delete(self, path: Path) -> bool:
        if not path.exists():
            return False
        path.unlink()
        return True

    # === WORKFLOWS ===

    async def save_workflow(self, workflow: Workflow) -> None:
        await asyncio.to_thread(self._write, self._path("workflows", workflow.id), workflow)

    async def load_workflow(self, workflow_id: str) -> Workflow | None:
        return await asyncio.to_thread(self._read, self._path("workflows", workflow_id), Workflow)

    async def list_workflows(self) -> list[Workflow]:
        return await asyncio.to_thread(self._read_all, self.base_path / "workflows", Workflow)

    async def delete_workflow(self, workflow_id: str) -> bool:
        return await asyncio.to_thread(self._delete, self._path("workflows", workflow_id))

    # === AGENTS ===

    async def save_agent(self, agent: Agent) -> None:
        await asyncio.to_thread(self._write, self._path("agents", agent.id), agent)

    async def load_agent(self, agent_id: str) -> Agent | None:
        return await asyncio.to_thread(self._read, self._path("agents", agent_id), Agent)

    async def list_agents(self) -> list[Agent]:
        return await asyncio.to_thread(self._read_all, self.base_path / "agents", Agent)

    async def delete_agent(self, agent_id: str) -> bool:
        return await asyncio.to_thread(self._delete, self._path("agents", agent_id))

    # === EXECUTIONS ===

    async def save_execution(self, execution: Execution) -> None:
        await asyncio.to_thread(self._write, self._path("executions", execution.id), execution)

    async def load_execution(self, execution_id: str) -> Execution | None:
        return await asyncio.to_thread(
            self._read, self._path("executions", execution_id), Execution
        )

    async def list_executions(self, workflow_id: str | None = None) -> list[Execution]:
        executions = await asyncio.to_thread(
            self._read_all, self.base_path / "executions", Execution
        )
        if workflow_id is not None:
            executions = [e for e in executions if e.workflow_id == workflow_id]
        return sorted(executions, key=lambda e: e.created_at, reverse=True)

    # === TASKS ===

    async def save_task(self, task: Task) -> None:
        await asyncio.to_thread(
            self._write, self._path("tasks", task.execution_id, task.id), task
        )

    async def list_tasks(self, execution_id: str) -> list[Task]:
        self._validate_key(execution_id)
        tasks = await asyncio.to_thread(
            self._read_all, self.base_path / "tasks" / execution_id, Task
        )
        return sorted(tasks, key=lambda t: t.created_at)
