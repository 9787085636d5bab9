"""
Execution Schema - one run of a workflow and its per-node Task records.

Both records carry their own status state machine. Status changes go through
``transition()`` which enforces monotonic progress and appends to the
``status_transitions`` log; terminal states are final.
"""

import uuid
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field

from agentflow.errors import InvalidTransitionError


class ExecutionStatus(StrEnum):
    """Status of an execution."""

    PENDING = "pending"  # Created, not started
    RUNNING = "running"  # Loop active, or parked awaiting input
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"  # Stop requested between nodes


class TaskStatus(StrEnum):
    """Status of a single node visit."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


_EXECUTION_TRANSITIONS: dict[ExecutionStatus, set[ExecutionStatus]] = {
    ExecutionStatus.PENDING: {
        ExecutionStatus.RUNNING,
        ExecutionStatus.FAILED,
        ExecutionStatus.CANCELLED,
    },
    ExecutionStatus.RUNNING: {
        ExecutionStatus.COMPLETED,
        ExecutionStatus.FAILED,
        ExecutionStatus.CANCELLED,
    },
    ExecutionStatus.COMPLETED: set(),
    ExecutionStatus.FAILED: set(),
    ExecutionStatus.CANCELLED: set(),
}

_TASK_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.PENDING: {TaskStatus.RUNNING, TaskStatus.FAILED},
    TaskStatus.RUNNING: {TaskStatus.COMPLETED, TaskStatus.FAILED},
    TaskStatus.COMPLETED: set(),
    TaskStatus.FAILED: set(),
}


def _new_id() -> str:
    return uuid.uuid4().hex


class StatusTransition(BaseModel):
    """One entry of a record's status log."""

    status: str
    at: datetime = Field(default_factory=datetime.now)


class TokenUsage(BaseModel):
    """Token counts accumulated across the model calls of one task."""

    input_tokens: int = 0
    output_tokens: int = 0

    @computed_field
    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class Execution(BaseModel):
    """
    One run of a workflow.

    ``parameters`` seeds the run context. The trigger node's visit is the
    execution's own start step, so its output lands in ``trigger_output``
    rather than in a Task.
    """

    id: str = Field(default_factory=_new_id)
    workflow_id: str
    status: ExecutionStatus = ExecutionStatus.PENDING
    parameters: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.now)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    status_transitions: list[StatusTransition] = Field(default_factory=list)

    error: str | None = None
    failed_node_id: str | None = None
    trigger_output: dict[str, Any] | None = None

    def model_post_init(self, __context: Any) -> None:
        if not self.status_transitions:
            self.status_transitions.append(StatusTransition(status=self.status, at=self.created_at))

    @property
    def is_terminal(self) -> bool:
        return not _EXECUTION_TRANSITIONS[self.status]

    def transition(self, status: ExecutionStatus) -> None:
        """Move to ``status`` or raise InvalidTransitionError."""
        if status not in _EXECUTION_TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"Execution {self.id}: cannot go from {self.status} to {status}"
            )
        now = datetime.now()
        self.status = status
        self.status_transitions.append(StatusTransition(status=status, at=now))
        if status == ExecutionStatus.RUNNING:
            self.started_at = now
        elif self.is_terminal:
            self.completed_at = now

    @computed_field
    @property
    def duration_ms(self) -> int:
        """Wall time between start and completion, 0 while unfinished."""
        if self.started_at is None or self.completed_at is None:
            return 0
        return int((self.completed_at - self.started_at).total_seconds() * 1000)


class Task(BaseModel):
    """
    The record of one node visit within an execution.

    Created when the interpreter begins processing a node, updated in place
    while the strategy runs, immutable once terminal.
    """

    id: str = Field(default_factory=_new_id)
    execution_id: str
    node_id: str
    agent_id: str | None = None
    description: str
    input: dict[str, Any] = Field(default_factory=dict)
    status: TaskStatus = TaskStatus.PENDING
    status_transitions: list[StatusTransition] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.now)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int = 0

    model_name: str | None = None
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    model_calls: int = 0
    output: dict[str, Any] | None = None

    model_config = ConfigDict(extra="allow", protected_namespaces=())

    def model_post_init(self, __context: Any) -> None:
        if not self.status_transitions:
            self.status_transitions.append(StatusTransition(status=self.status, at=self.created_at))

    @property
    def is_terminal(self) -> bool:
        return not _TASK_TRANSITIONS[self.status]

    def transition(self, status: TaskStatus) -> None:
        """Move to ``status`` or raise InvalidTransitionError."""
        if status not in _TASK_TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"Task {self.id}: cannot go from {self.status} to {status}"
            )
        now = datetime.now()
        self.status = status
        self.status_transitions.append(StatusTransition(status=status, at=now))
        if status == TaskStatus.RUNNING:
            self.started_at = now
        elif self.is_terminal:
            self.completed_at = now
            if self.started_at is not None:
                self.duration_ms = int((now - self.started_at).total_seconds() * 1000)
