"""
Agent Schema - role-specialised execution personas.

Agents are created and edited outside of workflow execution. The only
execution-time mutation is advisory memory (``working_memory``/``facts``)
and the performance counters, both last-writer-wins.
"""

import json
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field

from agentflow.config import WORKING_MEMORY_LIMIT


class AgentRole(StrEnum):
    """Role an agent plays inside a workflow."""

    GLOBAL_MANAGER = "global_manager"
    PROMPTER = "prompter"
    DEVELOPER = "developer"
    UI_GENERATOR = "ui_generator"
    PROMPT_MANAGER = "prompt_manager"
    DIAGRAM_GENERATOR = "diagram_generator"
    TRIGGER = "trigger"
    EVALUATOR = "evaluator"
    OUTPUT = "output"
    PROMPT_RETRIEVER = "prompt_retriever"
    LOCAL_DEPLOYER = "local_deployer"
    DATA_ANALYST = "data_analyst"
    QA_ENGINEER = "qa_engineer"
    SECURITY_AUDITOR = "security_auditor"
    RESEARCH_ASSISTANT = "research_assistant"
    FINANCIAL_ADVISOR = "financial_advisor"
    LEGAL_CONSULTANT = "legal_consultant"
    DEVOPS_SPECIALIST = "devops_specialist"
    CONTENT_WRITER = "content_writer"
    GENERALIST = "generalist"


class ModelConfig(BaseModel):
    """Per-agent overrides forwarded to the LLM provider."""

    temperature: float | None = None
    top_p: float | None = None
    max_tokens: int | None = None
    model_name: str | None = None

    model_config = ConfigDict(extra="allow", protected_namespaces=())


class AgentPerformance(BaseModel):
    """Running counters over the tasks an agent has executed."""

    tasks_completed: int = 0
    tasks_failed: int = 0
    avg_duration_ms: float = 0.0

    @computed_field
    @property
    def success_rate(self) -> float:
        total = self.tasks_completed + self.tasks_failed
        if total == 0:
            return 0.0
        return self.tasks_completed / total


class Agent(BaseModel):
    """
    A role-specialised persona invoked by trigger/action/condition/output nodes.

    ``llm_config`` is stored under the ``model_config`` key to match the
    persisted agent records.
    """

    id: str
    name: str
    role: AgentRole = AgentRole.GENERALIST
    priority: int = Field(default=5, ge=1, le=10)
    capabilities: list[str] = Field(default_factory=list)
    is_active: bool = True
    system_prompt: str = ""
    llm_config: ModelConfig = Field(default_factory=ModelConfig, alias="model_config")
    working_memory: str = ""
    facts: dict[str, Any] = Field(default_factory=dict)
    performance: AgentPerformance = Field(default_factory=AgentPerformance)
    created_at: datetime = Field(default_factory=datetime.now)

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    def remember(self, message: str, limit: int = WORKING_MEMORY_LIMIT) -> None:
        """
        Store the latest produced message as advisory memory.

        ``working_memory`` is overwritten with the message cut to ``limit``
        characters. When the message is a JSON object it also replaces
        ``facts``; otherwise ``facts`` is left unchanged.
        """
        self.working_memory = message[:limit]
        try:
            parsed = json.loads(message)
        except (json.JSONDecodeError, TypeError):
            return
        if isinstance(parsed, dict):
            self.facts = parsed

    def record_outcome(self, success: bool, duration_ms: int) -> None:
        """Fold one finished task into the performance counters."""
        perf = self.performance
        finished = perf.tasks_completed + perf.tasks_failed
        perf.avg_duration_ms = (perf.avg_duration_ms * finished + duration_ms) / (finished + 1)
        if success:
            perf.tasks_completed += 1
        else:
            perf.tasks_failed += 1
