"""
Per-node-type execution strategies.

Each node type maps to exactly one strategy. A strategy receives the node,
a read-only view of the run context and an AgentInvoker bound to the node's
agent, and returns a StrategyResult. Strategies never mutate the context;
the executor merges ``context_delta`` itself.

All model calls go through ``AgentInvoker.invoke``, which appends the
serialized context to the user prompt, forwards the agent's model overrides
and turns provider exceptions into ModelInvocationError.
"""

import json
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from agentflow.config import CONTEXT_CHAR_LIMIT, MAX_REFLECT_ITERATIONS, RuntimeConfig
from agentflow.errors import DecisionParseError, ModelInvocationError
from agentflow.graph import hitl
from agentflow.graph.workflow import Node, NodeType
from agentflow.llm.provider import LLMProvider
from agentflow.schemas.agent import Agent

logger = logging.getLogger(__name__)


TRIGGER_SYSTEM_PROMPT = "You are a workflow trigger. Prepare the initial data for the workflow."

INPUT_SYSTEM_PROMPT = (
    "You are an information collector. Format the data entered by the user for the workflow."
)

ACTION_FALLBACK_PROMPT = (
    "You are an expert {role}. Your name is {name}.\n"
    "Execute the following task professionally and concisely."
)

REVIEWER_SYSTEM_PROMPT = (
    "You are a critical reviewer for the {role} role.\n"
    "Analyze the previous output and suggest exactly 3 small improvements, "
    "or confirm that it is perfect.\n"
    'If it is perfect, start your response with "APPROVED".'
)

EVALUATOR_SYSTEM_PROMPT = (
    "You are a critical evaluator. Analyze the situation and decide if the condition is met.\n"
    'Respond ONLY with a JSON object: {"decision": true/false, "reasoning": "your explanation"}.'
)

DECISION_SCHEMA = '{"decision": boolean, "reasoning": string}'

OUTPUT_SYSTEM_PROMPT = (
    "You are responsible for the final output. Format the results for the channel: {output_type}."
)

APPROVAL_TOKEN = "APPROVED"


@dataclass
class StrategyResult:
    """What a strategy hands back to the executor."""

    messages: list[str]
    result: Any
    status: str  # "active" for triggers, "finished" for outputs, else "completed"
    context_delta: dict[str, Any] = field(default_factory=dict)
    decision: bool | None = None  # Condition nodes only

    @property
    def last_message(self) -> str | None:
        return self.messages[-1] if self.messages else None


class AgentInvoker:
    """
    Shared model-invocation primitive for one node visit.

    Counts calls and tokens so the executor can record them on the Task.
    """

    def __init__(
        self,
        llm: LLMProvider,
        agent: Agent | None = None,
        config: RuntimeConfig | None = None,
    ):
        self.llm = llm
        self.agent = agent
        self.max_tokens = config.max_tokens if config else 1024
        self.context_char_limit = config.context_char_limit if config else CONTEXT_CHAR_LIMIT

        self.model_calls = 0
        self.input_tokens = 0
        self.output_tokens = 0
        self.model_name: str | None = None

    @property
    def agent_name(self) -> str:
        return self.agent.name if self.agent else "Assistant"

    @property
    def agent_role(self) -> str:
        return self.agent.role.value if self.agent else "generalist"

    def render_context(self, context: Mapping[str, Any]) -> str:
        if not context:
            return ""
        return json.dumps(dict(context), indent=2, default=str)[: self.context_char_limit]

    async def invoke(
        self,
        system_prompt: str,
        user_prompt: str,
        context: Mapping[str, Any] | None = None,
        json_mode: bool = False,
    ) -> str:
        """Send one system/user prompt pair to the model and return its text."""
        context_text = self.render_context(context or {})
        if context_text:
            user_prompt = f"{user_prompt}\n\nContext:\n{context_text}"

        overrides = self.agent.llm_config if self.agent else None
        max_tokens = (overrides.max_tokens if overrides else None) or self.max_tokens

        self.model_calls += 1
        logger.debug(f"[{self.agent_name}] invoking model ({self.agent_role})")
        start = time.perf_counter()
        try:
            response = await self.llm.acomplete(
                messages=[{"role": "user", "content": user_prompt}],
                system=system_prompt,
                max_tokens=max_tokens,
                json_mode=json_mode,
                model=overrides.model_name if overrides else None,
                temperature=overrides.temperature if overrides else None,
                top_p=overrides.top_p if overrides else None,
            )
        except Exception as e:
            latency_ms = int((time.perf_counter() - start) * 1000)
            logger.error(
                f"[{self.agent_name}] model call failed after {latency_ms}ms: {e}",
                extra={"event": "model_call_failed", "latency_ms": latency_ms},
            )
            raise ModelInvocationError(f"Model call failed: {e}") from e

        latency_ms = int((time.perf_counter() - start) * 1000)
        self.input_tokens += response.input_tokens
        self.output_tokens += response.output_tokens
        self.model_name = response.model
        logger.info(
            f"[{self.agent_name}] model responded in {latency_ms}ms",
            extra={
                "event": "model_call",
                "latency_ms": latency_ms,
                "tokens_used": response.total_tokens,
                "model": response.model,
                "agent_id": self.agent.id if self.agent else None,
            },
        )
        return response.content


class NodeStrategy(ABC):
    """Executes one kind of node."""

    node_type: NodeType

    @abstractmethod
    async def execute(
        self, node: Node, context: Mapping[str, Any], invoker: AgentInvoker
    ) -> StrategyResult:
        pass


class TriggerStrategy(NodeStrategy):
    node_type = NodeType.TRIGGER

    async def execute(self, node, context, invoker):
        content = await invoker.invoke(
            TRIGGER_SYSTEM_PROMPT, f"Trigger: {node.task_description}", context
        )
        return StrategyResult(
            messages=[content],
            result=content,
            status="active",
            context_delta={node.id: content},
        )


class InputStrategy(NodeStrategy):
    """
    Completes an input node.

    When the value(s) are already in the context no model call is made. The
    executor suspends before reaching this strategy when they are not, so the
    model path only runs when the strategy is used on its own.
    """

    node_type = NodeType.INPUT

    async def execute(self, node, context, invoker):
        if hitl.is_input_satisfied(node, context):
            if hitl.is_multi_input(node):
                value: Any = {key: context[key] for key in hitl.required_keys(node)}
            else:
                value = context[hitl.task_key(node)]
            return StrategyResult(
                messages=[f"User provided value: {value}"],
                result=value,
                status="completed",
            )

        content = await invoker.invoke(
            INPUT_SYSTEM_PROMPT, f"Data collection: {node.task_description}", context
        )
        delta = {} if hitl.is_multi_input(node) else {hitl.task_key(node): content}
        return StrategyResult(
            messages=[content], result=content, status="completed", context_delta=delta
        )


@dataclass
class ReflectLoopState:
    """Progress of the generate/review loop of one action node."""

    iterations: int = 0
    candidate: str = ""
    reflection: str = ""
    messages: list[str] = field(default_factory=list)

    @property
    def approved(self) -> bool:
        return APPROVAL_TOKEN in self.reflection


class ActionStrategy(NodeStrategy):
    """
    Generate, review, and regenerate at most once.

    The loop stops after the first review when it contains ``APPROVED`` or
    once ``max_iterations`` candidates have been generated. The result is
    the last candidate, never the review text.
    """

    node_type = NodeType.ACTION

    def __init__(self, max_iterations: int = MAX_REFLECT_ITERATIONS):
        self.max_iterations = max_iterations

    def _system_prompt(self, invoker: AgentInvoker) -> str:
        if invoker.agent and invoker.agent.system_prompt:
            return invoker.agent.system_prompt
        return ACTION_FALLBACK_PROMPT.format(role=invoker.agent_role, name=invoker.agent_name)

    async def _generate(self, node, context, invoker, state: ReflectLoopState) -> None:
        user_prompt = node.task_description
        if state.reflection:
            user_prompt = f"{user_prompt}\n\nReviewer feedback:\n{state.reflection}"
        state.candidate = await invoker.invoke(self._system_prompt(invoker), user_prompt, context)
        state.iterations += 1
        state.messages.append(state.candidate)

    async def _reflect(self, context, invoker, state: ReflectLoopState) -> None:
        state.reflection = await invoker.invoke(
            REVIEWER_SYSTEM_PROMPT.format(role=invoker.agent_role),
            f"Review this output: {state.candidate}",
            context,
        )

    async def execute(self, node, context, invoker):
        state = ReflectLoopState()
        await self._generate(node, context, invoker, state)
        while state.iterations < self.max_iterations:
            await self._reflect(context, invoker, state)
            if state.approved:
                break
            await self._generate(node, context, invoker, state)

        logger.debug(f"Action '{node.display_name}' finished after {state.iterations} iteration(s)")
        return StrategyResult(
            messages=state.messages,
            result=state.candidate,
            status="completed",
            context_delta={node.id: state.candidate},
        )


def parse_decision(text: str) -> tuple[bool, str] | None:
    """
    Extract ``(decision, reasoning)`` from a model reply.

    Takes the substring between the first ``{`` and the last ``}``. Returns
    None when it is not valid JSON or the field types are wrong.
    """
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        data = json.loads(text[start : end + 1])
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None
    decision = data.get("decision")
    reasoning = data.get("reasoning")
    if not isinstance(decision, bool) or not isinstance(reasoning, str):
        return None
    return decision, reasoning


class ConditionStrategy(NodeStrategy):
    """Structured true/false decision with exactly one retry."""

    node_type = NodeType.CONDITION

    async def execute(self, node, context, invoker):
        user_prompt = f"Evaluate this condition: {node.task_description}"
        content = await invoker.invoke(
            EVALUATOR_SYSTEM_PROMPT, user_prompt, context, json_mode=True
        )
        parsed = parse_decision(content)
        messages = [content]

        if parsed is None:
            logger.warning(
                f"Condition '{node.display_name}' returned an invalid decision, retrying once"
            )
            retry_prompt = (
                f"{user_prompt}\n\n"
                f"Your previous response was not valid:\n{content}\n\n"
                f"Respond ONLY with a JSON object matching this schema: {DECISION_SCHEMA}"
            )
            content = await invoker.invoke(
                EVALUATOR_SYSTEM_PROMPT, retry_prompt, context, json_mode=True
            )
            messages.append(content)
            parsed = parse_decision(content)

        if parsed is None:
            raise DecisionParseError(
                f"Condition node '{node.id}' did not return a valid decision after 2 attempts",
                attempts=2,
                raw_response=content,
            )

        decision, reasoning = parsed
        return StrategyResult(
            messages=messages,
            result={"decision": decision, "reasoning": reasoning},
            status="completed",
            context_delta={"decision": decision, "reasoning": reasoning},
            decision=decision,
        )


class OutputStrategy(NodeStrategy):
    node_type = NodeType.OUTPUT

    async def execute(self, node, context, invoker):
        output_type = node.output_config().output_type.value
        content = await invoker.invoke(
            OUTPUT_SYSTEM_PROMPT.format(output_type=output_type),
            f"Format this result: {node.task_description}",
            context,
        )
        return StrategyResult(
            messages=[content],
            result=content,
            status="finished",
            context_delta={node.id: content},
        )


_STRATEGIES: MappingProxyType[NodeType, NodeStrategy] = MappingProxyType(
    {
        NodeType.TRIGGER: TriggerStrategy(),
        NodeType.INPUT: InputStrategy(),
        NodeType.ACTION: ActionStrategy(),
        NodeType.CONDITION: ConditionStrategy(),
        NodeType.OUTPUT: OutputStrategy(),
    }
)


def get_strategy(node_type: NodeType | str, config: RuntimeConfig | None = None) -> NodeStrategy:
    """Return the strategy for ``node_type``."""
    node_type = NodeType(node_type)
    if (
        node_type == NodeType.ACTION
        and config is not None
        and config.max_reflect_iterations != MAX_REFLECT_ITERATIONS
    ):
        return ActionStrategy(max_iterations=config.max_reflect_iterations)
    return _STRATEGIES[node_type]
