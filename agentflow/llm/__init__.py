"""LLM provider abstraction."""

from agentflow.llm.litellm import LiteLLMProvider
from agentflow.llm.mock import MockLLMProvider
from agentflow.llm.provider import LLMProvider, LLMResponse

__all__ = [
    "LLMProvider",
    "LLMResponse",
    "LiteLLMProvider",
    "MockLLMProvider",
]
