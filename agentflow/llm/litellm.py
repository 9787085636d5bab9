"""LiteLLM provider - one client for Ollama and every hosted backend.

Workflows run against a local Ollama server by default
(``ollama/<model>`` at ``http://localhost:11434``); any other LiteLLM model
string works the same way.
"""

import logging
from typing import Any

import litellm

from agentflow.config import DEFAULT_TEMPERATURE, get_api_base, get_preferred_model
from agentflow.llm.provider import LLMProvider, LLMResponse

logger = logging.getLogger(__name__)


class LiteLLMProvider(LLMProvider):
    """
    LLM provider backed by ``litellm.completion`` / ``litellm.acompletion``.

    Example:
        llm = LiteLLMProvider(model="ollama/llama3", api_base="http://localhost:11434")
        response = await llm.acomplete(
            messages=[{"role": "user", "content": "Hello"}],
            system="You are terse.",
        )
    """

    def __init__(
        self,
        model: str | None = None,
        api_key: str | None = None,
        api_base: str | None = None,
        temperature: float = DEFAULT_TEMPERATURE,
        timeout: float | None = 300.0,
    ):
        """
        Initialize the provider.

        Args:
            model: LiteLLM model string; defaults to the configured Ollama model
            api_key: Key for hosted backends (Ollama needs none)
            api_base: Endpoint override; defaults to the configured Ollama URL
            temperature: Default sampling temperature
            timeout: Per-request deadline in seconds so a stuck model call
                fails the node instead of hanging the run
        """
        self.model = model or get_preferred_model()
        self.api_key = api_key
        self.api_base = api_base if api_base is not None else get_api_base()
        self.temperature = temperature
        self.timeout = timeout

    def _build_kwargs(
        self,
        messages: list[dict[str, Any]],
        system: str,
        max_tokens: int,
        json_mode: bool,
        model: str | None,
        temperature: float | None,
        top_p: float | None,
    ) -> dict[str, Any]:
        full_messages: list[dict[str, Any]] = []
        if system:
            full_messages.append({"role": "system", "content": system})
        full_messages.extend(messages)

        resolved_model = model or self.model
        # Agent model_config stores bare Ollama tags ("llama3"), LiteLLM wants a prefix
        if "/" not in resolved_model and self.model.startswith("ollama/"):
            resolved_model = f"ollama/{resolved_model}"

        kwargs: dict[str, Any] = {
            "model": resolved_model,
            "messages": full_messages,
            "max_tokens": max_tokens,
            "temperature": self.temperature if temperature is None else temperature,
            "timeout": self.timeout,
        }
        if top_p is not None:
            kwargs["top_p"] = top_p
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        return kwargs

    @staticmethod
    def _to_response(response: Any, fallback_model: str) -> LLMResponse:
        choice = response.choices[0]
        usage = getattr(response, "usage", None)
        return LLMResponse(
            content=choice.message.content or "",
            model=getattr(response, "model", None) or fallback_model,
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            stop_reason=choice.finish_reason or "",
            raw_response=response,
        )

    def complete(
        self,
        messages: list[dict[str, Any]],
        system: str = "",
        max_tokens: int = 1024,
        json_mode: bool = False,
        model: str | None = None,
        temperature: float | None = None,
        top_p: float | None = None,
    ) -> LLMResponse:
        """Generate a completion via ``litellm.completion``."""
        kwargs = self._build_kwargs(
            messages, system, max_tokens, json_mode, model, temperature, top_p
        )
        response = litellm.completion(**kwargs)
        return self._to_response(response, kwargs["model"])

    async def acomplete(
        self,
        messages: list[dict[str, Any]],
        system: str = "",
        max_tokens: int = 1024,
        json_mode: bool = False,
        model: str | None = None,
        temperature: float | None = None,
        top_p: float | None = None,
    ) -> LLMResponse:
        """Generate a completion via ``litellm.acompletion``."""
        kwargs = self._build_kwargs(
            messages, system, max_tokens, json_mode, model, temperature, top_p
        )
        logger.debug(f"LiteLLM request: model={kwargs['model']} api_base={self.api_base}")
        response = await litellm.acompletion(**kwargs)
        return self._to_response(response, kwargs["model"])
