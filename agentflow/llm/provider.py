"""LLM Provider abstraction for pluggable LLM backends."""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass
class LLMResponse:
    """Response from an LLM call."""

    content: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    stop_reason: str = ""
    raw_response: Any = None

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class LLMProvider(ABC):
    """
    Abstract LLM provider - plug in any LLM backend.

    Implementations should handle:
    - Request/response formatting
    - Token counting
    - Raising on transport or model errors (the engine turns these into
      node failures; providers must not hang indefinitely)
    """

    @abstractmethod
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
        """
        Generate a completion from the LLM.

        Args:
            messages: Conversation history [{role: "user"|"assistant", content: str}]
            system: System prompt
            max_tokens: Maximum tokens to generate
            json_mode: If True, request structured JSON output from the LLM
            model: Per-call model override (an agent's model_config.model_name)
            temperature: Per-call sampling override
            top_p: Per-call nucleus sampling override

        Returns:
            LLMResponse with content and metadata
        """
        pass

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
        """
        Async completion.

        Default implementation runs complete() in a worker thread so the event
        loop keeps serving other executions. Subclasses with a native async
        client SHOULD override.
        """
        return await asyncio.to_thread(
            self.complete,
            messages,
            system,
            max_tokens,
            json_mode,
            model,
            temperature,
            top_p,
        )
