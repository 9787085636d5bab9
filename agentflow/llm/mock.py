"""Scripted LLM provider for tests and offline runs."""

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from agentflow.llm.provider import LLMProvider, LLMResponse


@dataclass
class RecordedCall:
    """One complete() call as seen by the mock."""

    system: str
    user: str
    json_mode: bool = False
    model: str | None = None
    kwargs: dict[str, Any] = field(default_factory=dict)


class MockLLMProvider(LLMProvider):
    """
    Mock LLM that plays back responses.

    ``responses`` may be:
    - a list of strings (or Exceptions to raise), consumed in order; once
      exhausted ``default_response`` is returned
    - a callable ``(system, user) -> str`` for content-dependent replies

    Every call is appended to ``calls`` so tests can count invocations.
    """

    def __init__(
        self,
        responses: list[str | Exception] | Callable[[str, str], str] | None = None,
        default_response: str = "OK",
        model: str = "mock-model",
    ):
        self._responses = responses if callable(responses) else list(responses or [])
        self.default_response = default_response
        self.model = model
        self.calls: list[RecordedCall] = []

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
        user = messages[-1]["content"] if messages else ""
        self.calls.append(
            RecordedCall(
                system=system,
                user=user,
                json_mode=json_mode,
                model=model,
                kwargs={"max_tokens": max_tokens, "temperature": temperature, "top_p": top_p},
            )
        )

        if callable(self._responses):
            content = self._responses(system, user)
        elif self._responses:
            next_item = self._responses.pop(0)
            if isinstance(next_item, Exception):
                raise next_item
            content = next_item
        else:
            content = self.default_response

        return LLMResponse(
            content=content,
            model=model or self.model,
            input_tokens=len(system.split()) + len(user.split()),
            output_tokens=len(content.split()),
            stop_reason="stop",
        )

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
        return self.complete(messages, system, max_tokens, json_mode, model, temperature, top_p)

    @property
    def call_count(self) -> int:
        return len(self.calls)
