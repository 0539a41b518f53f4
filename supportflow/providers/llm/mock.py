"""Scripted executor for tests and local runs."""

import json
from collections import deque
from collections.abc import Iterable
from typing import Any

from supportflow.providers.llm.base import LLMMessage, LLMResponse, TokenUsage
from supportflow.providers.llm.executor import LLMExecutor

ScriptedResponse = str | dict[str, Any] | Exception


class MockLLMExecutor(LLMExecutor):
    """LLMExecutor that replays scripted responses instead of calling a model.

    Responses are consumed in order. A dict is serialized to JSON so it
    can feed generate_structured; an Exception instance is raised from
    the model call. When the script runs out the default response is used.
    """

    def __init__(
        self,
        responses: Iterable[ScriptedResponse] | None = None,
        default_response: ScriptedResponse = "Mock response",
        step_name: str | None = "mock",
    ) -> None:
        super().__init__(model="mock/scripted", step_name=step_name)
        self._responses: deque[ScriptedResponse] = deque(responses or [])
        self._default_response = default_response
        self._call_history: list[list[LLMMessage]] = []

    @property
    def call_history(self) -> list[list[LLMMessage]]:
        """Messages sent on each call, for test assertions."""
        return self._call_history

    @property
    def call_count(self) -> int:
        return len(self._call_history)

    def queue(self, *responses: ScriptedResponse) -> None:
        """Append responses to the script."""
        self._responses.extend(responses)

    def last_prompt(self) -> str:
        """Concatenated content of the most recent call."""
        if not self._call_history:
            return ""
        return "\n".join(m.content for m in self._call_history[-1])

    async def _generate_with_model(
        self,
        model: str,
        messages: list[LLMMessage],
        max_tokens: int,  # noqa: ARG002
        temperature: float,  # noqa: ARG002
        **kwargs: Any,  # noqa: ARG002
    ) -> LLMResponse:
        self._call_history.append(list(messages))

        scripted = self._responses.popleft() if self._responses else self._default_response
        if isinstance(scripted, Exception):
            raise scripted

        content = json.dumps(scripted) if isinstance(scripted, dict) else scripted
        return LLMResponse(
            content=content,
            model=model,
            finish_reason="stop",
            usage=TokenUsage(
                prompt_tokens=sum(len(m.content) // 4 for m in messages),
                completion_tokens=len(content) // 4,
                total_tokens=sum(len(m.content) // 4 for m in messages) + len(content) // 4,
            ),
        )
