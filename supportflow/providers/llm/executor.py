"""LLM Executor - executes model calls for pipeline steps using Agno.

Each pipeline step (perception, planning, guardrails, ...) gets its own
executor configured with a primary model and optional fallback models.

The executor handles:
- Model routing based on the model string prefix
- Fallback chain on failure
- Schema-constrained JSON output parsed into pydantic models
- Conversation context via ExecutionContext

Model string format:
    openrouter/anthropic/claude-3-haiku -> OpenRouter(id="anthropic/claude-3-haiku")
    anthropic/claude-3-haiku -> Claude(id="claude-3-haiku")
    openai/gpt-4o -> OpenAIChat(id="gpt-4o")
    groq/llama-3.1-70b -> Groq(id="llama-3.1-70b")
    mock/test -> Mock response (for testing)
"""

from __future__ import annotations

import json
import time
from contextvars import ContextVar
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import BaseModel

from supportflow.observability.logging import get_logger
from supportflow.providers.llm.base import (
    LLMMessage,
    LLMResponse,
    ProviderError,
    RateLimitError,
    StructuredOutputError,
    TokenUsage,
)

if TYPE_CHECKING:
    from agno.agent import Agent

    from supportflow.config.models.providers import ProvidersConfig, StepModelConfig

logger = get_logger(__name__)

T = TypeVar("T", bound=BaseModel)


@dataclass
class ExecutionContext:
    """Conversation context for model calls made during one processing pass.

    Set once at the start of a pass, available to every executor without
    threading it through each stage.
    """

    organization_id: str
    conversation_id: str
    pass_id: str | None = None
    step: str | None = None


_execution_context: ContextVar[ExecutionContext | None] = ContextVar(
    "execution_context", default=None
)


def set_execution_context(ctx: ExecutionContext) -> None:
    """Set execution context for current async task."""
    _execution_context.set(ctx)


def get_execution_context() -> ExecutionContext | None:
    """Get execution context for current async task."""
    return _execution_context.get()


def clear_execution_context() -> None:
    """Clear execution context."""
    _execution_context.set(None)


def extract_json(content: str) -> str:
    """Strip markdown code fences around a JSON payload."""
    content = content.strip()
    if "```json" in content:
        start = content.find("```json") + 7
        end = content.find("```", start)
        if end > start:
            content = content[start:end].strip()
    elif "```" in content:
        start = content.find("```") + 3
        end = content.find("```", start)
        if end > start:
            content = content[start:end].strip()
    return content


class LLMExecutor:
    """Executes model calls for a pipeline step using Agno.

    Example:
        executor = LLMExecutor(
            model="openai/gpt-4o-mini",
            fallback_models=["anthropic/claude-3-haiku-20240307"],
            step_name="perception",
        )

        parsed, response = await executor.generate_structured(
            prompt="Classify ...",
            schema=PerceptionOutput,
        )
    """

    def __init__(
        self,
        model: str,
        fallback_models: list[str] | None = None,
        timeout: float = 60.0,
        step_name: str | None = None,
    ) -> None:
        """Initialize the executor.

        Args:
            model: Primary model string (e.g., 'openai/gpt-4o-mini')
            fallback_models: Models to try if primary fails
            timeout: Request timeout in seconds
            step_name: Pipeline step name for logging
        """
        self._model = model
        self._fallback_models = fallback_models or []
        self._timeout = timeout
        self._step_name = step_name

        self._agents: dict[str, Agent] = {}

    @property
    def model(self) -> str:
        """Primary model for this executor."""
        return self._model

    @property
    def step_name(self) -> str | None:
        """Pipeline step this executor serves."""
        return self._step_name

    async def generate(
        self,
        messages: list[LLMMessage],
        *,
        max_tokens: int = 1024,
        temperature: float = 0.7,
        **kwargs: Any,
    ) -> LLMResponse:
        """Generate text from messages.

        Uses the primary model, falling back to fallback_models on failure.

        Raises:
            ProviderError: If every model failed
        """
        models_to_try = [self._model] + self._fallback_models
        last_error: Exception | None = None

        ctx = get_execution_context()

        for model in models_to_try:
            try:
                response = await self._generate_with_model(
                    model=model,
                    messages=messages,
                    max_tokens=max_tokens,
                    temperature=temperature,
                    **kwargs,
                )

                if ctx:
                    response.metadata["organization_id"] = ctx.organization_id
                    response.metadata["conversation_id"] = ctx.conversation_id
                    response.metadata["step"] = self._step_name or ctx.step

                return response

            except RateLimitError as e:
                logger.warning(
                    "executor_rate_limited",
                    model=model,
                    step=self._step_name,
                    error=str(e),
                )
                last_error = e

            except ProviderError as e:
                logger.warning(
                    "executor_provider_error",
                    model=model,
                    step=self._step_name,
                    error=str(e),
                )
                last_error = e

            except Exception as e:
                logger.warning(
                    "executor_unexpected_error",
                    model=model,
                    step=self._step_name,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                last_error = e

        raise ProviderError(
            f"All models failed for step {self._step_name}. "
            f"Tried: {models_to_try}. Last error: {last_error}"
        )

    async def generate_structured(
        self,
        prompt: str,
        schema: type[T],
        *,
        system_prompt: str | None = None,
        history: list[LLMMessage] | None = None,
        max_tokens: int = 1024,
        **kwargs: Any,
    ) -> tuple[T, LLMResponse]:
        """Generate structured output matching a pydantic schema.

        Args:
            prompt: Final user prompt
            schema: Pydantic model to parse the response into
            system_prompt: Optional system prompt
            history: Prior conversation turns sent before the prompt
            max_tokens: Maximum tokens to generate

        Returns:
            Tuple of (parsed model, LLMResponse)

        Raises:
            StructuredOutputError: If no model produced schema-valid JSON
            ProviderError: If every model failed for another reason
        """
        models_to_try = [self._model] + self._fallback_models
        last_error: ProviderError | None = None

        for model in models_to_try:
            try:
                return await self._generate_structured_with_model(
                    model=model,
                    prompt=prompt,
                    schema=schema,
                    system_prompt=system_prompt,
                    history=history or [],
                    max_tokens=max_tokens,
                    **kwargs,
                )
            except ProviderError as e:
                last_error = e

        if isinstance(last_error, StructuredOutputError):
            raise StructuredOutputError(
                f"No model returned valid {schema.__name__}: {last_error}"
            ) from last_error
        raise ProviderError(
            f"Structured generation failed for all models. Last error: {last_error}"
        )

    def _get_or_create_agent(self, model: str) -> Agent | None:
        """Get cached Agno agent or create a new one for the model."""
        if model in self._agents:
            return self._agents[model]

        agno_model = self._create_agno_model(model)
        if agno_model is None:
            return None

        from agno.agent import Agent

        agent = Agent(
            model=agno_model,
            num_history_messages=0,
            markdown=False,
        )
        self._agents[model] = agent
        return agent

    def _create_agno_model(self, model: str) -> Any:
        """Create the Agno model class for a model string, None for mock models."""
        provider_type, api_model = self._parse_model(model)

        if provider_type == "mock":
            return None

        if provider_type == "openrouter":
            from agno.models.openrouter import OpenRouter

            return OpenRouter(id=api_model)

        if provider_type == "anthropic":
            from agno.models.anthropic import Claude

            return Claude(id=api_model)

        if provider_type == "openai":
            from agno.models.openai import OpenAIChat

            return OpenAIChat(id=api_model)

        if provider_type == "groq":
            from agno.models.groq import Groq

            return Groq(id=api_model)

        from agno.models.openrouter import OpenRouter

        logger.warning(
            "unknown_provider_defaulting_to_openrouter",
            model=model,
            provider_type=provider_type,
        )
        return OpenRouter(id=model)

    def _format_messages_for_agno(self, messages: list[LLMMessage]) -> str:
        """Flatten non-system messages into the single string input Agno takes."""
        turns = [m for m in messages if m.role != "system"]

        if len(turns) == 1:
            return turns[0].content

        parts = []
        for msg in turns:
            if msg.role == "user":
                parts.append(f"User: {msg.content}")
            elif msg.role == "assistant":
                parts.append(f"Assistant: {msg.content}")
        return "\n\n".join(parts)

    def _get_system_prompt(self, messages: list[LLMMessage]) -> str | None:
        system_parts = [m.content for m in messages if m.role == "system"]
        return "\n\n".join(system_parts) if system_parts else None

    async def _generate_with_model(
        self,
        model: str,
        messages: list[LLMMessage],
        max_tokens: int,  # noqa: ARG002
        temperature: float,  # noqa: ARG002
        **kwargs: Any,  # noqa: ARG002
    ) -> LLMResponse:
        """Execute generation with a specific model using Agno."""
        provider_type, _ = self._parse_model(model)

        if provider_type == "mock":
            return self._mock_response(model, messages)

        agent = self._get_or_create_agent(model)
        if agent is None:
            return self._mock_response(model, messages)

        input_text = self._format_messages_for_agno(messages)
        system_prompt = self._get_system_prompt(messages)
        if system_prompt:
            agent.instructions = [system_prompt]

        start_time = time.perf_counter()

        try:
            run_response = await agent.arun(input_text)
            content = run_response.content if run_response.content else ""
        except Exception as e:
            error_msg = str(e).lower()
            if "rate" in error_msg and "limit" in error_msg:
                raise RateLimitError(f"Rate limited: {e}") from e
            raise ProviderError(f"Agno execution failed: {e}") from e

        latency_ms = (time.perf_counter() - start_time) * 1000

        logger.debug(
            "executor_generate_complete",
            model=model,
            step=self._step_name,
            latency_ms=round(latency_ms, 2),
            content_length=len(content),
        )

        return LLMResponse(
            content=str(content),
            model=model,
            finish_reason="stop",
            metadata={
                "latency_ms": latency_ms,
                "model_requested": model,
                "provider": provider_type,
            },
        )

    async def _generate_structured_with_model(
        self,
        model: str,
        prompt: str,
        schema: type[T],
        system_prompt: str | None,
        history: list[LLMMessage],
        max_tokens: int,
        **kwargs: Any,
    ) -> tuple[T, LLMResponse]:
        """Execute structured generation with a specific model.

        Uses JSON schema prompting and parses the response.
        """
        schema_str = json.dumps(schema.model_json_schema(), indent=2)

        json_prompt = f"""{prompt}

Respond with valid JSON matching this schema:
```json
{schema_str}
```

Output only the JSON, no other text."""

        messages: list[LLMMessage] = []
        if system_prompt:
            messages.append(LLMMessage(role="system", content=system_prompt))
        messages.extend(history)
        messages.append(LLMMessage(role="user", content=json_prompt))

        response = await self._generate_with_model(
            model, messages, max_tokens, 0.0, **kwargs
        )

        content = extract_json(response.content)

        try:
            parsed = schema.model_validate_json(content)
        except ValueError as e:
            logger.warning(
                "structured_parse_failed",
                schema=schema.__name__,
                step=self._step_name,
                content_preview=content[:200],
                error=str(e),
            )
            raise StructuredOutputError(f"Failed to parse structured response: {e}") from e

        return parsed, response

    def _mock_response(self, model: str, messages: list[LLMMessage]) -> LLMResponse:  # noqa: ARG002
        return LLMResponse(
            content=f"Mock response for {model}",
            model=model,
            finish_reason="stop",
            usage=TokenUsage(prompt_tokens=10, completion_tokens=5, total_tokens=15),
        )

    def _parse_model(self, model: str) -> tuple[str, str]:
        """Parse a model string into (provider_type, api_model).

        Examples:
            "openrouter/anthropic/claude-3-haiku" -> ("openrouter", "anthropic/claude-3-haiku")
            "openai/gpt-4o-mini" -> ("openai", "gpt-4o-mini")
            "mock/test" -> ("mock", "test")
        """
        parts = model.split("/")

        if len(parts) >= 3 and parts[0] == "openrouter":
            return "openrouter", "/".join(parts[1:])
        if len(parts) >= 2:
            return parts[0], "/".join(parts[1:])
        return "mock", model


def create_executor(
    model: str,
    fallback_models: list[str] | None = None,
    step_name: str | None = None,
    timeout: float = 60.0,
) -> LLMExecutor:
    """Create an LLMExecutor with the given configuration."""
    return LLMExecutor(
        model=model,
        fallback_models=fallback_models,
        step_name=step_name,
        timeout=timeout,
    )


def create_executor_from_step_config(
    step_config: StepModelConfig,
    step_name: str,
) -> LLMExecutor:
    """Create an LLMExecutor from one step's model configuration."""
    return LLMExecutor(
        model=step_config.model,
        fallback_models=list(step_config.fallback_models),
        timeout=step_config.timeout,
        step_name=step_name,
    )


def create_executors_from_config(config: ProvidersConfig) -> dict[str, LLMExecutor]:
    """Create one executor per configured step, keyed by step name."""
    return {
        name: create_executor_from_step_config(step_config, name)
        for name, step_config in config.steps().items()
    }
