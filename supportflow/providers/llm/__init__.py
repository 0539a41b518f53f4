"""Language-model gateway.

The primary interface is LLMExecutor, which takes a model string
(e.g. "openai/gpt-4o-mini"), routes it through Agno model classes,
walks a fallback chain on failure and parses structured output.
"""

from supportflow.providers.llm.base import (
    AuthenticationError,
    LLMMessage,
    LLMResponse,
    ModelError,
    ProviderError,
    RateLimitError,
    StructuredOutputError,
    TokenUsage,
)
from supportflow.providers.llm.executor import (
    ExecutionContext,
    LLMExecutor,
    clear_execution_context,
    create_executor,
    create_executor_from_step_config,
    create_executors_from_config,
    get_execution_context,
    set_execution_context,
)
from supportflow.providers.llm.mock import MockLLMExecutor

__all__ = [
    "LLMMessage",
    "LLMResponse",
    "TokenUsage",
    "ProviderError",
    "AuthenticationError",
    "RateLimitError",
    "ModelError",
    "StructuredOutputError",
    "LLMExecutor",
    "ExecutionContext",
    "set_execution_context",
    "get_execution_context",
    "clear_execution_context",
    "create_executor",
    "create_executor_from_step_config",
    "create_executors_from_config",
    "MockLLMExecutor",
]
