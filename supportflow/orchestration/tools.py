"""Tool execution for CALL_TOOL steps."""

import hashlib
import json
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import BaseModel

from supportflow.domain import Conversation, Message, MessageType, ToolLogEntry, ToolStatus
from supportflow.observability import metrics
from supportflow.observability.logging import get_logger
from supportflow.orchestration.planner import ToolCall
from supportflow.stores import ConversationStore

logger = get_logger(__name__)


class ToolExecutionResult(BaseModel):
    """Structured outcome of a tool invocation."""

    success: bool
    result: Any = None
    error: str | None = None
    error_class: str | None = None


class ToolExecutor(ABC):
    """Runs named tools on behalf of a conversation.

    Implementations must tolerate retries carrying the same idempotency key.
    """

    @abstractmethod
    async def execute(
        self,
        conversation: Conversation,
        call: ToolCall,
        idempotency_key: str,
    ) -> ToolExecutionResult:
        pass


ToolHandler = Callable[[dict[str, Any]], Awaitable[Any]]


# Tool-layer idempotency window, 24 hours.
TOOL_RESULT_TTL_SECONDS = 86400
TOOL_RESULT_MAX_ENTRIES = 10_000


class RegistryToolExecutor(ToolExecutor):
    """Dispatches tools to async handlers registered by name.

    Repeated calls with an idempotency key already seen return the cached
    result without running the handler again. Cached results expire after
    ``ttl_seconds`` and the oldest are evicted beyond ``max_entries``.
    """

    def __init__(
        self,
        handlers: dict[str, ToolHandler] | None = None,
        *,
        ttl_seconds: float = TOOL_RESULT_TTL_SECONDS,
        max_entries: int = TOOL_RESULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._handlers: dict[str, ToolHandler] = dict(handlers or {})
        self._ttl_seconds = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._completed: OrderedDict[str, tuple[float, ToolExecutionResult]] = OrderedDict()

    def register(self, name: str, handler: ToolHandler) -> None:
        self._handlers[name] = handler

    async def execute(
        self,
        conversation: Conversation,  # noqa: ARG002
        call: ToolCall,
        idempotency_key: str,
    ) -> ToolExecutionResult:
        cached = self._cached(idempotency_key)
        if cached is not None:
            return cached

        handler = self._handlers.get(call.name)
        if handler is None:
            return ToolExecutionResult(
                success=False,
                error=f"Unknown tool: {call.name}",
                error_class="UnknownTool",
            )

        result = ToolExecutionResult(success=True, result=await handler(call.args))
        self._remember(idempotency_key, result)
        return result

    def _cached(self, key: str) -> ToolExecutionResult | None:
        entry = self._completed.get(key)
        if entry is None:
            return None
        expires_at, result = entry
        if self._clock() >= expires_at:
            del self._completed[key]
            return None
        return result

    def _remember(self, key: str, result: ToolExecutionResult) -> None:
        now = self._clock()
        while self._completed:
            oldest_key, (expires_at, _) = next(iter(self._completed.items()))
            if expires_at > now and len(self._completed) < self._max_entries:
                break
            del self._completed[oldest_key]
        self._completed[key] = (now + self._ttl_seconds, result)


def build_idempotency_key(conversation_id: str, turn: int, call: ToolCall) -> str:
    """Stable key for one tool call within one turn."""
    args_hash = hashlib.sha256(
        json.dumps(call.args, sort_keys=True, default=str).encode()
    ).hexdigest()[:16]
    return f"{conversation_id}:{turn}:{call.name}:{args_hash}"


class ToolDispatcher:
    """Records a tool call as a Tool message, runs it and logs the outcome.

    Executor exceptions become failed results; they never escape the loop.
    """

    def __init__(self, executor: ToolExecutor, conversation_store: ConversationStore) -> None:
        self._executor = executor
        self._conversation_store = conversation_store

    async def dispatch(
        self,
        conversation: Conversation,
        call: ToolCall,
    ) -> tuple[Conversation, ToolLogEntry]:
        turn = conversation.context.last_turn
        key = build_idempotency_key(conversation.id, turn, call)

        message = await self._conversation_store.add_message(
            Message(
                conversation_id=conversation.id,
                type=MessageType.TOOL,
                content=f"Calling tool in the background: {call.name}",
                metadata={
                    "tool_name": call.name,
                    "tool_args": call.args,
                    "tool_status": ToolStatus.CALLING.value,
                    "idempotency_key": key,
                },
            )
        )

        start = time.perf_counter()
        try:
            outcome = await self._executor.execute(conversation, call, key)
        except Exception as e:
            logger.warning(
                "tool_execution_raised",
                tool=call.name,
                error=str(e),
                error_type=type(e).__name__,
            )
            outcome = ToolExecutionResult(
                success=False,
                error=str(e),
                error_class=type(e).__name__,
            )
        latency_ms = (time.perf_counter() - start) * 1000

        status = ToolStatus.SUCCESS if outcome.success else ToolStatus.ERROR
        metadata = {**message.metadata, "tool_status": status.value}
        if outcome.success:
            metadata["tool_output"] = outcome.result
        else:
            metadata["tool_error"] = outcome.error
        await self._conversation_store.update_message(message.model_copy(update={"metadata": metadata}))

        entry = ToolLogEntry(
            turn=turn,
            name=call.name,
            input=call.args,
            ok=outcome.success,
            result=outcome.result if outcome.success else None,
            error_class=None if outcome.success else (outcome.error_class or "ToolError"),
            error=outcome.error,
            latency_ms=latency_ms,
            idempotency_key=key,
        )
        metrics.TOOL_CALLS.labels(tool=call.name, result=status.value.lower()).inc()
        logger.info(
            "tool_executed",
            tool=call.name,
            ok=outcome.success,
            latency_ms=round(latency_ms, 2),
        )
        return conversation.with_context(conversation.context.with_tool_entry(entry)), entry
