"""Periodic scheduler that fans processing passes out over eligible conversations.

Each tick:
1. Lists open, flagged, unlocked conversations
2. Runs one processing pass per conversation concurrently
3. Logs per-conversation failures without aborting the batch
"""

import asyncio
from collections.abc import Callable
from datetime import datetime

from pydantic import BaseModel, Field

from supportflow.domain.message import utc_now
from supportflow.observability import metrics
from supportflow.observability.logging import get_logger
from supportflow.orchestration.engine import OrchestrationEngine
from supportflow.orchestration.result import PassResult
from supportflow.stores import ConversationStore

logger = get_logger(__name__)


class TickSummary(BaseModel):
    """What one scheduler tick did."""

    enumerated: int = 0
    results: list[PassResult] = Field(default_factory=list)
    failures: dict[str, str] = Field(
        default_factory=dict,
        description="Error text keyed by conversation id",
    )


class OrchestratorScheduler:
    """Drives the engine on an interval.

    Overlapping ticks are harmless: the conversation lock makes a second
    pass over the same conversation skip.
    """

    def __init__(
        self,
        engine: OrchestrationEngine,
        conversation_store: ConversationStore,
        *,
        interval_seconds: float = 2.0,
        batch_size: int = 50,
        max_concurrency: int = 10,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize scheduler.

        Args:
            engine: Runs one pass per conversation
            conversation_store: Source of eligible conversations
            interval_seconds: Pause between ticks
            batch_size: Maximum conversations enumerated per tick
            max_concurrency: Maximum passes in flight at once
            clock: Source of the current time
        """
        self._engine = engine
        self._conversation_store = conversation_store
        self._interval_seconds = interval_seconds
        self._batch_size = batch_size
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._clock = clock
        self._running = False
        self._poll_task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start ticking in a background task."""
        if self._running:
            logger.warning("scheduler_already_running")
            return

        self._running = True
        self._poll_task = asyncio.create_task(self._poll_loop())
        logger.info(
            "scheduler_started",
            interval_seconds=self._interval_seconds,
            batch_size=self._batch_size,
        )

    async def stop(self) -> None:
        """Stop ticking and wait for the background task to finish."""
        if not self._running:
            return

        self._running = False
        if self._poll_task:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
        logger.info("scheduler_stopped")

    async def tick(self) -> TickSummary:
        """Process every currently eligible conversation once."""
        conversations = await self._conversation_store.list_eligible(
            self._clock(), limit=self._batch_size
        )
        summary = TickSummary(enumerated=len(conversations))
        if not conversations:
            return summary

        outcomes = await asyncio.gather(
            *(self._run_one(c.id) for c in conversations),
            return_exceptions=True,
        )

        for conversation, outcome in zip(conversations, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                metrics.SCHEDULER_FAILURES.inc()
                summary.failures[conversation.id] = f"{type(outcome).__name__}: {outcome}"
                logger.error(
                    "conversation_pass_failed",
                    conversation_id=conversation.id,
                    error=str(outcome),
                    error_type=type(outcome).__name__,
                )
            else:
                summary.results.append(outcome)

        logger.debug(
            "scheduler_tick_complete",
            enumerated=summary.enumerated,
            processed=len(summary.results),
            failed=len(summary.failures),
        )
        return summary

    async def _run_one(self, conversation_id: str) -> PassResult:
        async with self._semaphore:
            return await self._engine.process_conversation(conversation_id)

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                await self.tick()
            except Exception as e:
                logger.error("scheduler_tick_failed", error=str(e), error_type=type(e).__name__)
            await asyncio.sleep(self._interval_seconds)
