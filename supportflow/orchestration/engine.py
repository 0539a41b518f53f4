"""Orchestration engine: one processing pass over one conversation.

A pass runs under the conversation lock:

1. Eligibility: open, flagged, has an unanswered customer message
2. Agent assignment (first pass only)
3. Perception of the latest customer message
4. Closure validation for closure intents (short-circuits the pass)
5. Retrieval: playbook selection and document attachment
6. Tool-calling loop: planner, guardrails, tools, handoff
7. Persist and mark processed

The lock is released on every exit path, including exceptions.
"""

import time
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import TypeVar
from uuid import uuid4

from supportflow.config.settings import Settings
from supportflow.domain import (
    Conversation,
    ConversationStatus,
    Message,
    MessageIntent,
    MessageType,
)
from supportflow.domain.message import last_of_type, sort_key, utc_now
from supportflow.observability import metrics
from supportflow.observability.logging import conversation_log_context, get_logger
from supportflow.orchestration.agents import AgentSelector
from supportflow.orchestration.closure import (
    ClosureValidator,
    TitleGenerator,
    closing_message_for,
)
from supportflow.orchestration.guardrails import (
    CompanyInterestGuardrail,
    ConfidenceGuardrail,
    GuardrailPipeline,
)
from supportflow.orchestration.handoff import HandoffHandler
from supportflow.orchestration.lock import LockCoordinator
from supportflow.orchestration.notifier import (
    LoggingStatusNotifier,
    StatusChange,
    StatusNotifier,
)
from supportflow.orchestration.perception import PerceptionStage
from supportflow.orchestration.planner import ExecutionPlanner
from supportflow.orchestration.result import PassOutcome, PassResult, StepTiming
from supportflow.orchestration.retrieval import DocumentRetriever, PlaybookSelector
from supportflow.orchestration.tool_loop import LoopState, ToolCallLoop
from supportflow.orchestration.tools import RegistryToolExecutor, ToolDispatcher, ToolExecutor
from supportflow.orchestration.translation import MessageTranslator
from supportflow.providers.llm import (
    ExecutionContext,
    LLMExecutor,
    clear_execution_context,
    create_executor,
    create_executors_from_config,
    set_execution_context,
)
from supportflow.providers.search import SimilaritySearch
from supportflow.stores import ConversationStore, OrganizationStore

logger = get_logger(__name__)

T = TypeVar("T")

OUTCOME_BY_LOOP_STATE = {
    LoopState.RESPONDED: PassOutcome.RESPONDED,
    LoopState.HANDED_OFF: PassOutcome.HANDED_OFF,
    LoopState.CLOSED: PassOutcome.CLOSED,
    LoopState.EXHAUSTED: PassOutcome.EXHAUSTED,
}


class OrchestrationEngine:
    """Runs processing passes for conversations.

    Collaborators are injected; every model-calling stage gets its own
    executor, taken from ``executors`` or built from settings.
    """

    def __init__(
        self,
        conversation_store: ConversationStore,
        organization_store: OrganizationStore,
        search: SimilaritySearch,
        tool_executor: ToolExecutor | None = None,
        notifier: StatusNotifier | None = None,
        settings: Settings | None = None,
        executors: dict[str, LLMExecutor] | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the engine.

        Args:
            conversation_store: Conversations, messages and the lock
            organization_store: Agents, playbooks, documents, settings
            search: Similarity search over documents
            tool_executor: Runs CALL_TOOL steps (defaults to an empty registry)
            notifier: Status-change notifier (defaults to logging)
            settings: Configuration (defaults to model defaults)
            executors: Pre-configured executors by step name (for testing)
            clock: Source of the current time
        """
        self._settings = settings or Settings()
        self._conversation_store = conversation_store
        self._organization_store = organization_store
        self._notifier = notifier or LoggingStatusNotifier()
        self._clock = clock

        if executors is None:
            executors = create_executors_from_config(self._settings.providers)
        self._executors = executors

        cfg = self._settings
        self._lock = LockCoordinator(
            conversation_store,
            ttl_seconds=cfg.lock.ttl_seconds,
            owner_id=cfg.lock.owner_id,
            clock=clock,
        )
        self._perception = PerceptionStage(self._executor("perception"), conversation_store)
        self._agent_selector = AgentSelector(
            self._executor("agent_selection"),
            conversation_store,
            organization_store,
            threshold=cfg.retrieval.agent_threshold,
        )
        self._closure_validator = ClosureValidator(self._executor("closure"))
        self._title_generator = TitleGenerator(self._executor("title"))
        self._playbook_selector = PlaybookSelector(
            self._executor("playbook_selection"),
            conversation_store,
            organization_store,
            threshold=cfg.retrieval.playbook_threshold,
            continuation_window=cfg.retrieval.continuation_window,
        )
        self._retriever = DocumentRetriever(
            search,
            organization_store,
            top_k=cfg.retrieval.top_k,
            similarity_threshold=cfg.retrieval.similarity_threshold,
            query_window=cfg.retrieval.query_window,
            max_document_chars=cfg.retrieval.max_document_chars,
        )
        translator = MessageTranslator(self._executor("translation"))
        self._tool_loop = ToolCallLoop(
            planner=ExecutionPlanner(
                self._executor("planner"),
                language_pin_max_customer_messages=cfg.planner.language_pin_max_customer_messages,
                history_limit=cfg.planner.history_limit,
            ),
            guardrails=GuardrailPipeline(
                CompanyInterestGuardrail(self._executor("company_interest")),
                ConfidenceGuardrail(self._executor("confidence")),
                translator,
                self._retriever,
                cfg.guardrails,
            ),
            dispatcher=ToolDispatcher(tool_executor or RegistryToolExecutor(), conversation_store),
            handoff=HandoffHandler(
                conversation_store,
                organization_store,
                translator,
                self._notifier,
                cfg.handoff,
            ),
            retriever=self._retriever,
            conversation_store=conversation_store,
            notifier=self._notifier,
            max_iterations=cfg.tool_loop.max_iterations,
        )

    @property
    def lock(self) -> LockCoordinator:
        return self._lock

    def _executor(self, step: str) -> LLMExecutor:
        return self._executors.get(step) or create_executor("mock/default", step_name=step)

    async def process_conversation(self, conversation_id: str) -> PassResult:
        """Run one processing pass.

        Returns a SKIPPED result when another worker holds the lock or the
        conversation has nothing to process. Stage failures propagate after
        the lock is released.
        """
        pass_id = uuid4().hex
        start = time.perf_counter()

        async with self._lock.hold(conversation_id) as acquired:
            if not acquired:
                return self._finish(
                    PassResult(
                        conversation_id=conversation_id,
                        pass_id=pass_id,
                        outcome=PassOutcome.SKIPPED,
                        skip_reason="locked",
                    ),
                    start,
                )

            conversation = await self._conversation_store.get(conversation_id)
            if conversation is None:
                return self._finish(
                    PassResult(
                        conversation_id=conversation_id,
                        pass_id=pass_id,
                        outcome=PassOutcome.SKIPPED,
                        skip_reason="not_found",
                    ),
                    start,
                )

            with conversation_log_context(conversation.id, conversation.organization_id, pass_id):
                set_execution_context(
                    ExecutionContext(
                        organization_id=conversation.organization_id,
                        conversation_id=conversation.id,
                        pass_id=pass_id,
                    )
                )
                try:
                    result = await self._run_pass(conversation, pass_id)
                finally:
                    clear_execution_context()

        return self._finish(result, start)

    async def _run_pass(self, conversation: Conversation, pass_id: str) -> PassResult:
        timings: list[StepTiming] = []

        def skipped(reason: str) -> PassResult:
            logger.debug("conversation_pass_skipped", reason=reason)
            return PassResult(
                conversation_id=conversation.id,
                pass_id=pass_id,
                outcome=PassOutcome.SKIPPED,
                skip_reason=reason,
            )

        if conversation.status != ConversationStatus.OPEN:
            return skipped("not_open")
        if not conversation.needs_processing:
            return skipped("not_flagged")

        messages = await self._conversation_store.list_messages(conversation.id)
        trigger = last_of_type(messages, MessageType.CUSTOMER)
        if trigger is None:
            return skipped("no_customer_message")
        last_reply = last_of_type(messages, MessageType.BOT_AGENT)
        if last_reply is not None and sort_key(last_reply) > sort_key(trigger):
            await self._conversation_store.save(conversation.mark_processed(self._clock()))
            return skipped("already_answered")

        logger.info("conversation_pass_started", trigger_message_id=trigger.id)
        org_settings = await self._organization_store.get_settings(conversation.organization_id)

        assigned = await self._timed(
            "agent_selection", timings, self._agent_selector.assign(conversation, messages)
        )
        if assigned.agent_id != conversation.agent_id:
            # The persona message is already stored; the agent must be too.
            await self._conversation_store.save(assigned)
        conversation = assigned.with_context(assigned.context.next_turn())
        trigger = await self._timed(
            "perception",
            timings,
            self._perception.annotate(trigger, conversation.organization_id),
        )

        if trigger.intent is not None and trigger.intent.is_closure:
            decision = await self._timed(
                "closure_validation",
                timings,
                self._closure_validator.validate(
                    messages, trigger.intent, conversation.playbook_id is not None
                ),
            )
            if decision.should_close:
                await self._close(conversation, messages, trigger, decision.reason)
                return PassResult(
                    conversation_id=conversation.id,
                    pass_id=pass_id,
                    outcome=PassOutcome.CLOSED,
                    messages_emitted=1,
                    timings=timings,
                )

        messages = await self._conversation_store.list_messages(conversation.id)
        playbook_decision = await self._timed(
            "playbook_selection", timings, self._playbook_selector.select(conversation, messages)
        )
        conversation = await self._playbook_selector.apply(conversation, playbook_decision)
        retrieval = await self._timed(
            "document_retrieval",
            timings,
            self._retriever.retrieve(conversation.organization_id, messages),
        )
        conversation, _ = self._retriever.attach(conversation, retrieval)
        await self._conversation_store.save(conversation)

        agent = (
            await self._organization_store.get_agent(conversation.organization_id, conversation.agent_id)
            if conversation.agent_id
            else None
        )
        playbook = playbook_decision.playbook
        if playbook is None and conversation.playbook_id:
            playbook = await self._organization_store.get_playbook(
                conversation.organization_id, conversation.playbook_id
            )

        loop_result = await self._timed(
            "tool_loop",
            timings,
            self._tool_loop.run(
                conversation,
                trigger,
                settings=org_settings,
                agent=agent,
                playbook=playbook,
            ),
        )
        conversation = loop_result.conversation
        if loop_result.state is not LoopState.EXHAUSTED:
            conversation = conversation.mark_processed(self._clock())
        await self._conversation_store.save(conversation)

        return PassResult(
            conversation_id=conversation.id,
            pass_id=pass_id,
            outcome=OUTCOME_BY_LOOP_STATE[loop_result.state],
            loop_iterations=loop_result.iterations,
            tool_calls=loop_result.tool_calls,
            recheck_count=loop_result.recheck_count,
            messages_emitted=len(loop_result.emitted),
            timings=timings,
        )

    async def _close(
        self,
        conversation: Conversation,
        messages: list[Message],
        trigger: Message,
        reason: str,
    ) -> None:
        """Resolve the conversation at the customer's request."""
        title = await self._title_generator.generate(conversation, messages)
        if title:
            conversation = conversation.with_title(title)

        intent = trigger.intent or MessageIntent.CLOSE_UNSATISFIED
        previous = conversation.status
        now = self._clock()
        conversation = conversation.resolve(
            resolved=intent is MessageIntent.CLOSE_SATISFIED,
            confidence=trigger.intent_score if trigger.intent_score is not None else 1.0,
            reason=f"user_indicated_{intent.value}",
            now=now,
        ).mark_processed(now)

        await self._conversation_store.add_message(
            Message(
                conversation_id=conversation.id,
                type=MessageType.BOT_AGENT,
                content=closing_message_for(intent),
                metadata={
                    "plan": "CLOSE",
                    "is_closure_message": True,
                    "closure_reason": reason,
                },
            )
        )
        await self._conversation_store.save(conversation)
        await self._notifier.notify(
            StatusChange(
                conversation_id=conversation.id,
                organization_id=conversation.organization_id,
                status=conversation.status,
                previous_status=previous,
                reason=reason,
                title=conversation.title,
            )
        )
        logger.info("conversation_closed_by_customer", intent=intent.value, reason=reason)

    async def _timed(self, step: str, timings: list[StepTiming], awaitable: Awaitable[T]) -> T:
        started_at = self._clock()
        start = time.perf_counter()
        try:
            return await awaitable
        finally:
            duration = time.perf_counter() - start
            metrics.STAGE_LATENCY.labels(stage=step).observe(duration)
            timings.append(
                StepTiming(
                    step=step,
                    started_at=started_at,
                    ended_at=self._clock(),
                    duration_ms=duration * 1000,
                )
            )

    def _finish(self, result: PassResult, start: float) -> PassResult:
        elapsed = time.perf_counter() - start
        result.total_time_ms = elapsed * 1000
        metrics.PASS_COUNT.labels(outcome=result.outcome.value).inc()
        metrics.PASS_LATENCY.observe(elapsed)
        if result.outcome is not PassOutcome.SKIPPED:
            logger.info(
                "conversation_pass_finished",
                conversation_id=result.conversation_id,
                outcome=result.outcome.value,
                loop_iterations=result.loop_iterations,
                total_time_ms=round(result.total_time_ms, 2),
            )
        return result
