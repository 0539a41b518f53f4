"""Bounded tool-calling loop around the execution planner.

The loop is an explicit state machine. Each iteration asks the planner for
a step; tool calls run and loop back to planning, everything else ends
the loop. The iteration cap guarantees termination.
"""

from enum import Enum

from pydantic import BaseModel, Field

from supportflow.domain import (
    Agent,
    Conversation,
    ConversationStatus,
    Message,
    MessageType,
    OrganizationSettings,
    Playbook,
)
from supportflow.domain.message import utc_now
from supportflow.errors import InvalidPlannerOutput, SupportFlowError
from supportflow.observability import metrics
from supportflow.observability.logging import get_logger
from supportflow.orchestration.guardrails.pipeline import GuardrailPipeline, GuardrailRequest
from supportflow.orchestration.handoff import HandoffHandler
from supportflow.orchestration.notifier import StatusChange, StatusNotifier
from supportflow.orchestration.planner import (
    AskStep,
    CallToolStep,
    CloseStep,
    ExecutionPlanner,
    HandoffStep,
    PlannerOutput,
    RespondStep,
)
from supportflow.orchestration.retrieval.documents import DocumentRetriever, EvidenceDocument
from supportflow.orchestration.tools import ToolDispatcher
from supportflow.providers.llm import StructuredOutputError
from supportflow.stores import ConversationStore

logger = get_logger(__name__)

APOLOGY_MESSAGE = (
    "I apologize, but I encountered an error while processing your request. "
    "Please try again."
)


class LoopState(str, Enum):
    PLANNING = "planning"
    TOOL_RUNNING = "tool_running"
    RESPONDED = "responded"
    HANDED_OFF = "handed_off"
    CLOSED = "closed"
    EXHAUSTED = "exhausted"


class LoopEvent(str, Enum):
    TOOL_REQUESTED = "tool_requested"
    TOOL_FINISHED = "tool_finished"
    INVALID_OUTPUT = "invalid_output"
    REPLY_EMITTED = "reply_emitted"
    HANDOFF_EMITTED = "handoff_emitted"
    HANDOFF_REENTERED = "handoff_reentered"
    CLOSE_EMITTED = "close_emitted"
    CAP_REACHED = "cap_reached"


TRANSITIONS: dict[tuple[LoopState, LoopEvent], LoopState] = {
    (LoopState.PLANNING, LoopEvent.TOOL_REQUESTED): LoopState.TOOL_RUNNING,
    (LoopState.TOOL_RUNNING, LoopEvent.TOOL_FINISHED): LoopState.PLANNING,
    (LoopState.PLANNING, LoopEvent.INVALID_OUTPUT): LoopState.PLANNING,
    (LoopState.PLANNING, LoopEvent.REPLY_EMITTED): LoopState.RESPONDED,
    (LoopState.TOOL_RUNNING, LoopEvent.REPLY_EMITTED): LoopState.RESPONDED,
    (LoopState.PLANNING, LoopEvent.HANDOFF_EMITTED): LoopState.HANDED_OFF,
    (LoopState.PLANNING, LoopEvent.HANDOFF_REENTERED): LoopState.PLANNING,
    (LoopState.PLANNING, LoopEvent.CLOSE_EMITTED): LoopState.CLOSED,
    (LoopState.PLANNING, LoopEvent.CAP_REACHED): LoopState.EXHAUSTED,
}

TERMINAL_STATES = frozenset(
    {LoopState.RESPONDED, LoopState.HANDED_OFF, LoopState.CLOSED, LoopState.EXHAUSTED}
)


class IllegalLoopTransition(SupportFlowError):
    pass


class LoopStateMachine:
    """Tracks loop state and the iteration budget."""

    def __init__(self, max_iterations: int = 15) -> None:
        self.state = LoopState.PLANNING
        self.iterations = 0
        self.max_iterations = max_iterations
        self.history: list[tuple[LoopState, LoopEvent, LoopState]] = []

    @property
    def done(self) -> bool:
        return self.state in TERMINAL_STATES

    def fire(self, event: LoopEvent) -> LoopState:
        target = TRANSITIONS.get((self.state, event))
        if target is None:
            raise IllegalLoopTransition(f"{event.value} not allowed in {self.state.value}")
        self.history.append((self.state, event, target))
        self.state = target
        return target

    def start_iteration(self) -> bool:
        """Claim the next iteration; reaching the cap moves to EXHAUSTED."""
        if self.done:
            return False
        if self.iterations >= self.max_iterations:
            self.fire(LoopEvent.CAP_REACHED)
            return False
        self.iterations += 1
        return True


class LoopResult(BaseModel):
    conversation: Conversation
    state: LoopState
    iterations: int = 0
    tool_calls: int = 0
    recheck_count: int = 0
    emitted: list[Message] = Field(default_factory=list)


class ToolCallLoop:
    """Drives planner, guardrails, tools and handoff until a terminal state."""

    def __init__(
        self,
        planner: ExecutionPlanner,
        guardrails: GuardrailPipeline,
        dispatcher: ToolDispatcher,
        handoff: HandoffHandler,
        retriever: DocumentRetriever,
        conversation_store: ConversationStore,
        notifier: StatusNotifier,
        *,
        max_iterations: int = 15,
    ) -> None:
        self._planner = planner
        self._guardrails = guardrails
        self._dispatcher = dispatcher
        self._handoff = handoff
        self._retriever = retriever
        self._conversation_store = conversation_store
        self._notifier = notifier
        self._max_iterations = max_iterations

    async def run(
        self,
        conversation: Conversation,
        trigger: Message,
        *,
        settings: OrganizationSettings,
        agent: Agent | None = None,
        playbook: Playbook | None = None,
    ) -> LoopResult:
        machine = LoopStateMachine(self._max_iterations)
        result = LoopResult(conversation=conversation, state=machine.state)
        handoff_handled = False
        language = trigger.language or settings.default_language

        while machine.start_iteration():
            messages = await self._conversation_store.list_messages(conversation.id)
            documents = await self._retriever.load(conversation)

            async def replan(docs: list[EvidenceDocument]) -> PlannerOutput:
                return await self._planner.plan(
                    messages,
                    documents=docs,
                    agent=agent,
                    playbook=playbook,
                    settings=settings,
                    enabled_tools=conversation.enabled_tools,
                    language=trigger.language,
                )

            try:
                try:
                    output = await replan(documents)
                except (InvalidPlannerOutput, StructuredOutputError) as e:
                    logger.warning(
                        "planner_output_invalid",
                        iteration=machine.iterations,
                        error=str(e),
                    )
                    machine.fire(LoopEvent.INVALID_OUTPUT)
                    continue

                if isinstance(output, CallToolStep):
                    machine.fire(LoopEvent.TOOL_REQUESTED)
                    conversation, _ = await self._dispatcher.dispatch(conversation, output.tool)
                    await self._conversation_store.save(conversation)
                    result.tool_calls += 1
                    machine.fire(LoopEvent.TOOL_FINISHED)
                    continue

                extra_metadata: dict = {}
                if isinstance(output, RespondStep) and self._guardrails.applies_to(output):
                    outcome = await self._guardrails.evaluate(
                        GuardrailRequest(
                            conversation=conversation,
                            messages=messages,
                            output=output,
                            customer_query=trigger.content,
                            intent=trigger.intent,
                            language=language,
                            settings=settings,
                            documents=documents,
                            tool_results=conversation.context.tool_results_for_turn(
                                conversation.context.last_turn
                            ),
                        ),
                        replan,
                    )
                    conversation = outcome.conversation
                    result.recheck_count += outcome.recheck_count
                    await self._conversation_store.save(conversation)
                    output = outcome.output
                    extra_metadata = {"guardrail_action": outcome.action, **outcome.metadata}

                if isinstance(output, HandoffStep):
                    handoff = await self._handoff.handle(
                        conversation,
                        output,
                        settings=settings,
                        language=language,
                        already_handled=handoff_handled,
                        extra_metadata=extra_metadata,
                    )
                    conversation = handoff.conversation
                    await self._conversation_store.save(conversation)
                    if handoff.message is not None:
                        result.emitted.append(handoff.message)
                    if handoff.reenter:
                        handoff_handled = True
                        machine.fire(LoopEvent.HANDOFF_REENTERED)
                        continue
                    machine.fire(LoopEvent.HANDOFF_EMITTED)
                    break

                if isinstance(output, CloseStep):
                    conversation = await self._close(conversation, output, result)
                    machine.fire(LoopEvent.CLOSE_EMITTED)
                    break

                message = await self._emit(conversation, output, extra_metadata)
                result.emitted.append(message)
                machine.fire(LoopEvent.REPLY_EMITTED)
                break

            except Exception as e:
                logger.error(
                    "tool_loop_iteration_failed",
                    iteration=machine.iterations,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                message = await self._conversation_store.add_message(
                    Message(
                        conversation_id=conversation.id,
                        type=MessageType.BOT_AGENT,
                        content=APOLOGY_MESSAGE,
                        metadata={"plan": "RESPOND", "error": type(e).__name__},
                    )
                )
                result.emitted.append(message)
                machine.fire(LoopEvent.REPLY_EMITTED)
                break

        if machine.state is LoopState.EXHAUSTED:
            metrics.LOOP_EXHAUSTED.inc()
            logger.warning(
                "tool_loop_exhausted",
                iterations=machine.iterations,
                max_iterations=self._max_iterations,
            )

        metrics.LOOP_ITERATIONS.observe(machine.iterations)
        result.conversation = conversation
        result.state = machine.state
        result.iterations = machine.iterations
        return result

    async def _emit(
        self,
        conversation: Conversation,
        output: AskStep | RespondStep,
        extra_metadata: dict,
    ) -> Message:
        return await self._conversation_store.add_message(
            Message(
                conversation_id=conversation.id,
                type=MessageType.BOT_AGENT,
                content=output.user_message,
                metadata={"plan": output.step, "rationale": output.rationale, **extra_metadata},
            )
        )

    async def _close(
        self,
        conversation: Conversation,
        output: CloseStep,
        result: LoopResult,
    ) -> Conversation:
        if output.user_message:
            message = await self._conversation_store.add_message(
                Message(
                    conversation_id=conversation.id,
                    type=MessageType.BOT_AGENT,
                    content=output.user_message,
                    metadata={
                        "plan": "CLOSE",
                        "rationale": output.rationale,
                        "close_reason": output.close.reason,
                        "is_closure_message": True,
                    },
                )
            )
            result.emitted.append(message)

        previous = conversation.status
        updated = conversation.resolve(
            resolved=True,
            confidence=1.0,
            reason=output.close.reason or "planner_close",
            now=utc_now(),
        )
        await self._conversation_store.save(updated)
        await self._notifier.notify(
            StatusChange(
                conversation_id=updated.id,
                organization_id=updated.organization_id,
                status=ConversationStatus.RESOLVED,
                previous_status=previous,
                reason=output.close.reason,
                title=updated.title,
            )
        )
        return updated
