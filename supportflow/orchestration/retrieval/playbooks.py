"""Playbook selection, continuation and activation."""

from typing import Literal

from pydantic import BaseModel, Field

from supportflow.domain import Conversation, Message, MessageType, Playbook
from supportflow.observability.logging import get_logger
from supportflow.orchestration.history import format_transcript
from supportflow.orchestration.template_loader import TemplateLoader, get_template_loader
from supportflow.providers.llm import LLMExecutor, ProviderError
from supportflow.stores import ConversationStore, OrganizationStore

logger = get_logger(__name__)


class PlaybookCandidate(BaseModel):
    playbook_id: str
    score: float = Field(ge=0.0, le=1.0)
    rationale: str = ""


class PlaybookScores(BaseModel):
    candidates: list[PlaybookCandidate] = Field(default_factory=list)


class PlaybookContinuation(BaseModel):
    continue_current: bool
    reason: str = ""


class PlaybookDecision(BaseModel):
    """Outcome of playbook selection for one pass."""

    action: Literal["none", "activated", "continued", "switched"] = "none"
    playbook: Playbook | None = None
    score: float | None = None
    rationale: str = ""


def pick_best(
    playbooks: list[Playbook],
    candidates: list[PlaybookCandidate],
    threshold: float,
) -> tuple[Playbook, PlaybookCandidate] | None:
    """Highest-scoring playbook strictly above the threshold.

    Ties go to the playbook listed first by the store.
    """
    scores = {c.playbook_id: c for c in candidates}
    best: tuple[Playbook, PlaybookCandidate] | None = None
    for playbook in playbooks:
        candidate = scores.get(playbook.id)
        if candidate is None or candidate.score <= threshold:
            continue
        if best is None or candidate.score > best[1].score:
            best = (playbook, candidate)
    return best


class PlaybookSelector:
    """Chooses which playbook, if any, guides the conversation.

    Selection is advisory: a model failure leaves the current choice as is.
    """

    def __init__(
        self,
        executor: LLMExecutor,
        conversation_store: ConversationStore,
        organization_store: OrganizationStore,
        *,
        threshold: float = 0.7,
        continuation_window: int = 3,
        templates: TemplateLoader | None = None,
    ) -> None:
        self._executor = executor
        self._conversation_store = conversation_store
        self._organization_store = organization_store
        self._threshold = threshold
        self._continuation_window = continuation_window
        self._templates = templates or get_template_loader()

    async def select(self, conversation: Conversation, messages: list[Message]) -> PlaybookDecision:
        playbooks = await self._organization_store.list_active_playbooks(
            conversation.organization_id
        )
        current = next((p for p in playbooks if p.id == conversation.playbook_id), None)

        try:
            if current is None:
                best = await self._score(playbooks, messages)
                if best is None:
                    return PlaybookDecision()
                return PlaybookDecision(
                    action="activated",
                    playbook=best[0],
                    score=best[1].score,
                    rationale=best[1].rationale,
                )

            if await self._should_continue(current, messages):
                return PlaybookDecision(action="continued", playbook=current)

            others = [p for p in playbooks if p.id != current.id]
            best = await self._score(others, messages)
        except ProviderError as e:
            logger.warning("playbook_selection_failed", error=str(e))
            return PlaybookDecision()

        if best is None:
            return PlaybookDecision(action="continued", playbook=current)
        return PlaybookDecision(
            action="switched",
            playbook=best[0],
            score=best[1].score,
            rationale=best[1].rationale,
        )

    async def _score(
        self,
        playbooks: list[Playbook],
        messages: list[Message],
    ) -> tuple[Playbook, PlaybookCandidate] | None:
        if not playbooks:
            return None
        prompt = self._templates.render(
            "playbook_selection.jinja2",
            playbooks=playbooks,
            transcript=format_transcript(messages),
        )
        scores, _ = await self._executor.generate_structured(prompt=prompt, schema=PlaybookScores)
        return pick_best(playbooks, scores.candidates, self._threshold)

    async def _should_continue(self, current: Playbook, messages: list[Message]) -> bool:
        prompt = self._templates.render(
            "playbook_continuation.jinja2",
            playbook=current,
            transcript=format_transcript(messages, limit=self._continuation_window),
        )
        decision, _ = await self._executor.generate_structured(
            prompt=prompt,
            schema=PlaybookContinuation,
        )
        logger.debug(
            "playbook_continuation_checked",
            playbook_id=current.id,
            continue_current=decision.continue_current,
            reason=decision.reason,
        )
        return decision.continue_current

    async def apply(self, conversation: Conversation, decision: PlaybookDecision) -> Conversation:
        """Activate the chosen playbook on the conversation.

        Appends the playbook instructions as a System message, enables its
        tools and attaches the documents it references.
        """
        playbook = decision.playbook
        if playbook is None or decision.action in ("none", "continued"):
            return conversation

        instructions = self._templates.render("playbook_instructions.jinja2", playbook=playbook)
        await self._conversation_store.add_message(
            Message(
                conversation_id=conversation.id,
                type=MessageType.SYSTEM,
                content=instructions,
                metadata={"kind": "playbook", "playbook_id": playbook.id},
            )
        )

        updated = conversation.with_playbook(playbook.id, playbook.tool_names)
        updated = updated.with_context(
            updated.context.with_playbook(playbook.id, decision.action, decision.score)
        )

        referenced = await self._organization_store.get_documents(
            conversation.organization_id, playbook.document_ids
        )
        updated, added = updated.attach_documents([d.id for d in referenced])

        logger.info(
            "playbook_applied",
            playbook_id=playbook.id,
            action=decision.action,
            score=decision.score,
            documents_attached=len(added),
        )
        return updated
