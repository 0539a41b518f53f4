"""Closure validation and conversation titling."""

from pydantic import BaseModel, Field

from supportflow.domain import Conversation, Message, MessageIntent
from supportflow.observability.logging import get_logger
from supportflow.orchestration.history import format_transcript
from supportflow.orchestration.template_loader import TemplateLoader, get_template_loader
from supportflow.providers.llm import LLMExecutor, LLMMessage, ProviderError

logger = get_logger(__name__)

SATISFIED_CLOSING_MESSAGE = (
    "Great! I'm glad I could help. This conversation has been marked as resolved. "
    "Feel free to start a new conversation if you need anything else!"
)
UNSATISFIED_CLOSING_MESSAGE = (
    "I understand. This conversation has been marked as resolved. "
    "Please feel free to start a new conversation if you need further assistance."
)

MAX_TITLE_LENGTH = 255
TITLE_MESSAGE_WINDOW = 10


class ClosureDecision(BaseModel):
    """Whether the customer wants the whole interaction to end."""

    should_close: bool
    reason: str = ""


class ClosureValidator:
    """Distinguishes "I'm done" from "no" said inside an active flow.

    Runs only for closure intents. Any model failure means the
    conversation stays open.
    """

    def __init__(self, executor: LLMExecutor, templates: TemplateLoader | None = None) -> None:
        self._executor = executor
        self._templates = templates or get_template_loader()

    async def validate(
        self,
        messages: list[Message],
        intent: MessageIntent,
        playbook_active: bool,
    ) -> ClosureDecision:
        if not intent.is_closure:
            return ClosureDecision(should_close=False, reason="not a closure intent")

        prompt = self._templates.render(
            "closure.jinja2",
            transcript=format_transcript(messages),
            intent=intent.value,
            playbook_active=playbook_active,
        )
        try:
            decision, _ = await self._executor.generate_structured(
                prompt=prompt,
                schema=ClosureDecision,
            )
        except ProviderError as e:
            logger.warning("closure_validation_failed", intent=intent.value, error=str(e))
            return ClosureDecision(should_close=False, reason="validation failed")

        logger.info(
            "closure_validated",
            intent=intent.value,
            should_close=decision.should_close,
            reason=decision.reason,
        )
        return decision


def closing_message_for(intent: MessageIntent) -> str:
    if intent is MessageIntent.CLOSE_SATISFIED:
        return SATISFIED_CLOSING_MESSAGE
    return UNSATISFIED_CLOSING_MESSAGE


class TitleGenerator:
    """Generates a short title from the opening of a conversation.

    Best effort: failures are logged and leave the conversation untitled.
    """

    def __init__(self, executor: LLMExecutor, templates: TemplateLoader | None = None) -> None:
        self._executor = executor
        self._templates = templates or get_template_loader()

    async def generate(
        self,
        conversation: Conversation,
        messages: list[Message],
    ) -> str | None:
        if not conversation.has_default_title:
            return None
        public = [m for m in messages if m.is_public]
        if len(public) < 2:
            return None

        prompt = self._templates.render(
            "title.jinja2",
            transcript=format_transcript(public[:TITLE_MESSAGE_WINDOW]),
        )
        try:
            response = await self._executor.generate(
                [LLMMessage(role="user", content=prompt)],
                max_tokens=32,
                temperature=0.3,
            )
        except ProviderError as e:
            logger.warning("title_generation_failed", error=str(e))
            return None

        title = response.content.strip().strip("\"'").strip()
        if not title:
            return None
        return title[:MAX_TITLE_LENGTH]
