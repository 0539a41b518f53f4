"""Human handoff handling for HANDOFF steps."""

from typing import Any

from pydantic import BaseModel

from supportflow.config.models.orchestration import HandoffConfig
from supportflow.domain import (
    Conversation,
    ConversationStatus,
    Message,
    MessageType,
    OrganizationSettings,
)
from supportflow.observability.logging import get_logger
from supportflow.orchestration.notifier import StatusChange, StatusNotifier
from supportflow.orchestration.planner import HandoffStep
from supportflow.orchestration.template_loader import TemplateLoader, get_template_loader
from supportflow.orchestration.translation import MessageTranslator
from supportflow.stores import ConversationStore, OrganizationStore

logger = get_logger(__name__)


class HandoffResult(BaseModel):
    """What the loop should do after a handoff."""

    conversation: Conversation
    reenter: bool = False
    message: Message | None = None
    humans_online: int = 0


class HandoffHandler:
    """Queues the conversation for a human and tells the customer.

    With organization instructions configured for the current availability,
    the instructions are added as a System message and the loop re-enters
    so the planner can follow them. The caller passes ``already_handled``
    on re-entry, which suppresses a second round of instructions.
    """

    def __init__(
        self,
        conversation_store: ConversationStore,
        organization_store: OrganizationStore,
        translator: MessageTranslator,
        notifier: StatusNotifier,
        config: HandoffConfig | None = None,
        templates: TemplateLoader | None = None,
    ) -> None:
        self._conversation_store = conversation_store
        self._organization_store = organization_store
        self._translator = translator
        self._notifier = notifier
        self._config = config or HandoffConfig()
        self._templates = templates or get_template_loader()

    async def handle(
        self,
        conversation: Conversation,
        step: HandoffStep,
        *,
        settings: OrganizationSettings,
        language: str | None,
        already_handled: bool = False,
        extra_metadata: dict[str, Any] | None = None,
    ) -> HandoffResult:
        humans = await self._organization_store.list_online_human_agents(
            conversation.organization_id
        )
        conversation = await self._queue_for_human(conversation, step.handoff.reason)

        instructions = (
            settings.handoff_available_instructions
            if humans
            else settings.handoff_unavailable_instructions
        )
        if instructions and not already_handled:
            await self._conversation_store.add_message(
                Message(
                    conversation_id=conversation.id,
                    type=MessageType.SYSTEM,
                    content=self._templates.render(
                        "handoff_instructions.jinja2",
                        instructions=instructions,
                        humans_online=bool(humans),
                        reason=step.handoff.reason,
                    ),
                    metadata={"kind": "handoff_instructions", "humans_online": len(humans)},
                )
            )
            logger.info("handoff_instructions_added", humans_online=len(humans))
            return HandoffResult(conversation=conversation, reenter=True, humans_online=len(humans))

        content = step.user_message
        if not content:
            if already_handled:
                return HandoffResult(conversation=conversation, humans_online=len(humans))
            default = self._config.available_message if humans else self._config.unavailable_message
            content = await self._translator.translate(default, language)

        message = await self._conversation_store.add_message(
            Message(
                conversation_id=conversation.id,
                type=MessageType.BOT_AGENT,
                content=content,
                metadata={
                    "plan": "HANDOFF",
                    "rationale": step.rationale,
                    "handoff_reason": step.handoff.reason,
                    "handoff_fields": step.handoff.fields,
                    "humans_online": len(humans),
                    **(extra_metadata or {}),
                },
            )
        )
        logger.info(
            "conversation_handed_off",
            reason=step.handoff.reason,
            humans_online=len(humans),
        )
        return HandoffResult(conversation=conversation, message=message, humans_online=len(humans))

    async def _queue_for_human(self, conversation: Conversation, reason: str) -> Conversation:
        previous = conversation.status
        if previous == ConversationStatus.PENDING_HUMAN:
            return conversation
        updated = conversation.with_status(ConversationStatus.PENDING_HUMAN)
        await self._notifier.notify(
            StatusChange(
                conversation_id=conversation.id,
                organization_id=conversation.organization_id,
                status=updated.status,
                previous_status=previous,
                reason=reason,
                title=updated.title,
            )
        )
        return updated
