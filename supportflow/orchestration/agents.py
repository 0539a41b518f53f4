"""Bot agent assignment for conversations that have none yet."""

from pydantic import BaseModel, Field

from supportflow.domain import Agent, Conversation, Message, MessageType
from supportflow.observability.logging import get_logger
from supportflow.orchestration.history import format_transcript
from supportflow.orchestration.template_loader import TemplateLoader, get_template_loader
from supportflow.providers.llm import LLMExecutor, ProviderError
from supportflow.stores import ConversationStore, OrganizationStore

logger = get_logger(__name__)


class AgentCandidate(BaseModel):
    agent_id: str
    score: float = Field(ge=0.0, le=1.0)
    rationale: str = ""


class AgentScores(BaseModel):
    candidates: list[AgentCandidate] = Field(default_factory=list)


class AgentSelector:
    """Picks the bot persona best suited to a conversation.

    Agents are scored against their triggers; a candidate must score above
    the threshold, otherwise the first active agent is used.
    """

    def __init__(
        self,
        executor: LLMExecutor,
        conversation_store: ConversationStore,
        organization_store: OrganizationStore,
        threshold: float = 0.7,
        templates: TemplateLoader | None = None,
    ) -> None:
        self._executor = executor
        self._conversation_store = conversation_store
        self._organization_store = organization_store
        self._threshold = threshold
        self._templates = templates or get_template_loader()

    async def choose(self, agents: list[Agent], messages: list[Message]) -> Agent | None:
        if not agents:
            return None

        with_triggers = [a for a in agents if a.triggers]
        if not with_triggers:
            return agents[0]

        prompt = self._templates.render(
            "agent_selection.jinja2",
            agents=with_triggers,
            transcript=format_transcript(messages),
        )
        try:
            scores, _ = await self._executor.generate_structured(prompt=prompt, schema=AgentScores)
        except ProviderError as e:
            logger.warning("agent_selection_failed", error=str(e))
            return agents[0]

        by_id = {a.id: a for a in with_triggers}
        best = max(
            (c for c in scores.candidates if c.agent_id in by_id and c.score > self._threshold),
            key=lambda c: c.score,
            default=None,
        )
        return by_id[best.agent_id] if best else agents[0]

    async def assign(self, conversation: Conversation, messages: list[Message]) -> Conversation:
        """Assign an agent and append its persona as a System message."""
        if conversation.agent_id is not None:
            return conversation

        agents = await self._organization_store.list_active_agents(conversation.organization_id)
        agent = await self.choose(agents, messages)
        if agent is None:
            return conversation

        persona = self._templates.render("agent_persona.jinja2", agent=agent)
        await self._conversation_store.add_message(
            Message(
                conversation_id=conversation.id,
                type=MessageType.SYSTEM,
                content=persona,
                metadata={"kind": "agent_persona", "agent_id": agent.id},
            )
        )
        logger.info("agent_assigned", agent_id=agent.id, agent_name=agent.name)
        return conversation.with_agent(agent.id)
