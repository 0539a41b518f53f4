"""In-memory store implementations for testing and development.

Plain dict storage with linear scans. Not suitable for production use.
"""

import asyncio
from datetime import datetime
from itertools import count

from supportflow.domain import (
    Agent,
    Conversation,
    Document,
    HumanAgent,
    Message,
    OrganizationSettings,
    Playbook,
)
from supportflow.domain.message import sort_key
from supportflow.stores.conversation import ConversationStore
from supportflow.stores.organization import OrganizationStore


class InMemoryConversationStore(ConversationStore):
    """ConversationStore backed by dictionaries.

    The lock check-and-set runs under an asyncio.Lock so it behaves like a
    conditional update even if a subclass adds awaits inside it.
    """

    def __init__(self) -> None:
        self._conversations: dict[str, Conversation] = {}
        self._messages: dict[str, dict[str, Message]] = {}
        self._sequence = count(1)
        self._lock_guard = asyncio.Lock()

    async def get(self, conversation_id: str) -> Conversation | None:
        return self._conversations.get(conversation_id)

    async def save(self, conversation: Conversation) -> None:
        self._conversations[conversation.id] = conversation

    async def list_eligible(self, now: datetime, *, limit: int = 50) -> list[Conversation]:
        eligible = [c for c in self._conversations.values() if c.is_eligible(now)]
        eligible.sort(key=lambda c: c.created_at)
        return eligible[:limit]

    async def try_lock(
        self,
        conversation_id: str,
        owner: str,
        until: datetime,
        now: datetime,
    ) -> bool:
        async with self._lock_guard:
            conversation = self._conversations.get(conversation_id)
            if conversation is None:
                return False
            if conversation.is_locked(now):
                return False
            self._conversations[conversation_id] = conversation.with_lock(owner, until)
            return True

    async def unlock(self, conversation_id: str) -> None:
        async with self._lock_guard:
            conversation = self._conversations.get(conversation_id)
            if conversation is not None:
                self._conversations[conversation_id] = conversation.without_lock()

    async def add_message(self, message: Message) -> Message:
        stored = message.model_copy(update={"sequence": next(self._sequence)})
        self._messages.setdefault(message.conversation_id, {})[stored.id] = stored
        return stored

    async def update_message(self, message: Message) -> None:
        messages = self._messages.setdefault(message.conversation_id, {})
        if message.id not in messages:
            raise KeyError(f"Unknown message {message.id}")
        messages[message.id] = message

    async def list_messages(self, conversation_id: str) -> list[Message]:
        return sorted(self._messages.get(conversation_id, {}).values(), key=sort_key)


class InMemoryOrganizationStore(OrganizationStore):
    """OrganizationStore backed by dictionaries, keyed by entity id."""

    def __init__(self) -> None:
        self._settings: dict[str, OrganizationSettings] = {}
        self._agents: dict[str, Agent] = {}
        self._playbooks: dict[str, Playbook] = {}
        self._documents: dict[str, Document] = {}
        self._humans: dict[str, HumanAgent] = {}

    async def save_settings(self, settings: OrganizationSettings) -> None:
        self._settings[settings.organization_id] = settings

    async def save_agent(self, agent: Agent) -> None:
        self._agents[agent.id] = agent

    async def save_playbook(self, playbook: Playbook) -> None:
        self._playbooks[playbook.id] = playbook

    async def save_document(self, document: Document) -> None:
        self._documents[document.id] = document

    async def save_human_agent(self, human: HumanAgent) -> None:
        self._humans[human.id] = human

    async def get_settings(self, organization_id: str) -> OrganizationSettings:
        return self._settings.get(
            organization_id, OrganizationSettings(organization_id=organization_id)
        )

    async def list_active_agents(self, organization_id: str) -> list[Agent]:
        return [
            a for a in self._agents.values()
            if a.organization_id == organization_id and a.active
        ]

    async def get_agent(self, organization_id: str, agent_id: str) -> Agent | None:
        agent = self._agents.get(agent_id)
        if agent is None or agent.organization_id != organization_id:
            return None
        return agent

    async def list_active_playbooks(self, organization_id: str) -> list[Playbook]:
        return [
            p for p in self._playbooks.values()
            if p.organization_id == organization_id and p.active
        ]

    async def get_playbook(self, organization_id: str, playbook_id: str) -> Playbook | None:
        playbook = self._playbooks.get(playbook_id)
        if playbook is None or playbook.organization_id != organization_id:
            return None
        return playbook

    async def get_documents(
        self,
        organization_id: str,
        document_ids: list[str] | tuple[str, ...],
    ) -> list[Document]:
        documents = []
        for document_id in document_ids:
            document = self._documents.get(document_id)
            if document is not None and document.organization_id == organization_id:
                documents.append(document)
        return documents

    async def list_online_human_agents(self, organization_id: str) -> list[HumanAgent]:
        return [
            h for h in self._humans.values()
            if h.organization_id == organization_id and h.online
        ]
