"""Storage interfaces and in-memory implementations."""

from supportflow.stores.conversation import ConversationStore
from supportflow.stores.inmemory import InMemoryConversationStore, InMemoryOrganizationStore
from supportflow.stores.organization import OrganizationStore

__all__ = [
    "ConversationStore",
    "InMemoryConversationStore",
    "InMemoryOrganizationStore",
    "OrganizationStore",
]
