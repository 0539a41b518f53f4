"""ConversationStore abstract interface."""

from abc import ABC, abstractmethod
from datetime import datetime

from supportflow.domain import Conversation, Message


class ConversationStore(ABC):
    """Abstract interface for conversation and message storage.

    Lock operations must be conditional updates so that two workers
    can never both believe they own the same conversation.
    """

    @abstractmethod
    async def get(self, conversation_id: str) -> Conversation | None:
        """Get a conversation by ID."""
        pass

    @abstractmethod
    async def save(self, conversation: Conversation) -> None:
        """Insert or replace a conversation."""
        pass

    @abstractmethod
    async def list_eligible(self, now: datetime, *, limit: int = 50) -> list[Conversation]:
        """List open, flagged conversations whose lock is free or expired."""
        pass

    @abstractmethod
    async def try_lock(
        self,
        conversation_id: str,
        owner: str,
        until: datetime,
        now: datetime,
    ) -> bool:
        """Set the lock unless a valid one is already held.

        Returns:
            True if the caller now owns the lock
        """
        pass

    @abstractmethod
    async def unlock(self, conversation_id: str) -> None:
        """Clear the lock fields unconditionally."""
        pass

    @abstractmethod
    async def add_message(self, message: Message) -> Message:
        """Append a message, returning it with its sequence assigned."""
        pass

    @abstractmethod
    async def update_message(self, message: Message) -> None:
        """Replace a stored message in place (annotations, tool status)."""
        pass

    @abstractmethod
    async def list_messages(self, conversation_id: str) -> list[Message]:
        """All messages of a conversation in total order."""
        pass
