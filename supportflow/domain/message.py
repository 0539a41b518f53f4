"""Conversation message model."""

from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field

from supportflow.domain.enums import MessageIntent, MessageType, Sentiment

PUBLIC_TYPES = frozenset({MessageType.CUSTOMER, MessageType.BOT_AGENT, MessageType.HUMAN_AGENT})


def utc_now() -> datetime:
    """Return current UTC time."""
    return datetime.now(UTC)


class Message(BaseModel):
    """A single message in a conversation.

    Messages are append-only within a processing pass. The total order is
    creation time, ties broken by the store-assigned sequence number.
    """

    id: str = Field(default_factory=lambda: str(uuid4()), description="Unique identifier")
    conversation_id: str = Field(..., description="Owning conversation")
    type: MessageType = Field(..., description="Author kind")
    content: str = Field(default="", description="Message text")
    created_at: datetime = Field(default_factory=utc_now)
    sequence: int = Field(default=0, description="Insertion sequence, assigned by the store")

    intent: MessageIntent | None = None
    intent_score: float | None = Field(default=None, ge=0.0, le=1.0)
    sentiment: Sentiment | None = None
    sentiment_score: float | None = Field(default=None, ge=0.0, le=1.0)
    language: str | None = Field(default=None, description="ISO 639-1 language code")

    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Step provenance: plan, rationale, confidence, tool status",
    )

    @property
    def is_public(self) -> bool:
        """Whether the customer can see this message."""
        return self.type in PUBLIC_TYPES

    @property
    def is_annotated(self) -> bool:
        return self.intent is not None


def sort_key(message: Message) -> tuple[datetime, int]:
    return message.created_at, message.sequence


def last_of_type(messages: list[Message], message_type: MessageType) -> Message | None:
    """Most recent message of the given type in an ordered list."""
    for message in reversed(messages):
        if message.type == message_type:
            return message
    return None


def public_messages(messages: list[Message]) -> list[Message]:
    return [m for m in messages if m.is_public]


def customer_messages(messages: list[Message]) -> list[Message]:
    return [m for m in messages if m.type == MessageType.CUSTOMER]
