"""Conversation aggregate and its state transitions.

Conversation is immutable. Every transition returns a new value that the
engine persists through ConversationStore.save.
"""

from datetime import datetime
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from supportflow.domain.context import OrchestrationContext
from supportflow.domain.enums import ConversationStatus
from supportflow.domain.message import utc_now

DEFAULT_TITLE = "New conversation"


class Conversation(BaseModel):
    """A multi-turn support conversation."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()), description="Unique identifier")
    organization_id: str = Field(..., description="Owning organization")
    status: ConversationStatus = ConversationStatus.OPEN
    title: str | None = None
    agent_id: str | None = Field(default=None, description="Assigned bot agent persona")
    playbook_id: str | None = Field(default=None, description="Active playbook")
    document_ids: tuple[str, ...] = Field(
        default=(),
        description="Attached documents, ordered and duplicate-free",
    )
    enabled_tools: tuple[str, ...] = ()
    orchestration_status: OrchestrationContext | None = None

    locked_until: datetime | None = None
    locked_by: str | None = None
    needs_processing: bool = True

    resolution_metadata: dict[str, Any] | None = None
    created_at: datetime = Field(default_factory=utc_now)
    ended_at: datetime | None = None
    last_processed_at: datetime | None = None

    @property
    def context(self) -> OrchestrationContext:
        """Orchestration context, initialised lazily on first access."""
        return self.orchestration_status or OrchestrationContext()

    def is_locked(self, now: datetime) -> bool:
        """Whether a lock is held and still within its validity window."""
        return (
            self.locked_by is not None
            and self.locked_until is not None
            and self.locked_until > now
        )

    def is_eligible(self, now: datetime) -> bool:
        """Whether the scheduler should pick this conversation up."""
        return (
            self.status == ConversationStatus.OPEN
            and self.needs_processing
            and not self.is_locked(now)
        )

    def with_lock(self, owner: str, until: datetime) -> "Conversation":
        return self.model_copy(update={"locked_by": owner, "locked_until": until})

    def without_lock(self) -> "Conversation":
        return self.model_copy(update={"locked_by": None, "locked_until": None})

    def with_context(self, context: OrchestrationContext) -> "Conversation":
        return self.model_copy(update={"orchestration_status": context})

    def with_agent(self, agent_id: str) -> "Conversation":
        return self.model_copy(update={"agent_id": agent_id})

    def with_playbook(self, playbook_id: str, enabled_tools: list[str]) -> "Conversation":
        return self.model_copy(
            update={"playbook_id": playbook_id, "enabled_tools": tuple(enabled_tools)}
        )

    def with_title(self, title: str) -> "Conversation":
        return self.model_copy(update={"title": title})

    def with_status(self, status: ConversationStatus) -> "Conversation":
        return self.model_copy(update={"status": status})

    def with_documents(self, document_ids: list[str] | tuple[str, ...]) -> "Conversation":
        """Replace the attached document set, dropping duplicates in order."""
        return self.model_copy(update={"document_ids": tuple(dict.fromkeys(document_ids))})

    def attach_documents(self, document_ids: list[str]) -> tuple["Conversation", list[str]]:
        """Attach documents idempotently.

        Returns:
            The updated conversation and the ids that were actually new
        """
        added = [d for d in dict.fromkeys(document_ids) if d not in self.document_ids]
        if not added:
            return self, []
        return self.with_documents([*self.document_ids, *added]), added

    def resolve(
        self,
        *,
        resolved: bool,
        confidence: float,
        reason: str,
        now: datetime,
    ) -> "Conversation":
        """Mark the conversation resolved with closure metadata."""
        return self.model_copy(
            update={
                "status": ConversationStatus.RESOLVED,
                "ended_at": now,
                "resolution_metadata": {
                    "resolved": resolved,
                    "confidence": confidence,
                    "reason": reason,
                },
            }
        )

    def mark_processed(self, now: datetime) -> "Conversation":
        return self.model_copy(update={"needs_processing": False, "last_processed_at": now})

    @property
    def has_default_title(self) -> bool:
        return not self.title or self.title == DEFAULT_TITLE
