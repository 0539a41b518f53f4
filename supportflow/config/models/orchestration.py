"""Orchestration pipeline configuration models."""

from typing import Literal

from pydantic import BaseModel, Field


class SchedulerConfig(BaseModel):
    """Configuration for the periodic orchestration scheduler."""

    interval_seconds: float = Field(
        default=2.0,
        gt=0,
        description="Seconds between scheduler ticks",
    )
    batch_size: int = Field(
        default=50,
        gt=0,
        description="Maximum eligible conversations enumerated per tick",
    )
    max_concurrency: int = Field(
        default=10,
        gt=0,
        description="Maximum processing passes running at once",
    )


class LockConfig(BaseModel):
    """Configuration for the per-conversation processing lock."""

    ttl_seconds: int = Field(
        default=120,
        gt=0,
        description="Validity window after which a stuck lock expires",
    )
    owner_id: str | None = Field(
        default=None,
        description="Lock owner identity (defaults to host:pid)",
    )


class ToolLoopConfig(BaseModel):
    """Configuration for the bounded tool-calling loop."""

    max_iterations: int = Field(
        default=15,
        gt=0,
        description="Hard cap on planner iterations per pass",
    )


class RetrievalConfig(BaseModel):
    """Configuration for playbook selection and document retrieval."""

    playbook_threshold: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Playbook candidates must score strictly above this",
    )
    agent_threshold: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Agent candidates must score strictly above this",
    )
    continuation_window: int = Field(
        default=3,
        gt=0,
        description="Recent messages considered for playbook continuation",
    )
    query_window: int = Field(
        default=3,
        gt=0,
        description="Recent customer messages joined into the search query",
    )
    top_k: int = Field(default=5, gt=0, description="Documents requested from search")
    similarity_threshold: float = Field(
        default=0.4,
        ge=0.0,
        le=1.0,
        description="Hits must score strictly above this similarity",
    )
    max_document_chars: int = Field(
        default=8000,
        gt=0,
        description="Per-document character cap for downstream prompts",
    )


class PlannerConfig(BaseModel):
    """Configuration for the execution planner."""

    language_pin_max_customer_messages: int = Field(
        default=4,
        gt=0,
        description="Pin the reply language while fewer customer messages exist",
    )
    history_limit: int = Field(
        default=50,
        gt=0,
        description="Most recent messages sent to the planner",
    )


class HandoffConfig(BaseModel):
    """Default messages used when handing a conversation to a human."""

    available_message: str = Field(
        default=(
            "I'm connecting you with a member of our team now. "
            "They will be with you shortly."
        ),
        description="Transitional message when human agents are online",
    )
    unavailable_message: str = Field(
        default=(
            "All of our team members are currently unavailable. "
            "Your conversation has been queued and someone will get back to you "
            "as soon as possible."
        ),
        description="Message when no human agent is online",
    )


class NotifierConfig(BaseModel):
    """Status-change notification configuration."""

    backend: Literal["logging", "redis"] = Field(
        default="logging",
        description="Notifier backend",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL for the redis backend",
    )
    channel: str = Field(
        default="supportflow:conversation-status",
        description="Pub/sub channel for status changes",
    )
