"""Processing pass result models."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class PassOutcome(str, Enum):
    """How a processing pass ended."""

    SKIPPED = "skipped"
    CLOSED = "closed"
    RESPONDED = "responded"
    HANDED_OFF = "handed_off"
    EXHAUSTED = "exhausted"


class StepTiming(BaseModel):
    """Timing information for a single pipeline step."""

    step: str = Field(..., description="Step name")
    started_at: datetime
    ended_at: datetime
    duration_ms: float = Field(ge=0)


class PassResult(BaseModel):
    """Summary of one processing pass over one conversation."""

    conversation_id: str
    pass_id: str
    outcome: PassOutcome
    skip_reason: str | None = None
    loop_iterations: int = 0
    tool_calls: int = 0
    recheck_count: int = 0
    messages_emitted: int = 0
    timings: list[StepTiming] = Field(default_factory=list)
    total_time_ms: float = Field(default=0.0, ge=0)
