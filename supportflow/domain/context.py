"""Per-conversation orchestration context.

The context is versioned and append-only: every ``with_*`` method returns
a new value with one more entry, existing entries are never rewritten.
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from supportflow.domain.enums import ConfidenceTier, Severity, ViolationType
from supportflow.domain.message import utc_now

CONTEXT_VERSION = "v1"


class ToolLogEntry(BaseModel):
    """One tool invocation."""

    model_config = ConfigDict(frozen=True)

    turn: int
    name: str
    input: dict[str, Any] = Field(default_factory=dict)
    ok: bool
    result: Any = None
    error_class: str | None = None
    error: str | None = None
    latency_ms: float = Field(default=0.0, ge=0)
    idempotency_key: str
    timestamp: datetime = Field(default_factory=utc_now)


class ConfidenceBreakdown(BaseModel):
    """The three weighted components of a confidence score."""

    model_config = ConfigDict(frozen=True)

    grounding: float = Field(ge=0.0, le=1.0)
    retrieval: float = Field(ge=0.0, le=1.0)
    certainty: float = Field(ge=0.0, le=1.0)


class ConfidenceLogEntry(BaseModel):
    """One confidence assessment of a candidate reply."""

    model_config = ConfigDict(frozen=True)

    turn: int
    timestamp: datetime = Field(default_factory=utc_now)
    score: float = Field(ge=0.0, le=1.0)
    tier: ConfidenceTier
    breakdown: ConfidenceBreakdown
    documents_used: int = Field(default=0, ge=0)
    recheck_attempted: bool = False
    recheck_count: int = Field(default=0, ge=0)
    action: str = Field(default="pass", description="pass, recheck_kept, escalate, fallback")
    details: str = ""


class GuardrailLogEntry(BaseModel):
    """One company-interest decision."""

    model_config = ConfigDict(frozen=True)

    turn: int
    timestamp: datetime = Field(default_factory=utc_now)
    stage: Literal["company_interest"] = "company_interest"
    passed: bool
    violation_type: ViolationType = ViolationType.NONE
    severity: Severity = Severity.NONE
    should_block: bool = False
    requires_fact_check: bool = True
    reasoning: str = ""


class RagHit(BaseModel):
    """One ranked retrieval hit."""

    model_config = ConfigDict(frozen=True)

    document_id: str
    title: str
    similarity: float = Field(ge=0.0, le=1.0)
    source: str | None = None


class RagPack(BaseModel):
    """The query and ranked hits of the latest document retrieval."""

    model_config = ConfigDict(frozen=True)

    query: str
    hits: tuple[RagHit, ...] = ()
    index_version: str | None = None
    retrieved_at: datetime = Field(default_factory=utc_now)

    def similarity_for(self, document_id: str) -> float | None:
        for hit in self.hits:
            if hit.document_id == document_id:
                return hit.similarity
        return None


class PlaybookHistoryEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    playbook_id: str
    action: Literal["activated", "switched", "continued"]
    score: float | None = None
    at: datetime = Field(default_factory=utc_now)


class ActivePlaybook(BaseModel):
    """The playbook currently guiding the conversation."""

    model_config = ConfigDict(frozen=True)

    playbook_id: str
    current_step: str | None = None
    state: dict[str, Any] = Field(default_factory=dict)
    history: tuple[PlaybookHistoryEntry, ...] = ()


class OrchestrationContext(BaseModel):
    """Versioned orchestration state persisted with the conversation."""

    model_config = ConfigDict(frozen=True)

    version: str = CONTEXT_VERSION
    last_turn: int = 0
    active_playbook: ActivePlaybook | None = None
    rag: RagPack | None = None
    tool_log: tuple[ToolLogEntry, ...] = ()
    confidence_log: tuple[ConfidenceLogEntry, ...] = ()
    guardrail_log: tuple[GuardrailLogEntry, ...] = ()

    def next_turn(self) -> "OrchestrationContext":
        return self.model_copy(update={"last_turn": self.last_turn + 1})

    def with_tool_entry(self, entry: ToolLogEntry) -> "OrchestrationContext":
        return self.model_copy(update={"tool_log": (*self.tool_log, entry)})

    def with_confidence_entry(self, entry: ConfidenceLogEntry) -> "OrchestrationContext":
        return self.model_copy(update={"confidence_log": (*self.confidence_log, entry)})

    def with_guardrail_entry(self, entry: GuardrailLogEntry) -> "OrchestrationContext":
        return self.model_copy(update={"guardrail_log": (*self.guardrail_log, entry)})

    def with_rag(self, rag: RagPack) -> "OrchestrationContext":
        return self.model_copy(update={"rag": rag})

    def with_playbook(
        self,
        playbook_id: str,
        action: Literal["activated", "switched", "continued"],
        score: float | None = None,
    ) -> "OrchestrationContext":
        """Record a playbook decision, starting fresh state on a switch."""
        entry = PlaybookHistoryEntry(playbook_id=playbook_id, action=action, score=score)
        current = self.active_playbook
        history = (*current.history, entry) if current else (entry,)
        if current is not None and current.playbook_id == playbook_id:
            active = current.model_copy(update={"history": history})
        else:
            active = ActivePlaybook(playbook_id=playbook_id, history=history)
        return self.model_copy(update={"active_playbook": active})

    def tool_results_for_turn(self, turn: int) -> list[ToolLogEntry]:
        """Successful tool calls made during the given turn."""
        return [entry for entry in self.tool_log if entry.turn == turn and entry.ok]
