"""Conversation domain models."""

from supportflow.domain.catalog import (
    Agent,
    Document,
    HumanAgent,
    OrganizationSettings,
    Playbook,
)
from supportflow.domain.context import (
    ActivePlaybook,
    ConfidenceBreakdown,
    ConfidenceLogEntry,
    GuardrailLogEntry,
    OrchestrationContext,
    RagHit,
    RagPack,
    ToolLogEntry,
)
from supportflow.domain.conversation import Conversation
from supportflow.domain.enums import (
    ConfidenceTier,
    ConversationStatus,
    MessageIntent,
    MessageType,
    PlanStep,
    Sentiment,
    Severity,
    ToolStatus,
    ViolationType,
)
from supportflow.domain.message import Message

__all__ = [
    "ActivePlaybook",
    "Agent",
    "ConfidenceBreakdown",
    "ConfidenceLogEntry",
    "ConfidenceTier",
    "Conversation",
    "ConversationStatus",
    "Document",
    "GuardrailLogEntry",
    "HumanAgent",
    "Message",
    "MessageIntent",
    "MessageType",
    "OrchestrationContext",
    "OrganizationSettings",
    "PlanStep",
    "Playbook",
    "RagHit",
    "RagPack",
    "Sentiment",
    "Severity",
    "ToolLogEntry",
    "ToolStatus",
    "ViolationType",
]
