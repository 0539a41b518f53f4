"""Enumerations shared across the conversation domain."""

from enum import Enum


class ConversationStatus(str, Enum):
    """Lifecycle status of a conversation."""

    OPEN = "open"
    PENDING_HUMAN = "pending-human"
    RESOLVED = "resolved"
    CLOSED = "closed"
    HUMAN_TOOK_OVER = "human-took-over"


class MessageType(str, Enum):
    """Author kind of a message."""

    CUSTOMER = "Customer"
    BOT_AGENT = "BotAgent"
    SYSTEM = "System"
    TOOL = "Tool"
    HUMAN_AGENT = "HumanAgent"


class MessageIntent(str, Enum):
    """Classified intent of a customer message."""

    GREET = "greet"
    QUESTION = "question"
    REQUEST = "request"
    HANDOFF = "handoff"
    CLOSE_SATISFIED = "close_satisfied"
    CLOSE_UNSATISFIED = "close_unsatisfied"
    OTHER = "other"
    UNKNOWN = "unknown"

    @property
    def is_closure(self) -> bool:
        return self in (MessageIntent.CLOSE_SATISFIED, MessageIntent.CLOSE_UNSATISFIED)

    @property
    def skips_guardrails(self) -> bool:
        return self is MessageIntent.GREET or self.is_closure


class Sentiment(str, Enum):
    """Classified sentiment of a customer message."""

    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


class ToolStatus(str, Enum):
    """State of a Tool message."""

    CALLING = "CALLING"
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"


class PlanStep(str, Enum):
    """Kinds of step the execution planner can choose."""

    ASK = "ASK"
    RESPOND = "RESPOND"
    CALL_TOOL = "CALL_TOOL"
    HANDOFF = "HANDOFF"
    CLOSE = "CLOSE"


class ConfidenceTier(str, Enum):
    """Bucketed confidence in a candidate reply."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ViolationType(str, Enum):
    """Ways a candidate reply can harm the organization's interests."""

    OFF_TOPIC = "off_topic"
    COMPETITOR_INFO = "competitor_info"
    FABRICATED_PRODUCT = "fabricated_product"
    FABRICATED_POLICY = "fabricated_policy"
    NONE = "none"


class Severity(str, Enum):
    """Severity of a company-interest violation."""

    CRITICAL = "critical"
    MODERATE = "moderate"
    LOW = "low"
    NONE = "none"
