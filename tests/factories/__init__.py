"""Test factories for creating test data."""

from tests.factories.conversation import (
    ConversationFactory,
    MessageFactory,
    closure_payload,
    interest_payload,
    perception_payload,
    plan_payload,
    score_payload,
    seed_conversation,
)

__all__ = [
    "ConversationFactory",
    "MessageFactory",
    "closure_payload",
    "interest_payload",
    "perception_payload",
    "plan_payload",
    "score_payload",
    "seed_conversation",
]
