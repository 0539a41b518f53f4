"""Tests for the two-stage response guardrail pipeline."""

import pytest

from supportflow.config.models.guardrails import CompanyInterestConfig, GuardrailsConfig
from supportflow.domain import (
    ConfidenceTier,
    Document,
    MessageIntent,
    OrganizationSettings,
    Severity,
    ToolLogEntry,
    ViolationType,
)
from supportflow.errors import InvalidPlannerOutput
from supportflow.orchestration.guardrails import (
    LOW_CONFIDENCE_REASON,
    CompanyInterestGuardrail,
    ConfidenceGuardrail,
    GuardrailPipeline,
    GuardrailRequest,
    should_block,
    tier_for,
)
from supportflow.orchestration.planner import AskStep, HandoffStep, RespondStep
from supportflow.orchestration.retrieval import DocumentRetriever, EvidenceDocument
from supportflow.orchestration.translation import MessageTranslator
from supportflow.providers.llm import MockLLMExecutor, ProviderError
from supportflow.stores import InMemoryOrganizationStore
from tests.factories import ConversationFactory, MessageFactory, interest_payload, score_payload
from tests.factories.search import StaticSearch, hit


class Harness:
    """Pipeline wired to scripted executors."""

    def __init__(self, hits=None) -> None:
        self.interest = MockLLMExecutor(step_name="company_interest")
        self.confidence = MockLLMExecutor(step_name="confidence")
        self.translation = MockLLMExecutor(step_name="translation")
        self.org_store = InMemoryOrganizationStore()
        self.search = StaticSearch(hits or [])
        self.pipeline = GuardrailPipeline(
            CompanyInterestGuardrail(self.interest),
            ConfidenceGuardrail(self.confidence),
            MessageTranslator(self.translation),
            DocumentRetriever(self.search, self.org_store),
            GuardrailsConfig(),
        )
        self.replans: list[list[EvidenceDocument]] = []
        self.replan_outputs: list = []

    async def replan(self, documents: list[EvidenceDocument]):
        self.replans.append(documents)
        output = self.replan_outputs.pop(0)
        if isinstance(output, Exception):
            raise output
        return output

    def request(
        self,
        reply: str = "Refunds take 5 business days.",
        *,
        documents: list[EvidenceDocument] | None = None,
        conversation=None,
        intent: MessageIntent | None = MessageIntent.QUESTION,
        language: str = "en",
        settings: OrganizationSettings | None = None,
        tool_results: list[ToolLogEntry] | None = None,
    ) -> GuardrailRequest:
        conversation = conversation or ConversationFactory.create()
        return GuardrailRequest(
            conversation=conversation,
            messages=[MessageFactory.customer(conversation.id, "how long do refunds take")],
            output=RespondStep(user_message=reply, rationale="policy says so"),
            customer_query="how long do refunds take",
            intent=intent,
            language=language,
            settings=settings or OrganizationSettings(organization_id="org-1"),
            documents=documents or [],
            tool_results=tool_results or [],
        )


def evidence(document_id: str, similarity: float) -> EvidenceDocument:
    return EvidenceDocument(
        id=document_id,
        title=document_id,
        content="Refunds are processed within 5 business days.",
        similarity=similarity,
    )


class TestShouldBlock:
    config = CompanyInterestConfig()

    def test_none_never_blocks(self) -> None:
        assert not should_block(ViolationType.NONE, Severity.CRITICAL, self.config)

    def test_critical_always_blocks(self) -> None:
        lenient = CompanyInterestConfig(block_off_topic=False)
        assert should_block(
            ViolationType.OFF_TOPIC, Severity.CRITICAL, lenient, is_clarification=True
        )

    def test_clarification_allowed(self) -> None:
        assert not should_block(
            ViolationType.OFF_TOPIC, Severity.MODERATE, self.config, is_clarification=True
        )

    def test_per_type_switches(self) -> None:
        lenient = CompanyInterestConfig(block_competitor_info=False)
        assert not should_block(ViolationType.COMPETITOR_INFO, Severity.MODERATE, lenient)
        assert should_block(ViolationType.FABRICATED_POLICY, Severity.LOW, lenient)


class TestTierFor:
    def test_boundaries(self) -> None:
        config = GuardrailsConfig().confidence
        assert tier_for(0.8, config) is ConfidenceTier.HIGH
        assert tier_for(0.79, config) is ConfidenceTier.MEDIUM
        assert tier_for(0.5, config) is ConfidenceTier.MEDIUM
        assert tier_for(0.49, config) is ConfidenceTier.LOW


class TestCompanyInterestStage:
    @pytest.mark.asyncio
    async def test_block_becomes_handoff_without_confidence_calls(self) -> None:
        harness = Harness()
        harness.interest.queue(interest_payload("competitor_info", "moderate"))

        outcome = await harness.pipeline.evaluate(harness.request("Try BetterShop"), harness.replan)

        assert isinstance(outcome.output, HandoffStep)
        assert outcome.output.handoff.reason == "Company interest violation: competitor_info"
        assert outcome.output.user_message == CompanyInterestConfig().fallback_message
        assert outcome.action == "block"
        assert outcome.metadata["blocked_message"] == "Try BetterShop"
        assert harness.confidence.call_count == 0
        assert not outcome.confidence_checked
        (entry,) = outcome.conversation.context.guardrail_log
        assert entry.should_block
        assert outcome.conversation.context.confidence_log == ()

    @pytest.mark.asyncio
    async def test_blocked_fallback_is_translated(self) -> None:
        harness = Harness()
        harness.interest.queue(interest_payload("off_topic", "critical"))
        harness.translation.queue("Je vous mets en relation avec un collègue.")

        outcome = await harness.pipeline.evaluate(
            harness.request(language="fr"), harness.replan
        )
        assert outcome.output.user_message == "Je vous mets en relation avec un collègue."

    @pytest.mark.asyncio
    async def test_organization_override_disables_block(self) -> None:
        harness = Harness()
        harness.interest.queue(interest_payload("off_topic", "moderate"))
        harness.confidence.queue(score_payload(0.9), score_payload(0.9))
        settings = OrganizationSettings(
            organization_id="org-1",
            company_interest_guardrail={"block_off_topic": False},
        )

        outcome = await harness.pipeline.evaluate(
            harness.request(documents=[evidence("a", 0.9)], settings=settings), harness.replan
        )
        assert isinstance(outcome.output, RespondStep)
        assert outcome.confidence_checked

    @pytest.mark.asyncio
    async def test_check_failure_lets_reply_through_to_confidence(self) -> None:
        harness = Harness()
        harness.interest.queue(ProviderError("down"))
        harness.confidence.queue(score_payload(0.9), score_payload(0.9))

        outcome = await harness.pipeline.evaluate(
            harness.request(documents=[evidence("a", 0.9)]), harness.replan
        )
        assert outcome.company_interest_checked
        assert outcome.confidence_checked
        assert harness.confidence.call_count == 2


class TestFactCheckGate:
    @pytest.mark.asyncio
    async def test_reply_without_factual_claims_skips_confidence(self) -> None:
        harness = Harness()
        harness.interest.queue(interest_payload(requires_fact_check=False))

        outcome = await harness.pipeline.evaluate(
            harness.request("Sure, what is your order number?"), harness.replan
        )

        assert isinstance(outcome.output, RespondStep)
        assert outcome.output.user_message == "Sure, what is your order number?"
        assert outcome.action == "pass"
        assert outcome.company_interest_checked
        assert not outcome.confidence_checked
        assert harness.confidence.call_count == 0
        assert outcome.conversation.context.confidence_log == ()
        assert not outcome.conversation.context.guardrail_log[0].requires_fact_check

    @pytest.mark.asyncio
    async def test_disabled_company_interest_check_skips_confidence(self) -> None:
        harness = Harness()
        settings = OrganizationSettings(
            organization_id="org-1", company_interest_guardrail={"enabled": False}
        )

        outcome = await harness.pipeline.evaluate(harness.request(settings=settings), harness.replan)

        assert outcome.action == "pass"
        assert harness.interest.call_count == 0
        assert harness.confidence.call_count == 0

    @pytest.mark.asyncio
    async def test_blocked_reply_is_never_fact_checked(self) -> None:
        harness = Harness()
        harness.interest.queue(
            interest_payload("fabricated_policy", "moderate", requires_fact_check=True)
        )

        outcome = await harness.pipeline.evaluate(harness.request(), harness.replan)

        assert outcome.action == "block"
        assert not outcome.conversation.context.guardrail_log[0].requires_fact_check


class TestConfidenceStage:
    @pytest.mark.asyncio
    async def test_high_confidence_passes(self) -> None:
        harness = Harness()
        harness.interest.queue(interest_payload())
        harness.confidence.queue(score_payload(0.9), score_payload(0.9))

        outcome = await harness.pipeline.evaluate(
            harness.request(documents=[evidence("a", 0.9)]), harness.replan
        )

        assert outcome.output.user_message == "Refunds take 5 business days."
        assert outcome.action == "pass"
        assert outcome.recheck_count == 0
        assert harness.replans == []
        (entry,) = outcome.conversation.context.confidence_log
        assert entry.score == pytest.approx(0.9)
        assert entry.tier is ConfidenceTier.HIGH
        assert entry.breakdown.retrieval == pytest.approx(0.9)
        assert outcome.metadata["confidence"]["tier"] == "high"

    @pytest.mark.asyncio
    async def test_medium_recheck_improves_and_commits(self) -> None:
        harness = Harness(hits=[hit("a", 0.6), hit("b", 0.9)])
        for document_id in ("a", "b"):
            await harness.org_store.save_document(
                Document(id=document_id, organization_id="org-1", content="refund policy")
            )
        harness.interest.queue(interest_payload())
        harness.confidence.queue(
            score_payload(0.6), score_payload(0.5), score_payload(0.95), score_payload(0.9)
        )
        harness.replan_outputs.append(RespondStep(user_message="Refunds take 5 days by card."))
        conversation = ConversationFactory.create(document_ids=("a",))

        outcome = await harness.pipeline.evaluate(
            harness.request(documents=[evidence("a", 0.6)], conversation=conversation),
            harness.replan,
        )

        assert outcome.recheck_count == 1
        assert outcome.action == "recheck_improved"
        assert outcome.output.user_message == "Refunds take 5 days by card."
        assert outcome.conversation.document_ids == ("a", "b")
        assert {d.id for d in harness.replans[0]} == {"a", "b"}
        assert harness.search.calls[0][2] == 10
        (entry,) = outcome.conversation.context.confidence_log
        assert entry.recheck_count == 1
        assert entry.score == pytest.approx(0.885)

    @pytest.mark.asyncio
    async def test_medium_recheck_without_improvement_reverts(self) -> None:
        harness = Harness(hits=[hit("a", 0.6), hit("b", 0.9)])
        for document_id in ("a", "b"):
            await harness.org_store.save_document(
                Document(id=document_id, organization_id="org-1", content="refund policy")
            )
        harness.interest.queue(interest_payload())
        harness.confidence.queue(
            score_payload(0.6), score_payload(0.5), score_payload(0.3), score_payload(0.5)
        )
        harness.replan_outputs.append(RespondStep(user_message="Maybe a week?"))
        conversation = ConversationFactory.create(document_ids=("a",))

        outcome = await harness.pipeline.evaluate(
            harness.request(documents=[evidence("a", 0.6)], conversation=conversation),
            harness.replan,
        )

        assert outcome.recheck_count == 1
        assert len(harness.replans) == 1
        assert outcome.action == "recheck_kept"
        assert outcome.output.user_message == "Refunds take 5 business days."
        assert outcome.conversation.document_ids == ("a",)
        (entry,) = outcome.conversation.context.confidence_log
        assert entry.score == pytest.approx(0.59)
        assert entry.tier is ConfidenceTier.MEDIUM

    @pytest.mark.asyncio
    async def test_medium_score_after_recheck_is_not_rechecked_again(self) -> None:
        harness = Harness(hits=[hit("a", 0.6), hit("b", 0.9)])
        for document_id in ("a", "b"):
            await harness.org_store.save_document(
                Document(id=document_id, organization_id="org-1", content="refund policy")
            )
        harness.interest.queue(interest_payload())
        harness.confidence.queue(
            score_payload(0.6), score_payload(0.5), score_payload(0.7), score_payload(0.5)
        )
        harness.replan_outputs.append(RespondStep(user_message="About 5 days, usually."))
        conversation = ConversationFactory.create(document_ids=("a",))

        outcome = await harness.pipeline.evaluate(
            harness.request(documents=[evidence("a", 0.6)], conversation=conversation),
            harness.replan,
        )

        assert len(harness.replans) == 1
        assert harness.confidence.call_count == 4
        assert outcome.recheck_count == 1
        assert outcome.action == "recheck_improved"
        (entry,) = outcome.conversation.context.confidence_log
        assert entry.tier is ConfidenceTier.MEDIUM
        assert entry.score == pytest.approx(0.695)

    @pytest.mark.asyncio
    async def test_recheck_ignores_clarifying_question(self) -> None:
        harness = Harness()
        harness.interest.queue(interest_payload())
        harness.confidence.queue(score_payload(0.6), score_payload(0.5))
        harness.replan_outputs.append(AskStep(user_message="Which order do you mean?"))

        outcome = await harness.pipeline.evaluate(
            harness.request(documents=[evidence("a", 0.6)]), harness.replan
        )

        assert outcome.action == "recheck_kept"
        assert outcome.output.user_message == "Refunds take 5 business days."
        assert harness.confidence.call_count == 2

    @pytest.mark.asyncio
    async def test_recheck_replan_failure_keeps_original(self) -> None:
        harness = Harness()
        harness.interest.queue(interest_payload())
        harness.confidence.queue(score_payload(0.6), score_payload(0.5))
        harness.replan_outputs.append(InvalidPlannerOutput("RESPOND output rejected"))

        outcome = await harness.pipeline.evaluate(
            harness.request(documents=[evidence("a", 0.6)]), harness.replan
        )
        assert outcome.recheck_count == 1
        assert outcome.output.user_message == "Refunds take 5 business days."

    @pytest.mark.asyncio
    async def test_low_confidence_escalates(self) -> None:
        harness = Harness()
        harness.interest.queue(interest_payload())
        harness.confidence.queue(score_payload(0.2))
        harness.translation.queue("Je ne suis pas certain.")

        outcome = await harness.pipeline.evaluate(harness.request(language="fr"), harness.replan)

        assert isinstance(outcome.output, HandoffStep)
        assert outcome.output.handoff.reason == LOW_CONFIDENCE_REASON
        assert outcome.output.handoff.fields["confidence_tier"] == "low"
        assert outcome.output.user_message == "Je ne suis pas certain."
        assert outcome.action == "escalate"
        assert harness.confidence.call_count == 1

    @pytest.mark.asyncio
    async def test_low_confidence_fallback_when_escalation_disabled(self) -> None:
        harness = Harness()
        harness.interest.queue(interest_payload())
        harness.confidence.queue(score_payload(0.2))
        settings = OrganizationSettings(
            organization_id="org-1", confidence_guardrail={"enable_escalation": False}
        )

        outcome = await harness.pipeline.evaluate(harness.request(settings=settings), harness.replan)

        assert isinstance(outcome.output, RespondStep)
        assert outcome.output.user_message == GuardrailsConfig().confidence.fallback_message
        assert outcome.metadata["original_message"] == "Refunds take 5 business days."
        assert outcome.action == "fallback"

    @pytest.mark.asyncio
    async def test_tool_results_count_as_evidence(self) -> None:
        harness = Harness()
        harness.interest.queue(interest_payload())
        harness.confidence.queue(score_payload(0.9), score_payload(0.9))
        tool_entry = ToolLogEntry(
            turn=0,
            name="lookup_order",
            input={"id": "42"},
            ok=True,
            result={"status": "shipped"},
            idempotency_key="c:0:lookup_order:abcdef0123456789",
        )

        outcome = await harness.pipeline.evaluate(
            harness.request("Your order shipped.", tool_results=[tool_entry]), harness.replan
        )

        assert outcome.action == "pass"
        (entry,) = outcome.conversation.context.confidence_log
        assert entry.breakdown.retrieval == pytest.approx(0.95)
        grounding_prompt = "\n".join(m.content for m in harness.confidence.call_history[0])
        assert "Tool result: lookup_order" in grounding_prompt


class TestExemptions:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "intent",
        [MessageIntent.GREET, MessageIntent.CLOSE_SATISFIED, MessageIntent.CLOSE_UNSATISFIED],
    )
    async def test_exempt_intents_skip_both_stages(self, intent) -> None:
        harness = Harness()

        outcome = await harness.pipeline.evaluate(harness.request(intent=intent), harness.replan)

        assert outcome.action == "exempt"
        assert harness.interest.call_count == 0
        assert harness.confidence.call_count == 0
        assert outcome.conversation.context.guardrail_log == ()

    def test_applies_only_to_respond(self) -> None:
        assert GuardrailPipeline.applies_to(RespondStep(user_message="hi"))
        assert not GuardrailPipeline.applies_to(AskStep(user_message="which order?"))
