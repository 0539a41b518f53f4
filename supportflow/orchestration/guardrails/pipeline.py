"""Two-stage guardrail pipeline applied to candidate replies.

Stage 1 (company interest) can block a reply outright, converting it to a
handoff. Stage 2 (confidence) scores the reply against the attached
documents and recent tool results; medium scores get exactly one recheck
with relaxed retrieval, low scores escalate or fall back.
"""

import json
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from supportflow.config.loader import deep_merge
from supportflow.config.models.guardrails import (
    CompanyInterestConfig,
    ConfidenceConfig,
    GuardrailsConfig,
)
from supportflow.domain import (
    ConfidenceLogEntry,
    ConfidenceTier,
    Conversation,
    GuardrailLogEntry,
    Message,
    MessageIntent,
    OrganizationSettings,
    ToolLogEntry,
)
from supportflow.errors import InvalidPlannerOutput
from supportflow.observability import metrics
from supportflow.observability.logging import get_logger
from supportflow.orchestration.guardrails.company_interest import CompanyInterestGuardrail
from supportflow.orchestration.guardrails.confidence import ConfidenceGuardrail
from supportflow.orchestration.guardrails.models import ConfidenceAssessment
from supportflow.orchestration.planner import (
    AskStep,
    HandoffDetails,
    HandoffStep,
    PlannerOutput,
    RespondStep,
)
from supportflow.orchestration.retrieval.documents import DocumentRetriever, EvidenceDocument
from supportflow.orchestration.translation import MessageTranslator
from supportflow.providers.llm import ProviderError

logger = get_logger(__name__)

LOW_CONFIDENCE_REASON = "Low confidence in AI response"

Replanner = Callable[[list[EvidenceDocument]], Awaitable[PlannerOutput]]


def company_interest_config_for(
    base: CompanyInterestConfig,
    settings: OrganizationSettings | None,
) -> CompanyInterestConfig:
    """Deep-merge an organization's overrides over the configured defaults."""
    if settings is None or not settings.company_interest_guardrail:
        return base
    return CompanyInterestConfig.model_validate(
        deep_merge(base.model_dump(), settings.company_interest_guardrail)
    )


def confidence_config_for(
    base: ConfidenceConfig,
    settings: OrganizationSettings | None,
) -> ConfidenceConfig:
    if settings is None or not settings.confidence_guardrail:
        return base
    return ConfidenceConfig.model_validate(
        deep_merge(base.model_dump(), settings.confidence_guardrail)
    )


def tool_evidence(entries: list[ToolLogEntry], similarity: float) -> list[EvidenceDocument]:
    """Present successful tool results as high-similarity synthetic documents."""
    return [
        EvidenceDocument(
            id=f"tool:{entry.name}:{entry.idempotency_key[:12]}",
            title=f"Tool result: {entry.name}",
            content=json.dumps(entry.result, default=str),
            similarity=similarity,
            source="tool",
            synthetic=True,
        )
        for entry in entries
    ]


class GuardrailRequest(BaseModel):
    """Everything the pipeline needs to judge one candidate reply."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    conversation: Conversation
    messages: list[Message]
    output: AskStep | RespondStep
    customer_query: str
    intent: MessageIntent | None = None
    language: str | None = None
    settings: OrganizationSettings | None = None
    documents: list[EvidenceDocument] = Field(default_factory=list)
    tool_results: list[ToolLogEntry] = Field(default_factory=list)


class GuardrailOutcome(BaseModel):
    """The reply to emit, the conversation to persist, and provenance."""

    output: Any
    conversation: Conversation
    action: str = "pass"
    metadata: dict[str, Any] = Field(default_factory=dict)
    company_interest_checked: bool = False
    confidence_checked: bool = False
    recheck_count: int = 0


class GuardrailPipeline:
    """Runs both guardrail stages on RESPOND outputs that carry a message."""

    def __init__(
        self,
        company_interest: CompanyInterestGuardrail,
        confidence: ConfidenceGuardrail,
        translator: MessageTranslator,
        retriever: DocumentRetriever,
        config: GuardrailsConfig | None = None,
    ) -> None:
        self._company_interest = company_interest
        self._confidence = confidence
        self._translator = translator
        self._retriever = retriever
        self._config = config or GuardrailsConfig()

    @staticmethod
    def applies_to(output: PlannerOutput) -> bool:
        return isinstance(output, RespondStep) and bool(output.user_message.strip())

    async def evaluate(self, request: GuardrailRequest, replan: Replanner) -> GuardrailOutcome:
        conversation = request.conversation
        output = request.output

        if request.intent is not None and request.intent.skips_guardrails:
            logger.debug("guardrails_exempt", intent=request.intent.value)
            return GuardrailOutcome(output=output, conversation=conversation, action="exempt")

        turn = conversation.context.last_turn
        ci_config = company_interest_config_for(self._config.company_interest, request.settings)
        conf_config = confidence_config_for(self._config.confidence, request.settings)

        assessment = await self._company_interest.check(
            output.user_message,
            request.customer_query,
            history=request.messages,
            company_domain=(
                request.settings.company_domain if request.settings else "customer support"
            ),
            has_documents=bool(request.documents),
            has_tool_results=bool(request.tool_results),
            config=ci_config,
        )
        conversation = conversation.with_context(
            conversation.context.with_guardrail_entry(
                GuardrailLogEntry(
                    turn=turn,
                    passed=assessment.passed,
                    violation_type=assessment.violation_type,
                    severity=assessment.severity,
                    should_block=assessment.should_block,
                    requires_fact_check=assessment.requires_fact_check,
                    reasoning=assessment.reasoning,
                )
            )
        )

        if assessment.should_block:
            metrics.GUARDRAIL_ACTIONS.labels(stage="company_interest", action="block").inc()
            fallback = await self._translator.translate(ci_config.fallback_message, request.language)
            logger.warning(
                "response_blocked",
                violation_type=assessment.violation_type.value,
                severity=assessment.severity.value,
            )
            return GuardrailOutcome(
                output=HandoffStep(
                    handoff=HandoffDetails(
                        reason=f"Company interest violation: {assessment.violation_type.value}",
                        fields={
                            "violation_type": assessment.violation_type.value,
                            "severity": assessment.severity.value,
                        },
                    ),
                    user_message=fallback,
                    rationale=output.rationale,
                ),
                conversation=conversation,
                action="block",
                metadata={"blocked_message": output.user_message},
                company_interest_checked=True,
            )

        metrics.GUARDRAIL_ACTIONS.labels(stage="company_interest", action="pass").inc()
        if not assessment.requires_fact_check or not conf_config.enabled:
            return GuardrailOutcome(
                output=output,
                conversation=conversation,
                company_interest_checked=True,
            )

        synthetic = tool_evidence(request.tool_results, conf_config.tool_result_similarity)
        confidence = await self._confidence.assess(
            output.user_message,
            request.customer_query,
            [*request.documents, *synthetic],
            conf_config,
        )

        recheck_count = 0
        action = "pass"
        if confidence.should_recheck:
            recheck_count = 1
            output, conversation, confidence, improved = await self._recheck(
                request, conversation, output, confidence, synthetic, conf_config, replan
            )
            action = "recheck_improved" if improved else "recheck_kept"

        metadata: dict[str, Any] = {"confidence": confidence.as_metadata()}
        if confidence.tier is ConfidenceTier.LOW:
            fallback = await self._translator.translate(conf_config.fallback_message, request.language)
            if conf_config.enable_escalation:
                action = "escalate"
                output = HandoffStep(
                    handoff=HandoffDetails(
                        reason=LOW_CONFIDENCE_REASON,
                        fields={
                            "confidence_score": round(confidence.score, 4),
                            "confidence_tier": confidence.tier.value,
                        },
                    ),
                    user_message=fallback,
                    rationale=output.rationale,
                )
            else:
                action = "fallback"
                metadata["original_message"] = output.user_message
                output = RespondStep(user_message=fallback, rationale=output.rationale)

        conversation = conversation.with_context(
            conversation.context.with_confidence_entry(
                ConfidenceLogEntry(
                    turn=turn,
                    score=confidence.score,
                    tier=confidence.tier,
                    breakdown=confidence.breakdown,
                    documents_used=confidence.documents_used,
                    recheck_attempted=recheck_count > 0,
                    recheck_count=recheck_count,
                    action=action,
                    details=confidence.details,
                )
            )
        )
        metrics.CONFIDENCE_SCORE.observe(confidence.score)
        metrics.GUARDRAIL_ACTIONS.labels(stage="confidence", action=action).inc()
        logger.info(
            "confidence_decision",
            score=round(confidence.score, 4),
            tier=confidence.tier.value,
            action=action,
            recheck_count=recheck_count,
        )

        return GuardrailOutcome(
            output=output,
            conversation=conversation,
            action=action,
            metadata=metadata,
            company_interest_checked=True,
            confidence_checked=True,
            recheck_count=recheck_count,
        )

    async def _recheck(
        self,
        request: GuardrailRequest,
        conversation: Conversation,
        output: AskStep | RespondStep,
        confidence: ConfidenceAssessment,
        synthetic: list[EvidenceDocument],
        config: ConfidenceConfig,
        replan: Replanner,
    ) -> tuple[AskStep | RespondStep, Conversation, ConfidenceAssessment, bool]:
        """Retry once with relaxed retrieval on a copy of the document set.

        The copy replaces the conversation only when the new reply scores
        strictly higher; otherwise the original reply and documents stand.
        """
        result = await self._retriever.retrieve(
            conversation.organization_id,
            request.messages,
            top_k=config.recheck.max_documents,
            similarity_threshold=config.recheck.similarity_threshold,
        )
        candidate, added = self._retriever.attach(conversation, result)
        documents = await self._retriever.load(candidate)

        try:
            new_output = await replan(documents)
        except (InvalidPlannerOutput, ProviderError) as e:
            logger.info("recheck_replan_failed", error=str(e))
            return output, conversation, confidence, False

        if not isinstance(new_output, RespondStep):
            logger.info("recheck_replan_not_a_reply", step=new_output.step)
            return output, conversation, confidence, False

        rescored = await self._confidence.assess(
            new_output.user_message,
            request.customer_query,
            [*documents, *synthetic],
            config,
        )
        if rescored.score > confidence.score:
            logger.info(
                "recheck_improved",
                before=round(confidence.score, 4),
                after=round(rescored.score, 4),
                documents_added=len(added),
            )
            return new_output, candidate, rescored, True

        logger.info(
            "recheck_reverted",
            before=round(confidence.score, 4),
            after=round(rescored.score, 4),
            documents_discarded=len(added),
        )
        return output, conversation, confidence, False
