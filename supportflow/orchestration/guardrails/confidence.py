"""Stage 2 guardrail: scores how well a reply is grounded in evidence."""

from pydantic import BaseModel, Field

from supportflow.config.models.guardrails import ConfidenceConfig
from supportflow.domain import ConfidenceBreakdown, ConfidenceTier
from supportflow.observability.logging import get_logger
from supportflow.orchestration.guardrails.models import ConfidenceAssessment
from supportflow.orchestration.retrieval.documents import EvidenceDocument
from supportflow.orchestration.template_loader import TemplateLoader, get_template_loader
from supportflow.providers.llm import LLMExecutor, ProviderError

logger = get_logger(__name__)

GROUNDING_ON_ERROR = 0.3
CERTAINTY_ON_ERROR = 0.5


class GroundingScore(BaseModel):
    score: float = Field(description="0 = unsupported, 1 = fully supported by the documents")
    reasoning: str = ""


class CertaintyScore(BaseModel):
    score: float = Field(description="0 = hedging or speculative, 1 = definite")
    reasoning: str = ""


def clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def tier_for(score: float, config: ConfidenceConfig) -> ConfidenceTier:
    if score >= config.high_threshold:
        return ConfidenceTier.HIGH
    if score >= config.medium_threshold:
        return ConfidenceTier.MEDIUM
    return ConfidenceTier.LOW


def retrieval_score(documents: list[EvidenceDocument]) -> float:
    """Mean similarity of the evidence, 0 without evidence."""
    if not documents:
        return 0.0
    return clamp(sum(d.similarity for d in documents) / len(documents))


def describe(breakdown: ConfidenceBreakdown, score: float, config: ConfidenceConfig) -> str:
    return (
        f"Overall: {score:.0%} | "
        f"Grounding: {breakdown.grounding:.0%} (weight {config.grounding_weight:.0%}), "
        f"Retrieval: {breakdown.retrieval:.0%} (weight {config.retrieval_weight:.0%}), "
        f"Certainty: {breakdown.certainty:.0%} (weight {config.certainty_weight:.0%})"
    )


class ConfidenceGuardrail:
    """Weighted blend of grounding, retrieval quality and answer certainty."""

    def __init__(self, executor: LLMExecutor, templates: TemplateLoader | None = None) -> None:
        self._executor = executor
        self._templates = templates or get_template_loader()

    async def assess(
        self,
        response: str,
        customer_query: str,
        documents: list[EvidenceDocument],
        config: ConfidenceConfig,
    ) -> ConfidenceAssessment:
        grounding = await self._grounding(response, customer_query, documents)
        certainty = await self._certainty(response, customer_query)
        breakdown = ConfidenceBreakdown(
            grounding=grounding,
            retrieval=retrieval_score(documents),
            certainty=certainty,
        )
        score = clamp(
            breakdown.grounding * config.grounding_weight
            + breakdown.retrieval * config.retrieval_weight
            + breakdown.certainty * config.certainty_weight
        )
        tier = tier_for(score, config)

        assessment = ConfidenceAssessment(
            score=score,
            tier=tier,
            breakdown=breakdown,
            documents_used=len(documents),
            should_recheck=tier is ConfidenceTier.MEDIUM and config.enable_recheck,
            should_escalate=tier is ConfidenceTier.LOW and config.enable_escalation,
            details=describe(breakdown, score, config),
        )
        logger.debug(
            "confidence_assessed",
            score=round(score, 4),
            tier=tier.value,
            documents_used=len(documents),
        )
        return assessment

    async def _grounding(
        self,
        response: str,
        customer_query: str,
        documents: list[EvidenceDocument],
    ) -> float:
        if not documents:
            return 0.0
        prompt = self._templates.render(
            "grounding.jinja2",
            response=response,
            customer_query=customer_query,
            documents=documents,
        )
        try:
            result, _ = await self._executor.generate_structured(prompt=prompt, schema=GroundingScore)
        except ProviderError as e:
            logger.warning("grounding_score_failed", error=str(e))
            return GROUNDING_ON_ERROR
        return clamp(result.score)

    async def _certainty(self, response: str, customer_query: str) -> float:
        prompt = self._templates.render(
            "certainty.jinja2",
            response=response,
            customer_query=customer_query,
        )
        try:
            result, _ = await self._executor.generate_structured(prompt=prompt, schema=CertaintyScore)
        except ProviderError as e:
            logger.warning("certainty_score_failed", error=str(e))
            return CERTAINTY_ON_ERROR
        return clamp(result.score)
