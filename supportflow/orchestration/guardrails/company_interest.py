"""Stage 1 guardrail: keeps replies within the organization's interests."""

from pydantic import BaseModel

from supportflow.config.models.guardrails import CompanyInterestConfig
from supportflow.domain import Message, Severity, ViolationType
from supportflow.observability.logging import get_logger
from supportflow.orchestration.guardrails.models import CompanyInterestAssessment
from supportflow.orchestration.history import format_transcript
from supportflow.orchestration.template_loader import TemplateLoader, get_template_loader
from supportflow.providers.llm import LLMExecutor, ProviderError

logger = get_logger(__name__)

HISTORY_WINDOW = 5


class CompanyInterestJudgement(BaseModel):
    """Schema the judging model answers with."""

    violation_type: ViolationType
    severity: Severity
    is_clarification: bool = False
    requires_fact_check: bool = True
    reasoning: str = ""


def should_block(
    violation_type: ViolationType,
    severity: Severity,
    config: CompanyInterestConfig,
    *,
    is_clarification: bool = False,
) -> bool:
    """Apply the blocking policy to a judgement.

    Critical violations always block; otherwise the per-type switch decides.
    Clarifying questions pass when allowed.
    """
    if violation_type is ViolationType.NONE:
        return False
    if severity is Severity.CRITICAL:
        return True
    if is_clarification and config.allow_clarifications:
        return False
    if violation_type is ViolationType.OFF_TOPIC:
        return config.block_off_topic
    if violation_type is ViolationType.COMPETITOR_INFO:
        return config.block_competitor_info
    return config.block_fabrications


class CompanyInterestGuardrail:
    """Judges whether a reply is off-topic, promotes competitors or invents facts.

    The model also decides whether the reply makes factual claims that the
    confidence check must verify. A model failure lets the reply through
    but still requires that check.
    """

    def __init__(self, executor: LLMExecutor, templates: TemplateLoader | None = None) -> None:
        self._executor = executor
        self._templates = templates or get_template_loader()

    async def check(
        self,
        response: str,
        customer_query: str,
        *,
        history: list[Message],
        company_domain: str,
        has_documents: bool,
        has_tool_results: bool,
        config: CompanyInterestConfig,
    ) -> CompanyInterestAssessment:
        if not config.enabled:
            return CompanyInterestAssessment(
                passed=True,
                requires_fact_check=False,
                reasoning="disabled",
            )

        prompt = self._templates.render(
            "company_interest.jinja2",
            response=response,
            customer_query=customer_query,
            transcript=format_transcript(history, limit=HISTORY_WINDOW),
            company_domain=company_domain,
            has_documents=has_documents,
            has_tool_results=has_tool_results,
            violation_types=[v.value for v in ViolationType],
            severities=[s.value for s in Severity],
        )
        try:
            judgement, _ = await self._executor.generate_structured(
                prompt=prompt,
                schema=CompanyInterestJudgement,
            )
        except ProviderError as e:
            logger.warning("company_interest_check_failed", error=str(e))
            return CompanyInterestAssessment(
                passed=True,
                requires_fact_check=True,
                reasoning="check unavailable",
            )

        block = should_block(
            judgement.violation_type,
            judgement.severity,
            config,
            is_clarification=judgement.is_clarification,
        )
        return CompanyInterestAssessment(
            passed=not block,
            violation_type=judgement.violation_type,
            severity=judgement.severity,
            should_block=block,
            requires_fact_check=judgement.requires_fact_check and not block,
            reasoning=judgement.reasoning,
        )
