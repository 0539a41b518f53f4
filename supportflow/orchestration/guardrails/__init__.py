"""Response guardrails: company interest and fact-grounding confidence."""

from supportflow.orchestration.guardrails.company_interest import (
    CompanyInterestGuardrail,
    CompanyInterestJudgement,
    should_block,
)
from supportflow.orchestration.guardrails.confidence import (
    CertaintyScore,
    ConfidenceGuardrail,
    GroundingScore,
    tier_for,
)
from supportflow.orchestration.guardrails.models import (
    CompanyInterestAssessment,
    ConfidenceAssessment,
)
from supportflow.orchestration.guardrails.pipeline import (
    LOW_CONFIDENCE_REASON,
    GuardrailOutcome,
    GuardrailPipeline,
    GuardrailRequest,
    company_interest_config_for,
    confidence_config_for,
    tool_evidence,
)

__all__ = [
    "LOW_CONFIDENCE_REASON",
    "CertaintyScore",
    "CompanyInterestAssessment",
    "CompanyInterestGuardrail",
    "CompanyInterestJudgement",
    "ConfidenceAssessment",
    "ConfidenceGuardrail",
    "GroundingScore",
    "GuardrailOutcome",
    "GuardrailPipeline",
    "GuardrailRequest",
    "company_interest_config_for",
    "confidence_config_for",
    "should_block",
    "tier_for",
    "tool_evidence",
]
