"""Guardrail assessment models."""

from pydantic import BaseModel, Field

from supportflow.domain import ConfidenceBreakdown, ConfidenceTier, Severity, ViolationType


class CompanyInterestAssessment(BaseModel):
    """Result of the company-interest check on a candidate reply."""

    passed: bool
    violation_type: ViolationType = ViolationType.NONE
    severity: Severity = Severity.NONE
    should_block: bool = False
    requires_fact_check: bool = True
    reasoning: str = ""


class ConfidenceAssessment(BaseModel):
    """Result of the fact-grounding confidence check on a candidate reply."""

    score: float = Field(ge=0.0, le=1.0)
    tier: ConfidenceTier
    breakdown: ConfidenceBreakdown
    documents_used: int = Field(default=0, ge=0)
    should_recheck: bool = False
    should_escalate: bool = False
    details: str = ""

    def as_metadata(self) -> dict:
        return {
            "score": round(self.score, 4),
            "tier": self.tier.value,
            "breakdown": self.breakdown.model_dump(),
            "documents_used": self.documents_used,
        }
