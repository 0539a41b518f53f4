"""Response guardrail configuration models."""

from pydantic import BaseModel, Field


class CompanyInterestConfig(BaseModel):
    """Stage 1 guardrail: protects the organization's interests."""

    enabled: bool = Field(default=True, description="Run the company-interest check")
    block_off_topic: bool = Field(default=True, description="Block off-topic replies")
    block_competitor_info: bool = Field(
        default=True,
        description="Block replies promoting competitors",
    )
    block_fabrications: bool = Field(
        default=True,
        description="Block invented products or policies",
    )
    allow_clarifications: bool = Field(
        default=True,
        description="Let clarifying questions through",
    )
    fallback_message: str = Field(
        default=(
            "I'm not able to help with that here. "
            "Let me connect you with a team member who can assist you."
        ),
        description="Message shown when a reply is blocked",
    )


class RecheckConfig(BaseModel):
    """Relaxed retrieval settings used by the single confidence recheck."""

    max_documents: int = Field(default=10, gt=0, description="Relaxed top-k")
    similarity_threshold: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Relaxed similarity threshold",
    )


class ConfidenceConfig(BaseModel):
    """Stage 2 guardrail: fact-grounding confidence."""

    enabled: bool = Field(default=True, description="Run the confidence check")
    high_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    medium_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    grounding_weight: float = Field(default=0.6, ge=0.0, le=1.0)
    retrieval_weight: float = Field(default=0.3, ge=0.0, le=1.0)
    certainty_weight: float = Field(default=0.1, ge=0.0, le=1.0)
    enable_recheck: bool = Field(default=True, description="Recheck medium scores")
    enable_escalation: bool = Field(
        default=True,
        description="Hand off low scores instead of substituting the fallback",
    )
    tool_result_similarity: float = Field(
        default=0.95,
        ge=0.0,
        le=1.0,
        description="Similarity assigned to tool results used as evidence",
    )
    fallback_message: str = Field(
        default=(
            "I'm not confident I can provide an accurate answer to this question "
            "based on the available information. Let me connect you with a team "
            "member who can help."
        ),
        description="Message used when confidence is low",
    )
    recheck: RecheckConfig = Field(default_factory=RecheckConfig)


class GuardrailsConfig(BaseModel):
    """Both response guardrail stages."""

    company_interest: CompanyInterestConfig = Field(
        default_factory=CompanyInterestConfig,
    )
    confidence: ConfidenceConfig = Field(default_factory=ConfidenceConfig)
