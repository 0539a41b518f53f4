"""Language-model configuration per pipeline step."""

from pydantic import BaseModel, Field


class StepModelConfig(BaseModel):
    """Model selection for one pipeline step."""

    model: str = Field(
        default="mock/default",
        description="Primary model string, e.g. 'openai/gpt-4o-mini'",
    )
    fallback_models: list[str] = Field(
        default_factory=list,
        description="Models tried in order when the primary fails",
    )
    timeout: float = Field(default=60.0, gt=0, description="Request timeout in seconds")


class ProvidersConfig(BaseModel):
    """One model configuration per gateway-calling step."""

    perception: StepModelConfig = Field(default_factory=StepModelConfig)
    agent_selection: StepModelConfig = Field(default_factory=StepModelConfig)
    closure: StepModelConfig = Field(default_factory=StepModelConfig)
    title: StepModelConfig = Field(default_factory=StepModelConfig)
    playbook_selection: StepModelConfig = Field(default_factory=StepModelConfig)
    planner: StepModelConfig = Field(default_factory=StepModelConfig)
    company_interest: StepModelConfig = Field(default_factory=StepModelConfig)
    confidence: StepModelConfig = Field(default_factory=StepModelConfig)
    translation: StepModelConfig = Field(default_factory=StepModelConfig)

    def steps(self) -> dict[str, StepModelConfig]:
        """Map step name to its model configuration."""
        return {name: getattr(self, name) for name in type(self).model_fields}
