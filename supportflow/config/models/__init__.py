"""Configuration section models."""

from supportflow.config.models.guardrails import (
    CompanyInterestConfig,
    ConfidenceConfig,
    GuardrailsConfig,
    RecheckConfig,
)
from supportflow.config.models.observability import (
    LoggingConfig,
    MetricsConfig,
    ObservabilityConfig,
)
from supportflow.config.models.orchestration import (
    HandoffConfig,
    LockConfig,
    NotifierConfig,
    PlannerConfig,
    RetrievalConfig,
    SchedulerConfig,
    ToolLoopConfig,
)
from supportflow.config.models.providers import ProvidersConfig, StepModelConfig

__all__ = [
    "CompanyInterestConfig",
    "ConfidenceConfig",
    "GuardrailsConfig",
    "HandoffConfig",
    "LockConfig",
    "LoggingConfig",
    "MetricsConfig",
    "NotifierConfig",
    "ObservabilityConfig",
    "PlannerConfig",
    "ProvidersConfig",
    "RecheckConfig",
    "RetrievalConfig",
    "SchedulerConfig",
    "StepModelConfig",
    "ToolLoopConfig",
]
