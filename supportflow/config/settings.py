"""Root settings model for SupportFlow configuration."""

from typing import Any, Literal

from pydantic import Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from supportflow.config.models.guardrails import GuardrailsConfig
from supportflow.config.models.observability import ObservabilityConfig
from supportflow.config.models.orchestration import (
    HandoffConfig,
    LockConfig,
    NotifierConfig,
    PlannerConfig,
    RetrievalConfig,
    SchedulerConfig,
    ToolLoopConfig,
)
from supportflow.config.models.providers import ProvidersConfig

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

_toml_config: dict[str, Any] = {}


def set_toml_config(config: dict[str, Any]) -> None:
    """Set the TOML configuration to be used by Settings."""
    global _toml_config
    _toml_config = config


class TomlConfigSettingsSource(PydanticBaseSettingsSource):
    """Settings source that reads from the loaded TOML configuration."""

    def get_field_value(
        self, field: Any, field_name: str  # noqa: ARG002
    ) -> tuple[Any, str, bool]:
        value = _toml_config.get(field_name)
        return value, field_name, value is not None

    def __call__(self) -> dict[str, Any]:
        return _toml_config.copy()


class Settings(BaseSettings):
    """Root configuration object containing all nested configuration sections.

    Configuration is loaded in this order:
    1. Pydantic model defaults (in code)
    2. config/default.toml (base configuration)
    3. config/{SUPPORTFLOW_ENV}.toml (environment overrides)
    4. SUPPORTFLOW_* environment variables (runtime overrides)
    """

    model_config = SettingsConfigDict(
        env_prefix="SUPPORTFLOW_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(default="supportflow", description="Application name for logging")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: LogLevel = Field(default="INFO", description="Logging level")

    scheduler: SchedulerConfig = Field(
        default_factory=SchedulerConfig,
        description="Scheduler tick configuration",
    )
    lock: LockConfig = Field(
        default_factory=LockConfig,
        description="Conversation lock configuration",
    )
    tool_loop: ToolLoopConfig = Field(
        default_factory=ToolLoopConfig,
        description="Tool-calling loop configuration",
    )
    retrieval: RetrievalConfig = Field(
        default_factory=RetrievalConfig,
        description="Playbook and document retrieval configuration",
    )
    planner: PlannerConfig = Field(
        default_factory=PlannerConfig,
        description="Execution planner configuration",
    )
    guardrails: GuardrailsConfig = Field(
        default_factory=GuardrailsConfig,
        description="Response guardrail configuration",
    )
    handoff: HandoffConfig = Field(
        default_factory=HandoffConfig,
        description="Human handoff configuration",
    )
    providers: ProvidersConfig = Field(
        default_factory=ProvidersConfig,
        description="Language-model configuration per step",
    )
    notifier: NotifierConfig = Field(
        default_factory=NotifierConfig,
        description="Status-change notifier configuration",
    )
    observability: ObservabilityConfig = Field(
        default_factory=ObservabilityConfig,
        description="Observability configuration",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        file_secret_settings: PydanticBaseSettingsSource,  # noqa: ARG003
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Priority: constructor arguments, then env vars, then TOML files."""
        return (
            init_settings,
            env_settings,
            TomlConfigSettingsSource(settings_cls),
        )
