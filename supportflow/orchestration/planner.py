"""Execution planner: decides the next step of the conversation."""

from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator

from supportflow.domain import Agent, Message, OrganizationSettings, PlanStep, Playbook
from supportflow.domain.message import customer_messages
from supportflow.errors import InvalidPlannerOutput
from supportflow.observability.logging import get_logger
from supportflow.orchestration.history import to_llm_history
from supportflow.orchestration.retrieval.documents import EvidenceDocument
from supportflow.orchestration.template_loader import TemplateLoader, get_template_loader
from supportflow.providers.llm import LLMExecutor

logger = get_logger(__name__)

LANGUAGE_NAMES = {
    "ar": "Arabic",
    "de": "German",
    "en": "English",
    "es": "Spanish",
    "fr": "French",
    "hi": "Hindi",
    "it": "Italian",
    "ja": "Japanese",
    "ko": "Korean",
    "nl": "Dutch",
    "pl": "Polish",
    "pt": "Portuguese",
    "ru": "Russian",
    "sv": "Swedish",
    "tr": "Turkish",
    "zh": "Chinese",
}


def language_name(code: str) -> str:
    return LANGUAGE_NAMES.get(code.lower(), code)


class ToolCall(BaseModel):
    name: str = Field(..., min_length=1)
    args: dict[str, Any] = Field(default_factory=dict)


class HandoffDetails(BaseModel):
    reason: str = ""
    fields: dict[str, Any] = Field(default_factory=dict)


class CloseDetails(BaseModel):
    reason: str = ""


class RawPlannerOutput(BaseModel):
    """Schema the planner model answers with.

    Only step and rationale are required here; per-step requirements are
    enforced when the output is parsed into a PlannerOutput.
    """

    step: PlanStep
    rationale: str
    user_message: str | None = None
    tool: ToolCall | None = None
    handoff: HandoffDetails | None = None
    close: CloseDetails | None = None


class _StepBase(BaseModel):
    rationale: str = ""


class _MessageStep(_StepBase):
    user_message: str

    @field_validator("user_message")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("user_message must not be empty")
        return value


class AskStep(_MessageStep):
    step: Literal["ASK"] = "ASK"


class RespondStep(_MessageStep):
    step: Literal["RESPOND"] = "RESPOND"


class CallToolStep(_StepBase):
    step: Literal["CALL_TOOL"] = "CALL_TOOL"
    tool: ToolCall
    user_message: str | None = None


class HandoffStep(_StepBase):
    step: Literal["HANDOFF"] = "HANDOFF"
    handoff: HandoffDetails
    user_message: str | None = None


class CloseStep(_StepBase):
    step: Literal["CLOSE"] = "CLOSE"
    close: CloseDetails
    user_message: str | None = None


PlannerOutput = Annotated[
    AskStep | RespondStep | CallToolStep | HandoffStep | CloseStep,
    Field(discriminator="step"),
]

_planner_output_adapter: TypeAdapter[PlannerOutput] = TypeAdapter(PlannerOutput)


def parse_planner_output(raw: RawPlannerOutput) -> PlannerOutput:
    """Validate per-step required fields.

    Raises:
        InvalidPlannerOutput: If the chosen step lacks what it needs
    """
    try:
        return _planner_output_adapter.validate_python(
            raw.model_dump(mode="json", exclude_none=True)
        )
    except ValidationError as e:
        raise InvalidPlannerOutput(f"{raw.step.value} output rejected: {e}") from e


class ExecutionPlanner:
    """Asks the model for the next step given the whole conversation.

    While the customer has sent only a few messages, the system prompt pins
    the reply language to the one detected by perception.
    """

    def __init__(
        self,
        executor: LLMExecutor,
        *,
        language_pin_max_customer_messages: int = 4,
        history_limit: int = 50,
        templates: TemplateLoader | None = None,
    ) -> None:
        self._executor = executor
        self._pin_threshold = language_pin_max_customer_messages
        self._history_limit = history_limit
        self._templates = templates or get_template_loader()

    def pinned_language(self, messages: list[Message], language: str | None) -> str | None:
        """Language name to pin, or None once enough customer messages exist."""
        if not language:
            return None
        if len(customer_messages(messages)) >= self._pin_threshold:
            return None
        return language_name(language)

    def build_system_prompt(
        self,
        messages: list[Message],
        *,
        documents: list[EvidenceDocument],
        agent: Agent | None = None,
        playbook: Playbook | None = None,
        settings: OrganizationSettings | None = None,
        enabled_tools: list[str] | tuple[str, ...] = (),
        language: str | None = None,
    ) -> str:
        return self._templates.render(
            "planner_system.jinja2",
            agent=agent,
            playbook=playbook,
            settings=settings,
            documents=documents,
            enabled_tools=list(enabled_tools),
            pinned_language=self.pinned_language(messages, language),
        )

    async def plan(
        self,
        messages: list[Message],
        *,
        documents: list[EvidenceDocument],
        agent: Agent | None = None,
        playbook: Playbook | None = None,
        settings: OrganizationSettings | None = None,
        enabled_tools: list[str] | tuple[str, ...] = (),
        language: str | None = None,
    ) -> PlannerOutput:
        """Produce the next step.

        Raises:
            InvalidPlannerOutput: If the step lacks its required fields
            ProviderError: If the model call failed or broke the schema
        """
        system_prompt = self.build_system_prompt(
            messages,
            documents=documents,
            agent=agent,
            playbook=playbook,
            settings=settings,
            enabled_tools=enabled_tools,
            language=language,
        )
        history = to_llm_history(messages[-self._history_limit:])
        prompt = self._templates.render("planner.jinja2", steps=[s.value for s in PlanStep])

        raw, _ = await self._executor.generate_structured(
            prompt=prompt,
            schema=RawPlannerOutput,
            system_prompt=system_prompt,
            history=history,
        )
        output = parse_planner_output(raw)
        logger.debug("planner_step_chosen", step=output.step, rationale=output.rationale)
        return output
