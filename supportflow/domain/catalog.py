"""Organization-scoped configuration entities: agents, playbooks, documents."""

from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field


def _new_id() -> str:
    return str(uuid4())


class Agent(BaseModel):
    """A bot persona that answers on behalf of the organization."""

    id: str = Field(default_factory=_new_id)
    organization_id: str
    name: str
    description: str = ""
    tone: str | None = None
    avoid: str | None = None
    instructions: str | None = None
    triggers: list[str] = Field(
        default_factory=list,
        description="Situations this agent should handle",
    )
    active: bool = True


class Playbook(BaseModel):
    """A scripted flow with instructions, tools and reference documents."""

    id: str = Field(default_factory=_new_id)
    organization_id: str
    title: str
    description: str = ""
    trigger: str = Field(default="", description="When the playbook applies")
    instructions: str = ""
    required_fields: list[str] = Field(default_factory=list)
    tool_names: list[str] = Field(
        default_factory=list,
        description="Tools enabled while the playbook is active",
    )
    document_ids: list[str] = Field(default_factory=list)
    active: bool = True


class Document(BaseModel):
    """A knowledge document available to retrieval."""

    id: str = Field(default_factory=_new_id)
    organization_id: str
    title: str | None = None
    filename: str | None = None
    source: str | None = None
    content: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def display_title(self) -> str:
        return self.title or self.filename or f"Document {self.id}"


class HumanAgent(BaseModel):
    """A human team member who can take over conversations."""

    id: str = Field(default_factory=_new_id)
    organization_id: str
    name: str
    online: bool = False


class OrganizationSettings(BaseModel):
    """Per-organization overrides and handoff instructions.

    Guardrail override dicts are deep-merged over the configured defaults.
    """

    organization_id: str
    company_name: str | None = None
    company_domain: str = Field(
        default="general customer support",
        description="What the organization does, for the company-interest check",
    )
    default_language: str = "en"
    company_interest_guardrail: dict[str, Any] = Field(default_factory=dict)
    confidence_guardrail: dict[str, Any] = Field(default_factory=dict)
    handoff_available_instructions: str | None = None
    handoff_unavailable_instructions: str | None = None
