"""OrganizationStore abstract interface."""

from abc import ABC, abstractmethod

from supportflow.domain import Agent, Document, HumanAgent, OrganizationSettings, Playbook


class OrganizationStore(ABC):
    """Read access to organization-scoped configuration.

    Every query is scoped by organization id; entities belonging to
    another organization are never returned.
    """

    @abstractmethod
    async def get_settings(self, organization_id: str) -> OrganizationSettings:
        """Organization settings, defaults when none are stored."""
        pass

    @abstractmethod
    async def list_active_agents(self, organization_id: str) -> list[Agent]:
        """Active bot agents in stable order."""
        pass

    @abstractmethod
    async def get_agent(self, organization_id: str, agent_id: str) -> Agent | None:
        pass

    @abstractmethod
    async def list_active_playbooks(self, organization_id: str) -> list[Playbook]:
        """Active playbooks in stable order."""
        pass

    @abstractmethod
    async def get_playbook(self, organization_id: str, playbook_id: str) -> Playbook | None:
        pass

    @abstractmethod
    async def get_documents(
        self,
        organization_id: str,
        document_ids: list[str] | tuple[str, ...],
    ) -> list[Document]:
        """Documents by id, in the order requested, skipping unknown ids."""
        pass

    @abstractmethod
    async def list_online_human_agents(self, organization_id: str) -> list[HumanAgent]:
        pass
