from abc import ABC, abstractmethod

from crm_workflows.domain.workflow.entities.workflow import WorkflowDefinition


class IWorkflowRepository(ABC):
    """
    Interface for persistence of published workflow definitions.
    """

    @abstractmethod
    async def save(self, workflow: WorkflowDefinition) -> None:
        """Persists a workflow definition, replacing any previous version with the same id."""
        pass

    @abstractmethod
    async def get_by_id(self, workflow_id: str) -> WorkflowDefinition | None:
        pass

    @abstractmethod
    async def list_active(self) -> list[WorkflowDefinition]:
        """Returns every workflow with isActive set, for trigger matching."""
        pass
