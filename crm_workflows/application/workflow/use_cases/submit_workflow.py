from crm_workflows.domain.workflow.entities.workflow import WorkflowDefinition
from crm_workflows.ports.secondary.workflow_repository import IWorkflowRepository


class SubmitWorkflowUseCase:
    """
    Use case for publishing a workflow definition.

    Responsibilities:
    1. Parse the wire definition into typed nodes.
    2. Validate the graph (start node, successor references, branches, action configs).
    3. Persist the definition so the engine and trigger matcher can load it.
    """

    def __init__(self, workflow_repository: IWorkflowRepository):
        self._workflow_repository = workflow_repository

    async def execute(self, definition: dict) -> WorkflowDefinition:
        workflow = WorkflowDefinition.from_dict(definition)
        workflow.validate()
        await self._workflow_repository.save(workflow)
        return workflow


class SetWorkflowActiveUseCase:
    def __init__(self, workflow_repository: IWorkflowRepository):
        self._workflow_repository = workflow_repository

    async def execute(self, workflow_id: str, is_active: bool) -> WorkflowDefinition:
        """
        Activates or deactivates a workflow. Enrollments of a deactivated
        workflow complete the next time the engine runs them.
        """
        workflow = await self._workflow_repository.get_by_id(workflow_id)
        if not workflow:
            from crm_workflows.domain.workflow.exceptions import WorkflowNotFoundError
            raise WorkflowNotFoundError(workflow_id)

        workflow.is_active = is_active
        await self._workflow_repository.save(workflow)
        return workflow
