import json

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from crm_workflows.adapters.secondary.persistence.models import WorkflowDefinitionModel
from crm_workflows.domain.workflow.entities.workflow import WorkflowDefinition
from crm_workflows.ports.secondary.workflow_repository import IWorkflowRepository


class PostgresWorkflowRepository(IWorkflowRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def save(self, workflow: WorkflowDefinition) -> None:
        model = WorkflowDefinitionModel(
            id=workflow.id,
            name=workflow.name,
            is_active=workflow.is_active,
            definition_json=json.dumps(workflow.to_dict()),
            created_at=workflow.created_at,
        )
        await self._session.merge(model)
        await self._session.commit()

    async def get_by_id(self, workflow_id: str) -> WorkflowDefinition | None:
        result = await self._session.execute(
            select(WorkflowDefinitionModel).where(WorkflowDefinitionModel.id == workflow_id)
        )
        model = result.scalar_one_or_none()

        if not model:
            return None

        return self._to_entity(model)

    async def list_active(self) -> list[WorkflowDefinition]:
        result = await self._session.execute(
            select(WorkflowDefinitionModel).where(WorkflowDefinitionModel.is_active.is_(True))
        )
        return [self._to_entity(model) for model in result.scalars().all()]

    @staticmethod
    def _to_entity(model: WorkflowDefinitionModel) -> WorkflowDefinition:
        data = json.loads(model.definition_json)
        data["id"] = model.id
        data["isActive"] = model.is_active
        workflow = WorkflowDefinition.from_dict(data)
        workflow.created_at = model.created_at
        return workflow
