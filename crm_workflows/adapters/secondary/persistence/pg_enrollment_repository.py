import json
from datetime import datetime

from sqlalchemy import select
from sqlalchemy import update as sql_update
from sqlalchemy.ext.asyncio import AsyncSession

from crm_workflows.adapters.secondary.persistence.models import EnrollmentModel
from crm_workflows.domain.workflow.entities.enrollment import WorkflowEnrollment
from crm_workflows.domain.workflow.exceptions import EnrollmentNotFoundError
from crm_workflows.domain.workflow.value_objects.enrollment_status import EnrollmentStatus
from crm_workflows.ports.secondary.enrollment_repository import IEnrollmentRepository

# Wire counter name -> column incremented in place
_COUNTERS = {
    "errorCount": "error_count",
    "retryCount": "retry_count",
}


class PostgresEnrollmentRepository(IEnrollmentRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def save(self, enrollment: WorkflowEnrollment) -> None:
        model = EnrollmentModel(
            id=enrollment.id,
            workflow_id=enrollment.workflow_id,
            target_type=enrollment.target_type.value,
            target_id=enrollment.target_id,
        )
        self._apply(model, enrollment.to_dict())
        self._session.add(model)
        await self._session.commit()

    async def get_by_id(self, enrollment_id: str) -> WorkflowEnrollment | None:
        model = await self._get_model(enrollment_id)
        if not model:
            return None
        return self._to_entity(model)

    async def update(self, enrollment_id: str, patch: dict) -> None:
        model = await self._get_model(enrollment_id, for_update=True)
        if not model:
            raise EnrollmentNotFoundError(enrollment_id)
        document = json.loads(model.document)
        document.update(patch)
        self._apply(model, document, patch)
        await self._session.commit()

    async def increment(self, enrollment_id: str, field: str, amount: int = 1) -> None:
        column_name = _COUNTERS.get(field)
        if column_name is None:
            raise ValueError(f"Field '{field}' is not an enrollment counter")
        column = getattr(EnrollmentModel, column_name)
        await self._session.execute(
            sql_update(EnrollmentModel)
            .where(EnrollmentModel.id == enrollment_id)
            .values({column_name: column + amount})
        )
        await self._session.commit()

    async def find_due_waiting(self, now: datetime, limit: int) -> list[WorkflowEnrollment]:
        result = await self._session.execute(
            select(EnrollmentModel)
            .where(
                EnrollmentModel.status == EnrollmentStatus.WAITING.value,
                EnrollmentModel.next_execution_at <= now,
            )
            .order_by(EnrollmentModel.next_execution_at)
            .limit(limit)
        )
        return [self._to_entity(model) for model in result.scalars().all()]

    async def exists_for_target(self, workflow_id: str, target_type: str, target_id: str) -> bool:
        result = await self._session.execute(
            select(EnrollmentModel.id)
            .where(
                EnrollmentModel.workflow_id == workflow_id,
                EnrollmentModel.target_type == target_type,
                EnrollmentModel.target_id == target_id,
            )
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def _get_model(self, enrollment_id: str, for_update: bool = False) -> EnrollmentModel | None:
        query = select(EnrollmentModel).where(EnrollmentModel.id == enrollment_id)
        if for_update:
            query = query.with_for_update()
        result = await self._session.execute(query)
        return result.scalar_one_or_none()

    @staticmethod
    def _apply(model: EnrollmentModel, document: dict, patch: dict | None = None) -> None:
        patch = document if patch is None else patch
        for wire_name, column_name in _COUNTERS.items():
            if wire_name in patch:
                setattr(model, column_name, int(patch[wire_name] or 0))
            # Columns are authoritative for counters
            document[wire_name] = getattr(model, column_name) or 0

        model.status = document["status"]
        model.current_node_id = document.get("currentNodeId") or ""
        next_execution_at = document.get("nextExecutionAt")
        model.next_execution_at = datetime.fromisoformat(next_execution_at) if next_execution_at else None
        model.document = json.dumps(document, default=str)

    @staticmethod
    def _to_entity(model: EnrollmentModel) -> WorkflowEnrollment:
        document = json.loads(model.document)
        for wire_name, column_name in _COUNTERS.items():
            document[wire_name] = getattr(model, column_name)
        return WorkflowEnrollment.from_dict(document)
