import json
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from crm_workflows.adapters.secondary.persistence.models import RecordModel
from crm_workflows.domain.workflow.exceptions import TargetNotFoundError
from crm_workflows.ports.secondary.record_store import IRecordStore


class PostgresRecordStore(IRecordStore):
    """CRM records stored as JSON documents keyed by (collection, id)."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, collection: str, record_id: str) -> dict | None:
        model = await self._get_model(collection, record_id)
        if not model:
            return None
        data = json.loads(model.data)
        data.setdefault("id", model.id)
        return data

    async def add(self, collection: str, data: dict) -> str:
        record_id = str(data.get("id") or uuid4())
        self._session.add(
            RecordModel(collection=collection, id=record_id, data=json.dumps(data, default=str))
        )
        await self._session.commit()
        return record_id

    async def update(self, collection: str, record_id: str, patch: dict) -> None:
        model = await self._get_model(collection, record_id)
        if not model:
            raise TargetNotFoundError(collection, record_id)
        data = json.loads(model.data)
        data.update(patch)
        model.data = json.dumps(data, default=str)
        await self._session.commit()

    async def _get_model(self, collection: str, record_id: str) -> RecordModel | None:
        result = await self._session.execute(
            select(RecordModel).where(RecordModel.collection == collection, RecordModel.id == record_id)
        )
        return result.scalar_one_or_none()
