from crm_workflows.ports.secondary.record_store import IRecordStore
from crm_workflows.shared.clock import Clock, utc_now

ACTIVITIES_COLLECTION = "activities"


class ActivityLogger:
    """Writes the audit activities every mutating action leaves behind."""

    def __init__(self, record_store: IRecordStore, clock: Clock | None = None):
        self._record_store = record_store
        self._clock = clock or utc_now

    async def log(
        self,
        activity_type: str,
        description: str,
        record: dict,
        status: str = "completed",
        metadata: dict | None = None,
        target_type: str | None = None,
        target_id: str | None = None,
    ) -> str:
        return await self._record_store.add(
            ACTIVITIES_COLLECTION,
            {
                "type": activity_type,
                "description": description,
                "targetType": target_type or record.get("type") or "deal",
                "targetId": target_id or record.get("id"),
                "status": status,
                "metadata": metadata or {},
                "createdAt": self._clock().isoformat(),
                "source": "workflow",
            },
        )
