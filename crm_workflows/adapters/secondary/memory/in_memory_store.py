"""In-process adapters for tests and the local demo. Nothing survives a restart."""

import asyncio
import copy
from collections import deque
from datetime import datetime
from uuid import uuid4

from crm_workflows.domain.workflow.entities.enrollment import WorkflowEnrollment
from crm_workflows.domain.workflow.entities.workflow import WorkflowDefinition
from crm_workflows.domain.workflow.exceptions import EnrollmentNotFoundError, TargetNotFoundError
from crm_workflows.domain.workflow.value_objects.enrollment_status import EnrollmentStatus
from crm_workflows.ports.secondary.email_transport import EmailMessage, IEmailTransport
from crm_workflows.ports.secondary.enrollment_repository import IEnrollmentRepository
from crm_workflows.ports.secondary.message_broker import EnrollmentSignal, IMessageBroker
from crm_workflows.ports.secondary.record_store import IRecordStore
from crm_workflows.ports.secondary.state_store import IStateStore
from crm_workflows.ports.secondary.workflow_repository import IWorkflowRepository


class InMemoryWorkflowRepository(IWorkflowRepository):
    def __init__(self) -> None:
        self._workflows: dict[str, dict] = {}

    async def save(self, workflow: WorkflowDefinition) -> None:
        self._workflows[workflow.id] = workflow.to_dict()

    async def get_by_id(self, workflow_id: str) -> WorkflowDefinition | None:
        data = self._workflows.get(workflow_id)
        return WorkflowDefinition.from_dict(data) if data else None

    async def list_active(self) -> list[WorkflowDefinition]:
        return [WorkflowDefinition.from_dict(d) for d in self._workflows.values() if d.get("isActive")]


class InMemoryEnrollmentRepository(IEnrollmentRepository):
    """
    Keeps enrollments as wire documents so every read returns a fresh
    aggregate, the way a database-backed repository would.
    """

    def __init__(self) -> None:
        self._documents: dict[str, dict] = {}

    async def save(self, enrollment: WorkflowEnrollment) -> None:
        self._documents[enrollment.id] = enrollment.to_dict()

    async def get_by_id(self, enrollment_id: str) -> WorkflowEnrollment | None:
        document = self._documents.get(enrollment_id)
        return WorkflowEnrollment.from_dict(copy.deepcopy(document)) if document else None

    async def update(self, enrollment_id: str, patch: dict) -> None:
        document = self._documents.get(enrollment_id)
        if document is None:
            raise EnrollmentNotFoundError(enrollment_id)
        document.update(copy.deepcopy(patch))

    async def increment(self, enrollment_id: str, field: str, amount: int = 1) -> None:
        document = self._documents.get(enrollment_id)
        if document is None:
            raise EnrollmentNotFoundError(enrollment_id)
        document[field] = int(document.get(field) or 0) + amount

    async def find_due_waiting(self, now: datetime, limit: int) -> list[WorkflowEnrollment]:
        due = [
            enrollment
            for enrollment in (WorkflowEnrollment.from_dict(copy.deepcopy(d)) for d in self._documents.values())
            if enrollment.status == EnrollmentStatus.WAITING and enrollment.is_due(now)
        ]
        due.sort(key=lambda e: e.next_execution_at)
        return due[:limit]

    async def exists_for_target(self, workflow_id: str, target_type: str, target_id: str) -> bool:
        return any(
            d["workflowId"] == workflow_id and d["targetType"] == target_type and d["targetId"] == target_id
            for d in self._documents.values()
        )

    def all(self) -> list[WorkflowEnrollment]:
        return [WorkflowEnrollment.from_dict(copy.deepcopy(d)) for d in self._documents.values()]


class InMemoryRecordStore(IRecordStore):
    def __init__(self, seed: dict[str, dict[str, dict]] | None = None) -> None:
        self._collections: dict[str, dict[str, dict]] = copy.deepcopy(seed) if seed else {}

    async def get(self, collection: str, record_id: str) -> dict | None:
        record = self._collections.get(collection, {}).get(record_id)
        if record is None:
            return None
        return {"id": record_id, **copy.deepcopy(record)}

    async def add(self, collection: str, data: dict) -> str:
        record_id = str(data.get("id") or uuid4())
        self._collections.setdefault(collection, {})[record_id] = copy.deepcopy(data)
        return record_id

    async def update(self, collection: str, record_id: str, patch: dict) -> None:
        record = self._collections.get(collection, {}).get(record_id)
        if record is None:
            raise TargetNotFoundError(collection, record_id)
        record.update(copy.deepcopy(patch))

    def list(self, collection: str) -> list[dict]:
        return [{"id": rid, **copy.deepcopy(r)} for rid, r in self._collections.get(collection, {}).items()]


class InMemoryMessageBroker(IMessageBroker):
    """Single-process queue; acknowledgements only drop the pending entry."""

    def __init__(self) -> None:
        self._queue: deque[EnrollmentSignal] = deque()
        self._pending: dict[str, EnrollmentSignal] = {}
        self._lock = asyncio.Lock()
        self._counter = 0

    async def create_consumer_groups(self) -> None:
        return None

    async def publish_signal(self, signal: EnrollmentSignal) -> str:
        async with self._lock:
            self._counter += 1
            stream_id = f"{self._counter}-0"
            self._queue.append(EnrollmentSignal(signal.enrollment_id, signal.sequence, stream_id, signal.retry))
            return stream_id

    async def consume_signals(
        self, consumer_group: str, consumer_name: str, count: int = 10, block_ms: int = 2000
    ) -> list[EnrollmentSignal]:
        async with self._lock:
            batch = []
            while self._queue and len(batch) < count:
                signal = self._queue.popleft()
                self._pending[signal.stream_id] = signal
                batch.append(signal)
            return batch

    async def acknowledge_signal(self, message_id: str) -> None:
        self._pending.pop(message_id, None)

    async def claim_stalled_signals(
        self, consumer_group: str, new_consumer: str, min_idle_ms: int = 300000, count: int = 10
    ) -> list[EnrollmentSignal]:
        return list(self._pending.values())[:count]

    @property
    def queued(self) -> list[EnrollmentSignal]:
        return list(self._queue)


class InMemoryStateStore(IStateStore):
    """Locks and processed keys without expiry."""

    def __init__(self) -> None:
        self._locks: set[str] = set()
        self._processed: set[str] = set()

    async def acquire_lock(self, key: str, ttl_seconds: int = 30) -> bool:
        if key in self._locks:
            return False
        self._locks.add(key)
        return True

    async def release_lock(self, key: str) -> None:
        self._locks.discard(key)

    async def is_processed(self, dedup_key: str) -> bool:
        return dedup_key in self._processed

    async def mark_processed(self, dedup_key: str, ttl_seconds: int = 0) -> None:
        self._processed.add(dedup_key)


class RecordingEmailTransport(IEmailTransport):
    """Collects messages instead of sending them."""

    def __init__(self) -> None:
        self.sent: list[EmailMessage] = []

    async def send(self, message: EmailMessage) -> None:
        self.sent.append(message)
