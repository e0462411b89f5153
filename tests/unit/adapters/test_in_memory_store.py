from datetime import datetime, timedelta, timezone

import pytest

from crm_workflows.adapters.secondary.memory.in_memory_store import (
    InMemoryEnrollmentRepository,
    InMemoryMessageBroker,
    InMemoryRecordStore,
    InMemoryStateStore,
)
from crm_workflows.domain.workflow.entities.enrollment import WorkflowEnrollment
from crm_workflows.domain.workflow.exceptions import EnrollmentNotFoundError, TargetNotFoundError
from crm_workflows.domain.workflow.value_objects.enrollment_status import EnrollmentStatus
from crm_workflows.ports.secondary.message_broker import EnrollmentSignal

NOW = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def waiting(target_id: str, due: datetime) -> WorkflowEnrollment:
    enrollment = WorkflowEnrollment.start("wf-1", "delay", "deal", target_id)
    enrollment.status = EnrollmentStatus.WAITING
    enrollment.next_execution_at = due
    return enrollment


class TestInMemoryEnrollmentRepository:
    @pytest.mark.asyncio
    async def test_reads_are_isolated_from_stored_document(self):
        repo = InMemoryEnrollmentRepository()
        enrollment = WorkflowEnrollment.start("wf-1", "trigger", "deal", "deal-1", {"a": 1})
        await repo.save(enrollment)

        loaded = await repo.get_by_id(enrollment.id)
        loaded.context["a"] = 2

        assert (await repo.get_by_id(enrollment.id)).context == {"a": 1}

    @pytest.mark.asyncio
    async def test_update_and_increment(self):
        repo = InMemoryEnrollmentRepository()
        enrollment = WorkflowEnrollment.start("wf-1", "trigger", "deal", "deal-1")
        await repo.save(enrollment)

        await repo.update(enrollment.id, {"currentNodeId": "next"})
        await repo.increment(enrollment.id, "errorCount", 2)

        loaded = await repo.get_by_id(enrollment.id)
        assert loaded.current_node_id == "next"
        assert loaded.error_count == 2

    @pytest.mark.asyncio
    async def test_update_unknown_enrollment(self):
        with pytest.raises(EnrollmentNotFoundError):
            await InMemoryEnrollmentRepository().update("nope", {"status": "active"})

    @pytest.mark.asyncio
    async def test_find_due_waiting_orders_and_limits(self):
        repo = InMemoryEnrollmentRepository()
        late = waiting("deal-late", NOW - timedelta(minutes=1))
        early = waiting("deal-early", NOW - timedelta(hours=1))
        future = waiting("deal-future", NOW + timedelta(hours=1))
        for enrollment in (late, early, future):
            await repo.save(enrollment)

        due = await repo.find_due_waiting(NOW, limit=5)
        assert [e.target_id for e in due] == ["deal-early", "deal-late"]

        assert len(await repo.find_due_waiting(NOW, limit=1)) == 1


class TestInMemoryRecordStore:
    @pytest.mark.asyncio
    async def test_seeded_records(self):
        store = InMemoryRecordStore({"deals": {"deal-1": {"value": 100}}})

        assert await store.get("deals", "deal-1") == {"id": "deal-1", "value": 100}
        assert await store.get("deals", "missing") is None

    @pytest.mark.asyncio
    async def test_update_missing_record(self):
        with pytest.raises(TargetNotFoundError):
            await InMemoryRecordStore().update("contacts", "c-1", {"email": "x@example.com"})

    @pytest.mark.asyncio
    async def test_add_assigns_id(self):
        store = InMemoryRecordStore()

        record_id = await store.add("tasks", {"title": "Call"})

        assert store.list("tasks") == [{"id": record_id, "title": "Call"}]


class TestInMemoryMessageBroker:
    @pytest.mark.asyncio
    async def test_unacked_signals_can_be_reclaimed(self):
        broker = InMemoryMessageBroker()
        await broker.publish_signal(EnrollmentSignal("enr-1", 0))
        await broker.publish_signal(EnrollmentSignal("enr-2", 0))

        batch = await broker.consume_signals("engine_workers", "worker-1")
        await broker.acknowledge_signal(batch[0].stream_id)

        stalled = await broker.claim_stalled_signals("engine_workers", "resumer")
        assert [s.enrollment_id for s in stalled] == ["enr-2"]
        assert broker.queued == []


class TestInMemoryStateStore:
    @pytest.mark.asyncio
    async def test_lock_is_exclusive_until_released(self):
        store = InMemoryStateStore()

        assert await store.acquire_lock("enrollment:enr-1") is True
        assert await store.acquire_lock("enrollment:enr-1") is False
        await store.release_lock("enrollment:enr-1")
        assert await store.acquire_lock("enrollment:enr-1") is True
