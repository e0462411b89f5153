from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from crm_workflows.adapters.secondary.memory.in_memory_store import (
    InMemoryEnrollmentRepository,
    InMemoryMessageBroker,
    InMemoryStateStore,
)
from crm_workflows.adapters.secondary.workers.resumer import ResumerRunner
from crm_workflows.application.workflow.use_cases.run_enrollment import RunOutcome
from crm_workflows.domain.workflow.entities.enrollment import ExecutionPathEntry, WorkflowEnrollment
from crm_workflows.domain.workflow.value_objects.enrollment_status import EnrollmentStatus
from crm_workflows.ports.secondary.message_broker import EnrollmentSignal
from crm_workflows.worker import EngineWorkerRunner


class StopLoop(BaseException):
    """Ends a runner loop from inside a mocked collaborator."""


def session_factory():
    factory = MagicMock()
    factory.return_value.__aenter__.return_value = AsyncMock()
    return factory


class RecordingBroker(InMemoryMessageBroker):
    def __init__(self):
        super().__init__()
        self.acked: list[str] = []

    async def acknowledge_signal(self, message_id: str) -> None:
        self.acked.append(message_id)
        await super().acknowledge_signal(message_id)


@pytest.fixture
def broker():
    return RecordingBroker()


@pytest.fixture
def state_store():
    return InMemoryStateStore()


def worker_with(broker, state_store, engine, repository=None) -> EngineWorkerRunner:
    return EngineWorkerRunner(
        broker=broker,
        state_store=state_store,
        session_factory=session_factory(),
        email_transport=AsyncMock(),
        webhook_client=AsyncMock(),
        engine_factory=lambda session: (engine, repository or AsyncMock()),
    )


async def delivered(broker, enrollment_id: str, sequence: int) -> EnrollmentSignal:
    await broker.publish_signal(EnrollmentSignal(enrollment_id, sequence))
    (signal,) = await broker.consume_signals("engine_workers", "worker-1")
    return signal


class TestEngineWorker:
    @pytest.mark.asyncio
    async def test_runs_engine_and_marks_signal_processed(self, broker, state_store):
        engine = AsyncMock()
        engine.execute.return_value = RunOutcome.COMPLETED
        signal = await delivered(broker, "enr-1", 2)

        outcome = await worker_with(broker, state_store, engine).process_signal(signal)

        assert outcome == RunOutcome.COMPLETED
        engine.execute.assert_called_once_with("enr-1", 2)
        assert await state_store.is_processed("enr-1:2")
        assert broker.acked == [signal.stream_id]
        assert await state_store.acquire_lock("enrollment:enr-1") is True

    @pytest.mark.asyncio
    async def test_duplicate_signal_is_acked_without_running(self, broker, state_store):
        engine = AsyncMock()
        await state_store.mark_processed("enr-1:2")
        signal = await delivered(broker, "enr-1", 2)

        outcome = await worker_with(broker, state_store, engine).process_signal(signal)

        assert outcome is None
        engine.execute.assert_not_called()
        assert broker.acked == [signal.stream_id]

    @pytest.mark.asyncio
    async def test_locked_enrollment_is_skipped(self, broker, state_store):
        engine = AsyncMock()
        await state_store.acquire_lock("enrollment:enr-1")
        signal = await delivered(broker, "enr-1", 0)

        outcome = await worker_with(broker, state_store, engine).process_signal(signal)

        assert outcome is None
        engine.execute.assert_not_called()
        assert broker.acked == [signal.stream_id]
        assert not await state_store.is_processed("enr-1:0")

    @pytest.mark.asyncio
    async def test_yielded_run_publishes_continuation(self, broker, state_store):
        engine = AsyncMock()
        engine.execute.return_value = RunOutcome.YIELDED
        enrollment = WorkflowEnrollment.start("wf-1", "a", "deal", "deal-1")
        enrollment.id = "enr-1"
        enrollment.execution_path = [ExecutionPathEntry("a", datetime.now(timezone.utc))] * 100
        repository = AsyncMock()
        repository.get_by_id.return_value = enrollment
        signal = await delivered(broker, "enr-1", 0)

        outcome = await worker_with(broker, state_store, engine, repository).process_signal(signal)

        assert outcome == RunOutcome.YIELDED
        assert [(s.enrollment_id, s.sequence) for s in broker.queued] == [("enr-1", 100)]

    @pytest.mark.asyncio
    async def test_engine_error_leaves_signal_pending(self, broker, state_store):
        engine = AsyncMock()
        engine.execute.side_effect = ConnectionError("database unavailable")
        signal = await delivered(broker, "enr-1", 3)

        outcome = await worker_with(broker, state_store, engine).process_signal(signal)

        assert outcome is None
        assert broker.acked == []
        assert not await state_store.is_processed("enr-1:3")
        assert await state_store.acquire_lock("enrollment:enr-1") is True
        stalled = await broker.claim_stalled_signals("engine_workers", "resumer")
        assert [s.id for s in stalled] == ["enr-1:3"]

    @pytest.mark.asyncio
    async def test_run_loop_processes_batches(self, state_store):
        broker = AsyncMock()
        broker.consume_signals.side_effect = [
            [EnrollmentSignal("enr-1", 0, "1-0"), EnrollmentSignal("enr-2", 0, "2-0")],
            StopLoop(),
        ]
        engine = AsyncMock()
        engine.execute.return_value = RunOutcome.COMPLETED

        with pytest.raises(StopLoop):
            await worker_with(broker, state_store, engine).run()

        broker.create_consumer_groups.assert_called_once()
        assert engine.execute.call_count == 2
        assert broker.acknowledge_signal.call_count == 2

    @pytest.mark.asyncio
    async def test_run_loop_survives_broker_errors(self, state_store):
        broker = AsyncMock()
        broker.consume_signals.side_effect = [ConnectionError("redis down"), StopLoop()]

        with patch("crm_workflows.worker.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            with pytest.raises(StopLoop):
                await worker_with(broker, state_store, AsyncMock()).run()

        mock_sleep.assert_called_once()


class TestResumerRunner:
    @pytest.mark.asyncio
    async def test_resume_due_reactivates_waiting_enrollments(self, broker):
        repository = InMemoryEnrollmentRepository()
        enrollment = WorkflowEnrollment.start("wf-1", "follow-up", "deal", "deal-1")
        enrollment.status = EnrollmentStatus.WAITING
        enrollment.next_execution_at = datetime.now(timezone.utc) - timedelta(minutes=5)
        await repository.save(enrollment)

        with patch(
            "crm_workflows.adapters.secondary.workers.resumer.PostgresEnrollmentRepository",
            return_value=repository,
        ):
            resumed = await ResumerRunner(broker=broker, session_factory=session_factory()).resume_due()

        assert resumed == [enrollment.id]
        assert (await repository.get_by_id(enrollment.id)).status == EnrollmentStatus.ACTIVE
        assert [s.enrollment_id for s in broker.queued] == [enrollment.id]

    @pytest.mark.asyncio
    async def test_reclaim_stalled_republishes_at_current_sequence(self, broker):
        repository = InMemoryEnrollmentRepository()
        enrollment = WorkflowEnrollment.start("wf-1", "a", "deal", "deal-1")
        now = datetime.now(timezone.utc)
        enrollment.record_step(ExecutionPathEntry("a", now), "b", None, now)
        await repository.save(enrollment)
        signal = await delivered(broker, enrollment.id, 0)
        runner = ResumerRunner(broker=broker, session_factory=session_factory(), min_idle_seconds=1)

        with patch(
            "crm_workflows.adapters.secondary.workers.resumer.PostgresEnrollmentRepository",
            return_value=repository,
        ):
            reclaimed = await runner.reclaim_stalled()

        assert reclaimed == 1
        assert broker.acked == [signal.stream_id]
        assert [(s.enrollment_id, s.sequence) for s in broker.queued] == [(enrollment.id, 1)]

    @pytest.mark.asyncio
    async def test_reclaim_stalled_drops_signal_for_finished_enrollment(self, broker):
        repository = InMemoryEnrollmentRepository()
        enrollment = WorkflowEnrollment.start("wf-1", "a", "deal", "deal-1")
        enrollment.complete(datetime.now(timezone.utc))
        await repository.save(enrollment)
        signal = await delivered(broker, enrollment.id, 0)
        runner = ResumerRunner(broker=broker, session_factory=session_factory(), min_idle_seconds=1)

        with patch(
            "crm_workflows.adapters.secondary.workers.resumer.PostgresEnrollmentRepository",
            return_value=repository,
        ):
            reclaimed = await runner.reclaim_stalled()

        assert reclaimed == 1
        assert broker.acked == [signal.stream_id]
        assert broker.queued == []

    @pytest.mark.asyncio
    async def test_run_loop_keeps_going_after_cycle_error(self):
        runner = ResumerRunner(broker=AsyncMock(), session_factory=session_factory(), check_interval_seconds=0)

        with (
            patch.object(runner, "resume_due", side_effect=[RuntimeError("db down"), StopLoop()]) as resume_due,
            patch.object(runner, "reclaim_stalled", new_callable=AsyncMock),
        ):
            with pytest.raises(StopLoop):
                await runner.run()

        assert resume_due.call_count == 2
