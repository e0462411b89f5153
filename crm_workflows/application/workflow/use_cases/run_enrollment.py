import logging
from dataclasses import dataclass
from enum import Enum

from crm_workflows.application.workflow.services.node_dispatcher import NodeDispatcher
from crm_workflows.domain.workflow.entities.enrollment import (
    RESULT_FAILED,
    RESULT_SUCCESS,
    ExecutionPathEntry,
    WorkflowEnrollment,
)
from crm_workflows.domain.workflow.exceptions import (
    LoopDetectedError,
    TargetNotFoundError,
    WorkflowException,
    WorkflowNotFoundError,
)
from crm_workflows.domain.workflow.value_objects.enrollment_status import EnrollmentStatus
from crm_workflows.domain.workflow.value_objects.nodes import ActionNode
from crm_workflows.ports.secondary.enrollment_repository import IEnrollmentRepository
from crm_workflows.ports.secondary.metrics import IMetrics
from crm_workflows.ports.secondary.record_store import IRecordStore
from crm_workflows.ports.secondary.workflow_repository import IWorkflowRepository
from crm_workflows.shared.clock import Clock, utc_now
from crm_workflows.shared.logger import bound_context

logger = logging.getLogger(__name__)


class RunOutcome(str, Enum):
    SKIPPED = "skipped"
    COMPLETED = "completed"
    WAITING = "waiting"
    YIELDED = "yielded"
    FAILED = "failed"


@dataclass(frozen=True)
class EngineLimits:
    max_nodes_per_execution: int = 100
    max_node_visits: int = 5
    debounce_seconds: float = 1.0


class RunEnrollmentUseCase:
    """
    Walks one enrollment through its workflow graph.

    Each invocation is a short unit of work: it loads the enrollment, its
    definition and target record, then executes nodes one at a time,
    persisting after every node. The walk stops when the graph ends, a delay
    pauses the enrollment, a node fails without an error route, or the node
    budget runs out (the enrollment stays active and the caller re-signals it).

    Invocations are safe to repeat:
        - Non-active enrollments are left alone.
        - Direct calls within the debounce window are dropped.
        - Queued calls carry the sequence they were emitted at; a mismatch
          means another run already moved the enrollment on.
    """

    def __init__(
        self,
        enrollment_repository: IEnrollmentRepository,
        workflow_repository: IWorkflowRepository,
        record_store: IRecordStore,
        dispatcher: NodeDispatcher,
        metrics: IMetrics | None = None,
        limits: EngineLimits | None = None,
        clock: Clock | None = None,
    ):
        self._enrollment_repository = enrollment_repository
        self._workflow_repository = workflow_repository
        self._record_store = record_store
        self._dispatcher = dispatcher
        self._metrics = metrics
        self._limits = limits or EngineLimits()
        self._clock = clock or utc_now

    async def execute(self, enrollment_id: str, expected_sequence: int | None = None) -> RunOutcome:
        with bound_context(enrollment_id=enrollment_id):
            return await self._execute(enrollment_id, expected_sequence)

    async def _execute(self, enrollment_id: str, expected_sequence: int | None) -> RunOutcome:
        enrollment = await self._enrollment_repository.get_by_id(enrollment_id)
        if enrollment is None:
            logger.warning(f"Enrollment {enrollment_id} not found")
            return RunOutcome.SKIPPED

        if enrollment.status != EnrollmentStatus.ACTIVE:
            return RunOutcome.SKIPPED

        if self._is_duplicate(enrollment, expected_sequence):
            logger.debug(f"Dropping duplicate run for enrollment {enrollment_id}")
            return RunOutcome.SKIPPED

        try:
            outcome = await self._run(enrollment)
        except WorkflowException as e:
            logger.warning(f"Enrollment {enrollment_id} failed: {e.message}")
            await self._fail(enrollment, e.message)
            outcome = RunOutcome.FAILED
        except Exception as e:
            logger.exception(f"Unexpected error running enrollment {enrollment_id}")
            await self._fail(enrollment, str(e) or type(e).__name__)
            outcome = RunOutcome.FAILED

        if self._metrics:
            self._metrics.record_enrollment_outcome(enrollment.workflow_id, outcome.value)
        return outcome

    def _is_duplicate(self, enrollment: WorkflowEnrollment, expected_sequence: int | None) -> bool:
        if expected_sequence is not None:
            return enrollment.sequence != expected_sequence

        if enrollment.last_executed_at is None:
            return False
        elapsed = (self._clock() - enrollment.last_executed_at).total_seconds()
        return elapsed < self._limits.debounce_seconds

    async def _run(self, enrollment: WorkflowEnrollment) -> RunOutcome:
        workflow = await self._workflow_repository.get_by_id(enrollment.workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(enrollment.workflow_id)

        if not workflow.is_active:
            logger.info(f"Workflow {workflow.id} is inactive; completing enrollment {enrollment.id}")
            await self._enrollment_repository.update(enrollment.id, enrollment.complete(self._clock()))
            return RunOutcome.COMPLETED

        target_type = enrollment.target_type
        record = await self._record_store.get(target_type.collection, enrollment.target_id)
        if record is None:
            raise TargetNotFoundError(target_type.value, enrollment.target_id)
        record = {**record, "id": enrollment.target_id, "type": target_type.value}

        executed = 0
        while executed < self._limits.max_nodes_per_execution:
            if enrollment.has_finished_walk:
                break

            node = workflow.get_node(enrollment.current_node_id)

            visits = enrollment.visit_count(node.id)
            if visits > self._limits.max_node_visits:
                raise LoopDetectedError(node.id, visits)

            result = await self._dispatcher.dispatch(node, record, enrollment.context)
            now = self._clock()
            entry = ExecutionPathEntry(
                node_id=node.id,
                timestamp=now,
                result=RESULT_SUCCESS if result.success else RESULT_FAILED,
                error=result.error,
            )

            if not result.success:
                error_next_id = node.error_next_id if isinstance(node, ActionNode) else None
                if not error_next_id:
                    # Keep the failed node current so a manual retry re-runs it
                    patch = enrollment.record_step(entry, node.id, result.context_delta, now)
                    await self._enrollment_repository.update(enrollment.id, patch)
                    await self._fail(enrollment, result.error or "Node execution failed")
                    return RunOutcome.FAILED
                logger.info(f"Node {node.id} failed; routing enrollment {enrollment.id} to {error_next_id}")
                next_node_id = error_next_id

            elif result.should_wait:
                patch = enrollment.pause(entry, node.next_id, result.wait_until, result.context_delta, now)
                await self._enrollment_repository.update(enrollment.id, patch)
                logger.info(f"Enrollment {enrollment.id} waiting until {result.wait_until.isoformat()}")
                return RunOutcome.WAITING

            else:
                next_node_id = result.next_node_id or node.next_id

            patch = enrollment.record_step(entry, next_node_id, result.context_delta, now)
            await self._enrollment_repository.update(enrollment.id, patch)
            executed += 1

        if enrollment.has_finished_walk:
            await self._enrollment_repository.update(enrollment.id, enrollment.complete(self._clock()))
            logger.info(f"Enrollment {enrollment.id} completed")
            return RunOutcome.COMPLETED

        # Node budget exhausted: yield and let the next signal continue the walk
        now = self._clock()
        enrollment.last_executed_at = now
        await self._enrollment_repository.update(enrollment.id, {"lastExecutedAt": now.isoformat()})
        logger.info(f"Enrollment {enrollment.id} yielded after {executed} nodes at {enrollment.current_node_id}")
        return RunOutcome.YIELDED

    async def _fail(self, enrollment: WorkflowEnrollment, error: str) -> None:
        now = self._clock()
        if enrollment.status.can_transition_to(EnrollmentStatus.FAILED):
            patch = enrollment.fail(error, now)
        else:
            # The failure happened after a terminal write; record it regardless
            enrollment.status = EnrollmentStatus.FAILED
            enrollment.last_error = error
            patch = {"status": EnrollmentStatus.FAILED.value, "lastError": error, "completedAt": now.isoformat()}
        await self._enrollment_repository.update(enrollment.id, patch)
        await self._enrollment_repository.increment(enrollment.id, "errorCount", 1)
