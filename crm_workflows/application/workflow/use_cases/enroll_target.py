import logging

from crm_workflows.domain.workflow.entities.enrollment import WorkflowEnrollment
from crm_workflows.domain.workflow.entities.workflow import WorkflowDefinition
from crm_workflows.domain.workflow.exceptions import (
    AlreadyEnrolledError,
    InvalidWorkflowError,
    TargetNotFoundError,
    WorkflowNotFoundError,
)
from crm_workflows.domain.workflow.value_objects.enrollment_status import TargetType
from crm_workflows.ports.secondary.enrollment_repository import IEnrollmentRepository
from crm_workflows.ports.secondary.message_broker import EnrollmentSignal, IMessageBroker
from crm_workflows.ports.secondary.metrics import IMetrics
from crm_workflows.ports.secondary.record_store import IRecordStore
from crm_workflows.ports.secondary.workflow_repository import IWorkflowRepository

logger = logging.getLogger(__name__)


class EnrollTargetUseCase:
    """
    Creates enrollments and hands them to the engine.

    Two entry points:
        - handle_event: a record-change event (e.g. `deal_stage_changed`) enrolls
          the record in every active workflow whose trigger node matches.
        - enroll: an operator enrolls a record in one workflow explicitly.

    Each new enrollment starts ACTIVE at the workflow's start node and is
    signalled to the engine workers at sequence 0.
    """

    def __init__(
        self,
        workflow_repository: IWorkflowRepository,
        enrollment_repository: IEnrollmentRepository,
        record_store: IRecordStore,
        message_broker: IMessageBroker,
        metrics: IMetrics | None = None,
    ):
        self._workflow_repository = workflow_repository
        self._enrollment_repository = enrollment_repository
        self._record_store = record_store
        self._message_broker = message_broker
        self._metrics = metrics

    async def handle_event(
        self,
        event: str,
        target_type: TargetType | str,
        target_id: str,
        payload: dict | None = None,
    ) -> list[WorkflowEnrollment]:
        target_type = TargetType(target_type)
        enrollments = []
        for workflow in await self._workflow_repository.list_active():
            if not workflow.matches_event(event, payload):
                continue
            if workflow.run_once and await self._enrollment_repository.exists_for_target(
                workflow.id, target_type.value, target_id
            ):
                logger.info(f"Skipping run-once workflow {workflow.id} for {target_type.value}/{target_id}")
                continue
            enrollments.append(await self._start(workflow, target_type, target_id))

        logger.info(f"Event {event} on {target_type.value}/{target_id} created {len(enrollments)} enrollment(s)")
        return enrollments

    async def enroll(
        self,
        workflow_id: str,
        target_type: TargetType | str,
        target_id: str,
        context: dict | None = None,
    ) -> WorkflowEnrollment:
        target_type = TargetType(target_type)
        workflow = await self._workflow_repository.get_by_id(workflow_id)
        if not workflow:
            raise WorkflowNotFoundError(workflow_id)
        if not workflow.is_active:
            raise InvalidWorkflowError(f"Workflow {workflow_id} is not active", {"workflow_id": workflow_id})

        if await self._record_store.get(target_type.collection, target_id) is None:
            raise TargetNotFoundError(target_type.value, target_id)

        if workflow.run_once and await self._enrollment_repository.exists_for_target(
            workflow.id, target_type.value, target_id
        ):
            raise AlreadyEnrolledError(workflow.id, target_type.value, target_id)

        return await self._start(workflow, target_type, target_id, context)

    async def _start(
        self,
        workflow: WorkflowDefinition,
        target_type: TargetType,
        target_id: str,
        context: dict | None = None,
    ) -> WorkflowEnrollment:
        enrollment = WorkflowEnrollment.start(
            workflow_id=workflow.id,
            start_node_id=workflow.start_node_id,
            target_type=target_type,
            target_id=target_id,
            context=context,
        )
        await self._enrollment_repository.save(enrollment)
        await self._message_broker.publish_signal(
            EnrollmentSignal(enrollment_id=enrollment.id, sequence=enrollment.sequence)
        )
        if self._metrics:
            self._metrics.record_enrollment_created(workflow.id)
        return enrollment
