from crm_workflows.domain.workflow.entities.enrollment import WorkflowEnrollment
from crm_workflows.ports.secondary.enrollment_repository import IEnrollmentRepository
from crm_workflows.ports.secondary.message_broker import EnrollmentSignal, IMessageBroker


class RetryEnrollmentUseCase:
    def __init__(
        self,
        enrollment_repository: IEnrollmentRepository,
        message_broker: IMessageBroker,
        default_max_retries: int = 3,
    ):
        self._enrollment_repository = enrollment_repository
        self._message_broker = message_broker
        self._default_max_retries = default_max_retries

    async def execute(self, enrollment_id: str) -> WorkflowEnrollment:
        """
        Re-activates a failed enrollment at the node it failed on.

        Bounded by the enrollment's maxRetries (or the configured default).
        Side effects of nodes that already ran are not repeated; only the
        failed node and its successors run again.
        """
        enrollment = await self._enrollment_repository.get_by_id(enrollment_id)
        if not enrollment:
            from crm_workflows.domain.workflow.exceptions import EnrollmentNotFoundError
            raise EnrollmentNotFoundError(enrollment_id)

        patch = enrollment.retry(self._default_max_retries)
        await self._enrollment_repository.update(enrollment_id, patch)
        await self._message_broker.publish_signal(
            EnrollmentSignal(
                enrollment_id=enrollment.id, sequence=enrollment.sequence, retry=enrollment.retry_count
            )
        )
        return enrollment
