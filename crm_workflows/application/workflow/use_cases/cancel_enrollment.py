from crm_workflows.domain.workflow.entities.enrollment import WorkflowEnrollment
from crm_workflows.ports.secondary.enrollment_repository import IEnrollmentRepository
from crm_workflows.shared.clock import Clock, utc_now


class CancelEnrollmentUseCase:
    def __init__(self, enrollment_repository: IEnrollmentRepository, clock: Clock | None = None):
        self._enrollment_repository = enrollment_repository
        self._clock = clock or utc_now

    async def execute(self, enrollment_id: str) -> WorkflowEnrollment:
        """
        Cancels an active or waiting enrollment.

        The engine no-ops on non-active enrollments, so any signal still in
        flight for this enrollment is dropped by the worker.
        """
        enrollment = await self._enrollment_repository.get_by_id(enrollment_id)
        if not enrollment:
            from crm_workflows.domain.workflow.exceptions import EnrollmentNotFoundError
            raise EnrollmentNotFoundError(enrollment_id)

        patch = enrollment.cancel(self._clock())
        await self._enrollment_repository.update(enrollment_id, patch)
        return enrollment
