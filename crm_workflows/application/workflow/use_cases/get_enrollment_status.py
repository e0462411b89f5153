from crm_workflows.ports.secondary.enrollment_repository import IEnrollmentRepository


class GetEnrollmentStatusUseCase:
    def __init__(self, enrollment_repository: IEnrollmentRepository):
        self._enrollment_repository = enrollment_repository

    async def execute(self, enrollment_id: str) -> dict:
        """Returns the full enrollment document, execution path included."""
        enrollment = await self._enrollment_repository.get_by_id(enrollment_id)
        if not enrollment:
            from crm_workflows.domain.workflow.exceptions import EnrollmentNotFoundError
            raise EnrollmentNotFoundError(enrollment_id)

        return enrollment.to_dict()
