from fastapi import APIRouter, Depends, status

from crm_workflows.adapters.primary.api.dependencies import (
    get_cancel_enrollment_use_case,
    get_enroll_target_use_case,
    get_enrollment_status_use_case,
    get_resume_due_use_case,
    get_retry_enrollment_use_case,
)
from crm_workflows.adapters.primary.api.dto import (
    EnrollmentActionResponse,
    EnrollmentCreatedResponse,
    EnrollRequest,
    ErrorResponse,
    ResumeResponse,
)
from crm_workflows.application.workflow.use_cases.cancel_enrollment import CancelEnrollmentUseCase
from crm_workflows.application.workflow.use_cases.enroll_target import EnrollTargetUseCase
from crm_workflows.application.workflow.use_cases.get_enrollment_status import GetEnrollmentStatusUseCase
from crm_workflows.application.workflow.use_cases.resume_due_enrollments import ResumeDueEnrollmentsUseCase
from crm_workflows.application.workflow.use_cases.retry_enrollment import RetryEnrollmentUseCase
from crm_workflows.shared.config import settings
from crm_workflows.shared.logger import get_logger

logger = get_logger(__name__)

API_VERSION = "v1"
router = APIRouter(prefix=f"/api/{API_VERSION}/enrollments", tags=["Enrollments"])


@router.post(
    "",
    response_model=EnrollmentCreatedResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    status_code=status.HTTP_201_CREATED,
    summary="Enroll a record in a workflow",
)
async def enroll_target(
    request: EnrollRequest,
    use_case: EnrollTargetUseCase = Depends(get_enroll_target_use_case),
) -> EnrollmentCreatedResponse:
    enrollment = await use_case.enroll(
        workflow_id=request.workflow_id,
        target_type=request.target_type,
        target_id=request.target_id,
        context=request.context,
    )
    logger.info("enrollment_created", enrollment_id=enrollment.id, workflow_id=enrollment.workflow_id)
    return EnrollmentCreatedResponse(
        enrollment_id=enrollment.id,
        workflow_id=enrollment.workflow_id,
        status=enrollment.status.value,
    )


@router.post(
    "/resume-due",
    response_model=ResumeResponse,
    summary="Resume waiting enrollments now",
)
async def resume_due_enrollments(
    use_case: ResumeDueEnrollmentsUseCase = Depends(get_resume_due_use_case),
) -> ResumeResponse:
    """Runs one resumer sweep with the larger manual batch size."""
    resumed = await use_case.execute(limit=settings.RESUMER_MANUAL_BATCH_SIZE)
    return ResumeResponse(resumed=len(resumed), enrollment_ids=resumed)


@router.get(
    "/{enrollment_id}",
    responses={404: {"model": ErrorResponse}},
    summary="Get enrollment state and execution path",
)
async def get_enrollment(
    enrollment_id: str,
    use_case: GetEnrollmentStatusUseCase = Depends(get_enrollment_status_use_case),
) -> dict:
    return await use_case.execute(enrollment_id)


@router.post(
    "/{enrollment_id}/cancel",
    response_model=EnrollmentActionResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    summary="Cancel an enrollment",
)
async def cancel_enrollment(
    enrollment_id: str,
    use_case: CancelEnrollmentUseCase = Depends(get_cancel_enrollment_use_case),
) -> EnrollmentActionResponse:
    enrollment = await use_case.execute(enrollment_id)
    logger.info("enrollment_cancelled", enrollment_id=enrollment_id)
    return EnrollmentActionResponse(enrollment_id=enrollment.id, status=enrollment.status.value)


@router.post(
    "/{enrollment_id}/retry",
    response_model=EnrollmentActionResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    summary="Retry a failed enrollment",
)
async def retry_enrollment(
    enrollment_id: str,
    use_case: RetryEnrollmentUseCase = Depends(get_retry_enrollment_use_case),
) -> EnrollmentActionResponse:
    enrollment = await use_case.execute(enrollment_id)
    logger.info("enrollment_retried", enrollment_id=enrollment_id, retry_count=enrollment.retry_count)
    return EnrollmentActionResponse(enrollment_id=enrollment.id, status=enrollment.status.value)
