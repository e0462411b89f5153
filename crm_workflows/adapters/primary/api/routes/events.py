from fastapi import APIRouter, Depends, status

from crm_workflows.adapters.primary.api.dependencies import get_enroll_target_use_case
from crm_workflows.adapters.primary.api.dto import RecordEventRequest, RecordEventResponse
from crm_workflows.application.workflow.use_cases.enroll_target import EnrollTargetUseCase

API_VERSION = "v1"
router = APIRouter(prefix=f"/api/{API_VERSION}/events", tags=["Events"])


@router.post(
    "",
    response_model=RecordEventResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Ingest a record-change event",
)
async def ingest_event(
    request: RecordEventRequest,
    use_case: EnrollTargetUseCase = Depends(get_enroll_target_use_case),
) -> RecordEventResponse:
    """
    Enrolls the record in every active workflow whose trigger matches the
    event. The payload carries the changed fields (`status`, `stageId`).
    """
    enrollments = await use_case.handle_event(
        event=request.event,
        target_type=request.target_type,
        target_id=request.target_id,
        payload=request.payload,
    )
    return RecordEventResponse(enrollment_ids=[e.id for e in enrollments])
