from fastapi import APIRouter, Depends, status

from crm_workflows.adapters.primary.api.dependencies import (
    get_set_workflow_active_use_case,
    get_submit_workflow_use_case,
    get_workflow_repository,
)
from crm_workflows.adapters.primary.api.dto import (
    ErrorResponse,
    WorkflowActiveRequest,
    WorkflowPublishRequest,
    WorkflowResponse,
)
from crm_workflows.application.workflow.use_cases.submit_workflow import (
    SetWorkflowActiveUseCase,
    SubmitWorkflowUseCase,
)
from crm_workflows.domain.workflow.entities.workflow import WorkflowDefinition
from crm_workflows.domain.workflow.exceptions import WorkflowNotFoundError
from crm_workflows.ports.secondary.workflow_repository import IWorkflowRepository
from crm_workflows.shared.logger import get_logger

logger = get_logger(__name__)

API_VERSION = "v1"
router = APIRouter(prefix=f"/api/{API_VERSION}/workflows", tags=["Workflows"])


def _summary(workflow: WorkflowDefinition) -> WorkflowResponse:
    return WorkflowResponse(
        workflow_id=workflow.id,
        name=workflow.name,
        is_active=workflow.is_active,
        run_once=workflow.run_once,
        node_count=len(workflow.nodes),
    )


@router.post(
    "",
    response_model=WorkflowResponse,
    responses={400: {"model": ErrorResponse}},
    status_code=status.HTTP_201_CREATED,
    summary="Publish a workflow definition",
)
async def publish_workflow(
    request: WorkflowPublishRequest,
    use_case: SubmitWorkflowUseCase = Depends(get_submit_workflow_use_case),
) -> WorkflowResponse:
    """
    Validates and stores a workflow graph.

    Every node is checked (successor references, condition branches and
    operators, action configs); all problems are reported together.
    """
    workflow = await use_case.execute(request.to_definition())
    logger.info("workflow_published", workflow_id=workflow.id, workflow_name=workflow.name)
    return _summary(workflow)


@router.get(
    "/{workflow_id}",
    responses={404: {"model": ErrorResponse}},
    summary="Get a workflow definition",
)
async def get_workflow(
    workflow_id: str,
    repository: IWorkflowRepository = Depends(get_workflow_repository),
) -> dict:
    workflow = await repository.get_by_id(workflow_id)
    if not workflow:
        raise WorkflowNotFoundError(workflow_id)
    return workflow.to_dict()


@router.patch(
    "/{workflow_id}/active",
    response_model=WorkflowResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Activate or deactivate a workflow",
)
async def set_workflow_active(
    workflow_id: str,
    request: WorkflowActiveRequest,
    use_case: SetWorkflowActiveUseCase = Depends(get_set_workflow_active_use_case),
) -> WorkflowResponse:
    workflow = await use_case.execute(workflow_id, request.is_active)
    logger.info("workflow_active_changed", workflow_id=workflow_id, is_active=request.is_active)
    return _summary(workflow)
