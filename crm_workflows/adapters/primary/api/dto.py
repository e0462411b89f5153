from typing import Any

from pydantic import BaseModel, Field

from crm_workflows.domain.workflow.value_objects.enrollment_status import TargetType


class WorkflowPublishRequest(BaseModel):
    id: str | None = None
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    start_node_id: str = Field(..., alias="startNodeId", min_length=1)
    nodes: dict[str, dict[str, Any]]
    is_active: bool = Field(True, alias="isActive")
    run_once: bool = Field(False, alias="runOnce")

    model_config = {"populate_by_name": True}

    def to_definition(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class WorkflowResponse(BaseModel):
    workflow_id: str
    name: str
    is_active: bool
    run_once: bool
    node_count: int


class WorkflowActiveRequest(BaseModel):
    is_active: bool = Field(..., alias="isActive")

    model_config = {"populate_by_name": True}


class EnrollRequest(BaseModel):
    workflow_id: str = Field(..., alias="workflowId", min_length=1)
    target_type: TargetType = Field(..., alias="targetType")
    target_id: str = Field(..., alias="targetId", min_length=1)
    context: dict[str, Any] = Field(default_factory=dict)

    model_config = {"populate_by_name": True}


class EnrollmentCreatedResponse(BaseModel):
    enrollment_id: str
    workflow_id: str
    status: str
    message: str = "Enrollment created"


class EnrollmentActionResponse(BaseModel):
    enrollment_id: str
    status: str


class RecordEventRequest(BaseModel):
    event: str = Field(..., min_length=1, examples=["deal_stage_changed"])
    target_type: TargetType = Field(..., alias="targetType")
    target_id: str = Field(..., alias="targetId", min_length=1)
    payload: dict[str, Any] = Field(default_factory=dict)

    model_config = {"populate_by_name": True}


class RecordEventResponse(BaseModel):
    enrollment_ids: list[str]


class ResumeResponse(BaseModel):
    resumed: int
    enrollment_ids: list[str]


class ErrorResponse(BaseModel):
    detail: str
