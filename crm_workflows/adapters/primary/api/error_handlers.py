from fastapi import Request, status
from fastapi.responses import JSONResponse

from crm_workflows.domain.workflow.exceptions import WorkflowException
from crm_workflows.shared.logger import get_logger

logger = get_logger(__name__)

_NOT_FOUND_CODES = {
    "WORKFLOW_NOT_FOUND",
    "ENROLLMENT_NOT_FOUND",
    "TARGET_NOT_FOUND",
    "NODE_NOT_FOUND",
}
_CONFLICT_CODES = {
    "INVALID_STATUS_TRANSITION",
    "RETRY_LIMIT_EXCEEDED",
    "ALREADY_ENROLLED",
}


def status_for(exc: WorkflowException) -> int:
    if exc.error_code in _NOT_FOUND_CODES:
        return status.HTTP_404_NOT_FOUND
    if exc.error_code in _CONFLICT_CODES:
        return status.HTTP_409_CONFLICT
    return status.HTTP_400_BAD_REQUEST


async def workflow_exception_handler(request: Request, exc: WorkflowException):
    """
    Global exception handler for WorkflowException and its subclasses.
    Converts domain exceptions to structured JSON responses.
    """
    logger.warning(
        "workflow_error",
        error_code=exc.error_code,
        message=exc.message,
        context=exc.context,
        path=request.url.path,
    )

    return JSONResponse(
        status_code=status_for(exc),
        content={
            "error": {
                "message": exc.message,
                "error_code": exc.error_code,
                "context": exc.context,
            }
        },
    )


async def general_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled_exception", path=request.url.path)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": {
                "message": "Internal processing error",
                "error_code": "INTERNAL_SERVER_ERROR",
                "context": {"type": type(exc).__name__},
            }
        },
    )
