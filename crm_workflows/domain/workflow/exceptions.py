from typing import Any, Dict, Optional


class WorkflowException(Exception):
    def __init__(
        self,
        message: str,
        error_code: str = "WORKFLOW_ERROR",
        context: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code
        self.context = context or {}
        super().__init__(self.message)


# --- Definition errors ---

class InvalidWorkflowError(WorkflowException):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code="INVALID_WORKFLOW",
            context=details
        )


class InvalidNodeError(WorkflowException):
    def __init__(self, node_id: str, details: str):
        self.node_id = node_id
        super().__init__(
            message=f"Invalid node '{node_id}': {details}",
            error_code="INVALID_NODE",
            context={"node_id": node_id, "details": details}
        )


class NodeNotFoundError(WorkflowException):
    def __init__(self, node_id: str, workflow_id: str):
        self.node_id = node_id
        super().__init__(
            message=f"Node {node_id} not found in workflow {workflow_id}",
            error_code="NODE_NOT_FOUND",
            context={"node_id": node_id, "workflow_id": workflow_id}
        )


class UnknownNodeTypeError(WorkflowException):
    def __init__(self, node_id: str, node_type: str):
        super().__init__(
            message=f"Unknown node type: {node_type}",
            error_code="UNKNOWN_NODE_TYPE",
            context={"node_id": node_id, "node_type": node_type}
        )


class MissingBranchError(WorkflowException):
    def __init__(self, node_id: str, branch: str):
        self.node_id = node_id
        self.branch = branch
        super().__init__(
            message=f"Condition node missing {branch}",
            error_code="MISSING_BRANCH",
            context={"node_id": node_id, "branch": branch}
        )


class EmptyConditionsError(WorkflowException):
    def __init__(self, node_id: str | None = None):
        super().__init__(
            message="Condition node has no conditions defined",
            error_code="EMPTY_CONDITIONS",
            context={"node_id": node_id}
        )


class InvalidConditionError(WorkflowException):
    def __init__(self, details: str):
        super().__init__(
            message=f"Invalid condition: {details}",
            error_code="INVALID_CONDITION",
            context={"details": details}
        )


class UnknownOperatorError(WorkflowException):
    def __init__(self, operator: str):
        self.operator = operator
        super().__init__(
            message=f"Unknown operator: {operator}",
            error_code="UNKNOWN_OPERATOR",
            context={"operator": operator}
        )


class UnknownActionError(WorkflowException):
    def __init__(self, action: str):
        self.action = action
        super().__init__(
            message=f"Unknown action type: {action}",
            error_code="UNKNOWN_ACTION",
            context={"action": action}
        )


# --- Side-effect errors ---

class ActionPreconditionError(WorkflowException):
    def __init__(self, action: str, details: str):
        super().__init__(
            message=details,
            error_code="ACTION_PRECONDITION_FAILED",
            context={"action": action}
        )


class EmailDeliveryError(WorkflowException):
    def __init__(self, details: str):
        super().__init__(
            message=f"Failed to send email: {details}",
            error_code="EMAIL_DELIVERY_FAILED",
            context={"details": details}
        )


class WebhookFailedError(WorkflowException):
    def __init__(self, url: str, status_code: int, reason: str = ""):
        self.status_code = status_code
        super().__init__(
            message=f"Webhook failed: {status_code} {reason}".rstrip(),
            error_code="WEBHOOK_FAILED",
            context={"url": url, "status_code": status_code}
        )


# --- Loop and infrastructure errors ---

class LoopDetectedError(WorkflowException):
    def __init__(self, node_id: str, visit_count: int):
        self.node_id = node_id
        self.visit_count = visit_count
        super().__init__(
            message=f"Loop detected: node {node_id} visited {visit_count} times",
            error_code="LOOP_DETECTED",
            context={"node_id": node_id, "visit_count": visit_count}
        )


class WorkflowNotFoundError(WorkflowException):
    def __init__(self, workflow_id: str):
        self.workflow_id = workflow_id
        super().__init__(
            message=f"Workflow {workflow_id} not found",
            error_code="WORKFLOW_NOT_FOUND",
            context={"workflow_id": workflow_id}
        )


class TargetNotFoundError(WorkflowException):
    def __init__(self, target_type: str, target_id: str):
        super().__init__(
            message=f"Target {target_type}/{target_id} not found",
            error_code="TARGET_NOT_FOUND",
            context={"target_type": target_type, "target_id": target_id}
        )


class EnrollmentNotFoundError(WorkflowException):
    def __init__(self, enrollment_id: str):
        self.enrollment_id = enrollment_id
        super().__init__(
            message=f"Enrollment '{enrollment_id}' not found",
            error_code="ENROLLMENT_NOT_FOUND",
            context={"enrollment_id": enrollment_id}
        )


class InvalidEnrollmentStateError(WorkflowException):
    def __init__(self, enrollment_id: str, from_status: str, to_status: str):
        super().__init__(
            message=f"Enrollment '{enrollment_id}' cannot move from '{from_status}' to '{to_status}'",
            error_code="INVALID_STATUS_TRANSITION",
            context={"enrollment_id": enrollment_id, "from_status": from_status, "to_status": to_status}
        )


class RetryLimitExceededError(WorkflowException):
    def __init__(self, enrollment_id: str, max_retries: int):
        super().__init__(
            message=f"Enrollment '{enrollment_id}' reached its retry limit of {max_retries}",
            error_code="RETRY_LIMIT_EXCEEDED",
            context={"enrollment_id": enrollment_id, "max_retries": max_retries}
        )


class AlreadyEnrolledError(WorkflowException):
    def __init__(self, workflow_id: str, target_type: str, target_id: str):
        super().__init__(
            message=f"Target {target_type}/{target_id} was already enrolled in run-once workflow {workflow_id}",
            error_code="ALREADY_ENROLLED",
            context={"workflow_id": workflow_id, "target_type": target_type, "target_id": target_id}
        )
