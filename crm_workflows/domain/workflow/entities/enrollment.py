from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from crm_workflows.domain.workflow.exceptions import (
    InvalidEnrollmentStateError,
    RetryLimitExceededError,
)
from crm_workflows.domain.workflow.value_objects.enrollment_status import EnrollmentStatus, TargetType

# Persisted as currentNodeId once the walk has reached the end of the graph.
COMPLETED_MARKER = "completed"

RESULT_SUCCESS = "success"
RESULT_FAILED = "failed"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_dt(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


@dataclass
class ExecutionPathEntry:
    node_id: str
    timestamp: datetime
    result: str = RESULT_SUCCESS
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.result == RESULT_FAILED

    def to_dict(self) -> dict:
        data = {"nodeId": self.node_id, "timestamp": _iso(self.timestamp), "result": self.result}
        if self.error is not None:
            data["error"] = self.error
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ExecutionPathEntry":
        return cls(
            node_id=data["nodeId"],
            timestamp=_parse_dt(data["timestamp"]),
            result=data.get("result", RESULT_SUCCESS),
            error=data.get("error"),
        )


@dataclass
class WorkflowEnrollment:
    """
    Aggregate Root for one run of a workflow against one target record.

    Every mutating method updates the aggregate in place and returns the
    partial patch (wire field names) the repository must merge, so the engine
    can persist after each node without rewriting the whole document.
    """

    workflow_id: str
    target_type: TargetType
    target_id: str
    id: str = field(default_factory=lambda: str(uuid4()))
    status: EnrollmentStatus = EnrollmentStatus.ACTIVE
    current_node_id: str = ""
    visited_nodes: list[str] = field(default_factory=list)
    execution_path: list[ExecutionPathEntry] = field(default_factory=list)
    context: dict = field(default_factory=dict)
    next_execution_at: datetime | None = None
    last_executed_at: datetime | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: datetime | None = None
    error_count: int = 0
    last_error: str | None = None
    retry_count: int = 0
    max_retries: int | None = None

    @classmethod
    def start(
        cls,
        workflow_id: str,
        start_node_id: str,
        target_type: TargetType | str,
        target_id: str,
        context: dict | None = None,
        max_retries: int | None = None,
    ) -> "WorkflowEnrollment":
        return cls(
            workflow_id=workflow_id,
            target_type=TargetType(target_type),
            target_id=target_id,
            current_node_id=start_node_id,
            context=dict(context or {}),
            max_retries=max_retries,
        )

    @property
    def sequence(self) -> int:
        """Monotonic step counter; part of the queue deduplication key."""
        return len(self.execution_path)

    @property
    def has_finished_walk(self) -> bool:
        return self.current_node_id in ("", COMPLETED_MARKER)

    def visit_count(self, node_id: str) -> int:
        return self.visited_nodes.count(node_id)

    def is_due(self, now: datetime) -> bool:
        return (
            self.status == EnrollmentStatus.WAITING
            and self.next_execution_at is not None
            and self.next_execution_at <= now
        )

    def _transition(self, target: EnrollmentStatus) -> None:
        if not self.status.can_transition_to(target):
            raise InvalidEnrollmentStateError(self.id, self.status.value, target.value)
        self.status = target

    def _append_step(self, entry: ExecutionPathEntry, next_node_id: str | None, context_delta: dict | None) -> None:
        self.visited_nodes.append(entry.node_id)
        self.execution_path.append(entry)
        self.context.update(context_delta or {})
        self.current_node_id = next_node_id or COMPLETED_MARKER

    def _step_patch(self) -> dict:
        return {
            "currentNodeId": self.current_node_id,
            "visitedNodes": list(self.visited_nodes),
            "executionPath": [e.to_dict() for e in self.execution_path],
            "context": dict(self.context),
            "lastExecutedAt": _iso(self.last_executed_at),
        }

    def record_step(
        self,
        entry: ExecutionPathEntry,
        next_node_id: str | None,
        context_delta: dict | None,
        now: datetime,
    ) -> dict:
        self._append_step(entry, next_node_id, context_delta)
        self.last_executed_at = now
        return self._step_patch()

    def pause(
        self,
        entry: ExecutionPathEntry,
        next_node_id: str | None,
        wait_until: datetime,
        context_delta: dict | None,
        now: datetime,
    ) -> dict:
        self._transition(EnrollmentStatus.WAITING)
        self._append_step(entry, next_node_id, context_delta)
        self.last_executed_at = now
        self.next_execution_at = wait_until
        patch = self._step_patch()
        patch.update({"status": self.status.value, "nextExecutionAt": _iso(wait_until)})
        return patch

    def resume(self) -> dict:
        self._transition(EnrollmentStatus.ACTIVE)
        self.next_execution_at = None
        return {"status": self.status.value, "nextExecutionAt": None}

    def complete(self, now: datetime) -> dict:
        self._transition(EnrollmentStatus.COMPLETED)
        self.current_node_id = COMPLETED_MARKER
        self.completed_at = now
        return {
            "status": self.status.value,
            "currentNodeId": self.current_node_id,
            "completedAt": _iso(now),
        }

    def fail(self, error: str, now: datetime) -> dict:
        """
        Moves the enrollment to FAILED.

        errorCount is bumped locally but left out of the patch; callers persist
        it through the repository's atomic increment.
        """
        self._transition(EnrollmentStatus.FAILED)
        self.last_error = error
        self.error_count += 1
        self.completed_at = now
        return {"status": self.status.value, "lastError": error, "completedAt": _iso(now)}

    def cancel(self, now: datetime) -> dict:
        self._transition(EnrollmentStatus.CANCELLED)
        self.completed_at = now
        self.next_execution_at = None
        return {"status": self.status.value, "completedAt": _iso(now), "nextExecutionAt": None}

    def retry(self, default_max_retries: int) -> dict:
        """
        Re-activates a failed enrollment at the node it failed on.

        The loop-detection history restarts; the execution path is kept as the
        audit trail.
        """
        if self.status != EnrollmentStatus.FAILED:
            raise InvalidEnrollmentStateError(self.id, self.status.value, EnrollmentStatus.ACTIVE.value)
        limit = self.max_retries if self.max_retries is not None else default_max_retries
        if self.retry_count >= limit:
            raise RetryLimitExceededError(self.id, limit)

        self._transition(EnrollmentStatus.ACTIVE)
        self.retry_count += 1
        self.visited_nodes = []
        self.last_error = None
        self.completed_at = None
        self.last_executed_at = None
        return {
            "status": self.status.value,
            "retryCount": self.retry_count,
            "visitedNodes": [],
            "lastError": None,
            "completedAt": None,
            "lastExecutedAt": None,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "workflowId": self.workflow_id,
            "targetType": self.target_type.value,
            "targetId": self.target_id,
            "status": self.status.value,
            "currentNodeId": self.current_node_id,
            "visitedNodes": list(self.visited_nodes),
            "executionPath": [e.to_dict() for e in self.execution_path],
            "context": dict(self.context),
            "nextExecutionAt": _iso(self.next_execution_at),
            "lastExecutedAt": _iso(self.last_executed_at),
            "startedAt": _iso(self.started_at),
            "completedAt": _iso(self.completed_at),
            "errorCount": self.error_count,
            "lastError": self.last_error,
            "retryCount": self.retry_count,
            "maxRetries": self.max_retries,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WorkflowEnrollment":
        return cls(
            id=data["id"],
            workflow_id=data["workflowId"],
            target_type=TargetType(data["targetType"]),
            target_id=data["targetId"],
            status=EnrollmentStatus(data.get("status", EnrollmentStatus.ACTIVE.value)),
            current_node_id=data.get("currentNodeId") or "",
            visited_nodes=list(data.get("visitedNodes") or []),
            execution_path=[ExecutionPathEntry.from_dict(e) for e in data.get("executionPath") or []],
            context=dict(data.get("context") or {}),
            next_execution_at=_parse_dt(data.get("nextExecutionAt")),
            last_executed_at=_parse_dt(data.get("lastExecutedAt")),
            started_at=_parse_dt(data.get("startedAt")) or datetime.now(timezone.utc),
            completed_at=_parse_dt(data.get("completedAt")),
            error_count=int(data.get("errorCount") or 0),
            last_error=data.get("lastError"),
            retry_count=int(data.get("retryCount") or 0),
            max_retries=data.get("maxRetries"),
        )
