from abc import ABC, abstractmethod
from datetime import datetime

from crm_workflows.domain.workflow.entities.enrollment import WorkflowEnrollment


class IEnrollmentRepository(ABC):
    """
    Interface for persistence of workflow enrollments.

    Writes are partial: the engine persists after every node by merging a patch
    of wire-named fields into the stored document. Enrollments are never deleted.
    """

    @abstractmethod
    async def save(self, enrollment: WorkflowEnrollment) -> None:
        """Persists a new enrollment."""
        pass

    @abstractmethod
    async def get_by_id(self, enrollment_id: str) -> WorkflowEnrollment | None:
        pass

    @abstractmethod
    async def update(self, enrollment_id: str, patch: dict) -> None:
        """Merges `patch` (top-level wire fields) into the stored enrollment."""
        pass

    @abstractmethod
    async def increment(self, enrollment_id: str, field: str, amount: int = 1) -> None:
        """Atomically adds `amount` to a numeric field such as errorCount."""
        pass

    @abstractmethod
    async def find_due_waiting(self, now: datetime, limit: int) -> list[WorkflowEnrollment]:
        """Returns WAITING enrollments whose nextExecutionAt is at or before `now`, oldest first."""
        pass

    @abstractmethod
    async def exists_for_target(self, workflow_id: str, target_type: str, target_id: str) -> bool:
        """True if the target was ever enrolled in the workflow (for runOnce workflows)."""
        pass
