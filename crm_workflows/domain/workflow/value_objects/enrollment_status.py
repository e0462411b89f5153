from enum import Enum


class EnrollmentStatus(str, Enum):
    """
    Lifecycle states of a workflow enrollment.

    States:
        ACTIVE: Eligible for the engine; the current node has not run yet.
        WAITING: Paused by a delay node until nextExecutionAt.
        COMPLETED: Reached the end of the graph (or the workflow was deactivated).
        FAILED: Stopped on an unrecoverable error; see lastError.
        CANCELLED: Stopped by an operator.
    """

    ACTIVE = "active"
    WAITING = "waiting"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (EnrollmentStatus.COMPLETED, EnrollmentStatus.FAILED, EnrollmentStatus.CANCELLED)

    def can_transition_to(self, target: "EnrollmentStatus") -> bool:
        valid_transitions = {
            EnrollmentStatus.ACTIVE: {
                EnrollmentStatus.WAITING,
                EnrollmentStatus.COMPLETED,
                EnrollmentStatus.FAILED,
                EnrollmentStatus.CANCELLED,
            },
            EnrollmentStatus.WAITING: {
                EnrollmentStatus.ACTIVE,
                EnrollmentStatus.FAILED,
                EnrollmentStatus.CANCELLED,
            },
            EnrollmentStatus.COMPLETED: set(),
            # Manual retry re-activates a failed enrollment
            EnrollmentStatus.FAILED: {EnrollmentStatus.ACTIVE},
            EnrollmentStatus.CANCELLED: set(),
        }
        return target in valid_transitions[self]


class TargetType(str, Enum):
    DEAL = "deal"
    CONTACT = "contact"
    TASK = "task"

    @property
    def collection(self) -> str:
        return f"{self.value}s"
