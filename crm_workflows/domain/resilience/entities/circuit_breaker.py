from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class CircuitState(Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass
class CircuitBreaker:
    """
    Failure counter guarding calls to one remote host.

    CLOSED counts consecutive failures and opens at the threshold. OPEN rejects
    calls until the reset timeout has elapsed, then lets probes through as
    HALF_OPEN; enough successful probes close it, any failed probe reopens it.
    Time is passed in by the caller so the state machine stays deterministic.
    """

    name: str
    failure_threshold: int = 5
    reset_timeout_seconds: int = 60
    half_open_max_calls: int = 2
    state: CircuitState = CircuitState.CLOSED
    consecutive_failures: int = 0
    half_open_successes: int = 0
    opened_at: datetime | None = None

    def allow_request(self, now: datetime) -> bool:
        if self.state != CircuitState.OPEN:
            return True
        if self.retry_after(now) <= 0:
            self.state = CircuitState.HALF_OPEN
            self.half_open_successes = 0
            return True
        return False

    def retry_after(self, now: datetime) -> float:
        if self.state != CircuitState.OPEN or self.opened_at is None:
            return 0.0
        elapsed = (now - self.opened_at).total_seconds()
        return max(0.0, self.reset_timeout_seconds - elapsed)

    def record_success(self) -> None:
        if self.state == CircuitState.HALF_OPEN:
            self.half_open_successes += 1
            if self.half_open_successes >= self.half_open_max_calls:
                self.state = CircuitState.CLOSED
                self.opened_at = None
                self.half_open_successes = 0
        self.consecutive_failures = 0

    def record_failure(self, now: datetime) -> None:
        self.consecutive_failures += 1
        if self.state == CircuitState.HALF_OPEN or self.consecutive_failures >= self.failure_threshold:
            self.state = CircuitState.OPEN
            self.opened_at = now
            self.half_open_successes = 0

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "state": self.state.value,
            "consecutive_failures": self.consecutive_failures,
            "failure_threshold": self.failure_threshold,
            "opened_at": self.opened_at.isoformat() if self.opened_at else None,
        }
