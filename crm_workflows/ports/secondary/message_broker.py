from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass
class EnrollmentSignal:
    """
    Request for the engine to run one enrollment.

    Attributes:
        enrollment_id (str): Enrollment to run.
        sequence (int): Length of the execution path when the signal was
            emitted. A worker drops the signal if the enrollment has moved on.
        retry (int): Enrollment retry count when the signal was emitted. A
            retry after a failure that never reached a node keeps the same
            sequence, so the retry count keeps its key distinct.
        id (str): Deduplication key, `<enrollment_id>:<sequence>`, suffixed
            with `:r<retry>` once the enrollment has been retried.
        stream_id (str | None): Internal Stream ID (assigned by Redis).
    """
    enrollment_id: str
    sequence: int
    stream_id: str | None = None
    retry: int = 0

    @property
    def id(self) -> str:
        if self.retry:
            return f"{self.enrollment_id}:{self.sequence}:r{self.retry}"
        return f"{self.enrollment_id}:{self.sequence}"


class IMessageBroker(ABC):
    """
    Interface for the enrollment signal queue.

    Abstracts the underlying stream (Redis Streams); delivery is at-least-once
    through consumer groups.
    """

    @abstractmethod
    async def publish_signal(self, signal: EnrollmentSignal) -> str:
        pass

    @abstractmethod
    async def consume_signals(
        self, consumer_group: str, consumer_name: str, count: int = 10, block_ms: int = 2000
    ) -> list[EnrollmentSignal]:
        pass

    @abstractmethod
    async def acknowledge_signal(self, message_id: str) -> None:
        pass

    @abstractmethod
    async def create_consumer_groups(self) -> None:
        """Idempotently initializes required consumer groups."""
        pass

    @abstractmethod
    async def claim_stalled_signals(
        self, consumer_group: str, new_consumer: str, min_idle_ms: int = 300000, count: int = 10
    ) -> list[EnrollmentSignal]:
        """Takes over signals delivered to a consumer that never acknowledged them."""
        pass
