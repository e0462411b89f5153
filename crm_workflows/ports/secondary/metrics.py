from abc import ABC, abstractmethod


class IMetrics(ABC):
    @abstractmethod
    def record_node_execution(self, node_type: str, status: str, duration: float) -> None:
        pass

    @abstractmethod
    def record_enrollment_outcome(self, workflow_id: str, status: str) -> None:
        pass

    @abstractmethod
    def record_enrollment_created(self, workflow_id: str) -> None:
        pass

    @abstractmethod
    def record_resumed(self, count: int) -> None:
        pass
