from abc import ABC, abstractmethod


class IStateStore(ABC):
    """
    Interface for the shared coordination store (Redis).

    Provides per-enrollment locks and the processed-signal set used to drop
    duplicate queue deliveries.
    """

    @abstractmethod
    async def acquire_lock(self, key: str, ttl_seconds: int = 30) -> bool:
        """
        Acquires a lock that expires after `ttl_seconds`.
        Returns False immediately if another holder owns it.
        """
        pass

    @abstractmethod
    async def release_lock(self, key: str) -> None:
        pass

    @abstractmethod
    async def is_processed(self, dedup_key: str) -> bool:
        pass

    @abstractmethod
    async def mark_processed(self, dedup_key: str, ttl_seconds: int) -> None:
        pass
