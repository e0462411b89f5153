from abc import ABC, abstractmethod


class IRecordStore(ABC):
    """
    Interface to the CRM record collections (deals, contacts, tasks, activities).

    Records are plain dicts read and written whole; last writer wins.
    """

    @abstractmethod
    async def get(self, collection: str, record_id: str) -> dict | None:
        pass

    @abstractmethod
    async def add(self, collection: str, data: dict) -> str:
        """Inserts a record and returns its generated id."""
        pass

    @abstractmethod
    async def update(self, collection: str, record_id: str, patch: dict) -> None:
        """Merges `patch` into an existing record. Raises if the record is missing."""
        pass
