import redis.asyncio as redis

from crm_workflows.ports.secondary.state_store import IStateStore
from crm_workflows.shared.config import settings


class RedisStateStore(IStateStore):
    def __init__(self, redis_client: redis.Redis):
        self._redis = redis_client

    @staticmethod
    def _lock_key(key: str) -> str:
        return f"lock:{key}"

    @staticmethod
    def _processed_key(dedup_key: str) -> str:
        return f"processed:{dedup_key}"

    async def acquire_lock(self, key: str, ttl_seconds: int | None = None) -> bool:
        ttl = ttl_seconds if ttl_seconds is not None else settings.LOCK_TTL_SECONDS
        return bool(await self._redis.set(self._lock_key(key), "1", nx=True, ex=ttl))

    async def release_lock(self, key: str) -> None:
        await self._redis.delete(self._lock_key(key))

    async def is_processed(self, dedup_key: str) -> bool:
        return bool(await self._redis.exists(self._processed_key(dedup_key)))

    async def mark_processed(self, dedup_key: str, ttl_seconds: int | None = None) -> None:
        ttl = ttl_seconds if ttl_seconds is not None else settings.WORKER_IDEMPOTENCY_TTL_SECONDS
        await self._redis.set(self._processed_key(dedup_key), "1", ex=ttl)
