import redis.asyncio as redis

from crm_workflows.shared.config import settings

redis_client: redis.Redis = redis.from_url(settings.redis_url, decode_responses=True)
