import redis.asyncio as redis

from crm_workflows.ports.secondary.message_broker import EnrollmentSignal, IMessageBroker
from crm_workflows.shared.config import settings


class RedisMessageBroker(IMessageBroker):
    """Redis Streams implementation supporting consumer groups and at-least-once delivery."""

    ENROLLMENT_STREAM = settings.STREAM_ENROLLMENT_KEY
    ENROLLMENT_GROUP = settings.STREAM_ENROLLMENT_GROUP

    def __init__(self, redis_client: redis.Redis, max_len: int | None = None):
        self._redis = redis_client
        self._max_len = max_len if max_len is not None else settings.STREAM_MAX_LEN

    async def create_consumer_groups(self) -> None:
        try:
            await self._redis.xgroup_create(
                self.ENROLLMENT_STREAM, self.ENROLLMENT_GROUP, id="0", mkstream=True
            )
        except redis.ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise

    async def publish_signal(self, signal: EnrollmentSignal) -> str:
        return await self._redis.xadd(
            self.ENROLLMENT_STREAM,
            {
                "id": signal.id,
                "enrollment_id": signal.enrollment_id,
                "sequence": str(signal.sequence),
                "retry": str(signal.retry),
            },
            maxlen=self._max_len,
            approximate=True,
        )

    async def consume_signals(
        self, consumer_group: str, consumer_name: str, count: int = 10, block_ms: int = 2000
    ) -> list[EnrollmentSignal]:
        try:
            messages = await self._redis.xreadgroup(
                consumer_group or self.ENROLLMENT_GROUP,
                consumer_name,
                {self.ENROLLMENT_STREAM: ">"},
                count=count,
                block=block_ms,
            )
        except redis.ResponseError as e:
            if "NOGROUP" in str(e):
                await self.create_consumer_groups()
                return []
            raise

        signals = []
        if messages:
            for _stream, stream_messages in messages:
                for message_id, data in stream_messages:
                    signals.append(self._to_signal(message_id, data))
        return signals

    async def acknowledge_signal(self, message_id: str) -> None:
        await self._redis.xack(self.ENROLLMENT_STREAM, self.ENROLLMENT_GROUP, message_id)

    async def claim_stalled_signals(
        self, consumer_group: str, new_consumer: str, min_idle_ms: int = 300000, count: int = 10
    ) -> list[EnrollmentSignal]:
        try:
            response = await self._redis.xautoclaim(
                self.ENROLLMENT_STREAM,
                consumer_group,
                new_consumer,
                min_idle_time=min_idle_ms,
                start_id="0-0",
                count=count,
            )
        except redis.ResponseError as e:
            if "NOGROUP" in str(e):
                return []
            raise

        # Entries trimmed from the stream come back with empty payloads
        return [self._to_signal(message_id, data) for message_id, data in response[1] if data]

    @staticmethod
    def _to_signal(message_id: str, data: dict) -> EnrollmentSignal:
        return EnrollmentSignal(
            enrollment_id=data["enrollment_id"],
            sequence=int(data["sequence"]),
            stream_id=message_id,
            retry=int(data.get("retry", 0)),
        )
