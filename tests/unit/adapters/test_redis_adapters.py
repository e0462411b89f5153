from unittest.mock import AsyncMock

import pytest
import redis.asyncio as redis

from crm_workflows.adapters.secondary.redis.redis_message_broker import RedisMessageBroker
from crm_workflows.adapters.secondary.redis.redis_state_store import RedisStateStore
from crm_workflows.ports.secondary.message_broker import EnrollmentSignal


@pytest.fixture
def mock_redis():
    return AsyncMock()


class TestRedisMessageBroker:
    @pytest.mark.asyncio
    async def test_create_consumer_groups_ignores_busygroup(self, mock_redis):
        mock_redis.xgroup_create.side_effect = redis.ResponseError("BUSYGROUP Consumer Group name already exists")

        await RedisMessageBroker(mock_redis).create_consumer_groups()

        mock_redis.xgroup_create.assert_called_once()

    @pytest.mark.asyncio
    async def test_create_consumer_groups_propagates_other_errors(self, mock_redis):
        mock_redis.xgroup_create.side_effect = redis.ResponseError("WRONGTYPE")

        with pytest.raises(redis.ResponseError):
            await RedisMessageBroker(mock_redis).create_consumer_groups()

    @pytest.mark.asyncio
    async def test_publish_signal_carries_dedup_id(self, mock_redis):
        mock_redis.xadd.return_value = "1700000000000-0"
        broker = RedisMessageBroker(mock_redis, max_len=500)

        stream_id = await broker.publish_signal(EnrollmentSignal("enr-1", 3))

        assert stream_id == "1700000000000-0"
        args, kwargs = mock_redis.xadd.call_args
        assert args[0] == RedisMessageBroker.ENROLLMENT_STREAM
        assert args[1] == {"id": "enr-1:3", "enrollment_id": "enr-1", "sequence": "3", "retry": "0"}
        assert kwargs["maxlen"] == 500

    @pytest.mark.asyncio
    async def test_consume_signals_parses_messages(self, mock_redis):
        mock_redis.xreadgroup.return_value = [
            [
                RedisMessageBroker.ENROLLMENT_STREAM,
                [
                    ("1-0", {"id": "enr-1:0", "enrollment_id": "enr-1", "sequence": "0"}),
                    ("2-0", {"id": "enr-2:4:r1", "enrollment_id": "enr-2", "sequence": "4", "retry": "1"}),
                ],
            ]
        ]

        signals = await RedisMessageBroker(mock_redis).consume_signals("engine_workers", "worker-1")

        assert [(s.enrollment_id, s.sequence, s.stream_id) for s in signals] == [
            ("enr-1", 0, "1-0"),
            ("enr-2", 4, "2-0"),
        ]
        assert signals[0].retry == 0
        assert signals[1].id == "enr-2:4:r1"

    @pytest.mark.asyncio
    async def test_consume_signals_empty(self, mock_redis):
        mock_redis.xreadgroup.return_value = []

        assert await RedisMessageBroker(mock_redis).consume_signals("engine_workers", "worker-1") == []

    @pytest.mark.asyncio
    async def test_consume_signals_recreates_missing_group(self, mock_redis):
        mock_redis.xreadgroup.side_effect = redis.ResponseError("NOGROUP No such key")

        signals = await RedisMessageBroker(mock_redis).consume_signals("engine_workers", "worker-1")

        assert signals == []
        mock_redis.xgroup_create.assert_called_once()

    @pytest.mark.asyncio
    async def test_acknowledge_signal(self, mock_redis):
        await RedisMessageBroker(mock_redis).acknowledge_signal("1-0")

        mock_redis.xack.assert_called_once_with(
            RedisMessageBroker.ENROLLMENT_STREAM, RedisMessageBroker.ENROLLMENT_GROUP, "1-0"
        )

    @pytest.mark.asyncio
    async def test_claim_stalled_skips_trimmed_entries(self, mock_redis):
        mock_redis.xautoclaim.return_value = [
            "0-0",
            [
                ("5-0", {"id": "enr-1:2", "enrollment_id": "enr-1", "sequence": "2"}),
                ("6-0", {}),
            ],
            [],
        ]

        claimed = await RedisMessageBroker(mock_redis).claim_stalled_signals(
            "engine_workers", "resumer", min_idle_ms=1000, count=5
        )

        assert [s.stream_id for s in claimed] == ["5-0"]
        assert mock_redis.xautoclaim.call_args.kwargs["min_idle_time"] == 1000

    @pytest.mark.asyncio
    async def test_claim_stalled_without_group(self, mock_redis):
        mock_redis.xautoclaim.side_effect = redis.ResponseError("NOGROUP")

        assert await RedisMessageBroker(mock_redis).claim_stalled_signals("engine_workers", "resumer") == []


class TestRedisStateStore:
    @pytest.mark.asyncio
    async def test_acquire_lock_uses_set_nx(self, mock_redis):
        mock_redis.set.return_value = True

        acquired = await RedisStateStore(mock_redis).acquire_lock("enrollment:enr-1", ttl_seconds=15)

        assert acquired is True
        mock_redis.set.assert_called_once_with("lock:enrollment:enr-1", "1", nx=True, ex=15)

    @pytest.mark.asyncio
    async def test_acquire_lock_held_elsewhere(self, mock_redis):
        mock_redis.set.return_value = None

        assert await RedisStateStore(mock_redis).acquire_lock("enrollment:enr-1") is False

    @pytest.mark.asyncio
    async def test_release_lock(self, mock_redis):
        await RedisStateStore(mock_redis).release_lock("enrollment:enr-1")

        mock_redis.delete.assert_called_once_with("lock:enrollment:enr-1")

    @pytest.mark.asyncio
    async def test_processed_markers(self, mock_redis):
        store = RedisStateStore(mock_redis)
        mock_redis.exists.return_value = 1

        await store.mark_processed("enr-1:3", ttl_seconds=60)

        mock_redis.set.assert_called_once_with("processed:enr-1:3", "1", ex=60)
        assert await store.is_processed("enr-1:3") is True
        mock_redis.exists.assert_called_once_with("processed:enr-1:3")
